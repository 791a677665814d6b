"""
Text normalization applied before anything is embedded.

The output of `normalize` is the cache key material, so it has to be
deterministic and a fixed point: normalize(normalize(x)) == normalize(x).
"""

import hashlib
import html
import re
import unicodedata
from typing import Optional

from bs4 import BeautifulSoup

from .errors import InvalidInput


_TAG = re.compile(r"<[A-Za-z/!?][^<>]*>")
_WHITESPACE = re.compile(r"\s+")
# Raw input is refused (or cut) well before parsing if it is absurdly long.
_RAW_LENGTH_FACTOR = 10

OVERFLOW_POLICIES = ("reject", "truncate")


def _strip_markup(text: str) -> str:
    if _TAG.search(text):
        text = BeautifulSoup(text, "html.parser").get_text(" ")
        text = _TAG.sub(" ", text)
    return text


def _drop_control_chars(text: str) -> str:
    return "".join(
        ch if ch.isspace() or unicodedata.category(ch) != "Cc" else " "
        for ch in text
    )


def _clean_pass(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = html.unescape(text)
    text = _strip_markup(text)
    text = _drop_control_chars(text)
    text = _WHITESPACE.sub(" ", text).strip()
    return text.lower()


def clean_text(text: str) -> str:
    """Run cleaning passes until the text stops changing."""
    while True:
        cleaned = _clean_pass(text)
        if cleaned == text:
            return text
        text = cleaned


def fingerprint(normalized_text: str, namespace: str = "") -> str:
    """Stable cache key for already-normalized text."""
    payload = f"{namespace}\0{normalized_text}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


class TextPreprocessor:
    """Strips markup, collapses whitespace, lower-cases and caps length."""

    def __init__(self, max_chars: Optional[int] = None, overflow_policy: Optional[str] = None):
        if max_chars is None or overflow_policy is None:
            from .config import get_config_manager
            config = get_config_manager()
            if max_chars is None:
                max_chars = config.get('preprocessing', 'max_chars')
            if overflow_policy is None:
                overflow_policy = config.get('preprocessing', 'overflow_policy')
        if max_chars <= 0:
            raise ValueError(f"max_chars must be positive, got {max_chars}")
        if overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(f"Unknown overflow policy: {overflow_policy}")
        self.max_chars = max_chars
        self.overflow_policy = overflow_policy

    def normalize(self, text: str) -> str:
        if text is None:
            raise InvalidInput("Text is required")
        try:
            text.encode("utf-8")
        except UnicodeEncodeError as e:
            raise InvalidInput("Text contains characters that are not valid Unicode") from e
        raw_limit = self.max_chars * _RAW_LENGTH_FACTOR
        if len(text) > raw_limit:
            if self.overflow_policy == "reject":
                raise InvalidInput(
                    f"Text is too long ({len(text)} characters, maximum is {self.max_chars})"
                )
            text = text[:raw_limit]

        cleaned = clean_text(text)
        if len(cleaned) > self.max_chars:
            if self.overflow_policy == "reject":
                raise InvalidInput(
                    f"Text is too long ({len(cleaned)} characters, maximum is {self.max_chars})"
                )
            cleaned = clean_text(cleaned[:self.max_chars])
        return cleaned

    def validate(self, text: str) -> str:
        """Normalize request text, rejecting input that is empty once cleaned."""
        if text is None or not str(text).strip():
            raise InvalidInput("Please enter a job description.")
        normalized = self.normalize(str(text))
        if not normalized:
            raise InvalidInput("The job description contains no readable text.")
        return normalized
