"""
LLM relevance judges that reorder the similarity shortlist.

Reranking only improves ordering. Every failure surfaces as
RerankUnavailable so the engine can keep the similarity order.
"""

import json
import math
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence, Tuple

import ollama
from rich.console import Console

from .config import get_config_manager
from .errors import RerankUnavailable
from .models import SearchResult

console = Console(stderr=True)

RERANK_BACKENDS = ("openai", "ollama", "none")

_JSON_BLOCK = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)

SYSTEM_PROMPT = (
    "You are an assessment specialist helping recruiters choose skill assessments. "
    "Given a job description and a numbered list of candidate assessments, judge how "
    "relevant each assessment is for evaluating candidates for that job. "
    "Respond with JSON only, in the form "
    '{"rankings": [{"id": "<assessment id>", "score": <confidence between 0 and 1>}]}, '
    "ordered from most to least relevant. Use only ids from the list."
)


def _strip_code_fences(text: str) -> str:
    t = text.strip()
    if t.startswith("```") and t.endswith("```"):
        t = re.sub(r"^```[A-Za-z0-9_-]*\s*", "", t, flags=re.DOTALL)
        t = re.sub(r"\s*```$", "", t, flags=re.DOTALL)
    return t.strip()


def extract_json(text: str) -> Any:
    """Parse the first JSON object/array in an LLM reply; None if there is none."""
    if not text:
        return None
    t = _strip_code_fences(text)
    try:
        return json.loads(t)
    except json.JSONDecodeError:
        pass
    m = _JSON_BLOCK.search(t)
    if not m:
        return None
    try:
        return json.loads(m.group(1))
    except json.JSONDecodeError:
        return None


class Reranker(ABC):
    """Reorders a shortlist, returning (assessment id, confidence in [0, 1]) best first."""

    name = "reranker"

    @abstractmethod
    def rerank(self, query_text: str, shortlist: Sequence[SearchResult]) -> List[Tuple[str, float]]:
        ...


class LLMReranker(Reranker):
    """Shared prompt building and reply parsing for chat-model judges."""

    def __init__(self, description_chars: Optional[int] = None):
        if description_chars is None:
            description_chars = get_config_manager().get('reranker', 'description_chars')
        self.description_chars = description_chars

    @abstractmethod
    def _complete(self, system: str, user: str) -> str:
        """Send one chat turn to the backend and return the reply text."""

    def build_prompt(self, query_text: str, shortlist: Sequence[SearchResult]) -> str:
        lines = ["Job description:", query_text.strip(), "", "Candidate assessments:"]
        for number, result in enumerate(shortlist, start=1):
            record = result.record
            description = record.description
            if len(description) > self.description_chars:
                description = description[:self.description_chars].rstrip() + "..."
            lines.append(
                f"{number}. id={record.id} | {record.name} | test type: {record.test_type or 'n/a'} "
                f"| duration: {record.duration or 'n/a'} | {description}"
            )
        return "\n".join(lines)

    def parse_judgment(self, reply: str, shortlist: Sequence[SearchResult]) -> List[Tuple[str, float]]:
        data = extract_json(reply)
        if isinstance(data, dict):
            data = data.get("rankings", data.get("results"))
        if not isinstance(data, list):
            raise RerankUnavailable("Reranker reply did not contain a rankings list")

        known = [result.id for result in shortlist]
        known_set = set(known)
        judged = []
        seen = set()
        for item in data:
            if not isinstance(item, dict):
                continue
            candidate_id = str(item.get("id", "")).strip()
            if candidate_id not in known_set or candidate_id in seen:
                continue
            try:
                score = float(item.get("score", item.get("confidence")))
            except (TypeError, ValueError):
                continue
            if not math.isfinite(score):
                continue
            seen.add(candidate_id)
            judged.append((candidate_id, min(max(score, 0.0), 1.0)))

        if not judged:
            raise RerankUnavailable("Reranker reply contained no usable rankings")

        judged.sort(key=lambda pair: pair[1], reverse=True)
        # Candidates the judge skipped keep their similarity order at the end.
        judged.extend((candidate_id, 0.0) for candidate_id in known if candidate_id not in seen)
        return judged

    def rerank(self, query_text: str, shortlist: Sequence[SearchResult]) -> List[Tuple[str, float]]:
        if not shortlist:
            return []
        try:
            reply = self._complete(SYSTEM_PROMPT, self.build_prompt(query_text, shortlist))
        except RerankUnavailable:
            raise
        except Exception as e:
            raise RerankUnavailable(f"{self.name} request failed: {e}") from e
        return self.parse_judgment(reply, shortlist)


class OpenAIReranker(LLMReranker):
    """Relevance judge backed by an OpenAI chat model."""

    name = "openai"

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 timeout: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 description_chars: Optional[int] = None):
        super().__init__(description_chars=description_chars)
        config = get_config_manager()
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.model = model or config.get('openai', 'chat_model')
        self.timeout = timeout if timeout is not None else config.get('openai', 'timeout')
        self.max_retries = max_retries if max_retries is not None else config.get('openai', 'max_retries')
        self._client = None
        self._client_lock = threading.Lock()

    def _get_client(self):
        if not self.api_key:
            raise RerankUnavailable("Missing OPENAI_API_KEY")
        with self._client_lock:
            if self._client is None:
                from openai import OpenAI
                self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=self.max_retries)
        return self._client

    def _complete(self, system: str, user: str) -> str:
        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=0,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""


class OllamaReranker(LLMReranker):
    """Relevance judge backed by a local Ollama chat model."""

    name = "ollama"

    def __init__(self,
                 host: Optional[str] = None,
                 model: Optional[str] = None,
                 timeout: Optional[float] = None,
                 description_chars: Optional[int] = None):
        super().__init__(description_chars=description_chars)
        config = get_config_manager()
        if host is None:
            host = f"http://{config.get('ollama', 'host')}:{config.get('ollama', 'port')}"
        self.host = host
        self.model = model or config.get('ollama', 'chat_model')
        self.timeout = timeout if timeout is not None else config.get('ollama', 'timeout')
        self.client = ollama.Client(host=host, timeout=self.timeout)

    def _complete(self, system: str, user: str) -> str:
        response = self.client.chat(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            format="json",
            options={"temperature": 0},
        )
        return response['message']['content']


def get_reranker(backend: Optional[str] = None, **kwargs) -> Optional[Reranker]:
    """Get the configured reranker, or None when reranking is disabled."""
    config = get_config_manager()
    if backend is None:
        if not config.get('reranker', 'enabled'):
            return None
        backend = config.get('reranker', 'backend')

    if backend == "none":
        return None
    if backend == "openai":
        return OpenAIReranker(**kwargs)
    if backend == "ollama":
        return OllamaReranker(**kwargs)
    raise ValueError(f"Unknown reranker backend: {backend}")
