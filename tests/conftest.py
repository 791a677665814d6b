"""Shared fixtures: an isolated config, a counting embedding provider and a scripted reranker."""

import os
import re
import threading
import time

import numpy as np
import pytest

from assessmatch.config import ConfigManager, get_config_manager
from assessmatch.embeddings import EmbeddingProvider
from assessmatch.errors import RerankUnavailable
from assessmatch.reranking import Reranker


VOCABULARY = (
    "java", "python", "sql", "javascript", "numerical", "verbal", "comprehension",
    "reasoning", "coding", "data", "personality", "sales", "customer", "leadership",
    "developer", "analyst",
)

CATALOG_CSV = """ID,Assessment Name,Duration,Test Type,Adaptive/IRT,Remote Testing,URL,Description
java-dev,Java Developer Test,Approximate Completion Time in minutes = 18,K,No,Yes,https://example.com/java,Java coding test for backend developer roles
python-dev,Python Programming,Approximate Completion Time in minutes = 11,K,No,Yes,https://example.com/python,Python coding test for data developer roles
numerical,Numerical Reasoning,Approximate Completion Time in minutes = 24,A,Yes,Yes,https://example.com/numerical,Numerical reasoning with data tables for analyst roles
verbal,Verbal Comprehension,Approximate Completion Time in minutes = 17,A,Yes,No,https://example.com/verbal,Verbal comprehension and reasoning over written passages
opq,Personality Questionnaire,Approximate Completion Time in minutes = 25,P,No,Yes,https://example.com/opq,Personality profile covering leadership and customer focus
sales,Sales Solution,,"B, P",No,No,https://example.com/sales,Sales and customer interaction judgement
"""

SCENARIO_CSV = """id,name,duration,test type,adaptive,remote,url,description
A,Numerical Test,20 minutes,A,yes,yes,https://example.com/a,numerical reasoning test
B,Verbal Test,20 minutes,A,yes,yes,https://example.com/b,verbal comprehension test
C,Coding Test,30 minutes,K,no,yes,https://example.com/c,coding assessment
"""

_WORD = re.compile(r"[a-z]+")


class CountingProvider(EmbeddingProvider):
    """Bag-of-words vectors over a fixed vocabulary, with call counting."""

    def __init__(self, vocabulary=VOCABULARY, latency=0.0, fail=False, gate=None, name="vocab"):
        super().__init__()
        self.vocabulary = list(vocabulary)
        self.latency = latency
        self.fail = fail
        self.gate = gate
        self.name = name
        self.load_calls = 0
        self.batch_calls = 0
        self.texts_embedded = 0
        self._count_lock = threading.Lock()

    @property
    def identity(self):
        return f"fake:{self.name}"

    def _load(self):
        self.load_calls += 1

    def vectorize(self, text):
        words = _WORD.findall(text.lower())
        return np.array([float(words.count(term)) for term in self.vocabulary], dtype=np.float32)

    def _embed_batch(self, texts):
        with self._count_lock:
            self.batch_calls += 1
            self.texts_embedded += len(texts)
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.latency:
            time.sleep(self.latency)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [self.vectorize(text) for text in texts]


class ScriptedReranker(Reranker):
    """Returns a fixed judgment (default: the shortlist reversed) or fails."""

    name = "scripted"

    def __init__(self, order=None, fail=False, error=None, gate=None):
        self.order = order
        self.fail = fail
        self.error = error
        self.gate = gate
        self.calls = []

    def rerank(self, query_text, shortlist):
        self.calls.append((query_text, [result.id for result in shortlist]))
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        if self.fail:
            raise RerankUnavailable("judge offline")
        ids = self.order if self.order is not None else [r.id for r in reversed(shortlist)]
        count = len(ids)
        return [(candidate_id, round(1.0 - i / (count + 1), 4)) for i, candidate_id in enumerate(ids)]


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Each test gets default settings in its own directory."""
    for name in list(os.environ):
        if name.startswith("ASSESSMATCH_"):
            monkeypatch.delenv(name)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    manager = ConfigManager(config_dir=str(tmp_path))
    monkeypatch.setattr(get_config_manager, "_instance", manager, raising=False)
    return manager


@pytest.fixture
def provider():
    return CountingProvider()


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "assessments.csv"
    path.write_text(CATALOG_CSV, encoding="utf-8")
    return path


@pytest.fixture
def scenario_file(tmp_path):
    path = tmp_path / "scenario.csv"
    path.write_text(SCENARIO_CSV, encoding="utf-8")
    return path
