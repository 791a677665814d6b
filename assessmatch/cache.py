"""
Embedding cache keyed by a fingerprint of normalized text.

Entries expire after a time-to-live (checked lazily on access, before LRU
bookkeeping) and the least recently used entry is evicted once the cache is
full. Concurrent misses for the same fingerprint share one computation: the
first caller registers a Future and computes, later callers wait on it.
"""

import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
from rich.console import Console

from .embeddings import EmbeddingProvider
from .preprocessing import fingerprint

console = Console(stderr=True)


@dataclass
class CacheEntry:
    vector: np.ndarray
    created_at: float


class EmbeddingCache:
    """LRU + TTL memo of embeddings with per-fingerprint request coalescing."""

    def __init__(self,
                 provider: EmbeddingProvider,
                 ttl_seconds: Optional[float] = None,
                 max_entries: Optional[int] = None,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds is None or max_entries is None:
            from .config import get_config_manager
            config = get_config_manager()
            if ttl_seconds is None:
                ttl_seconds = config.get('cache', 'ttl_seconds')
            if max_entries is None:
                max_entries = config.get('cache', 'max_entries')
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")

        self.provider = provider
        self.ttl_seconds = float(ttl_seconds)
        self.max_entries = int(max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._in_flight: Dict[str, Future] = {}
        self._stats = {
            "hits": 0,
            "misses": 0,
            "coalesced": 0,
            "computations": 0,
            "evictions": 0,
            "expirations": 0,
        }

    def key_for(self, normalized_text: str) -> str:
        return fingerprint(normalized_text, self.provider.identity)

    # Callers must hold self._lock for the helpers below.

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at >= self.ttl_seconds

    def _lookup(self, key: str) -> Optional[np.ndarray]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[key]
            self._stats["expirations"] += 1
            return None
        self._entries.move_to_end(key)
        return entry.vector

    def _store(self, key: str, vector: np.ndarray) -> None:
        self._entries[key] = CacheEntry(vector=vector, created_at=self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self._stats["evictions"] += 1

    def get_or_compute(self, normalized_text: str) -> np.ndarray:
        """Return the cached embedding, computing it at most once per fingerprint."""
        key = self.key_for(normalized_text)

        with self._lock:
            vector = self._lookup(key)
            if vector is not None:
                self._stats["hits"] += 1
                return vector
            future = self._in_flight.get(key)
            if future is None:
                future = Future()
                self._in_flight[key] = future
                self._stats["misses"] += 1
                leader = True
            else:
                self._stats["coalesced"] += 1
                leader = False

        if not leader:
            return future.result()

        try:
            vector = self.provider.embed(normalized_text)
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(key, None)
            future.set_exception(e)
            raise

        with self._lock:
            self._store(key, vector)
            self._in_flight.pop(key, None)
            self._stats["computations"] += 1
        future.set_result(vector)
        return vector

    def get_or_compute_many(self, normalized_texts: Sequence[str]) -> List[np.ndarray]:
        """
        Embeddings for several texts in input order.

        Hits are served from the cache, duplicate texts are computed once, and
        every miss not already in flight goes to the provider in one batch call.
        """
        keys = [self.key_for(text) for text in normalized_texts]
        results: List[Optional[np.ndarray]] = [None] * len(keys)
        owned: "OrderedDict[str, str]" = OrderedDict()
        futures: Dict[str, Future] = {}

        with self._lock:
            for index, (text, key) in enumerate(zip(normalized_texts, keys)):
                if key in futures:
                    continue
                vector = self._lookup(key)
                if vector is not None:
                    self._stats["hits"] += 1
                    results[index] = vector
                    continue
                future = self._in_flight.get(key)
                if future is None:
                    future = Future()
                    self._in_flight[key] = future
                    owned[key] = text
                    self._stats["misses"] += 1
                else:
                    self._stats["coalesced"] += 1
                futures[key] = future

        if owned:
            try:
                vectors = self.provider.embed_batch(list(owned.values()))
            except BaseException as e:
                with self._lock:
                    for key in owned:
                        self._in_flight.pop(key, None)
                for key in owned:
                    futures[key].set_exception(e)
                raise

            with self._lock:
                for key, vector in zip(owned, vectors):
                    self._store(key, vector)
                    self._in_flight.pop(key, None)
                self._stats["computations"] += len(owned)
            for key, vector in zip(owned, vectors):
                futures[key].set_result(vector)

        for index, key in enumerate(keys):
            if results[index] is None:
                results[index] = futures[key].result()
        return results

    def proactive_evict(self) -> int:
        """Drop every expired entry now instead of waiting for access."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
            for key in expired:
                del self._entries[key]
            self._stats["expirations"] += len(expired)
        if expired:
            console.print(f"[dim]Evicted {len(expired)} expired embeddings[/dim]")
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            stats = dict(self._stats)
            stats["size"] = len(self._entries)
            stats["in_flight"] = len(self._in_flight)
        return stats

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, normalized_text: str) -> bool:
        key = self.key_for(normalized_text)
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._is_expired(entry, self._clock())
