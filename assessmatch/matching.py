"""
Recommendation engine for AssessMatch: query embedding, similarity search,
optional LLM reranking and truncation in one request/response cycle.

The catalog is loaded once, exclusively, before the first search; requests
that arrive during the load wait for it (or are refused when configured not
to wait), so no caller ever sees a partially populated store.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rich.console import Console

from .cache import EmbeddingCache
from .catalog import CatalogLoader, CatalogSource
from .embeddings import EmbeddingProvider
from .errors import InvalidInput, RecommendationTimeout, RerankUnavailable, ServiceNotReady
from .models import (
    EngineState,
    RankedRecommendation,
    RecommendationOptions,
    RecommendationResponse,
    SearchResult,
)
from .preprocessing import TextPreprocessor
from .reranking import Reranker
from .store import VectorStore

console = Console(stderr=True)

ProgressCallback = Callable[[str, str], None]

# Seconds of the request deadline kept back from the reranker for ranking and truncation.
RERANK_DEADLINE_MARGIN = 0.1


def _no_progress(msg_type: str, message: str) -> None:
    pass


class RecommendationEngine:
    """Single entry point from job description text to ranked assessments."""

    def __init__(self,
                 catalog_source: CatalogSource,
                 provider: EmbeddingProvider,
                 cache: Optional[EmbeddingCache] = None,
                 reranker: Optional[Reranker] = None,
                 preprocessor: Optional[TextPreprocessor] = None,
                 loader: Optional[CatalogLoader] = None,
                 max_results: Optional[int] = None,
                 max_results_ceiling: Optional[int] = None,
                 overfetch_factor: Optional[int] = None,
                 request_timeout: Optional[float] = None,
                 rerank_enabled: Optional[bool] = None,
                 wait_for_ready: Optional[bool] = None,
                 max_workers: Optional[int] = None):
        from .config import get_config_manager
        config = get_config_manager()

        if max_results is None:
            max_results = config.get('engine', 'max_results')
        if max_results_ceiling is None:
            max_results_ceiling = config.get('engine', 'max_results_ceiling')
        if overfetch_factor is None:
            overfetch_factor = config.get('engine', 'overfetch_factor')
        if request_timeout is None:
            request_timeout = config.get('engine', 'request_timeout')
        if rerank_enabled is None:
            rerank_enabled = config.get('reranker', 'enabled')
        if wait_for_ready is None:
            wait_for_ready = config.get('engine', 'wait_for_ready')
        if max_workers is None:
            max_workers = config.get('engine', 'worker_threads')
        if overfetch_factor < 1:
            raise ValueError(f"overfetch_factor must be at least 1, got {overfetch_factor}")

        self.catalog_source = catalog_source
        self.provider = provider
        self.cache = cache if cache is not None else EmbeddingCache(provider)
        self.reranker = reranker
        self.preprocessor = preprocessor if preprocessor is not None else TextPreprocessor()
        self.loader = loader if loader is not None else CatalogLoader()
        self.max_results = max_results
        self.max_results_ceiling = max_results_ceiling
        self.overfetch_factor = overfetch_factor
        self.request_timeout = request_timeout
        self.rerank_enabled = rerank_enabled
        self.wait_for_ready = wait_for_ready
        self.score_precision = config.get('engine', 'score_precision')

        self._state = EngineState.COLD
        self._store: Optional[VectorStore] = None
        self._init_lock = threading.Lock()
        self._last_error: Optional[str] = None
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="assessmatch")
        self._rerank_executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="assessmatch-rerank")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == EngineState.READY

    @property
    def store(self) -> Optional[VectorStore]:
        return self._store

    def _build_store(self, progress: ProgressCallback) -> VectorStore:
        progress('info', "Loading embedding model...")
        self.provider.warm_up()
        store = VectorStore()
        self.loader.load(self.catalog_source, store, self.cache, progress=progress)
        return store

    def _initialize_locked(self, progress: ProgressCallback) -> bool:
        if self._state == EngineState.READY:
            return False
        self._state = EngineState.LOADING
        try:
            store = self._build_store(progress)
        except Exception as e:
            self._state = EngineState.FAILED
            self._last_error = str(e)
            console.print(f"[red]Error initializing recommendation engine: {e}[/red]")
            raise
        self._store = store
        self._state = EngineState.READY
        self._last_error = None
        return True

    def initialize(self, progress: Optional[ProgressCallback] = None) -> bool:
        """
        Warm the embedding backend and load the catalog, once.

        Returns True if this call performed the initialization. Concurrent
        callers block until it finishes. A failed initialization is retried
        by the next call.
        """
        if self._state == EngineState.READY:
            return False
        with self._init_lock:
            return self._initialize_locked(progress or _no_progress)

    def _ensure_ready(self, progress: ProgressCallback) -> bool:
        if self._state == EngineState.READY:
            return False
        if self.wait_for_ready:
            with self._init_lock:
                return self._initialize_locked(progress)
        if not self._init_lock.acquire(blocking=False):
            raise ServiceNotReady("Assessment catalog is still loading, please retry shortly")
        try:
            return self._initialize_locked(progress)
        finally:
            self._init_lock.release()

    def reload(self, progress: Optional[ProgressCallback] = None) -> int:
        """Rebuild the store from the catalog source and swap it in whole."""
        progress = progress or _no_progress
        with self._init_lock:
            if self._state != EngineState.READY:
                self._initialize_locked(progress)
            else:
                self._store = self._build_store(progress)
            return len(self._store)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._rerank_executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _resolve_limit(self, requested: Optional[int]) -> int:
        if requested is None:
            requested = self.max_results
        if isinstance(requested, bool) or not isinstance(requested, int) or requested <= 0:
            raise InvalidInput(f"max_results must be a positive integer, got {requested!r}")
        return min(requested, self.max_results_ceiling)

    def recommend(self,
                  job_description: str,
                  options: Optional[RecommendationOptions] = None,
                  progress: Optional[ProgressCallback] = None) -> RecommendationResponse:
        """
        Recommend assessments for a job description.

        Raises InvalidInput, EmbeddingUnavailable, RecommendationTimeout, or
        ServiceNotReady when the engine is configured not to wait for a load
        in progress. A reranker that fails or runs past the request deadline
        falls back to similarity order.
        """
        options = options or RecommendationOptions()
        normalized = self.preprocessor.validate(job_description)
        limit = self._resolve_limit(options.max_results)
        timeout = options.timeout if options.timeout is not None else self.request_timeout

        started = time.perf_counter()
        deadline = started + timeout
        future = self._executor.submit(self._run, normalized, limit, options, deadline, progress or _no_progress)
        try:
            response = future.result(timeout=timeout)
        except FutureTimeout:
            # Work already running keeps going; shared computations still finish for other waiters.
            future.cancel()
            console.print(f"[yellow]Warning: recommendation abandoned after {timeout}s[/yellow]")
            raise RecommendationTimeout(f"Recommendation did not complete within {timeout} seconds") from None
        response.elapsed_ms = (time.perf_counter() - started) * 1000
        return response

    def _run(self,
             normalized: str,
             limit: int,
             options: RecommendationOptions,
             deadline: float,
             progress: ProgressCallback) -> RecommendationResponse:
        was_cold_start = self._ensure_ready(progress)
        store = self._store

        progress('info', "Finding best-matched assessments...")
        query_vector = self.cache.get_or_compute(normalized)

        predicate = None
        if options.filters is not None and not options.filters.is_empty:
            predicate = options.filters.matches
        shortlist = store.search_similar(query_vector, limit * self.overfetch_factor, predicate)

        use_rerank = self.rerank_enabled if options.rerank is None else options.rerank
        ranked, reranked = self._rerank(normalized, shortlist, use_rerank, deadline)

        ranked = ranked[:limit]
        for position, item in enumerate(ranked, start=1):
            item.rank = position
        return RecommendationResponse(
            recommendations=ranked,
            was_cold_start=was_cold_start,
            reranked=reranked,
            precision=self.score_precision,
        )

    def _rerank(self,
                query_text: str,
                shortlist: Sequence[SearchResult],
                use_rerank: bool,
                deadline: float) -> Tuple[List[RankedRecommendation], bool]:
        similarity_order = [RankedRecommendation(result=result) for result in shortlist]
        if not use_rerank or self.reranker is None or len(shortlist) < 2:
            return similarity_order, False

        budget = deadline - time.perf_counter() - RERANK_DEADLINE_MARGIN
        if budget <= 0:
            console.print("[yellow]Warning: no time left for reranking, using similarity order[/yellow]")
            return similarity_order, False

        future = self._rerank_executor.submit(self.reranker.rerank, query_text, list(shortlist))
        try:
            judged = future.result(timeout=budget)
        except FutureTimeout:
            future.cancel()
            console.print(f"[yellow]Warning: reranking exceeded {budget:.2f}s, using similarity order[/yellow]")
            return similarity_order, False
        except RerankUnavailable as e:
            console.print(f"[yellow]Warning: reranking unavailable, using similarity order ({e})[/yellow]")
            return similarity_order, False
        except Exception as e:
            console.print(f"[red]Error during reranking, using similarity order: {e}[/red]")
            return similarity_order, False

        by_id = {result.id: result for result in shortlist}
        ranked = []
        placed = set()
        for candidate_id, confidence in judged:
            if candidate_id in by_id and candidate_id not in placed:
                placed.add(candidate_id)
                ranked.append(RankedRecommendation(result=by_id[candidate_id], rerank_score=confidence))
        ranked.extend(item for item in similarity_order if item.id not in placed)
        if not placed:
            return similarity_order, False
        return ranked, True

    def get_status(self) -> Dict[str, Any]:
        store = self._store
        return {
            "state": self._state.value,
            "catalog_source": str(self.catalog_source),
            "catalog_size": len(store) if store is not None else 0,
            "embedding": self.provider.get_status(),
            "cache": self.cache.stats(),
            "reranker": self.reranker.name if (self.reranker is not None and self.rerank_enabled) else "none",
            "error": self._last_error,
        }


def get_recommendation_engine(catalog_path: Optional[str] = None,
                              embedding_backend: Optional[str] = None,
                              rerank_backend: Optional[str] = None) -> RecommendationEngine:
    """Build an engine from the current configuration."""
    from .config import get_config_manager
    from .embeddings import get_embedding_client
    from .reranking import get_reranker

    config = get_config_manager()
    if catalog_path is None:
        catalog_path = config.get('catalog', 'path')

    provider = get_embedding_client(embedding_backend)
    return RecommendationEngine(
        catalog_source=catalog_path,
        provider=provider,
        cache=EmbeddingCache(provider),
        reranker=get_reranker(rerank_backend),
    )
