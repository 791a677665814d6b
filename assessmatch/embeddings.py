"""
Embedding providers: a common contract over local (Ollama), remote (OpenAI)
and offline (feature hashing) backends.

Every provider starts COLD. The first embed call (or an explicit warm_up)
performs the one-time initialization; the state then stays WARM for the
lifetime of the process so callers can tell a slow first call from a fast one.
"""

import hashlib
import os
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import ollama
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from .config import get_config_manager
from .errors import EmbeddingUnavailable
from .models import ProviderState

console = Console(stderr=True)

EMBEDDING_BACKENDS = ("ollama", "openai", "hashing")


def as_embedding(values: Any) -> np.ndarray:
    """Convert backend output to an immutable float32 vector."""
    vector = np.array(values, dtype=np.float32).reshape(-1)
    vector.flags.writeable = False
    return vector


class EmbeddingProvider(ABC):
    """Converts text to fixed-length vectors."""

    def __init__(self, max_retries: int = 0, retry_backoff: float = 0.0):
        self.max_retries = max(0, int(max_retries))
        self.retry_backoff = max(0.0, float(retry_backoff))
        self._state = ProviderState.COLD
        self._warm_lock = threading.Lock()
        self._dimension: Optional[int] = None
        self._last_error: Optional[str] = None

    @property
    @abstractmethod
    def identity(self) -> str:
        """Backend and model name; vectors from different identities never mix."""

    @abstractmethod
    def _load(self) -> None:
        """One-time initialization (client creation, model download)."""

    @abstractmethod
    def _embed_batch(self, texts: List[str]) -> Sequence[Any]:
        """Backend call returning one raw vector per input text."""

    @property
    def state(self) -> ProviderState:
        return self._state

    @property
    def is_warm(self) -> bool:
        return self._state == ProviderState.WARM

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def warm_up(self) -> bool:
        """Initialize the backend once. Returns True if this call did the work."""
        if self._state == ProviderState.WARM:
            return False
        with self._warm_lock:
            if self._state == ProviderState.WARM:
                return False
            try:
                self._load()
            except EmbeddingUnavailable as e:
                self._state = ProviderState.FAILED
                self._last_error = str(e)
                raise
            except Exception as e:
                self._state = ProviderState.FAILED
                self._last_error = str(e)
                raise EmbeddingUnavailable(f"Failed to initialize {self.identity}: {e}") from e
            self._state = ProviderState.WARM
            self._last_error = None
            return True

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[np.ndarray]:
        """Embed several texts, preserving input order."""
        texts = list(texts)
        if not texts:
            return []
        self.warm_up()

        raw = self._with_retries(texts)
        if len(raw) != len(texts):
            raise EmbeddingUnavailable(
                f"{self.identity} returned {len(raw)} embeddings for {len(texts)} texts"
            )

        vectors = [as_embedding(values) for values in raw]
        for vector in vectors:
            self._check_dimension(vector)
        return vectors

    def _with_retries(self, texts: List[str]) -> Sequence[Any]:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                return self._embed_batch(texts)
            except EmbeddingUnavailable:
                raise
            except Exception as e:
                self._last_error = str(e)
                if attempt + 1 >= attempts:
                    raise EmbeddingUnavailable(
                        f"{self.identity} failed after {attempts} attempt(s): {e}"
                    ) from e
                delay = self.retry_backoff * (2 ** attempt)
                console.print(f"[yellow]Embedding request failed ({e}), retrying in {delay:.1f}s[/yellow]")
                if delay:
                    time.sleep(delay)

    def _check_dimension(self, vector: np.ndarray) -> None:
        if vector.size == 0:
            raise EmbeddingUnavailable(f"{self.identity} returned an empty embedding")
        if self._dimension is None:
            self._dimension = int(vector.size)
        elif vector.size != self._dimension:
            raise EmbeddingUnavailable(
                f"{self.identity} returned dimension {vector.size}, expected {self._dimension}"
            )

    def get_status(self) -> Dict[str, Any]:
        return {
            "backend": self.identity,
            "state": self._state.value,
            "dimension": self._dimension,
            "error": self._last_error,
        }


class OllamaEmbeddingClient(EmbeddingProvider):
    """Local inference through an Ollama server."""

    def __init__(self,
                 host: Optional[str] = None,
                 model: Optional[str] = None,
                 timeout: Optional[int] = None,
                 max_retries: Optional[int] = None,
                 retry_backoff: Optional[float] = None):
        config = get_config_manager()

        if host is None:
            host = f"http://{config.get('ollama', 'host')}:{config.get('ollama', 'port')}"
        if model is None:
            model = config.get('ollama', 'model')
        if timeout is None:
            timeout = config.get('ollama', 'timeout')
        if max_retries is None:
            max_retries = config.get('ollama', 'max_retries')
        if retry_backoff is None:
            retry_backoff = config.get('embedding', 'retry_backoff')
        super().__init__(max_retries=max_retries, retry_backoff=retry_backoff)

        self.host = host
        self.model = model
        self.timeout = timeout
        self.client = ollama.Client(host=host, timeout=timeout)

    @property
    def identity(self) -> str:
        return f"ollama:{self.model}"

    def _load(self) -> None:
        """Ensure the embedding model is available, pulling it if needed."""
        models = self.client.list()
        model_names = [model.get('name', model.get('model', '')) for model in models.get('models', [])]

        if self.model in model_names or f"{self.model}:latest" in model_names:
            console.print(f"[green]✓ Model {self.model} is ready[/green]")
            return

        console.print(f"[yellow]Pulling model {self.model}... This may take a while.[/yellow]")
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
        ) as progress:
            task = progress.add_task(f"Downloading {self.model}", total=None)
            self.client.pull(self.model)
            progress.update(task, description="Model downloaded successfully")
        console.print(f"[green]✓ Model {self.model} is now ready[/green]")

    def _embed_batch(self, texts: List[str]) -> Sequence[Any]:
        response = self.client.embed(model=self.model, input=texts)
        embeddings = response['embeddings']
        if not embeddings:
            raise EmbeddingUnavailable("No embedding returned from Ollama")
        return embeddings

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({"host": self.host, "model": self.model})
        return status


class OpenAIEmbeddingClient(EmbeddingProvider):
    """Remote embeddings through the OpenAI API."""

    def __init__(self,
                 api_key: Optional[str] = None,
                 model: Optional[str] = None,
                 timeout: Optional[float] = None,
                 max_retries: Optional[int] = None,
                 retry_backoff: Optional[float] = None):
        config = get_config_manager()

        if model is None:
            model = config.get('openai', 'embedding_model')
        if timeout is None:
            timeout = config.get('openai', 'timeout')
        if max_retries is None:
            max_retries = config.get('openai', 'max_retries')
        if retry_backoff is None:
            retry_backoff = config.get('embedding', 'retry_backoff')
        super().__init__(max_retries=max_retries, retry_backoff=retry_backoff)

        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.model = model
        self.timeout = timeout
        self.client = None

    @property
    def identity(self) -> str:
        return f"openai:{self.model}"

    def _load(self) -> None:
        if not self.api_key:
            raise EmbeddingUnavailable("Missing OPENAI_API_KEY")
        from openai import OpenAI
        # Retries are handled by the provider so attempts stay bounded in one place.
        self.client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)

    def _embed_batch(self, texts: List[str]) -> Sequence[Any]:
        response = self.client.embeddings.create(model=self.model, input=texts)
        data = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in data]

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({"model": self.model, "api_key_set": bool(self.api_key)})
        return status


class HashingEmbeddingClient(EmbeddingProvider):
    """
    Signed feature hashing of word unigrams and bigrams.

    No model and no network: useful for development and smoke tests. Vectors
    are stable across processes because buckets come from SHA-1, not hash().
    """

    _TOKEN = re.compile(r"[a-z0-9]+")
    BIGRAM_WEIGHT = 0.5

    def __init__(self, dimension: Optional[int] = None):
        if dimension is None:
            dimension = get_config_manager().get('embedding', 'dimension')
        if dimension <= 0:
            raise ValueError(f"dimension must be positive, got {dimension}")
        super().__init__()
        self.n_features = int(dimension)

    @property
    def identity(self) -> str:
        return f"hashing:{self.n_features}"

    def _load(self) -> None:
        pass

    def _bucket(self, feature: str):
        digest = hashlib.sha1(feature.encode("utf-8")).digest()
        index = int.from_bytes(digest[:4], "big") % self.n_features
        sign = 1.0 if digest[4] & 1 else -1.0
        return index, sign

    def _vectorize(self, text: str) -> np.ndarray:
        vector = np.zeros(self.n_features, dtype=np.float32)
        tokens = self._TOKEN.findall(text.lower())
        for token in tokens:
            index, sign = self._bucket(token)
            vector[index] += sign
        for left, right in zip(tokens, tokens[1:]):
            index, sign = self._bucket(f"{left} {right}")
            vector[index] += sign * self.BIGRAM_WEIGHT
        norm = np.linalg.norm(vector)
        return vector / norm if norm > 0 else vector

    def _embed_batch(self, texts: List[str]) -> Sequence[Any]:
        return [self._vectorize(text) for text in texts]


def get_embedding_client(backend: Optional[str] = None, **kwargs) -> EmbeddingProvider:
    """Get an embedding provider for the configured (or given) backend."""
    if backend is None:
        backend = get_config_manager().get('embedding', 'backend')

    if backend == "ollama":
        return OllamaEmbeddingClient(**kwargs)
    if backend == "openai":
        return OpenAIEmbeddingClient(**kwargs)
    if backend == "hashing":
        return HashingEmbeddingClient(**kwargs)
    raise ValueError(f"Unknown embedding backend: {backend}")


def test_embedding_client(text: str = "Numerical reasoning for data analysts.",
                          backend: Optional[str] = None) -> bool:
    """Smoke-test the configured embedding backend."""
    console.print("[cyan]Testing embedding client...[/cyan]")

    try:
        client = get_embedding_client(backend)
        client.warm_up()
        console.print(f"[green]✓ {client.identity} initialized[/green]")
        embedding = client.embed(text)
    except EmbeddingUnavailable as e:
        console.print(f"[red]✗ Embedding backend unavailable: {e}[/red]")
        return False

    console.print(f"[green]✓ Generated embedding with shape: {embedding.shape}[/green]")
    console.print(f"[green]✓ Embedding client test passed![/green]")
    return True
