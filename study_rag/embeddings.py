"""
Embedding provider module for turning chunk and query text into vectors.
Supports a local sentence-transformers model and an Ollama HTTP endpoint.
"""
import hashlib
import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
import requests

from .exceptions import DimensionMismatchError, EmbeddingError

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    """Result of an embedding operation."""
    text: str
    embedding: np.ndarray
    model: str
    dimension: int


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec_a: First vector
        vec_b: Second vector

    Returns:
        Similarity in [-1, 1]; exactly 0.0 if either vector has zero magnitude

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    a = np.asarray(vec_a, dtype=np.float64).ravel()
    b = np.asarray(vec_b, dtype=np.float64).ravel()

    if a.shape[0] != b.shape[0]:
        raise DimensionMismatchError(a.shape[0], b.shape[0])

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))


class EmbeddingProvider(ABC):
    """
    Base class for embedding providers.

    Subclasses implement `_embed_texts` for one batch. This class handles
    caching, batching, concurrent fan-out and response validation. A batch
    failure fails the whole `embed_many` call.
    """

    def __init__(
        self,
        model_name: str,
        dimension: Optional[int] = None,
        batch_size: int = 32,
        max_workers: int = 1,
        cache_enabled: bool = True
    ):
        self.model_name = model_name
        self.batch_size = max(1, batch_size)
        self.max_workers = max(1, max_workers)
        self.cache_enabled = cache_enabled

        self._dimension = dimension
        self._dimension_lock = threading.Lock()
        self._cache = {} if cache_enabled else None
        self._cache_lock = threading.Lock()

    @property
    def dimension(self) -> Optional[int]:
        """Embedding dimension, or None until the model has answered once."""
        return self._dimension

    @abstractmethod
    def _embed_texts(self, texts: List[str]) -> Sequence[Sequence[float]]:
        """Call the underlying model for one batch of texts."""

    def embed(self, text: str) -> EmbeddingResult:
        """Generate embedding for a single text."""
        return self.embed_many([text])[0]

    def embed_query(self, query: str) -> np.ndarray:
        """
        Generate embedding for a query.

        Args:
            query: Query text

        Returns:
            Embedding as numpy array
        """
        return self.embed(query).embedding

    def embed_many(self, texts: List[str]) -> List[EmbeddingResult]:
        """
        Generate embeddings for multiple texts.

        Uncached texts are split into batches which may run concurrently.
        Either every text gets a vector or EmbeddingError is raised.

        Args:
            texts: Texts to embed

        Returns:
            EmbeddingResult objects in input order
        """
        if not texts:
            return []

        results: List[Optional[EmbeddingResult]] = [None] * len(texts)
        pending = []

        for i, text in enumerate(texts):
            cached = self._cache_get(text)
            if cached is not None:
                results[i] = cached
            else:
                pending.append(i)

        if pending:
            batches = [
                pending[i:i + self.batch_size]
                for i in range(0, len(pending), self.batch_size)
            ]
            logger.debug(
                f"Embedding {len(pending)} texts in {len(batches)} batches with {self.model_name}"
            )

            for indices, vectors in self._run_batches(texts, batches):
                for idx, vector in zip(indices, vectors):
                    result = EmbeddingResult(
                        text=texts[idx],
                        embedding=vector,
                        model=self.model_name,
                        dimension=vector.shape[0]
                    )
                    self._cache_set(texts[idx], result)
                    results[idx] = result

        return results

    def _run_batches(
        self,
        texts: List[str],
        batches: List[List[int]]
    ) -> List[Tuple[List[int], List[np.ndarray]]]:
        """Embed all batches, fanning out when more than one worker is allowed."""
        if self.max_workers == 1 or len(batches) == 1:
            return [
                (indices, self._embed_batch([texts[i] for i in indices]))
                for indices in batches
            ]

        completed = []
        workers = min(self.max_workers, len(batches))

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self._embed_batch, [texts[i] for i in indices]): indices
                for indices in batches
            }
            try:
                for future in as_completed(futures):
                    completed.append((futures[future], future.result()))
            except Exception:
                for future in futures:
                    future.cancel()
                raise

        return completed

    def _embed_batch(self, batch: List[str]) -> List[np.ndarray]:
        """Embed one batch and validate the model response."""
        try:
            raw_vectors = self._embed_texts(batch)
            vectors = [np.asarray(v, dtype=np.float32) for v in raw_vectors]
        except EmbeddingError:
            raise
        except Exception as e:
            raise EmbeddingError(
                f"Embedding model {self.model_name} failed: {e}", cause=e
            ) from e

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding model {self.model_name} returned {len(vectors)} "
                f"vectors for {len(batch)} texts"
            )

        for vector in vectors:
            self._check_dimension(vector)

        return vectors

    def _check_dimension(self, vector: np.ndarray):
        if vector.ndim != 1 or vector.shape[0] == 0:
            raise EmbeddingError(
                f"Embedding model {self.model_name} returned a malformed vector "
                f"with shape {vector.shape}"
            )

        with self._dimension_lock:
            if self._dimension is None:
                self._dimension = vector.shape[0]
                logger.info(f"Embedding dimension for {self.model_name}: {self._dimension}")

        if vector.shape[0] != self._dimension:
            raise EmbeddingError(
                f"Embedding model {self.model_name} returned dimension "
                f"{vector.shape[0]}, expected {self._dimension}"
            )

    def _get_cache_key(self, text: str) -> str:
        """Generate cache key for text."""
        return hashlib.md5(
            (self.model_name + text).encode()
        ).hexdigest()

    def _cache_get(self, text: str) -> Optional[EmbeddingResult]:
        if self._cache is None:
            return None
        with self._cache_lock:
            return self._cache.get(self._get_cache_key(text))

    def _cache_set(self, text: str, result: EmbeddingResult):
        if self._cache is None:
            return
        with self._cache_lock:
            self._cache[self._get_cache_key(text)] = result

    def clear_cache(self):
        """Clear the embedding cache."""
        if self._cache is not None:
            with self._cache_lock:
                self._cache.clear()
            logger.info("Embedding cache cleared")

    def get_cache_stats(self) -> dict:
        """Get cache statistics."""
        if self._cache is None:
            return {"enabled": False}

        return {
            "enabled": True,
            "size": len(self._cache),
            "model": self.model_name
        }


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """
    Text embedding provider using a local sentence-transformers model.
    The model is loaded lazily on first use.
    """

    # Model dimension lookup
    MODEL_DIMENSIONS = {
        "sentence-transformers/all-MiniLM-L6-v2": 384,
        "sentence-transformers/all-mpnet-base-v2": 768,
        "sentence-transformers/multi-qa-mpnet-base-dot-v1": 768,
        "BAAI/bge-small-en-v1.5": 384,
        "BAAI/bge-base-en-v1.5": 768,
    }

    def __init__(
        self,
        model_name: str = "sentence-transformers/all-mpnet-base-v2",
        device: str = "cpu",
        normalize: bool = True,
        batch_size: int = 32,
        cache_enabled: bool = True
    ):
        """
        Initialize embedding provider.

        Args:
            model_name: Hugging Face model identifier
            device: Device to run model on ('cpu' or 'cuda')
            normalize: Whether to normalize embeddings
            batch_size: Texts per encode call
            cache_enabled: Whether to cache embeddings
        """
        # Encode calls are serialized under _model_lock, so fan-out would only queue
        super().__init__(
            model_name=model_name,
            dimension=self.MODEL_DIMENSIONS.get(model_name),
            batch_size=batch_size,
            max_workers=1,
            cache_enabled=cache_enabled
        )
        self.device = device
        self.normalize = normalize
        self._model = None
        self._model_lock = threading.RLock()

        logger.info(f"Initialized SentenceTransformerEmbeddingProvider with {model_name}")

    @property
    def model(self):
        """Lazy load the model."""
        if self._model is None:
            with self._model_lock:
                # Another caller may have loaded it while we waited
                if self._model is None:
                    self._load_model()
        return self._model

    def _load_model(self):
        """Load the sentence-transformer model."""
        try:
            from sentence_transformers import SentenceTransformer

            logger.info(f"Loading embedding model: {self.model_name}")
            model = SentenceTransformer(
                self.model_name,
                device=self.device
            )

            # Update dimension from actual model
            self._dimension = model.get_sentence_embedding_dimension()
            self._model = model
            logger.info(f"Model loaded. Embedding dimension: {self._dimension}")

        except ImportError as e:
            logger.error("sentence-transformers not installed")
            raise EmbeddingError(
                "Please install sentence-transformers: pip install sentence-transformers",
                cause=e
            ) from e
        except Exception as e:
            logger.error(f"Error loading model: {e}")
            raise EmbeddingError(f"Could not load {self.model_name}: {e}", cause=e) from e

    def _embed_texts(self, texts: List[str]) -> np.ndarray:
        model = self.model
        with self._model_lock:
            return model.encode(
                texts,
                convert_to_numpy=True,
                normalize_embeddings=self.normalize,
                batch_size=self.batch_size,
                show_progress_bar=False
            )


class OllamaEmbeddingProvider(EmbeddingProvider):
    """
    Embedding provider backed by the Ollama /api/embed endpoint.
    Transient failures are retried with exponential backoff.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model_name: str = "nomic-embed-text",
        dimension: Optional[int] = None,
        timeout: float = 30,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        batch_size: int = 16,
        max_workers: int = 4,
        cache_enabled: bool = True,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize Ollama embedding provider.

        Args:
            base_url: Ollama API base URL
            model_name: Ollama embedding model name
            dimension: Expected dimension (learned from the first response if None)
            timeout: Request timeout in seconds
            max_retries: Maximum attempts per batch
            retry_delay: Initial delay between attempts, doubled each retry
            batch_size: Texts per request
            max_workers: Concurrent requests per embed_many call
            cache_enabled: Whether to cache embeddings
            session: Optional requests session
        """
        super().__init__(
            model_name=model_name,
            dimension=dimension,
            batch_size=batch_size,
            max_workers=max_workers,
            cache_enabled=cache_enabled
        )
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._session = session or requests.Session()

        logger.info(f"Initialized OllamaEmbeddingProvider ({model_name} at {self.base_url})")

    def _embed_texts(self, texts: List[str]) -> List[List[float]]:
        url = f"{self.base_url}/api/embed"
        last_error: Optional[EmbeddingError] = None

        for attempt in range(self.max_retries):
            try:
                response = self._session.post(
                    url,
                    json={"model": self.model_name, "input": texts},
                    timeout=self.timeout
                )
            except requests.Timeout as e:
                last_error = EmbeddingError(
                    f"Ollama embedding request timed out after {self.timeout}s",
                    cause=e,
                    transient=True
                )
            except requests.ConnectionError as e:
                last_error = EmbeddingError(
                    f"Could not reach Ollama at {self.base_url}: {e}",
                    cause=e,
                    transient=True
                )
            else:
                if response.status_code == 200:
                    return self._parse_response(response)

                if response.status_code == 429 or response.status_code >= 500:
                    last_error = EmbeddingError(
                        f"Ollama embedding error: HTTP {response.status_code}",
                        transient=True
                    )
                else:
                    raise EmbeddingError(
                        f"Ollama rejected embedding request: HTTP {response.status_code} "
                        f"{response.text[:200]}"
                    )

            logger.warning(f"Attempt {attempt + 1}/{self.max_retries}: {last_error.message}")

            if attempt < self.max_retries - 1:
                time.sleep(self.retry_delay * (2 ** attempt))

        raise last_error

    def _parse_response(self, response: requests.Response) -> List[List[float]]:
        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingError("Ollama returned a non-JSON embedding response", cause=e) from e

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list):
            raise EmbeddingError("Ollama response has no 'embeddings' list")

        return embeddings
