# Test configuration
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from study_rag.embeddings import EmbeddingProvider
from study_rag.vector_store import SQLiteVectorStore

DEFAULT_VECTOR = [0.2, 0.4, 0.4]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic provider: known texts map to preset vectors."""

    def __init__(self, vectors=None, default=None, fail=False, **kwargs):
        kwargs.setdefault("cache_enabled", False)
        super().__init__(model_name="fake-embedder", **kwargs)
        self.vectors = dict(vectors or {})
        self.default = list(default or DEFAULT_VECTOR)
        self.fail = fail
        self.fail_on = set()
        self.calls = []

    def _embed_texts(self, texts):
        self.calls.append(list(texts))
        if self.fail:
            raise RuntimeError("embedding service unavailable")
        for text in texts:
            if text in self.fail_on:
                raise RuntimeError(f"cannot embed {text!r}")
        return [self.vectors.get(text, self.default) for text in texts]


@pytest.fixture
def make_embedding_provider():
    """Factory for fake embedding providers."""
    return FakeEmbeddingProvider


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def vector_store(tmp_path):
    store = SQLiteVectorStore(db_path=str(tmp_path / "vectors.db"))
    yield store
    store.close()


@pytest.fixture
def sample_resources():
    """Provide sample study resources for testing."""
    from study_rag.vector_store import Resource

    return [
        Resource(
            id="res-hash",
            title="Algorithms Notes",
            content="Hash tables resolve collisions with chaining or open addressing.",
            module_id="algo-101"
        ),
        Resource(
            id="res-dp",
            title="Dynamic Programming",
            content="Dynamic programming stores answers to overlapping subproblems.",
            module_id="algo-101"
        ),
    ]
