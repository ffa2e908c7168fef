"""
Exception hierarchy for the RAG core.
Ingestion-path errors abort indexing; query-path errors are degraded by the retriever.
"""
from typing import Optional


class RAGError(Exception):
    """Base exception for all RAG core errors."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        transient: bool = False
    ):
        self.message = message
        self.cause = cause
        self.transient = transient
        super().__init__(message)


class ChunkingError(RAGError):
    """Raised when text cannot be split into chunks."""


class EmbeddingError(RAGError):
    """Raised when the embedding model call fails or returns malformed data."""


class VectorStoreError(RAGError):
    """Raised when the vector store query or connection fails."""


class DocumentLoadError(RAGError):
    """Raised when a document cannot be downloaded or its text extracted."""


class UnsupportedFormatError(DocumentLoadError):
    """Raised when a document format has no text extractor."""

    def __init__(self, file_type: str, source: str, reason: Optional[str] = None):
        self.file_type = file_type
        self.source = source
        message = f"Unsupported format '{file_type}' for {source}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DimensionMismatchError(RAGError, ValueError):
    """Raised when two vectors that must be compared disagree in length."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}"
        )
