"""
Study-resource RAG (Retrieval-Augmented Generation) core.
"""
from .chunker import TextChunker, TextChunk, split_into_chunks
from .context import build_citations, format_retrieved_context
from .document_loader import Document, DocumentLoader, FileType, get_file_type
from .embeddings import (
    EmbeddingProvider,
    EmbeddingResult,
    OllamaEmbeddingProvider,
    SentenceTransformerEmbeddingProvider,
    cosine_similarity,
)
from .exceptions import (
    ChunkingError,
    DimensionMismatchError,
    DocumentLoadError,
    EmbeddingError,
    RAGError,
    UnsupportedFormatError,
    VectorStoreError,
)
from .factory import RAGComponents, create_components, create_embedding_provider
from .ingestion import IngestionResult, IngestionStatus, ResourceIngestor
from .retriever import RAGResponse, Retriever
from .vector_store import (
    ChunkRecord,
    Resource,
    ResourceStatus,
    RetrievalResult,
    SQLiteVectorStore,
    VectorStoreClient,
)

__all__ = [
    'TextChunker',
    'TextChunk',
    'split_into_chunks',
    'build_citations',
    'format_retrieved_context',
    'Document',
    'DocumentLoader',
    'FileType',
    'get_file_type',
    'EmbeddingProvider',
    'EmbeddingResult',
    'OllamaEmbeddingProvider',
    'SentenceTransformerEmbeddingProvider',
    'cosine_similarity',
    'ChunkingError',
    'DimensionMismatchError',
    'DocumentLoadError',
    'EmbeddingError',
    'RAGError',
    'UnsupportedFormatError',
    'VectorStoreError',
    'RAGComponents',
    'create_components',
    'create_embedding_provider',
    'IngestionResult',
    'IngestionStatus',
    'ResourceIngestor',
    'RAGResponse',
    'Retriever',
    'ChunkRecord',
    'Resource',
    'ResourceStatus',
    'RetrievalResult',
    'SQLiteVectorStore',
    'VectorStoreClient',
]
