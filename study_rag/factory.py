"""
Factory functions wiring concrete RAG components from an AppConfig.
"""
import logging
from dataclasses import dataclass
from typing import Any

from .chunker import TextChunker
from .document_loader import DocumentLoader
from .embeddings import EmbeddingProvider, OllamaEmbeddingProvider, SentenceTransformerEmbeddingProvider
from .ingestion import ResourceIngestor
from .retriever import Retriever
from .vector_store import SQLiteVectorStore

logger = logging.getLogger(__name__)


@dataclass
class RAGComponents:
    """Components sharing one embedding provider and one vector store."""
    document_loader: DocumentLoader
    chunker: TextChunker
    embedding_provider: EmbeddingProvider
    vector_store: SQLiteVectorStore
    retriever: Retriever
    ingestor: ResourceIngestor

    def close(self):
        self.vector_store.close()
        self.embedding_provider.clear_cache()


def create_embedding_provider(embedding_config: Any) -> EmbeddingProvider:
    """
    Create the embedding provider named by the configuration.

    Args:
        embedding_config: EmbeddingConfig object

    Returns:
        EmbeddingProvider instance
    """
    provider = embedding_config.provider

    if provider == "sentence-transformers":
        return SentenceTransformerEmbeddingProvider(
            model_name=embedding_config.model_name,
            device=embedding_config.device,
            batch_size=embedding_config.batch_size,
            cache_enabled=embedding_config.cache_enabled
        )

    if provider == "ollama":
        return OllamaEmbeddingProvider(
            base_url=embedding_config.ollama_base_url,
            model_name=embedding_config.ollama_model,
            dimension=embedding_config.dimension,
            timeout=embedding_config.timeout,
            max_retries=embedding_config.max_retries,
            retry_delay=embedding_config.retry_delay,
            batch_size=embedding_config.batch_size,
            max_workers=embedding_config.max_workers,
            cache_enabled=embedding_config.cache_enabled
        )

    raise ValueError(f"Unsupported embedding provider: {provider}")


def create_components(app_config: Any) -> RAGComponents:
    """Build loader, chunker, provider, store, retriever and ingestor."""
    embedding_provider = create_embedding_provider(app_config.embedding)

    vector_store = SQLiteVectorStore(
        db_path=app_config.vector_store.db_path,
        timeout=app_config.vector_store.timeout
    )

    document_loader = DocumentLoader(app_config.loader)
    chunker = TextChunker(app_config.chunking)

    retriever = Retriever(
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        config_or_threshold=app_config.retrieval
    )

    ingestor = ResourceIngestor(
        document_loader=document_loader,
        chunker=chunker,
        embedding_provider=embedding_provider,
        vector_store=vector_store
    )

    logger.info(f"RAG components created ({app_config.embedding.provider} embeddings)")

    return RAGComponents(
        document_loader=document_loader,
        chunker=chunker,
        embedding_provider=embedding_provider,
        vector_store=vector_store,
        retriever=retriever,
        ingestor=ingestor
    )
