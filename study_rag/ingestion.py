"""
Resource ingestion - load, chunk, embed and index one resource at a time.
A resource ends up either fully indexed or with no chunks at all.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .chunker import TextChunker
from .document_loader import DocumentLoader
from .embeddings import EmbeddingProvider
from .exceptions import ChunkingError, DocumentLoadError, RAGError, VectorStoreError
from .vector_store import ChunkRecord, Resource, ResourceStatus, VectorStoreClient

logger = logging.getLogger(__name__)


class IngestionStatus(Enum):
    """Steps of resource ingestion; FAILED is reachable from any step."""
    UPLOADED = "uploaded"
    TEXT_EXTRACTED = "text_extracted"
    CHUNKED = "chunked"
    EMBEDDED = "embedded"
    INDEXED = "indexed"
    FAILED = "failed"


@dataclass
class IngestionResult:
    """Outcome of processing one resource."""
    resource_id: str
    status: IngestionStatus = IngestionStatus.UPLOADED
    num_chunks: int = 0
    dimension: Optional[int] = None
    error: Optional[str] = None
    history: List[IngestionStatus] = field(
        default_factory=lambda: [IngestionStatus.UPLOADED]
    )

    def advance(self, status: IngestionStatus):
        self.status = status
        self.history.append(status)

    @property
    def succeeded(self) -> bool:
        return self.status == IngestionStatus.INDEXED


class ResourceIngestor:
    """
    Orchestrates document loading, chunking, embedding and indexing.
    Errors are raised to the caller after the resource is marked failed.
    """

    def __init__(
        self,
        document_loader: DocumentLoader,
        chunker: TextChunker,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStoreClient
    ):
        self.document_loader = document_loader
        self.chunker = chunker
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store

    def process_resource(self, resource: Resource) -> IngestionResult:
        """
        Index a resource, replacing any chunks it already has.

        Args:
            resource: Resource with a file_url or inline content

        Returns:
            IngestionResult with status INDEXED

        Raises:
            DocumentLoadError, ChunkingError, EmbeddingError, VectorStoreError
        """
        result = IngestionResult(resource_id=resource.id)
        self.vector_store.upsert_resource(resource)

        try:
            text = self._load_text(resource)
            self._advance(result, IngestionStatus.TEXT_EXTRACTED)

            chunks = self.chunker.chunk_document(
                content=text,
                resource_id=resource.id,
                source=resource.source,
                metadata={'resource_title': resource.title}
            )
            if not chunks:
                raise ChunkingError(f"Resource {resource.id} has no text to index")
            self._advance(result, IngestionStatus.CHUNKED)

            # All-or-nothing: raises if any chunk fails to embed
            embeddings = self.embedding_provider.embed_many([c.content for c in chunks])
            self._advance(result, IngestionStatus.EMBEDDED)

            records = [
                ChunkRecord(
                    chunk_id=chunk.chunk_id,
                    resource_id=resource.id,
                    ordinal=chunk.ordinal,
                    content=chunk.content,
                    embedding=emb.embedding,
                    metadata=chunk.metadata
                )
                for chunk, emb in zip(chunks, embeddings)
            ]

            result.num_chunks = self.vector_store.replace_resource_chunks(resource.id, records)
            result.dimension = len(records[0].embedding)
            self._advance(result, IngestionStatus.INDEXED)

        except Exception as e:
            failed_at = result.status
            result.advance(IngestionStatus.FAILED)
            result.error = str(e)
            logger.error(f"Error processing resource {resource.id} after {failed_at.value}: {e}")
            self._discard_chunks(resource.id)
            raise

        logger.info(f"Indexed resource: {resource.title} ({result.num_chunks} chunks)")
        return result

    def process_pending_resources(self) -> int:
        """
        Process every stored resource that is not indexed yet.

        Returns:
            Number of resources indexed successfully
        """
        resources = self.vector_store.list_unindexed_resources()
        processed_count = 0

        for resource in resources:
            try:
                self.process_resource(resource)
                processed_count += 1
            except RAGError as e:
                logger.error(f"Failed to process resource {resource.id}: {e}")

        logger.info(f"Processed {processed_count}/{len(resources)} pending resources")
        return processed_count

    def remove_resource(self, resource_id: str) -> bool:
        """Remove a resource and all of its chunks."""
        return self.vector_store.delete_resource(resource_id)

    def _load_text(self, resource: Resource) -> str:
        if resource.file_url:
            return self.document_loader.load_document_content(
                resource.file_url, resource.mime_type
            )
        if resource.content is not None:
            return resource.content
        raise DocumentLoadError(f"Resource {resource.id} has no file URL or content")

    def _advance(self, result: IngestionResult, status: IngestionStatus):
        logger.debug(f"Resource {result.resource_id}: {result.status.value} -> {status.value}")
        result.advance(status)

    def _discard_chunks(self, resource_id: str):
        """Leave a failed resource with no chunks visible to retrieval."""
        try:
            self.vector_store.delete_resource_chunks(resource_id, ResourceStatus.FAILED)
        except VectorStoreError as cleanup_error:
            logger.error(f"Could not clear chunks of failed resource {resource_id}: {cleanup_error}")
