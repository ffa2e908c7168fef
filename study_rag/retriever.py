"""
Retriever - query-time side of the RAG system.
Embeds the question, ranks stored chunks and builds the prompt context.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .context import build_citations, format_retrieved_context
from .embeddings import EmbeddingProvider
from .exceptions import DimensionMismatchError, EmbeddingError, VectorStoreError
from .vector_store import DEFAULT_SIMILARITY_THRESHOLD, RetrievalResult, VectorStoreClient

logger = logging.getLogger(__name__)


@dataclass
class RAGResponse:
    """Context handed to the prompt layer for one chat query."""
    query: str
    context: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    num_chunks_used: int = 0
    confidence: float = 0.0  # Average similarity score
    error: Optional[str] = None

    def get_source_info(self) -> str:
        """Get formatted source information."""
        if not self.sources:
            return "No sources found."

        return "\n".join(
            f"{src['index']}. {src['resource_title']} (relevance: {src['score']:.2f})"
            for src in self.sources
        )


class Retriever:
    """
    Finds the chunks most relevant to a question.
    Only chunks scoring strictly above the similarity threshold are returned.
    """

    def __init__(
        self,
        embedding_provider: EmbeddingProvider,
        vector_store: VectorStoreClient,
        config_or_threshold: Union[float, Any] = DEFAULT_SIMILARITY_THRESHOLD,
        default_limit: int = 5,
        context_limit: int = 3
    ):
        """
        Initialize retriever.

        Args:
            embedding_provider: Provider used to embed queries
            vector_store: Store holding chunk embeddings
            config_or_threshold: RetrievalConfig object or similarity cutoff
            default_limit: Results returned by search when no limit is given
            context_limit: Results used for chat context when no limit is given
        """
        self.embedding_provider = embedding_provider
        self.vector_store = vector_store

        if hasattr(config_or_threshold, 'similarity_threshold'):
            self.similarity_threshold = config_or_threshold.similarity_threshold
            self.default_limit = config_or_threshold.default_limit
            self.context_limit = config_or_threshold.chat_limit
        else:
            self.similarity_threshold = config_or_threshold
            self.default_limit = default_limit
            self.context_limit = context_limit

    def search(
        self,
        query: str,
        scope_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[RetrievalResult]:
        """
        Retrieve chunks relevant to a query.

        Args:
            query: User question
            scope_id: Restrict the search to one module
            limit: Maximum number of results

        Returns:
            Results with score above the threshold, best first

        Raises:
            EmbeddingError, VectorStoreError, DimensionMismatchError
        """
        k = self.default_limit if limit is None else limit
        if k < 1:
            raise ValueError(f"limit must be at least 1, got {k}")

        if not query or not query.strip():
            logger.debug("Empty query, skipping retrieval")
            return []

        query_vector = self.embedding_provider.embed_query(query)

        candidates = self.vector_store.search(
            query_vector,
            scope_id=scope_id,
            limit=k,
            min_score=self.similarity_threshold
        )

        # Hard cutoff: no fallback to weaker matches
        results = [r for r in candidates if r.score > self.similarity_threshold]
        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:k]

        logger.info(
            f"Retrieved {len(results)} chunks for query '{query[:50]}'"
            + (f" in module {scope_id}" if scope_id else "")
        )
        return results

    def retrieve_context(
        self,
        query: str,
        scope_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> RAGResponse:
        """
        Retrieve and format context for a chat answer.

        Retrieval failures are logged and yield an empty context so the chat
        can still answer without grounding.
        """
        k = self.context_limit if limit is None else limit

        try:
            results = self.search(query, scope_id=scope_id, limit=k)
        except (EmbeddingError, VectorStoreError, DimensionMismatchError) as e:
            logger.error(f"Error retrieving for query '{query[:50]}', continuing without context: {e}")
            return RAGResponse(query=query, context="", error=str(e))

        if not results:
            return RAGResponse(query=query, context="")

        return RAGResponse(
            query=query,
            context=format_retrieved_context(results),
            sources=build_citations(results),
            num_chunks_used=len(results),
            confidence=sum(r.score for r in results) / len(results)
        )
