"""
Formatting of retrieved chunks for prompt injection.
"""
from typing import Any, Dict, List, Sequence

from .vector_store import RetrievalResult

CONTEXT_HEADER = "Here is relevant information from your resources:"


def format_retrieved_context(results: Sequence[RetrievalResult]) -> str:
    """
    Format retrieved chunks for inclusion in a prompt.

    Args:
        results: Ranked retrieval results

    Returns:
        Citation-numbered context block, or "" when there are no results
    """
    if not results:
        return ""

    formatted_chunks = [
        f"[{index}] From {result.resource_title}:\n{result.content}"
        for index, result in enumerate(results, 1)
    ]

    return f"{CONTEXT_HEADER}\n\n" + "\n\n".join(formatted_chunks)


def build_citations(results: Sequence[RetrievalResult]) -> List[Dict[str, Any]]:
    """Citation metadata matching the [i] markers of format_retrieved_context."""
    return [
        {
            "index": index,
            "resource_id": result.resource_id,
            "resource_title": result.resource_title,
            "resource_type": result.resource_type,
            "chunk_id": result.chunk_id,
            "score": result.score,
            "preview": result.content[:100] + "..." if len(result.content) > 100 else result.content
        }
        for index, result in enumerate(results, 1)
    ]
