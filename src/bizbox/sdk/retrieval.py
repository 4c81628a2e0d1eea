from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence


LOGGER = logging.getLogger("bizbox.retrieval")

DEFAULT_TOP_K = 5
DEFAULT_MIN_SIMILARITY = 0.6


class RetrievalProvider(Protocol):
    """Semantic search over a user's uploaded context; returns one formatted text block."""

    def retrieve(
        self,
        owner_id: str,
        query_text: str,
        top_k: int,
        min_similarity: float,
        scope_ids: Optional[Sequence[str]] = None,
    ) -> str:
        ...


def load_retrieved_context(
    provider: Optional[RetrievalProvider],
    owner_id: str,
    query_text: str,
    scope_ids: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Fetch the context block for a run. Empty results and provider errors yield ``None``."""

    if provider is None:
        return None
    try:
        block = provider.retrieve(
            owner_id,
            query_text,
            top_k=DEFAULT_TOP_K,
            min_similarity=DEFAULT_MIN_SIMILARITY,
            scope_ids=scope_ids,
        )
    except Exception as exc:
        LOGGER.warning("Context retrieval failed for owner %s: %s", owner_id, exc)
        return None
    if not block or not block.strip():
        return None
    LOGGER.info("Retrieved %d characters of user context", len(block))
    return block
