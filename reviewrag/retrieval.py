"""Context-budget packing of retrieved reviews.

ContextBudgetAssembler over-fetches ``2 * max_candidates`` ranked candidates from the
VectorSearchService and greedily packs them, best first, into a context bounded by a
candidate count and a character budget (title + content length per review). A candidate
that would overflow the character budget is skipped and the scan continues, so a long
review never blocks shorter, lower-ranked ones. This is best-effort packing, not an
optimal knapsack.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from reviewrag.embedding import EmbeddingProviderId
from reviewrag.log import get_logger
from reviewrag.search import SimilarityCandidate, VectorSearchService, mean_similarity
from reviewrag.store import SearchFilters

logger = get_logger(__name__)

OVERFETCH_FACTOR = 2


class CutoffReason(str, Enum):
    MAX_CANDIDATES = "max_candidates"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ContextBudget:
    max_candidates: int
    max_characters: int


@dataclass
class RetrievalContext:
    """Reviews selected for one query under a budget.

    Attributes:
        query: The query text the candidates were retrieved for.
        candidates: Accepted candidates in descending-similarity order.
        avg_similarity: Mean similarity of ``candidates``; 0.0 when empty.
        cutoff_reason: Why packing stopped.
        rejected_over_budget: Candidates skipped because they did not fit.
        total_characters: Title + content characters of the accepted candidates.
    """
    query: str
    candidates: List[SimilarityCandidate] = field(default_factory=list)
    avg_similarity: float = 0.0
    cutoff_reason: CutoffReason = CutoffReason.EXHAUSTED
    rejected_over_budget: int = 0
    total_characters: int = 0

    @property
    def count(self) -> int:
        return len(self.candidates)

    @property
    def is_empty(self) -> bool:
        return not self.candidates


def pack_candidates(query: str, ranked: List[SimilarityCandidate], budget: ContextBudget) -> RetrievalContext:
    """Greedily accept ranked candidates while they fit the budget."""
    ctx = RetrievalContext(query=query)
    if budget.max_candidates <= 0:
        ctx.cutoff_reason = CutoffReason.MAX_CANDIDATES
        return ctx

    for cand in ranked:
        size = cand.review.size
        if ctx.total_characters + size > budget.max_characters:
            ctx.rejected_over_budget += 1
            continue
        ctx.candidates.append(cand)
        ctx.total_characters += size
        if len(ctx.candidates) >= budget.max_candidates:
            ctx.cutoff_reason = CutoffReason.MAX_CANDIDATES
            break

    ctx.avg_similarity = mean_similarity(ctx.candidates)
    return ctx


class ContextBudgetAssembler:
    def __init__(self, search: VectorSearchService) -> None:
        self.search = search

    async def assemble(
        self,
        query_text: str,
        budget: ContextBudget,
        filters: Optional[SearchFilters] = None,
        similarity_threshold: float = 0.5,
        provider_id: Optional[EmbeddingProviderId | str] = None,
    ) -> RetrievalContext:
        """Retrieve and pack the best-matching reviews for ``query_text``.

        An empty result is a valid context (``is_empty``), not an error.
        """
        ranked = await self.search.search(
            query_text,
            filters=filters,
            limit=max(0, budget.max_candidates) * OVERFETCH_FACTOR,
            similarity_threshold=similarity_threshold,
            provider_id=provider_id,
        )
        ctx = pack_candidates(query_text, ranked, budget)
        logger.info(
            "Packed %d/%d candidates (%d chars, %d over budget, cutoff=%s, avg_sim=%.3f)",
            ctx.count, len(ranked), ctx.total_characters, ctx.rejected_over_budget,
            ctx.cutoff_reason.value, ctx.avg_similarity,
        )
        return ctx
