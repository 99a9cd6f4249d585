"""Vector similarity search over embedded reviews.

VectorSearchService embeds a query with the configured provider, asks the store for the
nearest neighbors, converts cosine distance to similarity (``1 - distance`` clamped to
[0, 1]) and keeps only candidates strictly above the similarity threshold.

Results are always ordered by descending similarity; equal similarities are ordered by
review id ascending so repeated queries return identical lists.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from reviewrag.embedding import EmbeddingProviderId, EmbeddingRegistry
from reviewrag.errors import MissingEmbeddingError, RecordNotFoundError
from reviewrag.insights import SentimentBreakdown, analyze_sentiment
from reviewrag.log import get_logger
from reviewrag.remote_config import RemoteConfig
from reviewrag.store import PgVectorReviewStore, ReviewRecord, SearchFilters

logger = get_logger(__name__)


@dataclass(frozen=True)
class SimilarityCandidate:
    review: ReviewRecord
    similarity: float


@dataclass
class SearchResult:
    query: str
    candidates: List[SimilarityCandidate] = field(default_factory=list)

    @property
    def total_found(self) -> int:
        return len(self.candidates)

    @property
    def avg_similarity(self) -> float:
        return mean_similarity(self.candidates)


@dataclass
class SentimentSearchResult(SearchResult):
    sentiment: SentimentBreakdown = field(default_factory=SentimentBreakdown)
    avg_rating: float = 0.0


def mean_similarity(candidates: List[SimilarityCandidate]) -> float:
    """Arithmetic mean of candidate similarities; 0.0 for no candidates."""
    if not candidates:
        return 0.0
    return sum(c.similarity for c in candidates) / len(candidates)


def distance_to_similarity(distance: float) -> float:
    return min(1.0, max(0.0, 1.0 - float(distance)))


class VectorSearchService:
    """Embeds queries and runs filtered nearest-neighbor retrieval."""

    def __init__(self, store: PgVectorReviewStore, embeddings: EmbeddingRegistry, remote_config: RemoteConfig) -> None:
        self.store = store
        self.embeddings = embeddings
        self.remote_config = remote_config

    async def _resolve_provider(self, provider_id: Optional[EmbeddingProviderId | str]) -> EmbeddingProviderId:
        if provider_id is None:
            provider_id = await self.remote_config.get("embedding_provider")
        return self.embeddings.get(provider_id).provider_id

    def _rank(self, rows, similarity_threshold: float, limit: int) -> List[SimilarityCandidate]:
        cands = [SimilarityCandidate(review=rec, similarity=distance_to_similarity(dist)) for rec, dist in rows]
        cands = [c for c in cands if c.similarity > similarity_threshold]
        cands.sort(key=lambda c: (-c.similarity, c.review.id))
        return cands[:limit]

    async def search(
        self,
        query_text: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        similarity_threshold: float = 0.5,
        provider_id: Optional[EmbeddingProviderId | str] = None,
    ) -> List[SimilarityCandidate]:
        """Return up to ``limit`` reviews most similar to ``query_text``.

        Args:
            query_text: Free-text query to embed.
            filters: Optional app id / platform equality filters.
            limit: Maximum number of candidates returned.
            similarity_threshold: Candidates must score strictly above this value.
            provider_id: Embedding provider; defaults to the remote-config provider.

        Returns:
            List[SimilarityCandidate]: Non-increasing in similarity, each in [0, 1].
        """
        if limit <= 0:
            return []
        pid = await self._resolve_provider(provider_id)
        qvec = await self.embeddings.get(pid).embed_one(query_text)
        rows = await self.store.nearest(qvec, pid, filters=filters, limit=limit)
        cands = self._rank(rows, similarity_threshold, limit)
        logger.debug(
            "search provider=%s limit=%d threshold=%.2f store_rows=%d kept=%d",
            pid.value, limit, similarity_threshold, len(rows), len(cands),
        )
        return cands

    async def search_result(self, query_text: str, **kwargs) -> SearchResult:
        """``search`` wrapped with the query and its summary statistics."""
        return SearchResult(query=query_text, candidates=await self.search(query_text, **kwargs))

    async def find_similar_to_stored(
        self,
        record_id: int,
        limit: int = 10,
        similarity_threshold: float = 0.7,
    ) -> SearchResult:
        """Find reviews near an existing review, using its stored vector as the query.

        Raises:
            RecordNotFoundError: No review has ``record_id``.
            MissingEmbeddingError: The review has no stored vector.
        """
        stored = await self.store.get_embedding(record_id)
        if stored is None:
            raise RecordNotFoundError(record_id)
        if not stored.embedding or stored.provider_id is None:
            raise MissingEmbeddingError(record_id)
        rows = await self.store.nearest(
            stored.embedding, stored.provider_id, limit=limit, exclude_id=record_id
        )
        src = stored.record
        return SearchResult(
            query=f"{src.title}: {src.content}",
            candidates=self._rank(rows, similarity_threshold, limit),
        )

    async def search_with_sentiment(self, query_text: str, **kwargs) -> SentimentSearchResult:
        """Search, then bucket the results by rating sentiment."""
        cands = await self.search(query_text, **kwargs)
        total_rating = sum(c.review.rating for c in cands)
        return SentimentSearchResult(
            query=query_text,
            candidates=cands,
            sentiment=analyze_sentiment(cands),
            avg_rating=total_rating / len(cands) if cands else 0.0,
        )
