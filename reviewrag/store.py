"""Read-only nearest-neighbor access to the pgvector review store.

Defines:
- ReviewRecord: immutable view of a reviews row handed to the retrieval core.
- SearchFilters: optional conjunctive equality filters (app id, platform).
- StoredEmbedding: a record together with its stored vector and provider.
- PgVectorReviewStore: cosine-distance queries over the reviews table.

Distances are raw pgvector cosine distances (``<=>``), ordered ascending with ties broken
by review id ascending. Database failures are translated to StoreUnavailableError.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewrag.embedding import PROVIDER_DIMENSIONS, EmbeddingProviderId
from reviewrag.errors import StoreUnavailableError
from reviewrag.log import get_logger

logger = get_logger(__name__)

_REVIEW_COLUMNS = """
    id, app_id, platform, author, rating, title, content,
    review_date, app_version, embedding_provider
"""


@dataclass(frozen=True)
class ReviewRecord:
    id: int
    app_id: int
    platform: str
    author: Optional[str]
    rating: int
    title: str
    content: str
    review_date: Optional[datetime] = None
    app_version: Optional[str] = None
    embedding_provider: Optional[str] = None

    @property
    def size(self) -> int:
        """Characters this review occupies in a context budget."""
        return len(self.title) + len(self.content)

    @classmethod
    def from_row(cls, r: Any) -> "ReviewRecord":
        return cls(
            id=int(r["id"]),
            app_id=int(r["app_id"]),
            platform=r["platform"],
            author=r["author"],
            rating=int(r["rating"]),
            title=r["title"] or "",
            content=r["content"] or "",
            review_date=r["review_date"],
            app_version=r["app_version"],
            embedding_provider=r["embedding_provider"],
        )


@dataclass(frozen=True)
class SearchFilters:
    app_id: Optional[int] = None
    platform: Optional[str] = None


@dataclass(frozen=True)
class StoredEmbedding:
    record: ReviewRecord
    embedding: Optional[List[float]]
    provider_id: Optional[EmbeddingProviderId]


def _vector_literal(vec: List[float]) -> str:
    return "[" + ",".join(f"{float(x):.8f}" for x in vec) + "]"


class PgVectorReviewStore:
    """Cosine nearest-neighbor queries against the reviews table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def nearest(
        self,
        vector: List[float],
        provider_id: EmbeddingProviderId,
        filters: Optional[SearchFilters] = None,
        limit: int = 10,
        exclude_id: Optional[int] = None,
    ) -> List[Tuple[ReviewRecord, float]]:
        """Return up to ``limit`` (record, cosine distance) pairs, nearest first.

        Only rows embedded by ``provider_id`` are considered, so every compared vector has
        the query's dimension.
        """
        filters = filters or SearchFilters()
        # dims and the provider literal come from a closed enum, never from caller input.
        # The provider must be a literal so the planner can match its partial HNSW index.
        dims = PROVIDER_DIMENSIONS[provider_id]
        conds: List[str] = ["embedding IS NOT NULL", f"embedding_provider = '{provider_id.value}'"]
        params: Dict[str, Any] = {"qvec": _vector_literal(vector), "limit": int(limit)}
        if filters.app_id is not None:
            conds.append("app_id = :app_id")
            params["app_id"] = filters.app_id
        if filters.platform is not None:
            conds.append("platform = :platform")
            params["platform"] = filters.platform
        if exclude_id is not None:
            conds.append("id != :exclude_id")
            params["exclude_id"] = exclude_id

        sql = text(
            f"""
            SELECT {_REVIEW_COLUMNS},
                (embedding::vector({dims}) <=> CAST(:qvec AS vector({dims}))) AS distance
            FROM reviews
            WHERE {" AND ".join(conds)}
            ORDER BY embedding::vector({dims}) <=> CAST(:qvec AS vector({dims})), id ASC
            LIMIT :limit
            """
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(sql, params)).mappings().all()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Vector store query failed: %s", e)
            raise StoreUnavailableError("Vector store query failed", {"error": type(e).__name__}) from e
        return [(ReviewRecord.from_row(r), float(r["distance"])) for r in rows]

    async def get_embedding(self, review_id: int) -> Optional[StoredEmbedding]:
        """Load a review with its stored vector; None if the id is unknown."""
        sql = text(f"SELECT {_REVIEW_COLUMNS}, embedding::text AS embedding FROM reviews WHERE id = :id")
        try:
            async with self._session_factory() as session:
                row = (await session.execute(sql, {"id": review_id})).mappings().first()
        except (SQLAlchemyError, OSError) as e:
            logger.error("Vector store lookup failed: %s", e)
            raise StoreUnavailableError("Vector store lookup failed", {"error": type(e).__name__}) from e
        if row is None:
            return None
        raw = row["embedding"]
        provider = row["embedding_provider"]
        return StoredEmbedding(
            record=ReviewRecord.from_row(row),
            embedding=_parse_vector(raw),
            provider_id=EmbeddingProviderId(provider) if provider in {p.value for p in EmbeddingProviderId} else None,
        )


def _parse_vector(raw: Any) -> Optional[List[float]]:
    """Decode a vector column selected as text (``[0.1,0.2]``)."""
    if raw is None:
        return None
    if isinstance(raw, str):
        body = raw.strip().strip("[]")
        return [float(x) for x in body.split(",")] if body else []
    return [float(x) for x in raw]
