"""Database setup and session utilities for async SQLAlchemy.

This module centralizes engine/session construction, the metadata base, and helpers:
- create_engine_from_settings / make_session_factory: build the long-lived handles once
  at process start (see reviewrag.services).
- init_db: Ensures the pgvector extension exists and creates the tables and one partial
  HNSW cosine index per embedding provider.

The reviews.embedding column is an unbounded ``vector`` because records embedded by
different providers have different dimensionality. Each partial index covers the rows of
one provider over the column cast to that provider's dimension; queries use the same
cast expression so the planner can pick the index.
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from reviewrag.config import Settings

Base = declarative_base()


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    return create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database extensions, tables, and vector indexes.

    This function is idempotent and safe to run multiple times.
    """
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))

    # Import models after Base is defined
    from reviewrag import models  # noqa: F401
    from reviewrag.embedding import PROVIDER_DIMENSIONS

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with engine.begin() as conn:
        for provider_id, dims in PROVIDER_DIMENSIONS.items():
            provider = provider_id.value
            await conn.execute(
                text(
                    f"""
                    CREATE INDEX IF NOT EXISTS idx_reviews_embedding_{provider}_hnsw
                    ON reviews USING hnsw ((embedding::vector({dims})) vector_cosine_ops)
                    WHERE embedding_provider = '{provider}'
                    """
                )
            )
