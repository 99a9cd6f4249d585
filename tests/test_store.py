"""
Tests for the pgvector store's query construction and error translation.

The async session is mocked; the generated SQL and bound parameters are inspected.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from reviewrag.embedding import EmbeddingProviderId
from reviewrag.errors import StoreUnavailableError
from reviewrag.store import PgVectorReviewStore, SearchFilters, _parse_vector

ROW = {
    "id": 4, "app_id": 1, "platform": "ios", "author": None, "rating": 2, "title": None,
    "content": "Crashes", "review_date": None, "app_version": None, "embedding_provider": "openai",
    "distance": 0.25,
}


def store_returning(rows=None, first=None, error=None):
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows or []
    result.mappings.return_value.first.return_value = first
    session = MagicMock()
    session.execute = AsyncMock(return_value=result, side_effect=error)
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return PgVectorReviewStore(factory), session


class TestNearest:
    @pytest.mark.asyncio
    async def test_query_is_restricted_to_provider_and_filters(self):
        store, session = store_returning([ROW])

        rows = await store.nearest(
            [0.1] * 1536, EmbeddingProviderId.OPENAI, SearchFilters(app_id=1, platform="ios"), limit=5, exclude_id=9
        )

        sql, params = str(session.execute.await_args.args[0]), session.execute.await_args.args[1]
        assert "embedding IS NOT NULL" in sql
        assert "embedding_provider = 'openai'" in sql
        assert "app_id = :app_id" in sql and "platform = :platform" in sql and "id != :exclude_id" in sql
        assert "vector(1536)" in sql
        assert ", id ASC" in sql
        assert "provider" not in params
        assert (params["app_id"], params["platform"], params["exclude_id"], params["limit"]) == (1, "ios", 9, 5)
        record, distance = rows[0]
        assert (record.id, record.title, record.content, distance) == (4, "", "Crashes", 0.25)

    @pytest.mark.asyncio
    async def test_unfiltered_query_has_no_filter_params(self):
        store, session = store_returning()

        await store.nearest([0.1] * 768, EmbeddingProviderId.GOOGLE)

        sql, params = str(session.execute.await_args.args[0]), session.execute.await_args.args[1]
        assert "embedding_provider = 'google'" in sql
        assert "vector(768)" in sql
        assert set(params) == {"qvec", "limit"}

    @pytest.mark.asyncio
    async def test_database_errors_become_store_unavailable(self):
        store, _ = store_returning(error=OperationalError("SELECT", {}, Exception("refused")))

        with pytest.raises(StoreUnavailableError):
            await store.nearest([0.1] * 768, EmbeddingProviderId.GOOGLE)


class TestGetEmbedding:
    @pytest.mark.asyncio
    async def test_returns_record_vector_and_provider(self):
        store, _ = store_returning(first={**ROW, "embedding": "[0.5,0.25]"})

        stored = await store.get_embedding(4)

        assert stored.record.id == 4
        assert stored.embedding == [0.5, 0.25]
        assert stored.provider_id is EmbeddingProviderId.OPENAI

    @pytest.mark.asyncio
    async def test_unknown_id_returns_none(self):
        store, _ = store_returning(first=None)

        assert await store.get_embedding(99) is None


def test_parse_vector():
    assert _parse_vector(None) is None
    assert _parse_vector("[]") == []
    assert _parse_vector("[1,2.5]") == [1.0, 2.5]
    assert _parse_vector([3, 4]) == [3.0, 4.0]
