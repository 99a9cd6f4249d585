"""Shared fixtures and in-memory fakes for the reviewrag test suite.

No test touches the network, Redis or PostgreSQL: the store, embedding providers,
generation providers and the remote config source are replaced by the fakes below.
"""
import asyncio
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from reviewrag.config import Settings
from reviewrag.embedding import EmbeddingProvider, EmbeddingProviderId, EmbeddingRegistry
from reviewrag.generation import GenerationProvider, GenerationRegistry, GenerationRequest, ProviderFamily
from reviewrag.remote_config import RemoteConfig, RemoteConfigValues
from reviewrag.search import SimilarityCandidate
from reviewrag.services import ServiceContainer, assemble_services
from reviewrag.store import ReviewRecord, SearchFilters, StoredEmbedding


def make_review(
    review_id: int,
    rating: int = 4,
    title: str = "Great app",
    content: str = "Works well for me.",
    app_id: int = 1,
    platform: str = "ios",
    author: Optional[str] = "jane",
    app_version: Optional[str] = "2.1.0",
    review_date: Optional[datetime] = datetime(2024, 3, 1, 12, 0),
    embedding_provider: Optional[str] = "google",
) -> ReviewRecord:
    return ReviewRecord(
        id=review_id,
        app_id=app_id,
        platform=platform,
        author=author,
        rating=rating,
        title=title,
        content=content,
        review_date=review_date,
        app_version=app_version,
        embedding_provider=embedding_provider,
    )


def make_candidate(review_id: int, similarity: float, **kwargs) -> SimilarityCandidate:
    return SimilarityCandidate(review=make_review(review_id, **kwargs), similarity=similarity)


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic provider: every text maps to a constant vector of the right size."""

    def __init__(self, provider_id: EmbeddingProviderId = EmbeddingProviderId.GOOGLE, api_key: str = "test-key",
                 error: Optional[Exception] = None, delay: float = 0.0) -> None:
        self.provider_id = provider_id
        super().__init__(api_key, "fake-model")
        self.error = error
        self.delay = delay
        self.calls: List[List[str]] = []

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        self._require_key()
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return [[float(i)] * self.dimensions() for i, _ in enumerate(texts)]


class FakeStore:
    """Returns pre-seeded (record, distance) rows through the store interface."""

    def __init__(self, rows: Sequence[Tuple[ReviewRecord, float]] = (), error: Optional[Exception] = None) -> None:
        self.rows = list(rows)
        self.error = error
        self.embeddings: Dict[int, StoredEmbedding] = {}
        self.calls: List[dict] = []

    async def nearest(self, vector, provider_id, filters=None, limit=10, exclude_id=None):
        self.calls.append(
            {"vector": vector, "provider_id": provider_id, "filters": filters, "limit": limit, "exclude_id": exclude_id}
        )
        if self.error is not None:
            raise self.error
        filters = filters or SearchFilters()
        rows = [
            (rec, dist)
            for rec, dist in self.rows
            if (filters.app_id is None or rec.app_id == filters.app_id)
            and (filters.platform is None or rec.platform == filters.platform)
            and rec.id != exclude_id
        ]
        rows.sort(key=lambda row: (row[1], row[0].id))
        return rows[:limit]

    async def get_embedding(self, review_id: int) -> Optional[StoredEmbedding]:
        return self.embeddings.get(review_id)


class FakeGenerationProvider(GenerationProvider):
    """Streams fixed chunks; optionally fails after ``fail_after`` chunks."""

    def __init__(self, family: ProviderFamily, chunks: Sequence[str] = ("Hello", " world"),
                 error: Optional[Exception] = None, fail_after: int = 0, delay: float = 0.0) -> None:
        super().__init__("test-key")
        self.family = family
        self.chunks = list(chunks)
        self.error = error
        self.fail_after = fail_after
        self.delay = delay
        self.requests: List[GenerationRequest] = []

    async def stream(self, request: GenerationRequest):
        self.requests.append(request)
        for i, chunk in enumerate(self.chunks):
            if self.error is not None and i == self.fail_after:
                raise self.error
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.error is not None and self.fail_after >= len(self.chunks):
            raise self.error

    async def complete(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return "".join(self.chunks)


class FakeConfigSource:
    def __init__(self, values: Optional[Dict[str, str]] = None, error: Optional[Exception] = None) -> None:
        self.values = dict(values or {})
        self.error = error
        self.fetches = 0

    async def fetch(self) -> Dict[str, str]:
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return dict(self.values)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the developer's .env file."""
    return Settings(
        _env_file=None,
        OPENAI_API_KEY="sk-test",
        GOOGLE_API_KEY="g-test",
        CHAT_TURN_TIMEOUT_SECONDS=5.0,
        MAX_CONTEXT_CHARACTERS=8000,
    )


@pytest.fixture
def embedders() -> Dict[EmbeddingProviderId, FakeEmbeddingProvider]:
    return {pid: FakeEmbeddingProvider(pid) for pid in EmbeddingProviderId}


@pytest.fixture
def generators() -> Dict[ProviderFamily, FakeGenerationProvider]:
    return {family: FakeGenerationProvider(family) for family in ProviderFamily}


@pytest.fixture
def store() -> FakeStore:
    return FakeStore(
        [
            (make_review(1, rating=5, title="Love it", content="Best app ever"), 0.08),
            (make_review(2, rating=2, title="Crashes", content="Crashes when opening", app_version="2.0.0"), 0.19),
            (make_review(3, rating=3, title="Okay", content="Does the job", platform="android"), 0.45),
            (make_review(4, rating=1, title="Bad", content="Unusable", platform="android"), 0.60),
        ]
    )


@pytest.fixture
def remote_config(test_settings: Settings) -> RemoteConfig:
    return RemoteConfig(None, RemoteConfigValues.defaults_from(test_settings))


@pytest.fixture
def services(test_settings, store, embedders, generators, remote_config) -> ServiceContainer:
    return assemble_services(
        test_settings,
        store=store,
        embeddings=EmbeddingRegistry(embedders),
        generators=GenerationRegistry(generators),
        remote_config=remote_config,
    )
