"""
Test suite for the HTTP API.

Routes run against an application built with in-memory services via FastAPI TestClient.
"""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from reviewrag.embedding import EmbeddingProviderId, EmbeddingRegistry, GoogleEmbeddingProvider
from reviewrag.errors import StoreUnavailableError
from reviewrag.generation import GenerationRegistry
from reviewrag.main import create_app
from reviewrag.schemas import parse_sse
from reviewrag.services import assemble_services
from reviewrag.store import StoredEmbedding
from tests.conftest import make_review


@pytest.fixture
def client(services) -> TestClient:
    """Provide TestClient for an app wired to fake services."""
    return TestClient(create_app(services=services))


def sse_events(body: str):
    events = []
    for block in body.split("\n\n"):
        if block.startswith("data: "):
            events.append(parse_sse(block).model_dump(mode="json"))
    return events


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    def test_provider_probe(self, client, embedders):
        embedders[EmbeddingProviderId.OPENAI].api_key = ""

        resp = client.get("/health/providers")

        body = resp.json()
        assert resp.status_code == 200
        assert body["status"] == "degraded"
        assert body["providers"]["google"] == {"ok": True, "dimensions": 768}
        assert body["providers"]["openai"]["ok"] is False


class TestChatStream:
    """POST /chat streams server-sent envelopes."""

    def test_streams_metadata_text_done(self, client):
        resp = client.post("/chat", json={"message": "Why does it crash?", "similarity_threshold": 0.5})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = sse_events(resp.text)
        assert [e["type"] for e in events] == ["metadata", "text", "text", "done"]
        assert events[0]["data"]["review_count"] == 3
        assert events[1] == {"type": "text", "data": "Hello"}

    def test_retrieval_failure_streams_single_error(self, client, store):
        store.error = StoreUnavailableError("database down")

        resp = client.post("/chat", json={"message": "q"})

        events = sse_events(resp.text)
        assert events == [{"type": "error", "kind": "store_unavailable", "error": "database down"}]

    @pytest.mark.parametrize(
        "payload",
        [
            {"message": ""},
            {"message": "q", "max_reviews": 0},
            {"message": "q", "max_reviews": 51},
            {"message": "q", "similarity_threshold": 1.5},
            {"message": "q", "platform": "web"},
            {"message": "q", "conversation_history": [{"role": "system", "content": "x"}]},
        ],
    )
    def test_invalid_requests_are_rejected_before_streaming(self, client, store, payload):
        resp = client.post("/chat", json=payload)

        assert resp.status_code == 422
        assert store.calls == []


class TestChatBlocking:
    def test_complete(self, client):
        resp = client.post("/chat/complete", json={"message": "q", "similarity_threshold": 0.5})

        body = resp.json()
        assert resp.status_code == 200
        assert body["response"] == "Hello world"
        assert body["metadata"]["review_count"] == 3
        assert body["metadata"]["model"] == "gemini-1.5-pro"

    def test_complete_maps_errors_to_status(self, client, store):
        store.error = StoreUnavailableError("database down")

        resp = client.post("/chat/complete", json={"message": "q"})

        assert resp.status_code == 503
        assert resp.json() == {"detail": "database down", "kind": "store_unavailable"}

    def test_simple_chat(self, client):
        resp = client.post("/chat/simple", json={"message": "Hello", "model": "gpt-4o-mini"})

        assert resp.status_code == 200
        assert resp.json() == {"response": "Hello world", "model": "gpt-4o-mini"}

    def test_simple_chat_streamed(self, client):
        resp = client.post("/chat/simple", json={"message": "Hello", "stream": True})

        assert [e["type"] for e in sse_events(resp.text)] == ["text", "text", "done"]


class TestSearch:
    def test_search_ranks_reviews(self, client):
        resp = client.post("/search", json={"query": "crash", "limit": 2, "similarity_threshold": 0.3})

        body = resp.json()
        assert resp.status_code == 200
        assert body["total_found"] == 2
        assert [r["id"] for r in body["reviews"]] == [1, 2]
        assert body["avg_similarity"] == pytest.approx((0.92 + 0.81) / 2)
        assert body["sentiment"] is None

    def test_search_with_sentiment(self, client):
        resp = client.post("/search", json={"query": "crash", "similarity_threshold": 0.0, "include_sentiment": True})

        body = resp.json()
        assert body["sentiment"]["positive"] == 1
        assert body["sentiment"]["negative"] == 2
        assert body["avg_rating"] == pytest.approx(2.75)

    def test_unknown_provider_is_rejected(self, client):
        resp = client.post("/search", json={"query": "crash", "embedding_provider": "cohere"})

        assert resp.status_code == 422


class TestSimilarReviews:
    def test_similar_reviews(self, client, store):
        store.embeddings[2] = StoredEmbedding(
            make_review(2, title="Crashes", content="Crashes when opening"), [0.3] * 768, EmbeddingProviderId.GOOGLE
        )

        resp = client.get("/reviews/2/similar", params={"similarity_threshold": 0.5})

        body = resp.json()
        assert resp.status_code == 200
        assert body["query"] == "Crashes: Crashes when opening"
        assert [r["id"] for r in body["reviews"]] == [1, 3]

    def test_default_threshold_from_settings(self, client, store):
        store.embeddings[2] = StoredEmbedding(make_review(2), [0.3] * 768, EmbeddingProviderId.GOOGLE)

        body = client.get("/reviews/2/similar").json()

        assert [r["id"] for r in body["reviews"]] == [1]

    def test_unknown_review_is_404(self, client):
        resp = client.get("/reviews/999/similar")

        assert resp.status_code == 404
        assert resp.json()["kind"] == "not_found"

    def test_review_without_vector_is_422(self, client, store):
        store.embeddings[5] = StoredEmbedding(make_review(5), None, None)

        resp = client.get("/reviews/5/similar")

        assert resp.status_code == 422
        assert resp.json()["kind"] == "missing_embedding"


def test_config_refresh(client):
    resp = client.post("/config/refresh")

    body = resp.json()
    assert resp.status_code == 200
    assert body["config"]["preferred_model"] == "gemini-1.5-pro"
    assert body["config"]["max_context_reviews"] == 10


class TestProviderOutage:
    """A Google network outage surfaces as a translated upstream error."""

    @pytest.fixture
    def outage_client(self, test_settings, store, generators, remote_config) -> TestClient:
        google = GoogleEmbeddingProvider("g-test")
        google._client = MagicMock()
        google._client.aio.models.embed_content = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        services = assemble_services(
            test_settings,
            store=store,
            embeddings=EmbeddingRegistry({EmbeddingProviderId.GOOGLE: google}),
            generators=GenerationRegistry(generators),
            remote_config=remote_config,
        )
        return TestClient(create_app(services=services))

    def test_search_returns_502_with_kind(self, outage_client):
        resp = outage_client.post("/search", json={"query": "crash"})

        assert resp.status_code == 502
        assert resp.json()["kind"] == "provider_upstream"

    def test_chat_stream_reports_upstream_error(self, outage_client):
        resp = outage_client.post("/chat", json={"message": "q"})

        events = sse_events(resp.text)
        assert [(e["type"], e.get("kind")) for e in events] == [("error", "provider_upstream")]
