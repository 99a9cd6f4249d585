"""FastAPI application entrypoint and routes.

Exposes health, chat (streamed and blocking), search, similar-review and config-refresh
endpoints and configures CORS. Services are built once in the lifespan (database schema
and indexes are initialized there) unless a pre-built container is passed to create_app.
"""
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, AsyncIterator, Dict, Optional, Union

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from reviewrag.config import settings
from reviewrag.db import init_db
from reviewrag.errors import ReviewRagError
from reviewrag.log import get_logger
from reviewrag.obs import init_tracing, span
from reviewrag.orchestrator import EnvelopeStream
from reviewrag.schemas import (
    ChatCompletionResponse,
    ChatRequest,
    ReviewSummary,
    SearchRequest,
    SearchResponse,
    SimilarReviewsResponse,
    SimpleChatRequest,
    SimpleChatResponse,
    to_sse,
)
from reviewrag.services import ServiceContainer, build_services, get_services
from reviewrag.store import SearchFilters

logger = get_logger(__name__)

SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


def sse_response(stream: EnvelopeStream) -> StreamingResponse:
    """Serve an envelope stream as server-sent events, closing it when the client leaves."""

    async def events() -> AsyncIterator[str]:
        try:
            async for envelope in stream:
                yield to_sse(envelope)
        finally:
            await stream.aclose()

    return StreamingResponse(events(), media_type="text/event-stream", headers=SSE_HEADERS)


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """Create the API application.

    Args:
        services: Pre-built container; when given, the lifespan neither builds services
            nor touches the database.

    Returns:
        FastAPI: Configured application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_tracing(settings)
        if services is not None:
            yield
            return
        built = build_services(settings)
        if built.engine is not None:
            await init_db(built.engine)
        app.state.services = built
        logger.info("Services ready")
        try:
            yield
        finally:
            await built.aclose()

    app = FastAPI(title="Review RAG API", version="0.1.0", lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_credentials=True,
        allow_headers=["*"],
    )

    @app.exception_handler(ReviewRagError)
    async def handle_pipeline_error(request: Request, exc: ReviewRagError) -> JSONResponse:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "kind": exc.kind})

    @app.get("/health")
    async def health():
        """Liveness probe endpoint."""
        return {"status": "ok"}

    @app.get("/health/providers")
    async def health_providers(svc: ServiceContainer = Depends(get_services)):
        """Embed a test sentence with every provider and report which ones answer."""
        report = await svc.embeddings.probe()
        status = "ok" if all(r["ok"] for r in report.values()) else "degraded"
        return {"status": status, "providers": report}

    @app.post("/chat")
    async def chat(req: ChatRequest, svc: ServiceContainer = Depends(get_services)) -> StreamingResponse:
        """Grounded chat turn streamed as metadata, text chunks, then done or error."""
        return sse_response(svc.orchestrator.stream(req))

    @app.post("/chat/complete", response_model=ChatCompletionResponse)
    async def chat_complete(req: ChatRequest, svc: ServiceContainer = Depends(get_services)):
        return await svc.orchestrator.complete(req)

    @app.post("/chat/simple", response_model=None)
    async def chat_simple(
        req: SimpleChatRequest, svc: ServiceContainer = Depends(get_services)
    ) -> Union[StreamingResponse, SimpleChatResponse]:
        """Chat without retrieval."""
        if req.stream:
            return sse_response(svc.orchestrator.simple_stream(req.message, req.conversation_history, req.model))
        text, model = await svc.orchestrator.simple_chat(req.message, req.conversation_history, req.model)
        return SimpleChatResponse(response=text, model=model)

    @app.post("/search", response_model=SearchResponse)
    async def search(req: SearchRequest, svc: ServiceContainer = Depends(get_services)):
        """Rank reviews by similarity to a free-text query."""
        kwargs: Dict[str, Any] = dict(
            filters=SearchFilters(app_id=req.app_id, platform=req.platform),
            limit=req.limit,
            similarity_threshold=req.similarity_threshold,
            provider_id=req.embedding_provider,
        )
        extra: Dict[str, Any] = {}
        with span("search", {"limit": req.limit, "sentiment": req.include_sentiment}):
            if req.include_sentiment:
                result = await svc.search.search_with_sentiment(req.query, **kwargs)
                extra = {"sentiment": result.sentiment.to_dict(), "avg_rating": result.avg_rating}
            else:
                result = await svc.search.search_result(req.query, **kwargs)
        return SearchResponse(
            query=result.query,
            total_found=result.total_found,
            avg_similarity=result.avg_similarity,
            reviews=[ReviewSummary.from_candidate(c) for c in result.candidates],
            **extra,
        )

    @app.get("/reviews/{review_id}/similar", response_model=SimilarReviewsResponse)
    async def similar_reviews(
        review_id: int,
        limit: int = Query(10, ge=1, le=100),
        similarity_threshold: Optional[float] = Query(None, ge=0.0, le=1.0),
        svc: ServiceContainer = Depends(get_services),
    ):
        """Reviews closest to an existing review's stored vector."""
        threshold = (
            similarity_threshold if similarity_threshold is not None else svc.settings.SIMILAR_REVIEWS_THRESHOLD
        )
        result = await svc.search.find_similar_to_stored(review_id, limit=limit, similarity_threshold=threshold)
        return SimilarReviewsResponse(
            review_id=review_id,
            query=result.query,
            total_found=result.total_found,
            avg_similarity=result.avg_similarity,
            reviews=[ReviewSummary.from_candidate(c) for c in result.candidates],
        )

    @app.post("/config/refresh")
    async def refresh_config(svc: ServiceContainer = Depends(get_services)):
        """Drop the cached remote config and fetch it again."""
        values = await svc.remote_config.refresh()
        return {"status": "ok", "config": asdict(values)}

    return app


app = create_app()
