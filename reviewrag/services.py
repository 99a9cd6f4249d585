"""Service container built once per process.

build_services wires the engine, session factory, store, provider registries, remote
config, search, assembler and orchestrator from Settings. The FastAPI lifespan keeps the
container on ``app.state.services``; routes receive it through ``get_services``.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from reviewrag.config import Settings
from reviewrag.db import create_engine_from_settings, make_session_factory
from reviewrag.embedding import EmbeddingRegistry
from reviewrag.generation import GenerationRegistry
from reviewrag.log import get_logger
from reviewrag.orchestrator import ChatOrchestrator
from reviewrag.remote_config import RemoteConfig
from reviewrag.retrieval import ContextBudgetAssembler
from reviewrag.search import VectorSearchService
from reviewrag.store import PgVectorReviewStore

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    embeddings: EmbeddingRegistry
    generators: GenerationRegistry
    remote_config: RemoteConfig
    search: VectorSearchService
    assembler: ContextBudgetAssembler
    orchestrator: ChatOrchestrator
    engine: Optional[AsyncEngine] = None

    async def aclose(self) -> None:
        close = getattr(self.remote_config.source, "close", None)
        if close is not None:
            await close()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("Services closed")


def assemble_services(
    settings: Settings,
    store: PgVectorReviewStore,
    embeddings: EmbeddingRegistry,
    generators: GenerationRegistry,
    remote_config: RemoteConfig,
    engine: Optional[AsyncEngine] = None,
) -> ServiceContainer:
    """Wire the retrieval and chat services on top of already-built collaborators."""
    search = VectorSearchService(store, embeddings, remote_config)
    assembler = ContextBudgetAssembler(search)
    orchestrator = ChatOrchestrator(assembler, generators, remote_config, settings)
    return ServiceContainer(
        settings=settings,
        embeddings=embeddings,
        generators=generators,
        remote_config=remote_config,
        search=search,
        assembler=assembler,
        orchestrator=orchestrator,
        engine=engine,
    )


def build_services(settings: Settings) -> ServiceContainer:
    engine = create_engine_from_settings(settings)
    services = assemble_services(
        settings,
        store=PgVectorReviewStore(make_session_factory(engine)),
        embeddings=EmbeddingRegistry.from_settings(settings),
        generators=GenerationRegistry.from_settings(settings),
        remote_config=RemoteConfig.from_settings(settings),
        engine=engine,
    )
    for name, key in (("OPENAI_API_KEY", settings.OPENAI_API_KEY), ("GOOGLE_API_KEY", settings.GOOGLE_API_KEY)):
        if not key:
            logger.warning("%s is not set; that provider will fail with a credentials error", name)
    return services


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the container stored by the lifespan."""
    return request.app.state.services
