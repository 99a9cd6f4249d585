"""
Tests for service wiring. Building services opens no connections.
"""
import pytest

from reviewrag.generation import ProviderFamily
from reviewrag.remote_config import RedisConfigSource
from reviewrag.services import build_services


class TestBuildServices:
    @pytest.mark.asyncio
    async def test_wires_shared_collaborators(self, test_settings):
        services = build_services(test_settings)
        try:
            assert services.engine is not None
            assert isinstance(services.remote_config.source, RedisConfigSource)
            assert services.search.remote_config is services.remote_config
            assert services.assembler.search is services.search
            assert services.orchestrator.assembler is services.assembler
            assert services.generators.get(ProviderFamily.OPENAI).api_key == "sk-test"
            assert services.embeddings.get("google").model == test_settings.GOOGLE_EMBEDDING_MODEL
        finally:
            await services.aclose()
