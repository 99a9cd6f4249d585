"""Embedding providers wrapping the OpenAI and Google (Gemini) embedding APIs.

Provides:
- EmbeddingProviderId: configuration enum selecting a provider.
- EmbeddingProvider: capability base class (embed_one, embed_batch, dimensions).
- OpenAIEmbeddingProvider: text-embedding-3-small, 1536 dims.
- GoogleEmbeddingProvider: text-embedding-004, 768 dims.
- EmbeddingRegistry: builds each provider once and resolves them by id.

Clients are created lazily on first use and reused for the life of the provider. No
internal retry: provider failures surface as ProviderCredentialError or
ProviderUpstreamError.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, List, Optional, Sequence

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI

from reviewrag.config import Settings
from reviewrag.errors import ProviderCredentialError, ProviderUpstreamError, UnknownProviderError
from reviewrag.log import get_logger

logger = get_logger(__name__)

PROBE_TEXT = "This is a test review for embedding generation."


class EmbeddingProviderId(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"


PROVIDER_DIMENSIONS: Dict[EmbeddingProviderId, int] = {
    EmbeddingProviderId.GOOGLE: 768,
    EmbeddingProviderId.OPENAI: 1536,
}


def review_text(title: Optional[str], content: Optional[str]) -> str:
    """Text shape used for stored review vectors: title, blank line, content."""
    return f"{title or ''}\n\n{content or ''}".strip()


class EmbeddingProvider(ABC):
    """Turns text into fixed-dimension vectors via an external embedding API."""

    provider_id: EmbeddingProviderId

    def __init__(self, api_key: str, model: str) -> None:
        self.api_key = api_key
        self.model = model

    def dimensions(self) -> int:
        return PROVIDER_DIMENSIONS[self.provider_id]

    def _require_key(self) -> str:
        if not self.api_key:
            raise ProviderCredentialError(
                f"No API key configured for the {self.provider_id.value} embedding provider",
                {"provider": self.provider_id.value},
            )
        return self.api_key

    async def embed_one(self, text: str) -> List[float]:
        """Embed a single string and return its vector."""
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed a batch of strings, one vector per input, in input order.

        Args:
            texts: Non-empty strings to embed.

        Returns:
            List[List[float]]: Vectors of length ``dimensions()``.
        """
        if not texts:
            return []
        vectors = await self._embed(list(texts))
        if len(vectors) != len(texts):
            raise ProviderUpstreamError(
                f"{self.provider_id.value} returned {len(vectors)} embeddings for {len(texts)} inputs",
                {"provider": self.provider_id.value},
            )
        dims = self.dimensions()
        for vec in vectors:
            if len(vec) != dims:
                raise ProviderUpstreamError(
                    f"{self.provider_id.value} returned a {len(vec)}-dim vector, expected {dims}",
                    {"provider": self.provider_id.value},
                )
        return vectors

    async def embed_review(self, title: Optional[str], content: Optional[str]) -> List[float]:
        return await self.embed_one(review_text(title, content))

    async def embed_reviews(self, reviews: Sequence[tuple]) -> List[List[float]]:
        """Embed (title, content) pairs with the stored-review text shape."""
        return await self.embed_batch([review_text(t, c) for t, c in reviews])

    @abstractmethod
    async def _embed(self, texts: List[str]) -> List[List[float]]:
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    provider_id = EmbeddingProviderId.OPENAI

    def __init__(self, api_key: str, model: str = "text-embedding-3-small") -> None:
        super().__init__(api_key, model)
        self._client: AsyncOpenAI | None = None

    def get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._require_key())
        return self._client

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        client = self.get_client()
        try:
            resp = await client.embeddings.create(model=self.model, input=texts, encoding_format="float")
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            raise ProviderCredentialError(f"OpenAI rejected the embedding credentials: {e}") from e
        except openai.OpenAIError as e:
            raise ProviderUpstreamError(f"OpenAI embedding request failed: {e}") from e
        # The API tags each vector with its input index
        return [d.embedding for d in sorted(resp.data, key=lambda d: d.index)]


class GoogleEmbeddingProvider(EmbeddingProvider):
    provider_id = EmbeddingProviderId.GOOGLE

    def __init__(self, api_key: str, model: str = "text-embedding-004") -> None:
        super().__init__(api_key, model)
        self._client: genai.Client | None = None

    def get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._require_key())
        return self._client

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        client = self.get_client()
        try:
            resp = await client.aio.models.embed_content(
                model=self.model,
                contents=texts,
                config=genai_types.EmbedContentConfig(output_dimensionality=self.dimensions()),
            )
        except genai_errors.ClientError as e:
            if e.code in (401, 403):
                raise ProviderCredentialError(f"Google rejected the embedding credentials: {e}") from e
            raise ProviderUpstreamError(f"Google embedding request failed: {e}") from e
        except genai_errors.APIError as e:
            raise ProviderUpstreamError(f"Google embedding request failed: {e}") from e
        except httpx.HTTPError as e:
            # transport failures surface unwrapped once the client gives up retrying
            raise ProviderUpstreamError(f"Google embedding request failed: {type(e).__name__}") from e
        return [list(e.values or []) for e in (resp.embeddings or [])]


class EmbeddingRegistry:
    """Holds one long-lived provider per EmbeddingProviderId."""

    def __init__(self, providers: Dict[EmbeddingProviderId, EmbeddingProvider]) -> None:
        self._providers = dict(providers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingRegistry":
        return cls(
            {
                EmbeddingProviderId.GOOGLE: GoogleEmbeddingProvider(
                    settings.GOOGLE_API_KEY, settings.GOOGLE_EMBEDDING_MODEL
                ),
                EmbeddingProviderId.OPENAI: OpenAIEmbeddingProvider(
                    settings.OPENAI_API_KEY, settings.OPENAI_EMBEDDING_MODEL
                ),
            }
        )

    def get(self, provider_id: EmbeddingProviderId | str) -> EmbeddingProvider:
        try:
            key = EmbeddingProviderId(provider_id)
            return self._providers[key]
        except (ValueError, KeyError):
            raise UnknownProviderError(
                f"Unknown embedding provider: {provider_id}", {"provider": str(provider_id)}
            ) from None

    async def probe(self) -> Dict[str, Dict[str, object]]:
        """Embed a fixed sentence with every provider and report availability."""
        ids = list(self._providers)
        results = await asyncio.gather(
            *(self._providers[pid].embed_one(PROBE_TEXT) for pid in ids), return_exceptions=True
        )
        report: Dict[str, Dict[str, object]] = {}
        for pid, res in zip(ids, results):
            if isinstance(res, BaseException):
                logger.warning("Embedding probe failed for %s: %s", pid.value, res)
                report[pid.value] = {"ok": False, "error": str(res)}
            else:
                report[pid.value] = {"ok": True, "dimensions": len(res)}
        return report
