"""Answer generation through OpenAI chat completions or Google Gemini.

Provides:
- ChatMessage / GenerationRequest: provider-neutral request shape.
- resolve_model: maps a model id to its provider family by prefix.
- GenerationProvider: capability base class with ``stream`` and ``complete``.
- OpenAIGenerationProvider / GeminiGenerationProvider: concrete providers.
- GenerationRegistry: one long-lived provider per family.

Provider exceptions are translated: rejected credentials -> ProviderCredentialError,
failures before the first chunk -> ProviderUpstreamError, failures after it ->
StreamAbortedError.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Dict, List

import httpx
import openai
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import AsyncOpenAI

from reviewrag.config import Settings
from reviewrag.errors import (
    ProviderCredentialError,
    ProviderUpstreamError,
    ReviewRagError,
    StreamAbortedError,
)
from reviewrag.log import get_logger

logger = get_logger(__name__)

FALLBACK_MODEL = "gemini-1.5-pro"


class ProviderFamily(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"


MODEL_PREFIXES = (
    ("gemini", ProviderFamily.GOOGLE),
    ("gpt", ProviderFamily.OPENAI),
)


@dataclass(frozen=True)
class ChatMessage:
    role: str  # system | user | assistant
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class GenerationRequest:
    model: str
    messages: List[ChatMessage] = field(default_factory=list)
    temperature: float = 0.7

    @property
    def system_instruction(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "system")

    @property
    def conversation(self) -> List[ChatMessage]:
        return [m for m in self.messages if m.role != "system"]


@dataclass(frozen=True)
class ResolvedModel:
    family: ProviderFamily
    model: str


def resolve_model(model_id: str | None) -> ResolvedModel:
    """Map a model id to the provider family that serves it.

    Unrecognized ids fall back to FALLBACK_MODEL on Google.
    """
    name = (model_id or "").strip()
    for prefix, family in MODEL_PREFIXES:
        if name.startswith(prefix):
            return ResolvedModel(family=family, model=name)
    logger.warning("Unrecognized model %r, falling back to %s", model_id, FALLBACK_MODEL)
    return ResolvedModel(family=ProviderFamily.GOOGLE, model=FALLBACK_MODEL)


class GenerationProvider(ABC):
    family: ProviderFamily

    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def _require_key(self) -> str:
        if not self.api_key:
            raise ProviderCredentialError(
                f"No API key configured for the {self.family.value} generation provider",
                {"provider": self.family.value},
            )
        return self.api_key

    @abstractmethod
    def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield response text incrementally, in generation order."""

    @abstractmethod
    async def complete(self, request: GenerationRequest) -> str:
        """Return the whole response text."""


class OpenAIGenerationProvider(GenerationProvider):
    family = ProviderFamily.OPENAI

    def __init__(self, api_key: str) -> None:
        super().__init__(api_key)
        self._client: AsyncOpenAI | None = None

    def get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self._require_key())
        return self._client

    @staticmethod
    def _translate(e: Exception, started: bool) -> ReviewRagError:
        if isinstance(e, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ProviderCredentialError(f"OpenAI rejected the generation credentials: {e}")
        if started:
            return StreamAbortedError(f"OpenAI stream aborted: {e}")
        return ProviderUpstreamError(f"OpenAI generation failed: {e}")

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        client = self.get_client()
        started = False
        try:
            chunks = await client.chat.completions.create(
                model=request.model,
                messages=[m.to_dict() for m in request.messages],
                temperature=request.temperature,
                stream=True,
            )
            async for chunk in chunks:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
                    started = True
        except openai.OpenAIError as e:
            raise self._translate(e, started) from e

    async def complete(self, request: GenerationRequest) -> str:
        client = self.get_client()
        try:
            resp = await client.chat.completions.create(
                model=request.model,
                messages=[m.to_dict() for m in request.messages],
                temperature=request.temperature,
            )
        except openai.OpenAIError as e:
            raise self._translate(e, started=False) from e
        content = resp.choices[0].message.content or ""
        return content.strip()


class GeminiGenerationProvider(GenerationProvider):
    """Gemini via google-genai; the system message becomes ``system_instruction``."""

    family = ProviderFamily.GOOGLE

    def __init__(self, api_key: str) -> None:
        super().__init__(api_key)
        self._client: genai.Client | None = None

    def get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._require_key())
        return self._client

    @staticmethod
    def _contents(request: GenerationRequest) -> List[genai_types.Content]:
        return [
            genai_types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[genai_types.Part(text=m.content)],
            )
            for m in request.conversation
        ]

    @staticmethod
    def _config(request: GenerationRequest) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            system_instruction=request.system_instruction or None,
            temperature=request.temperature,
        )

    @staticmethod
    def _translate(e: Exception, started: bool) -> ReviewRagError:
        if isinstance(e, genai_errors.ClientError) and e.code in (401, 403):
            return ProviderCredentialError(f"Google rejected the generation credentials: {e}")
        if started:
            return StreamAbortedError(f"Gemini stream aborted: {e}")
        return ProviderUpstreamError(f"Gemini generation failed: {e}")

    async def stream(self, request: GenerationRequest) -> AsyncIterator[str]:
        client = self.get_client()
        started = False
        try:
            chunks = await client.aio.models.generate_content_stream(
                model=request.model,
                contents=self._contents(request),
                config=self._config(request),
            )
            async for chunk in chunks:
                if chunk.text:
                    yield chunk.text
                    started = True
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise self._translate(e, started) from e

    async def complete(self, request: GenerationRequest) -> str:
        client = self.get_client()
        try:
            resp = await client.aio.models.generate_content(
                model=request.model,
                contents=self._contents(request),
                config=self._config(request),
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise self._translate(e, started=False) from e
        return (resp.text or "").strip()


class GenerationRegistry:
    def __init__(self, providers: Dict[ProviderFamily, GenerationProvider]) -> None:
        self._providers = dict(providers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "GenerationRegistry":
        return cls(
            {
                ProviderFamily.GOOGLE: GeminiGenerationProvider(settings.GOOGLE_API_KEY),
                ProviderFamily.OPENAI: OpenAIGenerationProvider(settings.OPENAI_API_KEY),
            }
        )

    def get(self, family: ProviderFamily) -> GenerationProvider:
        return self._providers[family]
