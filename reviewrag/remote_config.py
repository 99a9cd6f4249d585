"""TTL-cached dynamic configuration backed by a Redis hash.

Operators tune the chat pipeline by writing string values into the hash named by
settings.REMOTE_CONFIG_KEY, e.g.:

    HSET reviewrag:remote_config preferred_model gpt-4o-mini max_context_reviews 8

RemoteConfig reads the hash through a read-through cache with an explicit expiry
(settings.REMOTE_CONFIG_TTL_SECONDS, 10 minutes by default). Missing or invalid entries
fall back per key to the hard-coded defaults from settings; if Redis is unreachable the
whole snapshot falls back to defaults and the next call tries again.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, fields, replace
from typing import Any, Callable, Dict, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from reviewrag.config import Settings
from reviewrag.log import get_logger

logger = get_logger(__name__)

EMBEDDING_PROVIDERS = ("google", "openai")


@dataclass(frozen=True)
class RemoteConfigValues:
    agent_system_instructions: str
    preferred_model: str
    embedding_provider: str
    max_context_reviews: int
    similarity_threshold: float

    @classmethod
    def defaults_from(cls, settings: Settings) -> "RemoteConfigValues":
        return cls(
            agent_system_instructions=settings.DEFAULT_SYSTEM_INSTRUCTIONS,
            preferred_model=settings.DEFAULT_MODEL,
            embedding_provider=settings.DEFAULT_EMBEDDING_PROVIDER,
            max_context_reviews=settings.DEFAULT_MAX_CONTEXT_REVIEWS,
            similarity_threshold=settings.DEFAULT_SIMILARITY_THRESHOLD,
        )


class ConfigSource(Protocol):
    async def fetch(self) -> Dict[str, str]:
        ...


class RedisConfigSource:
    """Reads all fields of one Redis hash."""

    def __init__(self, client: aioredis.Redis, key: str) -> None:
        self.client = client
        self.key = key

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisConfigSource":
        client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
        return cls(client, settings.REMOTE_CONFIG_KEY)

    async def fetch(self) -> Dict[str, str]:
        return await self.client.hgetall(self.key)

    async def close(self) -> None:
        await self.client.aclose()


def _positive_int(raw: str) -> int:
    v = int(raw)
    if v <= 0:
        raise ValueError("must be positive")
    return v


def _unit_float(raw: str) -> float:
    v = float(raw)
    if not 0.0 <= v <= 1.0:
        raise ValueError("must be within [0, 1]")
    return v


def _provider(raw: str) -> str:
    v = raw.strip().lower()
    if v not in EMBEDDING_PROVIDERS:
        raise ValueError(f"must be one of {EMBEDDING_PROVIDERS}")
    return v


def _non_empty(raw: str) -> str:
    if not raw.strip():
        raise ValueError("must not be empty")
    return raw


_PARSERS: Dict[str, Callable[[str], Any]] = {
    "agent_system_instructions": _non_empty,
    "preferred_model": lambda raw: _non_empty(raw).strip(),
    "embedding_provider": _provider,
    "max_context_reviews": _positive_int,
    "similarity_threshold": _unit_float,
}


def parse_config_values(raw: Dict[str, str], defaults: RemoteConfigValues) -> RemoteConfigValues:
    """Merge raw string values over defaults, keeping the default for any bad entry."""
    parsed: Dict[str, Any] = {}
    for f in fields(RemoteConfigValues):
        if f.name not in raw:
            continue
        try:
            parsed[f.name] = _PARSERS[f.name](raw[f.name])
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring remote config %s=%r: %s", f.name, raw[f.name], e)
    return replace(defaults, **parsed)


class RemoteConfig:
    """Read-through cache over a ConfigSource with a fixed time-to-live."""

    def __init__(
        self,
        source: Optional[ConfigSource],
        defaults: RemoteConfigValues,
        ttl_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.defaults = defaults
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._values: Optional[RemoteConfigValues] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings, source: Optional[ConfigSource] = None) -> "RemoteConfig":
        return cls(
            source if source is not None else RedisConfigSource.from_settings(settings),
            RemoteConfigValues.defaults_from(settings),
            ttl_seconds=settings.REMOTE_CONFIG_TTL_SECONDS,
        )

    def _fresh(self) -> Optional[RemoteConfigValues]:
        if self._values is not None and self._clock() < self._expires_at:
            return self._values
        return None

    async def snapshot(self) -> RemoteConfigValues:
        """Return the cached values, refetching once they have expired."""
        cached = self._fresh()
        if cached is not None:
            return cached
        async with self._lock:
            # another turn may have refreshed while we waited
            cached = self._fresh()
            if cached is not None:
                return cached
            return await self._load()

    async def get(self, key: str) -> Any:
        return getattr(await self.snapshot(), key)

    async def refresh(self) -> RemoteConfigValues:
        """Drop the cached values and fetch again."""
        async with self._lock:
            self._values = None
            self._expires_at = 0.0
            return await self._load()

    async def _load(self) -> RemoteConfigValues:
        if self.source is None:
            return self.defaults
        try:
            raw = await self.source.fetch()
        except (RedisError, OSError) as e:
            logger.error("Failed to fetch remote config, using defaults: %s", e)
            return self.defaults
        values = parse_config_values(raw or {}, self.defaults)
        self._values = values
        self._expires_at = self._clock() + self.ttl_seconds
        logger.info("Remote config fetched (%d keys)", len(raw or {}))
        return values
