"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- Provider API keys and embedding models
- Data stores (PostgreSQL + pgvector, Redis)
- Remote configuration cache and its hard-coded fallbacks
- Retrieval/generation knobs and streaming limits
- Logging and tracing

Values that operators tune at runtime (preferred model, embedding provider, context size,
similarity threshold, system instructions) are served by reviewrag.remote_config; the DEFAULT_*
fields here are the values used when that source is empty or unreachable.
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_INSTRUCTIONS = (
    "You are ReviewGPT, a senior product manager AI assistant specializing in app review analysis. "
    "Analyze the provided app reviews and extract actionable insights. "
    "Focus on identifying:\n"
    "- **Technical bugs**: Specific issues users are experiencing\n"
    "- **UX problems**: Interface and usability complaints\n"
    "- **Feature requests**: What users want added or improved\n"
    "- **Sentiment trends**: Overall user satisfaction patterns\n\n"
    "Be concise, data-driven, and provide bulleted summaries. "
    "Always cite specific reviews when making claims."
)


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Provider credentials
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    GOOGLE_API_KEY: str = Field(default="", description="Google AI (Gemini) API key")

    # Embedding models
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    GOOGLE_EMBEDDING_MODEL: str = "text-embedding-004"  # 768 dims

    # Data stores
    DATABASE_URL: str = "postgresql+asyncpg://rag_user:rag_pass@db:5432/rag_db"
    REDIS_URL: str = "redis://redis:6379/0"
    REDIS_SOCKET_TIMEOUT_SECONDS: float = 2.0

    # Remote configuration
    REMOTE_CONFIG_KEY: str = "reviewrag:remote_config"
    REMOTE_CONFIG_TTL_SECONDS: int = 600
    DEFAULT_MODEL: str = "gemini-1.5-pro"
    DEFAULT_EMBEDDING_PROVIDER: str = "google"
    DEFAULT_MAX_CONTEXT_REVIEWS: int = 10
    DEFAULT_SIMILARITY_THRESHOLD: float = 0.5  # 0-1
    DEFAULT_SYSTEM_INSTRUCTIONS: str = DEFAULT_SYSTEM_INSTRUCTIONS

    # Retrieval/Generation
    MAX_CONTEXT_CHARACTERS: int = 8000
    SIMILAR_REVIEWS_THRESHOLD: float = 0.7
    GENERATION_TEMPERATURE: float = 0.7

    # Streaming
    CHAT_TURN_TIMEOUT_SECONDS: float = 60.0
    STREAM_QUEUE_SIZE: int = 32

    # Observability
    LOG_LEVEL: str = "INFO"
    OTEL_CONSOLE_EXPORT: bool = False

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
