"""Retrieval-augmented chat over app-store reviews, stored in PostgreSQL with pgvector.

Submodules overview:
- main: FastAPI application bootstrap, lifecycle and routes.
- services: Service container built once per process and injected into routes.
- config: Application settings and environment variable loading.
- remote_config: TTL-cached operator configuration read from a Redis hash.
- db: Async engine/session helpers and schema/index initialization.
- models: ORM models for apps and reviews.
- schemas: Pydantic request/response models and stream envelopes.
- embedding: Embedding providers (OpenAI, Google) and their registry.
- store: Nearest-neighbor queries over stored review vectors.
- search: Similarity search, similar-review lookup and sentiment search.
- retrieval: Context-budget packing of ranked reviews.
- insights: Rating themes and sentiment breakdowns.
- prompts: Grounded prompt rendering.
- generation: Chat model providers (OpenAI, Gemini) and model resolution.
- orchestrator: Chat turn state machine and envelope streaming.
- errors: Exception hierarchy.
- log: Logger factory.
- obs: Observability utilities (tracing/spans).
"""
