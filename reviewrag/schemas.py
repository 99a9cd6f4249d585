"""Pydantic request/response schemas for the API.

Defines the public contracts used by the FastAPI endpoints:
- ChatRequest / HistoryMessage: input for the chat endpoints.
- ReviewSummary / ChatMetadata: retrieval stats and the reviews used as context.
- MetadataEnvelope, TextEnvelope, DoneEnvelope, ErrorEnvelope: the four event kinds of
  the /chat server-sent event stream, joined in the ``StreamEnvelope`` union and
  discriminated by ``type``. to_sse and parse_sse encode and decode one event.
- ChatCompletionResponse, SearchRequest, SearchResponse, SimilarReviewsResponse.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

Platform = Literal["ios", "android"]


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Request body for a grounded chat turn.

    Attributes:
        message: The user question.
        app_id: Restrict retrieval to one app.
        platform: Restrict retrieval to one platform.
        conversation_history: Prior turns, replayed verbatim between the system prompt
            and the grounded user prompt.
        model: Generation model override (otherwise the remote-config default).
        max_reviews: Context size override (otherwise the remote-config default).
        similarity_threshold: Minimum similarity override.
        embedding_provider: Embedding provider override.
    """
    message: str = Field(..., min_length=1, description="User question")
    app_id: Optional[int] = None
    platform: Optional[Platform] = None
    conversation_history: List[HistoryMessage] = Field(default_factory=list)
    model: Optional[str] = None
    max_reviews: Optional[int] = Field(default=None, ge=1, le=50)
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    embedding_provider: Optional[Literal["google", "openai"]] = None


class SimpleChatRequest(BaseModel):
    """Direct generation without retrieval; ``stream`` switches the reply to server-sent events."""
    message: str = Field(..., min_length=1)
    conversation_history: List[HistoryMessage] = Field(default_factory=list)
    model: Optional[str] = None
    stream: bool = False


class ReviewSummary(BaseModel):
    id: int
    author: Optional[str] = None
    rating: int
    title: str
    content: str
    similarity: float
    app_version: Optional[str] = None
    platform: Optional[str] = None

    @classmethod
    def from_candidate(cls, cand: Any) -> "ReviewSummary":
        r = cand.review
        return cls(
            id=r.id,
            author=r.author,
            rating=r.rating,
            title=r.title,
            content=r.content,
            similarity=cand.similarity,
            app_version=r.app_version,
            platform=r.platform,
        )


class ChatMetadata(BaseModel):
    review_count: int
    avg_similarity: float
    model: str
    cutoff_reason: str
    sentiment: Dict[str, float]
    themes: Dict[str, Any]
    reviews: List[ReviewSummary]


class MetadataEnvelope(BaseModel):
    type: Literal["metadata"] = "metadata"
    data: ChatMetadata


class TextEnvelope(BaseModel):
    type: Literal["text"] = "text"
    data: str


class DoneEnvelope(BaseModel):
    type: Literal["done"] = "done"


class ErrorEnvelope(BaseModel):
    type: Literal["error"] = "error"
    kind: str
    error: str


StreamEnvelope = Annotated[
    Union[MetadataEnvelope, TextEnvelope, DoneEnvelope, ErrorEnvelope],
    Field(discriminator="type"),
]

ENVELOPE_ADAPTER: TypeAdapter = TypeAdapter(StreamEnvelope)

TERMINAL_TYPES = frozenset({"done", "error"})


def is_terminal(envelope: BaseModel) -> bool:
    return getattr(envelope, "type", None) in TERMINAL_TYPES


def to_sse(envelope: StreamEnvelope) -> str:
    """Encode one envelope as a server-sent event."""
    return f"data: {envelope.model_dump_json()}\n\n"


def parse_sse(event: str) -> StreamEnvelope:
    """Decode one ``data:`` event produced by ``to_sse`` back into its envelope type.

    Raises:
        pydantic.ValidationError: The payload is not one of the four envelope kinds.
    """
    payload = event.strip()
    if payload.startswith("data:"):
        payload = payload[len("data:"):]
    return ENVELOPE_ADAPTER.validate_json(payload.strip())


class ChatCompletionResponse(BaseModel):
    response: str
    metadata: ChatMetadata


class SimpleChatResponse(BaseModel):
    response: str
    model: str


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    app_id: Optional[int] = None
    platform: Optional[Platform] = None
    limit: int = Field(default=10, ge=1, le=100)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    embedding_provider: Optional[Literal["google", "openai"]] = None
    include_sentiment: bool = False


class SearchResponse(BaseModel):
    query: str
    total_found: int
    avg_similarity: float
    reviews: List[ReviewSummary]
    sentiment: Optional[Dict[str, float]] = None
    avg_rating: Optional[float] = None


class SimilarReviewsResponse(BaseModel):
    review_id: int
    query: str
    total_found: int
    avg_similarity: float
    reviews: List[ReviewSummary]
