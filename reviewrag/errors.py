"""Exception hierarchy for the review retrieval and chat pipeline.

Every turn-fatal condition is one of these kinds. Each carries a stable ``kind`` string
(used in error envelopes and JSON error bodies) and the HTTP status used by the
non-streaming routes.
"""
from typing import Any, Dict, Optional


class ReviewRagError(Exception):
    """Base exception for all pipeline errors."""

    kind = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ProviderCredentialError(ReviewRagError):
    """Missing or rejected embedding/generation credentials."""

    kind = "provider_credentials"
    status_code = 500


class ProviderUpstreamError(ReviewRagError):
    """Rate limiting, server error, or malformed response from a provider."""

    kind = "provider_upstream"
    status_code = 502


class UnknownProviderError(ReviewRagError):
    """An embedding provider id that no configured provider answers to."""

    kind = "unknown_provider"
    status_code = 400


class StoreUnavailableError(ReviewRagError):
    """The vector store could not be queried."""

    kind = "store_unavailable"
    status_code = 503


class RecordNotFoundError(ReviewRagError):
    kind = "not_found"
    status_code = 404

    def __init__(self, record_id: int) -> None:
        super().__init__(f"Review {record_id} not found", {"review_id": record_id})


class MissingEmbeddingError(ReviewRagError):
    kind = "missing_embedding"
    status_code = 422

    def __init__(self, record_id: int) -> None:
        super().__init__(f"Review {record_id} does not have an embedding", {"review_id": record_id})


class StreamAbortedError(ReviewRagError):
    """The generation stream ended unexpectedly after it had started."""

    kind = "stream_aborted"
    status_code = 502


class TurnTimeoutError(ReviewRagError):
    kind = "timeout"
    status_code = 504

    def __init__(self, stage: str) -> None:
        super().__init__(f"Chat turn timed out during {stage}", {"stage": stage})


class TurnCancelledError(ReviewRagError):
    kind = "cancelled"
    status_code = 499

    def __init__(self, reason: str = "cancelled by caller") -> None:
        super().__init__(f"Chat turn cancelled: {reason}", {"reason": reason})
