"""
Error taxonomy of the orchestration layer.

Upstream failures are classified once, at the adapter boundary, into an
``UpstreamErrorKind``. Everything downstream (retry policy, fallback decision)
reads the kind instead of inspecting status codes again.
"""

from __future__ import annotations

from enum import Enum


class OrchestrationError(Exception):
    """Base class for errors raised by the orchestration layer."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class RateLimitExceeded(OrchestrationError):
    """The conversation used up its request quota for the current window."""

    def __init__(self, conversation_id: str, retry_after: float):
        super().__init__(
            f"Rate limit exceeded for conversation {conversation_id} "
            f"(retry after {retry_after:.1f}s)"
        )
        self.conversation_id = conversation_id
        self.retry_after = retry_after


class ContentRejected(OrchestrationError):
    """User input matched a disallowed-content rule."""

    def __init__(self, reason: str, rule: str | None = None):
        super().__init__(f"Content filter violation: {reason}")
        self.reason = reason
        self.rule = rule


class BudgetUnsatisfiable(OrchestrationError):
    """The prompt cannot be made to fit the token budget."""

    def __init__(self, estimated_tokens: int, budget: int):
        super().__init__(
            f"Prompt too long even after truncation: ~{estimated_tokens} tokens, "
            f"budget {budget}"
        )
        self.estimated_tokens = estimated_tokens
        self.budget = budget


class UpstreamErrorKind(str, Enum):
    """Closed set of upstream failure classes."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    NETWORK = "network"
    RATE_LIMITED = "rate_limited"

    @property
    def retriable(self) -> bool:
        return self not in _NON_RETRIABLE

    @classmethod
    def from_status(cls, status_code: int | None) -> UpstreamErrorKind:
        """Map an HTTP status code to a kind. Unknown codes count as server errors."""
        if status_code == 400 or status_code == 404 or status_code == 422:
            return cls.BAD_REQUEST
        if status_code == 401:
            return cls.UNAUTHORIZED
        if status_code == 403:
            return cls.FORBIDDEN
        if status_code == 408:
            return cls.TIMEOUT
        if status_code == 429:
            return cls.RATE_LIMITED
        return cls.SERVER_ERROR


_NON_RETRIABLE = frozenset({
    UpstreamErrorKind.BAD_REQUEST,
    UpstreamErrorKind.UNAUTHORIZED,
    UpstreamErrorKind.FORBIDDEN,
})

DEFAULT_FALLBACK_KINDS = frozenset({UpstreamErrorKind.NETWORK, UpstreamErrorKind.RATE_LIMITED})


class UpstreamError(OrchestrationError):
    """
    A classified failure of the upstream model API.

    Use ``UpstreamError.from_kind`` so the instance is an
    ``UpstreamRetriable`` or ``UpstreamNonRetriable`` according to its kind.
    """

    def __init__(
        self,
        kind: UpstreamErrorKind,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, cause=cause)
        self.kind = kind
        self.status_code = status_code

    @property
    def retriable(self) -> bool:
        return self.kind.retriable

    def is_fallback_eligible(
        self, eligible: frozenset[UpstreamErrorKind] = DEFAULT_FALLBACK_KINDS
    ) -> bool:
        """Whether exhausting retries on this error should degrade to a fallback."""
        return self.retriable and self.kind in eligible

    @staticmethod
    def from_kind(
        kind: UpstreamErrorKind,
        message: str,
        status_code: int | None = None,
        cause: BaseException | None = None,
    ) -> UpstreamError:
        error_cls = UpstreamRetriable if kind.retriable else UpstreamNonRetriable
        return error_cls(kind, message, status_code=status_code, cause=cause)


class UpstreamNonRetriable(UpstreamError):
    """Malformed request, bad credentials or forbidden: never retried."""


class UpstreamRetriable(UpstreamError):
    """Timeout, server-side or network failure: retried with backoff."""


class StreamInterrupted(OrchestrationError):
    """A streaming generation failed after output had started."""

    def __init__(self, conversation_id: str, message: str, cause: BaseException | None = None):
        super().__init__(f"Stream interrupted for conversation {conversation_id}: {message}", cause=cause)
        self.conversation_id = conversation_id


class DeliveryFailed(OrchestrationError):
    """The caller's chunk sink raised, or fell too far behind the stream."""
