"""
Upstream model client adapter.

``UpstreamClient`` is the boundary between the orchestrator and a model API.
Implementations raise ``UpstreamError`` for every failure, classified into an
``UpstreamErrorKind`` here and nowhere else.

``LiteLLMClient`` talks to any provider LiteLLM supports; switching from
OpenAI to Anthropic or a local Ollama model is a change of the model string.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import Any

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    AuthenticationError,
    BadRequestError,
    InternalServerError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
    UnprocessableEntityError,
)

from prdsmith.config.logging import get_logger
from prdsmith.config.settings import LLMSettings
from prdsmith.errors import UpstreamError, UpstreamErrorKind
from prdsmith.models import Completion, GenerationParams, Message, StreamDelta, TokenUsage

logger = get_logger(__name__)


class UpstreamClient(ABC):
    """Abstract chat-completion client."""

    @abstractmethod
    async def complete(self, messages: Sequence[Message], params: GenerationParams) -> Completion:
        """
        Request a complete response.

        Raises:
            UpstreamError: Classified failure of the call
        """
        pass

    @abstractmethod
    def complete_stream(
        self, messages: Sequence[Message], params: GenerationParams
    ) -> AsyncIterator[StreamDelta]:
        """
        Request a streamed response.

        Implementations are async generators: nothing is sent until the first
        item is requested. The last item has ``done=True``.

        Raises:
            UpstreamError: Classified failure, on opening or mid-stream
        """
        pass


# Order matters: litellm's Timeout is checked before the connection errors
_EXCEPTION_KINDS: tuple[tuple[type[BaseException], UpstreamErrorKind], ...] = (
    (Timeout, UpstreamErrorKind.TIMEOUT),
    (RateLimitError, UpstreamErrorKind.RATE_LIMITED),
    (AuthenticationError, UpstreamErrorKind.UNAUTHORIZED),
    (PermissionDeniedError, UpstreamErrorKind.FORBIDDEN),
    (BadRequestError, UpstreamErrorKind.BAD_REQUEST),
    (NotFoundError, UpstreamErrorKind.BAD_REQUEST),
    (UnprocessableEntityError, UpstreamErrorKind.BAD_REQUEST),
    (ServiceUnavailableError, UpstreamErrorKind.SERVER_ERROR),
    (InternalServerError, UpstreamErrorKind.SERVER_ERROR),
    (APIConnectionError, UpstreamErrorKind.NETWORK),
    (TimeoutError, UpstreamErrorKind.TIMEOUT),
    (ConnectionError, UpstreamErrorKind.NETWORK),
)


def classify_exception(exc: BaseException) -> UpstreamError:
    """
    Wrap a provider exception in an ``UpstreamError`` of the right kind.

    Known litellm exception classes are matched first, then an integer
    ``status_code`` attribute. Anything else is treated as a server error.
    """
    if isinstance(exc, UpstreamError):
        return exc

    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None

    for exc_type, kind in _EXCEPTION_KINDS:
        if isinstance(exc, exc_type):
            break
    else:
        kind = UpstreamErrorKind.from_status(status_code)

    return UpstreamError.from_kind(
        kind, f"LLM API call failed: {exc}", status_code=status_code, cause=exc
    )


def _usage_from(raw: Any) -> TokenUsage | None:
    if raw is None:
        return None
    return TokenUsage(
        prompt_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


class LiteLLMClient(UpstreamClient):
    """
    ``UpstreamClient`` backed by ``litellm.acompletion``.

    LiteLLM's own retries are disabled; retrying belongs to ``RetryPolicy``.

    Args:
        settings: LLM configuration (api_key, api_base)
    """

    def __init__(self, settings: LLMSettings):
        self._settings = settings

    def _call_kwargs(self, messages: Sequence[Message], params: GenerationParams) -> dict[str, Any]:
        call_kwargs: dict[str, Any] = {
            "model": params.model,
            "messages": [message.to_dict() for message in messages],
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "num_retries": 0,
        }
        if params.timeout is not None:
            call_kwargs["timeout"] = params.timeout
        if self._settings.api_key:
            call_kwargs["api_key"] = self._settings.api_key
        if self._settings.api_base:
            call_kwargs["api_base"] = self._settings.api_base
        return call_kwargs

    async def complete(self, messages: Sequence[Message], params: GenerationParams) -> Completion:
        try:
            response = await acompletion(**self._call_kwargs(messages, params))
        except Exception as e:
            raise classify_exception(e) from e

        choice = response.choices[0]
        return Completion(
            text=choice.message.content or "",
            finish_reason=choice.finish_reason,
            model=response.model or params.model,
            usage=_usage_from(getattr(response, "usage", None)),
        )

    async def complete_stream(
        self, messages: Sequence[Message], params: GenerationParams
    ) -> AsyncIterator[StreamDelta]:
        try:
            response = await acompletion(**self._call_kwargs(messages, params), stream=True)
        except Exception as e:
            raise classify_exception(e) from e

        finish_reason: str | None = None
        usage: TokenUsage | None = None
        try:
            async for chunk in response:
                usage = _usage_from(getattr(chunk, "usage", None)) or usage
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                finish_reason = choice.finish_reason or finish_reason
                content = getattr(choice.delta, "content", None)
                if content:
                    yield StreamDelta(delta=content)
        except Exception as e:
            raise classify_exception(e) from e

        logger.debug(f"Upstream stream finished ({finish_reason})")
        yield StreamDelta(done=True, finish_reason=finish_reason, usage=usage)
