"""
Data structures shared by the orchestration layer.

- RequestContext: per-call parameters (conversation, section, model overrides)
- Message: one role-tagged entry of the payload sent upstream
- GenerationParams: generation parameters handed to the upstream adapter
- TokenUsage: prompt/completion token counts
- Completion / StreamDelta: what the upstream adapter returns
- StreamChunk: one incremental unit delivered to stream observers
- GenerationResult: the final, immutable answer returned to callers and cached
- SessionUsage / AggregateUsage: cumulative usage snapshots
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

Role = Literal["system", "user", "assistant"]


class RequestContext(BaseModel):
    """
    Parameters of a single orchestrated call.

    Unset ``model``, ``temperature`` and ``max_tokens`` are resolved by the
    orchestrator from the section template and then from the global LLM
    settings. The resolved context is a new instance; this one is never mutated.

    Example:
        >>> ctx = RequestContext(conversation_id="c1", section="goals")
    """

    conversation_id: str = Field(min_length=1, description="Conversation (session) identifier")
    section: str = Field(default="introduction", description="Dialogue section being worked on")
    model: str | None = Field(None, description="Model override")
    temperature: float | None = Field(None, ge=0.0, le=2.0, description="Temperature override")
    max_tokens: int | None = Field(None, gt=0, description="Maximum tokens in the response")
    stream: bool = Field(default=False, description="Whether the call streams its output")
    prior_context: dict[str, Any] | None = Field(
        None,
        description="Prior-section context, e.g. {'previous_sections': {'goals': {...}}}. "
                    "When None the orchestrator asks the conversation store.",
    )

    model_config = ConfigDict(frozen=True)


class Message(BaseModel):
    """One role-tagged message of the upstream payload."""

    role: Role
    content: str

    model_config = ConfigDict(frozen=True)

    def to_dict(self) -> dict[str, str]:
        """Wire format expected by chat-completion APIs."""
        return {"role": self.role, "content": self.content}


class GenerationParams(BaseModel):
    """Generation parameters handed to the upstream adapter."""

    model: str
    temperature: float
    max_tokens: int
    timeout: float | None = None

    model_config = ConfigDict(frozen=True)


class TokenUsage(BaseModel):
    """Token counts for one call."""

    prompt_tokens: int = Field(default=0, ge=0)
    completion_tokens: int = Field(default=0, ge=0)

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Completion(BaseModel):
    """A non-streaming upstream response."""

    text: str
    finish_reason: str | None = None
    model: str | None = None
    usage: TokenUsage | None = None


class StreamDelta(BaseModel):
    """One unit of a streaming upstream response."""

    delta: str = ""
    done: bool = False
    finish_reason: str | None = None
    usage: TokenUsage | None = None


class StreamChunk(BaseModel):
    """An incremental piece of output delivered to stream observers."""

    conversation_id: str
    index: int = Field(ge=0, description="Position of this chunk within the generation")
    content: str
    done: bool = False
    finish_reason: str | None = None

    model_config = ConfigDict(frozen=True)


class GenerationResult(BaseModel):
    """
    The outcome of an orchestrated call.

    Stored verbatim in the response cache. ``fallback`` marks canned responses
    substituted while the upstream was unavailable; their shape is otherwise
    identical to genuine model output.
    """

    text: str
    finish_reason: str | None = None
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    fallback: bool = False

    model_config = ConfigDict(frozen=True)


class SessionUsage(BaseModel):
    """Cumulative usage of one conversation."""

    conversation_id: str
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    request_count: int = 0

    model_config = ConfigDict(frozen=True)


class AggregateUsage(BaseModel):
    """Usage summed across all tracked conversations."""

    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    request_count: int = 0
    active_sessions: int = 0

    model_config = ConfigDict(frozen=True)
