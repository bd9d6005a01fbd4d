"""Cumulative token usage per conversation."""

from __future__ import annotations

from prdsmith.models import AggregateUsage, SessionUsage, TokenUsage


class UsageTracker:
    """
    Tracks token usage and request counts per conversation.

    Snapshots are immutable; each update stores a new ``SessionUsage``, so
    counters only ever grow between resets.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, SessionUsage] = {}

    def record(self, conversation_id: str, usage: TokenUsage | None = None) -> SessionUsage:
        """Count one completed request. A missing usage counts as zero tokens."""
        usage = usage or TokenUsage()
        current = self._sessions.get(conversation_id) or SessionUsage(conversation_id=conversation_id)
        updated = current.model_copy(update={
            "total_tokens": current.total_tokens + usage.total_tokens,
            "prompt_tokens": current.prompt_tokens + usage.prompt_tokens,
            "completion_tokens": current.completion_tokens + usage.completion_tokens,
            "request_count": current.request_count + 1,
        })
        self._sessions[conversation_id] = updated
        return updated

    def get(self, conversation_id: str) -> SessionUsage:
        """Usage of one conversation (zeros if it has none)."""
        return self._sessions.get(conversation_id) or SessionUsage(conversation_id=conversation_id)

    def aggregate(self) -> AggregateUsage:
        """Usage summed over every tracked conversation."""
        sessions = list(self._sessions.values())
        return AggregateUsage(
            total_tokens=sum(s.total_tokens for s in sessions),
            prompt_tokens=sum(s.prompt_tokens for s in sessions),
            completion_tokens=sum(s.completion_tokens for s in sessions),
            request_count=sum(s.request_count for s in sessions),
            active_sessions=len(sessions),
        )

    def reset(self, conversation_id: str | None = None) -> None:
        """Clear one conversation's usage, or all of it."""
        if conversation_id is None:
            self._sessions.clear()
        else:
            self._sessions.pop(conversation_id, None)
