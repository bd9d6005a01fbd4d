"""
Prior-conversation context for message assembly.

The conversation store is an external collaborator: the orchestrator only
reads a summary payload from it. ``InMemoryConversationStore`` backs the CLI
and the tests.

Payload shape::

    {
        "previous_sections": {
            "introduction": {"product": "Taskly", "problem": "..."},
            "goals": {"primary": "..."},
        }
    }
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

SUMMARY_VALUE_CHARS = 100


class ConversationStore(ABC):
    """Read-only access to what earlier sections of a conversation produced."""

    @abstractmethod
    async def get_prior_context(self, conversation_id: str) -> dict[str, Any] | None:
        """
        Return the prior-context payload of a conversation, or None if it has none.
        """
        pass


class InMemoryConversationStore(ConversationStore):
    """Dictionary-backed store."""

    def __init__(self, contexts: dict[str, dict[str, Any]] | None = None):
        self._contexts: dict[str, dict[str, Any]] = dict(contexts or {})

    def set_section(self, conversation_id: str, section: str, data: dict[str, Any]) -> None:
        """Record the structured output of a completed section."""
        context = self._contexts.setdefault(conversation_id, {"previous_sections": {}})
        context.setdefault("previous_sections", {})[section] = dict(data)

    async def get_prior_context(self, conversation_id: str) -> dict[str, Any] | None:
        return self._contexts.get(conversation_id)


def build_context_summary(context: dict[str, Any] | None) -> str:
    """
    Render the prior-context payload as plain text for the model.

    Each section becomes a heading line followed by ``key: value`` lines with
    values clipped to 100 characters. Non-mapping section entries are skipped.
    Returns an empty string when there is nothing to summarise.
    """
    if not context:
        return ""
    previous = context.get("previous_sections")
    if not isinstance(previous, dict):
        return ""

    summaries = []
    for section, data in previous.items():
        if not isinstance(data, dict) or not data:
            continue
        lines = "\n".join(
            f"{key}: {str(value)[:SUMMARY_VALUE_CHARS]}" for key, value in data.items()
        )
        summaries.append(f"{section}:\n{lines}")
    return "\n\n".join(summaries)
