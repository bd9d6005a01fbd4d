"""
Token accounting for prompt budgeting.

Token counts here are an approximation (words times a per-model multiplier),
good enough to keep payloads inside a budget. They are not billing-grade.

Truncation respects sentence boundaries: sentence spans come from NLTK's
Punkt tokenizer. An untrained ``PunktSentenceTokenizer`` is used so no corpus
download is required; it splits on terminal punctuation followed by whitespace.

Example:
    >>> accountant = TokenAccountant(model="openai/gpt-4")
    >>> accountant.estimate("Taskly helps small teams plan sprints.")
    8
    >>> accountant.truncate_text("First sentence. Second sentence.", budget=3)
    'First sentence.'
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from nltk.tokenize.punkt import PunktSentenceTokenizer

from prdsmith.config.logging import get_logger
from prdsmith.models import Message

logger = get_logger(__name__)

DEFAULT_MULTIPLIERS: dict[str, float] = {
    "gpt-4": 1.3,
    "gpt-4-turbo-preview": 1.3,
    "gpt-3.5-turbo": 1.2,
}


class TokenAccountant:
    """
    Approximates token counts and trims message lists to a budget.

    Attributes:
        model: Model whose multiplier is used by default (provider prefix allowed)
        default_multiplier: Tokens per word for models missing from the table
        multipliers: Tokens per word keyed by bare model name
    """

    def __init__(
        self,
        model: str = "gpt-4",
        default_multiplier: float = 1.3,
        multipliers: dict[str, float] | None = None,
    ):
        self.model = model
        self.default_multiplier = default_multiplier
        self.multipliers = dict(DEFAULT_MULTIPLIERS if multipliers is None else multipliers)
        self._sentences = PunktSentenceTokenizer()

    def multiplier_for(self, model: str | None = None) -> float:
        """
        Return the tokens-per-word multiplier for a model.

        The provider prefix ("openai/") is ignored and the longest table key
        that prefixes the model name wins, so "gpt-4-0613" uses "gpt-4".
        """
        name = (model or self.model).rsplit("/", 1)[-1].lower()
        best: str | None = None
        for key in self.multipliers:
            if name.startswith(key.lower()) and (best is None or len(key) > len(best)):
                best = key
        return self.multipliers[best] if best is not None else self.default_multiplier

    def estimate(self, text: str, model: str | None = None) -> int:
        """Estimate the token count of a string."""
        if not text:
            return 0
        words = len(text.split())
        return math.ceil(words * self.multiplier_for(model))

    def estimate_messages(self, messages: Sequence[Message], model: str | None = None) -> int:
        """Estimate the token count of an ordered message list."""
        return sum(self.estimate(message.content, model) for message in messages)

    def truncate_text(self, text: str, budget: int, model: str | None = None) -> str:
        """
        Cut text down to at most ``budget`` estimated tokens.

        Prefers the longest prefix that ends on a sentence boundary. When not
        even the first sentence fits, falls back to the longest character
        prefix that fits.

        Returns:
            The original text if it already fits, otherwise a prefix of it
            (possibly empty when ``budget`` is 0).
        """
        if self.estimate(text, model) <= budget:
            return text
        if budget <= 0:
            return ""

        best_end = 0
        for _start, end in self._sentences.span_tokenize(text):
            if self.estimate(text[:end], model) > budget:
                break
            best_end = end
        if best_end:
            return text[:best_end]

        # No sentence fits: binary search the longest character prefix that does.
        low, high = 0, len(text)
        while low < high:
            mid = (low + high + 1) // 2
            if self.estimate(text[:mid], model) <= budget:
                low = mid
            else:
                high = mid - 1
        return text[:low].rstrip()

    def truncate_to_budget(
        self,
        messages: Sequence[Message],
        budget: int,
        model: str | None = None,
    ) -> list[Message]:
        """
        Trim a message list to fit ``budget`` estimated tokens.

        System messages and the final message (the current turn) are always
        kept verbatim. The remaining budget is filled with the other messages
        from newest to oldest, so the oldest are dropped first; the message
        that straddles the limit is truncated at a sentence boundary.

        If the protected messages alone exceed the budget they are returned
        unchanged and the caller decides what to do.

        Args:
            messages: Ordered messages (system first, current prompt last)
            budget: Maximum estimated tokens
            model: Model whose multiplier applies (defaults to ``self.model``)

        Returns:
            Surviving messages in their original order
        """
        messages = list(messages)
        if not messages or self.estimate_messages(messages, model) <= budget:
            return messages

        last = len(messages) - 1
        protected = {i for i, m in enumerate(messages) if m.role == "system" or i == last}
        remaining = budget - sum(self.estimate(messages[i].content, model) for i in protected)

        kept: dict[int, Message] = {i: messages[i] for i in protected}
        dropped = 0
        for i in range(last - 1, -1, -1):
            if i in protected:
                continue
            message = messages[i]
            cost = self.estimate(message.content, model)
            if cost <= remaining:
                kept[i] = message
                remaining -= cost
                continue
            # Boundary reached: keep a sentence-truncated head, drop everything older
            content = self.truncate_text(message.content, remaining, model) if remaining > 0 else ""
            if content:
                kept[i] = Message(role=message.role, content=content)
            dropped = sum(1 for j in range(i + 1) if j not in kept and j not in protected)
            break

        logger.debug(
            f"Truncated {len(messages)} messages to budget {budget}: "
            f"{len(kept)} kept, {dropped} dropped"
        )
        return [kept[i] for i in sorted(kept)]
