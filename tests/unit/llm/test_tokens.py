"""
Unit tests for TokenAccountant.

Tests cover:
- Word-count estimation with per-model multipliers
- Sentence-boundary and character-level text truncation
- Message-list truncation (protected messages, newest-first fill, ordering)
"""

import pytest

from prdsmith.llm.tokens import TokenAccountant
from prdsmith.models import Message


@pytest.fixture
def accountant():
    return TokenAccountant(model="openai/gpt-4")


# ---------------------------------------------------------------------------
# Estimation
# ---------------------------------------------------------------------------

class TestEstimate:

    def test_empty_text_is_zero(self, accountant):
        assert accountant.estimate("") == 0

    def test_rounds_up(self, accountant):
        # 3 words * 1.3 = 3.9
        assert accountant.estimate("one two three") == 4

    def test_model_multiplier(self, accountant):
        # 5 words * 1.2
        assert accountant.estimate("one two three four five", model="gpt-3.5-turbo") == 6

    def test_provider_prefix_ignored(self, accountant):
        assert accountant.multiplier_for("openai/gpt-3.5-turbo") == 1.2

    def test_unknown_model_uses_default(self):
        accountant = TokenAccountant(model="ollama/llama3", default_multiplier=1.5)
        assert accountant.multiplier_for() == 1.5
        assert accountant.estimate("one two") == 3

    def test_longest_prefix_wins(self):
        accountant = TokenAccountant(multipliers={"gpt-4": 1.3, "gpt-4o": 1.0})
        assert accountant.multiplier_for("gpt-4o-mini") == 1.0
        assert accountant.multiplier_for("gpt-4-0613") == 1.3

    def test_estimate_messages_sums(self, accountant):
        messages = [
            Message(role="system", content="one two three"),
            Message(role="user", content="four five six"),
        ]
        assert accountant.estimate_messages(messages) == 8


# ---------------------------------------------------------------------------
# Text truncation
# ---------------------------------------------------------------------------

class TestTruncateText:

    def test_text_within_budget_unchanged(self, accountant):
        text = "Short and sweet."
        assert accountant.truncate_text(text, budget=100) == text

    def test_cuts_on_sentence_boundary(self, accountant):
        text = "First sentence. Second sentence."
        assert accountant.truncate_text(text, budget=3) == "First sentence."

    def test_keeps_as_many_sentences_as_fit(self, accountant):
        text = "Alpha beta. Gamma delta. Epsilon zeta."
        # Two sentences = 4 words = 6 tokens; three = 6 words = 8 tokens
        assert accountant.truncate_text(text, budget=6) == "Alpha beta. Gamma delta."

    def test_falls_back_to_character_cut(self, accountant):
        text = "one two three four five six seven eight nine ten."
        result = accountant.truncate_text(text, budget=4)
        assert text.startswith(result)
        assert 0 < accountant.estimate(result) <= 4

    def test_zero_budget_is_empty(self, accountant):
        assert accountant.truncate_text("Some words here.", budget=0) == ""

    def test_result_never_exceeds_budget(self, accountant):
        text = "The team ships weekly. Reviews happen on Fridays. Bugs are triaged daily."
        for budget in range(0, 15):
            assert accountant.estimate(accountant.truncate_text(text, budget)) <= budget


# ---------------------------------------------------------------------------
# Message truncation
# ---------------------------------------------------------------------------

def _messages():
    return [
        Message(role="system", content="You are a product expert."),  # 5 words -> 7
        Message(role="user", content="Oldest example question here."),  # 4 -> 6
        Message(role="assistant", content="Oldest example answer here."),  # 4 -> 6
        Message(role="user", content="Context line one. Context line two."),  # 6 -> 8
        Message(role="user", content="Current prompt."),  # 2 -> 3
    ]


class TestTruncateToBudget:

    def test_within_budget_returns_everything(self, accountant):
        messages = _messages()
        assert accountant.truncate_to_budget(messages, budget=1000) == messages

    def test_drops_oldest_first(self, accountant):
        # Protected: 7 + 3 = 10. Budget 24 leaves 14: context (8) + answer (6)
        result = accountant.truncate_to_budget(_messages(), budget=24)
        contents = [m.content for m in result]
        assert "Oldest example question here." not in contents
        assert "Oldest example answer here." in contents
        assert contents[-1] == "Current prompt."

    def test_preserves_original_order(self, accountant):
        result = accountant.truncate_to_budget(_messages(), budget=24)
        assert [m.role for m in result] == ["system", "assistant", "user", "user"]

    def test_boundary_message_truncated_at_sentence(self, accountant):
        # Protected 10, remaining 4: only "Context line one." (3 words -> 4) fits
        result = accountant.truncate_to_budget(_messages(), budget=14)
        assert [m.content for m in result] == [
            "You are a product expert.",
            "Context line one.",
            "Current prompt.",
        ]

    def test_messages_older_than_boundary_dropped(self, accountant):
        result = accountant.truncate_to_budget(_messages(), budget=14)
        assert all("Oldest" not in m.content for m in result)

    def test_system_and_last_always_kept(self, accountant):
        result = accountant.truncate_to_budget(_messages(), budget=10)
        assert [m.content for m in result] == ["You are a product expert.", "Current prompt."]

    def test_protected_over_budget_returned_as_is(self, accountant):
        result = accountant.truncate_to_budget(_messages(), budget=5)
        assert [m.role for m in result] == ["system", "user"]
        assert accountant.estimate_messages(result) > 5

    def test_result_within_budget(self, accountant):
        for budget in range(10, 40):
            result = accountant.truncate_to_budget(_messages(), budget=budget)
            assert accountant.estimate_messages(result) <= budget
