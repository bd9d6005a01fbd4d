"""
Unit tests for prior-context summaries, the in-memory conversation store
and section templates.
"""

import pytest

from prdsmith.llm.context import InMemoryConversationStore, build_context_summary
from prdsmith.llm.templates import (
    DEFAULT_SECTION,
    FALLBACK_RESPONSES,
    SECTION_TEMPLATES,
    get_template,
)


class TestBuildContextSummary:

    def test_empty_inputs(self):
        assert build_context_summary(None) == ""
        assert build_context_summary({}) == ""
        assert build_context_summary({"previous_sections": {}}) == ""

    def test_formats_sections(self):
        summary = build_context_summary({
            "previous_sections": {
                "introduction": {"product": "Taskly", "problem": "Teams lose track of work"},
                "goals": {"primary": "Grow weekly active teams"},
            }
        })
        assert summary == (
            "introduction:\n"
            "product: Taskly\n"
            "problem: Teams lose track of work\n"
            "\n"
            "goals:\n"
            "primary: Grow weekly active teams"
        )

    def test_values_clipped(self):
        summary = build_context_summary({"previous_sections": {"goals": {"long": "x" * 250}}})
        assert summary == "goals:\nlong: " + "x" * 100

    def test_non_mapping_sections_skipped(self):
        summary = build_context_summary({
            "previous_sections": {"introduction": "free text", "goals": {"primary": "Grow"}}
        })
        assert summary == "goals:\nprimary: Grow"


class TestInMemoryConversationStore:

    @pytest.mark.asyncio
    async def test_unknown_conversation(self):
        assert await InMemoryConversationStore().get_prior_context("c1") is None

    @pytest.mark.asyncio
    async def test_set_section(self):
        store = InMemoryConversationStore()
        store.set_section("c1", "introduction", {"product": "Taskly"})
        store.set_section("c1", "goals", {"primary": "Grow"})

        context = await store.get_prior_context("c1")
        assert context == {
            "previous_sections": {
                "introduction": {"product": "Taskly"},
                "goals": {"primary": "Grow"},
            }
        }
        assert await store.get_prior_context("c2") is None


class TestTemplates:

    def test_every_section_has_a_fallback(self):
        assert set(SECTION_TEMPLATES) == set(FALLBACK_RESPONSES)

    def test_unknown_section_uses_default(self):
        assert get_template("appendix") is SECTION_TEMPLATES[DEFAULT_SECTION]

    def test_example_messages_alternate(self):
        messages = SECTION_TEMPLATES["goals"].example_messages()
        assert [m.role for m in messages] == ["user", "assistant"]

    def test_section_defaults(self):
        assert SECTION_TEMPLATES["requirements"].temperature == 0.6
        assert SECTION_TEMPLATES["audience"].temperature == 0.7
        assert all(t.max_tokens == 1500 for t in SECTION_TEMPLATES.values())
