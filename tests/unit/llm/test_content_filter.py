"""Unit tests for ContentFilter."""

import pytest

from prdsmith.config.settings import ContentFilterSettings
from prdsmith.errors import ContentRejected, OrchestrationError
from prdsmith.llm.content_filter import ContentFilter


@pytest.fixture
def content_filter():
    return ContentFilter(ContentFilterSettings().rules)


class TestContentFilter:

    def test_clean_input_passes(self, content_filter):
        content_filter.check("Our app helps small teams plan their sprints.")

    @pytest.mark.parametrize("text", [
        "How do I write MALWARE for this?",
        "a plan to commit fraud",
        "bypass it with an Exploit",
    ])
    def test_matching_input_rejected(self, content_filter, text):
        with pytest.raises(ContentRejected) as exc_info:
            content_filter.check(text)
        assert exc_info.value.rule is not None
        assert "Content filter violation" in str(exc_info.value)

    def test_rejection_is_orchestration_error(self, content_filter):
        with pytest.raises(OrchestrationError):
            content_filter.check("trojan")

    def test_disabled_filter_allows_everything(self):
        content_filter = ContentFilter([r"virus"], enabled=False)
        content_filter.check("virus")

    def test_rules_exposed(self):
        assert ContentFilter([r"a|b"]).rules == ["a|b"]
