"""Unit tests for UsageTracker."""

from prdsmith.models import TokenUsage
from prdsmith.state.usage import UsageTracker


class TestUsageTracker:

    def test_unknown_conversation_is_zero(self):
        usage = UsageTracker().get("c1")
        assert usage.total_tokens == 0
        assert usage.request_count == 0

    def test_record_accumulates(self):
        tracker = UsageTracker()
        tracker.record("c1", TokenUsage(prompt_tokens=100, completion_tokens=50))
        tracker.record("c1", TokenUsage(prompt_tokens=10, completion_tokens=5))

        usage = tracker.get("c1")
        assert usage.prompt_tokens == 110
        assert usage.completion_tokens == 55
        assert usage.total_tokens == 165
        assert usage.request_count == 2

    def test_record_without_usage_counts_request(self):
        tracker = UsageTracker()
        tracker.record("c1")
        assert tracker.get("c1").request_count == 1
        assert tracker.get("c1").total_tokens == 0

    def test_snapshots_are_immutable(self):
        tracker = UsageTracker()
        before = tracker.record("c1", TokenUsage(prompt_tokens=1))
        tracker.record("c1", TokenUsage(prompt_tokens=1))
        assert before.prompt_tokens == 1

    def test_aggregate(self):
        tracker = UsageTracker()
        tracker.record("c1", TokenUsage(prompt_tokens=100, completion_tokens=50))
        tracker.record("c2", TokenUsage(prompt_tokens=20, completion_tokens=10))

        total = tracker.aggregate()
        assert total.total_tokens == 180
        assert total.request_count == 2
        assert total.active_sessions == 2

    def test_reset(self):
        tracker = UsageTracker()
        tracker.record("c1", TokenUsage(prompt_tokens=1))
        tracker.record("c2", TokenUsage(prompt_tokens=1))
        tracker.reset("c1")
        assert tracker.aggregate().active_sessions == 1
        tracker.reset()
        assert tracker.aggregate().active_sessions == 0
