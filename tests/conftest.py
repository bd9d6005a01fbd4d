"""
Shared fakes and fixtures.

- FakeClock: manually advanced monotonic clock for the cache and rate limiter
- ScriptedClient: UpstreamClient that replays scripted outcomes
- RecordingTransport: Transport that records every delivered event
"""

import asyncio
import random
from collections import defaultdict

import pytest

from prdsmith.components import OrchestratorComponents
from prdsmith.config.settings import LLMSettings, RetrySettings, Settings
from prdsmith.llm.upstream import UpstreamClient
from prdsmith.models import Completion, StreamDelta, TokenUsage
from prdsmith.streaming.broker import Transport


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedClient(UpstreamClient):
    """
    Replays one scripted outcome per call.

    ``complete`` outcomes: a string (successful text), a Completion, or an
    exception to raise. ``complete_stream`` scripts: an exception (raised on
    open) or a list of items, each a string delta, a StreamDelta, an
    exception (raised at that point) or an asyncio.Event (waited on). A
    final ``done`` delta is appended unless the script ends with one.
    """

    def __init__(self, outcomes=None, stream_scripts=None):
        self.outcomes = list(outcomes or [])
        self.stream_scripts = list(stream_scripts or [])
        self.calls = []
        self.stream_calls = []
        self.closed_streams = 0

    async def complete(self, messages, params):
        self.calls.append((list(messages), params))
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, str):
            return Completion(
                text=outcome,
                finish_reason="stop",
                model=params.model,
                usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
            )
        return outcome

    async def complete_stream(self, messages, params):
        self.stream_calls.append((list(messages), params))
        script = self.stream_scripts.pop(0) if self.stream_scripts else ["ok"]
        try:
            if isinstance(script, BaseException):
                raise script
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                if isinstance(item, StreamDelta):
                    yield item
                    if item.done:
                        return
                else:
                    yield StreamDelta(delta=item)
            yield StreamDelta(done=True, finish_reason="stop")
        finally:
            self.closed_streams += 1


class RecordingTransport(Transport):
    """Transport fake. Connections in ``failing`` raise on send."""

    def __init__(self):
        self.sent = defaultdict(list)
        self.callbacks = {}
        self.failing = set()
        self.gates = {}

    async def send(self, connection, event, payload):
        gate = self.gates.get(connection)
        if gate is not None:
            await gate.wait()
        if connection in self.failing:
            raise ConnectionError("socket closed")
        self.sent[connection].append((event, payload))

    def on_disconnect(self, connection, callback):
        self.callbacks.setdefault(connection, []).append(callback)

    def disconnect(self, connection):
        for callback in self.callbacks.pop(connection, []):
            callback()

    def events(self, connection):
        return [event for event, _ in self.sent[connection]]

    def payloads(self, connection, event):
        return [payload for name, payload in self.sent[connection] if name == event]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def settings():
    """Settings isolated from any local .env file, with deterministic retries."""
    return Settings(
        _env_file=None,
        llm=LLMSettings(model="openai/gpt-4", api_key="test-api-key", temperature=0.7),
        retry=RetrySettings(
            upstream_timeout=5.0,
            max_retries=2,
            base_delay=1.0,
            max_delay=10.0,
            jitter=0.0,
        ),
    )


@pytest.fixture
def sleeps():
    """Delays requested by the retry policy (nothing actually sleeps)."""
    return []


@pytest.fixture
def make_orchestrator(settings, clock, sleeps):
    """Build a RequestOrchestrator around a fake client with a fake clock and sleep."""

    async def fake_sleep(delay):
        sleeps.append(delay)

    def _make(client, *, broker=None, store=None, settings_override=None):
        factory = OrchestratorComponents(settings_override or settings, clock=clock)
        policy = factory.create_retry_policy(sleep=fake_sleep, rng=random.Random(0))
        return factory.create_orchestrator(
            client=client, broker=broker, store=store, retry_policy=policy
        )

    return _make


@pytest.fixture
def scripted_client():
    """Factory for ScriptedClient instances."""
    return ScriptedClient
