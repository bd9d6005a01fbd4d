"""
Request Orchestrator: the single entry point for AI generation calls.

Data flow of one call:

    RequestContext + prompt
            ↓
    RateLimiter.check()        → RateLimitExceeded
            ↓
    ResponseCache.get()        → cached GenerationResult (no upstream call)
            ↓
    ContentFilter.check()      → ContentRejected
            ↓
    message assembly           system template, prior-section summary,
            ↓                  few-shot examples, prompt
    TokenAccountant            truncate to budget   → BudgetUnsatisfiable
            ↓
    RetryPolicy.run()  ←→  UpstreamClient.complete() / complete_stream()
            ↓
    cache store + usage update → GenerationResult
                                 (streaming: chunks → StreamingBroker room)

Exhausted retries on a fallback-eligible failure (network or upstream rate
limiting by default) produce the section's canned response flagged with
``fallback=True`` instead of an error. Every other failure propagates.

Design decisions:
- Every store is injected, so several orchestrators can coexist in a process
  and tests drive them with fake clocks and fake upstreams.
- State updates (rate window, cache, usage, stats) contain no ``await``, so
  they are atomic on the event loop without locks.
- The prior-section summary is a user-role message placed right after the
  system prompt. System messages are never truncated; the summary is the
  oldest truncatable message, so it is shortened before the examples.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import asdict, dataclass

from prdsmith.config.logging import get_logger
from prdsmith.config.settings import Settings
from prdsmith.errors import (
    BudgetUnsatisfiable,
    ContentRejected,
    DeliveryFailed,
    RateLimitExceeded,
    StreamInterrupted,
    UpstreamError,
    UpstreamErrorKind,
)
from prdsmith.llm.content_filter import ContentFilter
from prdsmith.llm.context import ConversationStore, build_context_summary
from prdsmith.llm.retry import RetryPolicy
from prdsmith.llm.templates import (
    DEFAULT_FALLBACK,
    FALLBACK_RESPONSES,
    SECTION_TEMPLATES,
    SectionTemplate,
    get_template,
)
from prdsmith.llm.tokens import TokenAccountant
from prdsmith.llm.upstream import UpstreamClient
from prdsmith.models import (
    AggregateUsage,
    GenerationParams,
    GenerationResult,
    Message,
    RequestContext,
    SessionUsage,
    StreamChunk,
    StreamDelta,
    TokenUsage,
)
from prdsmith.state import RateLimiter, ResponseCache, UsageTracker, make_cache_key
from prdsmith.streaming.broker import ChunkSink, SinkWriter, StreamingBroker

logger = get_logger(__name__)

CONTEXT_SUMMARY_HEADER = "Previous PRD sections context:\n"


@dataclass
class OrchestratorStats:
    """Counters of what the orchestrator did since it was created."""

    requests: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    fallbacks: int = 0
    rate_limited: int = 0
    rejected: int = 0
    upstream_failures: int = 0
    stream_interruptions: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class RequestOrchestrator:
    """
    Mediates every AI generation request.

    Args:
        settings: Application settings
        client: Upstream model adapter
        cache: Response cache
        rate_limiter: Per-conversation request quota
        usage: Usage tracker
        retry_policy: Retry/backoff policy wrapping each upstream call
        accountant: Token estimator and truncator
        content_filter: Disallowed-content screen
        broker: Streaming broker for room fan-out (optional)
        store: Source of prior-section context (optional)
        templates: Section templates (defaults to the built-in set)
        fallbacks: Per-section fallback texts (defaults to built-ins merged
            with ``settings.fallback.templates``)
    """

    def __init__(
        self,
        settings: Settings,
        client: UpstreamClient,
        *,
        cache: ResponseCache,
        rate_limiter: RateLimiter,
        usage: UsageTracker,
        retry_policy: RetryPolicy,
        accountant: TokenAccountant,
        content_filter: ContentFilter,
        broker: StreamingBroker | None = None,
        store: ConversationStore | None = None,
        templates: dict[str, SectionTemplate] | None = None,
        fallbacks: dict[str, str] | None = None,
    ):
        self._settings = settings
        self._client = client
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._usage = usage
        self._retry = retry_policy
        self._accountant = accountant
        self._content_filter = content_filter
        self._broker = broker
        self._store = store
        self._templates = templates if templates is not None else dict(SECTION_TEMPLATES)
        if fallbacks is None:
            fallbacks = {**FALLBACK_RESPONSES, **settings.fallback.templates}
        self._fallbacks = fallbacks
        self._default_fallback = settings.fallback.default or DEFAULT_FALLBACK
        self._fallback_kinds = frozenset(
            UpstreamErrorKind(kind) for kind in settings.fallback.eligible_kinds
        )
        self._maintenance: asyncio.Task | None = None
        self.stats = OrchestratorStats()

    @property
    def broker(self) -> StreamingBroker | None:
        return self._broker

    @property
    def worst_case_latency(self) -> float | None:
        """Upper bound on the upstream part of one call (all attempts and delays)."""
        return self._retry.worst_case_duration

    # -- request pipeline -------------------------------------------------

    def resolve(self, context: RequestContext) -> RequestContext:
        """
        Fill unset generation parameters.

        Order: explicit context value, then the section template, then the
        global LLM settings. Returns a new context.
        """
        template = get_template(context.section, self._templates)
        llm = self._settings.llm

        def pick(explicit, from_template, default):
            if explicit is not None:
                return explicit
            if from_template is not None:
                return from_template
            return default

        return context.model_copy(update={
            "model": context.model or llm.model,
            "temperature": pick(context.temperature, template.temperature, llm.temperature),
            "max_tokens": pick(context.max_tokens, template.max_tokens, llm.max_tokens),
        })

    def _admit(self, context: RequestContext, prompt: str) -> tuple[RequestContext, str]:
        """Rate-limit the call and derive its resolved context and cache key."""
        self.stats.requests += 1
        try:
            remaining = self._rate_limiter.check(context.conversation_id)
        except RateLimitExceeded:
            self.stats.rate_limited += 1
            raise
        logger.debug(
            f"Request for conversation {context.conversation_id} "
            f"(section {context.section}, {remaining} left in window)"
        )

        resolved = self.resolve(context)
        key = make_cache_key(
            prompt,
            resolved.section,
            resolved.model,
            resolved.temperature,
            prefix_chars=self._settings.cache.prompt_prefix_chars,
        )
        return resolved, key

    def _cached(self, context: RequestContext, key: str) -> GenerationResult | None:
        if not self._settings.cache.enabled:
            return None
        cached = self._cache.get(key)
        if cached is None:
            self.stats.cache_misses += 1
            return None
        self.stats.cache_hits += 1
        logger.info(
            f"cache_hit: conversation {context.conversation_id}, section {context.section}"
        )
        return cached

    async def _prior_context(self, context: RequestContext) -> dict | None:
        if context.prior_context is not None:
            return context.prior_context
        if self._store is None:
            return None
        return await self._store.get_prior_context(context.conversation_id)

    async def build_messages(self, context: RequestContext, prompt: str) -> list[Message]:
        """
        Assemble the upstream payload for a resolved context.

        Order: section system prompt, prior-section summary (when there is
        one), few-shot examples, the prompt.
        """
        template = get_template(context.section, self._templates)
        messages = [Message(role="system", content=template.system)]

        summary = build_context_summary(await self._prior_context(context))
        if summary:
            messages.append(Message(role="user", content=CONTEXT_SUMMARY_HEADER + summary))

        messages.extend(template.example_messages())
        messages.append(Message(role="user", content=prompt))
        return messages

    def fit_to_budget(self, context: RequestContext, messages: list[Message]) -> list[Message]:
        """
        Keep the payload within the section's token budget.

        Over-budget payloads are truncated to ``headroom`` of the budget,
        leaving room for the response.

        Raises:
            BudgetUnsatisfiable: If the truncated payload still exceeds the budget
        """
        tokens = self._settings.tokens
        budget = tokens.budget_for(context.section)
        estimated = self._accountant.estimate_messages(messages, context.model)
        if estimated <= budget:
            return messages

        target = int(budget * tokens.headroom)
        truncated = self._accountant.truncate_to_budget(messages, target, context.model)
        remaining = self._accountant.estimate_messages(truncated, context.model)
        if remaining > budget:
            logger.warning(
                f"Prompt for conversation {context.conversation_id} cannot fit "
                f"budget {budget} (~{remaining} tokens after truncation)"
            )
            raise BudgetUnsatisfiable(remaining, budget)

        logger.info(
            f"Truncated prompt for conversation {context.conversation_id}: "
            f"~{estimated} -> ~{remaining} tokens (budget {budget})"
        )
        return truncated

    async def _prepare(self, context: RequestContext, prompt: str) -> list[Message]:
        try:
            self._content_filter.check(prompt)
        except ContentRejected as e:
            self.stats.rejected += 1
            logger.warning(f"Rejected prompt for conversation {context.conversation_id}: {e}")
            raise
        messages = await self.build_messages(context, prompt)
        return self.fit_to_budget(context, messages)

    def _params(self, context: RequestContext) -> GenerationParams:
        return GenerationParams(
            model=context.model,
            temperature=context.temperature,
            max_tokens=context.max_tokens,
            timeout=self._settings.retry.upstream_timeout,
        )

    def _finish(
        self, context: RequestContext, key: str, result: GenerationResult, cache: bool = True
    ) -> None:
        if cache and self._settings.cache.enabled:
            self._cache.set(key, result, ttl=self._settings.cache.ttl_seconds)
        session = self._usage.record(context.conversation_id, result.usage)
        logger.info(
            f"Completed request for conversation {context.conversation_id} "
            f"(section {context.section}, {result.usage.total_tokens} tokens, "
            f"{session.total_tokens} total)"
        )

    def _fallback_or_raise(self, context: RequestContext, error: UpstreamError) -> GenerationResult:
        """Return the section's canned result, or re-raise if the failure is not eligible."""
        self.stats.upstream_failures += 1
        if not error.is_fallback_eligible(self._fallback_kinds):
            raise error
        self.stats.fallbacks += 1
        logger.warning(
            f"Serving fallback for conversation {context.conversation_id} "
            f"(section {context.section}) after {error.kind.value} failure"
        )
        result = GenerationResult(
            text=self._fallbacks.get(context.section, self._default_fallback),
            finish_reason="fallback",
            model=context.model,
            usage=TokenUsage(),
            fallback=True,
        )
        self._finish(context, "", result, cache=False)
        return result

    def _usage_for(self, messages: Sequence[Message], text: str, context: RequestContext) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self._accountant.estimate_messages(messages, context.model),
            completion_tokens=self._accountant.estimate(text, context.model),
        )

    async def generate(self, context: RequestContext, prompt: str) -> GenerationResult:
        """
        Produce a complete response.

        Raises:
            RateLimitExceeded: The conversation's quota is used up
            ContentRejected: The prompt matched a content rule
            BudgetUnsatisfiable: The prompt cannot be made to fit
            UpstreamError: Upstream failure not eligible for a fallback
        """
        resolved, key = self._admit(context, prompt)
        cached = self._cached(resolved, key)
        if cached is not None:
            return cached

        messages = await self._prepare(resolved, prompt)
        params = self._params(resolved)
        try:
            completion = await self._retry.run(
                lambda: self._client.complete(messages, params),
                description=f"Generation for conversation {resolved.conversation_id}",
            )
        except UpstreamError as e:
            return self._fallback_or_raise(resolved, e)

        result = GenerationResult(
            text=completion.text,
            finish_reason=completion.finish_reason,
            model=completion.model or params.model,
            usage=completion.usage or self._usage_for(messages, completion.text, resolved),
        )
        self._finish(resolved, key, result)
        return result

    def _emit(self, sink: SinkWriter | None, chunk: StreamChunk) -> None:
        if self._broker is not None:
            self._broker.broadcast_chunk(chunk)
        if sink is not None:
            sink.put(chunk)

    def _complete_stream(
        self, sink: SinkWriter | None, conversation_id: str, index: int, result: GenerationResult
    ) -> None:
        # The sink first: if it has already failed, the room gets an error instead
        if sink is not None:
            sink.put(StreamChunk(
                conversation_id=conversation_id,
                index=index,
                content="",
                done=True,
                finish_reason=result.finish_reason,
            ))
        if self._broker is not None:
            self._broker.broadcast_complete(conversation_id, result)

    def _broadcast_error(self, conversation_id: str, message: str) -> None:
        if self._broker is not None:
            self._broker.broadcast_error(conversation_id, message)

    async def _open_stream(
        self, messages: list[Message], params: GenerationParams
    ) -> tuple[AsyncIterator[StreamDelta], StreamDelta | None]:
        """Open the upstream stream and wait for its first unit."""
        iterator = self._client.complete_stream(messages, params)
        try:
            first = await anext(iterator, None)
        except BaseException:
            await _aclose(iterator)
            raise
        return iterator, first

    async def stream(
        self, context: RequestContext, prompt: str, chunk_sink: ChunkSink | None = None
    ) -> GenerationResult:
        """
        Produce a response incrementally.

        Each piece of output is sent to ``chunk_sink`` and broadcast to the
        conversation's room. The sink finally receives a ``done`` chunk; the
        room receives a ``message-complete`` event. A cached result is
        replayed as a single chunk. The sink is fed from its own task, like a
        room connection, so a slow sink does not hold back the room; the call
        returns once the sink has taken the ``done`` chunk.

        Retries cover opening the stream and receiving its first unit. A
        failure after that discards the partial output, notifies the room and
        raises ``StreamInterrupted``. A failing sink ends the stream the same
        way. Cancellation closes the upstream stream and leaves cache and
        usage untouched.

        Raises:
            RateLimitExceeded, ContentRejected, BudgetUnsatisfiable: As ``generate``
            UpstreamError: Failure to open not eligible for a fallback
            StreamInterrupted: Failure after output started, or the sink failed
        """
        resolved, key = self._admit(context, prompt)
        cid = resolved.conversation_id
        sink = None
        if chunk_sink is not None:
            sink = SinkWriter(chunk_sink, max_pending=self._settings.streaming.max_pending_events)
        result: GenerationResult | None = None
        try:
            result = await self._stream_to_room(resolved, key, prompt, sink)
            if sink is not None:
                await sink.finish()
            return result
        except DeliveryFailed as e:
            self.stats.stream_interruptions += 1
            logger.warning(f"Chunk delivery for conversation {cid} failed: {e}")
            if result is None:
                self._broadcast_error(cid, str(e))
            raise StreamInterrupted(cid, str(e), cause=e) from e
        except asyncio.CancelledError:
            logger.info(f"Stream for conversation {cid} cancelled")
            if result is None:
                self._broadcast_error(cid, "Generation cancelled")
            raise
        finally:
            if sink is not None:
                await sink.close()

    async def _stream_to_room(
        self, resolved: RequestContext, key: str, prompt: str, sink: SinkWriter | None
    ) -> GenerationResult:
        """
        Produce the streamed result and publish every step of it.

        Whatever ends the stream early, the room is sent ``stream-error``
        before the exception leaves this method.
        """
        cid = resolved.conversation_id
        cached = self._cached(resolved, key)
        if cached is not None:
            self._emit(sink, StreamChunk(conversation_id=cid, index=0, content=cached.text))
            self._complete_stream(sink, cid, 1, cached)
            return cached

        messages = await self._prepare(resolved, prompt)
        params = self._params(resolved)
        try:
            iterator, delta = await self._retry.run(
                lambda: self._open_stream(messages, params),
                description=f"Stream for conversation {cid}",
            )
        except UpstreamError as e:
            if not e.is_fallback_eligible(self._fallback_kinds):
                self._broadcast_error(cid, str(e))
            result = self._fallback_or_raise(resolved, e)
            self._emit(sink, StreamChunk(conversation_id=cid, index=0, content=result.text))
            self._complete_stream(sink, cid, 1, result)
            return result
        except Exception as e:
            logger.error(f"Stream for conversation {cid} failed to open: {e}")
            self._broadcast_error(cid, str(e))
            raise

        parts: list[str] = []
        index = 0
        finish_reason: str | None = None
        usage: TokenUsage | None = None
        try:
            while delta is not None:
                if delta.delta:
                    parts.append(delta.delta)
                    self._emit(sink, StreamChunk(conversation_id=cid, index=index, content=delta.delta))
                    index += 1
                if delta.done:
                    finish_reason = delta.finish_reason
                    usage = delta.usage
                    break
                delta = await anext(iterator, None)
        except Exception as e:
            self.stats.stream_interruptions += 1
            logger.warning(
                f"Stream for conversation {cid} interrupted after {index} chunk(s): {e}"
            )
            self._broadcast_error(cid, str(e))
            raise StreamInterrupted(cid, str(e), cause=e) from e
        finally:
            await _aclose(iterator)

        text = "".join(parts)
        result = GenerationResult(
            text=text,
            finish_reason=finish_reason,
            model=params.model,
            usage=usage or self._usage_for(messages, text, resolved),
        )
        self._finish(resolved, key, result)
        self._complete_stream(sink, cid, index, result)
        return result

    async def handle(
        self, context: RequestContext, prompt: str, chunk_sink: ChunkSink | None = None
    ) -> GenerationResult:
        """Run ``stream`` or ``generate`` according to ``context.stream``."""
        if context.stream:
            return await self.stream(context, prompt, chunk_sink)
        return await self.generate(context, prompt)

    # -- usage & maintenance ---------------------------------------------

    def get_usage(self, conversation_id: str | None = None) -> SessionUsage | AggregateUsage:
        """Usage of one conversation, or aggregated over all of them."""
        if conversation_id is None:
            return self._usage.aggregate()
        return self._usage.get(conversation_id)

    def reset_usage(self, conversation_id: str | None = None) -> None:
        """Clear usage counters and rate windows (of one conversation, or all)."""
        self._usage.reset(conversation_id)
        self._rate_limiter.reset(conversation_id)
        logger.info(f"Usage reset for {conversation_id or 'all conversations'}")

    def clear_cache(self) -> None:
        self._cache.clear()

    async def _maintenance_loop(self) -> None:
        interval = self._settings.rate_limit.window_seconds
        while True:
            await asyncio.sleep(interval)
            self._rate_limiter.purge_idle()

    def start(self) -> None:
        """Start background maintenance (cache sweep, optional idle rate-window eviction)."""
        if self._settings.cache.enabled:
            self._cache.start()
        if self._settings.rate_limit.evict_idle and self._maintenance is None:
            self._maintenance = asyncio.get_running_loop().create_task(self._maintenance_loop())

    async def stop(self) -> None:
        """Stop background maintenance."""
        await self._cache.stop()
        if self._maintenance is not None:
            self._maintenance.cancel()
            try:
                await self._maintenance
            except asyncio.CancelledError:
                pass
            self._maintenance = None

    async def __aenter__(self) -> RequestOrchestrator:
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        return False


async def _aclose(iterator: AsyncIterator) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()
