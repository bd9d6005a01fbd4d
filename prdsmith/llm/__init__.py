"""
AI request orchestration layer.

Mediates every call from the dialogue layer to the upstream model API:

    caller  →  RequestOrchestrator.generate() / stream()
                        ↓
          rate limit → cache → content filter → message assembly
                        ↓
          token budget → RetryPolicy → UpstreamClient (LiteLLM)
                        ↓
          cache + usage → GenerationResult (streaming: chunks → broker room)

Key responsibilities:
- Build section-specific payloads (system prompt, prior-section summary, few-shot examples)
- Keep payloads inside a token budget by deterministic truncation
- Retry transient upstream failures with backoff, fail fast on the rest
- Degrade to canned per-section responses while the upstream is unreachable
"""

from prdsmith.llm.content_filter import ContentFilter
from prdsmith.llm.context import ConversationStore, InMemoryConversationStore, build_context_summary
from prdsmith.llm.orchestrator import OrchestratorStats, RequestOrchestrator
from prdsmith.llm.retry import RetryPolicy, RetryState
from prdsmith.llm.templates import FALLBACK_RESPONSES, SECTION_TEMPLATES, SectionTemplate
from prdsmith.llm.tokens import TokenAccountant
from prdsmith.llm.upstream import LiteLLMClient, UpstreamClient

__all__ = [
    "ContentFilter",
    "ConversationStore",
    "InMemoryConversationStore",
    "build_context_summary",
    "OrchestratorStats",
    "RequestOrchestrator",
    "RetryPolicy",
    "RetryState",
    "FALLBACK_RESPONSES",
    "SECTION_TEMPLATES",
    "SectionTemplate",
    "TokenAccountant",
    "LiteLLMClient",
    "UpstreamClient",
]
