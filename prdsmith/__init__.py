"""
PRDSmith - guided, conversational product requirements document builder.

This package provides the AI request orchestration layer behind the dialogue:
rate limiting, response caching, token budgeting, retries with fallback, and
real-time streaming of model output to every observer of a conversation.
"""

__version__ = "0.1.0"
