"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Upstream model configuration."""

    model: str = Field(
        default="openai/gpt-4-turbo-preview",
        description="LiteLLM model string, e.g. 'openai/gpt-4-turbo-preview', "
                    "'anthropic/claude-3-5-sonnet-20241022', 'ollama/llama3'. The provider "
                    "prefix tells LiteLLM which API to route the request to.",
    )
    max_tokens: int = Field(default=4096, gt=0, description="Default maximum tokens in a response")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Default sampling temperature")
    api_key: str = Field(default="", description="API key for the model's provider")
    api_base: str | None = Field(
        default=None,
        description="Override the provider base URL (self-hosted gateways, local servers)",
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")


class RetrySettings(BaseSettings):
    """Upstream timeout and retry/backoff configuration."""

    upstream_timeout: float = Field(
        default=30.0, gt=0, description="Timeout in seconds for a single upstream attempt"
    )
    max_retries: int = Field(
        default=2, ge=0, description="Retries after the first attempt for retriable failures"
    )
    base_delay: float = Field(default=1.0, ge=0, description="Backoff delay before the first retry")
    max_delay: float = Field(default=10.0, ge=0, description="Cap on a single backoff delay")
    jitter: float = Field(
        default=0.25,
        ge=0,
        description="Random jitter as a fraction of the delay (0.25 adds up to 25%)",
    )

    model_config = SettingsConfigDict(env_prefix="RETRY_")


class RateLimitSettings(BaseSettings):
    """Per-conversation fixed-window rate limiting."""

    quota: int = Field(default=100, gt=0, description="Requests allowed per window")
    window_seconds: float = Field(default=3600.0, gt=0, description="Window length in seconds")
    block_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Extra block applied after a violation. 0 disables blocking; "
                    "the conversation is then released when its window resets.",
    )
    evict_idle: bool = Field(
        default=False,
        description="Drop expired rate windows during background maintenance",
    )

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_")


class CacheSettings(BaseSettings):
    """Response cache configuration."""

    enabled: bool = Field(default=True, description="Cache successful responses")
    ttl_seconds: float = Field(default=1800.0, gt=0, description="Time-to-live of a cached response")
    sweep_interval_seconds: float = Field(
        default=1800.0, gt=0, description="Interval of the background expiry sweep"
    )
    prompt_prefix_chars: int = Field(
        default=200, gt=0, description="Number of prompt characters that feed the cache key"
    )

    model_config = SettingsConfigDict(env_prefix="CACHE_")


class TokenSettings(BaseSettings):
    """Token budget and estimation configuration."""

    section_budget: int = Field(
        default=8000, gt=0, description="Default prompt token budget per section"
    )
    section_budgets: dict[str, int] = Field(
        default_factory=dict,
        description="Per-section budget overrides. "
                    "Set via TOKENS__SECTION_BUDGETS='{\"requirements\": 12000}'",
    )
    headroom: float = Field(
        default=0.8,
        gt=0,
        le=1.0,
        description="Fraction of the budget the prompt is truncated to, leaving room for the reply",
    )
    default_multiplier: float = Field(
        default=1.3, gt=0, description="Tokens per word for models missing from the table"
    )
    model_multipliers: dict[str, float] = Field(
        default_factory=lambda: {
            "gpt-4": 1.3,
            "gpt-4-turbo-preview": 1.3,
            "gpt-3.5-turbo": 1.2,
        },
        description="Tokens per word, keyed by model name without provider prefix",
    )

    model_config = SettingsConfigDict(env_prefix="TOKENS_")

    def budget_for(self, section: str) -> int:
        """Return the prompt budget configured for a section."""
        return self.section_budgets.get(section, self.section_budget)


class ContentFilterSettings(BaseSettings):
    """Disallowed-content rules applied to user input before any upstream call."""

    enabled: bool = Field(default=True, description="Reject input matching a rule")
    rules: list[str] = Field(
        default_factory=lambda: [
            r"hack|crack|exploit",
            r"malware|virus|trojan",
            r"illegal|criminal|fraud",
        ],
        description="Case-insensitive regular expressions",
    )

    model_config = SettingsConfigDict(env_prefix="CONTENT_FILTER_")


class FallbackSettings(BaseSettings):
    """Canned responses used when the upstream is unavailable."""

    templates: dict[str, str] = Field(
        default_factory=dict,
        description="Per-section overrides of the built-in fallback texts",
    )
    default: str | None = Field(
        default=None, description="Override of the fallback text for unknown sections"
    )
    eligible_kinds: list[
        Literal["timeout", "server_error", "network", "rate_limited"]
    ] = Field(
        default_factory=lambda: ["network", "rate_limited"],
        description="Retriable failure kinds that degrade to a fallback once retries are exhausted",
    )

    model_config = SettingsConfigDict(env_prefix="FALLBACK_")


class StreamingSettings(BaseSettings):
    """Streaming broker configuration."""

    max_pending_events: int = Field(
        default=1000,
        gt=0,
        description="Outbound events buffered per connection before it is dropped as too slow",
    )

    model_config = SettingsConfigDict(env_prefix="STREAMING_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    tokens: TokenSettings = Field(default_factory=TokenSettings)
    content_filter: ContentFilterSettings = Field(default_factory=ContentFilterSettings)
    fallback: FallbackSettings = Field(default_factory=FallbackSettings)
    streaming: StreamingSettings = Field(default_factory=StreamingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
