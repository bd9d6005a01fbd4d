"""
PRDSmith CLI entry point.

Provides command-line access to the orchestration layer: inspect the
configuration and section templates, or send one orchestrated request.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from prdsmith import __version__
from prdsmith.components import OrchestratorComponents
from prdsmith.config.logging import get_logger, setup_logging
from prdsmith.config.settings import Settings, load_settings
from prdsmith.errors import OrchestrationError
from prdsmith.llm.templates import SECTION_TEMPLATES
from prdsmith.models import RequestContext
from prdsmith.streaming.console import ConsoleTransport

CONSOLE_CONNECTION = "console"


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="prdsmith",
        description="AI request orchestration for guided product requirements documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"PRDSmith {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Config command
    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    # Sections command
    subparsers.add_parser(
        "sections",
        help="List the document sections and their generation defaults",
    )

    # Ask command
    ask_parser = subparsers.add_parser(
        "ask",
        help="Send one orchestrated request to the configured model",
    )
    ask_parser.add_argument(
        "prompt",
        help='User input, e.g. "We are building a task manager for small teams"',
    )
    ask_parser.add_argument(
        "--section",
        default="introduction",
        help="Document section the input belongs to (default: introduction)",
    )
    ask_parser.add_argument(
        "--conversation",
        default="cli",
        help="Conversation id used for rate limiting and usage (default: cli)",
    )
    ask_parser.add_argument(
        "--stream",
        action="store_true",
        help="Stream the response as it is generated",
    )
    ask_parser.add_argument(
        "--model",
        default=None,
        help="Override the model (default: LLM__MODEL from config)",
    )
    ask_parser.add_argument(
        "--temperature",
        type=float,
        default=None,
        help="Override the sampling temperature (default: section template)",
    )

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("Current Configuration:")
    logger.info("\n=== PRDSmith Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"\nLLM Model: {settings.llm.model}")
    logger.info(f"LLM API Key: {'Set' if settings.llm.api_key else 'Not set'}")
    logger.info(f"LLM API Base: {settings.llm.api_base or 'provider default'}")
    logger.info(
        f"\nRetry: {settings.retry.max_retries} retries, "
        f"{settings.retry.upstream_timeout}s per attempt, "
        f"backoff {settings.retry.base_delay}s..{settings.retry.max_delay}s"
    )
    logger.info(
        f"Rate Limit: {settings.rate_limit.quota} requests / "
        f"{settings.rate_limit.window_seconds}s"
    )
    logger.info(
        f"Cache: {'enabled' if settings.cache.enabled else 'disabled'}, "
        f"TTL {settings.cache.ttl_seconds}s"
    )
    logger.info(
        f"Token Budget: {settings.tokens.section_budget} per section "
        f"(headroom {settings.tokens.headroom})"
    )
    logger.info(f"Content Filter: {'enabled' if settings.content_filter.enabled else 'disabled'}")
    logger.info(f"Fallback On: {', '.join(settings.fallback.eligible_kinds) or 'never'}")

    return 0


def cmd_sections() -> int:
    """List the section templates."""
    print("\n=== Sections ===")
    for name, template in SECTION_TEMPLATES.items():
        first_line = template.system.splitlines()[0]
        print(f"  {name:<14} temperature={template.temperature}  max_tokens={template.max_tokens}")
        print(f"  {'':<14} {first_line[:90]}")
    return 0


async def cmd_ask(args, settings: Settings) -> int:
    """
    Run one request through the orchestrator.

    In streaming mode the terminal is attached to the conversation's room
    through ``ConsoleTransport``, so output is printed as it arrives.
    """
    logger = get_logger(__name__)

    context = RequestContext(
        conversation_id=args.conversation,
        section=args.section,
        model=args.model,
        temperature=args.temperature,
        stream=args.stream,
    )
    factory = OrchestratorComponents(settings)

    try:
        async with factory.create_broker(ConsoleTransport()) as broker, \
                   factory.create_orchestrator(broker=broker) as orchestrator:

            if args.stream:
                broker.attach(CONSOLE_CONNECTION, context.conversation_id, user_id="cli")

            logger.info(f"Sending to {context.model or settings.llm.model}...")
            try:
                result = await orchestrator.handle(context, args.prompt)
            finally:
                await broker.drain()

            if not args.stream:
                print(result.text)
            if result.fallback:
                print("\n(fallback response: the model is currently unavailable)", file=sys.stderr)

            print(f"\nTokens: {result.usage.total_tokens} "
                  f"(prompt {result.usage.prompt_tokens} "
                  f"+ completion {result.usage.completion_tokens})", file=sys.stderr)
            return 0

    except OrchestrationError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    # Setup logging
    setup_logging(settings)

    # Execute command
    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "sections":
        return cmd_sections()
    elif args.command == "ask":
        return asyncio.run(cmd_ask(args, settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
