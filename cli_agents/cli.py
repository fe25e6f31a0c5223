"""CLI entry point for cli-agents."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from cli_agents.client import AgentClient
from cli_agents.config import settings
from cli_agents.exceptions import AgentCliError, DiscoveryError
from cli_agents.models.messages import AssistantMessage, ResultMessage, SystemMessage, ToolMessage
from cli_agents.models.options import ExecuteOptions, OutputFormat
from cli_agents.services.discovery import CliDiscovery
from cli_agents.services.providers.registry import PROVIDERS, get_provider

logger = logging.getLogger(__name__)

EPILOG = """
Supported providers:
  claude, codex, gemini, amp, amazon-q, swe-agent

Configuration:
  Executable overrides (used only for discovery):
    CLAUDE_CLI_PATH, CODEX_CLI_PATH, GEMINI_CLI_PATH, AMP_CLI_PATH, Q_CLI_PATH, SWE_CLI_PATH

  Settings (environment or .env):
    - DEFAULT_PROVIDER: Provider when --provider is omitted (default: claude)
    - DEFAULT_TIMEOUT: Per-run timeout in seconds (default: 300)
    - CIRCUIT_PRESET: default/sensitive/tolerant
    - RETRY_PRESET: no_retry/default_network/aggressive/conservative
    - LOG_LEVEL: Logging level (debug/info/warning/error)

Examples:
  cli-agents --check
  cli-agents --provider codex --cwd ./repo "Add a test for parse_date"
  cli-agents --provider claude --stream "Summarize the README"
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cli-agents",
        description="Run a prompt through a coding-agent CLI.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("prompt", nargs="?", help="Prompt to send to the agent")
    parser.add_argument("--provider", default=settings.default_provider, help="Agent CLI to drive")
    parser.add_argument("--model", help="Model override")
    parser.add_argument("--timeout", type=float, default=settings.default_timeout, help="Timeout in seconds")
    parser.add_argument("--cwd", help="Working directory for the agent")
    parser.add_argument("--format", choices=[f.value for f in OutputFormat], help="Output format")
    parser.add_argument("--path", help="Explicit path to the CLI executable")
    parser.add_argument("--stream", action="store_true", help="Print messages as they arrive")
    parser.add_argument("--check", action="store_true", help="Report which CLIs are installed and exit")
    return parser


def check_providers() -> int:
    """Print availability of every provider. Returns 0 if any is available."""
    any_available = False
    for name in PROVIDERS:
        report = CliDiscovery(get_provider(name)).check_availability()
        if report.available:
            any_available = True
            print(f"{name:<10} ok       {report.path} {report.version or ''}".rstrip())
        else:
            print(f"{name:<10} missing  {report.reason}")
    return 0 if any_available else 1


def _print_message(message) -> None:
    if isinstance(message, AssistantMessage):
        print(message.text, flush=True)
    elif isinstance(message, ToolMessage):
        print(f"[tool] {message.name or ''}", file=sys.stderr, flush=True)
    elif isinstance(message, SystemMessage) and message.session_id:
        print(f"[session] {message.session_id}", file=sys.stderr, flush=True)
    elif isinstance(message, ResultMessage) and message.is_error:
        print(f"[error] {message.result or message.subtype}", file=sys.stderr, flush=True)


async def run(args: argparse.Namespace) -> int:
    options = ExecuteOptions(
        model=args.model,
        timeout=args.timeout,
        working_directory=args.cwd,
        output_format=args.format,
    )
    client = AgentClient(args.provider, options=options, executable_path=args.path)

    if args.stream:
        async with client.stream(args.prompt) as messages:
            async for message in messages:
                _print_message(message)
        result = messages.result()
    else:
        result = await client.execute(args.prompt)
        print(result.output)

    logger.info(
        f"Finished: status={result.status.value}, exit={result.exit_code}, "
        f"model={result.model}, session={result.session_id}, cost={result.metadata.cost.format_total()}"
    )
    return result.exit_code if result.exit_code != 0 else (0 if result.successful else 1)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the cli-agents command."""
    # Configure logging
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.check:
        return check_providers()
    if not args.prompt:
        parser.error("a prompt is required unless --check is given")

    try:
        return asyncio.run(run(args))
    except DiscoveryError as e:
        logger.error(f"{e}. Install it or set {get_provider(args.provider).env_var}.")
        return 127
    except AgentCliError as e:
        logger.error(f"Agent run failed: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
