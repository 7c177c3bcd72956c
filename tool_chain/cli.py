"""CLI entry point for the tool-chain runner.

Usage:
    tool-chain "complex math"
    tool-chain --show-plan --show-history "Please add 25 and 15 together"
    tool-chain --service calc=servers/calculator/main.py "calculate"
    tool-chain --platform litellm --model-id GCP/claude-4-sonnet --json "show history"
    tool-chain --list-tools
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

_PLATFORMS = ["mock", "litellm"]

_ROOT = Path(__file__).parent.parent

DEFAULT_SERVICE_ID = "calculator-process"
DEFAULT_SERVER_PATHS: dict[str, Path] = {
    DEFAULT_SERVICE_ID: _ROOT / "servers" / "calculator" / "main.py",
}

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"
_LOG_DATE_FORMAT = "%H:%M:%S"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tool-chain",
        description="Discover tools from MCP services and run a task through a planned tool chain.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
environment variables:
  LITELLM_API_KEY               LiteLLM API key (required for --platform litellm)
  LITELLM_BASE_URL              LiteLLM base URL (required for --platform litellm)

  TOOL_CHAIN_REQUESTER          Requester identity recorded on each task (default: local)
  TOOL_CHAIN_RETENTION_SECONDS  How long finished tasks stay in the ledger (default: 300)

  LOG_LEVEL                     Log level for the calculator server (default: WARNING)

examples:
  tool-chain "complex math"
  tool-chain --show-plan --show-history "Please add 25 and 15 together"
  tool-chain --service calc=servers/calculator/main.py "calculate"
  tool-chain --list-tools
""",
    )
    parser.add_argument("query", nargs="?", help="The task to run.")
    parser.add_argument(
        "--platform",
        choices=_PLATFORMS,
        default="mock",
        help="Inference backend used for planning (default: mock).",
    )
    parser.add_argument(
        "--model-id",
        default="GCP/claude-4-sonnet",
        metavar="MODEL_ID",
        help="Model ID for --platform litellm (default: GCP/claude-4-sonnet).",
    )
    parser.add_argument(
        "--service",
        action="append",
        metavar="NAME=PATH",
        dest="services",
        default=[],
        help=(
            "Register an MCP server as NAME=PATH. "
            f"Overrides the default {DEFAULT_SERVICE_ID} calculator server. "
            "Repeatable."
        ),
    )
    parser.add_argument(
        "--list-tools",
        action="store_true",
        help="List the discovered tools and exit.",
    )
    parser.add_argument(
        "--show-plan",
        action="store_true",
        help="Print the analysis and execution plan.",
    )
    parser.add_argument(
        "--show-history",
        action="store_true",
        help="Print each step result.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="output_json",
        help="Output the final result notification as JSON.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show INFO-level progress logs on stderr (default: WARNING+ only).",
    )
    return parser


def _setup_logging(verbose: bool) -> None:
    """Configure root logger to stderr; level depends on --verbose."""
    level = logging.INFO if verbose else logging.WARNING
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    logging.root.handlers.clear()
    logging.root.addHandler(handler)
    logging.root.setLevel(level)


def _build_llm(platform: str, model_id: str, service_ids: list[str]):
    """Instantiate the inference backend for the given platform."""
    if platform == "mock":
        from inference.mock_router import MockRouterLLM

        return MockRouterLLM(service_id=service_ids[0])

    if platform == "litellm":
        from inference.litellm import LiteLLMLLM

        try:
            return LiteLLMLLM(model_id=model_id)
        except KeyError as exc:
            print(f"error: missing environment variable {exc}", file=sys.stderr)
            sys.exit(1)

    print(f"error: unknown platform {platform!r}", file=sys.stderr)
    sys.exit(1)


def _parse_services(entries: list[str]) -> dict[str, Path]:
    """Parse NAME=PATH pairs into a server_paths dict, or the default."""
    if not entries:
        return dict(DEFAULT_SERVER_PATHS)
    result: dict[str, Path] = {}
    for entry in entries:
        if "=" not in entry:
            print(
                f"error: --service requires NAME=PATH format, got: {entry!r}",
                file=sys.stderr,
            )
            sys.exit(1)
        name, _, path = entry.partition("=")
        result[name.strip()] = Path(path.strip())
    return result


def _print_section(title: str) -> None:
    print(f"\n{'─' * 60}")
    print(f"  {title}")
    print(f"{'─' * 60}")


async def _run(args: argparse.Namespace) -> None:
    from tool_chain.config import Settings
    from tool_chain.runner import ToolChainRunner
    from tool_chain.transport import StdioTransport

    try:
        settings = Settings.from_env()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)

    server_paths = _parse_services(args.services)
    llm = _build_llm(args.platform, args.model_id, list(server_paths))
    async with ToolChainRunner(StdioTransport(llm, server_paths), settings) as runner:
        counts = await runner.discover()
        if args.list_tools:
            _print_section("Tools")
            for service_id, count in counts.items():
                print(f"  {service_id}: {count} tool(s)")
            for listing in sorted(runner.list_tools()):
                print(f"  {listing.tool_key} [{listing.category}]: {listing.description}")
            print()
            return
        result = await runner.run(args.query)

    if args.output_json:
        print(json.dumps(result.to_dict(), indent=2))
        return

    if args.show_plan:
        _print_section("Plan")
        print(f"  Analysis: {result.ai_analysis}")
        print(f"  Execution plan: {result.execution_plan}")

    if args.show_history:
        _print_section("Tool Results")
        for r in result.tool_results:
            status = "OK " if r.success else "ERR"
            print(f"  [{status}] Step {r.step_index} ({r.tool_key})")
            detail = r.response if r.success else f"Error: {r.error}"
            snippet = detail[:200] + ("..." if len(detail) > 200 else "")
            print(f"        {snippet}")

    _print_section(
        f"Result ({result.successful_tools}/{result.tools_used} tools succeeded, "
        f"{result.duration:.2f}s)"
    )
    print(result.answer)
    print()


def main() -> None:
    from dotenv import load_dotenv

    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    if not args.query and not args.list_tools:
        parser.error("a query is required unless --list-tools is given")
    _setup_logging(args.verbose)
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
