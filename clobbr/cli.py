"""CLI entry point for clobbr.

- Uses uvloop for the event loop when it is installed
- GC disabled during the run for consistent latency
"""

from __future__ import annotations

import argparse
import asyncio
import gc
import sys
from dataclasses import asdict
from typing import Any, Coroutine

# uvloop is optional: faster event loop where available (not on Windows)
_HAS_UVLOOP = False
try:
    import uvloop
    _HAS_UVLOOP = True
except ImportError:
    pass

from rich.console import Console

from . import __version__
from .config import MAX_ITERATIONS, load_settings, parse_headers, settings_from_dict
from .dashboard import build_summary_table
from .exceptions import ClobbrError, ClobbrRunnerError
from .logging_config import LOG_FORMATS, configure_logging, get_logger
from .models import RunSettings, Verb
from .runner import run_and_report

logger = get_logger("cli")

# Exit code when the run was interrupted (SIGINT convention)
EXIT_INTERRUPTED = 130


def _run_async(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run async coroutine with optimal event loop.

    Disables GC during execution for consistent latency.
    """
    gc_was_enabled = gc.isenabled()
    gc.disable()

    try:
        if _HAS_UVLOOP:
            return uvloop.run(coro)
        return asyncio.run(coro)
    finally:
        if gc_was_enabled:
            gc.enable()
        gc.collect()


def _build_settings(args: argparse.Namespace) -> RunSettings:
    """Merge settings file (-f) and CLI flags; flags win. Raises ClobbrConfigError / ClobbrRunnerError."""
    raw: dict[str, Any] = asdict(load_settings(args.config)) if args.config else {}
    overrides = {
        "url": args.url,
        "verb": args.verb,
        "iterations": args.iterations,
        "timeout_ms": args.timeout_ms,
        "body": args.data,
        "parallel": args.parallel,
        "fail_on_status": True if args.fail_on_status else None,
    }
    raw.update({k: v for k, v in overrides.items() if v is not None})
    if args.headers:
        raw["headers"] = {**(raw.get("headers") or {}), **parse_headers(args.headers)}
    raw["ssl"] = not args.no_ssl
    if not raw.get("url"):
        raise ClobbrRunnerError("A target URL is required (positional URL or 'url' in the -f settings file)")
    return settings_from_dict(raw)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clobbr",
        description="Fire N HTTP requests at one endpoint, in parallel or in sequence, "
        "and report per-request timing and the average response time.",
    )
    parser.add_argument("url", nargs="?", default=None, help="Target URL (scheme optional, https assumed)")
    parser.add_argument(
        "-X",
        "--verb",
        type=str.upper,
        choices=[v.value for v in Verb],
        default=None,
        help="HTTP verb (default: GET)",
    )
    parser.add_argument(
        "-n",
        "--iterations",
        type=int,
        default=None,
        help=f"Number of requests to send (default: 10, max {MAX_ITERATIONS})",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--parallel",
        action="store_const",
        const=True,
        dest="parallel",
        default=None,
        help="Send all requests at once (default)",
    )
    mode.add_argument(
        "--sequential",
        action="store_const",
        const=False,
        dest="parallel",
        help="Send requests one after another",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=None,
        metavar="MS",
        dest="timeout_ms",
        help="Per-request timeout in milliseconds, 0 = none (default: 10000)",
    )
    parser.add_argument(
        "-H",
        "--header",
        action="append",
        metavar="'NAME: VALUE'",
        dest="headers",
        help="Request header (can be repeated)",
    )
    parser.add_argument("-d", "--data", default=None, metavar="BODY", help="Request body")
    parser.add_argument(
        "--no-ssl",
        action="store_true",
        help="Use http:// for URLs given without a scheme",
    )
    parser.add_argument(
        "--fail-on-status",
        action="store_true",
        help="Count non-2xx responses as failed requests",
    )
    parser.add_argument(
        "-f",
        "--config",
        default=None,
        help="Path to YAML run settings (flags override its values)",
    )
    parser.add_argument(
        "--json",
        metavar="PATH",
        dest="json_path",
        help="Also write JSON report to PATH (summary and every request)",
    )
    parser.add_argument(
        "--junit",
        metavar="PATH",
        dest="junit_path",
        help="Also write JUnit XML report to PATH (for CI)",
    )
    parser.add_argument(
        "--no-live",
        action="store_true",
        help="Disable live Rich view (headless mode)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Log level for stderr diagnostics (default: CLOBBR_LOG_LEVEL or INFO)",
    )
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=None,
        help="Log line format (default: CLOBBR_LOG_FORMAT or text)",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"clobbr {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_level or args.log_format:
        configure_logging(level=args.log_level, fmt=args.log_format)
    console = Console()

    def handle_error(e: BaseException) -> int:
        if isinstance(e, ClobbrError):
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        if isinstance(e, (FileNotFoundError, ValueError)):
            print(f"Error: {e}", file=sys.stderr)
            return 1
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return 1

    try:
        settings = _build_settings(args)
        result = _run_async(
            run_and_report(
                settings,
                live=not args.no_live,
                json_path=args.json_path,
                junit_path=args.junit_path,
                console=console,
            )
        )
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        return handle_error(e)

    console.print(build_summary_table(result, settings))
    if result.cancelled:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    return 0


if __name__ == "__main__":
    sys.exit(main())
