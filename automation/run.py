"""Command line entry point: ``web-runner config.yaml -P key=value``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from automation.dsl.params import parse_param_args
from automation.errors import ConfigError
from automation.service import AutomationService, CompiledProgram, RunResult, compile_file
from browser.config import RunConfig, load_config
from browser.session import PlaywrightSession

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="web-runner",
        description="Run a declarative browser automation configuration",
    )
    parser.add_argument("config", help="Path to the YAML configuration file")
    parser.add_argument(
        "-P",
        "--param",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Bind a configuration parameter (repeatable)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate and expand the configuration without launching a browser",
    )
    parser.add_argument("--headless", action="store_true", help="Force headless mode")
    parser.add_argument(
        "--runner-config",
        type=Path,
        default=None,
        help="Path to runner.toml (defaults to ./runner.toml)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    return parser


def configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def print_summary(program: CompiledProgram) -> None:
    summary = program.summary()
    print(f"Config: {summary['name']}")
    print(f"Target: {summary['target']}")
    print(f"Actions: {summary['actions']} ({summary['expanded_actions']} after expansion)")
    if summary["params"]:
        print("Params:")
        for name, spec in summary["params"].items():
            marker = " (required)" if spec["required"] else ""
            description = f" - {spec['description']}" if spec["description"] else ""
            print(f"  {name}{marker}{description}")
    if summary["success_conditions"]:
        print(f"Success conditions: {summary['success_conditions']}")
    if summary["attempts"] > 1:
        print(f"Retry: {summary['attempts']} attempts")


async def execute(program: CompiledProgram, config: RunConfig) -> RunResult:
    session = await PlaywrightSession.launch(
        program.configuration.browser,
        headless=config.headless,
        navigation_timeout_ms=config.navigation_timeout_ms,
    )
    try:
        return await AutomationService(session, config).execute(program)
    finally:
        await session.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    try:
        params = parse_param_args(args.param)
        program = compile_file(args.config, params)
    except ConfigError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_CONFIG

    if args.check:
        print_summary(program)
        return EXIT_OK

    config = load_config(args.runner_config)
    if args.headless:
        config.headless = True

    try:
        result = asyncio.run(execute(program, config))
    except ConfigError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return EXIT_CONFIG
    except Exception as exc:  # browser launch or teardown failure
        log.debug("Run aborted", exc_info=True)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILED

    if result.success:
        print(f"Success: {program.name} ({result.attempts} attempt(s), {result.duration_ms}ms)")
        return EXIT_OK
    print(f"error: {result.error}", file=sys.stderr)
    if result.screenshot_path:
        print(f"screenshot: {result.screenshot_path}", file=sys.stderr)
    return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
