#!/usr/bin/env python3
"""
flowprobe command line runner.

Usage:
    python main.py workflow.yml
    python main.py workflow.yml --env BASE=https://staging.example.com --secret TOKEN=abc
    python main.py workflow.yml --concurrency 1 --output result.json

Exit code is 0 when every test passed, 1 when a test failed and 2 when the
workflow document could not be loaded.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from flowprobe import WorkflowEngine, WorkflowError, WorkflowOptions, WorkflowResult
from flowprobe.settings import get_settings

logger = logging.getLogger("flowprobe.cli")
console = Console()


def setup_logging(verbose: bool = False) -> None:
    level = "DEBUG" if verbose else get_settings().log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _pairs(values: Optional[List[str]], flag: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"{flag} expects KEY=VALUE, got {item!r}")
        out[key] = value
    return out


def print_summary(result: WorkflowResult) -> None:
    table = Table(title=f"Workflow: {result.name}")
    table.add_column("Test")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Duration (ms)", justify="right")
    table.add_column("Note")

    for test in result.tests:
        for step in test.steps:
            if step.skipped:
                mark = "⏭️ skipped"
            elif step.passed:
                mark = "✅ passed"
            else:
                mark = "❌ failed"
            table.add_row(
                test.name or test.id,
                step.name or step.id or "-",
                mark,
                f"{step.duration:.0f}",
                step.error_message or "",
            )
    console.print(table)

    icon = "✅" if result.passed else "❌"
    console.print(
        f"{icon} {sum(t.passed for t in result.tests)}/{len(result.tests)} tests passed "
        f"in {result.duration:.0f}ms | sent {result.bytes_sent} B | received {result.bytes_received} B "
        f"| CO2 {result.co2:.6f} g"
    )


def _build_cli() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Run a flowprobe workflow file")
    p.add_argument("workflow", help="Path to the workflow YAML file")
    p.add_argument("--env", "-e", action="append", metavar="KEY=VALUE", help="Override a workflow env value")
    p.add_argument("--secret", "-s", action="append", metavar="KEY=VALUE", help="Provide a secret")
    p.add_argument("--concurrency", "-c", type=int, help="Maximum number of tests running at once")
    p.add_argument("--output", "-o", help="Write the full result as JSON to this file")
    p.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    parser = _build_cli()
    args = parser.parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        options = WorkflowOptions(
            path=args.workflow,
            env=_pairs(args.env, "--env"),
            secrets=_pairs(args.secret, "--secret"),
            concurrency=args.concurrency,
        )
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    try:
        result = WorkflowEngine(options).run_file(args.workflow)
    except WorkflowError as e:
        logger.error(f"❌ {e}")
        return 2

    print_summary(result)
    if args.output:
        Path(args.output).write_text(result.to_json(), encoding="utf-8")
        console.print(f"📄 Result written to {args.output}")

    return 0 if result.passed else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\n👋 Cancelled by user")
        sys.exit(130)
