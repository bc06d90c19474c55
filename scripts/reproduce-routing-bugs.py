#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Reproduce Kubo provider-discovery bugs with delegated HTTP routing.

Drives a real ``ipfs`` binary through two scenarios in which provider
discovery must come up empty, and reports how the content fetch
behaves:

``offline-routers``
    Both HTTP routers refuse connections.
``no-providers``
    Both HTTP routers answer "no providers found" (mock servers run by
    this script).

A fetch that hangs until the deadline (``hang-bug``) or fails without
any error output (``silent-failure``) reproduces a bug; a quick failure
with an error message (``expected-failure``) is the correct behaviour.

Usage::

    # Run both scenarios
    python scripts/reproduce-routing-bugs.py

    # Run a single scenario
    python scripts/reproduce-routing-bugs.py --scenario no-providers

    # List available scenarios
    python scripts/reproduce-routing-bugs.py --list

    # Exit non-zero when a bug is reproduced (for CI)
    FAIL_ON_BUG=true python scripts/reproduce-routing-bugs.py

Environment Variables
---------------------
KUBO_BIN
    Daemon executable (default: ``ipfs``).
EXPECTED_KUBO_VERSION
    Version the binary must report (default: ``0.37.0``; empty skips).
WORK_DIR / REPO_DIR
    Working directory and repository path.
ROUTER_PORTS / ROUTER_TIMEOUT
    Routing backend ports and the per-router timeout.
OFFLINE_PROBE_TIMEOUT / NO_PROVIDERS_PROBE_TIMEOUT
    Fetch deadlines in seconds (default: ``60`` / ``120``).
READINESS_TIMEOUT
    Seconds to wait for the daemon to become ready; ``0`` waits forever.
DEBUG
    ``"true"`` for verbose output.

Exit codes: 0 every scenario reached a verdict, 1 harness failure (or a
bug verdict with ``FAIL_ON_BUG``), 2 unexpected error, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import signal
import sys
import textwrap
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).parent.resolve()
LIB_DIR = SCRIPT_DIR / "lib"
sys.path.insert(0, str(LIB_DIR))

from config import HarnessConfig  # noqa: E402
from errors import ConfigError, HarnessError  # noqa: E402
from logging_utils import setup_logging  # noqa: E402
from outputs import emit_verdict_outputs  # noqa: E402
from scenarios import (  # noqa: E402
    SCENARIOS,
    Scenario,
    ScenarioResult,
    resolve_scenarios,
    run_scenario,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_UNEXPECTED = 2
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


async def run_all(
    config: HarnessConfig,
    selected: list[Scenario],
    *,
    keep_repo: bool = False,
) -> list[ScenarioResult]:
    """Run *selected* scenarios in order, then remove the repository.

    A harness error aborts the run: the failing scenario has already torn
    down what it started, and the remaining scenarios are skipped.
    """
    results: list[ScenarioResult] = []
    try:
        for index, scenario in enumerate(selected):
            result = await run_scenario(config, scenario)
            results.append(result)
            if result.error:
                skipped = [s.name for s in selected[index + 1 :]]
                if skipped:
                    logger.error(
                        "Aborting run after %s failed; skipped: %s",
                        scenario.name,
                        ", ".join(skipped),
                    )
                break
    finally:
        if keep_repo:
            logger.info("Repository kept (--keep-repo): %s", config.repo_path)
        elif config.repo_path.exists():
            logger.debug("Removing repository %s", config.repo_path)
            shutil.rmtree(config.repo_path, ignore_errors=True)
    return results


async def run_with_signals(
    config: HarnessConfig,
    selected: list[Scenario],
    *,
    keep_repo: bool = False,
) -> list[ScenarioResult]:
    """Like :func:`run_all`, but SIGINT/SIGTERM cancel the run.

    Cancellation unwinds through each scenario's teardown, so the daemon
    and mock routers are stopped before the process exits.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    received: list[signal.Signals] = []

    def _on_signal(sig: signal.Signals) -> None:
        if received:
            logger.warning("Received %s again; still cleaning up…", sig.name)
            return
        received.append(sig)
        logger.info("Received %s, cleaning up…", sig.name)
        if task is not None:
            task.cancel()

    handled = (signal.SIGINT, signal.SIGTERM)
    for sig in handled:
        loop.add_signal_handler(sig, _on_signal, sig)
    try:
        return await run_all(config, selected, keep_repo=keep_repo)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------


def print_summary(results: list[ScenarioResult], *, fail_on_bug: bool = False) -> int:
    """Log a final summary, write CI outputs and return an exit code."""
    logger.info("")
    logger.info("=" * 60)
    logger.info("FINAL SUMMARY")
    logger.info("=" * 60)

    for sr in results:
        if not sr.completed:
            logger.info("❌ %-16s harness error: %s", sr.scenario.name, sr.error)
            continue
        icon = "🐛" if sr.bug else "✅"
        probe = sr.probe
        logger.info(
            "%s %-16s %s (exit %s after %.1fs)",
            icon,
            sr.scenario.name,
            sr.verdict.value,
            probe.exit_code if probe else None,
            probe.elapsed_ms / 1000 if probe else 0.0,
        )
        if sr.findprovs_verdict is not None:
            logger.info("   %-16s findprovs: %s", "", sr.findprovs_verdict.value)

    emit_verdict_outputs([sr.to_dict() for sr in results])

    failed = [sr for sr in results if not sr.completed]
    bugs = [sr for sr in results if sr.bug]
    logger.info("-" * 60)
    logger.info(
        "Scenarios: %d run, %d harness failure(s), %d bug(s) reproduced",
        len(results),
        len(failed),
        len(bugs),
    )

    if failed:
        return EXIT_FAILURE
    if bugs and fail_on_bug:
        logger.info("FAIL_ON_BUG is set and a bug was reproduced")
        return EXIT_FAILURE
    return EXIT_OK


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Reproduce Kubo provider-discovery bugs with HTTP routers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s                                  # run both scenarios
              %(prog)s --scenario no-providers          # run a single scenario
              %(prog)s --scenario offline-routers,no-providers
              %(prog)s --list                           # list scenarios
              %(prog)s --keep-repo                      # keep the repository
        """),
    )
    parser.add_argument(
        "--scenario",
        "-s",
        help="Comma-separated scenario names to run (default: all).",
    )
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List available scenarios and exit.",
    )
    parser.add_argument(
        "--keep-repo",
        "-k",
        action="store_true",
        help="Keep the provisioned repository after the run (for inspection).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    if args.list:
        print("\nAvailable scenarios:\n")
        for s in SCENARIOS:
            print(f"  {s.name:20s} {s.description}")
        print()
        return EXIT_OK

    try:
        config = HarnessConfig.from_environment()
    except ConfigError as exc:
        setup_logging()
        logger.error("Configuration error: %s", exc)
        return EXIT_FAILURE

    setup_logging(debug=config.debug)

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error("Configuration error: %s", problem)
        return EXIT_FAILURE

    try:
        selected = resolve_scenarios(args.scenario)
    except ConfigError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    logger.info("Harness configuration:")
    logger.info("  Kubo binary:        %s", config.kubo_bin)
    logger.info("  Expected version:   %s", config.expected_version or "(not checked)")
    logger.info("  Repository:         %s", config.repo_path)
    logger.info("  Test CID:           %s", config.test_cid)
    logger.info("  Scenarios:          %s", ", ".join(s.name for s in selected))

    try:
        results = asyncio.run(
            run_with_signals(config, selected, keep_repo=args.keep_repo)
        )
    except (asyncio.CancelledError, KeyboardInterrupt):
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED
    except HarnessError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    except Exception as exc:
        logger.exception("Unexpected error: %s", exc)
        return EXIT_UNEXPECTED

    return print_summary(results, fail_on_bug=config.fail_on_bug)


if __name__ == "__main__":
    sys.exit(main())
