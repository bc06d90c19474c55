# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Reporting helpers: probe result blocks, GitHub outputs and step summary.

Centralises all interaction with ``$GITHUB_OUTPUT`` and
``$GITHUB_STEP_SUMMARY``.  Outside of GitHub Actions both variables are
unset and the writers only log at debug level, so the harness behaves
identically when run locally.

Usage::

    from outputs import emit_verdict_outputs, log_probe_result

    log_probe_result("CID FETCH", result)
    emit_verdict_outputs([scenario_result.to_dict() for ...])
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Sequence
from typing import Any

from classifier import Verdict, describe, is_bug
from probe import ProbeResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------


def write_output(name: str, value: str) -> None:
    """Append a ``name=value`` pair to ``$GITHUB_OUTPUT``.

    Multi-line values are written using the heredoc syntax that GitHub
    Actions requires::

        name<<EOF
        line 1
        line 2
        EOF

    If ``GITHUB_OUTPUT`` is not set the call is ignored and a debug
    message is logged instead.
    """
    output_file = os.environ.get("GITHUB_OUTPUT")
    if not output_file:
        logger.debug("GITHUB_OUTPUT not set; would write %s=%s", name, _truncate(value))
        return

    try:
        with open(output_file, "a", encoding="utf-8") as fh:
            if "\n" in value:
                fh.write(f"{name}<<EOF\n{value}\nEOF\n")
            else:
                fh.write(f"{name}={value}\n")
        logger.debug("Wrote output %s (%d chars)", name, len(value))
    except OSError as exc:
        logger.warning("Failed to write to GITHUB_OUTPUT: %s", exc)


def write_summary(markdown: str) -> None:
    """Append *markdown* content to ``$GITHUB_STEP_SUMMARY``.

    A trailing newline is ensured so that consecutive calls don't run
    together.  If the environment variable is unset the call is ignored.
    """
    summary_file = os.environ.get("GITHUB_STEP_SUMMARY")
    if not summary_file:
        logger.debug("GITHUB_STEP_SUMMARY not set; would write %s", _truncate(markdown))
        return

    try:
        with open(summary_file, "a", encoding="utf-8") as fh:
            fh.write(markdown)
            if not markdown.endswith("\n"):
                fh.write("\n")
        logger.debug("Wrote %d chars to step summary", len(markdown))
    except OSError as exc:
        logger.warning("Failed to write to GITHUB_STEP_SUMMARY: %s", exc)


def write_json_output(name: str, value: Any) -> None:
    """Serialise *value* as compact JSON and write it as a GitHub output."""
    write_output(name, json.dumps(value, separators=(",", ":")))


# ---------------------------------------------------------------------------
# Probe reporting
# ---------------------------------------------------------------------------


def log_probe_result(title: str, result: ProbeResult) -> None:
    """Log the raw observations of one probe run."""
    logger.info("=== %s RESULTS ===", title)
    logger.info("Exit code: %s", result.exit_code)
    logger.info("Process exited: %s", result.exited)
    logger.info("Elapsed: %.1fs", result.elapsed_ms / 1000)
    logger.info("Stdout length: %d", result.stdout_length)
    logger.info("Stdout content: %s", json.dumps(_truncate(result.stdout_text, 400)))
    logger.info("Stderr length: %d", len(result.stderr_text))
    logger.info("Stderr content: %s", json.dumps(result.stderr_text))
    logger.info("Timeout reached: %s", result.timed_out)


def log_verdict(title: str, verdict: Verdict, annotations: Sequence[str] = ()) -> None:
    """Log the analysis block for *verdict*: headline, explanation, notes."""
    headline, explanation = describe(verdict)
    logger.info("=== %s ANALYSIS ===", title)
    if is_bug(verdict):
        logger.error("❌ %s", headline)
    elif verdict is Verdict.UNEXPECTED_SUCCESS:
        logger.warning("❌ %s", headline)
    else:
        logger.info("✅ %s", headline)
    logger.info("%s", explanation)
    for note in annotations:
        logger.info("  - %s", note)


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

_VERDICT_EMOJI = {
    Verdict.HANG_BUG.value: "🐛",
    Verdict.SILENT_FAILURE.value: "🐛",
    Verdict.EXPECTED_FAILURE.value: "✅",
    Verdict.UNEXPECTED_SUCCESS.value: "⚠️",
}


def format_verdict_table(rows: Sequence[dict[str, Any]]) -> str:
    """Render scenario rows (see ``ScenarioResult.to_dict``) as Markdown.

    Rows without a verdict are shown as harness errors.
    """
    lines = [
        "### Routing Reproduction Results",
        "",
        "| Scenario | Verdict | Exit code | Elapsed | Notes |",
        "|----------|---------|-----------|---------|-------|",
    ]
    for row in rows:
        verdict = row.get("verdict")
        if verdict is None:
            verdict_cell = "❌ harness error"
            notes = row.get("error") or ""
        else:
            verdict_cell = f"{_VERDICT_EMOJI.get(verdict, '')} {verdict}".strip()
            notes = "; ".join(row.get("annotations") or ())
        exit_code = row.get("exit_code")
        elapsed_ms = row.get("elapsed_ms")
        lines.append(
            "| {scenario} | {verdict} | {exit_code} | {elapsed} | {notes} |".format(
                scenario=row.get("scenario", "?"),
                verdict=verdict_cell,
                exit_code="–" if exit_code is None else exit_code,
                elapsed="–" if elapsed_ms is None else f"{elapsed_ms / 1000:.1f}s",
                notes=_escape_cell(notes),
            )
        )
    lines.append("")
    return "\n".join(lines)


def emit_verdict_outputs(rows: Sequence[dict[str, Any]]) -> None:
    """Write the ``verdicts`` output and the step-summary table."""
    write_json_output("verdicts", {row["scenario"]: row.get("verdict") for row in rows})
    write_json_output(
        "bug_reproduced",
        any(row.get("bug") for row in rows),
    )
    write_summary(format_verdict_table(rows))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _escape_cell(text: str) -> str:
    return text.replace("|", "\\|").replace("\n", " ")


def _truncate(text: str, maxlen: int = 120) -> str:
    """Return *text* truncated to *maxlen* characters for log messages."""
    if len(text) <= maxlen:
        return text
    return text[:maxlen] + "…"
