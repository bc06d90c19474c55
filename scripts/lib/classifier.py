# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Deterministic classification of a probe run into a verdict.

The decision table, checked in order:

1. timed out                      → ``HANG_BUG``
2. exit code 0                    → ``UNEXPECTED_SUCCESS``
3. non-zero exit, empty stderr    → ``SILENT_FAILURE``
4. non-zero exit, non-empty stderr → ``EXPECTED_FAILURE``

:func:`classify` looks only at ``timed_out``, ``exit_code`` and
``stderr_text``.  :func:`annotate` adds human-readable notes about the
wording of stderr; the notes never influence the verdict.
"""

from __future__ import annotations

import enum

from probe import ProbeResult


class Verdict(enum.Enum):
    HANG_BUG = "hang-bug"
    EXPECTED_FAILURE = "expected-failure"
    SILENT_FAILURE = "silent-failure"
    UNEXPECTED_SUCCESS = "unexpected-success"


_BUG_VERDICTS = frozenset({Verdict.HANG_BUG, Verdict.SILENT_FAILURE})

_DESCRIPTIONS = {
    Verdict.HANG_BUG: (
        "BUG CONFIRMED: operation hung without proper error handling",
        "Expected: the operation fails quickly with a clear error message. "
        "Actual: it was killed at the deadline.",
    ),
    Verdict.EXPECTED_FAILURE: (
        "EXPECTED: operation failed with an error message",
        "This is the expected behavior when no provider can be found.",
    ),
    Verdict.SILENT_FAILURE: (
        "BUG CONFIRMED: operation failed without an error message",
        "Expected: a clear error explaining that no providers were found. "
        "Actual: a non-zero exit with empty stderr.",
    ),
    Verdict.UNEXPECTED_SUCCESS: (
        "UNEXPECTED: operation succeeded",
        "The content was found through some other means (local cache, DHT, …).",
    ),
}

CONNECTION_REFUSED_MARKERS = ("connection refused",)
NO_PROVIDERS_MARKERS = ("no providers", "not found", "routing")


def classify(result: ProbeResult) -> Verdict:
    """Map *result* to a :class:`Verdict` (total and deterministic)."""
    if result.timed_out:
        return Verdict.HANG_BUG
    if result.exit_code == 0:
        return Verdict.UNEXPECTED_SUCCESS
    if result.stderr_text == "":
        return Verdict.SILENT_FAILURE
    return Verdict.EXPECTED_FAILURE


def is_bug(verdict: Verdict) -> bool:
    return verdict in _BUG_VERDICTS


def describe(verdict: Verdict) -> tuple[str, str]:
    """Return ``(headline, explanation)`` for reporting *verdict*."""
    return _DESCRIPTIONS[verdict]


def annotate(result: ProbeResult) -> tuple[str, ...]:
    """Notes about the stderr wording of a failed probe.

    Only ``EXPECTED_FAILURE`` results are annotated; everything else gets
    an empty tuple.
    """
    if classify(result) is not Verdict.EXPECTED_FAILURE:
        return ()

    stderr = result.stderr_text.lower()
    notes: list[str] = []
    if any(marker in stderr for marker in CONNECTION_REFUSED_MARKERS):
        notes.append("stderr reports connection refused")
    if any(marker in stderr for marker in NO_PROVIDERS_MARKERS):
        notes.append("stderr mentions no providers / not found / routing")
    if not notes:
        notes.append("error message does not mention the routers or providers")
    return tuple(notes)
