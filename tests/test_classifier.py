# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Tests for the classifier module."""

from __future__ import annotations

import itertools

import pytest
from classifier import Verdict, annotate, classify, describe, is_bug
from probe import ProbeResult


def _result(
    *,
    timed_out: bool = False,
    exit_code: int | None = 1,
    stderr: str = "",
    stdout: str = "",
    elapsed_ms: int = 100,
) -> ProbeResult:
    return ProbeResult(
        exit_code=exit_code,
        stdout_text=stdout,
        stderr_text=stderr,
        timed_out=timed_out,
        elapsed_ms=elapsed_ms,
    )


class TestClassify:
    @pytest.mark.parametrize(
        ("timed_out", "exit_code", "stderr", "expected"),
        [
            (True, None, "", Verdict.HANG_BUG),
            (True, 0, "", Verdict.HANG_BUG),
            (True, -9, "Error: routing: not found", Verdict.HANG_BUG),
            (False, 0, "", Verdict.UNEXPECTED_SUCCESS),
            (False, 0, "warning on stderr", Verdict.UNEXPECTED_SUCCESS),
            (False, 1, "", Verdict.SILENT_FAILURE),
            (False, -15, "", Verdict.SILENT_FAILURE),
            (False, 1, "Error: routing: not found", Verdict.EXPECTED_FAILURE),
            (False, 1, " ", Verdict.EXPECTED_FAILURE),
        ],
    )
    def test_decision_table(
        self, timed_out: bool, exit_code: int | None, stderr: str, expected: Verdict
    ) -> None:
        assert classify(_result(timed_out=timed_out, exit_code=exit_code, stderr=stderr)) is expected

    def test_ignores_elapsed_and_stdout(self) -> None:
        base = classify(_result(exit_code=1, stderr="err"))
        for elapsed, stdout in itertools.product((0, 1, 10**9), ("", "x" * 1000)):
            assert classify(
                _result(exit_code=1, stderr="err", elapsed_ms=elapsed, stdout=stdout)
            ) is base

    def test_is_total(self) -> None:
        for timed_out, exit_code, stderr in itertools.product(
            (True, False), (None, 0, 1, 2, -9), ("", "e")
        ):
            verdict = classify(_result(timed_out=timed_out, exit_code=exit_code, stderr=stderr))
            assert isinstance(verdict, Verdict)


class TestIsBug:
    def test_bug_verdicts(self) -> None:
        assert is_bug(Verdict.HANG_BUG)
        assert is_bug(Verdict.SILENT_FAILURE)
        assert not is_bug(Verdict.EXPECTED_FAILURE)
        assert not is_bug(Verdict.UNEXPECTED_SUCCESS)

    def test_every_verdict_is_described(self) -> None:
        for verdict in Verdict:
            headline, explanation = describe(verdict)
            assert headline and explanation


class TestAnnotate:
    def test_connection_refused(self) -> None:
        notes = annotate(_result(stderr="dial tcp 127.0.0.1:19999: connect: connection refused"))
        assert notes == ("stderr reports connection refused",)

    def test_no_providers_wording(self) -> None:
        notes = annotate(_result(stderr="Error: routing: not found"))
        assert notes == ("stderr mentions no providers / not found / routing",)

    def test_unspecific_error(self) -> None:
        notes = annotate(_result(stderr="Error: context deadline exceeded"))
        assert notes == ("error message does not mention the routers or providers",)

    def test_only_expected_failures_are_annotated(self) -> None:
        assert annotate(_result(timed_out=True, stderr="connection refused")) == ()
        assert annotate(_result(exit_code=0)) == ()
        assert annotate(_result(exit_code=1, stderr="")) == ()

    def test_annotation_never_changes_verdict(self) -> None:
        for stderr in ("connection refused", "no providers", "something else"):
            result = _result(stderr=stderr)
            annotate(result)
            assert classify(result) is Verdict.EXPECTED_FAILURE
