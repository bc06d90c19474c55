# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Tests for the entry script (reproduce-routing-bugs.py).

Covers:
- parse_args: flags and defaults
- print_summary: exit codes for clean runs, harness errors and bugs
- run_all: repository removal, --keep-repo, abort after a harness error
- main(): --list, configuration errors, unknown scenarios, and a full
  run against the fake ``ipfs``
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# The script lives at scripts/reproduce-routing-bugs.py which is not a
# valid module name, so load it via importlib.
# ---------------------------------------------------------------------------
import asyncio
import dataclasses
import importlib.util
import json
import sys
from pathlib import Path

import pytest
from classifier import Verdict
from config import HarnessConfig
from probe import ProbeResult
from scenarios import SCENARIOS, ScenarioResult

from conftest import free_ports

SCRIPTS_DIR = Path(__file__).resolve().parent.parent / "scripts"
_spec = importlib.util.spec_from_file_location(
    "reproduce_routing_bugs", SCRIPTS_DIR / "reproduce-routing-bugs.py"
)
assert _spec is not None and _spec.loader is not None
reproduce = importlib.util.module_from_spec(_spec)
sys.modules["reproduce_routing_bugs"] = reproduce
_spec.loader.exec_module(reproduce)

OFFLINE, NO_PROVIDERS = SCENARIOS


def _probe(exit_code: int = 1, timed_out: bool = False) -> ProbeResult:
    return ProbeResult(
        exit_code=exit_code,
        stdout_text="",
        stderr_text="Error: routing: not found\n",
        timed_out=timed_out,
        elapsed_ms=1200,
    )


@pytest.fixture()
def quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep main() from replacing pytest's log capture handler."""
    monkeypatch.setattr(reproduce, "setup_logging", lambda debug=None: None)


@pytest.fixture()
def script_env(
    clean_env: pytest.MonkeyPatch,
    fake_ipfs: Path,
    work_dir: Path,
    github_output: Path,
    quiet_logging: None,
) -> pytest.MonkeyPatch:
    """Environment pointing main() at the fake binary on free ports."""
    swarm, api, gateway, router1, router2 = free_ports(5)
    clean_env.setenv("KUBO_BIN", str(fake_ipfs))
    clean_env.setenv("WORK_DIR", str(work_dir))
    clean_env.setenv("SWARM_PORT", str(swarm))
    clean_env.setenv("API_PORT", str(api))
    clean_env.setenv("GATEWAY_PORT", str(gateway))
    clean_env.setenv("ROUTER_PORTS", f"{router1},{router2}")
    clean_env.setenv("OFFLINE_PROBE_TIMEOUT", "10")
    clean_env.setenv("NO_PROVIDERS_PROBE_TIMEOUT", "10")
    clean_env.setenv("READINESS_TIMEOUT", "15")
    clean_env.setenv("SHUTDOWN_GRACE", "2")
    clean_env.setenv("KILL_DRAIN", "0.5")
    clean_env.setenv("GITHUB_OUTPUT", str(github_output))
    return clean_env


def _outputs(path: Path) -> dict[str, str]:
    return dict(line.split("=", 1) for line in path.read_text().splitlines())


# =========================================================================
# parse_args
# =========================================================================


class TestParseArgs:
    def test_defaults(self) -> None:
        args = reproduce.parse_args([])
        assert args.scenario is None
        assert args.list is False
        assert args.keep_repo is False

    def test_short_flags(self) -> None:
        args = reproduce.parse_args(["-s", "no-providers", "-k"])
        assert args.scenario == "no-providers"
        assert args.keep_repo is True


# =========================================================================
# print_summary
# =========================================================================


class TestPrintSummary:
    def test_expected_failures_exit_zero(self) -> None:
        results = [
            ScenarioResult(OFFLINE, probe=_probe(), verdict=Verdict.EXPECTED_FAILURE),
            ScenarioResult(NO_PROVIDERS, probe=_probe(), verdict=Verdict.EXPECTED_FAILURE),
        ]
        assert reproduce.print_summary(results) == reproduce.EXIT_OK

    def test_bug_without_fail_on_bug_exits_zero(self) -> None:
        results = [
            ScenarioResult(
                NO_PROVIDERS,
                probe=_probe(exit_code=-9, timed_out=True),
                verdict=Verdict.HANG_BUG,
            )
        ]
        assert reproduce.print_summary(results) == reproduce.EXIT_OK

    def test_bug_with_fail_on_bug_exits_one(self) -> None:
        results = [
            ScenarioResult(
                NO_PROVIDERS,
                probe=_probe(exit_code=-9, timed_out=True),
                verdict=Verdict.HANG_BUG,
            )
        ]
        assert reproduce.print_summary(results, fail_on_bug=True) == reproduce.EXIT_FAILURE

    def test_harness_error_exits_one(self) -> None:
        results = [
            ScenarioResult(OFFLINE, probe=_probe(), verdict=Verdict.EXPECTED_FAILURE),
            ScenarioResult(NO_PROVIDERS, error="Port conflict"),
        ]
        assert reproduce.print_summary(results) == reproduce.EXIT_FAILURE


# =========================================================================
# run_all
# =========================================================================


class TestRunAll:
    def test_repository_removed_after_run(self, harness_config: HarnessConfig) -> None:
        results = asyncio.run(reproduce.run_all(harness_config, [OFFLINE]))
        assert results[0].completed
        assert not harness_config.repo_path.exists()

    def test_keep_repo(self, harness_config: HarnessConfig) -> None:
        asyncio.run(reproduce.run_all(harness_config, [OFFLINE], keep_repo=True))
        assert harness_config.repo_path.joinpath("config").exists()

    def test_setup_error_aborts_remaining_scenarios(
        self, harness_config: HarnessConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = dataclasses.replace(
            harness_config, extra_env={"FAKE_IPFS_VERSION": "0.36.0"}
        )
        results = asyncio.run(reproduce.run_all(config, list(SCENARIOS)))

        assert len(results) == 1
        assert results[0].scenario is OFFLINE
        assert "Version mismatch: expected 0.37.0, got 0.36.0" in results[0].error
        assert "skipped: no-providers" in caplog.text

    def test_bug_verdict_does_not_abort(self, harness_config: HarnessConfig) -> None:
        config = dataclasses.replace(
            harness_config,
            extra_env={"FAKE_IPFS_CAT": "silent"},
        )
        results = asyncio.run(reproduce.run_all(config, list(SCENARIOS)))

        assert [r.verdict for r in results] == [
            Verdict.SILENT_FAILURE,
            Verdict.SILENT_FAILURE,
        ]

    def test_aborted_run_exits_one(self, harness_config: HarnessConfig) -> None:
        config = dataclasses.replace(harness_config, extra_env={"FAKE_IPFS_INIT": "fail"})
        results = asyncio.run(reproduce.run_all(config, list(SCENARIOS)))
        assert len(results) == 1
        assert reproduce.print_summary(results) == reproduce.EXIT_FAILURE


# =========================================================================
# main
# =========================================================================


class TestMain:
    def test_list(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert reproduce.main(["--list"]) == reproduce.EXIT_OK
        out = capsys.readouterr().out
        assert "offline-routers" in out
        assert "no-providers" in out

    def test_invalid_numeric_setting(
        self, clean_env: pytest.MonkeyPatch, quiet_logging: None
    ) -> None:
        clean_env.setenv("API_PORT", "not-a-port")
        assert reproduce.main([]) == reproduce.EXIT_FAILURE

    def test_validation_errors(
        self,
        clean_env: pytest.MonkeyPatch,
        quiet_logging: None,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        clean_env.setenv("ROUTER_TIMEOUT", "soon")
        assert reproduce.main([]) == reproduce.EXIT_FAILURE
        assert "ROUTER_TIMEOUT" in caplog.text

    def test_unknown_scenario(self, script_env: pytest.MonkeyPatch) -> None:
        assert reproduce.main(["--scenario", "bogus"]) == reproduce.EXIT_FAILURE

    def test_full_run(self, script_env: pytest.MonkeyPatch, github_output: Path) -> None:
        assert reproduce.main([]) == reproduce.EXIT_OK

        outputs = _outputs(github_output)
        assert json.loads(outputs["verdicts"]) == {
            "offline-routers": "expected-failure",
            "no-providers": "expected-failure",
        }
        assert json.loads(outputs["bug_reproduced"]) is False

    def test_hang_with_fail_on_bug(
        self, script_env: pytest.MonkeyPatch, github_output: Path
    ) -> None:
        script_env.setenv("FAKE_IPFS_CAT", "hang")
        script_env.setenv("NO_PROVIDERS_PROBE_TIMEOUT", "1")
        script_env.setenv("FAIL_ON_BUG", "true")

        assert reproduce.main(["-s", "no-providers"]) == reproduce.EXIT_FAILURE
        assert json.loads(_outputs(github_output)["verdicts"]) == {
            "no-providers": "hang-bug"
        }
