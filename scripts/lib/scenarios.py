# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Scenario definitions and the per-scenario run.

Each scenario provisions a fresh repository whose provider discovery is
delegated to a parallel set of HTTP routers, starts the daemon, and
fetches a content identifier nobody in the topology has:

``offline-routers``
    Nothing listens on the router ports, so every routing call is
    refused.  Optionally also probes ``ipfs routing findprovs``.
``no-providers``
    Mock routers answer every provider query with 404 "no providers
    found".

Steps run strictly in order; the daemon and any mock routers are torn
down in a ``finally`` block, so they are stopped whatever happens,
including cancellation by a signal.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from classifier import Verdict, annotate, classify, is_bug
from config import HarnessConfig
from daemon import DaemonSupervisor
from errors import ConfigError, HarnessError, KuboCommandError
from kubo_cli import KuboCli
from logging_utils import log_group
from mock_router import MockRoutingServer
from outputs import log_probe_result, log_verdict
from ports import PortSpec, check_ports
from probe import ProbeResult, run_probe
from process_io import ProcessHandle
from provisioner import AddressOverrides, provision, verify, verify_config
from topology import RoutingTopology, parallel_http_topology

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Scenario definitions
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class Scenario:
    """One way of making provider discovery come up empty."""

    name: str
    description: str
    # Start mock routers on the router ports instead of leaving them closed
    mock_routers: bool = False
    # Eligible for the optional ``routing findprovs`` probe
    findprovs: bool = False

    def ignore_errors(self, config: HarnessConfig) -> bool:
        """``IgnoreErrors`` applied to every child of the parallel router."""
        return config.no_providers_ignore_errors if self.mock_routers else False

    def probe_timeout(self, config: HarnessConfig) -> float:
        """Deadline in seconds for the content fetch."""
        if self.mock_routers:
            return config.no_providers_probe_timeout
        return config.offline_probe_timeout


SCENARIOS: list[Scenario] = [
    Scenario(
        name="offline-routers",
        description=(
            "Both HTTP routers are offline (connection refused).  The fetch "
            "should fail quickly with a clear error instead of hanging."
        ),
        findprovs=True,
    ),
    Scenario(
        name="no-providers",
        description=(
            "Both HTTP routers reply 404 'no providers found'.  The fetch "
            "should fail well before the deadline with an error on stderr."
        ),
        mock_routers=True,
    ),
]

_SCENARIO_MAP: dict[str, Scenario] = {s.name: s for s in SCENARIOS}


def resolve_scenarios(names: str | None) -> list[Scenario]:
    """Turn ``"a,b"`` into scenarios, in the given order; *None* means all.

    Raises :class:`ConfigError` on an unknown name.
    """
    if not names:
        return list(SCENARIOS)

    selected: list[Scenario] = []
    for name in (n.strip() for n in names.split(",")):
        if not name:
            continue
        if name not in _SCENARIO_MAP:
            raise ConfigError(
                f"Unknown scenario: {name!r} (available: {', '.join(_SCENARIO_MAP)})"
            )
        selected.append(_SCENARIO_MAP[name])
    return selected


# ---------------------------------------------------------------------------
# Result record
# ---------------------------------------------------------------------------


@dataclasses.dataclass
class ScenarioResult:
    """What one scenario run observed."""

    scenario: Scenario
    probe: ProbeResult | None = None
    verdict: Verdict | None = None
    annotations: tuple[str, ...] = ()
    findprovs: ProbeResult | None = None
    findprovs_verdict: Verdict | None = None
    error: str = ""

    @property
    def completed(self) -> bool:
        """*True* if the fetch probe reached a verdict without a harness error."""
        return self.verdict is not None and not self.error

    @property
    def bug(self) -> bool:
        verdicts = (self.verdict, self.findprovs_verdict)
        return any(v is not None and is_bug(v) for v in verdicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario.name,
            "verdict": self.verdict.value if self.verdict else None,
            "bug": self.bug,
            "exit_code": self.probe.exit_code if self.probe else None,
            "timed_out": self.probe.timed_out if self.probe else None,
            "elapsed_ms": self.probe.elapsed_ms if self.probe else None,
            "annotations": list(self.annotations),
            "findprovs_verdict": (
                self.findprovs_verdict.value if self.findprovs_verdict else None
            ),
            "error": self.error,
        }


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


def port_specs(config: HarnessConfig) -> list[PortSpec]:
    """Every port a scenario needs free before it starts."""
    specs = [PortSpec(port, role=role) for role, port in config.daemon_ports.items()]
    specs.extend(
        PortSpec(port, role=f"HTTP Router {index}")
        for index, port in enumerate(config.router_ports, start=1)
    )
    return specs


def build_topology(config: HarnessConfig, scenario: Scenario) -> RoutingTopology:
    return parallel_http_topology(
        config.router_ports,
        timeout=config.router_timeout,
        ignore_errors=scenario.ignore_errors(config),
    )


def address_overrides(config: HarnessConfig) -> AddressOverrides:
    return AddressOverrides.for_ports(
        config.swarm_port, config.api_port, config.gateway_port
    )


async def _probe(
    kubo: KuboCli,
    argv: list[str],
    timeout: float,
    config: HarnessConfig,
) -> ProbeResult:
    try:
        return await run_probe(
            argv,
            env=kubo.env,
            deadline_ms=int(timeout * 1000),
            drain_period=config.kill_drain,
        )
    except OSError as exc:
        raise KuboCommandError(
            f"{argv[0]} could not be executed", returncode=-1, stderr=str(exc)
        ) from exc


# ---------------------------------------------------------------------------
# Scenario runner
# ---------------------------------------------------------------------------


async def run_scenario(
    config: HarnessConfig,
    scenario: Scenario,
    kubo: KuboCli | None = None,
) -> ScenarioResult:
    """Execute one scenario end to end and return what was observed.

    Harness failures are recorded in ``ScenarioResult.error`` rather than
    raised; cancellation propagates after teardown.
    """
    result = ScenarioResult(scenario=scenario)
    if kubo is None:
        kubo = KuboCli(config.kubo_bin, env=config.subprocess_env())
    supervisor = DaemonSupervisor(
        kubo,
        grace_period=config.shutdown_grace,
        drain_period=config.kill_drain,
    )
    routers: list[MockRoutingServer] = []
    daemon: ProcessHandle | None = None
    probe_timeout = scenario.probe_timeout(config)

    with log_group(f"Scenario: {scenario.name}"):
        logger.info("%s", scenario.description)
        logger.info("  Repository:     %s", config.repo_path)
        logger.info("  Router ports:   %s", ", ".join(map(str, config.router_ports)))
        logger.info("  IgnoreErrors:   %s", scenario.ignore_errors(config))
        logger.info("  Fetch timeout:  %gs", probe_timeout)

        try:
            if config.expected_version:
                await kubo.verify_version(config.expected_version)

            await check_ports(port_specs(config))

            topology = build_topology(config, scenario)
            addresses = address_overrides(config)
            await provision(kubo, config.repo_path, topology, addresses)
            verify(config.repo_path, topology, addresses)

            if scenario.mock_routers:
                logger.info("Starting HTTP routers that return no providers…")
                for port in config.router_ports:
                    server = MockRoutingServer(port)
                    routers.append(server)
                    await server.start()
                for server in routers:
                    await server.self_check()

            logger.info("Starting daemon…")
            daemon = await supervisor.start(kubo.env)
            await supervisor.wait_until_ready(daemon, config.readiness_deadline)

            logger.info("Verifying configuration reported by the daemon…")
            verify_config(await kubo.config_show(), topology, addresses)
            logger.info("Kubo config verified: %s ✅", scenario.name)

            if scenario.findprovs and config.run_findprovs:
                logger.info("Test: finding providers for %s…", config.test_cid)
                result.findprovs = await _probe(
                    kubo,
                    kubo.findprovs_argv(config.test_cid),
                    config.findprovs_timeout,
                    config,
                )
                result.findprovs_verdict = classify(result.findprovs)
                log_probe_result("FIND PROVIDERS", result.findprovs)
                log_verdict(
                    "FIND PROVIDERS",
                    result.findprovs_verdict,
                    annotate(result.findprovs),
                )

            logger.info("Test: fetching CID content (triggers provider discovery)…")
            logger.info("CID: %s", config.test_cid)
            result.probe = await _probe(
                kubo, kubo.cat_argv(config.test_cid), probe_timeout, config
            )
            result.verdict = classify(result.probe)
            result.annotations = annotate(result.probe)
            log_probe_result("CID FETCH", result.probe)
            log_verdict("CID FETCH", result.verdict, result.annotations)

        except HarnessError as exc:
            result.error = str(exc)
            logger.error("Scenario %s failed: %s", scenario.name, exc)

        except Exception as exc:
            result.error = f"Unexpected error: {exc}"
            logger.exception("Scenario %s: %s", scenario.name, result.error)

        finally:
            await supervisor.shutdown(daemon)
            for server in routers:
                await server.stop()

    return result
