# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Configuration parsing and validation for the routing reproduction harness.

All knobs are environment variables, read once into a frozen
:class:`HarnessConfig` so that the rest of the code never touches
``os.environ`` directly.

Usage::

    from config import HarnessConfig

    config = HarnessConfig.from_environment()
    problems = config.validate()
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from errors import ConfigError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_WORK_DIR = "/tmp/kubo-routing-repro"

# "Hello World" in the public network; nobody in the test topology has it
DEFAULT_TEST_CID = "QmYjtig7VJQ6XsnUjqqJvj7QaMcCAwtrgNdahSiFofrE7o"

DEFAULT_KUBO_VERSION = "0.37.0"
DEFAULT_ROUTER_PORTS = (19999, 19998)

# Environment variable that points every ipfs subprocess at the repo
REPO_ENV_VAR = "IPFS_PATH"


@dataclass(frozen=True)
class HarnessConfig:
    """Global configuration for one harness run."""

    # Daemon binary
    kubo_bin: str = "ipfs"
    expected_version: str = DEFAULT_KUBO_VERSION

    # Filesystem
    work_dir: str = DEFAULT_WORK_DIR
    repo_dir: str = ""

    # Daemon address overrides
    swarm_port: int = 54321
    api_port: int = 54322
    gateway_port: int = 54323

    # Routing backends
    router_ports: tuple[int, ...] = DEFAULT_ROUTER_PORTS
    router_timeout: str = "5s"
    no_providers_ignore_errors: bool = True

    # Probe deadlines (seconds)
    offline_probe_timeout: float = 60.0
    no_providers_probe_timeout: float = 120.0
    findprovs_timeout: float = 30.0
    run_findprovs: bool = False
    test_cid: str = DEFAULT_TEST_CID

    # Daemon lifecycle (seconds); 0 readiness timeout means wait forever
    readiness_timeout: float = 0.0
    shutdown_grace: float = 5.0
    kill_drain: float = 1.0

    # Behaviour
    fail_on_bug: bool = False
    debug: bool = False

    extra_env: dict[str, str] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def work_path(self) -> Path:
        return Path(self.work_dir)

    @property
    def repo_path(self) -> Path:
        """Repository directory; defaults to ``$WORK_DIR/.ipfs``."""
        if self.repo_dir:
            return Path(self.repo_dir)
        return self.work_path / ".ipfs"

    @property
    def readiness_deadline(self) -> float | None:
        """Readiness timeout in seconds, or *None* for an unbounded wait."""
        if self.readiness_timeout <= 0:
            return None
        return self.readiness_timeout

    @property
    def daemon_ports(self) -> dict[str, int]:
        return {
            "Kubo Swarm": self.swarm_port,
            "Kubo API": self.api_port,
            "Kubo Gateway": self.gateway_port,
        }

    def subprocess_env(self) -> dict[str, str]:
        """Environment for every ``ipfs`` invocation: inherited + repo path."""
        env = dict(os.environ)
        env.update(self.extra_env)
        env[REPO_ENV_VAR] = str(self.repo_path)
        return env

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_environment(cls) -> HarnessConfig:
        """Parse configuration from environment variables."""
        env = os.environ.get

        try:
            return cls(
                kubo_bin=env("KUBO_BIN", "ipfs"),
                expected_version=env("EXPECTED_KUBO_VERSION", DEFAULT_KUBO_VERSION),
                work_dir=env("WORK_DIR", DEFAULT_WORK_DIR),
                repo_dir=env("REPO_DIR", ""),
                swarm_port=int(env("SWARM_PORT", "54321")),
                api_port=int(env("API_PORT", "54322")),
                gateway_port=int(env("GATEWAY_PORT", "54323")),
                router_ports=parse_port_list(
                    env("ROUTER_PORTS", ",".join(str(p) for p in DEFAULT_ROUTER_PORTS))
                ),
                router_timeout=env("ROUTER_TIMEOUT", "5s"),
                no_providers_ignore_errors=_str_to_bool(
                    env("NO_PROVIDERS_IGNORE_ERRORS", "true")
                ),
                offline_probe_timeout=float(env("OFFLINE_PROBE_TIMEOUT", "60")),
                no_providers_probe_timeout=float(
                    env("NO_PROVIDERS_PROBE_TIMEOUT", "120")
                ),
                findprovs_timeout=float(env("FINDPROVS_TIMEOUT", "30")),
                run_findprovs=_str_to_bool(env("RUN_FINDPROVS", "false")),
                test_cid=env("TEST_CID", DEFAULT_TEST_CID),
                readiness_timeout=float(env("READINESS_TIMEOUT", "0")),
                shutdown_grace=float(env("SHUTDOWN_GRACE", "5")),
                kill_drain=float(env("KILL_DRAIN", "1")),
                fail_on_bug=_str_to_bool(env("FAIL_ON_BUG", "false")),
                debug=_str_to_bool(env("DEBUG", "false")),
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid numeric setting: {exc}") from exc

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Return a list of validation error messages (empty if valid)."""
        errors: list[str] = []

        if not self.kubo_bin:
            errors.append("KUBO_BIN must not be empty")
        if not self.test_cid:
            errors.append("TEST_CID must not be empty")

        if not self.router_ports:
            errors.append("ROUTER_PORTS must list at least one port")

        all_ports = [*self.daemon_ports.values(), *self.router_ports]
        for port in all_ports:
            if not (1 <= port <= 65535):
                errors.append(f"port out of range: {port}")
        if len(set(all_ports)) != len(all_ports):
            errors.append(f"ports must be distinct: {all_ports}")

        if not _INTERVAL_RE.match(self.router_timeout.strip()):
            errors.append(
                "ROUTER_TIMEOUT must be a valid interval "
                f"(e.g. '500ms', '5s', '1m30s'): got '{self.router_timeout}'"
            )

        for name, value in (
            ("OFFLINE_PROBE_TIMEOUT", self.offline_probe_timeout),
            ("NO_PROVIDERS_PROBE_TIMEOUT", self.no_providers_probe_timeout),
            ("FINDPROVS_TIMEOUT", self.findprovs_timeout),
            ("SHUTDOWN_GRACE", self.shutdown_grace),
        ):
            if value <= 0:
                errors.append(f"{name} must be positive: got {value}")

        if self.readiness_timeout < 0:
            errors.append(
                f"READINESS_TIMEOUT must be >= 0 (0 disables it): got {self.readiness_timeout}"
            )
        if self.kill_drain < 0:
            errors.append(f"KILL_DRAIN must be >= 0: got {self.kill_drain}")

        return errors


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

# Go duration syntax, as accepted by Kubo for router timeouts
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_INTERVAL_RE = re.compile(r"^(?:0|(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+)$")


def parse_interval_to_seconds(interval: str) -> float:
    """Parse a Go duration string (e.g. ``"5s"``, ``"500ms"``, ``"1m30s"``).

    Returns the duration in seconds.  A bare ``"0"`` is accepted, as in
    Go; any other number needs a unit.  Raises :class:`ConfigError` for
    anything else.
    """
    text = interval.strip()
    if not _INTERVAL_RE.match(text):
        raise ConfigError(
            f"Invalid interval '{interval}'. "
            "Expected a Go duration, e.g. 500ms, 5s, 1m30s, 1h"
        )
    return sum(
        float(number) * _DURATION_UNITS[unit]
        for number, unit in _DURATION_PART_RE.findall(text)
    )

def parse_port_list(raw: str) -> tuple[int, ...]:
    """Parse ``"19999,19998"`` into ``(19999, 19998)``.

    Raises :class:`ConfigError` on non-numeric entries.
    """
    ports: list[int] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            ports.append(int(item))
        except ValueError as exc:
            raise ConfigError(f"Invalid port '{item}' in '{raw}'") from exc
    return tuple(ports)


def _str_to_bool(value: str) -> bool:
    """Convert a string to bool (``"true"`` → True, anything else → False)."""
    return value.strip().lower() == "true"
