# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Provisioning and verification of the daemon's repository.

:func:`provision` wipes the repository directory, runs ``ipfs init`` and
rewrites the generated configuration with the scenario's routing
topology and address overrides.  The rewrite itself is the pure
:func:`build_config`: it returns a new mapping and never touches the one
it was given.

:func:`verify_config` compares a configuration field by field against
what was requested and reports every difference, guarding against silent
serialisation drift between what the harness wrote and what the daemon
reads back.
"""

from __future__ import annotations

import copy
import json
import logging
import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from errors import ConfigVerificationError, KuboCommandError, ProvisionError
from kubo_cli import KuboCli
from topology import RoutingTopology

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config"

# Mappings whose key sets must match exactly, not just contain the expected keys
_EXACT_KEY_PATHS = frozenset({"Routing.Routers", "Routing.Methods"})


# ---------------------------------------------------------------------------
# Address overrides
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddressOverrides:
    """Listen addresses forced onto the daemon so its ports are predictable."""

    swarm: tuple[str, ...]
    api: str
    gateway: str

    @classmethod
    def for_ports(cls, swarm_port: int, api_port: int, gateway_port: int) -> AddressOverrides:
        swarm = (
            f"/ip4/0.0.0.0/tcp/{swarm_port}",
            f"/ip6/::/tcp/{swarm_port}",
            f"/ip4/0.0.0.0/udp/{swarm_port}/webrtc-direct",
            f"/ip4/0.0.0.0/udp/{swarm_port}/quic-v1",
            f"/ip4/0.0.0.0/udp/{swarm_port}/quic-v1/webtransport",
            f"/ip6/::/udp/{swarm_port}/webrtc-direct",
            f"/ip6/::/udp/{swarm_port}/quic-v1",
            f"/ip6/::/udp/{swarm_port}/quic-v1/webtransport",
        )
        return cls(
            swarm=swarm,
            api=f"/ip4/127.0.0.1/tcp/{api_port}",
            gateway=f"/ip4/127.0.0.1/tcp/{gateway_port}",
        )

    def to_config(self) -> dict[str, Any]:
        return {"API": self.api, "Gateway": self.gateway, "Swarm": list(self.swarm)}


# ---------------------------------------------------------------------------
# Pure config builder
# ---------------------------------------------------------------------------


def build_config(
    base: Mapping[str, Any],
    topology: RoutingTopology,
    addresses: AddressOverrides,
) -> dict[str, Any]:
    """Return a new config: *base* with routing, addresses and discovery applied.

    ``Routing`` is replaced wholesale; ``Addresses.{Swarm,API,Gateway}``
    and ``Discovery.MDNS.Enabled`` are replaced while sibling keys
    (``Announce``, ``NoAnnounce``, …) are carried over.  *base* is not
    modified.
    """
    config = copy.deepcopy(dict(base))

    config["Routing"] = topology.to_config()

    address_section = dict(config.get("Addresses") or {})
    address_section.update(addresses.to_config())
    config["Addresses"] = address_section

    discovery = dict(config.get("Discovery") or {})
    discovery["MDNS"] = {**(discovery.get("MDNS") or {}), "Enabled": False}
    config["Discovery"] = discovery

    return config


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def load_config(path: Path) -> dict[str, Any]:
    """Read and parse a repository config file.

    Raises :class:`ProvisionError` if it is missing or not a JSON object.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ProvisionError(f"Cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ProvisionError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ProvisionError(f"{path} does not contain a JSON object")
    return data


def write_config(path: Path, config: Mapping[str, Any]) -> None:
    path.write_text(json.dumps(config, indent=2) + "\n", encoding="utf-8")


async def provision(
    kubo: KuboCli,
    repo_path: Path,
    topology: RoutingTopology,
    addresses: AddressOverrides,
) -> dict[str, Any]:
    """Create a fresh repository at *repo_path* configured for a scenario.

    Any existing directory at *repo_path* is removed first, so repeated
    runs always start from the same state.

    Returns
    -------
    dict
        The configuration that was persisted.

    Raises
    ------
    ProvisionError
        If ``ipfs init`` fails or the generated config cannot be parsed.
    """
    logger.info("Initializing repository at %s…", repo_path)

    if repo_path.exists():
        logger.debug("Removing existing repository %s", repo_path)
        shutil.rmtree(repo_path)
    repo_path.parent.mkdir(parents=True, exist_ok=True)

    repo_kubo = kubo.for_repo(repo_path)
    try:
        result = await repo_kubo.init()
    except KuboCommandError as exc:
        raise ProvisionError(f"Failed to initialize repository: {exc}") from exc
    if result.returncode != 0:
        raise ProvisionError(
            f"Failed to initialize repository (exit {result.returncode}): "
            f"{result.stderr.strip()}"
        )
    logger.info("Repository initialized successfully")

    config_path = repo_path / CONFIG_FILENAME
    config = build_config(load_config(config_path), topology, addresses)
    write_config(config_path, config)

    routers = ", ".join(router.name for router in topology.routers)
    logger.info("Repository config updated (routers: %s; MDNS disabled)", routers)
    return config


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def verify_config(
    config: Mapping[str, Any],
    topology: RoutingTopology,
    addresses: AddressOverrides | None = None,
) -> None:
    """Assert that *config* carries exactly the requested routing settings.

    Compares ``Routing.Type``, every method binding, every router's type
    and endpoint, every parallel child's ``RouterName``, ``Timeout`` and
    ``IgnoreErrors`` (booleans must be booleans), and, when *addresses*
    is given, the overridden listen addresses.

    Raises
    ------
    ConfigVerificationError
        Listing every mismatched field.
    """
    mismatches: list[str] = []
    _diff(topology.to_config(), config.get("Routing"), "Routing", mismatches)
    if addresses is not None:
        _diff(addresses.to_config(), config.get("Addresses"), "Addresses", mismatches)

    if mismatches:
        raise ConfigVerificationError(
            f"Configuration does not match the requested topology "
            f"({len(mismatches)} field(s) differ)",
            mismatches=mismatches,
        )


def verify(
    repo_path: Path,
    topology: RoutingTopology,
    addresses: AddressOverrides | None = None,
) -> None:
    """Re-read the persisted config under *repo_path* and verify it."""
    try:
        config = load_config(repo_path / CONFIG_FILENAME)
    except ProvisionError as exc:
        raise ConfigVerificationError(str(exc)) from exc
    verify_config(config, topology, addresses)


def _diff(expected: Any, actual: Any, path: str, mismatches: list[str]) -> None:
    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            mismatches.append(f"{path}: expected an object, got {actual!r}")
            return
        for key, value in expected.items():
            sub = f"{path}.{key}"
            if key not in actual:
                mismatches.append(f"{sub}: missing (expected {value!r})")
                continue
            _diff(value, actual[key], sub, mismatches)
        if path in _EXACT_KEY_PATHS:
            for key in actual:
                if key not in expected:
                    mismatches.append(f"{path}.{key}: unexpected entry")
        return

    if isinstance(expected, list):
        if not isinstance(actual, list):
            mismatches.append(f"{path}: expected a list, got {actual!r}")
            return
        if len(expected) != len(actual):
            mismatches.append(
                f"{path}: expected {len(expected)} entries, got {len(actual)}"
            )
        for index, (exp_item, act_item) in enumerate(zip(expected, actual)):
            _diff(exp_item, act_item, f"{path}[{index}]", mismatches)
        return

    if type(expected) is not type(actual) or expected != actual:
        mismatches.append(f"{path}: expected {expected!r}, got {actual!r}")
