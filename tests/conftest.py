# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Shared pytest fixtures for the routing reproduction harness tests."""

from __future__ import annotations

import socket
import stat
import sys
import textwrap
from pathlib import Path

import pytest
from config import HarnessConfig

# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------

HARNESS_ENV_VARS = [
    "KUBO_BIN",
    "WORK_DIR",
    "REPO_DIR",
    "EXPECTED_KUBO_VERSION",
    "SWARM_PORT",
    "API_PORT",
    "GATEWAY_PORT",
    "ROUTER_PORTS",
    "ROUTER_TIMEOUT",
    "OFFLINE_PROBE_TIMEOUT",
    "NO_PROVIDERS_PROBE_TIMEOUT",
    "FINDPROVS_TIMEOUT",
    "RUN_FINDPROVS",
    "NO_PROVIDERS_IGNORE_ERRORS",
    "READINESS_TIMEOUT",
    "SHUTDOWN_GRACE",
    "KILL_DRAIN",
    "TEST_CID",
    "FAIL_ON_BUG",
    "DEBUG",
    "IPFS_PATH",
    "GITHUB_OUTPUT",
    "GITHUB_STEP_SUMMARY",
    "GITHUB_ACTIONS",
]


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove harness-specific environment variables.

    This prevents host environment from leaking into tests.
    """
    for var in HARNESS_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# Temp file helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def work_dir(tmp_path: Path) -> Path:
    """Create a temporary working directory mimicking $WORK_DIR."""
    wd = tmp_path / "kubo-routing-repro"
    wd.mkdir()
    return wd


@pytest.fixture()
def github_output(tmp_path: Path) -> Path:
    """Create a temporary file for $GITHUB_OUTPUT."""
    f = tmp_path / "github_output"
    f.touch()
    return f


@pytest.fixture()
def github_summary(tmp_path: Path) -> Path:
    """Create a temporary file for $GITHUB_STEP_SUMMARY."""
    f = tmp_path / "github_summary"
    f.touch()
    return f


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


def free_port() -> int:
    """Return a port that was free on 127.0.0.1 a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def free_ports(count: int) -> list[int]:
    ports: set[int] = set()
    while len(ports) < count:
        ports.add(free_port())
    return sorted(ports)


@pytest.fixture()
def occupied_port():
    """Yield a port that is held by a listening socket for the test's duration."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen()
    try:
        yield sock.getsockname()[1]
    finally:
        sock.close()


# ---------------------------------------------------------------------------
# Fake ipfs executable
# ---------------------------------------------------------------------------

# Behaviour is selected through environment variables:
#   FAKE_IPFS_VERSION    version reported by ``ipfs version``
#   FAKE_IPFS_INIT       "ok" | "fail"
#   FAKE_IPFS_DAEMON     "ok" | "crash" | "stuck" | "ignore-term"
#   FAKE_IPFS_CAT        "routers" | "hang" | "silent" | "success" | "error"
#   FAKE_IPFS_FINDPROVS  same choices as FAKE_IPFS_CAT
# In "routers" mode the command queries every local HTTP router in the
# repository config and fails the way a real daemon would.
FAKE_IPFS_SOURCE = textwrap.dedent(
    '''\
    import json
    import os
    import signal
    import sys
    import time
    import urllib.error
    import urllib.request


    def repo_config_path():
        return os.path.join(os.environ["IPFS_PATH"], "config")


    def sleep_forever():
        while True:
            time.sleep(1)


    def cmd_init():
        if os.environ.get("FAKE_IPFS_INIT", "ok") == "fail":
            print("Error: ipfs configuration file already exists!", file=sys.stderr)
            return 1
        os.makedirs(os.environ["IPFS_PATH"], exist_ok=True)
        config = {
            "Identity": {"PeerID": "12D3KooWFakePeer"},
            "Addresses": {
                "Swarm": ["/ip4/0.0.0.0/tcp/4001"],
                "API": "/ip4/127.0.0.1/tcp/5001",
                "Gateway": "/ip4/127.0.0.1/tcp/8080",
                "Announce": [],
                "NoAnnounce": [],
            },
            "Discovery": {"MDNS": {"Enabled": True}},
            "Routing": {"Type": "auto"},
        }
        with open(repo_config_path(), "w") as fh:
            json.dump(config, fh, indent=2)
        print("generating ED25519 keypair...done")
        return 0


    def cmd_daemon():
        mode = os.environ.get("FAKE_IPFS_DAEMON", "ok")
        print("Initializing daemon...", flush=True)
        if mode == "crash":
            print("Error: routing: invalid config", file=sys.stderr, flush=True)
            return 1
        if mode == "stuck":
            sleep_forever()
        if mode == "ignore-term":
            signal.signal(signal.SIGTERM, signal.SIG_IGN)
        print("Daemon is ready", flush=True)
        sleep_forever()


    def query_routers(cid):
        with open(repo_config_path()) as fh:
            config = json.load(fh)
        opener = urllib.request.build_opener(urllib.request.ProxyHandler({}))
        outcomes = []
        for router in config["Routing"]["Routers"].values():
            endpoint = router.get("Parameters", {}).get("Endpoint", "")
            if router.get("Type") != "http" or "127.0.0.1" not in endpoint:
                continue
            url = endpoint + "/routing/v1/providers/" + cid
            try:
                opener.open(url, timeout=2)
                outcomes.append("found")
            except urllib.error.HTTPError as exc:
                body = exc.read().decode()
                outcomes.append("no-providers" if "no providers" in body else "http-error")
            except urllib.error.URLError:
                outcomes.append("refused")
        return outcomes


    def cmd_probe(mode, cid):
        if mode == "hang":
            sleep_forever()
        if mode == "silent":
            return 1
        if mode == "success":
            print("hello world")
            return 0
        if mode == "error":
            print("Error: something went wrong", file=sys.stderr)
            return 1
        outcomes = query_routers(cid)
        if "found" in outcomes:
            print("hello world")
            return 0
        if outcomes and all(o == "refused" for o in outcomes):
            print(
                "Error: dial tcp 127.0.0.1: connect: connection refused",
                file=sys.stderr,
            )
            return 1
        print("Error: routing: not found", file=sys.stderr)
        return 1


    def main(argv):
        if not argv:
            return 2
        if argv[0] == "init":
            return cmd_init()
        if argv[0] == "version":
            print("ipfs version " + os.environ.get("FAKE_IPFS_VERSION", "0.37.0"))
            return 0
        if argv[:2] == ["config", "show"]:
            with open(repo_config_path()) as fh:
                sys.stdout.write(fh.read())
            return 0
        if argv[0] == "daemon":
            return cmd_daemon()
        if argv[0] == "cat":
            return cmd_probe(os.environ.get("FAKE_IPFS_CAT", "routers"), argv[1])
        if argv[:2] == ["routing", "findprovs"]:
            return cmd_probe(os.environ.get("FAKE_IPFS_FINDPROVS", "routers"), argv[2])
        print("Error: unknown command " + " ".join(argv), file=sys.stderr)
        return 2


    sys.exit(main(sys.argv[1:]))
    '''
)


@pytest.fixture()
def fake_ipfs(tmp_path: Path) -> Path:
    """Write a fake ``ipfs`` executable and return its path.

    A tiny shell wrapper ``exec``s the current interpreter so signals
    reach the Python process directly.
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "fake_ipfs.py"
    script.write_text(FAKE_IPFS_SOURCE)
    wrapper = bin_dir / "ipfs"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture()
def harness_config(fake_ipfs: Path, work_dir: Path) -> HarnessConfig:
    """A configuration pointing at the fake binary, on free ports, with short timeouts."""
    swarm, api, gateway, router1, router2 = free_ports(5)
    return HarnessConfig(
        kubo_bin=str(fake_ipfs),
        work_dir=str(work_dir),
        swarm_port=swarm,
        api_port=api,
        gateway_port=gateway,
        router_ports=(router1, router2),
        offline_probe_timeout=10.0,
        no_providers_probe_timeout=10.0,
        findprovs_timeout=10.0,
        readiness_timeout=15.0,
        shutdown_grace=2.0,
        kill_drain=0.5,
    )
