# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Thin asynchronous wrapper around the Kubo (``ipfs``) CLI.

The daemon under test is treated as an opaque collaborator: it is only
ever driven through its command line and observed through exit codes,
stdout and stderr.  All argument lists live here, so a change in the CLI
surface touches a single module.

Short-lived commands (``init``, ``version``, ``config show``) go through
:meth:`KuboCli.run_cmd`, which enforces a timeout and raises
:class:`KuboCommandError` with full diagnostic context.  Long-lived ones
(``daemon``) and probed ones (``cat``, ``routing findprovs``) only get
their argument vectors built here and are run by the daemon supervisor
and probe runner.

Usage::

    from kubo_cli import KuboCli

    kubo = KuboCli("ipfs", env=config.subprocess_env())
    version = await kubo.version()
    config = await kubo.config_show()
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import signal
import subprocess
from collections.abc import Mapping
from typing import Any

from config import REPO_ENV_VAR
from errors import KuboCommandError, VersionMismatchError
from process_io import spawn, wait_first

logger = logging.getLogger(__name__)

_VERSION_RE = re.compile(r"ipfs version (\d+\.\d+\.\d+)")

# Seconds to wait for a killed command to release its pipes
_KILL_DRAIN = 1.0


class KuboCli:
    """Builds and runs ``ipfs`` commands against one repository.

    Parameters
    ----------
    binary:
        Path or name of the ``ipfs`` executable.
    env:
        Environment for every invocation.  It must carry ``IPFS_PATH``
        for commands that touch the repository.
    """

    def __init__(self, binary: str = "ipfs", env: Mapping[str, str] | None = None) -> None:
        self.binary = binary
        self.env = dict(env) if env is not None else None

    def for_repo(self, repo_path: str | os.PathLike[str]) -> KuboCli:
        """Return a copy of this wrapper pointed at *repo_path*."""
        env = dict(self.env if self.env is not None else os.environ)
        env[REPO_ENV_VAR] = os.fspath(repo_path)
        return KuboCli(self.binary, env=env)

    # ------------------------------------------------------------------
    # Argument vectors
    # ------------------------------------------------------------------

    def argv(self, *args: str) -> list[str]:
        return [self.binary, *args]

    def daemon_argv(self) -> list[str]:
        return self.argv("daemon")

    def cat_argv(self, cid: str) -> list[str]:
        return self.argv("cat", cid)

    def findprovs_argv(self, cid: str) -> list[str]:
        return self.argv("routing", "findprovs", cid)

    # ------------------------------------------------------------------
    # Low-level command execution
    # ------------------------------------------------------------------

    async def run_cmd(
        self,
        args: list[str],
        timeout: float = 60,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``ipfs <args…>`` to completion.

        Parameters
        ----------
        args:
            Arguments after the binary, e.g. ``["config", "show"]``.
        timeout:
            Maximum wall-clock seconds before the process is killed.
        check:
            If *True*, raise :class:`KuboCommandError` on a non-zero exit.

        Raises
        ------
        KuboCommandError
            If the executable is missing, the command timed out, or
            (with *check*) it exited non-zero.
        """
        cmd = self.argv(*args)
        name = args[0] if args else self.binary

        try:
            handle = await spawn(cmd, env=self.env, label=f"ipfs {name}")
        except OSError as exc:
            raise KuboCommandError(
                f"{self.binary} could not be executed – is Kubo installed?",
                returncode=-1,
                stderr=str(exc),
            ) from exc

        try:
            fired = await wait_first({"exited": handle.exited_event}, timeout)
        except asyncio.CancelledError:
            handle.send_signal(signal.SIGKILL)
            raise

        if fired is None:
            handle.send_signal(signal.SIGKILL)
            if await wait_first({"exited": handle.exited_event}, _KILL_DRAIN) is None:
                handle.abandon()
            raise KuboCommandError(
                f"ipfs {name} timed out after {timeout:g}s",
                returncode=-1,
                stderr=handle.stderr_text,
            )

        returncode = handle.exit_code if handle.exit_code is not None else -1
        result = subprocess.CompletedProcess(
            args=cmd,
            returncode=returncode,
            stdout=handle.stdout_text,
            stderr=handle.stderr_text,
        )

        if check and result.returncode != 0:
            raise KuboCommandError(
                f"ipfs {name} failed (exit {result.returncode}): {result.stderr.strip()}",
                returncode=result.returncode,
                stderr=result.stderr,
            )

        logger.debug(
            "ipfs %s exited %d (stdout=%d bytes, stderr=%d bytes)",
            name,
            result.returncode,
            len(result.stdout),
            len(result.stderr),
        )
        return result

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def init(self, timeout: float = 120) -> subprocess.CompletedProcess[str]:
        """Initialise the repository named by ``IPFS_PATH`` (no check)."""
        return await self.run_cmd(["init"], timeout=timeout, check=False)

    async def version(self) -> str:
        """Return the ``X.Y.Z`` version reported by ``ipfs version``."""
        result = await self.run_cmd(["version"], timeout=30)
        m = _VERSION_RE.search(result.stdout)
        if not m:
            raise KuboCommandError(
                f"Could not parse version from: {result.stdout.strip()!r}",
                returncode=result.returncode,
            )
        return m.group(1)

    async def verify_version(self, expected: str) -> str:
        """Check that the binary reports *expected*; return the actual version.

        Raises :class:`VersionMismatchError` on a difference.
        """
        logger.info("Verifying kubo version is %s…", expected)
        actual = await self.version()
        if actual != expected:
            raise VersionMismatchError(
                f"Version mismatch: expected {expected}, got {actual}",
                expected=expected,
                actual=actual,
            )
        logger.info("Kubo version verified: %s ✅", actual)
        return actual

    async def config_show(self) -> dict[str, Any]:
        """Return the repository configuration as seen by ``ipfs config show``."""
        result = await self.run_cmd(["config", "show"], timeout=30)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise KuboCommandError(
                f"ipfs config show returned invalid JSON: {exc}",
                returncode=result.returncode,
            ) from exc
        if not isinstance(data, dict):
            raise KuboCommandError("ipfs config show did not return a JSON object")
        return data
