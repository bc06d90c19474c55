# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Lifecycle supervision of the long-running ``ipfs daemon`` under test.

- :meth:`DaemonSupervisor.start` spawns the daemon and streams its output
  into the log with a ``DAEMON`` prefix.
- :meth:`DaemonSupervisor.wait_until_ready` resolves on whichever comes
  first: the readiness marker on stdout, or the process exiting (a
  crash, raised as :class:`DaemonCrashError`).  By default there is no
  deadline; if the daemon neither becomes ready nor exits, the wait does
  not end.  Pass *timeout* to bound it.
- :meth:`DaemonSupervisor.shutdown` sends SIGTERM, waits for the exit up
  to a grace period, then sends SIGKILL and waits a short drain period.
  It is a no-op on a daemon that has already exited.
"""

from __future__ import annotations

import logging
import signal
from collections.abc import Mapping

from errors import DaemonCrashError, DaemonReadinessTimeout, KuboCommandError
from kubo_cli import KuboCli
from process_io import ProcessHandle, spawn, wait_first

logger = logging.getLogger(__name__)

READY_MARKER = "Daemon is ready"

DEFAULT_GRACE_PERIOD = 5.0
DEFAULT_DRAIN_PERIOD = 1.0


class DaemonSupervisor:
    """Starts, watches and stops one daemon process at a time."""

    def __init__(
        self,
        kubo: KuboCli,
        *,
        ready_marker: str = READY_MARKER,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        drain_period: float = DEFAULT_DRAIN_PERIOD,
    ) -> None:
        self.kubo = kubo
        self.ready_marker = ready_marker
        self.grace_period = grace_period
        self.drain_period = drain_period

    async def start(self, env: Mapping[str, str] | None = None) -> ProcessHandle:
        """Spawn the daemon with *env* (defaults to the CLI wrapper's env)."""
        argv = self.kubo.daemon_argv()
        try:
            handle = await spawn(
                argv,
                env=env if env is not None else self.kubo.env,
                label="DAEMON",
                log_level=logging.INFO,
            )
        except OSError as exc:
            raise KuboCommandError(
                f"{argv[0]} daemon could not be started",
                returncode=-1,
                stderr=str(exc),
            ) from exc
        logger.info("Daemon started (pid %d)", handle.pid)
        return handle

    async def wait_until_ready(
        self,
        handle: ProcessHandle,
        timeout: float | None = None,
    ) -> None:
        """Block until the readiness marker appears or the daemon exits.

        Parameters
        ----------
        handle:
            Handle returned by :meth:`start`.
        timeout:
            Seconds to wait, or *None* to wait for as long as it takes.

        Raises
        ------
        DaemonCrashError
            If the daemon exited before becoming ready.
        DaemonReadinessTimeout
            If *timeout* elapsed first.
        """
        if timeout is None:
            logger.info("Waiting for daemon readiness (no deadline)…")
        else:
            logger.info("Waiting for daemon readiness (%gs deadline)…", timeout)

        ready = handle.marker_event(self.ready_marker)
        fired = await wait_first({"ready": ready, "exited": handle.exited_event}, timeout)

        if fired == "ready":
            logger.info("Daemon is ready ✅")
            return

        if fired == "exited":
            output = handle.output_text
            logger.error("Daemon exited unexpectedly with code: %s", handle.exit_code)
            logger.error("Full daemon output:\n%s", output)
            raise DaemonCrashError(
                f"Daemon exited with code {handle.exit_code} before becoming ready",
                exit_code=handle.exit_code,
                output=output,
            )

        raise DaemonReadinessTimeout(
            f"Daemon neither became ready nor exited within {timeout:g}s"
        )

    async def shutdown(self, handle: ProcessHandle | None) -> bool:
        """Stop the daemon: SIGTERM, grace period, then SIGKILL and drain.

        Returns *True* if any signal was sent, *False* if there was
        nothing to stop.  Calling it again on the same handle does nothing.
        """
        if handle is None or handle.exited:
            return False

        logger.info("Shutting down daemon (pid %d)…", handle.pid)
        handle.send_signal(signal.SIGTERM)
        if await wait_first({"exited": handle.exited_event}, self.grace_period) is not None:
            logger.info("Daemon stopped gracefully (exit %s) ✅", handle.exit_code)
            return True

        logger.info("Force killing daemon…")
        handle.send_signal(signal.SIGKILL)
        if await wait_first({"exited": handle.exited_event}, self.drain_period) is None:
            logger.warning(
                "Daemon (pid %d) still holds its output pipes after SIGKILL; "
                "abandoning them",
                handle.pid,
            )
            handle.abandon()
        return True
