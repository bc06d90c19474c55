# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Bounded execution of one external probe command.

:func:`run_probe` starts the command, then races its exit signal against
an independent deadline.  If the deadline wins the process is killed,
given a short drain period, and the result is returned with
``timed_out=True``.  Exactly one attempt is made; whether the daemon
retries internally is part of what is being observed, not something the
harness adds.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from process_io import ProcessHandle, spawn, wait_first

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_PERIOD = 1.0
HEARTBEAT_INTERVAL = 10.0


@dataclass(frozen=True)
class ProbeResult:
    """What one probe run produced.

    ``timed_out`` is *True* exactly when no exit was observed before the
    deadline; ``exit_code`` is then whatever the kill produced (or *None*).
    """

    exit_code: int | None
    stdout_text: str
    stderr_text: str
    timed_out: bool
    elapsed_ms: int

    @property
    def stdout_length(self) -> int:
        return len(self.stdout_text)

    @property
    def exited(self) -> bool:
        return not self.timed_out


async def _heartbeat(started: float, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        logger.info("Still waiting… %ds elapsed", int(time.monotonic() - started))


async def run_probe(
    argv: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    deadline_ms: int,
    drain_period: float = DEFAULT_DRAIN_PERIOD,
    heartbeat_interval: float = HEARTBEAT_INTERVAL,
    label: str = "PROBE",
) -> ProbeResult:
    """Run *argv* once under a *deadline_ms* wall-clock deadline.

    Raises :class:`OSError` if the command cannot be started at all.
    """
    logger.info("Probe: %s", shlex.join(argv))
    logger.info(
        "Waiting for the probe to complete (%g second timeout)…", deadline_ms / 1000
    )

    started = time.monotonic()
    handle: ProcessHandle = await spawn(list(argv), env=env, label=label)
    heartbeat = asyncio.create_task(_heartbeat(started, heartbeat_interval))
    try:
        fired = await wait_first({"exited": handle.exited_event}, deadline_ms / 1000)
    except asyncio.CancelledError:
        handle.send_signal(signal.SIGKILL)
        raise
    finally:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)

    timed_out = fired is None
    if timed_out:
        logger.warning("PROBE TIMED OUT after %g seconds", deadline_ms / 1000)
        handle.send_signal(signal.SIGKILL)
        if await wait_first({"exited": handle.exited_event}, drain_period) is None:
            handle.abandon()

    elapsed_ms = int((time.monotonic() - started) * 1000)
    return ProbeResult(
        exit_code=handle.exit_code,
        stdout_text=handle.stdout_text,
        stderr_text=handle.stderr_text,
        timed_out=timed_out,
        elapsed_ms=elapsed_ms,
    )
