# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Point-in-time TCP port availability checks.

Before a scenario starts, every port the run depends on is checked with
a transient bind-then-release.  A successful bind means the port is
free.  Each :class:`PortSpec` states whether the port is *expected* to
be free; any disagreement fails the whole check, and every disagreeing
port is reported, not only the first.

The result holds only for the instant of the check: nothing is reserved
for the remainder of the run, and nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from errors import PortConflictError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"


@dataclass(frozen=True)
class PortSpec:
    """A port the run depends on and the state it must be in."""

    port: int
    role: str = ""
    host: str = DEFAULT_HOST
    expected_free: bool = True

    @property
    def display(self) -> str:
        label = f"{self.host}:{self.port}"
        return f"{label} ({self.role})" if self.role else label


async def _noop_client(_reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    writer.close()


async def is_port_free(host: str, port: int) -> bool:
    """Return *True* if a listener can be bound on ``(host, port)``.

    The listener is closed again before returning.
    """
    try:
        server = await asyncio.start_server(_noop_client, host, port)
    except OSError as exc:
        logger.debug("Bind on %s:%d failed: %s", host, port, exc)
        return False
    server.close()
    await server.wait_closed()
    return True


async def check_ports(specs: Iterable[PortSpec]) -> None:
    """Verify that every spec's observed state matches ``expected_free``.

    Raises
    ------
    PortConflictError
        Listing every spec whose observed state disagreed.
    """
    logger.info("Checking required ports…")
    conflicts: list[PortSpec] = []

    for spec in specs:
        free = await is_port_free(spec.host, spec.port)
        if free == spec.expected_free:
            state = "free" if free else "occupied"
            logger.info("  Port %s is %s (as expected) ✅", spec.display, state)
            continue

        conflicts.append(spec)
        if spec.expected_free:
            logger.error("  Port %s is occupied ❌", spec.display)
            logger.error("    Please stop any service using port %d", spec.port)
        else:
            logger.error("  Port %s is free but should be in use ❌", spec.display)

    if conflicts:
        raise PortConflictError(
            "Port conflict detected on "
            + ", ".join(str(spec.port) for spec in conflicts)
            + ". Resolve the conflicts before running the harness.",
            conflicts=conflicts,
        )

    logger.info("All required ports are in the expected state")
