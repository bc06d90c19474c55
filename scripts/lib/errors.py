# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Domain-specific exception hierarchy for the routing reproduction harness.

Every exception raised by the library modules inherits from
:class:`HarnessError`, so the CLI entry point can catch all anticipated
failures in one place while callers still handle specific categories
(port conflicts, provisioning, daemon start-up, …) individually.

A probe that runs into its deadline is *not* an error: it produces the
``HANG_BUG`` verdict.  Only failures of the harness itself live here.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base exception for all harness errors."""


class ConfigError(HarnessError):
    """Invalid or missing harness configuration."""


class TopologyError(HarnessError):
    """A routing topology references undeclared routers or contains a cycle."""


class KuboCommandError(HarnessError):
    """An ``ipfs`` CLI command failed or could not be executed.

    Attributes:
        returncode: Exit code returned by the process (``-1`` when the
            process never ran or was killed on timeout).
        stderr: Standard error output captured from the process.
    """

    def __init__(self, message: str, returncode: int = 1, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}\nstderr: {self.stderr.strip()}"
        return base


class PortConflictError(HarnessError):
    """One or more ports are not in their expected free/occupied state.

    Attributes:
        conflicts: Every :class:`ports.PortSpec` whose observed state
            disagreed with ``expected_free``, in input order.
    """

    def __init__(self, message: str, conflicts: list | None = None) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts or [])

    @property
    def ports(self) -> list[int]:
        return [spec.port for spec in self.conflicts]


class ProvisionError(HarnessError):
    """Repository initialisation failed or its config could not be parsed."""


class VersionMismatchError(HarnessError):
    """The daemon binary does not report the expected version.

    Attributes:
        expected: Version the harness was configured for.
        actual: Version reported by the binary (``""`` if unparsable).
    """

    def __init__(self, message: str, expected: str = "", actual: str = "") -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class ConfigVerificationError(HarnessError):
    """The persisted configuration does not match the requested topology.

    Attributes:
        mismatches: Human-readable ``field: expected … got …`` entries,
            one per disagreeing field.
    """

    def __init__(self, message: str, mismatches: list[str] | None = None) -> None:
        super().__init__(message)
        self.mismatches = list(mismatches or [])

    def __str__(self) -> str:
        base = super().__str__()
        if self.mismatches:
            details = "\n".join(f"  - {m}" for m in self.mismatches)
            return f"{base}\n{details}"
        return base


class DaemonCrashError(HarnessError):
    """The daemon exited before emitting its readiness marker.

    Attributes:
        exit_code: Exit code of the daemon process.
        output: Combined stdout/stderr captured before the exit.
    """

    def __init__(self, message: str, exit_code: int | None = None, output: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class DaemonReadinessTimeout(HarnessError):
    """The daemon neither became ready nor exited within the readiness deadline."""


class MockRouterError(HarnessError):
    """A mock routing server could not start or does not honour its contract."""
