# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Asynchronous subprocess observation shared by the daemon and probe runners.

A :class:`ProcessHandle` owns one child process.  Two reader tasks copy
stdout and stderr into append-only :class:`OutputSink` buffers while a
watcher task waits for the exit.  When the process has exited *and* both
pipes reached EOF the sinks are sealed and the one-shot ``exited`` event
fires; this happens exactly once.  Consumers that need the captured text
read it only after that point, so they never see a half-written buffer.

Synchronisation is done with :class:`asyncio.Event` signals raced by
:func:`wait_first` instead of sleep-and-check loops.

Usage::

    handle = await spawn(["ipfs", "version"], env=env, label="VERSION")
    await handle.wait_exited()
    print(handle.exit_code, handle.stdout_text)
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import shlex
import signal
from collections.abc import Mapping

logger = logging.getLogger(__name__)

_READ_CHUNK = 4096


class OutputSink:
    """Append-only text buffer that is sealed exactly once."""

    def __init__(self) -> None:
        self._chunks: list[str] = []
        self._sealed = False

    def append(self, text: str) -> None:
        if self._sealed:
            raise RuntimeError("cannot append to a sealed output sink")
        if text:
            self._chunks.append(text)

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def snapshot(self) -> str:
        """Current contents, sealed or not.  For marker scanning only."""
        return "".join(self._chunks)

    @property
    def text(self) -> str:
        """Final contents; only available once the sink is sealed."""
        if not self._sealed:
            raise RuntimeError("output is not finalized yet")
        return "".join(self._chunks)


class ProcessHandle:
    """Observed child process with accumulated output and a one-shot exit signal.

    State moves from *running* to *exited* exactly once.  Output accumulates
    only while running; the ``*_text`` properties raise until then.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        label: str,
        *,
        log_level: int = logging.DEBUG,
    ) -> None:
        self.process = process
        self.label = label
        self._log_level = log_level

        self._stdout = OutputSink()
        self._stderr = OutputSink()
        self._combined = OutputSink()
        self._exit_code: int | None = None
        self._exited = asyncio.Event()
        self._markers: list[tuple[str, asyncio.Event]] = []

        self._pumps = [
            asyncio.create_task(self._pump(process.stdout, self._stdout, label)),
            asyncio.create_task(self._pump(process.stderr, self._stderr, f"{label} ERROR")),
        ]
        self._watcher = asyncio.create_task(self._watch())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def exited_event(self) -> asyncio.Event:
        return self._exited

    @property
    def stdout_text(self) -> str:
        return self._stdout.text

    @property
    def stderr_text(self) -> str:
        return self._stderr.text

    @property
    def output_text(self) -> str:
        """Interleaved stdout and stderr, in arrival order."""
        return self._combined.text

    def output_so_far(self) -> str:
        """Live view of the interleaved output, for diagnostics only."""
        return self._combined.snapshot()

    async def wait_exited(self) -> int | None:
        await self._exited.wait()
        return self._exit_code

    def marker_event(self, marker: str) -> asyncio.Event:
        """Return an event that fires once *marker* appears on stdout."""
        event = asyncio.Event()
        if marker in self._stdout.snapshot():
            event.set()
        else:
            self._markers.append((marker, event))
        return event

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def send_signal(self, sig: signal.Signals) -> bool:
        """Deliver *sig* unless the process has already exited.

        Returns *True* if the signal was sent.
        """
        if self.exited or self.process.returncode is not None:
            return False
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            return False
        logger.debug("Sent %s to %s (pid %d)", sig.name, self.label, self.pid)
        return True

    def abandon(self) -> None:
        """Stop reading and seal the output with whatever was captured.

        Used when the process was killed but its pipes are still held
        open (e.g. by a grandchild), so EOF will never arrive.
        """
        if self.exited:
            return
        for task in self._pumps:
            task.cancel()
        self._watcher.cancel()
        self._finalize(self.process.returncode)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        sink: OutputSink,
        prefix: str,
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if not text:
                continue
            sink.append(text)
            self._combined.append(text)
            if sink is self._stdout:
                self._check_markers()
            pending += text
            *lines, pending = pending.split("\n")
            for line in lines:
                logger.log(self._log_level, "%s: %s", prefix, line.rstrip())
        tail = pending + decoder.decode(b"", final=True)
        if tail.strip():
            logger.log(self._log_level, "%s: %s", prefix, tail.rstrip())

    def _check_markers(self) -> None:
        if not self._markers:
            return
        current = self._stdout.snapshot()
        remaining = []
        for marker, event in self._markers:
            if marker in current:
                event.set()
            else:
                remaining.append((marker, event))
        self._markers = remaining

    async def _watch(self) -> None:
        returncode = await self.process.wait()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        self._finalize(returncode)

    def _finalize(self, returncode: int | None) -> None:
        if self._exited.is_set():
            return
        self._exit_code = returncode
        self._stdout.seal()
        self._stderr.seal()
        self._combined.seal()
        self._exited.set()
        logger.debug("%s (pid %d) exited with %s", self.label, self.pid, returncode)


async def spawn(
    argv: list[str],
    *,
    env: Mapping[str, str] | None = None,
    label: str = "",
    log_level: int = logging.DEBUG,
) -> ProcessHandle:
    """Start *argv* with piped stdout/stderr and a closed stdin.

    Raises :class:`OSError` (typically :class:`FileNotFoundError`) if the
    executable cannot be started.
    """
    logger.debug("Spawning: %s", shlex.join(argv))
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env=dict(env) if env is not None else None,
    )
    return ProcessHandle(process, label or argv[0], log_level=log_level)


async def wait_first(
    signals: Mapping[str, asyncio.Event],
    timeout: float | None = None,
) -> str | None:
    """Wait until one of *signals* fires or *timeout* seconds elapse.

    Returns the name of the first signal that fired (ties go to the
    earliest entry in *signals*), or *None* if the timer won.  A
    *timeout* of *None* waits without a deadline.
    """
    waiters = {asyncio.ensure_future(event.wait()): name for name, event in signals.items()}
    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        pending = [task for task in waiters if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    for task, name in waiters.items():
        if task in done:
            return name
    return None
