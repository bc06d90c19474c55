# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Mock HTTP routing v1 backend that never knows any providers.

The server answers every provider query with the "no matching records"
form of the delegated routing API, immediately and identically:

``GET /routing/v1/providers/{cid}``
    ``404`` with ``{"Message": "no providers found"}`` and
    ``Cache-Control: public, max-age=300``.
``OPTIONS *``
    ``200`` with an empty body (CORS preflight).
anything else
    ``404`` with ``{"Message": "not found"}``.

The application is a Starlette app; :class:`MockRoutingServer` serves it
with an embedded uvicorn server on the harness's own event loop.  The
listening socket is bound by this module, so an occupied port surfaces
as :class:`MockRouterError` instead of uvicorn exiting the process.

Usage::

    server = MockRoutingServer(19999)
    await server.start()
    await server.self_check()
    ...
    await server.stop()
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import re
import socket
from collections.abc import Iterator

import httpx
import uvicorn
from errors import MockRouterError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

logger = logging.getLogger(__name__)

PROVIDERS_PATH_RE = re.compile(r"/routing/v1/providers/[^/]+")

NO_PROVIDERS_BODY = json.dumps({"Message": "no providers found"}, separators=(",", ":"))
NOT_FOUND_BODY = json.dumps({"Message": "not found"}, separators=(",", ":"))
NO_PROVIDERS_CACHE_CONTROL = "public, max-age=300"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Upper bound for letting accepted connections finish on stop()
_GRACEFUL_SHUTDOWN_SECONDS = 5


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def create_app(label: str = "HTTP Router") -> Starlette:
    """Build the stateless ASGI application."""

    async def handle(request: Request) -> Response:
        path = request.url.path
        logger.info("%s received request: %s %s", label, request.method, path)

        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)

        if request.method == "GET" and PROVIDERS_PATH_RE.search(path):
            logger.info("%s returning 404 (no providers found) for provider query", label)
            return Response(
                NO_PROVIDERS_BODY,
                status_code=404,
                media_type="application/json",
                headers={**CORS_HEADERS, "Cache-Control": NO_PROVIDERS_CACHE_CONTROL},
            )

        return Response(
            NOT_FOUND_BODY,
            status_code=404,
            media_type="application/json",
            headers=CORS_HEADERS,
        )

    return Starlette(
        routes=[Route("/{path:path}", handle, methods=_ALL_METHODS)],
    )


# ---------------------------------------------------------------------------
# Embedded server
# ---------------------------------------------------------------------------


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the harness."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class MockRoutingServer:
    """One mock routing backend listening on ``host:port``."""

    def __init__(self, port: int, host: str = "127.0.0.1") -> None:
        self.port = port
        self.host = host
        self.label = f"HTTP Router on port {port}"
        self._server: _EmbeddedServer | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Bind the port and serve until :meth:`stop` is called.

        Raises
        ------
        MockRouterError
            If the port cannot be bound or the server fails during start-up.
        """
        if self._task is not None:
            raise MockRouterError(f"{self.label} was already started")

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as exc:
            sock.close()
            raise MockRouterError(f"{self.label} could not bind: {exc}") from exc

        config = uvicorn.Config(
            create_app(self.label),
            log_level="warning",
            lifespan="off",
            access_log=False,
            timeout_graceful_shutdown=_GRACEFUL_SHUTDOWN_SECONDS,
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        # uvicorn only exposes a ``started`` flag, no event to await
        while not self._server.started:
            if self._task.done():
                exc = self._task.exception()
                raise MockRouterError(f"{self.label} failed to start: {exc!r}")
            await asyncio.sleep(0.01)

        logger.info("%s started (returns 404 for provider queries)", self.label)

    async def stop(self) -> None:
        """Close the listener and let accepted connections finish.

        Safe to call more than once, and on a server that never started.
        """
        if self._server is None or self._task is None:
            return
        if not self._task.done():
            logger.info("Shutting down %s…", self.label)
            self._server.should_exit = True
        try:
            await self._task
        except Exception as exc:
            logger.warning("%s stopped with an error: %s", self.label, exc)
        self._server = None
        self._task = None

    async def self_check(self, cid: str = "bafkqaaa") -> None:
        """Issue one provider query and confirm the no-providers contract.

        Raises :class:`MockRouterError` if the response differs.
        """
        url = f"{self.base_url}/routing/v1/providers/{cid}"
        try:
            async with httpx.AsyncClient(trust_env=False) as client:
                resp = await client.get(url, timeout=5.0)
        except httpx.HTTPError as exc:
            raise MockRouterError(f"{self.label} self-check failed: {exc}") from exc

        if resp.status_code != 404 or resp.text != NO_PROVIDERS_BODY:
            raise MockRouterError(
                f"{self.label} self-check got HTTP {resp.status_code}: {resp.text!r}"
            )
        logger.debug("%s self-check passed", self.label)
