"""
Listener and Dialer over asyncio streams.

Thin glue: both yield (StreamReader, StreamWriter) pairs to the core and
leave framing to session.pipeline.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from observability.logger import log_event
from observability.metrics import now_ms, timed


ConnectionHandler = Callable[
    [asyncio.StreamReader, asyncio.StreamWriter], Awaitable[None]
]


class Listener:
    def __init__(self, host: str, port: int, on_connection: ConnectionHandler):
        self._host = host
        self._port = port
        self._on_connection = on_connection
        self._server: Optional[asyncio.base_events.Server] = None

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._on_connection, self._host, self._port)
        log_event({
            "ts_ms": now_ms(),
            "event_type": "LISTENER_STARTED",
            "host": self._host,
            "port": self.port,
        })

    @property
    def port(self) -> int:
        """Bound port (differs from the requested one when it was 0)."""
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self._port

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None


class Dialer:
    def __init__(self, timeout_s: float):
        self._timeout_s = timeout_s

    async def connect(
        self, host: str, port: int
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        """
        Open an outbound connection.

        Raises:
            OSError (including TimeoutError) if the host cannot be reached.
        """
        with timed("dial", details={"host": host, "port": port}):
            return await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self._timeout_s
            )
