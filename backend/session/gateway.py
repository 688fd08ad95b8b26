"""
Session gateway for the accepting side.

Responsibilities:
- Own the single "current" pipeline as an explicit optional handle
- Replace it atomically on each accepted connection; the previous
  pipeline is closed as a consequence of the swap
- Route console sends to the current pipeline
- Report NoActiveSession when there is nothing to send on

Not responsible for:
- Listening / accepting (server.net)
- Framing or ack bookkeeping (session.pipeline)
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Optional

from console.events import NoActiveSession
from console.sink import ConsoleSink
from observability.logger import log_event
from observability.metrics import now_ms
from protocol.frames import Frame
from session.pipeline import ConnectionPipeline


def _format_peer(peername: Any) -> str:
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


class SessionGateway:
    """
    One gateway == one listening endpoint == at most one current pipeline.

    The handle is read from the input thread (send) and swapped on the
    reactor (on_connection), so both sides go through self._lock.
    """

    def __init__(self, *, sink: ConsoleSink) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self._current: Optional[ConnectionPipeline] = None
        self.accepted: int = 0

    @property
    def current(self) -> Optional[ConnectionPipeline]:
        with self._lock:
            return self._current

    async def on_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """
        asyncio.start_server client callback.

        Runs until the new pipeline closes.
        """
        pipeline = ConnectionPipeline(
            reader=reader,
            writer=writer,
            sink=self._sink,
            peer=_format_peer(writer.get_extra_info("peername")),
            inbound=True,
        )

        with self._lock:
            previous = self._current
            self._current = pipeline
            self.accepted += 1

        if previous is not None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SESSION_REPLACED",
                "previous_conn_id": previous.conn_id,
                "conn_id": pipeline.conn_id,
            })
            previous.close(reason="replaced by new connection")

        pipeline.start()
        await pipeline.wait_closed()

        with self._lock:
            if self._current is pipeline:
                self._current = None

    def send(self, frame: Frame) -> bool:
        """
        Send on the current pipeline.

        Returns False if there is no current pipeline or it is CLOSED.
        """
        pipeline = self.current
        if pipeline is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SEND_WITHOUT_SESSION",
                "msg_id": frame.msg_id,
            })
            self._sink.notify(NoActiveSession())
            return False

        return pipeline.send(frame)

    def close(self) -> None:
        """Close the current pipeline, if any."""
        with self._lock:
            pipeline = self._current
            self._current = None
        if pipeline is not None:
            pipeline.close(reason="gateway closed")
