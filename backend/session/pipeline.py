"""
Connection pipeline: one per active connection.

Responsibilities:
- Read frames off the connection (header, then body) on the reactor
- Report received text, send an ACK for every DATA frame
- Resolve ACKs against the pending-ack table and report latency
- Own the outbound queue, the pending-ack table and the connection

Error policy:
- Malformed header: report, keep reading headers (connection stays up)
- Any read/write failure: report, close this pipeline only

Not responsible for:
- Accepting or dialing connections (server.net)
- Choosing which pipeline is current (session.gateway)
- Message id allocation (console.line_source)
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Optional
from uuid import uuid4

from console.events import (
    ConnectionErrorEvent,
    ConnectionEstablished,
    IncomingText,
    LatencyReport,
    MalformedMessage,
    NoActiveSession,
)
from console.sink import ConsoleSink
from observability.logger import log_event
from observability.metrics import emit_ack_latency, monotonic_ns, now_ms
from protocol.binary import HeaderDecodeError, decode_header, make_ack_frame
from protocol.frames import Frame, FrameKind
from session.connection_status import PipelineState
from session.outbound import OutboundQueue
from session.pending_acks import PendingAckTable
from spec import HEADER_SIZE


def _new_conn_id() -> str:
    return f"conn_{uuid4().hex[:12]}"


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.IncompleteReadError):
        return "End of file"
    return str(exc) or type(exc).__name__


class ConnectionPipeline:
    """
    Per-connection state machine over an asyncio (reader, writer) pair.

    Threading:
    - start(), the read loop and write completions run on the reactor loop
    - send() may be called from any thread; it only touches the
      lock-protected outbound queue
    - the pending-ack table is touched only on the reactor loop

    Lifetime: the read task and any in-flight write task hold references to
    the pipeline, so it lives until CLOSED and no operation remains.
    """

    def __init__(
        self,
        *,
        reader: asyncio.StreamReader,
        writer: Any,  # Type: asyncio.StreamWriter in practice
        sink: ConsoleSink,
        loop: asyncio.AbstractEventLoop | None = None,
        peer: str = "",
        inbound: bool = True,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._sink = sink
        self._loop = loop or asyncio.get_running_loop()
        self.peer = peer
        self.inbound = inbound
        self.conn_id = _new_conn_id()

        self._state = PipelineState.AWAITING_HEADER
        self._state_lock = threading.Lock()
        self._read_task: Optional[asyncio.Task[None]] = None
        self._closed = asyncio.Event()

        self.pending_acks = PendingAckTable()
        self.outbound = OutboundQueue(
            loop=self._loop,
            write=self._write,
            on_sent=self._on_frame_sent,
            on_error=lambda exc: self._fail("sending", exc),
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    def is_active(self) -> bool:
        return self._state is not PipelineState.CLOSED

    def start(self) -> None:
        """Begin the AWAITING_HEADER loop. Must run on the reactor loop."""
        if self._read_task is not None:
            return
        self._read_task = self._loop.create_task(self._read_loop())

        log_event({
            "ts_ms": now_ms(),
            "event_type": "PIPELINE_STARTED",
            "conn_id": self.conn_id,
            "peer": self.peer,
            "inbound": self.inbound,
        })
        self._sink.notify(ConnectionEstablished(peer=self.peer, inbound=self.inbound))

    def send(self, frame: Frame) -> bool:
        """
        Queue a frame for transmission.

        Returns False (and reports NoActiveSession) when the pipeline is
        CLOSED; the frame is dropped, not queued.
        """
        if self.is_active() and self.outbound.enqueue(frame):
            return True

        log_event({
            "ts_ms": now_ms(),
            "event_type": "SEND_WITHOUT_SESSION",
            "conn_id": self.conn_id,
            "msg_id": frame.msg_id,
            "kind": frame.kind.name,
        })
        self._sink.notify(NoActiveSession())
        return False

    def close(self, reason: str = "closed") -> None:
        """
        Transition to CLOSED and release the connection.

        Idempotent. Safe to call from any thread; the transport itself is
        only touched on the reactor loop.
        """
        with self._state_lock:
            if self._state is PipelineState.CLOSED:
                return
            self._state = PipelineState.CLOSED
        outbound = self.outbound.snapshot()
        self.outbound.close()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "PIPELINE_CLOSED",
            "conn_id": self.conn_id,
            "reason": reason,
            "abandoned_pending_acks": len(self.pending_acks),
            "frames_sent": outbound["sent"],
            "frames_dropped": outbound["queued"],
        })

        if self._on_loop_thread():
            self._release()
        else:
            self._loop.call_soon_threadsafe(self._release)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _enter(self, state: PipelineState) -> bool:
        """
        Move the read side to `state` unless the pipeline is CLOSED.

        close() may run on the input thread; CLOSED is never overwritten.
        """
        with self._state_lock:
            if self._state is PipelineState.CLOSED:
                return False
            self._state = state
            return True

    # ------------------------------------------------------------------
    # Read path (reactor loop only)
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        context = "reading message header"
        try:
            while self._enter(PipelineState.AWAITING_HEADER):
                context = "reading message header"
                raw = await self._reader.readexactly(HEADER_SIZE)
                now_ns = monotonic_ns()

                try:
                    header = decode_header(raw)
                except HeaderDecodeError as exc:
                    self._on_malformed(exc)
                    continue

                if header.kind is FrameKind.ACK:
                    self._on_ack(header.msg_id, now_ns)
                    if header.body_len:
                        if not self._enter(PipelineState.AWAITING_BODY):
                            return
                        context = "reading message body"
                        await self._reader.readexactly(header.body_len)
                        log_event({
                            "ts_ms": now_ms(),
                            "event_type": "ACK_BODY_DISCARDED",
                            "conn_id": self.conn_id,
                            "msg_id": header.msg_id,
                            "body_len": header.body_len,
                        })
                    continue

                if not self._enter(PipelineState.AWAITING_BODY):
                    return
                context = "reading message body"
                body = await self._reader.readexactly(header.body_len)
                self._on_data(header.msg_id, body)

        except asyncio.CancelledError:
            pass
        except (asyncio.IncompleteReadError, OSError) as exc:
            self._fail(context, exc)

    def _on_malformed(self, exc: HeaderDecodeError) -> None:
        # Stream is not resynchronized; see DESIGN.md
        log_event({
            "ts_ms": now_ms(),
            "event_type": "HEADER_DECODE_ERROR",
            "conn_id": self.conn_id,
            "error_class": type(exc).__name__,
            "error": str(exc),
        })
        self._sink.notify(MalformedMessage(reason=str(exc)))

    def _on_ack(self, msg_id: int, now_ns: int) -> None:
        latency_ms = self.pending_acks.resolve(msg_id, now_ns)
        if latency_ms is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "ACK_UNMATCHED",
                "conn_id": self.conn_id,
                "msg_id": msg_id,
            })
            return

        emit_ack_latency(msg_id=msg_id, latency_ms=latency_ms, conn_id=self.conn_id)
        self._sink.notify(LatencyReport(msg_id=msg_id, millis=latency_ms))

    def _on_data(self, msg_id: int, body: bytes) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "FRAME_RECEIVED",
            "conn_id": self.conn_id,
            "msg_id": msg_id,
            "body_len": len(body),
        })
        self._sink.notify(IncomingText(body=body, msg_id=msg_id))
        self.send(make_ack_frame(msg_id=msg_id))

    # ------------------------------------------------------------------
    # Write path (reactor loop only)
    # ------------------------------------------------------------------

    async def _write(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    def _on_frame_sent(self, frame: Frame) -> None:
        if frame.is_data:
            self.pending_acks.record(frame.msg_id, monotonic_ns())

        log_event({
            "ts_ms": now_ms(),
            "event_type": "FRAME_SENT",
            "conn_id": self.conn_id,
            "msg_id": frame.msg_id,
            "kind": frame.kind.name,
            "body_len": frame.body_len,
        })

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def _fail(self, context: str, exc: BaseException) -> None:
        if self._state is PipelineState.CLOSED:
            return
        message = _describe(exc)
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CONNECTION_ERROR",
            "conn_id": self.conn_id,
            "context": context,
            "exception": type(exc).__name__,
            "message": message,
        })
        self._sink.notify(ConnectionErrorEvent(message=message, context=context))
        self.close(reason=f"error while {context}")

    def _release(self) -> None:
        task = self._read_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

        self.pending_acks.clear()
        self._writer.close()
        self._closed.set()

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False
