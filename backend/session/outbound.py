# backend/session/outbound.py
"""
Outbound frame queue with one write in flight per connection.

Rules:
- FIFO: frames are written in submission order
- enqueue() may be called from any thread (input thread or reactor)
- Only the enqueue that finds the queue empty starts transmission;
  otherwise the in-flight write picks the new frame up on completion
- On completion of the head: on_sent(head), pop, start the next head
- Any write failure discards the queue (no persistence, no resend)
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import Awaitable, Callable, Deque, Optional

from protocol.binary import encode_frame
from protocol.frames import Frame


WriteFn = Callable[[bytes], Awaitable[None]]
SentFn = Callable[[Frame], None]
ErrorFn = Callable[[Exception], None]


class OutboundQueue:
    """
    Serializes concurrent send requests into one write at a time.

    The lock guards the deque and the closed flag only. Writes and the
    on_sent/on_error callbacks always run on the reactor loop.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        write: WriteFn,
        on_sent: SentFn,
        on_error: ErrorFn,
    ) -> None:
        self._loop = loop
        self._write = write
        self._on_sent = on_sent
        self._on_error = on_error

        self._lock = threading.Lock()
        self._frames: Deque[Frame] = deque()
        self._closed = False
        self._task: Optional[asyncio.Task[None]] = None

        self.frames_sent: int = 0

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, frame: Frame) -> bool:
        """
        Append a frame to the tail.

        Returns:
            True if queued
            False if the queue is already closed (frame dropped)
        """
        with self._lock:
            if self._closed:
                return False
            in_flight = bool(self._frames)
            self._frames.append(frame)

        if not in_flight:
            self._loop.call_soon_threadsafe(self._start_head)
        return True

    def close(self) -> None:
        """
        Discard all queued frames and abort the in-flight write.

        Idempotent. Later enqueue() calls return False.
        """
        with self._lock:
            self._closed = True
            self._frames.clear()
            task = self._task
            self._task = None

        if task is not None and not task.done():
            if self._on_loop_thread():
                task.cancel()
            else:
                self._loop.call_soon_threadsafe(task.cancel)

    # -------------------------
    # Transmission chain (reactor thread only)
    # -------------------------

    def _start_head(self) -> None:
        with self._lock:
            if self._closed or not self._frames:
                return
            head = self._frames[0]
            self._task = self._loop.create_task(self._transmit(head))

    async def _transmit(self, head: Frame) -> None:
        try:
            await self._write(encode_frame(head))
        except asyncio.CancelledError:
            return
        except OSError as exc:
            self.close()
            self._on_error(exc)
            return

        with self._lock:
            if self._closed:
                return
            self.frames_sent += 1

        # Reactor thread: safe to touch the pending-ack table here
        self._on_sent(head)

        with self._lock:
            if self._closed:
                return
            self._frames.popleft()
            self._task = None
            has_more = bool(self._frames)

        if has_more:
            self._start_head()

    # -------------------------
    # Introspection helpers
    # -------------------------

    def _on_loop_thread(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)

    @property
    def closed(self) -> bool:
        return self._closed

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return len(self) == 0

    def snapshot(self) -> dict[str, int | bool]:
        """
        Lightweight snapshot for logging.
        """
        with self._lock:
            return {
                "queued": len(self._frames),
                "sent": self.frames_sent,
                "closed": self._closed,
            }
