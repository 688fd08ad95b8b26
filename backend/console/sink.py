"""
Console sink: where the core reports human-readable events.

The core depends only on the ConsoleSink protocol. StdoutConsoleSink is the
interactive renderer used by server.main; RecordingConsoleSink keeps events
in memory (tests, embedding).
"""

from __future__ import annotations

import sys
import threading
from typing import Callable, Protocol, TextIO

from console.events import (
    ConnectionErrorEvent,
    ConnectionEstablished,
    ConsoleEvent,
    IncomingText,
    LatencyReport,
    MalformedMessage,
    NoActiveSession,
)
from spec import BODY_TEXT_ENCODING


class ConsoleSink(Protocol):
    def notify(self, event: ConsoleEvent) -> None:
        ...


def render(event: ConsoleEvent) -> str:
    """
    Format one event as a console line.

    Pure function; never raises for a known event type.
    """
    if isinstance(event, IncomingText):
        text = event.body.decode(BODY_TEXT_ENCODING, errors="replace")
        return f">>> {text}"

    if isinstance(event, LatencyReport):
        return f"    (message #{event.msg_id} delivered in {event.millis:.3f} [ms])"

    if isinstance(event, MalformedMessage):
        return "<Malformed message received>"

    if isinstance(event, ConnectionErrorEvent):
        return f"Error while {event.context}: {event.message}"

    if isinstance(event, ConnectionEstablished):
        if event.inbound:
            return f"\nAccepted incoming connection from {event.peer}"
        return "Connected successfully. Ready to send messages"

    if isinstance(event, NoActiveSession):
        return "No active session to send"

    return f"<{type(event).__name__}>"


class StdoutConsoleSink:
    """
    Writes one rendered line per event.

    notify() is called from both the reactor and the input thread, so
    writes are serialized to keep lines intact.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def notify(self, event: ConsoleEvent) -> None:
        self.write_line(render(event))

    def write_line(self, line: str) -> None:
        stream = self._stream or sys.stdout
        with self._lock:
            stream.write(line + "\n")
            stream.flush()


class RecordingConsoleSink:
    """Collects events in notification order."""

    def __init__(self, on_event: Callable[[ConsoleEvent], None] | None = None) -> None:
        self.events: list[ConsoleEvent] = []
        self._on_event = on_event

    def notify(self, event: ConsoleEvent) -> None:
        self.events.append(event)
        if self._on_event is not None:
            self._on_event(event)

    def of_type(self, cls: type) -> list[ConsoleEvent]:
        return [e for e in self.events if isinstance(e, cls)]
