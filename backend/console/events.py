"""
Console sink event definitions.

Rules:
- Events describe facts that have occurred on a connection.
- Events carry data only (no behavior, no rendering).
- The core never prints; it notifies a ConsoleSink with these events.
"""

from __future__ import annotations

from dataclasses import dataclass


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class ConsoleEvent:
    """Base class for everything a pipeline reports to the console."""


# =============================================================================
# Concrete events
# =============================================================================

@dataclass(frozen=True)
class IncomingText(ConsoleEvent):
    """Body of a received DATA frame, as raw bytes."""
    body: bytes
    msg_id: int = 0


@dataclass(frozen=True)
class LatencyReport(ConsoleEvent):
    """Round trip from DATA write completion to ACK decode."""
    msg_id: int
    millis: float


@dataclass(frozen=True)
class MalformedMessage(ConsoleEvent):
    reason: str = ""


@dataclass(frozen=True)
class ConnectionErrorEvent(ConsoleEvent):
    """
    Fatal I/O failure on one connection.

    context names the operation that failed, e.g. "reading message header".
    """
    message: str
    context: str = "communicating"


@dataclass(frozen=True)
class ConnectionEstablished(ConsoleEvent):
    peer: str = ""
    inbound: bool = True


@dataclass(frozen=True)
class NoActiveSession(ConsoleEvent):
    pass
