"""
Frame primitives.

Pure data containers only.
No encoding, no queues, no timing logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum

from spec import KIND_ACK, KIND_DATA


class FrameKind(IntEnum):
    """Wire value of header byte 0."""
    DATA = KIND_DATA
    ACK = KIND_ACK


@dataclass(frozen=True)
class Frame:
    """
    One framed protocol message.

    msg_id:
        Caller-assigned u32 for DATA frames. For ACK frames it echoes the
        id of the DATA frame being acknowledged.

    body:
        Raw bytes, no text encoding imposed at this layer.
        ACK frames always carry b"".
    """
    kind: FrameKind
    msg_id: int
    body: bytes = b""

    @property
    def is_data(self) -> bool:
        return self.kind is FrameKind.DATA

    @property
    def is_ack(self) -> bool:
        return self.kind is FrameKind.ACK

    @property
    def body_len(self) -> int:
        return len(self.body)


@dataclass(frozen=True)
class FrameHeader:
    """
    Decoded 7-byte header.

    The body is read separately, after a successful header decode, using
    body_len.
    """
    kind: FrameKind
    msg_id: int
    body_len: int
