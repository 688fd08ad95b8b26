# backend/protocol/binary.py
"""
Binary framing for chat messages.

Wire format (network byte order):
    1 byte   kind      (0 = data, 1 = ack)
    4 bytes  msg_id    (u32)
    2 bytes  body_len  (u16, 0..1024)
    body_len bytes of body (data frames only)

Usage example:

    payload = encode_frame(make_data_frame(msg_id=1, body=b"hi"))

    header = decode_header(raw[:HEADER_SIZE])
    if header.kind is FrameKind.DATA:
        body = await reader.readexactly(header.body_len)
        frame = decode_frame(header, body)
"""

from __future__ import annotations

import struct

from protocol.frames import Frame, FrameHeader, FrameKind
from spec import (
    HEADER_FORMAT,
    HEADER_SIZE,
    MAX_BODY_SIZE,
    MIN_DATA_BODY_SIZE,
    MSG_ID_MAX,
    MSG_ID_MIN,
)


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class HeaderDecodeError(BinaryProtocolError):
    """
    Raised when a 7-byte header cannot be trusted.

    Recoverable: the receiving pipeline reports a malformed message and
    keeps reading headers.
    """


class UnknownFrameKind(HeaderDecodeError):
    """Raised when header byte 0 is neither DATA nor ACK."""


class BodyTooLarge(HeaderDecodeError):
    """
    Raised when the declared body length exceeds MAX_BODY_SIZE.

    An oversize declaration has no coherent body boundary, so the header is
    rejected instead of being truncated.
    """


class InvalidFrame(BinaryProtocolError):
    """
    Raised when a Frame value violates the framing contract at construction.

    Never raised for frames built through make_data_frame/make_ack_frame
    with valid arguments.
    """


# -------------------------
# Construction helpers
# -------------------------

def _check_msg_id(msg_id: int) -> None:
    if msg_id < MSG_ID_MIN or msg_id > MSG_ID_MAX:
        raise InvalidFrame(f"Invalid msg_id: {msg_id}")


def make_data_frame(*, msg_id: int, body: bytes) -> Frame:
    """
    Build a DATA frame.

    The sending side never constructs a DATA frame with an empty body.
    """
    _check_msg_id(msg_id)
    if len(body) < MIN_DATA_BODY_SIZE:
        raise InvalidFrame("DATA frame body must not be empty")
    if len(body) > MAX_BODY_SIZE:
        raise InvalidFrame(f"Body length {len(body)} > {MAX_BODY_SIZE}")
    return Frame(kind=FrameKind.DATA, msg_id=msg_id, body=bytes(body))


def make_ack_frame(*, msg_id: int) -> Frame:
    """Build an ACK frame echoing msg_id."""
    _check_msg_id(msg_id)
    return Frame(kind=FrameKind.ACK, msg_id=msg_id)


def next_msg_id(prev: int) -> int:
    """
    Return the id following `prev`, accounting for u32 wraparound.
    """
    if prev == MSG_ID_MAX:
        return MSG_ID_MIN
    return prev + 1


# -------------------------
# Encode
# -------------------------

def encode_frame(frame: Frame) -> bytes:
    """
    Serialize a frame to HEADER_SIZE + body_len bytes.

    Never fails for a well-formed Frame.
    """
    _check_msg_id(frame.msg_id)
    if frame.body_len > MAX_BODY_SIZE:
        raise InvalidFrame(f"Body length {frame.body_len} > {MAX_BODY_SIZE}")
    if frame.is_ack and frame.body:
        raise InvalidFrame("ACK frame must carry an empty body")

    header = struct.pack(HEADER_FORMAT, int(frame.kind), frame.msg_id, frame.body_len)
    return header + frame.body


# -------------------------
# Decode
# -------------------------

def decode_header(raw: bytes) -> FrameHeader:
    """
    Decode exactly HEADER_SIZE bytes.

    Raises:
        UnknownFrameKind: byte 0 is not a known kind
        BodyTooLarge: declared body length > MAX_BODY_SIZE
        ValueError: caller supplied the wrong number of bytes
    """
    if len(raw) != HEADER_SIZE:
        raise ValueError(f"Header length {len(raw)} != {HEADER_SIZE}")

    kind_byte, msg_id, body_len = struct.unpack(HEADER_FORMAT, raw)

    try:
        kind = FrameKind(kind_byte)
    except ValueError as exc:
        raise UnknownFrameKind(f"Unknown frame kind: {kind_byte}") from exc

    if body_len > MAX_BODY_SIZE:
        raise BodyTooLarge(f"Declared body length {body_len} > {MAX_BODY_SIZE}")

    return FrameHeader(kind=kind, msg_id=msg_id, body_len=body_len)


def decode_frame(header: FrameHeader, body: bytes) -> Frame:
    """
    Combine a decoded header with its separately read body.

    The caller supplies exactly header.body_len bytes.
    """
    if len(body) != header.body_len:
        raise ValueError(f"Body length {len(body)} != declared {header.body_len}")
    return Frame(kind=header.kind, msg_id=header.msg_id, body=bytes(body))


def decode(raw: bytes) -> Frame:
    """
    Decode a complete frame held in one buffer.

    Convenience for tests and tools; the pipeline reads header and body as
    two separate operations.
    """
    header = decode_header(raw[:HEADER_SIZE])
    return decode_frame(header, raw[HEADER_SIZE:])
