# pylint: disable=missing-module-docstring,missing-function-docstring

import struct

import pytest

from protocol.binary import (
    BodyTooLarge,
    HeaderDecodeError,
    InvalidFrame,
    UnknownFrameKind,
    decode,
    decode_frame,
    decode_header,
    encode_frame,
    make_ack_frame,
    make_data_frame,
    next_msg_id,
)
from protocol.frames import Frame, FrameKind
from spec import HEADER_SIZE, MAX_BODY_SIZE, MSG_ID_MAX


# ---------------------------------------------------------------------
# Exact wire layout
# ---------------------------------------------------------------------

def test_encode_data_frame_bytes():
    raw = encode_frame(make_data_frame(msg_id=0x01020304, body=b"hi"))

    assert raw == b"\x00\x01\x02\x03\x04\x00\x02hi"


def test_encode_ack_frame_is_header_only():
    raw = encode_frame(make_ack_frame(msg_id=7))

    assert raw == b"\x01\x00\x00\x00\x07\x00\x00"
    assert len(raw) == HEADER_SIZE


def test_encoded_length_is_header_plus_body():
    frame = make_data_frame(msg_id=1, body=b"x" * MAX_BODY_SIZE)

    assert len(encode_frame(frame)) == HEADER_SIZE + MAX_BODY_SIZE


# ---------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "frame",
    [
        make_data_frame(msg_id=1, body=b"hello"),
        make_data_frame(msg_id=MSG_ID_MAX, body=b"\xff" * MAX_BODY_SIZE),
        make_ack_frame(msg_id=0),
        make_ack_frame(msg_id=MSG_ID_MAX),
    ],
)
def test_decode_inverts_encode(frame: Frame):
    assert decode(encode_frame(frame)) == frame


def test_header_then_body_decode():
    raw = encode_frame(make_data_frame(msg_id=42, body=b"abc"))

    header = decode_header(raw[:HEADER_SIZE])
    assert header.kind is FrameKind.DATA
    assert header.msg_id == 42
    assert header.body_len == 3

    frame = decode_frame(header, raw[HEADER_SIZE:])
    assert frame.body == b"abc"


# ---------------------------------------------------------------------
# Header rejection
# ---------------------------------------------------------------------

def test_decode_rejects_unknown_kind():
    raw = struct.pack("!BIH", 2, 1, 0)

    with pytest.raises(UnknownFrameKind):
        decode_header(raw)


def test_decode_rejects_oversized_body():
    raw = struct.pack("!BIH", 0, 1, MAX_BODY_SIZE + 1)

    with pytest.raises(BodyTooLarge):
        decode_header(raw)


def test_header_errors_share_base_class():
    assert issubclass(UnknownFrameKind, HeaderDecodeError)
    assert issubclass(BodyTooLarge, HeaderDecodeError)


def test_decode_accepts_max_body_declaration():
    raw = struct.pack("!BIH", 0, 1, MAX_BODY_SIZE)

    assert decode_header(raw).body_len == MAX_BODY_SIZE


def test_decode_header_requires_exact_length():
    with pytest.raises(ValueError):
        decode_header(b"\x00\x00\x00")


def test_decode_frame_rejects_short_body():
    header = decode_header(struct.pack("!BIH", 0, 1, 4))

    with pytest.raises(ValueError):
        decode_frame(header, b"ab")


# ---------------------------------------------------------------------
# Construction validation
# ---------------------------------------------------------------------

def test_data_frame_rejects_empty_body():
    with pytest.raises(InvalidFrame):
        make_data_frame(msg_id=1, body=b"")


def test_data_frame_rejects_oversized_body():
    with pytest.raises(InvalidFrame):
        make_data_frame(msg_id=1, body=b"x" * (MAX_BODY_SIZE + 1))


def test_rejects_msg_id_outside_u32():
    with pytest.raises(InvalidFrame):
        make_ack_frame(msg_id=MSG_ID_MAX + 1)

    with pytest.raises(InvalidFrame):
        make_data_frame(msg_id=-1, body=b"x")


def test_encode_rejects_ack_with_body():
    with pytest.raises(InvalidFrame):
        encode_frame(Frame(kind=FrameKind.ACK, msg_id=1, body=b"x"))


# ---------------------------------------------------------------------
# Id allocation
# ---------------------------------------------------------------------

def test_next_msg_id_increments():
    assert next_msg_id(1) == 2


def test_next_msg_id_wraps_at_u32():
    assert next_msg_id(MSG_ID_MAX) == 0
