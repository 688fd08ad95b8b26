# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
import struct
from typing import Any, Callable

import pytest

import session.pipeline as pipeline_mod
from observability import logger
from console.events import (
    ConnectionErrorEvent,
    ConnectionEstablished,
    IncomingText,
    LatencyReport,
    MalformedMessage,
    NoActiveSession,
)
from console.sink import RecordingConsoleSink
from protocol.binary import encode_frame, make_ack_frame, make_data_frame
from session.connection_status import PipelineState
from session.pipeline import ConnectionPipeline


class FakeWriter:
    def __init__(self, fail_with: Exception | None = None) -> None:
        self.chunks: list[bytes] = []
        self.closed = False
        self.fail_with = fail_with

    def write(self, data: bytes) -> None:
        self.chunks.append(bytes(data))

    async def drain(self) -> None:
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    def close(self) -> None:
        self.closed = True

    def get_extra_info(self, name: str, default: Any = None) -> Any:
        return ("127.0.0.1", 5401) if name == "peername" else default


async def wait_until(cond: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not cond():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


def make_pipeline(
    writer: FakeWriter | None = None,
) -> tuple[ConnectionPipeline, asyncio.StreamReader, FakeWriter, RecordingConsoleSink]:
    reader = asyncio.StreamReader()
    writer = writer or FakeWriter()
    sink = RecordingConsoleSink()
    pipeline = ConnectionPipeline(reader=reader, writer=writer, sink=sink, peer="peer:1")
    pipeline.start()
    return pipeline, reader, writer, sink


# ---------------------------------------------------------------------
# Data path
# ---------------------------------------------------------------------

def test_data_frame_is_reported_and_acked():
    async def scenario():
        pipeline, reader, writer, sink = make_pipeline()
        reader.feed_data(encode_frame(make_data_frame(msg_id=1, body=b"hi")))
        await wait_until(lambda: bool(writer.chunks))
        return pipeline, writer, sink

    pipeline, writer, sink = asyncio.run(scenario())

    assert sink.events[0] == ConnectionEstablished(peer="peer:1", inbound=True)
    assert sink.of_type(IncomingText) == [IncomingText(body=b"hi", msg_id=1)]
    assert writer.chunks == [encode_frame(make_ack_frame(msg_id=1))]
    assert pipeline.state is PipelineState.AWAITING_HEADER
    # Acks are not tracked for latency
    assert len(pipeline.pending_acks) == 0


def test_header_and_body_may_arrive_in_pieces():
    raw = encode_frame(make_data_frame(msg_id=3, body=b"split"))

    async def scenario():
        _, reader, writer, sink = make_pipeline()
        for i in range(len(raw)):
            reader.feed_data(raw[i:i + 1])
            await asyncio.sleep(0)
        await wait_until(lambda: bool(writer.chunks))
        return sink

    sink = asyncio.run(scenario())

    assert sink.of_type(IncomingText) == [IncomingText(body=b"split", msg_id=3)]


# ---------------------------------------------------------------------
# Malformed headers
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "bad_header",
    [
        struct.pack("!BIH", 2, 1, 0),       # unknown kind
        struct.pack("!BIH", 0, 1, 1025),    # declared body too large
    ],
)
def test_malformed_header_keeps_connection(bad_header: bytes):
    async def scenario():
        pipeline, reader, writer, sink = make_pipeline()
        reader.feed_data(bad_header)
        await wait_until(lambda: bool(sink.of_type(MalformedMessage)))
        state_after = pipeline.state

        reader.feed_data(encode_frame(make_data_frame(msg_id=2, body=b"ok")))
        await wait_until(lambda: bool(writer.chunks))
        return pipeline, state_after, writer, sink

    pipeline, state_after, writer, sink = asyncio.run(scenario())

    assert state_after is PipelineState.AWAITING_HEADER
    assert pipeline.is_active()
    assert not writer.closed
    assert len(sink.of_type(MalformedMessage)) == 1
    assert sink.of_type(IncomingText) == [IncomingText(body=b"ok", msg_id=2)]
    assert not sink.of_type(ConnectionErrorEvent)


# ---------------------------------------------------------------------
# Latency correlation
# ---------------------------------------------------------------------

def test_ack_resolves_latency_once(monkeypatch: pytest.MonkeyPatch):
    clock = {"now": 5_000_000_000}
    monkeypatch.setattr(pipeline_mod, "monotonic_ns", lambda: clock["now"])

    async def scenario():
        pipeline, reader, _, sink = make_pipeline()
        pipeline.send(make_data_frame(msg_id=7, body=b"ping"))
        await wait_until(lambda: 7 in pipeline.pending_acks)

        clock["now"] += 2_500_000
        reader.feed_data(encode_frame(make_ack_frame(msg_id=7)))
        await wait_until(lambda: bool(sink.of_type(LatencyReport)))

        # Duplicate ack, then a data frame as a processing marker
        reader.feed_data(encode_frame(make_ack_frame(msg_id=7)))
        reader.feed_data(encode_frame(make_data_frame(msg_id=1, body=b"m")))
        await wait_until(lambda: bool(sink.of_type(IncomingText)))
        return pipeline, sink

    pipeline, sink = asyncio.run(scenario())

    assert sink.of_type(LatencyReport) == [LatencyReport(msg_id=7, millis=2.5)]
    assert 7 not in pipeline.pending_acks


def test_unmatched_ack_is_silent():
    async def scenario():
        pipeline, reader, _, sink = make_pipeline()
        reader.feed_data(encode_frame(make_ack_frame(msg_id=99)))
        reader.feed_data(encode_frame(make_data_frame(msg_id=1, body=b"m")))
        await wait_until(lambda: bool(sink.of_type(IncomingText)))
        return pipeline, sink

    pipeline, sink = asyncio.run(scenario())

    assert not sink.of_type(LatencyReport)
    assert not sink.of_type(MalformedMessage)
    assert not sink.of_type(ConnectionErrorEvent)
    assert pipeline.is_active()


def test_ack_with_declared_body_stays_aligned():
    async def scenario():
        _, reader, _, sink = make_pipeline()
        reader.feed_data(struct.pack("!BIH", 1, 5, 3) + b"xyz")
        reader.feed_data(encode_frame(make_data_frame(msg_id=1, body=b"next")))
        await wait_until(lambda: bool(sink.of_type(IncomingText)))
        return sink

    sink = asyncio.run(scenario())

    assert sink.of_type(IncomingText) == [IncomingText(body=b"next", msg_id=1)]
    assert not sink.of_type(MalformedMessage)


# ---------------------------------------------------------------------
# Outbound ordering through the pipeline
# ---------------------------------------------------------------------

def test_sends_hit_the_wire_in_order():
    frames = [make_data_frame(msg_id=i, body=f"f{i}".encode()) for i in (1, 2, 3)]

    async def scenario():
        pipeline, _, writer, _ = make_pipeline()
        for f in frames:
            assert pipeline.send(f) is True
        await wait_until(lambda: len(pipeline.pending_acks) == 3)
        return writer

    writer = asyncio.run(scenario())

    assert writer.chunks == [encode_frame(f) for f in frames]


# ---------------------------------------------------------------------
# Closing
# ---------------------------------------------------------------------

def test_peer_eof_closes_pipeline():
    async def scenario():
        pipeline, reader, writer, sink = make_pipeline()
        reader.feed_data(b"\x00\x00")
        reader.feed_eof()
        await asyncio.wait_for(pipeline.wait_closed(), timeout=2.0)
        return pipeline, writer, sink

    pipeline, writer, sink = asyncio.run(scenario())

    assert pipeline.state is PipelineState.CLOSED
    assert not pipeline.is_active()
    assert writer.closed
    errors = sink.of_type(ConnectionErrorEvent)
    assert len(errors) == 1
    assert errors[0].context == "reading message header"


def test_eof_inside_body_reports_body_context():
    async def scenario():
        pipeline, reader, _, sink = make_pipeline()
        reader.feed_data(struct.pack("!BIH", 0, 1, 10) + b"abc")
        reader.feed_eof()
        await asyncio.wait_for(pipeline.wait_closed(), timeout=2.0)
        return sink

    sink = asyncio.run(scenario())

    assert sink.of_type(ConnectionErrorEvent)[0].context == "reading message body"


def test_write_failure_closes_pipeline():
    async def scenario():
        pipeline, _, writer, sink = make_pipeline(FakeWriter(fail_with=BrokenPipeError("Broken pipe")))
        pipeline.send(make_data_frame(msg_id=1, body=b"x"))
        await asyncio.wait_for(pipeline.wait_closed(), timeout=2.0)
        return pipeline, writer, sink

    pipeline, writer, sink = asyncio.run(scenario())

    assert pipeline.state is PipelineState.CLOSED
    assert writer.closed
    assert sink.of_type(ConnectionErrorEvent) == [
        ConnectionErrorEvent(message="Broken pipe", context="sending")
    ]
    assert len(pipeline.pending_acks) == 0


def test_send_after_close_is_dropped():
    async def scenario():
        pipeline, _, writer, sink = make_pipeline()
        pipeline.close()
        sent = pipeline.send(make_data_frame(msg_id=1, body=b"late"))
        await asyncio.sleep(0.01)
        return sent, writer, sink

    sent, writer, sink = asyncio.run(scenario())

    assert sent is False
    assert writer.chunks == []
    assert sink.of_type(NoActiveSession) == [NoActiveSession()]
    # Local close is not an I/O error
    assert not sink.of_type(ConnectionErrorEvent)


def test_close_from_input_thread_stays_closed():
    async def scenario():
        pipeline, reader, writer, sink = make_pipeline()
        reader.feed_data(struct.pack("!BIH", 0, 4, 5))
        await wait_until(lambda: pipeline.state is PipelineState.AWAITING_BODY)

        await asyncio.get_running_loop().run_in_executor(None, pipeline.close)
        reader.feed_data(b"late!")
        reader.feed_data(encode_frame(make_data_frame(msg_id=5, body=b"more")))
        await asyncio.wait_for(pipeline.wait_closed(), timeout=2.0)
        await asyncio.sleep(0.01)
        return pipeline, writer, sink

    pipeline, writer, sink = asyncio.run(scenario())

    assert pipeline.state is PipelineState.CLOSED
    assert not pipeline.is_active()
    assert writer.closed
    assert not sink.of_type(IncomingText)
    assert writer.chunks == []


# ---------------------------------------------------------------------
# Empty data body from the peer
# ---------------------------------------------------------------------

def test_zero_length_data_is_delivered_and_acked():
    async def scenario():
        _, reader, writer, sink = make_pipeline()
        reader.feed_data(struct.pack("!BIH", 0, 9, 0))
        await wait_until(lambda: bool(writer.chunks))
        return writer, sink

    writer, sink = asyncio.run(scenario())

    assert sink.of_type(IncomingText) == [IncomingText(body=b"", msg_id=9)]
    assert writer.chunks == [b"\x01\x00\x00\x00\x09\x00\x00"]


# ---------------------------------------------------------------------
# Close log carries outbound counters
# ---------------------------------------------------------------------

class StalledWriter(FakeWriter):
    """Accepts bytes but never finishes draining."""

    async def drain(self) -> None:
        await asyncio.Event().wait()


def _closed_events(
    monkeypatch: pytest.MonkeyPatch,
) -> Callable[[], list[dict[str, Any]]]:
    captured: list[str] = []
    monkeypatch.setattr(logger, "_print", captured.append)
    monkeypatch.setattr(logger, "_enabled", True)

    def closed() -> list[dict[str, Any]]:
        decoded = [json.loads(line) for line in captured]
        return [e for e in decoded if e["event_type"] == "PIPELINE_CLOSED"]

    return closed


def test_close_logs_frames_sent(monkeypatch: pytest.MonkeyPatch):
    closed = _closed_events(monkeypatch)

    async def scenario():
        pipeline, _, _, _ = make_pipeline()
        pipeline.send(make_data_frame(msg_id=1, body=b"a"))
        pipeline.send(make_data_frame(msg_id=2, body=b"b"))
        await wait_until(lambda: len(pipeline.pending_acks) == 2)
        pipeline.close(reason="done")

    asyncio.run(scenario())

    events = closed()
    assert len(events) == 1
    assert events[0]["reason"] == "done"
    assert events[0]["frames_sent"] == 2
    assert events[0]["frames_dropped"] == 0
    assert events[0]["abandoned_pending_acks"] == 2


def test_close_logs_frames_dropped(monkeypatch: pytest.MonkeyPatch):
    closed = _closed_events(monkeypatch)

    async def scenario():
        pipeline, _, writer, _ = make_pipeline(StalledWriter())
        pipeline.send(make_data_frame(msg_id=1, body=b"a"))
        pipeline.send(make_data_frame(msg_id=2, body=b"b"))
        await wait_until(lambda: bool(writer.chunks))
        pipeline.close()

    asyncio.run(scenario())

    events = closed()
    assert events[0]["frames_sent"] == 0
    assert events[0]["frames_dropped"] == 2
