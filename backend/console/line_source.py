"""
Line source and line -> DATA frame conversion.

Rules:
- Bodies are UTF-8; anything past MAX_BODY_SIZE bytes is cut on a
  character boundary
- Empty lines produce no frame and consume no id
- Ids start at MSG_ID_START and advance only when a frame is produced
"""

from __future__ import annotations

import sys
from typing import Callable, Iterable, Iterator, Optional, Protocol, TextIO

from observability.logger import log_event
from observability.metrics import now_ms
from protocol.binary import make_data_frame, next_msg_id
from protocol.frames import Frame
from spec import BODY_TEXT_ENCODING, MAX_BODY_SIZE, MSG_ID_START


class LineSource(Protocol):
    def next_line(self) -> Optional[str]:
        """Return the next line without its newline, or None at end of input."""
        ...


class StdinLineSource:
    """Blocking line reader; runs on the interactive input thread."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def next_line(self) -> Optional[str]:
        line = (self._stream or sys.stdin).readline()
        if line == "":
            return None
        return line.rstrip("\r\n")


class IterableLineSource:
    def __init__(self, lines: Iterable[str]) -> None:
        self._it: Iterator[str] = iter(lines)

    def next_line(self) -> Optional[str]:
        return next(self._it, None)


def truncate_body(text: str) -> tuple[bytes, bool]:
    """
    Encode text and cut it to at most MAX_BODY_SIZE bytes.

    Returns (body, truncated). A multi-byte character straddling the limit
    is dropped whole.
    """
    body = text.encode(BODY_TEXT_ENCODING)
    if len(body) <= MAX_BODY_SIZE:
        return body, False
    cut = body[:MAX_BODY_SIZE].decode(BODY_TEXT_ENCODING, errors="ignore")
    return cut.encode(BODY_TEXT_ENCODING), True


class LineFramer:
    """
    Turns console lines into DATA frames with sequential ids.

    on_truncated receives the console notice for a shortened line.
    """

    def __init__(
        self,
        *,
        on_truncated: Callable[[str], None] | None = None,
        first_id: int = MSG_ID_START,
    ) -> None:
        self._next_id = first_id
        self._on_truncated = on_truncated

    @property
    def next_id(self) -> int:
        return self._next_id

    def frame_for(self, line: str) -> Optional[Frame]:
        """
        Build the DATA frame for one line.

        Returns None for an empty line (sending it does not make sense).
        """
        body, truncated = truncate_body(line)
        if not body:
            return None

        if truncated:
            chars = len(body.decode(BODY_TEXT_ENCODING))
            log_event({
                "ts_ms": now_ms(),
                "event_type": "LINE_TRUNCATED",
                "msg_id": self._next_id,
                "body_len": len(body),
            })
            if self._on_truncated is not None:
                self._on_truncated(f"  (message was truncated to {chars} characters)")

        frame = make_data_frame(msg_id=self._next_id, body=body)
        self._next_id = next_msg_id(self._next_id)
        return frame
