"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all wire-level invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Frame header  [wire format]
# =============================================================================
# byte 0      : kind        0 = Data, 1 = Ack
# bytes 1-4   : msg_id      uint32, network byte order
# bytes 5-6   : body_len    uint16, network byte order (0-1024)

HEADER_FORMAT: Final[str] = "!BIH"
HEADER_SIZE: Final[int] = 7

KIND_DATA: Final[int] = 0
KIND_ACK: Final[int] = 1

# =============================================================================
# Body limits
# =============================================================================

MAX_BODY_SIZE: Final[int] = 1024
MIN_DATA_BODY_SIZE: Final[int] = 1

# =============================================================================
# Message identifiers (u32, caller-assigned)
# =============================================================================

MSG_ID_MIN: Final[int] = 0
MSG_ID_MAX: Final[int] = 2**32 - 1  # u32 wraparound
MSG_ID_START: Final[int] = 1

# =============================================================================
# Process defaults
# =============================================================================

DEFAULT_PORT: Final[int] = 5401
DEFAULT_LISTEN_HOST: Final[str] = "0.0.0.0"
DEFAULT_CONNECT_TIMEOUT_S: Final[float] = 10.0

# Console text encoding for Data frame bodies
BODY_TEXT_ENCODING: Final[str] = "utf-8"
