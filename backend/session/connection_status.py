"""
Read-side state of a connection pipeline.

AWAITING_HEADER -> AWAITING_BODY -> AWAITING_HEADER   (data path)
AWAITING_HEADER -> AWAITING_HEADER                    (ack path)
any -> CLOSED                                         (I/O failure or close())
"""
from enum import Enum

class PipelineState(Enum):
    """
    Pipeline lifecycle state.

    CLOSED is terminal.
    """
    AWAITING_HEADER = "AWAITING_HEADER"  # Reading the next 7-byte header
    AWAITING_BODY = "AWAITING_BODY"      # Reading body_len bytes of a data frame
    CLOSED = "CLOSED"                    # Connection released, sends are no-ops
