"""
Pending-ack table: msg_id -> monotonic send timestamp.

- An entry is recorded the moment a DATA frame's bytes are fully written
- An entry is removed the moment a matching ACK is decoded
- No expiry: unmatched entries are abandoned with the owning pipeline

Mutated only from the reactor thread, so it carries no lock.
"""

from __future__ import annotations

from observability.metrics import elapsed_ms


class PendingAckTable:
    """
    Map of in-flight DATA frame ids to their send timestamps (ns).

    Ids are caller-assigned and expected unique per outstanding frame.
    Recording an id that is already present overwrites it; the table does
    not deduplicate.
    """

    def __init__(self) -> None:
        self._sent_at_ns: dict[int, int] = {}

    def record(self, msg_id: int, sent_at_ns: int) -> None:
        self._sent_at_ns[msg_id] = sent_at_ns

    def resolve(self, msg_id: int, now_ns: int) -> float | None:
        """
        Remove the entry for msg_id and return elapsed milliseconds.

        Returns None when the id is unknown or already resolved. That is
        not an error, merely unreportable.
        """
        sent_at_ns = self._sent_at_ns.pop(msg_id, None)
        if sent_at_ns is None:
            return None
        return elapsed_ms(sent_at_ns, now_ns)

    def clear(self) -> None:
        self._sent_at_ns.clear()

    def __len__(self) -> int:
        return len(self._sent_at_ns)

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._sent_at_ns
