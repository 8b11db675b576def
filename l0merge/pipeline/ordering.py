"""
Stream ordering.

Streams are processed oldest first: ascending by the timestamp of each
stream's first valid packet (already buffered by the pre-scan). Streams
that did not survive initialization are dropped. The sort is stable, so
equal start times keep their input order.
"""

from __future__ import annotations

from typing import Iterable, List

from ..intake.packet_stream import PacketStream


def order_streams(streams: Iterable[PacketStream]) -> List[PacketStream]:
    """Return the positioned streams sorted by first packet timestamp."""
    ready = [s for s in streams if s.status == "active"]
    return sorted(ready, key=lambda s: s.current().timestamp)
