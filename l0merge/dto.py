"""
Data Transfer Objects (DTOs) used across the merge pipeline.

These are intentionally small and independent of any I/O. The only
mutable one is MergeCursor, the single piece of process-wide merge state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Literal, Optional

SEQUENCE_MODULUS = 1 << 14

StreamStatus = Literal[
    "active",           # positioned on a framed packet
    "exhausted",        # clean EOF at a packet boundary
    "truncated",        # EOF in the middle of a packet
    "corrupted",        # declared length out of bounds
    "too_small",        # file shorter than the smallest permitted packet
    "no_valid_packet",  # framing worked but nothing passed the validity predicate
]

Disposition = Literal[
    "first",             # first stream in order, emitted without redundancy check
    "resumed",           # resumed at the exact sequence successor
    "resumed_after_gap",  # resumed at a later timestamp, packets missing in between
    "fully_overlapped",  # nothing new; contributed zero packets
]

GapKind = Literal["between_files", "inside_file"]


# === Stream positioning ===
@dataclass(frozen=True)
class Checkpoint:
    """Saved stream position: file offset of the window start plus offset within the window."""
    file_offset: int
    window_offset: int

    @property
    def absolute(self) -> int:
        return self.file_offset + self.window_offset


# === Merge state ===
@dataclass
class MergeCursor:
    """Last emitted identity; updated only after a packet is handed to the sink."""
    last_timestamp: Optional[bytes] = None
    last_sequence_count: int = 0
    first_timestamp: Optional[bytes] = None
    total_count: int = 0

    @property
    def has_emitted(self) -> bool:
        return self.last_timestamp is not None

    @property
    def expected_sequence_count(self) -> int:
        return (self.last_sequence_count + 1) % SEQUENCE_MODULUS

    def commit(self, timestamp: bytes, sequence_count: int) -> None:
        if self.first_timestamp is None:
            self.first_timestamp = timestamp
        self.last_timestamp = timestamp
        self.last_sequence_count = sequence_count
        self.total_count += 1


# === Reporting ===
@dataclass(frozen=True)
class GapReport:
    kind: GapKind
    stream: str
    from_timestamp: bytes
    to_timestamp: bytes
    expected_sequence_count: int
    found_sequence_count: int


@dataclass
class StreamResult:
    name: str
    status: StreamStatus
    disposition: Optional[Disposition] = None
    packets_written: int = 0
    side_channel_packets: int = 0
    out_of_order_dropped: int = 0
    abandoned_for_next: bool = False  # stopped early so the next stream fills an internal gap


@dataclass
class MergeSummary:
    first_timestamp: Optional[bytes]
    last_timestamp: Optional[bytes]
    total_count: int
    side_channel_count: int = 0
    streams: List[StreamResult] = field(default_factory=list)
    gaps: List[GapReport] = field(default_factory=list)
