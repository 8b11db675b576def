"""
Hexagonal interfaces (Ports) for the merge pipeline.

These define the boundary between the merge logic and its collaborators.
Keep them small and implementation-agnostic so they're easy to fake in tests.
"""

from __future__ import annotations

from typing import Optional, Protocol, Union

BytesLike = Union[bytes, bytearray, memoryview]


class PacketSinkPort(Protocol):
    """
    Receives the bytes of packets that have already been decided on.
    Implementations must not reorder bytes or split them across sinks.
    """

    def write(self, data: BytesLike) -> None:
        """Accept one packet's bytes."""
        ...

    def flush(self) -> None:
        """Push out whatever is still buffered; called once at the end of a run."""
        ...


class TimeCodeTranslator(Protocol):
    """
    Converts the raw 8-byte packet timestamp for diagnostics.
    Results are only ever logged; ordering always compares raw bytes.
    """

    def to_calendar(self, raw: bytes) -> Optional[str]:
        """Human-readable calendar string, or None if the code cannot be decoded."""
        ...

    def to_seconds(self, raw: bytes) -> Optional[float]:
        """Continuous seconds since the translator's epoch, or None if unsupported."""
        ...
