"""
Constructor record rendering.

The record is a fixed 384-byte big-endian layout consumed by a downstream
cataloguing system. Apart from the run statistics it carries a handful of
single-byte flag constants whose meaning belongs to the consumer; they are
reproduced as given. Every byte not listed below is zero.
"""

from __future__ import annotations

from typing import Optional, Tuple

from ..config import TIME_SIZE

CONSTRUCTOR_RECORD_SIZE = 384

# (offset, value) for the constant flag bytes
_FLAG_BYTES: Tuple[Tuple[int, int], ...] = (
    (0x33, 1),
    (0x93, 1),
    (0xA3, 1),
    (0xF7, 2),
    (0x167, 1),
)

_FIRST_TIME_OFFSETS = (0x50, 0x16C)
_LAST_TIME_OFFSETS = (0x58, 0x174)
_COUNT_OFFSET = 0x74

_ZERO_TIME = bytes(TIME_SIZE)


def render(
    first_timestamp: Optional[bytes],
    last_timestamp: Optional[bytes],
    total_count: int,
) -> bytes:
    """
    Render run statistics into the 384-byte constructor record.

    Missing timestamps (nothing emitted) are written as zeros. The count is
    stored as an unsigned 32-bit big-endian integer.
    """
    if not 0 <= total_count <= 0xFFFFFFFF:
        raise ValueError(f"total_count out of range: {total_count}")

    record = bytearray(CONSTRUCTOR_RECORD_SIZE)
    for offset, value in _FLAG_BYTES:
        record[offset] = value

    first = _time_bytes(first_timestamp)
    last = _time_bytes(last_timestamp)
    for offset in _FIRST_TIME_OFFSETS:
        record[offset:offset + TIME_SIZE] = first
    for offset in _LAST_TIME_OFFSETS:
        record[offset:offset + TIME_SIZE] = last

    record[_COUNT_OFFSET:_COUNT_OFFSET + 4] = total_count.to_bytes(4, "big")
    return bytes(record)


def _time_bytes(raw: Optional[bytes]) -> bytes:
    if raw is None:
        return _ZERO_TIME
    if len(raw) != TIME_SIZE:
        raise ValueError(f"timestamp must be {TIME_SIZE} bytes, got {len(raw)}")
    return bytes(raw)
