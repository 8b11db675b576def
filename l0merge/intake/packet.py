"""
Packet header extraction.

A packet is never copied out of its stream window. PacketView reads the
few header fields the merge needs straight from the window bytes:

  bytes 0-1 : version (3 bits) | type (1) | secondary header flag (1) | apid (11)
  bytes 2-3 : sequence flags (2 bits) | sequence count (14)
  bytes 4-5 : length field L, total packet length = L + 7
  bytes 6-13: timestamp, compared as raw big-endian bytes

A view is valid until its stream advances or repositions.
"""

from __future__ import annotations

from typing import Dict, Union

from ..config import PRIMARY_HEADER_SIZE, TIME_OFFSET, TIME_SIZE

Buffer = Union[bytes, bytearray]

_LENGTH_OFFSET = 4
_COUNT_OFFSET = 2


def get_int16(buf: Buffer, offset: int) -> int:
    return (buf[offset] << 8) | buf[offset + 1]


def get_int32(buf: Buffer, offset: int) -> int:
    return (get_int16(buf, offset) << 16) | get_int16(buf, offset + 2)


def declared_length(buf: Buffer, offset: int) -> int:
    """Total packet length announced by the header at `offset`."""
    return get_int16(buf, offset + _LENGTH_OFFSET) + PRIMARY_HEADER_SIZE + 1


def header_fields(buf: Buffer, offset: int) -> Dict[str, int]:
    """Decode every header field present in the first 14 bytes; for debug output."""
    fields = {
        "version": buf[offset] >> 5,
        "type": (buf[offset] >> 4) & 0x1,
        "apid": get_int16(buf, offset) & 0x7FF,
        "sequence_flags": buf[offset + _COUNT_OFFSET] >> 6,
        "sequence_count": get_int16(buf, offset + _COUNT_OFFSET) & 0x3FFF,
        "length": declared_length(buf, offset),
    }
    if len(buf) >= offset + TIME_OFFSET + TIME_SIZE:
        fields["day"] = get_int16(buf, offset + TIME_OFFSET)
        fields["millisecond"] = get_int32(buf, offset + TIME_OFFSET + 2)
        fields["microsecond"] = get_int16(buf, offset + TIME_OFFSET + 6)
    return fields


class PacketView:
    """Zero-copy view of one framed packet inside a window buffer."""

    __slots__ = ("_buf", "_offset", "_length")

    def __init__(self, buf: Buffer, offset: int, length: int) -> None:
        self._buf = buf
        self._offset = offset
        self._length = length

    @property
    def version(self) -> int:
        return self._buf[self._offset] >> 5

    @property
    def apid(self) -> int:
        return get_int16(self._buf, self._offset) & 0x7FF

    @property
    def sequence_flags(self) -> int:
        return self._buf[self._offset + _COUNT_OFFSET] >> 6

    @property
    def sequence_count(self) -> int:
        return get_int16(self._buf, self._offset + _COUNT_OFFSET) & 0x3FFF

    @property
    def length(self) -> int:
        return self._length

    @property
    def timestamp(self) -> bytes:
        # bytes compare lexicographically as unsigned, i.e. as a big-endian integer
        start = self._offset + TIME_OFFSET
        return bytes(self._buf[start:start + TIME_SIZE])

    @property
    def raw(self) -> memoryview:
        return memoryview(self._buf)[self._offset:self._offset + self._length]

    def __bytes__(self) -> bytes:
        return bytes(self._buf[self._offset:self._offset + self._length])

    def __repr__(self) -> str:
        return (
            f"PacketView(apid={self.apid}, count={self.sequence_count}, "
            f"length={self._length}, time={self.timestamp.hex()})"
        )
