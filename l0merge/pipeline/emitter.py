"""
Block-granular output sink.

Purpose
-------
Accumulate decided packets in a fixed-size buffer and write them out one
full block at a time. A packet that does not fit in the remaining space
is split at the block seam: the filled block is written and the rest of
the packet starts the next block.

Behavior
--------
- `write(data)` -> copies into the buffer; writes a block each time it fills
- `flush()`     -> writes the trailing partial block (no-op when empty)

Every physical write except the last is exactly `block_size` bytes, and
the total written equals the sum of everything handed to `write`.
"""

from __future__ import annotations

from typing import BinaryIO

from ..errors import WriteFailure
from ..ports import BytesLike, PacketSinkPort


class BlockSink(PacketSinkPort):
    """
    Buffered writer over one binary file.

    Parameters
    ----------
    fileobj : BinaryIO
        Destination; not closed by the sink.
    block_size : int
        Size of every physical write except the final flush.
    name : str
        Label used in error messages.
    """

    def __init__(self, fileobj: BinaryIO, *, block_size: int, name: str = "output") -> None:
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self._file = fileobj
        self._block_size = int(block_size)
        self._buf = bytearray(self._block_size)
        self._size = 0
        self.name = name
        self.bytes_written = 0
        self.writes = 0

    @property
    def pending(self) -> int:
        """Bytes accepted but not yet physically written."""
        return self._size

    # --- emission ---

    def write(self, data: BytesLike) -> None:
        """Accept one packet's bytes."""
        view = memoryview(data)
        pos = 0
        total = len(view)
        while self._size + (total - pos) >= self._block_size:
            rest = self._block_size - self._size
            self._buf[self._size:self._block_size] = view[pos:pos + rest]
            pos += rest
            self._size = self._block_size
            self._write_out(self._block_size)
            self._size = 0
        tail = total - pos
        if tail:
            self._buf[self._size:self._size + tail] = view[pos:total]
            self._size += tail

    def flush(self) -> None:
        """Write the trailing partial block, then flush the file object."""
        if self._size:
            self._write_out(self._size)
            self._size = 0
        try:
            self._file.flush()
        except OSError as exc:
            raise WriteFailure(f"Can't flush {self.name}") from exc

    # --- helpers ---

    def _write_out(self, n: int) -> None:
        try:
            written = self._file.write(bytes(self._buf[:n]))
        except (OSError, ValueError) as exc:
            raise WriteFailure(f"Can't write to {self.name}") from exc
        if written is not None and written != n:
            raise WriteFailure(f"Short write to {self.name}: {written} of {n} bytes")
        self.bytes_written += n
        self.writes += 1
