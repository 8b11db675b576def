"""
PacketStream: variable-length packet framing over a bounded window.

One stream owns one input file and one fixed-capacity bytearray window.
The window is described by three numbers:

- base   : file offset of window[0]
- size   : number of valid bytes in the window
- offset : window offset of the current packet

The only refill trigger is `offset + needed > size`. Refilling first
compacts (copies the unread suffix to the front) and then reads one chunk
of `read_size` bytes behind it. Capacity is `read_size + max_packet_length`,
so a compacted window always has room for one more chunk and memory stays
bounded regardless of file size.

Implementation notes:
- advance() and locate_first_valid_packet() return False instead of
  raising for end of data, truncation and framing corruption; the reason
  is kept in `status`.
- seek_and_resync() raises SeekFailure when the OS refuses the seek.
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Optional

from ..config import PRIMARY_HEADER_SIZE, MergeConfig
from ..dto import Checkpoint, StreamStatus
from ..errors import CannotOpen, SeekFailure
from .packet import PacketView, declared_length, header_fields
from .validator import is_merge_candidate

logger = logging.getLogger(__name__)


class PacketStream:
    """
    Frame packets from one seekable binary file.

    Parameters
    ----------
    name : str
        Label used in diagnostics (usually the file path).
    fileobj : BinaryIO
        Readable, seekable binary file; owned and closed by the stream.
    config : MergeConfig
        Window sizes, length bounds and the validity predicate settings.
    """

    def __init__(self, name: str, fileobj: BinaryIO, config: MergeConfig) -> None:
        self.name = name
        self._file: Optional[BinaryIO] = fileobj
        self._config = config
        self._capacity = config.window_capacity
        self._buf = bytearray(self._capacity)
        self._base = 0
        self._size = 0
        self._offset = 0
        self._length = 0
        self._eof = False
        self.status: StreamStatus = "active"

        self._fill(config.prefetch_size)

    # --- lifecycle ---

    @classmethod
    def open(cls, path: str | os.PathLike, config: MergeConfig) -> "PacketStream":
        """Open `path` and prefetch the first chunk; raises CannotOpen."""
        try:
            fileobj = open(path, "rb")
        except OSError as exc:
            raise CannotOpen(str(path), exc.strerror or str(exc)) from exc
        try:
            return cls(str(path), fileobj, config)
        except OSError as exc:
            fileobj.close()
            raise CannotOpen(str(path), str(exc)) from exc

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    @property
    def closed(self) -> bool:
        return self._file is None

    def __enter__(self) -> "PacketStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- positioning ---

    def locate_first_valid_packet(self) -> bool:
        """
        Frame from byte 0 and skip packets until one passes the validity predicate.

        Returns False (and sets `status`) if the file is smaller than the
        smallest permitted packet, or if no valid packet is found before
        the stream ends.
        """
        if self._size < self._config.min_permitted_size:
            self.status = "too_small"
            logger.warning("File %s is too small, skipping", self.name)
            return False

        found = self._frame()
        while found and not is_merge_candidate(self.current(), self._config):
            found = self.advance()

        if not found:
            if self.status == "exhausted":
                self.status = "no_valid_packet"
            logger.warning("File %s contains no valid packets, skipping", self.name)
            return False
        return True

    def current(self) -> PacketView:
        """View of the packet the stream is positioned on."""
        if self.status != "active":
            raise RuntimeError(f"{self.name}: no current packet (status={self.status})")
        return PacketView(self._buf, self._offset, self._length)

    def advance(self) -> bool:
        """Move past the current packet and frame the next one."""
        if self.status != "active":
            return False
        self._offset += self._length
        return self._frame()

    def checkpoint(self) -> Checkpoint:
        return Checkpoint(file_offset=self._base, window_offset=self._offset)

    def restore(self, checkpoint: Checkpoint) -> bool:
        return self.seek_and_resync(checkpoint.file_offset, checkpoint.window_offset)

    def seek_and_resync(self, file_offset: int, window_offset: int) -> bool:
        """
        Reposition the file at the packet found `window_offset` bytes past
        `file_offset`, reload the window from there and frame that packet.

        The window is reloaded starting at the packet itself, so any
        window offset a checkpoint can hold (up to the window capacity)
        is valid.

        Returns False if less than one minimum-size packet can be reloaded
        there or the packet cannot be framed.
        """
        if self._file is None:
            raise SeekFailure(f"{self.name}: stream is closed")
        target = file_offset + window_offset
        try:
            self._file.seek(target, os.SEEK_SET)
        except (OSError, ValueError) as exc:
            raise SeekFailure(f"Can't set file position in {self.name}") from exc

        self._base = target
        self._size = 0
        self._offset = 0
        self._length = 0
        self._eof = False
        self.status = "active"
        self._fill(self._config.read_size)

        if not self._ensure(self._config.min_permitted_size):
            logger.warning("Can't read enough data from %s after repositioning", self.name)
            self.status = "truncated"
            return False
        return self._frame()

    # --- framing ---

    def _frame(self) -> bool:
        """Frame the packet at the current offset, refilling as needed."""
        self._length = 0
        if not self._ensure(PRIMARY_HEADER_SIZE):
            if self._offset < self._size:
                self.status = "truncated"
                logger.warning("Incomplete packet header at the end of %s", self.name)
            else:
                self.status = "exhausted"
            return False

        length = declared_length(self._buf, self._offset)
        if length > self._config.max_packet_length or length < self._config.min_packet_length:
            self.status = "corrupted"
            logger.warning(
                "Wrong packet size %d in %s at offset %d, abandoning file",
                length, self.name, self._base + self._offset,
            )
            logger.debug("Corrupted header: %s", header_fields(self._buf, self._offset))
            return False

        if not self._ensure(length):
            self.status = "truncated"
            logger.warning(
                "Incomplete packet in the end of %s (%d of %d bytes)",
                self.name, self._size - self._offset, length,
            )
            return False

        self._length = length
        return True

    def _ensure(self, needed: int) -> bool:
        """Make `needed` bytes from the current offset available; False at end of file."""
        while self._offset + needed > self._size:
            if self._eof:
                return False
            self._compact()
            self._fill(self._config.read_size)
        return True

    def _compact(self) -> None:
        if self._offset == 0:
            return
        remaining = self._size - self._offset
        if remaining < 0:
            raise RuntimeError(f"{self.name}: window offset {self._offset} past valid data {self._size}")
        self._buf[:remaining] = self._buf[self._offset:self._size]
        self._base += self._offset
        self._offset = 0
        self._size = remaining

    def _fill(self, want: int) -> None:
        want = min(want, self._capacity - self._size)
        if want <= 0 or self._file is None:
            return
        with memoryview(self._buf) as mv:
            n = self._file.readinto(mv[self._size:self._size + want])
        if not n:
            self._eof = True
        else:
            self._size += n
