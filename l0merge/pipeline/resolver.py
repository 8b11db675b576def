"""
Overlap / gap resolution across time-sorted streams.

Each stream goes through these states, in order:

  FIRST             the very first stream; nothing to compare against,
                    every valid packet is emitted.
  SKIP-REDUNDANT    advance past packets older than the last emitted
                    timestamp. Running out here means the stream is fully
                    overlapped.
  RESOLVE-BOUNDARY  among packets sharing the last emitted timestamp, look
                    for the sequence successor (last + 1 mod 16384). If the
                    timestamp moves on without it, those packets were
                    already written; resume at the first later packet
                    (via checkpoint / restore) and report a gap when the
                    sequence does not continue there.
  EMIT              write every remaining valid packet. A sequence break at
                    an unchanged timestamp is an internal gap: if the next
                    stream starts earlier it gets the chance to fill it and
                    this stream is abandoned, otherwise the gap is reported.

The timestamp narrows the search; the wrapping sequence counter is the
de-duplication key once timestamps tie.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Sequence

from ..config import MergeConfig
from ..dto import Disposition, GapKind, GapReport, MergeCursor, MergeSummary, StreamResult
from ..errors import SeekFailure
from ..intake.packet import PacketView
from ..intake.packet_stream import PacketStream
from ..intake.validator import is_merge_candidate, is_side_channel
from ..ports import PacketSinkPort, TimeCodeTranslator
from ..timecode import HexTimeCode, format_time

logger = logging.getLogger(__name__)


class MergeResolver:
    """
    Drive time-sorted streams into one sink, one stream at a time.

    Parameters
    ----------
    config : MergeConfig
        Validity predicate and side-channel settings.
    sink : PacketSinkPort
        Primary output.
    side_sink : Optional[PacketSinkPort]
        Auxiliary output for side-channel packets; None disables forwarding.
    cursor : Optional[MergeCursor]
        Shared merge state; a fresh one is created when omitted.
    translator : Optional[TimeCodeTranslator]
        Renders timestamps in log messages only.
    """

    def __init__(
        self,
        *,
        config: MergeConfig,
        sink: PacketSinkPort,
        side_sink: Optional[PacketSinkPort] = None,
        cursor: Optional[MergeCursor] = None,
        translator: Optional[TimeCodeTranslator] = None,
    ) -> None:
        self._config = config
        self._sink = sink
        self._side_sink = side_sink
        self.cursor = cursor if cursor is not None else MergeCursor()
        self._translator = translator if translator is not None else HexTimeCode()
        self.gaps: List[GapReport] = []
        self.results: List[StreamResult] = []
        self.side_channel_count = 0

    # --- run ---

    def merge(
        self,
        streams: Sequence[PacketStream],
        progress: Optional[Callable[[StreamResult], None]] = None,
    ) -> MergeSummary:
        """Process already ordered streams and return the run summary."""
        for idx, stream in enumerate(streams):
            next_stream = streams[idx + 1] if idx + 1 < len(streams) else None
            result = self.process(stream, next_stream)
            if progress is not None:
                progress(result)
        return self.summary()

    def summary(self) -> MergeSummary:
        return MergeSummary(
            first_timestamp=self.cursor.first_timestamp,
            last_timestamp=self.cursor.last_timestamp,
            total_count=self.cursor.total_count,
            side_channel_count=self.side_channel_count,
            streams=list(self.results),
            gaps=list(self.gaps),
        )

    def process(self, stream: PacketStream, next_stream: Optional[PacketStream] = None) -> StreamResult:
        """Resolve one stream against everything emitted so far, then emit the rest of it."""
        logger.info("Processing %s", stream.name)
        result = StreamResult(name=stream.name, status=stream.status)
        try:
            if stream.status != "active":
                result.disposition = "fully_overlapped"
            elif not self.cursor.has_emitted:
                result.disposition = "first"
            else:
                result.disposition = self._resolve(stream)

            if result.disposition != "fully_overlapped":
                self._emit(stream, next_stream, result)
        finally:
            result.status = stream.status
            stream.close()

        self.results.append(result)
        logger.info("Finished %s, %d packets written", stream.name, result.packets_written)
        return result

    # --- SKIP-REDUNDANT / RESOLVE-BOUNDARY ---

    def _resolve(self, stream: PacketStream) -> Disposition:
        last = self.cursor.last_timestamp
        expected = self.cursor.expected_sequence_count

        if not self._skip_before(stream, last):
            logger.warning("File %s is fully overlapped", stream.name)
            return "fully_overlapped"

        pkt = stream.current()
        if pkt.timestamp == last:
            pkt = self._scan_boundary(stream, last, expected)
            if pkt is None:
                logger.warning(
                    "File %s is fully overlapped, no successor of sequence count %d",
                    stream.name, self.cursor.last_sequence_count,
                )
                return "fully_overlapped"
            if pkt.timestamp == last:
                logger.info("Resuming %s at sequence count %d", stream.name, expected)
                return "resumed"
            logger.info(
                "Packets of %s at %s were already written",
                stream.name, format_time(self._translator, last),
            )

        # Positioned on the first packet strictly after `last`: resume there.
        # The window is reloaded from the file so emission starts with the
        # resume packet at window offset 0 and a full chunk ahead of it.
        checkpoint = stream.checkpoint()
        if not stream.restore(checkpoint):
            raise SeekFailure(f"Can't read enough data from {stream.name} at offset {checkpoint.absolute}")

        pkt = stream.current()
        if pkt.sequence_count != expected:
            self._report_gap("between_files", stream, last, pkt.timestamp, expected, pkt.sequence_count)
            return "resumed_after_gap"
        logger.info("Resuming %s at %s", stream.name, format_time(self._translator, pkt.timestamp))
        return "resumed"

    def _skip_before(self, stream: PacketStream, last: bytes) -> bool:
        """Advance to the first valid packet not older than `last`; False if none."""
        pkt = stream.current()
        while not is_merge_candidate(pkt, self._config) or pkt.timestamp < last:
            if not stream.advance():
                return False
            pkt = stream.current()
        return True

    def _scan_boundary(self, stream: PacketStream, last: bytes, expected: int) -> Optional[PacketView]:
        """
        Walk packets sharing `last` until the sequence successor or a later
        timestamp shows up. Returns None if the stream ends first.
        """
        pkt = stream.current()
        while True:
            if is_merge_candidate(pkt, self._config):
                ts = pkt.timestamp
                if ts > last:
                    return pkt
                if ts == last and pkt.sequence_count == expected:
                    return pkt
            if not stream.advance():
                return None
            pkt = stream.current()

    # --- EMIT ---

    def _emit(self, stream: PacketStream, next_stream: Optional[PacketStream], result: StreamResult) -> None:
        logger.info("Writing packets from %s", stream.name)
        next_first = None
        if next_stream is not None and next_stream.status == "active":
            next_first = next_stream.current().timestamp

        while True:
            pkt = stream.current()
            if is_merge_candidate(pkt, self._config):
                if not self._accept(stream, pkt, next_first, result):
                    break
            elif self._side_sink is not None and is_side_channel(pkt, self._config):
                self._side_sink.write(pkt.raw)
                result.side_channel_packets += 1
                self.side_channel_count += 1
            if not stream.advance():
                break

    def _accept(
        self,
        stream: PacketStream,
        pkt: PacketView,
        next_first: Optional[bytes],
        result: StreamResult,
    ) -> bool:
        """Emit `pkt` unless it is out of order; False means stop reading this stream."""
        cursor = self.cursor
        ts = pkt.timestamp
        count = pkt.sequence_count

        if cursor.has_emitted:
            last = cursor.last_timestamp
            if ts < last:
                result.out_of_order_dropped += 1
                logger.debug(
                    "Dropping packet %d of %s: time %s precedes %s",
                    count, stream.name,
                    format_time(self._translator, ts), format_time(self._translator, last),
                )
                return True
            expected = cursor.expected_sequence_count
            if ts == last and count != expected:
                if next_first is not None and next_first < ts:
                    logger.warning("Gap inside %s, trying to fix with next file", stream.name)
                    result.abandoned_for_next = True
                    return False
                self._report_gap("inside_file", stream, last, ts, expected, count)

        self._sink.write(pkt.raw)
        cursor.commit(ts, count)
        result.packets_written += 1
        return True

    def _report_gap(
        self,
        kind: GapKind,
        stream: PacketStream,
        from_ts: bytes,
        to_ts: bytes,
        expected: int,
        found: int,
    ) -> None:
        where = "between files" if kind == "between_files" else f"inside {stream.name}"
        logger.warning(
            "Gap %s from %s to %s (expected sequence count %d, found %d)",
            where,
            format_time(self._translator, from_ts),
            format_time(self._translator, to_ts),
            expected, found,
        )
        self.gaps.append(
            GapReport(
                kind=kind,
                stream=stream.name,
                from_timestamp=from_ts,
                to_timestamp=to_ts,
                expected_sequence_count=expected,
                found_sequence_count=found,
            )
        )
