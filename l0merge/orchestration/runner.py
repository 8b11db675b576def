"""
Run orchestration: one merge over a set of input files.

Flow
----
1. Open every input and locate its first valid packet (pre-scan).
2. Order the surviving streams by first packet timestamp.
3. Resolve / emit each stream in order through the primary sink.
4. Flush the primary and side-channel sinks.
5. Render the constructor record, if a destination was given.

Opening, seeking and writing failures abort the run with a MergeError;
everything else is logged and the run carries on with the next stream.
"""

from __future__ import annotations

import logging
import os
from typing import BinaryIO, Callable, List, Optional, Sequence

from ..config import MergeConfig
from ..dto import MergeSummary, StreamResult
from ..errors import CannotOpen, NoValidInput, TooManyInputs, WriteFailure
from ..intake.packet_stream import PacketStream
from ..pipeline import constructor
from ..pipeline.emitter import BlockSink
from ..pipeline.ordering import order_streams
from ..pipeline.resolver import MergeResolver
from ..ports import TimeCodeTranslator
from ..timecode import format_time, make_translator

logger = logging.getLogger(__name__)


def run_merge(
    inputs: Sequence[str | os.PathLike],
    *,
    output: BinaryIO,
    config: Optional[MergeConfig] = None,
    constructor_output: Optional[BinaryIO] = None,
    side_channel_output: Optional[BinaryIO] = None,
    translator: Optional[TimeCodeTranslator] = None,
    progress: Optional[Callable[[StreamResult], None]] = None,
) -> MergeSummary:
    """
    Merge `inputs` into `output` and return the run summary.

    Parameters
    ----------
    inputs : Sequence[str | os.PathLike]
        Capture files, in command-line order (used to break start-time ties).
    output : BinaryIO
        Primary destination for the merged packet stream.
    config : Optional[MergeConfig]
        Run configuration; defaults are used when omitted.
    constructor_output : Optional[BinaryIO]
        Destination for the 384-byte constructor record.
    side_channel_output : Optional[BinaryIO]
        Destination for side-channel packets.
    translator : Optional[TimeCodeTranslator]
        Timestamp renderer for log messages; chosen from config.time_code when omitted.
    progress : Optional[Callable[[StreamResult], None]]
        Called once per processed stream.

    Raises
    ------
    MergeError
        CannotOpen, TooManyInputs, NoValidInput, SeekFailure or WriteFailure.
    """
    cfg = config or MergeConfig()
    tc = translator if translator is not None else make_translator(cfg.time_code)

    if len(inputs) > cfg.max_input_files:
        raise TooManyInputs(f"Too many input files ({len(inputs)} > {cfg.max_input_files})")

    streams = _open_streams(inputs, cfg)
    try:
        ordered = order_streams(streams)
        if not ordered:
            raise NoValidInput("No valid input files provided")

        sink = BlockSink(output, block_size=cfg.write_block_size, name="output")
        side_sink = None
        if side_channel_output is not None:
            side_sink = BlockSink(side_channel_output, block_size=cfg.write_block_size, name="side channel")

        resolver = MergeResolver(config=cfg, sink=sink, side_sink=side_sink, translator=tc)
        summary = resolver.merge(ordered, progress=progress)

        sink.flush()
        if side_sink is not None:
            side_sink.flush()
    finally:
        for stream in streams:
            stream.close()

    _log_summary(summary, tc)

    if constructor_output is not None:
        _write_constructor(constructor_output, summary)

    return summary


# === Helpers ===


def _open_streams(inputs: Sequence[str | os.PathLike], cfg: MergeConfig) -> List[PacketStream]:
    """Open and pre-scan every input; streams without a valid packet are closed and left out."""
    streams: List[PacketStream] = []
    try:
        for path in inputs:
            try:
                stream = PacketStream.open(path, cfg)
            except CannotOpen as exc:
                if not cfg.skip_unopenable_inputs:
                    raise
                logger.warning("%s, skipping", exc)
                continue

            if stream.locate_first_valid_packet():
                logger.info("Reading %s", stream.name)
                streams.append(stream)
            else:
                stream.close()
    except BaseException:
        for stream in streams:
            stream.close()
        raise
    return streams


def _log_summary(summary: MergeSummary, tc: TimeCodeTranslator) -> None:
    logger.info("starttime=%s", format_time(tc, summary.first_timestamp))
    logger.info("stoptime =%s", format_time(tc, summary.last_timestamp))
    if summary.first_timestamp is not None and summary.last_timestamp is not None:
        start = tc.to_seconds(summary.first_timestamp)
        stop = tc.to_seconds(summary.last_timestamp)
        if start is not None and stop is not None:
            logger.info("granule length =%f", stop - start)
    logger.info(
        "%d packets written, %d gaps, %d side-channel packets",
        summary.total_count, len(summary.gaps), summary.side_channel_count,
    )


def _write_constructor(dest: BinaryIO, summary: MergeSummary) -> None:
    record = constructor.render(summary.first_timestamp, summary.last_timestamp, summary.total_count)
    logger.info("Writing constructor record")
    try:
        dest.write(record)
        dest.flush()
    except OSError as exc:
        raise WriteFailure("Can't write constructor record") from exc
