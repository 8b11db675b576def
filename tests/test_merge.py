"""
Tests for overlap / gap resolution across capture files.
"""
import io
import logging

import pytest

from l0merge import (
    CannotOpen,
    MergeConfig,
    MergeCursor,
    MergeResolver,
    NoValidInput,
    PacketStream,
    SeekFailure,
    TooManyInputs,
    WriteFailure,
    run_merge,
)

from capture_helpers import (
    SMALL_CONFIG,
    assert_merged_invariants,
    make_packet,
    make_run,
    split_packets,
    ts,
    write_capture,
)


def _merge(tmp_path, *captures, config=SMALL_CONFIG, **kwargs):
    paths = [write_capture(tmp_path / f"in{i}.dat", pkts) for i, pkts in enumerate(captures)]
    out = io.BytesIO()
    summary = run_merge(paths, output=out, config=config, **kwargs)
    return out.getvalue(), summary


def _seqs(data: bytes):
    return [seq for _, seq, _ in split_packets(data)]


def _gap_warnings(caplog):
    return [r for r in caplog.records if r.levelno == logging.WARNING and r.getMessage().startswith("Gap")]


class TestSingleStream:

    def test_every_valid_packet_unchanged(self, tmp_path):
        valid = make_run(0, 0, 12)
        capture = list(valid)
        capture.insert(3, make_packet(apid=5, seq=99, time=2))
        capture.insert(8, make_packet(apid=64, seq=98, time=6, size=300))

        data, summary = _merge(tmp_path, capture)

        assert data == b"".join(valid)
        assert summary.total_count == 12
        assert summary.first_timestamp == ts(0)
        assert summary.last_timestamp == ts(11)
        assert summary.streams[0].disposition == "first"
        assert summary.gaps == []

    def test_first_packet_sequence_is_not_a_gap(self, tmp_path):
        data, summary = _merge(tmp_path, make_run(500, 0, 6, per_tick=3))

        assert _seqs(data) == list(range(500, 506))
        assert summary.gaps == []


class TestOverlap:

    def test_fully_overlapped_second_file(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="l0merge")
        first = make_run(0, 0, 10)
        second = make_run(2, 2, 5)

        data, summary = _merge(tmp_path, first, second)

        assert data == b"".join(first)
        assert summary.streams[1].disposition == "fully_overlapped"
        assert summary.streams[1].packets_written == 0
        assert "fully overlapped" in caplog.text

    def test_identical_copy_contributes_nothing(self, tmp_path):
        first = make_run(0, 0, 10, per_tick=2)

        data, summary = _merge(tmp_path, first, list(first))

        assert data == b"".join(first)
        assert [s.disposition for s in summary.streams] == ["first", "fully_overlapped"]

    def test_partial_overlap_resumes_without_duplicates(self, tmp_path):
        data, summary = _merge(tmp_path, make_run(0, 0, 10), make_run(5, 5, 10))

        assert _seqs(data) == list(range(15))
        assert summary.streams[1].disposition == "resumed"
        assert summary.gaps == []

    def test_resume_inside_shared_tick(self, tmp_path):
        # first ends after seq 17 at time 4, where seqs 16..19 share the tick
        first = make_run(0, 0, 18, per_tick=4)
        second = make_run(0, 0, 40, per_tick=4)[10:]

        data, summary = _merge(tmp_path, first, second)

        assert _seqs(data) == list(range(40))
        assert summary.streams[1].disposition == "resumed"
        assert summary.gaps == []
        assert_merged_invariants(data)

    def test_shared_tick_already_written(self, tmp_path):
        first = make_run(0, 0, 20, per_tick=4)
        second = make_run(0, 0, 40, per_tick=4)[12:]

        data, summary = _merge(tmp_path, first, second)

        assert _seqs(data) == list(range(40))
        assert summary.gaps == []

    def test_input_order_does_not_matter(self, tmp_path):
        late = make_run(5, 5, 10)
        early = make_run(0, 0, 10)

        data, summary = _merge(tmp_path, late, early)

        assert _seqs(data) == list(range(15))
        assert summary.streams[0].name.endswith("in1.dat")


class TestGaps:

    def test_one_packet_gap_between_files(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="l0merge")
        first = make_run(0, 0, 10)
        second = make_run(11, 11, 10)

        data, summary = _merge(tmp_path, first, second)

        assert data == b"".join(first) + b"".join(second)
        assert len(summary.gaps) == 1
        gap = summary.gaps[0]
        assert gap.kind == "between_files"
        assert gap.from_timestamp == ts(9)
        assert gap.to_timestamp == ts(11)
        assert (gap.expected_sequence_count, gap.found_sequence_count) == (10, 11)
        assert len(_gap_warnings(caplog)) == 1
        assert summary.streams[1].disposition == "resumed_after_gap"

    def test_contiguous_files_are_not_a_gap(self, tmp_path):
        data, summary = _merge(tmp_path, make_run(0, 0, 10), make_run(10, 10, 10))

        assert _seqs(data) == list(range(20))
        assert summary.gaps == []

    def test_missing_tail_of_shared_tick(self, tmp_path):
        # second has seqs 16, 17 at time 4 but is missing 18..23
        first = make_run(0, 0, 18, per_tick=4)
        full = make_run(0, 0, 40, per_tick=4)
        second = full[14:18] + full[24:]

        data, summary = _merge(tmp_path, first, second)

        assert _seqs(data) == list(range(18)) + list(range(24, 40))
        assert len(summary.gaps) == 1
        assert summary.gaps[0].kind == "between_files"
        assert summary.gaps[0].to_timestamp == ts(6)
        assert_merged_invariants(data, summary.gaps)

    def test_boundary_tick_without_successor_at_end(self, tmp_path):
        first = make_run(0, 0, 18, per_tick=4)
        second = make_run(0, 0, 40, per_tick=4)[14:17]

        data, summary = _merge(tmp_path, first, second)

        assert _seqs(data) == list(range(18))
        assert summary.streams[1].disposition == "fully_overlapped"


class TestWraparound:

    def test_overlap_across_wrap(self, tmp_path):
        first = make_run(16380, 0, 4)
        second = make_run(16382, 2, 5)

        data, summary = _merge(tmp_path, first, second)

        assert _seqs(data) == [16380, 16381, 16382, 16383, 0, 1, 2]
        assert summary.gaps == []

    def test_wrap_inside_shared_tick(self, tmp_path):
        first = make_run(16380, 0, 4, per_tick=4)
        second = make_run(16382, 0, 6, per_tick=8)

        data, summary = _merge(tmp_path, first, second)

        assert _seqs(data) == [16380, 16381, 16382, 16383, 0, 1, 2, 3]
        assert summary.gaps == []
        assert summary.streams[1].disposition == "resumed"

    def test_adjacent_files_across_wrap(self, tmp_path):
        data, summary = _merge(tmp_path, make_run(16379, 0, 5), make_run(0, 5, 5))

        assert _seqs(data) == [16379, 16380, 16381, 16382, 16383, 0, 1, 2, 3, 4]
        assert summary.gaps == []

    def test_long_run_wraps_without_gaps(self, tmp_path):
        data, summary = _merge(tmp_path, make_run(16000, 0, 800, per_tick=5))

        assert summary.total_count == 800
        assert summary.gaps == []
        assert_merged_invariants(data)


class TestInternalGaps:

    def _holed(self):
        full = make_run(0, 0, 30, per_tick=3)
        # seqs 6, 7, 8 share time 2; drop 7
        return full[:7] + full[8:]

    def test_next_file_fills_internal_gap(self, tmp_path):
        holed = self._holed()
        filler = make_run(0, 0, 30, per_tick=3)[3:]

        data, summary = _merge(tmp_path, holed, filler)

        assert _seqs(data) == list(range(30))
        assert summary.gaps == []
        assert summary.streams[0].abandoned_for_next
        assert summary.streams[0].packets_written == 7

    def test_internal_gap_reported_when_no_earlier_file(self, tmp_path, caplog):
        caplog.set_level(logging.INFO, logger="l0merge")
        holed = self._holed()
        later = make_run(0, 0, 45, per_tick=3)[15:]

        data, summary = _merge(tmp_path, holed, later)

        assert _seqs(data) == [s for s in range(45) if s != 7]
        assert [g.kind for g in summary.gaps] == ["inside_file"]
        assert summary.gaps[0].to_timestamp == ts(2)
        assert len(_gap_warnings(caplog)) == 1
        assert_merged_invariants(data, summary.gaps)

    def test_out_of_order_packet_is_dropped(self, tmp_path):
        capture = make_run(0, 0, 6)
        capture.insert(4, make_packet(seq=77, time=1))

        data, summary = _merge(tmp_path, capture)

        assert _seqs(data) == list(range(6))
        assert summary.streams[0].out_of_order_dropped == 1
        assert_merged_invariants(data)


class TestDamagedInputs:

    def test_corrupted_stream_does_not_spoil_others(self, tmp_path):
        bad = bytearray(make_packet(seq=15, time=15))
        bad[4:6] = b"\xff\xff"
        middle = make_run(10, 10, 5) + [bytes(bad)] + make_run(16, 16, 5)

        data, summary = _merge(tmp_path, make_run(0, 0, 10), middle, make_run(15, 15, 10))

        assert _seqs(data) == list(range(25))
        assert summary.streams[1].status == "corrupted"
        assert summary.streams[1].packets_written == 5
        assert summary.gaps == []

    def test_truncated_stream_keeps_complete_packets(self, tmp_path):
        truncated = make_run(0, 0, 6) + [make_packet(seq=6, time=6)[:50]]

        data, summary = _merge(tmp_path, truncated, make_run(6, 6, 4))

        assert _seqs(data) == list(range(10))
        assert summary.streams[0].status == "truncated"

    def test_unusable_files_are_skipped(self, tmp_path):
        data, summary = _merge(
            tmp_path,
            [make_packet()[:40]],
            [make_packet(apid=9, seq=i, time=i) for i in range(3)],
            make_run(0, 0, 3),
        )

        assert _seqs(data) == [0, 1, 2]
        assert len(summary.streams) == 1


class TestRunOutcomes:

    def test_constructor_record_matches_output(self, tmp_path):
        record = io.BytesIO()
        data, summary = _merge(
            tmp_path, make_run(0, 100, 10), make_run(5, 105, 10), constructor_output=record,
        )

        raw = record.getvalue()
        assert len(raw) == 384
        assert int.from_bytes(raw[0x74:0x78], "big") == len(split_packets(data)) == 15
        assert raw[0x50:0x58] == ts(100)
        assert raw[0x58:0x60] == ts(114)

    def test_side_channel_packets_are_forwarded(self, tmp_path):
        side_pkts = [make_packet(apid=957, seq=i, time=i, size=100) for i in range(3)]
        capture = make_run(0, 0, 6)
        for i, pkt in enumerate(side_pkts):
            capture.insert(2 * i + 1, pkt)
        side = io.BytesIO()

        data, summary = _merge(tmp_path, capture, side_channel_output=side)

        assert _seqs(data) == list(range(6))
        assert side.getvalue() == b"".join(side_pkts)
        assert summary.side_channel_count == 3

    def test_no_valid_input(self, tmp_path):
        with pytest.raises(NoValidInput):
            _merge(tmp_path, [make_packet(apid=1)])

    def test_no_inputs_at_all(self):
        with pytest.raises(NoValidInput):
            run_merge([], output=io.BytesIO(), config=SMALL_CONFIG)

    def test_too_many_inputs(self, tmp_path):
        config = MergeConfig(**{**SMALL_CONFIG.model_dump(), "max_input_files": 1})
        with pytest.raises(TooManyInputs):
            _merge(tmp_path, make_run(0, 0, 2), make_run(2, 2, 2), config=config)

    def test_missing_input_is_fatal(self, tmp_path):
        with pytest.raises(CannotOpen):
            run_merge([tmp_path / "nope.dat"], output=io.BytesIO(), config=SMALL_CONFIG)

    def test_missing_input_can_be_skipped(self, tmp_path):
        config = MergeConfig(**{**SMALL_CONFIG.model_dump(), "skip_unopenable_inputs": True})
        good = write_capture(tmp_path / "good.dat", make_run(0, 0, 3))
        out = io.BytesIO()

        summary = run_merge([tmp_path / "nope.dat", good], output=out, config=config)

        assert summary.total_count == 3


class TestResumeAfterRefill:

    def test_mixed_sizes_resume_deep_in_window(self, tmp_path):
        config = MergeConfig(
            prefetch_size=700,
            read_size=1024,
            max_packet_length=1024,
            write_block_size=1000,
            permitted_packet_sizes=(276, 300, 1000),
        )
        sizes = [276, 1000, 300] * 4
        mixed = [make_packet(seq=i, time=i, size=s) for i, s in enumerate(sizes)]

        data, summary = _merge(tmp_path, mixed[:6], mixed, config=config)

        assert _seqs(data) == list(range(12))
        assert data == b"".join(mixed)
        assert [s.status for s in summary.streams] == ["exhausted", "exhausted"]
        assert summary.streams[1].disposition == "resumed"
        assert summary.gaps == []


class _SeekBreaks(io.BytesIO):
    """Reads normally until repositioned, then refuses the seek or returns no data."""

    def __init__(self, data: bytes, mode: str):
        super().__init__(data)
        self._mode = mode
        self._moved = False

    def seek(self, *args, **kwargs):
        if self._mode == "refuse":
            raise OSError("device does not support seeking")
        self._moved = True
        return super().seek(*args, **kwargs)

    def readinto(self, b):
        if self._moved:
            return 0
        return super().readinto(b)


class TestResolverDirect:

    @pytest.mark.parametrize("mode", ["refuse", "short"])
    def test_seek_failure_at_resume_is_fatal(self, mode):
        out = io.BytesIO()
        first = PacketStream("a", io.BytesIO(b"".join(make_run(0, 0, 4))), SMALL_CONFIG)
        second = PacketStream("b", _SeekBreaks(b"".join(make_run(5, 5, 4)), mode), SMALL_CONFIG)
        assert first.locate_first_valid_packet()
        assert second.locate_first_valid_packet()

        resolver = MergeResolver(config=SMALL_CONFIG, sink=_PlainSink(out))
        with pytest.raises(SeekFailure):
            resolver.merge([first, second])

        assert resolver.cursor.total_count == 4
        assert resolver.cursor.last_sequence_count == 3
        assert _seqs(out.getvalue()) == [0, 1, 2, 3]
        assert first.closed and second.closed

    def test_cursor_not_advanced_when_write_fails(self):
        class FailingSink:
            def write(self, data):
                raise WriteFailure("boom")

            def flush(self):
                pass

        cursor = MergeCursor()
        stream = PacketStream("mem", io.BytesIO(b"".join(make_run(0, 0, 3))), SMALL_CONFIG)
        assert stream.locate_first_valid_packet()
        resolver = MergeResolver(config=SMALL_CONFIG, sink=FailingSink(), cursor=cursor)

        with pytest.raises(WriteFailure):
            resolver.process(stream)

        assert cursor.total_count == 0
        assert cursor.last_timestamp is None
        assert stream.closed

    def test_cursor_tracks_emissions(self):
        out = io.BytesIO()
        streams = []
        for name, run in (("a", make_run(0, 0, 4)), ("b", make_run(2, 2, 4))):
            s = PacketStream(name, io.BytesIO(b"".join(run)), SMALL_CONFIG)
            assert s.locate_first_valid_packet()
            streams.append(s)

        resolver = MergeResolver(config=SMALL_CONFIG, sink=_PlainSink(out))
        summary = resolver.merge(streams)

        assert resolver.cursor.first_timestamp == ts(0)
        assert resolver.cursor.last_timestamp == ts(5)
        assert resolver.cursor.last_sequence_count == 5
        assert summary.total_count == 6
        assert _seqs(out.getvalue()) == list(range(6))


class _PlainSink:
    def __init__(self, fileobj):
        self._file = fileobj

    def write(self, data):
        self._file.write(bytes(data))

    def flush(self):
        pass
