import asyncio

import pytest

from conftest import BASE, FakeHttp, encrypt, segment_body
from livestream_dl.exceptions import WriteError
from livestream_dl.media.acquisition import AcquisitionPipeline, SegmentStatus
from livestream_dl.models.segment import InitSection, KeyReference, SegmentEntry
from livestream_dl.models.stats import CaptureStats
from livestream_dl.network.retry import backoff_delay
from livestream_dl.storage.key_cache import KeyCache
from livestream_dl.storage.ledger import SegmentLedger
from livestream_dl.storage.writer import SegmentWriter

KEY = bytes(range(16))


def entry(sequence, **kwargs) -> SegmentEntry:
    return SegmentEntry(
        sequence=sequence, uri=f"{BASE}seg{sequence}.ts", duration=2.0, **kwargs
    )


def make_pipeline(http, tmp_path, attempts=4, max_workers=4, writer=None):
    ledger = SegmentLedger(tmp_path)
    writer = writer or SegmentWriter(tmp_path, ledger)
    key_cache = KeyCache(http, attempts=attempts, base_delay=0.0, max_delay=0.0)
    pipeline = AcquisitionPipeline(
        http,
        key_cache,
        writer,
        max_workers=max_workers,
        attempts=attempts,
        base_delay=0.0,
        max_delay=0.0,
        stats=CaptureStats(),
    )
    return pipeline, ledger


class FailingWriter:
    async def write(self, stream_id, entry, data):
        raise WriteError("disk full")


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_errors_then_success(self, http, tmp_path):
        http.add(BASE + "seg0.ts", 503, 503, 503, segment_body(0))
        pipeline, ledger = make_pipeline(http, tmp_path)

        [outcome] = await pipeline.run("main", [entry(0)])

        assert outcome.status is SegmentStatus.WRITTEN
        assert outcome.path.read_bytes() == segment_body(0)
        assert http.calls[BASE + "seg0.ts"] == 4
        assert ledger.is_confirmed("main", 0)

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_missing(self, http, tmp_path):
        http.add(BASE + "seg0.ts", 503)
        pipeline, ledger = make_pipeline(http, tmp_path)

        [outcome] = await pipeline.run("main", [entry(0)])

        assert outcome.status is SegmentStatus.MISSING
        assert "503" in outcome.reason
        assert http.calls[BASE + "seg0.ts"] == 4
        assert not ledger.is_confirmed("main", 0)
        assert pipeline.stats.segments_failed == 1

    @pytest.mark.asyncio
    async def test_permanent_error_is_not_retried(self, http, tmp_path):
        http.add(BASE + "seg0.ts", 403)
        pipeline, _ = make_pipeline(http, tmp_path)

        [outcome] = await pipeline.run("main", [entry(0)])

        assert outcome.status is SegmentStatus.MISSING
        assert http.calls[BASE + "seg0.ts"] == 1

    @pytest.mark.parametrize(
        ("attempt", "expected"), [(1, 0.5), (2, 1.0), (3, 2.0), (4, 4.0), (10, 5.0)]
    )
    def test_backoff_is_capped_exponential(self, attempt, expected):
        assert backoff_delay(attempt, 0.5, 5.0) == expected


class TestAcquisition:
    @pytest.mark.asyncio
    async def test_outcomes_in_input_order(self, http, tmp_path):
        for sequence in range(6):
            http.add(f"{BASE}seg{sequence}.ts", segment_body(sequence))
        pipeline, ledger = make_pipeline(http, tmp_path, max_workers=2)

        outcomes = await pipeline.run("main", [entry(s) for s in range(6)])

        assert [o.entry.sequence for o in outcomes] == list(range(6))
        assert all(o.status is SegmentStatus.WRITTEN for o in outcomes)
        assert ledger.confirmed_count("main") == 6
        assert pipeline.stats.segments_written == 6

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, tmp_path):
        in_flight = 0
        peak = 0

        class CountingHttp(FakeHttp):
            async def fetch(self, url, byte_range=None):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                try:
                    return await super().fetch(url, byte_range)
                finally:
                    in_flight -= 1

        http = CountingHttp(delay=0.02)
        for sequence in range(8):
            http.add(f"{BASE}seg{sequence}.ts", segment_body(sequence))
        pipeline, _ = make_pipeline(http, tmp_path, max_workers=3)

        await pipeline.run("main", [entry(s) for s in range(8)])

        assert peak == 3

    @pytest.mark.asyncio
    async def test_encrypted_segments_share_one_key_fetch(self, http, tmp_path):
        key_ref = KeyReference(uri=BASE + "k1")
        for sequence in range(3):
            iv = sequence.to_bytes(16, "big")
            http.add(f"{BASE}seg{sequence}.ts", encrypt(segment_body(sequence), KEY, iv))
        http.add(BASE + "k1", KEY)
        pipeline, _ = make_pipeline(http, tmp_path)

        outcomes = await pipeline.run("main", [entry(s, key=key_ref) for s in range(3)])

        assert [o.path.read_bytes() for o in outcomes] == [segment_body(s) for s in range(3)]
        assert http.calls[BASE + "k1"] == 1

    @pytest.mark.asyncio
    async def test_key_failure_marks_segment_missing(self, http, tmp_path):
        http.add(BASE + "seg0.ts", b"x" * 32)
        http.add(BASE + "k1", 403)
        pipeline, _ = make_pipeline(http, tmp_path)

        [outcome] = await pipeline.run("main", [entry(0, key=KeyReference(uri=BASE + "k1"))])

        assert outcome.status is SegmentStatus.MISSING

    @pytest.mark.asyncio
    async def test_init_section_prepended_and_fetched_once(self, http, tmp_path):
        init = InitSection(uri=BASE + "init.mp4")
        init_bytes = b"\x00\x00\x00\x18ftypiso6" + bytes(16)
        http.add(BASE + "init.mp4", init_bytes)
        for sequence in range(3):
            http.add(f"{BASE}seg{sequence}.ts", b"\x00\x00\x00\x10moof" + bytes(8))
        pipeline, _ = make_pipeline(http, tmp_path)

        outcomes = await pipeline.run("main", [entry(s, init_section=init) for s in range(3)])

        assert http.calls[BASE + "init.mp4"] == 1
        for outcome in outcomes:
            assert outcome.path.suffix == ".mp4"
            assert outcome.path.read_bytes().startswith(init_bytes)

    @pytest.mark.asyncio
    async def test_write_error_propagates(self, http, tmp_path):
        for sequence in range(3):
            http.add(f"{BASE}seg{sequence}.ts", segment_body(sequence))
        pipeline, _ = make_pipeline(http, tmp_path, writer=FailingWriter())

        with pytest.raises(WriteError):
            await pipeline.run("main", [entry(s) for s in range(3)])


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_cancels_queued_tasks(self, tmp_path):
        http = FakeHttp(delay=0.05)
        for sequence in range(6):
            http.add(f"{BASE}seg{sequence}.ts", segment_body(sequence))
        pipeline, ledger = make_pipeline(http, tmp_path, max_workers=1)

        async def stop_soon():
            await asyncio.sleep(0.02)
            pipeline.stop()

        outcomes, _ = await asyncio.gather(
            pipeline.run("main", [entry(s) for s in range(6)]), stop_soon()
        )

        statuses = [o.status for o in outcomes]
        assert statuses[0] is SegmentStatus.WRITTEN
        assert SegmentStatus.CANCELLED in statuses
        assert ledger.confirmed_count("main") < 6
