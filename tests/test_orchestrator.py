import asyncio
from pathlib import Path

import pytest

from conftest import (
    BASE,
    MASTER,
    PLAYLIST_URL,
    FakeHttp,
    media_playlist,
    segment_body,
    serve_segments,
)
from livestream_dl.core.orchestrator import CaptureState, Orchestrator, resolve_renditions
from livestream_dl.exceptions import PlaylistGoneError, SequenceResetError, WriteError
from livestream_dl.manifest.client import ManifestClient
from livestream_dl.manifest.parser import parse_manifest
from livestream_dl.models.segment import Rendition
from livestream_dl.models.stats import CaptureStatus
from livestream_dl.storage.ledger import SegmentLedger
from livestream_dl.storage.writer import SEGMENTS_DIRNAME, parse_segment_name

MAIN = [Rendition(stream_id="main", uri=PLAYLIST_URL)]


def written_names(config, stream_id="main"):
    stream_dir = Path(config.output_dir) / SEGMENTS_DIRNAME / stream_id
    return sorted(
        (n.group, n.sequence)
        for n in map(parse_segment_name, stream_dir.iterdir())
        if n is not None
    )


async def capture(config, http, renditions=MAIN):
    orchestrator = Orchestrator.create(config, renditions, http)
    report = await asyncio.wait_for(orchestrator.run(), timeout=10)
    return orchestrator, report


class TestLiveCapture:
    @pytest.mark.asyncio
    async def test_discontinuity_appended_to_live_window(self, config, http):
        http.add(
            PLAYLIST_URL,
            media_playlist(range(5)).encode(),
            media_playlist(range(7), discontinuity_before=(5,), ended=True).encode(),
        )
        serve_segments(http, range(7))

        orchestrator, report = await capture(config, http)

        assert report.status is CaptureStatus.SUCCESS
        assert orchestrator.state is CaptureState.DONE
        assert all(http.calls[f"{BASE}seg{s}.ts"] == 1 for s in range(7))
        assert written_names(config) == [(0, 0), (0, 1), (0, 2), (0, 3), (0, 4), (1, 5), (1, 6)]
        assert report.stats.polls == 2

    @pytest.mark.asyncio
    async def test_written_union_equals_observed_union(self, config, http):
        http.add(
            PLAYLIST_URL,
            media_playlist(range(0, 4)).encode(),
            media_playlist(range(2, 7)).encode(),
            media_playlist(range(5, 9)).encode(),
            media_playlist(range(7, 10), ended=True).encode(),
        )
        serve_segments(http, range(10))

        _, report = await capture(config, http)

        assert report.status is CaptureStatus.SUCCESS
        assert {s for _, s in written_names(config)} == set(range(10))
        assert sorted(p.name for p in report.written["main"]) == sorted(
            f"d0000000000_s{s:010}.ts" for s in range(10)
        )

    @pytest.mark.asyncio
    async def test_missing_segment_retried_on_next_poll(self, config, http):
        http.add(
            PLAYLIST_URL,
            media_playlist(range(3)).encode(),
            media_playlist(range(3), ended=True).encode(),
        )
        serve_segments(http, (0, 2))
        http.add(BASE + "seg1.ts", 503, 503, 503, segment_body(1))

        _, report = await capture(config, http)

        assert report.status is CaptureStatus.SUCCESS
        assert http.calls[BASE + "seg1.ts"] == 4
        assert {s for _, s in written_names(config)} == {0, 1, 2}

    @pytest.mark.asyncio
    async def test_segment_that_never_arrives_is_reported(self, config, http):
        http.add(PLAYLIST_URL, media_playlist(range(3), ended=True).encode())
        serve_segments(http, (0, 2))
        http.add(BASE + "seg1.ts", 503)

        orchestrator, report = await capture(config, http)

        assert report.status is CaptureStatus.PARTIAL
        assert [(m.stream_id, m.sequence) for m in report.missing] == [("main", 1)]
        assert not orchestrator.ledger.is_confirmed("main", 1)
        assert {s for _, s in written_names(config)} == {0, 2}

    @pytest.mark.asyncio
    async def test_segments_leaving_window_are_reported(self, config, http):
        http.add(
            PLAYLIST_URL,
            media_playlist(range(2)).encode(),
            media_playlist(range(10, 12), ended=True).encode(),
        )
        serve_segments(http, (0, 10, 11))
        http.add(BASE + "seg1.ts", 503)

        _, report = await capture(config.model_copy(update={"missing_retry_polls": 5}), http)

        assert report.status is CaptureStatus.PARTIAL
        assert [m.sequence for m in report.missing] == [1]
        assert "window" in report.missing[0].reason


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_sequence_reset(self, config, http):
        http.add(
            PLAYLIST_URL,
            media_playlist(range(100, 103)).encode(),
            media_playlist(range(3)).encode(),
        )
        serve_segments(http, list(range(3)) + list(range(100, 103)))

        _, report = await capture(config, http)

        assert report.status is CaptureStatus.FATAL
        assert isinstance(report.error, SequenceResetError)
        assert {s for _, s in written_names(config)} == {100, 101, 102}

    @pytest.mark.asyncio
    async def test_unreachable_playlist(self, config, http):
        http.add(PLAYLIST_URL, 503)
        _, report = await capture(config, http)
        assert report.status is CaptureStatus.FATAL
        assert http.calls[PLAYLIST_URL] == config.manifest_attempts

    @pytest.mark.asyncio
    async def test_vanished_playlist_ends_stream(self, config, http):
        http.add(PLAYLIST_URL, media_playlist(range(2)).encode(), 404)
        serve_segments(http, range(2))

        _, report = await capture(config, http)

        assert report.status is CaptureStatus.SUCCESS
        assert report.stats.segments_written == 2

    @pytest.mark.asyncio
    async def test_vanished_playlist_fatal_policy(self, config, http):
        http.add(PLAYLIST_URL, media_playlist(range(2)).encode(), 404)
        serve_segments(http, range(2))

        _, report = await capture(
            config.model_copy(update={"playlist_gone_policy": "fatal"}), http
        )

        assert report.status is CaptureStatus.FATAL
        assert isinstance(report.error, PlaylistGoneError)

    @pytest.mark.asyncio
    async def test_truncated_playlist_is_polled_again(self, config, http):
        http.add(
            PLAYLIST_URL,
            media_playlist(range(2)).encode(),
            b"#EXTM3U\n#EXT-X-TARGETDURATION:2\n#EXT-X-MEDIA-SEQUENCE:0\n#EXTINF:abc",
            media_playlist(range(4), ended=True).encode(),
        )
        serve_segments(http, range(4))

        _, report = await capture(config, http)

        assert report.status is CaptureStatus.SUCCESS
        assert http.calls[PLAYLIST_URL] == 3
        assert {s for _, s in written_names(config)} == {0, 1, 2, 3}

    @pytest.mark.asyncio
    async def test_write_failure_stops_other_streams(self, config, http):
        class SlowAudioHttp(FakeHttp):
            async def fetch(self, url, byte_range=None):
                if "/audio/aud" in url:
                    await asyncio.sleep(0.2)
                return await super().fetch(url, byte_range)

        http = SlowAudioHttp()
        audio_url = BASE + "audio/en.m3u8"
        http.add(PLAYLIST_URL, media_playlist(range(3)).encode())
        http.add(audio_url, media_playlist(range(6), prefix="aud").encode())
        serve_segments(http, range(3))
        for s in range(6):
            http.add(f"{BASE}audio/aud{s}.ts", segment_body(s, "aud"))

        # A file where the main stream directory should be makes its writes fail
        segments_dir = Path(config.output_dir) / SEGMENTS_DIRNAME
        segments_dir.mkdir(parents=True)
        (segments_dir / "main").write_bytes(b"")

        renditions = MAIN + [Rendition(stream_id="audio_English", uri=audio_url)]
        orchestrator, report = await capture(config, http, renditions)
        await asyncio.sleep(0.4)

        assert report.status is CaptureStatus.FATAL
        assert isinstance(report.error, WriteError)
        assert not report.written["audio_English"]
        assert not (segments_dir / "audio_English").exists()
        assert orchestrator.ledger.outstanding("audio_English")


class TestResume:
    @pytest.mark.asyncio
    async def test_confirmed_segments_not_downloaded_again(self, config, http):
        http.add(PLAYLIST_URL, media_playlist(range(6), ended=True).encode())
        serve_segments(http, range(6))
        http.add(BASE + "seg4.ts", 503)

        _, first = await capture(config, http)
        assert first.status is CaptureStatus.PARTIAL

        # Simulated restart: fresh components over the same output directory
        http.add(BASE + "seg4.ts", segment_body(4))
        calls_before = dict(http.calls)
        _, second = await capture(config, http)

        assert second.status is CaptureStatus.SUCCESS
        fetched_again = {
            s
            for s in range(6)
            if http.calls[f"{BASE}seg{s}.ts"] > calls_before.get(f"{BASE}seg{s}.ts", 0)
        }
        assert fetched_again == {4}
        assert {s for _, s in written_names(config)} == set(range(6))

    @pytest.mark.asyncio
    async def test_resume_after_crash_midway(self, config, http):
        output_dir = Path(config.output_dir)
        ledger = SegmentLedger(output_dir)
        manifest = parse_manifest(media_playlist(range(3)), PLAYLIST_URL)
        for entry in ledger.diff("main", manifest):
            await ledger.confirm("main", entry, output_dir / "x")

        http.add(PLAYLIST_URL, media_playlist(range(5), ended=True).encode())
        serve_segments(http, range(5))

        _, report = await capture(config, http)

        assert report.status is CaptureStatus.SUCCESS
        assert [http.calls[f"{BASE}seg{s}.ts"] for s in range(5)] == [0, 0, 0, 1, 1]


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_interrupts_idle_wait(self, config, http):
        http.add(PLAYLIST_URL, media_playlist(range(2), target=30).encode())
        serve_segments(http, range(2))
        slow = config.model_copy(update={"poll_interval_factor": 1.0})
        orchestrator = Orchestrator.create(slow, MAIN, http)

        async def stop_when_idle():
            while orchestrator.state is not CaptureState.IDLE:
                await asyncio.sleep(0.01)
            orchestrator.stop()

        report, _ = await asyncio.wait_for(
            asyncio.gather(orchestrator.run(), stop_when_idle()), timeout=5
        )

        assert report.cancelled
        assert report.status is CaptureStatus.SUCCESS
        assert report.stats.segments_written == 2


class TestResolveRenditions:
    @pytest.mark.asyncio
    async def test_media_playlist_is_main_stream(self, config, http):
        http.add(PLAYLIST_URL, media_playlist(range(2)).encode())
        renditions = await resolve_renditions(ManifestClient(http), PLAYLIST_URL, config)
        assert renditions == [Rendition(stream_id="main", uri=PLAYLIST_URL)]

    @pytest.mark.asyncio
    async def test_master_playlist_uses_selection(self, config, http):
        http.add(BASE + "master.m3u8", MASTER.encode())
        selected = config.model_copy(update={"video": "v0", "alternates": []})

        renditions = await resolve_renditions(
            ManifestClient(http), BASE + "master.m3u8", selected
        )

        assert [r.uri for r in renditions] == [BASE + "low/index.m3u8"]

    @pytest.mark.asyncio
    async def test_chooser_is_consulted(self, config, http):
        http.add(BASE + "master.m3u8", MASTER.encode())
        chosen = config.model_copy(update={"choose_stream": True})

        renditions = await resolve_renditions(
            ManifestClient(http),
            BASE + "master.m3u8",
            chosen,
            chooser=lambda catalog: ("v1", ["a1"]),
        )

        assert [r.stream_id for r in renditions] == ["main", "audio_Deutsch"]

    @pytest.mark.asyncio
    async def test_alternate_streams_captured_side_by_side(self, config, http):
        audio_url = BASE + "audio/en.m3u8"
        http.add(PLAYLIST_URL, media_playlist(range(3), ended=True).encode())
        http.add(audio_url, media_playlist(range(3), ended=True, prefix="aud").encode())
        serve_segments(http, range(3))
        for s in range(3):
            http.add(f"{BASE}audio/aud{s}.ts", segment_body(s, "aud"))

        renditions = MAIN + [Rendition(stream_id="audio_English", uri=audio_url)]
        _, report = await capture(config, http, renditions)

        assert report.status is CaptureStatus.SUCCESS
        assert len(written_names(config, "audio_English")) == 3
        assert len(written_names(config)) == 3
