"""
Pytest coverage for discovery, ordering, limits and per-file failure isolation.
"""

# Standard Library
import asyncio

# PIP3 modules
import pytest

# local repo modules
from batch import BatchDriver, discover_videos, select_videos
from compression import VideoCompressor
from conftest import FakeTranscoder, InMemoryMarkerStore, make_video
from models import ProcessOutcome


class RecordingPipeline:
    def __init__(self, fail_on=(), skip_on=()):
        self.fail_on = set(fail_on)
        self.skip_on = set(skip_on)
        self.seen = []
        self.resets = 0

    def reset_scratch(self):
        self.resets += 1

    async def process_video(self, path, force=False, target_dir=None):
        self.seen.append((path.name, force, target_dir))
        if path.name in self.fail_on:
            raise RuntimeError("analysis exploded")
        if path.name in self.skip_on:
            return ProcessOutcome.SKIPPED
        return ProcessOutcome.PROCESSED


@pytest.fixture
def five_videos(tmp_path):
    for name, size in [("e.mov", 5), ("a.mov", 1), ("d.MOV", 4), ("b.mov", 2), ("c.mov", 3)]:
        make_video(tmp_path / name, size)
    make_video(tmp_path / "._a.mov", 0)
    make_video(tmp_path / "notes.txt", 1)
    make_video(tmp_path / "f.mp4", 1)
    (tmp_path / "sub.mov").mkdir()
    return tmp_path


def test_discover_orders_by_size_and_filters(five_videos):
    names = [p.name for p in discover_videos(five_videos, '.mov')]
    assert names == ["a.mov", "b.mov", "c.mov", "d.MOV", "e.mov"]
    assert [p.name for p in discover_videos(five_videos, '.mp4')] == ["f.mp4"]


def test_discover_breaks_size_ties_by_name(tmp_path):
    for name in ("b.mov", "a.mov", "c.mov"):
        make_video(tmp_path / name, 3)
    assert [p.name for p in discover_videos(tmp_path, '.mov')] == ["a.mov", "b.mov", "c.mov"]


def test_select_videos():
    files = ["a", "b", "c"]
    assert select_videos(files, 2) == ["a", "b"]
    assert select_videos(files, None) == files
    assert select_videos(files, 10) == files


def test_limit_picks_smallest(five_videos, settings):
    pipeline = RecordingPipeline()
    report = asyncio.run(BatchDriver(settings).run_analysis(five_videos, pipeline, limit=2))

    assert [name for name, _, _ in pipeline.seen] == ["a.mov", "b.mov"]
    assert report.found == 5
    assert report.selected == 2
    assert report.processed == 2
    assert pipeline.resets == 1


def test_failures_do_not_stop_the_batch(five_videos, settings):
    pipeline = RecordingPipeline(fail_on={"b.mov"}, skip_on={"c.mov"})
    report = asyncio.run(BatchDriver(settings).run_analysis(five_videos, pipeline, force=True))

    assert len(pipeline.seen) == 5
    assert all(force for _, force, _ in pipeline.seen)
    assert all(target == five_videos for _, _, target in pipeline.seen)
    assert report.processed == 3
    assert report.skipped == 1
    assert [(p.name, msg) for p, msg in report.failed] == [("b.mov", "analysis exploded")]


def test_empty_directory_reports_no_files(tmp_path, settings):
    pipeline = RecordingPipeline()
    report = asyncio.run(BatchDriver(settings).run_analysis(tmp_path, pipeline))

    assert report.no_files
    assert pipeline.seen == []
    assert pipeline.resets == 0


def test_mp4_extension(five_videos, settings):
    pipeline = RecordingPipeline()
    report = asyncio.run(BatchDriver(settings).run_analysis(five_videos, pipeline, extension='.mp4'))
    assert [name for name, _, _ in pipeline.seen] == ["f.mp4"]
    assert report.extension == '.mp4'


def test_run_comments(five_videos, settings):
    markers = InMemoryMarkerStore()
    report = asyncio.run(BatchDriver(settings).run_comments(five_videos, markers, '.mov'))

    assert report.processed == 5
    assert len(markers.writes) == 5
    assert all(text.startswith("File processed at: ") for _, text in markers.writes)


def test_compression_batch_clobber(five_videos, settings):
    transcoder = FakeTranscoder(output_size=1)
    compressor = VideoCompressor(transcoder, settings, show_progress=False)
    (five_videos / "temp_output").mkdir()
    (five_videos / "temp_output" / "stale.mp4").write_bytes(b"old")

    report = asyncio.run(BatchDriver(settings).run_compression(
        five_videos, compressor, limit=2, clobber=True
    ))

    assert report.processed == 2
    assert not (five_videos / "a.mov").exists()
    assert not (five_videos / "b.mov").exists()
    assert (five_videos / "a.mp4").exists()
    assert (five_videos / "b.mp4").exists()
    assert (five_videos / "c.mov").exists()
    assert not (five_videos / "temp_output").exists()


def test_compression_batch_skips_done_files(five_videos, settings):
    (five_videos / "compressed").mkdir()
    make_video(five_videos / "compressed" / "a.mp4", 1)
    transcoder = FakeTranscoder(output_size=1)
    compressor = VideoCompressor(transcoder, settings, show_progress=False)

    report = asyncio.run(BatchDriver(settings).run_compression(five_videos, compressor))

    assert report.skipped == 1
    assert report.processed == 4
    assert transcoder.compress_calls == 4
