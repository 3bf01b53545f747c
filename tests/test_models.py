"""
Pytest coverage for response validation and record formatting.
"""

# Standard Library
from pathlib import Path

# PIP3 modules
import pytest
from pydantic import ValidationError

# local repo modules
from models import (
    AnalysisResult,
    BatchReport,
    CompressionReport,
    FrameAnalysisResponse,
    ImportanceAssessment,
    SummaryRecord,
)


def _response(needs_transcript=False, keyframes=0):
    return FrameAnalysisResponse(
        description="  A dog in a garden  ",
        needsTranscript=needs_transcript,
        additionalKeyframes=keyframes,
    )


@pytest.mark.parametrize("duration,flag,expected", [
    (3.0, False, False),
    (5.0, False, False),
    (5.01, False, True),
    (60.0, False, True),
    (2.0, True, True),
])
def test_long_videos_always_need_transcript(duration, flag, expected):
    result = AnalysisResult.from_response(_response(needs_transcript=flag), duration)
    assert result.needs_transcript is expected
    assert result.duration == duration
    assert result.description == "A dog in a garden"


def test_custom_transcript_threshold():
    result = AnalysisResult.from_response(_response(), 8.0, transcript_threshold=10.0)
    assert result.needs_transcript is False


@pytest.mark.parametrize("keyframes", [-1, 5, "2", 1.5, True])
def test_additional_keyframes_must_be_small_int(keyframes):
    with pytest.raises(ValidationError):
        FrameAnalysisResponse(description="x", needsTranscript=False, additionalKeyframes=keyframes)


def test_needs_transcript_must_be_bool():
    with pytest.raises(ValidationError):
        FrameAnalysisResponse(description="x", needsTranscript="yes", additionalKeyframes=0)


@pytest.mark.parametrize("importance", [0, 10, -3, "2", 2.5])
def test_importance_out_of_range_is_rejected(importance):
    with pytest.raises(ValidationError):
        ImportanceAssessment(importance=importance, reason="r", fullDescription="d")


def test_importance_accepts_alias_and_field_name():
    by_alias = ImportanceAssessment(importance=1, reason="kids", fullDescription="A party")
    by_name = ImportanceAssessment(importance=9, reason="blurry", full_description="Pocket shot")
    assert by_alias.full_description == "A party"
    assert by_name.importance == 9


def test_analysis_result_is_frozen():
    result = AnalysisResult.from_response(_response(), 3.0)
    with pytest.raises(ValidationError):
        result.needs_transcript = True


def _record(tmp_path, transcript, additional=()):
    analysis = AnalysisResult.from_response(_response(), 12.0)
    assessment = ImportanceAssessment(importance=2, reason="Family pet", fullDescription="A dog digs a hole")
    return SummaryRecord.build(
        tmp_path / "IMG_0001.MOV",
        tmp_path / "2_dog-digging-ab12.MOV",
        analysis,
        assessment,
        list(additional),
        transcript,
    )


def test_summary_record_fields(tmp_path):
    record = _record(tmp_path, "good boy", ["dog runs"])
    data = record.to_dict()
    assert data['filename'] == "2_dog-digging-ab12.MOV"
    assert data['original_name'] == "IMG_0001.MOV"
    assert data['importance'] == {'rating': 2, 'reason': "Family pet"}
    assert data['description'] == "A dog digs a hole"
    assert data['initial_description'] == "A dog in a garden"
    assert data['additional_descriptions'] == ["dog runs"]
    assert data['transcript'] == "good boy"
    assert data['duration_seconds'] == 12.0
    assert Path(data['path']).name == "2_dog-digging-ab12.MOV"


def test_summary_text_distinguishes_skipped_and_silent_transcripts(tmp_path):
    skipped = _record(tmp_path, None).to_text()
    silent = _record(tmp_path, "").to_text()
    spoken = _record(tmp_path, "hello", ["a", "b"]).to_text()

    assert "Transcript" not in skipped
    assert "Transcript: (no speech)" in silent
    assert "Transcript:\nhello" in spoken
    assert "Additional scenes:\na\nb" in spoken
    assert "Importance: 2/9 - Family pet" in spoken
    assert spoken.rstrip().endswith("-" * 80)


def test_compression_report_growth_is_reported():
    smaller = CompressionReport(original_size=1000, compressed_size=250)
    larger = CompressionReport(original_size=1000, compressed_size=1100)
    assert smaller.reduction_percent == pytest.approx(75.0)
    assert "75.0% smaller" in smaller.describe()
    assert larger.reduction_percent == pytest.approx(-10.0)
    assert "10.0% larger" in larger.describe()
    assert CompressionReport(0, 10).reduction_percent == 0.0


def test_batch_report_summary(tmp_path):
    report = BatchReport(directory=tmp_path, extension='.mov', found=5, selected=2, processed=1, skipped=1)
    assert not report.no_files
    assert report.summary() == "1 processed, 1 skipped, 0 failed (2 of 5 .mov files selected)"
    assert BatchReport(directory=tmp_path, extension='.mov').no_files
