"""
Shared fixtures and test doubles.
"""

# Standard Library
import asyncio
import os
import sys
from pathlib import Path
from types import SimpleNamespace

# PIP3 modules
import pytest

SRC_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src"))
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

# local repo modules
from config import Settings
from errors import ResponseParseError
from metadata_store import MarkerStore
from models import AnalysisResult, FrameAnalysisResponse, ImportanceAssessment, VideoAsset


class InMemoryMarkerStore(MarkerStore):
    """Comments kept in a dict keyed by resolved path"""

    def __init__(self):
        self.comments = {}
        self.writes = []

    def get_marker(self, path):
        return self.comments.get(str(Path(path).resolve()), "")

    def set_marker(self, path, text):
        self.writes.append((Path(path), text))
        self.comments[str(Path(path).resolve())] = text


class FakeTranscoder:
    """Writes placeholder files instead of running ffmpeg"""

    def __init__(self, duration=12.0, has_audio=True, compress_errors=None, output_size=100):
        self.duration = duration
        self.has_audio = has_audio
        self.compress_errors = list(compress_errors or [])
        self.output_size = output_size
        self.frame_times = []
        self.keyframe_counts = []
        self.audio_extractions = 0
        self.compress_calls = 0
        self.progress = []

    async def probe(self, path):
        path = Path(path)
        return VideoAsset(
            path=path,
            size_bytes=path.stat().st_size,
            duration=self.duration,
            container="mov,mp4,m4a,3gp,3g2,mj2",
            has_audio=self.has_audio,
        )

    async def extract_frame(self, path, timestamp, output):
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(f"frame@{timestamp:.2f}".encode())
        self.frame_times.append(timestamp)
        return output

    async def extract_keyframes(self, path, duration, count, out_dir):
        self.keyframe_counts.append(count)
        interval = duration / count
        return list(await asyncio.gather(*[
            self.extract_frame(path, i * interval, Path(out_dir) / f"frame_{i}.jpg")
            for i in range(count)
        ]))

    async def extract_audio(self, path, output):
        output = Path(output)
        output.write_bytes(b"mp3")
        self.audio_extractions += 1
        return output

    async def compress(self, input_path, output_path, duration, on_progress=None):
        self.compress_calls += 1
        if self.compress_errors:
            raise self.compress_errors.pop(0)
        for percent in (0.0, 48.5, 47.9, 100.0):
            self.progress.append(percent)
            if on_progress is not None:
                on_progress(percent)
        Path(output_path).write_bytes(b"c" * self.output_size)


class FakeAnalyzer:
    """Canned ContentAnalyzer answers, with call recording"""

    def __init__(
        self,
        needs_transcript=False,
        additional_keyframes=0,
        importance=2,
        transcript="we are at the beach",
        short_name="Kids At The Beach!",
        fail_at=None
    ):
        self.needs_transcript = needs_transcript
        self.additional_keyframes = additional_keyframes
        self.importance = importance
        self.transcript = transcript
        self.short_name = short_name
        self.fail_at = fail_at
        self.calls = []
        self.importance_args = None

    def _maybe_fail(self, name):
        self.calls.append(name)
        if self.fail_at == name:
            raise ResponseParseError(f"bad {name} response", raw="{}")

    async def analyze_initial_frame(self, image_bytes, duration):
        self._maybe_fail("initial")
        response = FrameAnalysisResponse(
            description="Two kids on a beach",
            needsTranscript=self.needs_transcript,
            additionalKeyframes=self.additional_keyframes,
        )
        return AnalysisResult.from_response(response, duration)

    async def transcribe_audio(self, audio_path):
        self._maybe_fail("transcribe")
        return self.transcript

    async def describe_frame(self, image_bytes):
        self._maybe_fail("describe")
        return f"scene from {image_bytes.decode()}"

    async def determine_importance(self, initial_description, additional_descriptions, transcript, duration):
        self._maybe_fail("importance")
        self.importance_args = (initial_description, list(additional_descriptions), transcript, duration)
        return ImportanceAssessment(
            importance=self.importance,
            reason="Children playing",
            fullDescription="Two kids build a sandcastle on the beach",
        )

    async def generate_short_name(self, description, importance):
        self._maybe_fail("name")
        return self.short_name


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        reply = self.replies.pop(0)
        if reply is None:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


class FakeTranscriptions:
    def __init__(self, text):
        self.text = text
        self.requests = []

    async def create(self, model, file):
        self.requests.append((model, file.read()))
        return SimpleNamespace(text=self.text)


class FakeOpenAIClient:
    """Same call surface as openai.AsyncOpenAI for the parts we use"""

    def __init__(self, replies=(), transcript_text="hello there"):
        self.completions = FakeCompletions(replies)
        self.transcriptions = FakeTranscriptions(transcript_text)
        self.chat = SimpleNamespace(completions=self.completions)
        self.audio = SimpleNamespace(transcriptions=self.transcriptions)


def make_video(path: Path, size: int) -> Path:
    path.write_bytes(b"v" * size)
    return path


@pytest.fixture
def settings(tmp_path):
    return Settings(
        openai_api_key="test-key",
        scratch_root=tmp_path / "scratch",
        retry_delay=0.0,
    )
