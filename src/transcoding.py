"""
Frame, Audio and Transcode Module (FFmpeg)

This module is responsible for:
1. Probing videos for duration, container and streams (ffprobe)
2. Extracting a single probe frame or N evenly spaced keyframes
3. Extracting the audio track for transcription
4. Re-encoding a video with the fixed compression profile, reporting progress
5. Classifying ffmpeg failures into error kinds for the retry policy

Every subprocess runs under a watchdog: when it exceeds the configured
timeout it receives SIGTERM, then SIGKILL after a grace period.
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from config import Settings
from errors import TranscoderError, TranscoderErrorKind
from models import VideoAsset

logger = logging.getLogger(__name__)


# H.264/AAC in an MP4 with the index up front: plays everywhere, streams early
COMPRESSION_PROFILE = [
    '-c:v', 'libx264',
    '-preset', 'medium',
    '-crf', '23',
    '-c:a', 'aac',
    '-b:a', '192k',
    '-movflags', '+faststart',
]

INPUT_ERROR_MARKERS = (
    'no such file or directory',
    'invalid data found when processing input',
    'does not contain any stream',
    'permission denied',
    'moov atom not found',
)

ENCODER_ERROR_MARKERS = (
    'unknown encoder',
    'error while opening encoder',
    'encoder not found',
    'codec not currently supported',
    'conversion failed',
    'error initializing output stream',
)

ProgressCallback = Callable[[float], None]


def check_ffmpeg() -> bool:
    """Check if FFmpeg and FFprobe are available"""
    return shutil.which('ffmpeg') is not None and shutil.which('ffprobe') is not None


def classify_error(stderr: str, transient_patterns: List[str]) -> TranscoderErrorKind:
    """
    Map ffmpeg stderr output to an error kind.

    Transient patterns are checked first so that a read failure on a
    disconnecting drive is never mistaken for a bad input.
    """
    text = (stderr or '').lower()
    if any(pattern.lower() in text for pattern in transient_patterns):
        return TranscoderErrorKind.TRANSIENT_IO
    if any(marker in text for marker in INPUT_ERROR_MARKERS):
        return TranscoderErrorKind.INPUT
    if any(marker in text for marker in ENCODER_ERROR_MARKERS):
        return TranscoderErrorKind.ENCODER
    return TranscoderErrorKind.UNKNOWN


def _tail(text: str, lines: int = 5) -> str:
    return ' | '.join(line.strip() for line in text.strip().splitlines()[-lines:])


def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """
    Turn one `-progress` line into a percentage.

    Returns None for lines that carry no position. The value is bounded to
    0-100 but may step backwards slightly between updates.
    """
    key, _, value = line.strip().partition('=')
    if key == 'progress' and value == 'end':
        return 100.0
    # out_time_ms is in microseconds too (ffmpeg naming quirk)
    if key not in ('out_time_us', 'out_time_ms') or duration <= 0:
        return None
    try:
        seconds = int(value) / 1_000_000
    except ValueError:
        return None
    return max(0.0, min(100.0, seconds / duration * 100))


class FFmpegTranscoder:
    """
    Async wrapper around the ffmpeg and ffprobe executables.
    """

    def __init__(self, settings: Settings, ffmpeg: str = 'ffmpeg', ffprobe: str = 'ffprobe'):
        """
        Initialize the transcoder.

        Args:
            settings: Timeouts and error-classification patterns
            ffmpeg: ffmpeg executable
            ffprobe: ffprobe executable
        """
        self.settings = settings
        self.ffmpeg = ffmpeg
        self.ffprobe = ffprobe

    async def _terminate(self, proc: asyncio.subprocess.Process):
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.settings.kill_grace)
        except asyncio.TimeoutError:
            logger.warning(f"Process {proc.pid} ignored SIGTERM, killing it")
            try:
                proc.kill()
            except ProcessLookupError:
                return
            await proc.wait()

    async def _run(
        self,
        cmd: List[str],
        on_stdout_line: Optional[Callable[[str], None]] = None
    ) -> Tuple[str, str]:
        """
        Run a command under the watchdog.

        Args:
            cmd: Command and arguments
            on_stdout_line: Called with each stdout line as it arrives

        Returns:
            Tuple of (stdout, stderr) text
        """
        name = Path(cmd[0]).name
        logger.debug(f"CMD: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscoderError(f"{name} not found: {e}", kind=TranscoderErrorKind.ENCODER) from e

        stdout_lines: List[str] = []

        async def read_stdout():
            async for raw in proc.stdout:
                line = raw.decode('utf-8', errors='replace').rstrip()
                if on_stdout_line is not None:
                    on_stdout_line(line)
                else:
                    stdout_lines.append(line)

        stderr_task = asyncio.ensure_future(proc.stderr.read())
        try:
            await asyncio.wait_for(
                asyncio.gather(read_stdout(), proc.wait()),
                timeout=self.settings.transcode_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"{name} timed out after {self.settings.transcode_timeout:.0f}s, terminating")
            await self._terminate(proc)
            stderr_task.cancel()
            raise TranscoderError(
                f"{name} timed out after {self.settings.transcode_timeout:.0f}s",
                kind=TranscoderErrorKind.TIMEOUT
            )

        stderr = (await stderr_task).decode('utf-8', errors='replace')
        if proc.returncode != 0:
            raise TranscoderError(
                f"{name} exited with code {proc.returncode}",
                kind=classify_error(stderr, self.settings.transient_error_patterns),
                returncode=proc.returncode,
                stderr_tail=_tail(stderr)
            )
        return '\n'.join(stdout_lines), stderr

    async def probe(self, path: Path) -> VideoAsset:
        """
        Read duration, container and stream layout of a video.

        Args:
            path: Path to the video file

        Returns:
            VideoAsset for the file
        """
        path = Path(path)
        stdout, _ = await self._run([
            self.ffprobe, '-v', 'error',
            '-show_format', '-show_streams',
            '-of', 'json',
            str(path)
        ])

        try:
            info = json.loads(stdout)
            fmt = info['format']
            duration = float(fmt['duration'])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise TranscoderError(
                f"ffprobe returned no duration for {path.name}",
                kind=TranscoderErrorKind.INPUT
            ) from e

        streams = info.get('streams', [])
        asset = VideoAsset(
            path=path,
            size_bytes=path.stat().st_size,
            duration=duration,
            container=fmt.get('format_name', ''),
            has_audio=any(s.get('codec_type') == 'audio' for s in streams),
        )
        logger.debug(f"Probed {path.name}: {asset.duration:.1f}s, {asset.size_mb:.1f}MB, {asset.container}")
        return asset

    async def extract_frame(self, path: Path, timestamp: float, output: Path) -> Path:
        """Grab one JPEG frame at `timestamp` seconds."""
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        await self._run([
            self.ffmpeg, '-hide_banner', '-loglevel', 'error', '-y',
            '-ss', f"{max(0.0, timestamp):.3f}",
            '-i', str(path),
            '-frames:v', '1',
            '-q:v', '2',
            str(output)
        ])
        if not output.exists():
            raise TranscoderError(
                f"No frame at {timestamp:.2f}s in {Path(path).name}",
                kind=TranscoderErrorKind.INPUT
            )
        return output

    async def extract_keyframes(self, path: Path, duration: float, count: int, out_dir: Path) -> List[Path]:
        """
        Extract `count` frames evenly spaced over the video.

        Frame i is taken at i * duration / count, so the first frame is at
        0s. Extractions run concurrently; results come back in time order.
        """
        out_dir = Path(out_dir)
        interval = duration / count
        logger.info(f"Extracting {count} keyframes (every {interval:.2f}s)")
        tasks = [
            self.extract_frame(path, i * interval, out_dir / f"frame_{i}.jpg")
            for i in range(count)
        ]
        return list(await asyncio.gather(*tasks))

    async def extract_audio(self, path: Path, output: Path) -> Path:
        """Extract the audio track as small mono MP3 for transcription."""
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        await self._run([
            self.ffmpeg, '-hide_banner', '-loglevel', 'error', '-y',
            '-i', str(path),
            '-vn', '-ac', '1', '-ar', '16000',
            '-c:a', 'libmp3lame', '-b:a', '64k',
            str(output)
        ])
        return output

    async def compress(
        self,
        input_path: Path,
        output_path: Path,
        duration: float,
        on_progress: Optional[ProgressCallback] = None
    ):
        """
        Re-encode a video with the fixed compression profile.

        Args:
            input_path: Source video
            output_path: Destination (MP4 container regardless of the name)
            duration: Source duration, used to turn timestamps into percentages
            on_progress: Called with percentages between 0 and 100
        """
        def handle_line(line: str):
            percent = parse_progress_line(line, duration)
            if percent is not None and on_progress is not None:
                on_progress(percent)

        cmd = [
            self.ffmpeg, '-hide_banner', '-loglevel', 'error', '-nostats', '-y',
            '-i', str(input_path),
            *COMPRESSION_PROFILE,
            '-progress', 'pipe:1',
            '-f', 'mp4',
            str(output_path)
        ]
        await self._run(cmd, on_stdout_line=handle_line)
