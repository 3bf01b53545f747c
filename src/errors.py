"""
Exception types for the Video Squish pipeline.

Errors fall into four groups:
1. Input errors (missing or unreadable files and directories)
2. External-service errors (malformed or out-of-contract AI responses)
3. Transient I/O errors (drive disconnects, read failures while transcoding)
4. Encoder errors (codec or container failures)

Only transient I/O errors are ever retried, and only by the compression stage.
"""

from enum import Enum
from pathlib import Path
from typing import Optional


class SquishError(Exception):
    """Base class for all pipeline errors"""


class ConfigurationError(SquishError):
    """Invalid or incomplete configuration"""


class MissingCredentialError(ConfigurationError):
    """The AI service credential is not present in the environment"""


class ResponseParseError(SquishError):
    """An AI response did not match the expected structure"""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw


class TranscoderErrorKind(str, Enum):
    """What went wrong inside ffmpeg/ffprobe, as far as retry policy cares"""
    TRANSIENT_IO = "transient_io"
    ENCODER = "encoder"
    INPUT = "input"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class TranscoderError(SquishError):
    """A transcoder subprocess failed"""

    def __init__(
        self,
        message: str,
        kind: TranscoderErrorKind = TranscoderErrorKind.UNKNOWN,
        returncode: Optional[int] = None,
        stderr_tail: str = ""
    ):
        super().__init__(message)
        self.kind = kind
        self.returncode = returncode
        self.stderr_tail = stderr_tail

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr_tail:
            return f"{base} [{self.kind.value}]: {self.stderr_tail}"
        return f"{base} [{self.kind.value}]"


class DriveNotAccessibleError(SquishError):
    """The removable volume holding an input file is not mounted"""

    def __init__(self, path: Path, volume_root: Path):
        super().__init__(f"Drive not accessible for {path} (volume {volume_root})")
        self.path = path
        self.volume_root = volume_root


class MarkerError(SquishError):
    """The file comment could not be read or written"""


class PipelineStageError(SquishError):
    """A stage of the per-video pipeline failed"""

    def __init__(self, path: Path, stage: str, cause: BaseException):
        super().__init__(f"{Path(path).name}: stage '{stage}' failed: {cause}")
        self.path = Path(path)
        self.stage = stage
