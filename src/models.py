"""
Shared data models for the Video Squish pipeline.

This module contains the dataclasses and validated response types used across
multiple modules to avoid circular imports. AI responses are validated with
pydantic; plain records are dataclasses.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


@dataclass
class VideoAsset:
    """One source video as reported by ffprobe"""
    path: Path
    size_bytes: int
    duration: float
    container: str = ""
    has_audio: bool = True

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


class FrameAnalysisResponse(BaseModel):
    """Raw answer to the probe-frame instruction"""
    model_config = ConfigDict(extra="ignore")

    description: str = Field(min_length=1)
    needsTranscript: bool = Field(strict=True)
    additionalKeyframes: int = Field(strict=True, ge=0, le=4)


class AnalysisResult(BaseModel):
    """
    Decision record produced from the probe frame.

    Created once per asset and passed down the pipeline unchanged; later
    stages read `needs_transcript` and `additional_keyframes` from it.
    """
    model_config = ConfigDict(frozen=True)

    description: str
    needs_transcript: bool
    additional_keyframes: int = Field(ge=0, le=4)
    duration: float

    @classmethod
    def from_response(
        cls,
        response: FrameAnalysisResponse,
        duration: float,
        transcript_threshold: float = 5.0
    ) -> "AnalysisResult":
        # Anything longer than the threshold may contain speech the frame can't show
        needs_transcript = response.needsTranscript or duration > transcript_threshold
        return cls(
            description=response.description.strip(),
            needs_transcript=needs_transcript,
            additional_keyframes=response.additionalKeyframes,
            duration=duration,
        )


class ImportanceAssessment(BaseModel):
    """Retention rating: 1 = keep forever, 9 = safe to delete"""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    importance: int = Field(strict=True, ge=1, le=9)
    reason: str = Field(min_length=1)
    full_description: str = Field(min_length=1, alias="fullDescription")


@dataclass
class SummaryRecord:
    """The persisted result for one processed video"""
    filename: str
    original_name: str
    importance: Dict[str, object]
    duration_seconds: float
    description: str
    initial_description: str
    additional_descriptions: List[str] = field(default_factory=list)
    transcript: Optional[str] = None  # None = not transcribed, "" = no speech returned
    processed_at: str = ""
    path: str = ""

    @classmethod
    def build(
        cls,
        original_path: Path,
        final_path: Path,
        analysis: AnalysisResult,
        assessment: ImportanceAssessment,
        additional_descriptions: List[str],
        transcript: Optional[str]
    ) -> "SummaryRecord":
        return cls(
            filename=final_path.name,
            original_name=original_path.name,
            importance={
                'rating': assessment.importance,
                'reason': assessment.reason,
            },
            duration_seconds=analysis.duration,
            description=assessment.full_description,
            initial_description=analysis.description,
            additional_descriptions=list(additional_descriptions),
            transcript=transcript,
            processed_at=datetime.now(timezone.utc).isoformat(),
            path=str(final_path.resolve()),
        )

    def to_dict(self) -> Dict:
        return asdict(self)

    def to_text(self) -> str:
        """Human-readable block for the text log"""
        lines = [
            f"File: {self.path}",
            f"Original name: {self.original_name}",
            f"Duration: {self.duration_seconds:.1f} seconds",
            f"Importance: {self.importance['rating']}/9 - {self.importance['reason']}",
            f"Processed: {self.processed_at}",
            "",
            "Description:",
            self.description,
            "",
        ]
        if self.additional_descriptions:
            lines.append("Additional scenes:")
            lines.extend(self.additional_descriptions)
            lines.append("")
        if self.transcript:
            lines.append("Transcript:")
            lines.append(self.transcript)
            lines.append("")
        elif self.transcript is not None:
            lines.append("Transcript: (no speech)")
            lines.append("")
        lines.append("-" * 80)
        return "\n".join(lines) + "\n\n"


@dataclass
class CompressionJob:
    """Where one compression reads from, writes to, and finally lands"""
    input_path: Path
    output_path: Path
    final_path: Path


@dataclass
class CompressionReport:
    """Before/after sizes of one compression"""
    original_size: int
    compressed_size: int

    @property
    def reduction_percent(self) -> float:
        # Negative when the re-encode came out larger
        if self.original_size == 0:
            return 0.0
        return (1 - self.compressed_size / self.original_size) * 100

    def describe(self) -> str:
        original_mb = self.original_size / (1024 * 1024)
        compressed_mb = self.compressed_size / (1024 * 1024)
        reduction = self.reduction_percent
        if reduction >= 0:
            change = f"{reduction:.1f}% smaller"
        else:
            change = f"{-reduction:.1f}% larger"
        return f"{original_mb:.1f}MB -> {compressed_mb:.1f}MB ({change})"


class ProcessOutcome(str, Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"


@dataclass
class BatchReport:
    """Tally of one directory run"""
    directory: Path
    extension: str
    found: int = 0
    selected: int = 0
    processed: int = 0
    skipped: int = 0
    failed: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def no_files(self) -> bool:
        return self.found == 0

    def summary(self) -> str:
        return (
            f"{self.processed} processed, {self.skipped} skipped, "
            f"{len(self.failed)} failed ({self.selected} of {self.found} {self.extension} files selected)"
        )
