"""
Video Analysis Pipeline

This module drives one video through the analysis stages:
1. Skip it if it already carries a comment (unless forced)
2. Probe frame at 20% of the duration -> description + decisions
3. Transcript, when the decision asks for one
4. Extra keyframes, when the decision asks for them
5. Importance rating from all gathered evidence
6. Short name -> `{importance}_{slug}-{suffix}{ext}`
7. Commit: rename, record, write the comment

Commit order is rename, then record, then comment. A failed rename records
nothing. A crash between the rename and the record leaves a renamed file
without a comment, which the next run processes again.
"""

import logging
import shutil
import tempfile
import time
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

from config import Settings
from errors import PipelineStageError
from metadata_store import MarkerStore, SummaryStore
from models import AnalysisResult, ImportanceAssessment, ProcessOutcome, SummaryRecord, VideoAsset
from naming import unique_target

logger = logging.getLogger(__name__)


def comment_text(assessment: ImportanceAssessment) -> str:
    return f"{assessment.full_description}\n\nImportance: {assessment.importance}/9 - {assessment.reason}"


class VideoPipeline:
    """
    Per-video orchestrator.

    Collaborators are passed in so tests can swap them: `analyzer` talks to
    the AI service, `transcoder` runs ffmpeg, `markers` reads and writes file
    comments.
    """

    def __init__(self, analyzer, transcoder, markers: MarkerStore, settings: Settings):
        self.analyzer = analyzer
        self.transcoder = transcoder
        self.markers = markers
        self.settings = settings
        self.scratch_root = Path(settings.scratch_root)

    def reset_scratch(self):
        """Remove scratch directories left behind by an interrupted run."""
        if self.scratch_root.exists():
            leftovers = list(self.scratch_root.iterdir())
            if leftovers:
                logger.info(f"Cleaning {len(leftovers)} leftover scratch entries in {self.scratch_root}")
            shutil.rmtree(self.scratch_root)
        self.scratch_root.mkdir(parents=True, exist_ok=True)

    @contextmanager
    def stage(self, name: str, path: Path):
        """Time a stage and attach the stage name to any failure."""
        start = time.monotonic()
        try:
            yield
        except PipelineStageError:
            raise
        except Exception as e:
            raise PipelineStageError(path, name, e) from e
        finally:
            logger.info(f"  {name}: {time.monotonic() - start:.1f}s")

    async def process_video(
        self,
        path: Path,
        force: bool = False,
        target_dir: Optional[Path] = None
    ) -> ProcessOutcome:
        """
        Run one video through the pipeline.

        Args:
            path: Video file
            force: Reprocess even when the file already has a comment
            target_dir: Where the summary files live (default: the video's folder)

        Returns:
            ProcessOutcome.PROCESSED or ProcessOutcome.SKIPPED

        Raises:
            PipelineStageError: When any stage fails; nothing is committed
        """
        path = Path(path)
        target_dir = Path(target_dir) if target_dir else path.parent

        logger.info("=" * 80)
        logger.info(f"Processing video: {path.name}")
        logger.info("=" * 80)

        if not force:
            with self.stage('marker-check', path):
                annotated = self.markers.has_marker(path)
            if annotated:
                logger.info(f"Skipping {path.name}, already summarised. Use --force to reprocess.")
                return ProcessOutcome.SKIPPED

        start = time.monotonic()
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        scratch = Path(tempfile.mkdtemp(prefix='asset-', dir=self.scratch_root))

        try:
            with self.stage('probe', path):
                asset = await self.transcoder.probe(path)
            logger.info(f"Video duration: {asset.duration:.1f}s, size: {asset.size_mb:.1f}MB")

            with self.stage('initial-frame', path):
                analysis = await self._analyze_initial_frame(asset, scratch)

            transcript = None
            if analysis.needs_transcript:
                with self.stage('transcript', path):
                    transcript = await self._transcribe(asset, scratch)

            additional: List[str] = []
            if analysis.additional_keyframes > 0:
                with self.stage('keyframes', path):
                    additional = await self._describe_keyframes(asset, analysis.additional_keyframes, scratch)

            with self.stage('importance', path):
                assessment = await self.analyzer.determine_importance(
                    analysis.description, additional, transcript, analysis.duration
                )

            with self.stage('naming', path):
                raw_name = await self.analyzer.generate_short_name(
                    assessment.full_description, assessment.importance
                )
                new_path = unique_target(path.parent, assessment.importance, raw_name, path.suffix)

            record = SummaryRecord.build(path, new_path, analysis, assessment, additional, transcript)
            self._commit(path, new_path, record, assessment, target_dir)
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        logger.info(f"Successfully processed: {path.name} -> {new_path.name} ({time.monotonic() - start:.1f}s)")
        return ProcessOutcome.PROCESSED

    async def _analyze_initial_frame(self, asset: VideoAsset, scratch: Path) -> AnalysisResult:
        timestamp = asset.duration * self.settings.probe_position
        frame = await self.transcoder.extract_frame(asset.path, timestamp, scratch / 'initial_frame.jpg')
        return await self.analyzer.analyze_initial_frame(frame.read_bytes(), asset.duration)

    async def _transcribe(self, asset: VideoAsset, scratch: Path) -> str:
        if not asset.has_audio:
            logger.info("No audio stream, transcript is empty")
            return ""
        audio = await self.transcoder.extract_audio(asset.path, scratch / 'audio.mp3')
        return await self.analyzer.transcribe_audio(audio)

    async def _describe_keyframes(self, asset: VideoAsset, extra: int, scratch: Path) -> List[str]:
        # The first of the evenly spaced frames sits at 0s and adds little over the probe
        frames = await self.transcoder.extract_keyframes(asset.path, asset.duration, extra + 1, scratch / 'frames')
        descriptions = []
        for i, frame in enumerate(frames[1:], start=2):
            logger.info(f"Analyzing frame {i}/{len(frames)}...")
            description = await self.analyzer.describe_frame(frame.read_bytes())
            logger.info(f"Frame {i} description: {description}")
            descriptions.append(description)
        return descriptions

    def _commit(
        self,
        path: Path,
        new_path: Path,
        record: SummaryRecord,
        assessment: ImportanceAssessment,
        target_dir: Path
    ):
        with self.stage('rename', path):
            logger.info(f"Renaming to: {new_path.name}")
            path.rename(new_path)

        try:
            with self.stage('record', path):
                SummaryStore(target_dir, self.settings).append(record)
        except PipelineStageError:
            logger.error(f"{new_path.name} was renamed but not recorded; it will be processed again on the next run")
            raise

        try:
            with self.stage('marker', path):
                self.markers.set_marker(new_path, comment_text(assessment))
        except PipelineStageError:
            logger.error(f"{new_path.name} is recorded but has no comment; a re-run will record it again")
            raise
