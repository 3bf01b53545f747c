"""
Batch Driver

Finds the eligible videos in one directory (non-recursive), orders them
smallest first, applies the limit, and runs the analysis pipeline or the
compressor over each file. A failing file is logged and the batch moves on.
"""

import logging
from pathlib import Path
from typing import List, Optional

from config import Settings
from metadata_store import MarkerStore, timestamp_comment
from models import BatchReport, ProcessOutcome

logger = logging.getLogger(__name__)


def discover_videos(directory: Path, extension: str) -> List[Path]:
    """
    List files in `directory` with the given extension, smallest first.

    Hidden files (including macOS `._*` resource forks) are ignored.
    """
    extension = extension.lower()
    files = [
        f for f in Path(directory).iterdir()
        if f.is_file() and not f.name.startswith('.') and f.suffix.lower() == extension
    ]
    return sorted(files, key=lambda f: (f.stat().st_size, f.name))


def select_videos(files: List[Path], limit: Optional[int] = None) -> List[Path]:
    """Keep the first `limit` files of an already sorted list."""
    if limit:
        return files[:limit]
    return list(files)


class BatchDriver:
    """Runs one directory through analysis, commenting or compression."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _collect(self, directory: Path, extension: str, limit: Optional[int]):
        directory = Path(directory)
        logger.info(f"Scanning directory: {directory}")
        files = discover_videos(directory, extension)
        report = BatchReport(directory=directory, extension=extension, found=len(files))
        logger.info(f"Found {len(files)} {extension} files")

        if report.no_files:
            logger.error(f"No {extension} files found to process in {directory}")
            return report, []

        selected = select_videos(files, limit)
        report.selected = len(selected)
        for index, f in enumerate(files, 1):
            logger.debug(f"   {index}. {f.name} - {f.stat().st_size / (1024 * 1024):.1f}MB")
        logger.info(f"Processing {len(selected)} files")
        return report, selected

    @staticmethod
    def _count(report: BatchReport, outcome: ProcessOutcome):
        if outcome == ProcessOutcome.SKIPPED:
            report.skipped += 1
        else:
            report.processed += 1

    async def run_analysis(
        self,
        directory: Path,
        pipeline,
        force: bool = False,
        limit: Optional[int] = None,
        extension: str = '.mov'
    ) -> BatchReport:
        """
        Analyze, rename and annotate every eligible video.

        Args:
            directory: Folder to scan; also receives the summary files
            pipeline: VideoPipeline
            force: Reprocess annotated files
            limit: Only the N smallest files
            extension: '.mov' or '.mp4'

        Returns:
            BatchReport with the tally
        """
        report, files = self._collect(directory, extension, limit)
        if report.no_files:
            return report

        pipeline.reset_scratch()
        for index, path in enumerate(files, 1):
            logger.info(f"Processing file {index}/{len(files)}: {path.name}")
            try:
                outcome = await pipeline.process_video(path, force=force, target_dir=report.directory)
            except Exception as e:
                logger.error(f"Error processing video {path.name}: {e}")
                report.failed.append((path, str(e)))
                continue
            self._count(report, outcome)

        logger.info(f"Analysis complete: {report.summary()}")
        return report

    async def run_comments(
        self,
        directory: Path,
        markers: MarkerStore,
        extension: str = '.mov'
    ) -> BatchReport:
        """Write a 'processed at' comment on every eligible video, no analysis."""
        report, files = self._collect(directory, extension, None)
        if report.no_files:
            return report

        for index, path in enumerate(files, 1):
            logger.info(f"Setting comment on file {index}/{len(files)}: {path.name}")
            try:
                markers.set_marker(path, timestamp_comment())
            except Exception as e:
                logger.error(f"Failed to set comment on {path.name}: {e}")
                report.failed.append((path, str(e)))
                continue
            report.processed += 1

        logger.info(f"Comments complete: {report.summary()}")
        return report

    async def run_compression(
        self,
        directory: Path,
        compressor,
        force: bool = False,
        limit: Optional[int] = None,
        clobber: bool = False,
        extension: str = '.mov'
    ) -> BatchReport:
        """
        Compress every eligible video, smallest first.

        Args:
            directory: Folder to scan
            compressor: VideoCompressor
            force: Recompress even when the output exists
            limit: Only the N smallest files
            clobber: Replace originals instead of writing to compressed/

        Returns:
            BatchReport with the tally
        """
        report, files = self._collect(directory, extension, limit)
        if report.no_files:
            return report

        if clobber:
            compressor.clean_staging(report.directory)

        for index, path in enumerate(files, 1):
            logger.info(f"File {index}/{len(files)}: {path.name}")
            try:
                outcome, _ = await compressor.run_job(path, clobber=clobber, force=force)
            except Exception as e:
                logger.error(f"Failed: {path.name}: {e}")
                report.failed.append((path, str(e)))
                continue
            self._count(report, outcome)

        logger.info(f"Compression complete: {report.summary()}")
        return report
