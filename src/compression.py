"""
Video Compression Module

This module is responsible for:
1. Re-encoding one video with the fixed H.264/AAC profile
2. Retrying transient drive/I/O failures with a fixed delay
3. Failing fast when the removable drive holding the input is gone
4. Placing the output beside the original (compressed/) or replacing it (clobber)
5. Reporting before/after sizes
"""

import asyncio
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Optional, Tuple

from tqdm import tqdm

from config import Settings
from errors import DriveNotAccessibleError, TranscoderError, TranscoderErrorKind
from models import CompressionJob, CompressionReport, ProcessOutcome

logger = logging.getLogger(__name__)

OUTPUT_EXTENSION = '.mp4'


def removable_volume_root(path: Path) -> Optional[Path]:
    """
    Return the mount root when `path` looks like it lives on a removable volume.

    Recognized: /Volumes/<name> (macOS), /media/<user>/<name> and
    /run/media/<user>/<name> (Linux), and drive letters (Windows).
    """
    path = Path(path).absolute()
    parts = path.parts
    if len(parts) >= 3 and parts[1] == 'Volumes':
        return Path(*parts[:3])
    if len(parts) >= 4 and parts[1] == 'media':
        return Path(*parts[:4])
    if len(parts) >= 5 and parts[1] == 'run' and parts[2] == 'media':
        return Path(*parts[:5])
    if path.drive:
        return Path(path.anchor)
    return None


def _remove_if_empty(directory: Path):
    if directory.is_dir() and not any(directory.iterdir()):
        directory.rmdir()


class VideoCompressor:
    """
    Compresses videos one at a time with retry on transient I/O errors.
    """

    def __init__(self, transcoder, settings: Settings, sleep=asyncio.sleep, show_progress: bool = True):
        """
        Initialize the compressor.

        Args:
            transcoder: Object with async `probe` and `compress` (FFmpegTranscoder)
            settings: Retry policy and directory names
            sleep: Awaitable used between attempts
            show_progress: Draw a tqdm bar per file
        """
        self.transcoder = transcoder
        self.settings = settings
        self._sleep = sleep
        self.show_progress = show_progress

    def plan_job(self, path: Path, clobber: bool = False) -> CompressionJob:
        """Work out where the output for `path` is written and where it ends up."""
        path = Path(path)
        if clobber:
            staging = path.parent / self.settings.staging_dir_name
            return CompressionJob(
                input_path=path,
                output_path=staging / f"{path.stem}{OUTPUT_EXTENSION}",
                final_path=path.with_suffix(OUTPUT_EXTENSION),
            )

        out_dir = path.parent / self.settings.compressed_dir_name
        return CompressionJob(
            input_path=path,
            output_path=out_dir / f".{path.stem}.partial{OUTPUT_EXTENSION}",
            final_path=out_dir / f"{path.stem}{OUTPUT_EXTENSION}",
        )

    def clean_staging(self, directory: Path):
        """Drop staged outputs left by an interrupted clobber run."""
        staging = Path(directory) / self.settings.staging_dir_name
        if staging.exists():
            logger.info(f"Removing leftover staging directory {staging}")
            shutil.rmtree(staging)

    def _check_drive(self, path: Path):
        root = removable_volume_root(path)
        if root is None:
            return
        logger.debug(f"Checking if drive {root} is accessible...")
        if not os.access(root, os.R_OK):
            logger.error(f"Drive containing {path} is not accessible. Please make sure the drive is connected")
            raise DriveNotAccessibleError(path, root)

    async def _attempt(self, job: CompressionJob) -> CompressionReport:
        self._check_drive(job.input_path)
        if not os.access(job.input_path, os.R_OK):
            raise TranscoderError(
                f"Input file not readable: {job.input_path}",
                kind=TranscoderErrorKind.TRANSIENT_IO
            )

        asset = await self.transcoder.probe(job.input_path)
        bitrate = (asset.size_bytes * 8 / asset.duration / 1000) if asset.duration > 0 else 0
        logger.info(f"Original: {asset.size_mb:.1f}MB, Duration: {asset.duration:.1f}s, Bitrate: {bitrate:.0f} kbps")

        job.output_path.parent.mkdir(parents=True, exist_ok=True)
        with tqdm(total=100, desc=job.input_path.name, unit='%', disable=not self.show_progress,
                  bar_format='{desc}: {percentage:3.0f}%|{bar}| [{elapsed}<{remaining}]') as bar:
            def on_progress(percent: float):
                bar.n = percent
                bar.refresh()

            await self.transcoder.compress(job.input_path, job.output_path, asset.duration, on_progress)

        return CompressionReport(
            original_size=asset.size_bytes,
            compressed_size=job.output_path.stat().st_size,
        )

    async def compress_file(self, job: CompressionJob) -> CompressionReport:
        """
        Compress `job.input_path` into `job.output_path`.

        Retries errors whose kind is listed in `retryable_kinds` up to
        `max_attempts` in total, waiting `retry_delay` seconds between
        attempts. Other errors, and a missing removable drive, fail at once.

        Returns:
            CompressionReport with original and compressed sizes
        """
        start = time.monotonic()
        max_attempts = self.settings.max_attempts
        logger.info(f"Compressing: {job.input_path.name}")

        attempt = 1
        while True:
            try:
                report = await self._attempt(job)
                break
            except TranscoderError as e:
                self._discard(job.output_path)
                retryable = e.kind in self.settings.retryable_kinds
                if e.kind == TranscoderErrorKind.TRANSIENT_IO:
                    logger.error("This appears to be a drive connection issue. Please check your external drive.")
                if not retryable or attempt >= max_attempts:
                    logger.error(f"Compression failed after {attempt} attempt(s): {e}")
                    raise
                logger.warning(
                    f"Attempt {attempt}/{max_attempts} failed: {e}. "
                    f"Retrying in {self.settings.retry_delay:g} seconds..."
                )
                await self._sleep(self.settings.retry_delay)
                attempt += 1

        logger.info(f"Compressed {job.input_path.name}: {report.describe()} in {time.monotonic() - start:.1f}s")
        return report

    def _discard(self, path: Path):
        if path.exists():
            path.unlink()

    async def run_job(
        self,
        path: Path,
        clobber: bool = False,
        force: bool = False
    ) -> Tuple[ProcessOutcome, Optional[CompressionReport]]:
        """
        Compress one file and put the result in place.

        Sibling mode writes `compressed/<stem>.mp4` and leaves the original
        alone. Clobber mode stages the output, then replaces the original with
        `<stem>.mp4`. On failure the original is untouched and the staged file
        is removed.
        """
        job = self.plan_job(path, clobber)

        if job.final_path.exists() and not force:
            logger.info(f"Skipping {job.input_path.name}, already compressed ({job.final_path.name} exists)")
            return ProcessOutcome.SKIPPED, None

        try:
            report = await self.compress_file(job)
        except BaseException:
            self._discard(job.output_path)
            if clobber:
                _remove_if_empty(job.output_path.parent)
            raise

        if clobber:
            logger.info(f"Replacing original file: {job.input_path.name}")
            shutil.move(str(job.output_path), str(job.final_path))
            job.input_path.unlink()
            _remove_if_empty(job.output_path.parent)
        else:
            os.replace(job.output_path, job.final_path)

        logger.info(f"Done: {job.final_path.name}")
        return ProcessOutcome.PROCESSED, report
