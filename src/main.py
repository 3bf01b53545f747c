#!/usr/bin/env python3
"""
Video Squish: triage folders of personal videos

Main CLI application entry point.

Commands:
1. compress - re-encode .mov files to H.264 .mp4 (beside or in place)
2. analyze  - describe, rate, rename and annotate videos with an AI model
3. run      - compress --clobber, then analyze --mp4, as two subprocesses
4. comment  - set the comment of a single file
"""

import argparse
import asyncio
import logging
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

from analysis import ContentAnalyzer, create_client
from batch import BatchDriver, discover_videos
from compression import VideoCompressor
from config import Settings, load_settings, setup_logging
from errors import ConfigurationError, MarkerError
from metadata_store import default_marker_store
from pipeline import VideoPipeline
from transcoding import FFmpegTranscoder, check_ffmpeg

logger = logging.getLogger(__name__)


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def _check_directory(directory: Optional[str]) -> Optional[Path]:
    """Validate the directory argument; logs and returns None when unusable"""
    if not directory:
        logger.error("A video directory is required")
        return None
    path = Path(directory).expanduser()
    if not path.is_dir():
        logger.error(f"Directory does not exist: {directory}")
        return None
    return path


def _ffmpeg_available() -> bool:
    if check_ffmpeg():
        return True
    logger.error("FFmpeg is not installed or not in PATH.")
    logger.error("Please install FFmpeg:")
    logger.error("  Ubuntu/Debian: sudo apt-get install ffmpeg")
    logger.error("  macOS: brew install ffmpeg")
    return False


def cmd_compress(args, settings: Settings) -> int:
    directory = _check_directory(args.directory)
    if directory is None:
        return 1

    if not discover_videos(directory, '.mov'):
        logger.error(f"No .mov files found to process in {directory}")
        return 1

    if not _ffmpeg_available():
        return 1

    compressor = VideoCompressor(FFmpegTranscoder(settings), settings)
    driver = BatchDriver(settings)
    report = asyncio.run(driver.run_compression(
        directory,
        compressor,
        force=args.force,
        limit=args.limit,
        clobber=args.clobber
    ))
    return 1 if report.no_files else 0


async def _analyze(directory: Path, args, settings: Settings, extension: str):
    driver = BatchDriver(settings)
    async with create_client(settings) as client:
        pipeline = VideoPipeline(
            analyzer=ContentAnalyzer(client, settings),
            transcoder=FFmpegTranscoder(settings),
            markers=default_marker_store(),
            settings=settings
        )
        return await driver.run_analysis(
            directory,
            pipeline,
            force=args.force,
            limit=args.limit,
            extension=extension
        )


def cmd_analyze(args, settings: Settings) -> int:
    directory = _check_directory(args.directory)
    if directory is None:
        return 1

    extension = '.mp4' if args.mp4 else '.mov'
    logger.info(f"Looking for *{extension} files")

    try:
        if args.comment_only:
            report = asyncio.run(BatchDriver(settings).run_comments(directory, default_marker_store(), extension))
            return 1 if report.no_files else 0

        if not discover_videos(directory, extension):
            logger.error(f"No {extension} files found to process in {directory}")
            return 1

        settings.require_api_key()
        if not _ffmpeg_available():
            return 1

        report = asyncio.run(_analyze(directory, args, settings, extension))
    except (ConfigurationError, MarkerError) as e:
        logger.error(str(e))
        return 1

    return 1 if report.no_files else 0


def _phase_command(command: str, args) -> List[str]:
    cmd = [sys.executable, str(Path(__file__).resolve())]
    if args.config:
        cmd.extend(['--config', args.config])
    cmd.extend([command, args.directory])
    if args.force:
        cmd.append('--force')
    if args.limit:
        cmd.append(f'--limit={args.limit}')
    if args.verbose:
        cmd.append('--verbose')
    return cmd


def cmd_run(args, settings: Settings) -> int:
    if _check_directory(args.directory) is None:
        return 1

    logger.info("Step 1: Compressing videos and replacing originals")
    compress_cmd = _phase_command('compress', args) + ['--clobber']
    result = subprocess.run(compress_cmd)
    if result.returncode != 0:
        logger.error(f"Compression phase failed (exit code {result.returncode}), stopping")
        return 1

    logger.info("Step 2: Analyzing and processing compressed videos")
    analyze_cmd = _phase_command('analyze', args) + ['--mp4']
    result = subprocess.run(analyze_cmd)
    if result.returncode != 0:
        logger.error(f"Analysis phase failed (exit code {result.returncode})")
        return 1

    logger.info("All processing complete!")
    return 0


def cmd_comment(args, settings: Settings) -> int:
    path = Path(args.file)
    if not path.is_file():
        logger.error(f"File not found: {args.file}")
        return 1

    try:
        markers = default_marker_store()
        markers.set_marker(path, ' '.join(args.text))
        logger.info("Comment set successfully")
        print(markers.get_marker(path))
    except MarkerError as e:
        logger.error(f"Failed to set comment: {e}")
        return 1
    return 0


def _common_options(suppress_defaults: bool) -> argparse.ArgumentParser:
    # Subcommands must not reset options given before the subcommand name
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        '--config',
        default=argparse.SUPPRESS if suppress_defaults else None,
        help='YAML file with settings overrides'
    )
    common.add_argument(
        '--verbose',
        action='store_true',
        default=argparse.SUPPRESS if suppress_defaults else False,
        help='Enable verbose logging'
    )
    return common


def build_parser() -> argparse.ArgumentParser:
    common = _common_options(suppress_defaults=True)

    parser = argparse.ArgumentParser(
        prog='video-squish',
        description='Triage folders of personal videos: compress, rate, rename and annotate',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        parents=[_common_options(suppress_defaults=False)],
        epilog="""
Examples:
  # Compress .mov files into ./compressed/
  video-squish compress ~/Movies/inbox --limit=5

  # Analyze and rename .mp4 files
  video-squish analyze ~/Movies/inbox --mp4

  # Compress in place, then analyze
  video-squish run ~/Movies/inbox --force
        """
    )
    subparsers = parser.add_subparsers(dest='command', required=True)

    compress = subparsers.add_parser('compress', parents=[common], help='Re-encode .mov files to .mp4')
    compress.add_argument('directory', nargs='?', help='Directory containing .mov files')
    compress.add_argument('--force', action='store_true', help='Recompress even if the output exists')
    compress.add_argument('--limit', type=positive_int, default=None, help='Only the N smallest files')
    compress.add_argument('--clobber', action='store_true', help='Replace originals instead of writing to compressed/')
    compress.set_defaults(handler=cmd_compress)

    analyze = subparsers.add_parser('analyze', parents=[common], help='Describe, rate, rename and annotate videos')
    analyze.add_argument('directory', nargs='?', help='Directory containing videos')
    analyze.add_argument('--force', action='store_true', help='Reprocess files that already have a comment')
    analyze.add_argument('--comment-only', action='store_true', help='Only write a "processed at" comment')
    analyze.add_argument('--mp4', action='store_true', help='Process .mp4 files instead of .mov')
    analyze.add_argument('--limit', type=positive_int, default=None, help='Only the N smallest files')
    analyze.set_defaults(handler=cmd_analyze)

    run = subparsers.add_parser('run', parents=[common], help='compress --clobber, then analyze --mp4')
    run.add_argument('directory', nargs='?', help='Directory containing .mov files')
    run.add_argument('--force', action='store_true', help='Pass --force to both phases')
    run.add_argument('--limit', type=positive_int, default=None, help='Pass --limit to both phases')
    run.set_defaults(handler=cmd_run)

    comment = subparsers.add_parser('comment', parents=[common], help='Set the comment of one file')
    comment.add_argument('file', help='File to annotate')
    comment.add_argument('text', nargs='+', help='Comment text')
    comment.set_defaults(handler=cmd_comment)

    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    return args.handler(args, settings)


def main():
    """Main entry point"""
    sys.exit(run_cli())


if __name__ == '__main__':
    main()
