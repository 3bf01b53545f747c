"""
Metadata Store

This module is responsible for:
1. Reading and writing the per-file comment that marks a video as processed
2. Appending processed-video records to the JSON summary array
3. Appending the same records to the human-readable text log

The comment is both the note a person sees in the file manager and the flag
that makes re-runs skip finished files.
"""

import errno
import json
import logging
import os
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from config import Settings
from errors import MarkerError
from models import SummaryRecord

logger = logging.getLogger(__name__)


def timestamp_comment(now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"File processed at: {now.strftime('%Y-%m-%d %H:%M:%S')}"


class MarkerStore:
    """
    Get/set access to a per-file comment.

    Subclasses implement `get_marker` and `set_marker`; the pipeline only
    relies on this interface.
    """

    def get_marker(self, path: Path) -> str:
        raise NotImplementedError

    def set_marker(self, path: Path, text: str) -> None:
        raise NotImplementedError

    def has_marker(self, path: Path) -> bool:
        return bool(self.get_marker(path).strip())


class FinderCommentStore(MarkerStore):
    """Finder comments on macOS, driven through osascript"""

    GET_SCRIPT = [
        'on run argv',
        'set theFile to POSIX file (item 1 of argv) as alias',
        'tell application "Finder" to return comment of theFile',
        'end run',
    ]
    SET_SCRIPT = [
        'on run argv',
        'set theFile to POSIX file (item 1 of argv) as alias',
        'tell application "Finder" to set comment of theFile to (item 2 of argv)',
        'end run',
    ]

    def _run(self, script: List[str], args: List[str]) -> str:
        cmd = ['osascript']
        for line in script:
            cmd.extend(['-e', line])
        cmd.extend(args)
        try:
            result = subprocess.run(cmd, capture_output=True, check=True, text=True, timeout=30)
        except subprocess.CalledProcessError as e:
            raise MarkerError(f"osascript failed: {e.stderr.strip()}") from e
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            raise MarkerError(f"osascript unavailable: {e}") from e
        return result.stdout.strip()

    def get_marker(self, path: Path) -> str:
        return self._run(self.GET_SCRIPT, [str(Path(path).resolve())])

    def set_marker(self, path: Path, text: str) -> None:
        # Finder shows comments on one line
        clean = ' '.join(text.split())
        self._run(self.SET_SCRIPT, [str(Path(path).resolve()), clean])


class XattrCommentStore(MarkerStore):
    """The freedesktop `user.xdg.comment` extended attribute (Linux)"""

    ATTRIBUTE = 'user.xdg.comment'

    def get_marker(self, path: Path) -> str:
        try:
            value = os.getxattr(str(path), self.ATTRIBUTE)
        except OSError as e:
            if e.errno == errno.ENODATA:
                return ""
            raise MarkerError(f"Cannot read comment of {path}: {e}") from e
        return value.decode('utf-8', errors='replace')

    def set_marker(self, path: Path, text: str) -> None:
        try:
            os.setxattr(str(path), self.ATTRIBUTE, text.encode('utf-8'))
        except OSError as e:
            raise MarkerError(f"Cannot write comment of {path}: {e}") from e


def default_marker_store() -> MarkerStore:
    """Pick the comment facility for this platform."""
    if sys.platform == 'darwin':
        return FinderCommentStore()
    if hasattr(os, 'setxattr'):
        return XattrCommentStore()
    raise MarkerError(f"No file comment support on platform '{sys.platform}'")


class SummaryStore:
    """
    Append-only summary files for one directory.

    The JSON file holds an array that is re-read, extended and rewritten on
    every append. The text file is appended incrementally. No file handle is
    kept open between records.
    """

    def __init__(self, directory: Path, settings: Settings):
        self.directory = Path(directory)
        self.json_path = self.directory / settings.summary_json_name
        self.text_path = self.directory / settings.summary_text_name

    def load(self) -> List[Dict]:
        """Load the JSON array; an absent or blank file is an empty list."""
        if not self.json_path.exists():
            return []

        content = self.json_path.read_text(encoding='utf-8')
        if not content.strip():
            return []

        try:
            records = json.loads(content)
        except json.JSONDecodeError as e:
            self._quarantine(f"invalid JSON ({e})")
            return []

        if not isinstance(records, list):
            self._quarantine("top level is not an array")
            return []

        return records

    def _quarantine(self, reason: str):
        backup = self.json_path.with_name(
            f"{self.json_path.name}.corrupt-{datetime.now().strftime('%Y%m%d%H%M%S')}"
        )
        os.replace(self.json_path, backup)
        logger.warning(f"Summary file {self.json_path} is unreadable: {reason}. Moved it to {backup.name}")

    def append(self, record: SummaryRecord):
        """Append one record to both the text log and the JSON array."""
        self.directory.mkdir(parents=True, exist_ok=True)

        with open(self.text_path, 'a', encoding='utf-8') as f:
            f.write(record.to_text())

        records = self.load()
        records.append(record.to_dict())

        tmp_path = self.json_path.with_name(f".{self.json_path.name}.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(records, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, self.json_path)

        logger.info(f"Recorded {record.filename} in {self.json_path.name} ({len(records)} records)")
