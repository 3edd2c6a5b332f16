"""
Meeting storage: one JSON file per meeting.

Writes go through a temp file and an atomic rename so a crash mid-save never
leaves a half-written meeting behind.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional, Union

from ..logger import get_parley_home, log_error
from .models import Meeting

logger = logging.getLogger(__name__)


class MeetingHistory:
    """Stores meetings as <id>.json files in a folder."""

    def __init__(self, storage_dir: Optional[Union[str, Path]] = None):
        self.storage_dir = Path(storage_dir) if storage_dir else get_parley_home() / "meetings"
        self.storage_dir.mkdir(parents=True, exist_ok=True)

    def _path_for(self, meeting_id: str) -> Path:
        return self.storage_dir / f"{meeting_id}.json"

    def save(self, meeting: Meeting) -> bool:
        """Persist a meeting. Failures are logged, never raised."""
        filepath = self._path_for(meeting.id)
        temp_path = filepath.with_suffix('.tmp')
        try:
            temp_path.write_text(json.dumps(meeting.to_dict(), indent=2), encoding='utf-8')
            temp_path.replace(filepath)  # Atomic rename
            logger.debug(f"Saved meeting {meeting.id} ({len(meeting.segments)} segments)")
            return True
        except (OSError, TypeError, ValueError) as e:
            log_error(f"Failed to save meeting {meeting.id}", e)
            return False

    def load(self, meeting_id: str) -> Optional[Meeting]:
        filepath = self._path_for(meeting_id)
        if not filepath.exists():
            return None
        return self._read(filepath)

    def load_all(self) -> List[Meeting]:
        """All readable meetings, newest first. Unreadable files are skipped."""
        meetings = []
        for filepath in self.storage_dir.glob("*.json"):
            meeting = self._read(filepath)
            if meeting is not None:
                meetings.append(meeting)
        return sorted(meetings, key=lambda m: m.date, reverse=True)

    def delete(self, meeting_id: str) -> bool:
        filepath = self._path_for(meeting_id)
        if not filepath.exists():
            return False
        filepath.unlink()
        return True

    def _read(self, filepath: Path) -> Optional[Meeting]:
        try:
            data = json.loads(filepath.read_text(encoding='utf-8'))
            return Meeting.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Failed to load meeting from {filepath.name}: {e}")
            return None
