"""
Segment assembly: folds each pass's text into the meeting transcript.
"""

import logging
from typing import Callable, Optional

from .models import Meeting, MeetingSegment, TranscriptUpdate

logger = logging.getLogger(__name__)


class SegmentAssembler:
    """
    Appends transcribed text to a meeting.

    Text from the same speaker as the last segment extends that segment
    (continuation merge); anyone else starts a new one. Every change is
    persisted and announced.
    """

    def __init__(
        self,
        save: Optional[Callable[[Meeting], object]] = None,
        notify: Optional[Callable[[TranscriptUpdate], None]] = None
    ):
        self._save = save
        self._notify = notify

    def add(
        self,
        meeting: Meeting,
        text: str,
        speaker_id: Optional[str],
        speaker_name: str,
        timestamp: float
    ) -> Optional[MeetingSegment]:
        """
        Add a final piece of text to the meeting.

        Args:
            meeting: Meeting to mutate
            text: Already cleaned text; blank text is ignored
            speaker_id: Resolved speaker id (None when unknown)
            speaker_name: Resolved display name
            timestamp: Seconds since the meeting started

        Returns:
            The segment that received the text, or None for blank text
        """
        if not text or not text.strip():
            return None
        text = text.strip()

        last = meeting.segments[-1] if meeting.segments else None
        if last is not None and last.speaker_name == speaker_name:
            last.text = f"{last.text} {text}"
            segment = last
            logger.debug(f"Merged with previous segment for '{speaker_name}'")
        else:
            segment = MeetingSegment(
                timestamp=timestamp,
                text=text,
                speaker_id=speaker_id,
                speaker_name=speaker_name,
                is_final=True
            )
            meeting.segments.append(segment)

        meeting.duration = timestamp
        meeting.add_participant(speaker_id)

        if self._save is not None:
            self._save(meeting)

        logger.info(f"[{int(timestamp)}s] [{speaker_name}] {text}")

        if self._notify is not None:
            self._notify(TranscriptUpdate(
                text=text,
                speaker_name=speaker_name,
                is_final=True,
                meeting_id=meeting.id
            ))

        return segment
