"""
Meeting data model: meetings, their segments, enrolled speaker profiles and
the events the pipeline emits.

Everything here round-trips through plain dicts for JSON storage.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

import numpy as np

DEFAULT_SPEAKER_NAME = "Participant"


def _new_id() -> str:
    return str(uuid.uuid4())


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS past the hour mark, MM:SS otherwise."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class MeetingStatus(str, Enum):
    RECORDING = "recording"
    PROCESSING = "processing"
    COMPLETED = "completed"


@dataclass
class MeetingSegment:
    """One attributed utterance. Only the text may grow after creation."""
    timestamp: float                     # Seconds from meeting start
    text: str
    speaker_id: Optional[str] = None
    speaker_name: Optional[str] = None
    is_final: bool = True
    id: str = field(default_factory=_new_id)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "text": self.text,
            "speaker_id": self.speaker_id,
            "speaker_name": self.speaker_name,
            "is_final": self.is_final,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MeetingSegment":
        """Create from dictionary."""
        return cls(
            id=data.get("id") or _new_id(),
            timestamp=data["timestamp"],
            text=data["text"],
            speaker_id=data.get("speaker_id"),
            speaker_name=data.get("speaker_name"),
            is_final=data.get("is_final", True),
        )


@dataclass
class Meeting:
    """Aggregate root of a recorded (or imported) meeting."""
    title: str = "Meeting"
    date: datetime = field(default_factory=datetime.now)
    duration: float = 0.0
    status: MeetingStatus = MeetingStatus.RECORDING
    segments: List[MeetingSegment] = field(default_factory=list)
    participant_ids: List[str] = field(default_factory=list)

    # Post-processed content
    summary: Optional[str] = None
    action_items: List[str] = field(default_factory=list)

    id: str = field(default_factory=_new_id)

    def add_participant(self, speaker_id: Optional[str]) -> bool:
        """Add a speaker id to the roster. Returns True if it was new."""
        if speaker_id is None or speaker_id in self.participant_ids:
            return False
        self.participant_ids.append(speaker_id)
        return True

    @property
    def speaker_names(self) -> List[str]:
        """Distinct speaker names in order of first appearance."""
        names = []
        for segment in self.segments:
            name = segment.speaker_name or DEFAULT_SPEAKER_NAME
            if name not in names:
                names.append(name)
        return names

    @property
    def final_transcript(self) -> str:
        """Plain transcript, one "[MM:SS] Name: text" line per segment."""
        return "\n".join(
            f"[{format_timestamp(s.timestamp)}] {s.speaker_name or DEFAULT_SPEAKER_NAME}: {s.text}"
            for s in self.segments
        )

    def generate_markdown(self, include_timestamps: bool = True, include_summary: bool = True) -> str:
        """Generate the full markdown transcript, with summary sections when present and asked for."""
        duration_mins = int(self.duration // 60)

        lines = [
            f"# {self.title}",
            "",
            f"**Date**: {self.date.strftime('%Y-%m-%d %H:%M')}",
            f"**Duration**: {duration_mins} minutes",
            f"**Participants**: {', '.join(self.speaker_names)}",
            "",
            "---",
            ""
        ]

        has_summary = include_summary and bool(self.summary and self.summary.strip())
        has_actions = include_summary and bool(self.action_items)

        if has_summary:
            lines.append("## Summary")
            lines.append("")
            lines.append(self.summary.strip())
            lines.append("")

        if has_actions:
            lines.append("## Action Items")
            lines.append("")
            lines.extend(f"- [ ] {item}" for item in self.action_items)
            lines.append("")

        if has_summary or has_actions:
            lines.append("---")
            lines.append("")

        if self.segments:
            lines.append("## Full Transcript")
            lines.append("")

            for segment in self.segments:
                speaker = segment.speaker_name or DEFAULT_SPEAKER_NAME
                if include_timestamps:
                    ts = format_timestamp(segment.timestamp)
                    lines.append(f"**[{ts}] {speaker}**: {segment.text}")
                else:
                    lines.append(f"**{speaker}**: {segment.text}")
                lines.append("")

        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date.isoformat(),
            "duration": self.duration,
            "status": self.status.value,
            "segments": [s.to_dict() for s in self.segments],
            "participant_ids": list(self.participant_ids),
            "summary": self.summary,
            "action_items": list(self.action_items),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Meeting":
        return cls(
            id=data["id"],
            title=data.get("title", "Meeting"),
            date=datetime.fromisoformat(data["date"]),
            duration=float(data.get("duration", 0.0)),
            status=MeetingStatus(data.get("status", MeetingStatus.COMPLETED.value)),
            segments=[MeetingSegment.from_dict(s) for s in data.get("segments", [])],
            participant_ids=list(data.get("participant_ids", [])),
            summary=data.get("summary"),
            action_items=list(data.get("action_items", [])),
        )


@dataclass
class SpeakerProfile:
    """An enrolled voice."""
    name: str
    embedding: np.ndarray
    role: str = ""
    group_name: str = ""
    color_hex: str = "#00E5FF"
    enrolled_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    id: str = field(default_factory=_new_id)

    def __post_init__(self):
        self.embedding = np.asarray(self.embedding, dtype=np.float32).reshape(-1)

    @property
    def initials(self) -> str:
        parts = self.name.split()
        if len(parts) >= 2:
            return f"{parts[0][:1]}{parts[1][:1]}".upper()
        return self.name[:2].upper()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "group_name": self.group_name,
            "color_hex": self.color_hex,
            "embedding": [float(x) for x in self.embedding],
            "enrolled_at": self.enrolled_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SpeakerProfile":
        return cls(
            id=data["id"],
            name=data["name"],
            embedding=np.asarray(data["embedding"], dtype=np.float32),
            role=data.get("role", ""),
            group_name=data.get("group_name", ""),
            color_hex=data.get("color_hex", "#00E5FF"),
            enrolled_at=datetime.fromisoformat(data["enrolled_at"]) if data.get("enrolled_at") else datetime.now(),
            updated_at=datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else datetime.now(),
        )


@dataclass
class TranscriptUpdate:
    """Notification handed to pipeline listeners."""
    text: str
    speaker_name: str
    is_final: bool = True
    meeting_id: Optional[str] = None
    meeting_completed: bool = False


@dataclass
class MeetingSummary:
    """What the summarizer hands back."""
    summary: str
    action_items: List[str] = field(default_factory=list)
