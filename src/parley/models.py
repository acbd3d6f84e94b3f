"""Data models for Parley."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any, Set

from .errors import InvariantViolation

SCHEMA_VERSION = "2.0"


@dataclass
class TimeRange:
    start: datetime
    end: datetime


@dataclass
class Message:
    id: str
    timestamp: datetime
    speaker_id: str
    content: str
    is_question: bool
    word_count: int
    keywords: Optional[List[str]] = None
    sentiment_score: Optional[float] = None


@dataclass
class Speaker:
    speaker_id: str
    name: str
    first_detected: datetime
    last_active: datetime
    message_count: int = 0
    characteristics: List[str] = field(default_factory=list)


@dataclass
class CompressedGroup:
    time_range: TimeRange
    speaker_id: str
    summary: str
    original_message_ids: List[str]
    word_count: int
    compression_ratio: float


@dataclass
class SpeakerStats:
    speaker_id: str
    message_count: int = 0
    word_count: int = 0
    questions_asked: int = 0
    active_time_minutes: float = 0.0


@dataclass
class Summary:
    timestamp: datetime
    content: str
    time_range: TimeRange
    key_points: List[str] = field(default_factory=list)
    speaker_stats: List[SpeakerStats] = field(default_factory=list)


@dataclass
class SpeakerDetection:
    speaker_id: str
    confidence: float
    characteristics: List[str]
    is_new_speaker: bool


@dataclass
class Session:
    session_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    is_active: bool = True
    messages: List[Message] = field(default_factory=list)
    summaries: List[Summary] = field(default_factory=list)
    speakers: List[Speaker] = field(default_factory=list)
    compressed_history: List[CompressedGroup] = field(default_factory=list)
    title: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def find_speaker(self, speaker_id: str) -> Optional[Speaker]:
        for speaker in self.speakers:
            if speaker.speaker_id == speaker_id:
                return speaker
        return None

    def speaker_name(self, speaker_id: str) -> str:
        speaker = self.find_speaker(speaker_id)
        return speaker.name if speaker else speaker_id

    def compressed_ids(self) -> Set[str]:
        folded: Set[str] = set()
        for group in self.compressed_history:
            folded.update(group.original_message_ids)
        return folded

    def last_message(self) -> Optional[Message]:
        return self.messages[-1] if self.messages else None


@dataclass
class StorageEnvelope:
    current_session_id: Optional[str] = None
    sessions: Dict[str, Session] = field(default_factory=dict)
    version: str = SCHEMA_VERSION
    settings: Dict[str, Any] = field(default_factory=dict)


def validate_session(session: Session) -> None:
    """Raise InvariantViolation when the session's structure is inconsistent."""
    counts: Dict[str, int] = {}
    seen_ids: Set[str] = set()
    previous: Optional[datetime] = None
    for msg in session.messages:
        if msg.id in seen_ids:
            raise InvariantViolation(f"Duplicate message id {msg.id}")
        seen_ids.add(msg.id)
        if session.find_speaker(msg.speaker_id) is None:
            raise InvariantViolation(
                f"Message {msg.id} references unknown speaker {msg.speaker_id}"
            )
        if previous is not None and msg.timestamp < previous:
            raise InvariantViolation(f"Message {msg.id} is out of timestamp order")
        previous = msg.timestamp
        counts[msg.speaker_id] = counts.get(msg.speaker_id, 0) + 1

    for speaker in session.speakers:
        expected = counts.get(speaker.speaker_id, 0)
        if speaker.message_count != expected:
            raise InvariantViolation(
                f"{speaker.speaker_id} counts {speaker.message_count} messages, "
                f"session holds {expected}"
            )

    folded: Set[str] = set()
    for group in session.compressed_history:
        ids = set(group.original_message_ids)
        if ids & folded:
            raise InvariantViolation("Message folded into more than one group")
        missing = ids - seen_ids
        if missing:
            raise InvariantViolation(f"Group references unknown messages {sorted(missing)}")
        folded.update(ids)

    if session.is_active and session.end_time is not None:
        raise InvariantViolation(f"Active session {session.session_id} has an end time")
