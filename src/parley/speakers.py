"""Heuristic speaker attribution from message text and recency."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Optional

from .analysis import extract_features
from .config import SpeakerConfig
from .models import Session, Speaker, SpeakerDetection

logger = logging.getLogger("parley")

RECENCY_CONFIDENCE = 0.8


def similarity(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard index of two tag collections; symmetric, 0.0 when both are empty."""
    set_a = set(a)
    set_b = set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


class SpeakerAttributor:
    """Assign messages to speakers without any audio signal.

    Attribution never fails: when nothing matches, a new speaker is created.
    """

    def __init__(self, config: Optional[SpeakerConfig] = None) -> None:
        self.config = config or SpeakerConfig()

    def attribute(self, session: Session, content: str, now: datetime) -> SpeakerDetection:
        features = extract_features(content)

        if not session.speakers:
            return SpeakerDetection("speaker_1", 1.0, features, True)

        best: Optional[Speaker] = None
        best_score = -1.0
        for speaker in session.speakers:
            score = similarity(speaker.characteristics, features)
            if score > best_score:
                best, best_score = speaker, score

        if best is not None and best_score >= self.config.similarity_threshold:
            return SpeakerDetection(best.speaker_id, best_score, features, False)

        last = session.last_message()
        if last is not None:
            elapsed = (now - last.timestamp).total_seconds()
            if elapsed < self.config.recency_window_seconds:
                return SpeakerDetection(last.speaker_id, RECENCY_CONFIDENCE, features, False)

        speaker_id = self._next_speaker_id(session)
        logger.debug("New speaker %s (best similarity %.2f)", speaker_id, best_score)
        return SpeakerDetection(speaker_id, 1.0, features, True)

    @staticmethod
    def _next_speaker_id(session: Session) -> str:
        index = len(session.speakers) + 1
        while session.find_speaker(f"speaker_{index}") is not None:
            index += 1
        return f"speaker_{index}"

    def apply(self, session: Session, detection: SpeakerDetection, now: datetime) -> Speaker:
        speaker = session.find_speaker(detection.speaker_id)
        if speaker is None:
            speaker = Speaker(
                speaker_id=detection.speaker_id,
                name=f"Speaker {len(session.speakers) + 1}",
                first_detected=now,
                last_active=now,
                message_count=0,
                characteristics=[],
            )
            session.speakers.append(speaker)

        speaker.message_count += 1
        speaker.last_active = now
        for tag in detection.characteristics:
            if tag not in speaker.characteristics:
                speaker.characteristics.append(tag)
        return speaker

    @staticmethod
    def rename(session: Session, speaker_id: str, name: str) -> bool:
        clean = (name or "").strip()
        if not clean:
            raise ValueError("Speaker name cannot be blank.")
        speaker = session.find_speaker(speaker_id)
        if speaker is None:
            return False
        speaker.name = clean
        return True
