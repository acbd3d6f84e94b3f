"""Timed summaries and the extractive meeting digest."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from .config import SummaryConfig
from .models import Message, Session, SpeakerStats, Summary, TimeRange
from .timeutil import display_time, minutes_between, utc_now

logger = logging.getLogger("parley")

LONG_MESSAGE_WORDS = 20


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "..."


class SummaryScheduler:
    """Emit a digest of the messages since the previous one, once per interval.

    An empty window leaves the clock where it was, so the first message after
    an idle stretch is summarized as soon as the interval check next runs.
    """

    def __init__(self, config: Optional[SummaryConfig] = None) -> None:
        self.config = config or SummaryConfig()
        self._last: Dict[str, datetime] = {}
        self._cursor: Dict[str, int] = {}
        self.runs = 0

    def last_summary_time(self, session: Session) -> datetime:
        if session.session_id not in self._last:
            if session.summaries:
                self._last[session.session_id] = session.summaries[-1].time_range.end
            else:
                self._last[session.session_id] = session.start_time
        return self._last[session.session_id]

    def reset(self, session: Session, at: datetime) -> None:
        self._last[session.session_id] = at

    def is_due(self, session: Session, now: datetime) -> bool:
        elapsed = minutes_between(self.last_summary_time(session), now)
        return elapsed >= self.config.interval_minutes

    def window_messages(self, session: Session, start: datetime, end: datetime) -> List[Message]:
        cursor = self._cursor.get(session.session_id)
        if cursor is not None:
            return [m for m in session.messages[cursor:] if start <= m.timestamp <= end]
        # no cursor after a reload: fall back to the previous window end
        exclusive = bool(session.summaries) and session.summaries[-1].time_range.end == start
        return [
            m
            for m in session.messages
            if (m.timestamp > start if exclusive else m.timestamp >= start)
            and m.timestamp <= end
        ]

    def check_and_run(self, session: Session, now: datetime) -> Optional[Summary]:
        if not self.is_due(session, now):
            return None
        start = self.last_summary_time(session)
        messages = self.window_messages(session, start, now)
        if not messages:
            logger.debug("No messages since %s; summary skipped", start.isoformat())
            return None
        logger.debug(
            "Generating timed summary for %.1f minutes of conversation",
            minutes_between(start, now),
        )
        summary = self.build_summary(session, messages, TimeRange(start=start, end=now), now)
        session.summaries.append(summary)
        self._last[session.session_id] = now
        self._cursor[session.session_id] = len(session.messages)
        self.runs += 1
        logger.info(
            "Summary for %s: %s key points, %s speakers",
            session.session_id,
            len(summary.key_points),
            len(summary.speaker_stats),
        )
        return summary

    def key_point(self, msg: Message) -> Optional[str]:
        text = _truncate(msg.content, self.config.max_message_length)
        stamp = display_time(msg.timestamp) if self.config.include_timestamps else None
        if msg.is_question:
            return f"Q ({stamp}): {text}" if stamp else f"Q: {text}"
        if msg.word_count > LONG_MESSAGE_WORDS:
            return f"• ({stamp}) {text}" if stamp else f"• {text}"
        return None

    def build_summary(
        self,
        session: Session,
        messages: List[Message],
        window: TimeRange,
        now: datetime,
    ) -> Summary:
        key_points: List[str] = []
        stats: Dict[str, SpeakerStats] = {}
        for msg in messages:
            entry = stats.setdefault(msg.speaker_id, SpeakerStats(speaker_id=msg.speaker_id))
            entry.message_count += 1
            entry.word_count += msg.word_count
            if msg.is_question:
                entry.questions_asked += 1
            if len(key_points) < self.config.max_key_points:
                point = self.key_point(msg)
                if point:
                    key_points.append(point)

        duration = round(minutes_between(window.start, window.end), 2)
        for entry in stats.values():
            entry.active_time_minutes = duration

        lines = [f"Summary {display_time(window.start)} - {display_time(window.end)}:", ""]
        lines.extend(key_points)
        if self.config.include_speaker_stats:
            lines.append("")
            lines.append("Speaker Activity:")
            for entry in stats.values():
                lines.append(
                    f"• {session.speaker_name(entry.speaker_id)}: "
                    f"{entry.message_count} messages, {entry.questions_asked} questions"
                )

        return Summary(
            timestamp=now,
            content="\n".join(lines).strip(),
            time_range=window,
            key_points=key_points,
            speaker_stats=list(stats.values()),
        )


# Meeting digest

_DECISION = re.compile(
    r"\b(?:agreed|decided|approve|approved|accept|accepted|we will|we'll|let's|let us|decision)\b",
    re.IGNORECASE,
)
_ACTION = re.compile(
    r"\b(?:please|assign|action|task|can you|could you|will you|i will|i'll|we will|"
    r"due by|by friday|by monday|deadline)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.?!])\s+")

EMPTY_DIGEST = "No conversation content available to summarize."


def split_sentences(text: str) -> List[str]:
    flat = " ".join(text.split())
    return [s.strip() for s in _SENTENCE_SPLIT.split(flat) if s.strip()]


def _push_unique(target: List[str], candidate: str) -> None:
    normalized = candidate.strip()
    if not normalized:
        return
    if not any(t.lower() == normalized.lower() for t in target):
        target.append(normalized)


def generate_meeting_bullets(session: Session, max_bullets: int = 6) -> List[str]:
    if session is None or not session.messages:
        return [EMPTY_DIGEST]

    bullets: List[str] = []
    if session.summaries:
        for point in session.summaries[-1].key_points:
            _push_unique(bullets, point)

    for msg in reversed(session.messages):
        if len(bullets) >= max_bullets:
            break
        for sentence in split_sentences(msg.content):
            if len(bullets) >= max_bullets:
                break
            if _DECISION.search(sentence):
                _push_unique(bullets, f"Decision: {sentence}")
            elif _ACTION.search(sentence):
                _push_unique(bullets, f"Action: {sentence}")
            elif "?" in sentence:
                _push_unique(bullets, f"Open question: {sentence}")

    if len(bullets) < max_bullets:
        longest = sorted(session.messages, key=lambda m: m.word_count, reverse=True)
        for msg in longest[: max_bullets * 2]:
            if len(bullets) >= max_bullets:
                break
            snippet = msg.content if len(msg.content) <= 200 else msg.content[:200] + "..."
            _push_unique(bullets, snippet)

    return [" ".join(b.split()) for b in bullets[:max_bullets]]


def generate_meeting_summary_text(
    session: Session, max_bullets: int = 6, now: Optional[datetime] = None
) -> str:
    lines = ["Meeting Summary", "---------------", ""]
    for bullet in generate_meeting_bullets(session, max_bullets):
        lines.append(f"- {bullet}")
    lines.append("")
    generated = (now or utc_now()).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    lines.append(f"Generated: {generated}")
    return "\n".join(lines)
