"""Context compression: fold runs of same-speaker messages into short records."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import List, Optional

from .config import CompressionConfig
from .models import CompressedGroup, Message, Session, TimeRange
from .timeutil import display_time, minutes_between

logger = logging.getLogger("parley")

FRAGMENT_SEPARATOR = " | "


class CompressionEngine:
    def __init__(self, config: Optional[CompressionConfig] = None) -> None:
        self.config = config or CompressionConfig()
        self.runs = 0

    def last_window_end(self, session: Session) -> datetime:
        if session.compressed_history:
            return session.compressed_history[-1].time_range.end
        return session.start_time

    def should_compress(self, session: Session, now: datetime) -> bool:
        if len(session.messages) <= self.config.threshold:
            return False
        elapsed = minutes_between(self.last_window_end(session), now)
        return elapsed >= self.config.min_interval_minutes

    def check_and_run(self, session: Session, now: datetime) -> List[CompressedGroup]:
        if not self.should_compress(session, now):
            return []
        logger.debug("Starting context compression for %s messages", len(session.messages))
        groups = self.compress(session)
        self.runs += 1
        if groups:
            logger.info(
                "Compressed %s messages into %s groups",
                sum(len(g.original_message_ids) for g in groups),
                len(groups),
            )
        return groups

    def uncompressed_messages(self, session: Session) -> List[Message]:
        folded = session.compressed_ids()
        pending = [m for m in session.messages if m.id not in folded]
        return sorted(pending, key=lambda m: m.timestamp)

    def compress(self, session: Session) -> List[CompressedGroup]:
        candidates = self.uncompressed_messages(session)
        if len(candidates) < self.config.min_messages_per_group:
            return []
        created = [self.build_group(group) for group in self.group_messages(candidates)]
        session.compressed_history.extend(created)
        return created

    def group_messages(self, messages: List[Message]) -> List[List[Message]]:
        groups: List[List[Message]] = []
        current: List[Message] = []
        for msg in messages:
            if current:
                gap = minutes_between(current[0].timestamp, msg.timestamp)
                if (
                    msg.speaker_id != current[0].speaker_id
                    or gap > self.config.time_grouping_minutes
                ):
                    groups.append(current)
                    current = []
            current.append(msg)
        if current:
            groups.append(current)
        minimum = self.config.min_messages_per_group
        return [g for g in groups if len(g) >= minimum]

    def build_group(self, messages: List[Message]) -> CompressedGroup:
        original = len(messages)
        compressed = max(1, math.floor(original * self.config.ratio))
        key_messages = select_key_messages(messages, compressed)
        return CompressedGroup(
            time_range=TimeRange(start=messages[0].timestamp, end=messages[-1].timestamp),
            speaker_id=messages[0].speaker_id,
            summary=self.render_fragments(key_messages),
            original_message_ids=[m.id for m in messages],
            word_count=sum(m.word_count for m in messages),
            compression_ratio=min(1.0, compressed / original),
        )

    def render_fragments(self, messages: List[Message]) -> str:
        limit = self.config.fragment_chars
        parts = []
        for msg in messages:
            text = msg.content if len(msg.content) <= limit else msg.content[:limit] + "..."
            parts.append(f"{display_time(msg.timestamp)}: {text}")
        return FRAGMENT_SEPARATOR.join(parts)


def select_key_messages(messages: List[Message], max_count: int) -> List[Message]:
    """Pick first, last, questions, then the wordiest messages, up to max_count."""
    chosen: List[Message] = []
    chosen_ids = set()

    def take(msg: Message) -> None:
        chosen.append(msg)
        chosen_ids.add(msg.id)

    if messages:
        take(messages[0])
    if len(messages) > 1:
        take(messages[-1])

    for msg in messages:
        if len(chosen) >= max_count:
            break
        if msg.is_question and msg.id not in chosen_ids:
            take(msg)

    for msg in sorted(messages, key=lambda m: m.word_count, reverse=True):
        if len(chosen) >= max_count:
            break
        if msg.id not in chosen_ids:
            take(msg)

    return chosen[:max_count]
