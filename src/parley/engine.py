"""Conversation engine: the single entry point hosts talk to."""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Optional

from .analysis import extract_keywords, sentiment_score, word_count
from .compression import CompressionEngine
from .config import Config
from .models import Message, Session, validate_session
from .scheduler import Scheduler
from .speakers import SpeakerAttributor
from .storage import SessionStore, generate_id
from .summarizer import SummaryScheduler
from .timeutil import Clock, to_iso, utc_now

logger = logging.getLogger("parley")

LARGE_SESSION_MESSAGES = 200


class ConversationEngine:
    """Drive attribution, storage, compression and summaries for one timeline.

    The engine expects a single cooperative caller. Queries return deep copies
    so callers can never mutate session state behind the engine's back.
    """

    def __init__(
        self,
        store: SessionStore,
        attributor: Optional[SpeakerAttributor] = None,
        compressor: Optional[CompressionEngine] = None,
        summaries: Optional[SummaryScheduler] = None,
        scheduler: Optional[Scheduler] = None,
        config: Optional[Config] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or Config()
        self.clock = clock
        self.store = store
        self.scheduler = scheduler if scheduler is not None else store.scheduler
        self.attributor = attributor or SpeakerAttributor(self.config.speakers)
        self.compressor = compressor or CompressionEngine(self.config.compression)
        self.summaries = summaries or SummaryScheduler(self.config.summarization)
        self._housekeeping = None
        if self.scheduler is not None:
            store.start_autosave()
            interval = self.config.housekeeping_interval_seconds
            if interval and interval > 0:
                self._housekeeping = self.scheduler.call_every(
                    interval, self.housekeeping, name="housekeeping"
                )

    @classmethod
    def from_config(cls, config: Config, clock: Clock = utc_now) -> "ConversationEngine":
        scheduler = Scheduler(clock)
        store = SessionStore.open(
            config.data_dir or ".", config.storage, clock=clock, scheduler=scheduler
        )
        return cls(store, scheduler=scheduler, config=config, clock=clock)

    def __enter__(self) -> "ConversationEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._housekeeping is not None:
            self._housekeeping.cancel()
            self._housekeeping = None
        self.store.close()

    @property
    def persistence_degraded(self) -> bool:
        return self.store.persistence_degraded

    # ---- sessions ----

    def start_session(self, title: Optional[str] = None) -> Session:
        session = self.store.start_session(title)
        self.summaries.reset(session, session.start_time)
        return copy.deepcopy(session)

    def continue_session(self, session_id: str) -> bool:
        if not self.store.continue_session(session_id):
            return False
        session = self.store.get_current_session()
        self.summaries.reset(session, self.clock())
        return True

    def end_current_session(self) -> Optional[Session]:
        session = self.store.end_current_session()
        return copy.deepcopy(session) if session is not None else None

    def get_current_session(self) -> Optional[Session]:
        session = self.store.get_current_session()
        return copy.deepcopy(session) if session is not None else None

    def get_session(self, session_id: str) -> Optional[Session]:
        session = self.store.get_session(session_id)
        return copy.deepcopy(session) if session is not None else None

    def get_all_sessions(self) -> List[Session]:
        return copy.deepcopy(self.store.get_all_sessions())

    def rename_speaker(self, speaker_id: str, name: str) -> bool:
        session = self.store.get_current_session()
        if session is None:
            return False
        if not self.attributor.rename(session, speaker_id, name):
            return False
        self.store.request_save()
        return True

    # ---- messages ----

    def add_message(self, content: str, is_question: bool = False) -> Optional[Message]:
        text = (content or "").strip()
        if not text or len(text) < self.config.min_message_chars:
            logger.debug("Ignoring short utterance %r", content)
            return None

        session = self.store.get_current_session()
        if session is None:
            session = self.store.start_session()
            self.summaries.reset(session, session.start_time)

        now = self.clock()
        last = session.last_message()
        if last is not None and now < last.timestamp:
            now = last.timestamp

        detection = self.attributor.attribute(session, text, now)
        self.attributor.apply(session, detection, now)

        message = Message(
            id=self._new_message_id(),
            timestamp=now,
            speaker_id=detection.speaker_id,
            content=text,
            is_question=bool(is_question),
            word_count=word_count(text),
            keywords=extract_keywords(text),
            sentiment_score=sentiment_score(text),
        )
        session.messages.append(message)
        if self.config.validate_invariants:
            validate_session(session)
        self.store.request_save()

        if len(session.messages) > LARGE_SESSION_MESSAGES and len(session.messages) % 50 == 1:
            logger.warning("Large session %s: %s messages", session.session_id, len(session.messages))

        if self._run_checks(session, now):
            self.store.request_save()
        return copy.deepcopy(message)

    def _new_message_id(self) -> str:
        return generate_id("msg")

    def _run_checks(self, session: Session, now) -> bool:
        groups = self.compressor.check_and_run(session, now)
        summary = self.summaries.check_and_run(session, now)
        changed = bool(groups) or summary is not None
        if changed and self.config.validate_invariants:
            validate_session(session)
        return changed

    # ---- timers ----

    def housekeeping(self) -> None:
        session = self.store.get_current_session()
        if session is None:
            return
        if self._run_checks(session, self.clock()):
            self.store.request_save()

    def tick(self) -> int:
        if self.scheduler is None:
            return 0
        return self.scheduler.run_pending()

    # ---- context for LLM-facing callers ----

    def conversation_context(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        session = self.store.get_current_session()
        if session is None:
            return []
        folded = session.compressed_ids()
        timed = []
        for group in session.compressed_history:
            timed.append(
                (group.time_range.start, {
                    "kind": "compressed",
                    "timestamp": to_iso(group.time_range.start),
                    "speaker_id": group.speaker_id,
                    "speaker": session.speaker_name(group.speaker_id),
                    "text": group.summary,
                    "message_ids": list(group.original_message_ids),
                })
            )
        for msg in session.messages:
            if msg.id in folded:
                continue
            timed.append(
                (msg.timestamp, {
                    "kind": "message",
                    "timestamp": to_iso(msg.timestamp),
                    "speaker_id": msg.speaker_id,
                    "speaker": session.speaker_name(msg.speaker_id),
                    "text": msg.content,
                    "is_question": msg.is_question,
                })
            )
        timed.sort(key=lambda pair: pair[0])
        entries: List[Dict[str, Any]] = [entry for _, entry in timed]
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries
