"""Session persistence: storage schema codec and migration."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from .models import (
    SCHEMA_VERSION,
    CompressedGroup,
    Message,
    Session,
    Speaker,
    SpeakerStats,
    StorageEnvelope,
    Summary,
    TimeRange,
)
from .timeutil import Clock, coerce_time, parse_iso, to_iso, utc_now

logger = logging.getLogger("parley")


def _range_to_dict(value: TimeRange) -> dict:
    return {"start": to_iso(value.start), "end": to_iso(value.end)}


def message_to_dict(msg: Message) -> dict:
    data = {
        "id": msg.id,
        "timestamp": to_iso(msg.timestamp),
        "speakerId": msg.speaker_id,
        "content": msg.content,
        "isQuestion": msg.is_question,
        "wordCount": msg.word_count,
    }
    if msg.keywords is not None:
        data["keywords"] = list(msg.keywords)
    if msg.sentiment_score is not None:
        data["sentimentScore"] = msg.sentiment_score
    return data


def speaker_to_dict(speaker: Speaker) -> dict:
    return {
        "speakerId": speaker.speaker_id,
        "name": speaker.name,
        "firstDetected": to_iso(speaker.first_detected),
        "lastActive": to_iso(speaker.last_active),
        "messageCount": speaker.message_count,
        "characteristics": list(speaker.characteristics),
    }


def summary_to_dict(summary: Summary) -> dict:
    return {
        "timestamp": to_iso(summary.timestamp),
        "content": summary.content,
        "timeRange": _range_to_dict(summary.time_range),
        "keyPoints": list(summary.key_points),
        "speakerStats": [
            {
                "speakerId": s.speaker_id,
                "messageCount": s.message_count,
                "wordCount": s.word_count,
                "questionsAsked": s.questions_asked,
                "activeTimeMinutes": s.active_time_minutes,
            }
            for s in summary.speaker_stats
        ],
    }


def group_to_dict(group: CompressedGroup) -> dict:
    return {
        "timeRange": _range_to_dict(group.time_range),
        "speakerId": group.speaker_id,
        "summary": group.summary,
        "originalMessageIds": list(group.original_message_ids),
        "wordCount": group.word_count,
        "compressionRatio": group.compression_ratio,
    }


def session_to_dict(session: Session) -> dict:
    data: Dict[str, Any] = {
        "sessionId": session.session_id,
        "startTime": to_iso(session.start_time),
    }
    if session.end_time is not None:
        data["endTime"] = to_iso(session.end_time)
    data.update(
        {
            "messages": [message_to_dict(m) for m in session.messages],
            "summaries": [summary_to_dict(s) for s in session.summaries],
            "speakers": [speaker_to_dict(s) for s in session.speakers],
            "compressedHistory": [group_to_dict(g) for g in session.compressed_history],
            "isActive": session.is_active,
        }
    )
    if session.title is not None:
        data["title"] = session.title
    if session.metadata:
        data["metadata"] = dict(session.metadata)
    return data


def envelope_to_dict(envelope: StorageEnvelope) -> dict:
    data = {
        "currentSessionId": envelope.current_session_id,
        "sessions": {sid: session_to_dict(s) for sid, s in envelope.sessions.items()},
        "version": envelope.version,
    }
    if envelope.settings:
        data["settings"] = dict(envelope.settings)
    return data


def dumps_envelope(envelope: StorageEnvelope) -> str:
    return json.dumps(envelope_to_dict(envelope), ensure_ascii=False)


# Decoding. Strict readers raise on malformed records; the migration layer
# below decides what to do about it.


def _require_time(value: Any, strict: bool, fallback) -> Any:
    if strict:
        return parse_iso(value)
    result = coerce_time(value)
    return result if result is not None else fallback


def _range_from_dict(data: dict, strict: bool, fallback) -> TimeRange:
    if not isinstance(data, dict):
        if strict:
            raise ValueError("timeRange must be an object")
        return TimeRange(start=fallback, end=fallback)
    return TimeRange(
        start=_require_time(data.get("start"), strict, fallback),
        end=_require_time(data.get("end"), strict, fallback),
    )


def message_from_dict(data: dict, strict: bool = True, fallback=None) -> Message:
    content = str(data["content"])
    keywords = data.get("keywords")
    sentiment = data.get("sentimentScore")
    return Message(
        id=str(data["id"]),
        timestamp=_require_time(data.get("timestamp"), strict, fallback),
        speaker_id=str(data["speakerId"]),
        content=content,
        is_question=bool(data.get("isQuestion", False)),
        word_count=int(data.get("wordCount") or len(content.split()) or 1),
        keywords=[str(k) for k in keywords] if isinstance(keywords, list) else None,
        sentiment_score=float(sentiment) if sentiment is not None else None,
    )


def speaker_from_dict(data: dict, strict: bool = True, fallback=None) -> Speaker:
    first = _require_time(data.get("firstDetected"), strict, fallback)
    return Speaker(
        speaker_id=str(data["speakerId"]),
        name=str(data.get("name") or data["speakerId"]),
        first_detected=first,
        last_active=_require_time(data.get("lastActive"), strict, first),
        message_count=int(data.get("messageCount", 0)),
        characteristics=[str(c) for c in data.get("characteristics", [])],
    )


def summary_from_dict(data: dict, strict: bool = True, fallback=None) -> Summary:
    stats = [
        SpeakerStats(
            speaker_id=str(s["speakerId"]),
            message_count=int(s.get("messageCount", 0)),
            word_count=int(s.get("wordCount", 0)),
            questions_asked=int(s.get("questionsAsked", 0)),
            active_time_minutes=float(s.get("activeTimeMinutes", 0.0)),
        )
        for s in data.get("speakerStats", [])
    ]
    return Summary(
        timestamp=_require_time(data.get("timestamp"), strict, fallback),
        content=str(data.get("content", "")),
        time_range=_range_from_dict(data.get("timeRange"), strict, fallback),
        key_points=[str(k) for k in data.get("keyPoints", [])],
        speaker_stats=stats,
    )


def group_from_dict(data: dict, strict: bool = True, fallback=None) -> CompressedGroup:
    return CompressedGroup(
        time_range=_range_from_dict(data.get("timeRange"), strict, fallback),
        speaker_id=str(data["speakerId"]),
        summary=str(data.get("summary", "")),
        original_message_ids=[str(i) for i in data.get("originalMessageIds", [])],
        word_count=int(data.get("wordCount", 0)),
        compression_ratio=float(data.get("compressionRatio", 0.0)),
    )


def session_from_dict(data: dict, strict: bool = True, fallback=None) -> Session:
    start = _require_time(data.get("startTime"), strict, fallback)
    end_raw = data.get("endTime")
    end = None
    if end_raw is not None:
        end = parse_iso(end_raw) if strict else coerce_time(end_raw)
    metadata = data.get("metadata")
    return Session(
        session_id=str(data["sessionId"]),
        start_time=start,
        end_time=end,
        is_active=bool(data.get("isActive", False)),
        messages=[message_from_dict(m, strict, start) for m in data.get("messages", [])],
        summaries=[summary_from_dict(s, strict, start) for s in data.get("summaries", [])],
        speakers=[speaker_from_dict(s, strict, start) for s in data.get("speakers", [])],
        compressed_history=[
            group_from_dict(g, strict, start) for g in data.get("compressedHistory", [])
        ],
        title=data.get("title"),
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )


def empty_session(session_id: str, now) -> Session:
    return Session(session_id=session_id, start_time=now, is_active=False)


def migrate_session(session_id: str, data: Any, clock: Clock = utc_now) -> Session:
    """Decode one stored session, degrading per field and then per record.

    Unparseable time fields fall back to the session start (or now), and a
    message never ends up earlier than the one before it. A record that still
    cannot be decoded becomes an empty inactive session with the same id.
    """
    now = clock()
    try:
        if not isinstance(data, dict):
            raise ValueError("session record must be an object")
        data = dict(data)
        data.setdefault("sessionId", session_id)
        start = coerce_time(data.get("startTime"), now)
        session = session_from_dict(data, strict=False, fallback=start)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("Resetting unreadable session %s: %s", session_id, exc)
        return empty_session(session_id, now)
    _repair_session(session)
    return session


def _repair_session(session: Session) -> None:
    previous = None
    for msg in session.messages:
        # unparseable times arrive as the session start; clamp to keep order
        if previous is not None and msg.timestamp < previous:
            msg.timestamp = previous
        previous = msg.timestamp

    counts: Dict[str, int] = {}
    for msg in session.messages:
        counts[msg.speaker_id] = counts.get(msg.speaker_id, 0) + 1
        if session.find_speaker(msg.speaker_id) is None:
            session.speakers.append(
                Speaker(
                    speaker_id=msg.speaker_id,
                    name=f"Speaker {len(session.speakers) + 1}",
                    first_detected=msg.timestamp,
                    last_active=msg.timestamp,
                )
            )
    for speaker in session.speakers:
        speaker.message_count = counts.get(speaker.speaker_id, 0)

    known = {msg.id for msg in session.messages}
    folded: set = set()
    kept = []
    for group in session.compressed_history:
        ids = set(group.original_message_ids)
        if ids <= known and not ids & folded:
            kept.append(group)
            folded.update(ids)
    session.compressed_history = kept
    if session.is_active:
        session.end_time = None


def envelope_from_dict(data: Any, clock: Clock = utc_now) -> StorageEnvelope:
    if not isinstance(data, dict):
        raise ValueError("storage document must be an object")
    version = str(data.get("version") or "")
    raw_sessions = data.get("sessions") or {}
    if not isinstance(raw_sessions, dict):
        raw_sessions = {}

    sessions: Dict[str, Session] = {}
    for sid, raw in raw_sessions.items():
        if version == SCHEMA_VERSION:
            try:
                sessions[sid] = session_from_dict(raw, strict=True)
                _repair_session(sessions[sid])
                continue
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.info("Session %s needs migration", sid)
        sessions[sid] = migrate_session(sid, raw, clock)
        sessions[sid].session_id = sid

    current = data.get("currentSessionId")
    if current is not None and current not in sessions:
        logger.warning("Dropping dangling current session id %s", current)
        current = None
    settings = data.get("settings")
    return StorageEnvelope(
        current_session_id=current,
        sessions=sessions,
        version=SCHEMA_VERSION,
        settings=dict(settings) if isinstance(settings, dict) else {},
    )


def loads_envelope(text: str, clock: Clock = utc_now) -> StorageEnvelope:
    return envelope_from_dict(json.loads(text), clock)

