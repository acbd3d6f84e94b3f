import json
from datetime import datetime, timedelta, timezone

from parley.models import (
    CompressedGroup,
    Message,
    Session,
    Speaker,
    SpeakerStats,
    StorageEnvelope,
    Summary,
    TimeRange,
    validate_session,
)
from parley.session_io import (
    dumps_envelope,
    envelope_to_dict,
    loads_envelope,
    migrate_session,
)

T0 = datetime(2026, 1, 13, 10, 0, 0, 123456, tzinfo=timezone.utc)


def _clock():
    return T0 + timedelta(hours=1)


def _populated_session():
    speaker = Speaker("speaker_1", "Speaker 1", T0, T0 + timedelta(seconds=2), 3, ["medium", "question"])
    messages = [
        Message(f"m{i}", T0 + timedelta(seconds=i, microseconds=7), "speaker_1", f"Message {i} text?", True, 3,
                keywords=["message"], sentiment_score=0.1)
        for i in range(3)
    ]
    group = CompressedGroup(
        TimeRange(messages[0].timestamp, messages[2].timestamp),
        "speaker_1",
        "10:00: Message 0 text?",
        ["m0", "m1", "m2"],
        9,
        0.3,
    )
    summary = Summary(
        T0 + timedelta(minutes=1),
        "Summary",
        TimeRange(T0, T0 + timedelta(minutes=1)),
        ["Q (10:00): Message 0 text?"],
        [SpeakerStats("speaker_1", 3, 9, 3, 1.0)],
    )
    return Session(
        session_id="session_a",
        start_time=T0,
        is_active=True,
        messages=messages,
        summaries=[summary],
        speakers=[speaker],
        compressed_history=[group],
        title="Standup",
        metadata={"environment": "python"},
    )


def test_envelope_round_trip():
    ended = Session("session_b", T0, end_time=T0 + timedelta(minutes=5), is_active=False)
    envelope = StorageEnvelope(
        current_session_id="session_a",
        sessions={"session_a": _populated_session(), "session_b": ended},
        settings={"autoSaveInterval": 5000},
    )
    restored = loads_envelope(dumps_envelope(envelope), _clock)
    assert restored == envelope


def test_wire_format_uses_camel_case_and_z_suffix():
    data = envelope_to_dict(StorageEnvelope("session_a", {"session_a": _populated_session()}))
    session = data["sessions"]["session_a"]
    assert data["version"] == "2.0"
    assert session["startTime"] == "2026-01-13T10:00:00.123456Z"
    assert "endTime" not in session
    assert session["messages"][0]["speakerId"] == "speaker_1"
    assert session["compressedHistory"][0]["originalMessageIds"] == ["m0", "m1", "m2"]
    assert session["summaries"][0]["speakerStats"][0]["questionsAsked"] == 3


def test_old_documents_are_migrated():
    start = T0.replace(microsecond=0)
    epoch_ms = int(start.timestamp()) * 1000
    raw = {
        "version": "1.0",
        "currentSessionId": "old",
        "sessions": {
            "old": {
                "sessionId": "old",
                "startTime": epoch_ms,
                "isActive": True,
                "endTime": "2026-01-13T11:00:00Z",
                "messages": [
                    {"id": "a", "timestamp": "2026-01-13T10:00:05Z", "speakerId": "speaker_1",
                     "content": "hello there friend"},
                    {"id": "b", "timestamp": "not a time", "speakerId": "speaker_2",
                     "content": "reply", "isQuestion": False, "wordCount": 1},
                ],
                "speakers": [],
                "compressedHistory": [
                    {"timeRange": {"start": epoch_ms, "end": epoch_ms}, "speakerId": "speaker_1",
                     "summary": "", "originalMessageIds": ["a", "missing"]},
                ],
            },
            "broken": {"messages": "nope"},
        },
    }
    envelope = loads_envelope(json.dumps(raw), _clock)
    assert envelope.version == "2.0"
    assert envelope.current_session_id == "old"

    old = envelope.sessions["old"]
    assert old.start_time == start
    assert old.end_time is None
    assert old.messages[0].word_count == 3
    assert old.messages[1].timestamp == old.messages[0].timestamp
    assert {s.speaker_id: s.message_count for s in old.speakers} == {"speaker_1": 1, "speaker_2": 1}
    assert old.compressed_history == []
    validate_session(old)

    broken = envelope.sessions["broken"]
    assert broken.session_id == "broken"
    assert broken.messages == []
    assert not broken.is_active
    assert broken.start_time == _clock()


def test_dangling_current_session_is_dropped():
    envelope = loads_envelope(json.dumps({"version": "2.0", "sessions": {}, "currentSessionId": "x"}))
    assert envelope.current_session_id is None


def test_migrate_non_object_resets_session():
    session = migrate_session("s", ["not", "a", "dict"], _clock)
    assert session.session_id == "s"
    assert session.start_time == _clock()


def test_current_version_documents_are_repaired():
    raw = {
        "version": "2.0",
        "currentSessionId": "s",
        "sessions": {
            "s": {
                "sessionId": "s",
                "startTime": "2026-01-13T10:00:00Z",
                "isActive": True,
                "messages": [
                    {"id": "a", "timestamp": "2026-01-13T10:00:05Z", "speakerId": "speaker_1",
                     "content": "hello there", "isQuestion": False, "wordCount": 2},
                    {"id": "b", "timestamp": "2026-01-13T10:00:06Z", "speakerId": "speaker_1",
                     "content": "again here", "isQuestion": False, "wordCount": 2},
                ],
                "speakers": [],
                "compressedHistory": [
                    {"timeRange": {"start": "2026-01-13T10:00:05Z", "end": "2026-01-13T10:00:06Z"},
                     "speakerId": "speaker_1", "summary": "", "originalMessageIds": ["a", "b"]},
                    {"timeRange": {"start": "2026-01-13T10:00:05Z", "end": "2026-01-13T10:00:05Z"},
                     "speakerId": "speaker_1", "summary": "", "originalMessageIds": ["a"]},
                ],
            }
        },
    }
    session = loads_envelope(json.dumps(raw), _clock).sessions["s"]
    assert [s.speaker_id for s in session.speakers] == ["speaker_1"]
    assert session.speakers[0].message_count == 2
    assert len(session.compressed_history) == 1
    validate_session(session)
