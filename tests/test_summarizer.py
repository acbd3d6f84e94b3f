from datetime import datetime, timedelta, timezone

from parley.config import SummaryConfig
from parley.models import Message, Session, Speaker, Summary, TimeRange
from parley.summarizer import (
    EMPTY_DIGEST,
    SummaryScheduler,
    generate_meeting_bullets,
    generate_meeting_summary_text,
)

T0 = datetime(2026, 1, 13, 10, 0, 0, tzinfo=timezone.utc)


def _session():
    session = Session(session_id="s", start_time=T0)
    for n in (1, 2):
        session.speakers.append(
            Speaker(speaker_id=f"speaker_{n}", name=f"Speaker {n}", first_detected=T0, last_active=T0)
        )
    return session


def _add(session, i, text, speaker="speaker_1", seconds=None, question=False):
    msg = Message(
        id=f"m{i}",
        timestamp=T0 + timedelta(seconds=i if seconds is None else seconds),
        speaker_id=speaker,
        content=text,
        is_question=question,
        word_count=len(text.split()),
    )
    session.messages.append(msg)
    session.find_speaker(speaker).message_count += 1
    return msg


def test_not_due_before_interval():
    scheduler = SummaryScheduler()
    session = _session()
    _add(session, 1, "Hello there")
    assert scheduler.check_and_run(session, T0 + timedelta(seconds=59)) is None
    assert session.summaries == []


def test_summary_key_points_and_stats():
    scheduler = SummaryScheduler()
    session = _session()
    _add(session, 1, "What is the plan for today?", question=True)
    _add(session, 2, " ".join(["detail"] * 25), speaker="speaker_2")
    _add(session, 3, "Short reply", speaker="speaker_2")
    now = T0 + timedelta(minutes=2)
    summary = scheduler.check_and_run(session, now)

    assert summary is not None
    assert summary.time_range == TimeRange(start=T0, end=now)
    assert summary.key_points[0].startswith("Q (")
    assert summary.key_points[1].startswith("• (")
    assert len(summary.key_points) == 2
    stats = {s.speaker_id: s for s in summary.speaker_stats}
    assert set(stats) == {"speaker_1", "speaker_2"}
    assert stats["speaker_1"].questions_asked == 1
    assert stats["speaker_2"].message_count == 2
    assert stats["speaker_2"].word_count == 27
    assert stats["speaker_1"].active_time_minutes == 2.0
    assert "Speaker Activity:" in summary.content
    assert "Speaker 2: 2 messages, 0 questions" in summary.content


def test_key_points_are_capped():
    scheduler = SummaryScheduler(SummaryConfig(max_key_points=3))
    session = _session()
    for i in range(8):
        _add(session, i, f"Question number {i}?", question=True)
    summary = scheduler.check_and_run(session, T0 + timedelta(minutes=1))
    assert len(summary.key_points) == 3
    assert all(p.startswith("Q") for p in summary.key_points)


def test_key_point_truncation_and_no_timestamps():
    scheduler = SummaryScheduler(SummaryConfig(include_timestamps=False, max_message_length=10))
    session = _session()
    _add(session, 1, "Why is the build so slow lately?", question=True)
    summary = scheduler.check_and_run(session, T0 + timedelta(minutes=1))
    assert summary.key_points == ["Q: Why is the..."]


def test_empty_window_does_not_reset_clock():
    scheduler = SummaryScheduler()
    session = _session()
    assert scheduler.check_and_run(session, T0 + timedelta(minutes=5)) is None
    assert scheduler.last_summary_time(session) == T0
    _add(session, 1, "Are we ready?", seconds=301, question=True)
    summary = scheduler.check_and_run(session, T0 + timedelta(seconds=302))
    assert summary is not None
    assert summary.time_range.start == T0


def test_windows_do_not_overlap():
    scheduler = SummaryScheduler()
    session = _session()
    first_end = T0 + timedelta(minutes=1)
    _add(session, 1, "First point?", seconds=60, question=True)
    scheduler.check_and_run(session, first_end)
    _add(session, 2, "Second point?", seconds=60, question=True)
    _add(session, 3, "Third point?", seconds=90, question=True)
    second = scheduler.check_and_run(session, T0 + timedelta(minutes=2))
    assert second.time_range.start == first_end
    assert sum(s.message_count for s in second.speaker_stats) == 2
    assert [p.split(": ", 1)[1] for p in second.key_points] == ["Second point?", "Third point?"]


def test_reloaded_windows_start_after_previous_end():
    session = _session()
    first_end = T0 + timedelta(minutes=1)
    _add(session, 1, "Before?", seconds=60, question=True)
    _add(session, 2, "After?", seconds=90, question=True)
    session.summaries.append(
        Summary(timestamp=first_end, content="", time_range=TimeRange(start=T0, end=first_end))
    )
    summary = SummaryScheduler().check_and_run(session, T0 + timedelta(minutes=2))
    assert summary.speaker_stats[0].message_count == 1


def test_clock_resumes_from_stored_summaries():
    session = _session()
    end = T0 + timedelta(minutes=3)
    session.summaries.append(
        Summary(timestamp=end, content="", time_range=TimeRange(start=T0, end=end))
    )
    assert SummaryScheduler().last_summary_time(session) == end


def test_meeting_bullets():
    session = _session()
    _add(session, 1, "We agreed to ship on Friday. Can you update the docs?")
    _add(session, 2, "Who owns the migration?", speaker="speaker_2")
    bullets = generate_meeting_bullets(session)
    assert "Open question: Who owns the migration?" in bullets
    assert "Decision: We agreed to ship on Friday." in bullets
    assert "Action: Can you update the docs?" in bullets
    assert len(bullets) <= 6


def test_meeting_digest_for_empty_session():
    assert generate_meeting_bullets(_session()) == [EMPTY_DIGEST]
    text = generate_meeting_summary_text(_session(), now=T0)
    assert text.startswith("Meeting Summary")
    assert f"- {EMPTY_DIGEST}" in text
