from datetime import datetime, timedelta, timezone

import pytest

from flowstate import database


@pytest.fixture
def db(monkeypatch):
    monkeypatch.setattr(database, "engine", None)
    database.init_db("sqlite://")
    yield database
    database.Session.remove()
    database.engine.dispose()


def test_log_session_returns_row(db):
    row = db.log_session("reading", "medium", planned_seconds=1500, elapsed_seconds=1500,
                         average_focus=0.82, flow_level="deep", completed=True, insight="Nice.")
    assert row["id"] is not None
    assert row["completed"] is True
    assert row["average_focus"] == pytest.approx(0.82)


def test_recent_sessions_newest_first(db):
    now = datetime.now(timezone.utc)
    db.log_session("reading", "low", end_time=now - timedelta(minutes=30))
    db.log_session("memorization", "high", end_time=now)
    sessions = db.get_recent_sessions()
    assert [s["study_goal"] for s in sessions] == ["memorization", "reading"]
    assert all(s["nudge_count"] == 0 for s in sessions)


def test_recent_sessions_limit(db):
    for _ in range(5):
        db.log_session("reading", "low")
    assert len(db.get_recent_sessions(limit=3)) == 3


def test_nudges_attach_to_finished_session(db):
    since = datetime.now(timezone.utc) - timedelta(seconds=5)
    db.log_nudge("Nice focus.", False)
    db.log_nudge("Time to reset?", True)
    row = db.log_session("problem-solving", "medium")

    assert db.attach_nudges(row["id"], since) == 2
    assert db.attach_nudges(row["id"], since) == 0
    assert db.get_recent_sessions()[0]["nudge_count"] == 2


def test_failed_write_rolls_back(db):
    assert db.log_session(None, "medium") is None
    assert db.log_session("reading", "medium") is not None
    assert len(db.get_recent_sessions()) == 1


def test_without_engine_everything_is_a_noop(monkeypatch):
    monkeypatch.setattr(database, "engine", None)
    assert database.log_session("reading", "low") is None
    assert database.log_nudge("hi", False) is None
    assert database.attach_nudges(1, datetime.now(timezone.utc)) == 0
    assert database.get_recent_sessions() == []


def test_default_timestamps_are_timezone_aware(db):
    row = db.log_session("reading", "low")
    started = datetime.fromisoformat(row["start_time"])
    assert started.utcoffset() == timedelta(0)
    assert abs(datetime.now(timezone.utc) - started) < timedelta(seconds=5)
