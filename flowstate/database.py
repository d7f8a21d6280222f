"""
============================================================
 FLOWSTATE — Session History (SQLAlchemy)
 Finished sessions and the nudges shown during them.
 Write failures are rolled back and logged; they never
 reach the running session.
============================================================
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

import config

logger = logging.getLogger(__name__)

Base = declarative_base()
Session = scoped_session(sessionmaker(expire_on_commit=False))
engine = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionLog(Base):
    """One finished study session."""
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    start_time = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    end_time = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    study_goal = Column(String(40), nullable=False)
    energy_level = Column(String(20), nullable=False)
    planned_seconds = Column(Integer, default=0)             # 0 = unlimited
    elapsed_seconds = Column(Integer, default=0)
    average_focus = Column(Float, nullable=True)              # harsh average, 0-1
    flow_level = Column(String(20), nullable=True)
    completed = Column(Integer, default=0)                    # countdown reached 0
    insight = Column(Text, nullable=True)

    def __repr__(self):
        return f"<Session #{self.id} {self.study_goal} {self.elapsed_seconds}s>"

    def to_dict(self):
        return {
            "id": self.id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "study_goal": self.study_goal,
            "energy_level": self.energy_level,
            "planned_seconds": self.planned_seconds,
            "elapsed_seconds": self.elapsed_seconds,
            "average_focus": self.average_focus,
            "flow_level": self.flow_level,
            "completed": bool(self.completed),
            "insight": self.insight,
        }


class NudgeLog(Base):
    """A nudge that was actually displayed."""
    __tablename__ = "nudges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id"), nullable=True)
    is_distracted = Column(Integer, default=0)
    text = Column(Text, nullable=False)

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "session_id": self.session_id,
            "is_distracted": bool(self.is_distracted),
            "text": self.text,
        }


def init_db(uri: str = config.DATABASE_URI):
    """Bind the session factory and create tables if they don't exist."""
    global engine
    kwargs = {}
    if uri.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if uri in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    Session.remove()
    if engine is not None:
        engine.dispose()
    engine = create_engine(uri, echo=False, **kwargs)
    Session.configure(bind=engine)
    Base.metadata.create_all(engine)
    logger.info("[DB] Ready (%s)", uri)
    return engine


def log_session(study_goal: str, energy_level: str, **kwargs) -> Optional[dict]:
    """Store one finished session. Returns its dict, or None on failure."""
    if engine is None:
        return None
    session = Session()
    try:
        row = SessionLog(
            study_goal=study_goal,
            energy_level=energy_level,
            start_time=kwargs.get("start_time") or _utcnow(),
            end_time=kwargs.get("end_time") or _utcnow(),
            planned_seconds=kwargs.get("planned_seconds", 0),
            elapsed_seconds=kwargs.get("elapsed_seconds", 0),
            average_focus=kwargs.get("average_focus"),
            flow_level=kwargs.get("flow_level"),
            completed=int(bool(kwargs.get("completed"))),
            insight=kwargs.get("insight"),
        )
        session.add(row)
        session.commit()
        return row.to_dict()
    except Exception:
        session.rollback()
        logger.exception("[DB] Failed to log session")
        return None
    finally:
        Session.remove()


def log_nudge(text: str, is_distracted: bool, session_id: Optional[int] = None) -> Optional[dict]:
    if engine is None:
        return None
    session = Session()
    try:
        row = NudgeLog(text=text, is_distracted=int(bool(is_distracted)), session_id=session_id)
        session.add(row)
        session.commit()
        return row.to_dict()
    except Exception:
        session.rollback()
        logger.exception("[DB] Failed to log nudge")
        return None
    finally:
        Session.remove()


def attach_nudges(session_id: int, since: datetime) -> int:
    """Link nudges shown since `since` (not yet linked) to a finished session."""
    if engine is None:
        return 0
    session = Session()
    try:
        count = (
            session.query(NudgeLog)
            .filter(NudgeLog.session_id.is_(None), NudgeLog.timestamp >= since)
            .update({NudgeLog.session_id: session_id}, synchronize_session=False)
        )
        session.commit()
        return count
    except Exception:
        session.rollback()
        logger.exception("[DB] Failed to attach nudges")
        return 0
    finally:
        Session.remove()


def get_recent_sessions(limit: int = config.RECENT_SESSION_LIMIT):
    """Most recent sessions first, each with its nudge count."""
    if engine is None:
        return []
    session = Session()
    try:
        rows = (
            session.query(SessionLog)
            .order_by(SessionLog.end_time.desc(), SessionLog.id.desc())
            .limit(limit)
            .all()
        )
        result = []
        for row in rows:
            data = row.to_dict()
            data["nudge_count"] = (
                session.query(NudgeLog).filter(NudgeLog.session_id == row.id).count()
            )
            result.append(data)
        return result
    finally:
        Session.remove()
