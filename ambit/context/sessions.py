"""Session detection — groups tasks into sessions separated by idle gaps."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta

from uuid_extensions import uuid7

from ambit.context.importance import DEFAULT_CONTEXT_CONFIG, ContextConfig
from ambit.models import Session, Task
from ambit.time import MS_PER_MINUTE, require_utc, utcnow

logger = logging.getLogger(__name__)


def _ms(delta: timedelta) -> int:
    return int(delta.total_seconds() * 1000)


class SessionManager:
    """Tracks the current session and keeps closed ones that ran long enough."""

    def __init__(self, config: ContextConfig | None = None):
        self.config = config or DEFAULT_CONTEXT_CONFIG
        self.sessions: dict[str, Session] = {}
        self.current: Session | None = None
        self.last_activity: datetime | None = None

    @property
    def gap(self) -> timedelta:
        return timedelta(minutes=self.config.session_gap_minutes)

    def record_activity(self, timestamp: datetime | None = None) -> Session:
        ts = require_utc(timestamp) if timestamp else utcnow()
        if self.current is None or self.last_activity is None or ts - self.last_activity > self.gap:
            if self.current is not None and self.last_activity is not None:
                self.close_session(self.last_activity)
            self.current = Session(id=f"session_{uuid7()}", start_time=ts)
            self.sessions[self.current.id] = self.current
            logger.debug("New session started: %s", self.current.id)

        self.last_activity = ts
        self.current.total_duration_ms = max(0, _ms(ts - self.current.start_time))
        return self.current

    def add_task(self, task: Task) -> Session:
        """Attach a task, opening or rolling the session from its timestamps."""
        self.record_activity(task.start_time)
        session = self.record_activity(task.end_time)
        task.session_id = session.id
        session.tasks.append(task)
        self._update_top_entities(session)
        return session

    def close_session(self, end_time: datetime | None = None) -> None:
        session = self.current
        if session is None:
            return
        end = require_utc(end_time) if end_time else utcnow()
        session.end_time = end
        session.is_active = False
        session.total_duration_ms = max(0, _ms(end - session.start_time))

        if session.total_duration_ms < self.config.session_min_duration_minutes * MS_PER_MINUTE:
            self.sessions.pop(session.id, None)
            logger.debug("Session discarded (too short): %s", session.id)
        else:
            logger.debug(
                "Session closed: %s (%dmin)", session.id, session.total_duration_ms // MS_PER_MINUTE
            )
        self.current = None

    def get(self, session_id: str) -> Session | None:
        return self.sessions.get(session_id)

    def recent_sessions(self, limit: int = 10) -> list[Session]:
        return sorted(self.sessions.values(), key=lambda s: s.start_time, reverse=True)[:limit]

    def _update_top_entities(self, session: Session) -> None:
        scores: dict[str, float] = defaultdict(float)
        labels: dict[str, str] = {}
        for task in session.tasks:
            minutes = _ms(require_utc(task.end_time) - require_utc(task.start_time)) / MS_PER_MINUTE
            for entity in task.entities:
                scores[entity.id] += entity.confidence * minutes
                labels.setdefault(entity.id, entity.label)
        ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
        session.top_entities = [
            {"id": i, "label": labels[i], "importance": s}
            for i, s in ranked[: self.config.max_entities_per_session]
        ]

    def serialize(self) -> dict:
        return {
            "sessions": [s.model_dump(mode="json") for s in self.sessions.values()],
            "current_session_id": self.current.id if self.current else None,
        }

    def load(self, data: dict) -> None:
        self.sessions = {}
        for raw in data.get("sessions", []):
            session = Session.model_validate(raw)
            self.sessions[session.id] = session
        self.current = self.sessions.get(data.get("current_session_id") or "")
        if self.current:
            self.last_activity = self.current.start_time + timedelta(
                milliseconds=self.current.total_duration_ms
            )
