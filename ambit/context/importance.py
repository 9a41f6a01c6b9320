"""Importance scoring over discrete tasks and sessions.

A secondary ranking next to enrichment salience. Entities are scored from
five factors: dwell time, action count, recurrence across sessions,
centrality (relationship confidence), and exponential recency decay.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from pydantic import ValidationError

from ambit.models import ImportanceFactors, ScoredEntity, Session, Task
from ambit.time import MS_PER_MINUTE, days_since, require_utc, utcnow


@dataclass(frozen=True)
class ContextConfig:
    session_gap_minutes: int = 30
    session_min_duration_minutes: int = 5
    dwell_time_weight: float = 0.3
    recurrence_weight: float = 0.25
    centrality_weight: float = 0.25
    recency_decay_days: float = 14
    min_importance_to_keep: float = 0.1
    max_entities_per_session: int = 50

    @property
    def action_weight(self) -> float:
        return 1 - self.dwell_time_weight - self.recurrence_weight - self.centrality_weight


DEFAULT_CONTEXT_CONFIG = ContextConfig()


class ImportanceScorer:
    def __init__(self, config: ContextConfig | None = None):
        self.config = config or DEFAULT_CONTEXT_CONFIG
        self.factors: dict[str, ImportanceFactors] = {}
        self.labels: dict[str, str] = {}
        self.types: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self.factors)

    def process_task(self, task: Task) -> None:
        """Spread the task's duration over its entities, weighted by confidence."""
        duration_ms = (require_utc(task.end_time) - require_utc(task.start_time)).total_seconds() * 1000
        dwell_per_entity = max(0.0, duration_ms) / (len(task.entities) or 1)
        end = require_utc(task.end_time)

        for entity in task.entities:
            f = self.factors.setdefault(entity.id, ImportanceFactors())
            f.dwell_time_ms += dwell_per_entity * entity.confidence
            f.action_count += 1
            f.last_seen = max(f.last_seen, end) if f.last_seen else end
            self.labels[entity.id] = entity.label
            self.types[entity.id] = entity.type

        for rel in task.relationships:
            for node_id in (rel.from_id, rel.to_id):
                if node_id in self.factors:
                    self.factors[node_id].centrality += rel.confidence

    def process_session(self, session: Session) -> None:
        """Count one recurrence per session for every already-known entity in it."""
        seen = {e.id for task in session.tasks for e in task.entities}
        for entity_id in seen:
            if entity_id in self.factors:
                self.factors[entity_id].recurrence += 1

    def calculate_score(self, entity_id: str, now: datetime | None = None) -> float:
        f = self.factors.get(entity_id)
        if f is None:
            return 0.0
        cfg = self.config
        dwell = math.log2(f.dwell_time_ms / MS_PER_MINUTE + 1)
        actions = math.log2(f.action_count + 1)
        recurrence = math.log2(f.recurrence + 1)
        centrality = math.log2(f.centrality + 1)
        age_days = days_since(f.last_seen, now) if f.last_seen else float("inf")
        recency = math.exp(-max(0.0, age_days) / cfg.recency_decay_days)

        raw = (
            cfg.dwell_time_weight * dwell
            + cfg.action_weight * actions
            + cfg.recurrence_weight * recurrence
            + cfg.centrality_weight * centrality
        )
        return raw * recency

    def all_scored(self, now: datetime | None = None) -> list[ScoredEntity]:
        now = now or utcnow()
        scored = []
        for entity_id, f in self.factors.items():
            importance = self.calculate_score(entity_id, now)
            if importance < self.config.min_importance_to_keep:
                continue
            scored.append(
                ScoredEntity(
                    id=entity_id,
                    label=self.labels.get(entity_id, entity_id),
                    type=self.types.get(entity_id, "topic"),
                    importance=importance,
                    factors=f.model_copy(),
                )
            )
        scored.sort(key=lambda s: s.importance, reverse=True)
        return scored

    def top_entities(self, n: int, now: datetime | None = None) -> list[ScoredEntity]:
        return self.all_scored(now)[:n]

    def prune(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        doomed = [
            i for i in self.factors if self.calculate_score(i, now) < self.config.min_importance_to_keep
        ]
        for entity_id in doomed:
            self.factors.pop(entity_id, None)
            self.labels.pop(entity_id, None)
            self.types.pop(entity_id, None)
        return len(doomed)

    def serialize(self) -> dict:
        return {
            "factors": [[k, f.model_dump(mode="json")] for k, f in self.factors.items()],
            "labels": list(self.labels.items()),
            "types": list(self.types.items()),
        }

    def load(self, data: dict | None) -> None:
        """Restore from `serialize()` output. Malformed entries are dropped."""
        self.factors, self.labels, self.types = {}, {}, {}
        if not isinstance(data, dict):
            return
        for item in data.get("factors") or []:
            try:
                entity_id, raw = item
                self.factors[entity_id] = ImportanceFactors.model_validate(raw)
            except (ValueError, TypeError, ValidationError):
                continue
        self.labels = {k: v for k, v in (data.get("labels") or []) if k in self.factors}
        self.types = {k: v for k, v in (data.get("types") or []) if k in self.factors}
