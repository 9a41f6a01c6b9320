"""Pydantic models shared across all layers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EntityType = Literal["person", "topic", "app", "content", "place", "project", "goal", "skill"]
ContextType = Literal["work", "learning", "social", "entertainment", "personal", "unknown"]
UserRole = Literal["creator", "collaborator", "learner", "consumer", "viewer", "unknown"]
EngagementTrend = Literal["new", "increasing", "stable", "decreasing"]
Confidence = Literal["high", "medium", "low"]

ENTITY_TYPES: tuple[str, ...] = (
    "person", "topic", "app", "content", "place", "project", "goal", "skill",
)


def _now() -> datetime:
    return datetime.now(tz=UTC)


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class EntityNode(BaseModel):
    """A canonical entity. Mutated in place by the store and enrichment."""

    id: str  # type:key
    label: str  # original casing, first-seen wins
    type: EntityType
    weight: int = 1
    first_seen: datetime = Field(default_factory=_now)
    last_seen: datetime = Field(default_factory=_now)
    contexts: list[str] = Field(default_factory=list)
    verified: bool = False

    # Enrichment-derived
    salience: float = 0.0
    role: UserRole | None = None
    engagement_trend: EngagementTrend | None = None
    primary_context: ContextType | None = None
    proficiency: float | None = None
    engagement_ms: int = 0
    session_count: int = 0


class EntityEdge(BaseModel):
    """Order-independent edge keyed by the sorted endpoint pair."""

    source: str
    target: str
    weight: int = 1
    relation: str | None = None
    context: ContextType | None = None
    last_active: datetime | None = None


class EntityEngagement(BaseModel):
    total_ms: int = 0
    sessions: int = 0
    last_seen: datetime = Field(default_factory=_now)
    recent_ms: int = 0  # rolling 7-day bucket


class ActivitySignals(BaseModel):
    entity_engagement: dict[str, EntityEngagement] = Field(default_factory=dict)
    hourly_activity: list[int] = Field(default_factory=lambda: [0] * 24)
    daily_activity: list[int] = Field(default_factory=lambda: [0] * 7)  # Monday = 0
    session_durations: list[int] = Field(default_factory=list)  # last 100
    switch_timestamps: list[datetime] = Field(default_factory=list)  # last hour
    total_activity_ms: int = 0
    last_updated: datetime = Field(default_factory=_now)


class GraphMetadata(BaseModel):
    peak_hours: list[int] = Field(default_factory=list)
    peak_days: list[int] = Field(default_factory=list)
    current_focus: list[str] = Field(default_factory=list)
    avg_session_minutes: int = 0
    context_switch_rate: int = 0
    category_distribution: dict[str, float] = Field(default_factory=dict)
    total_engagement_ms: int = 0
    last_updated: datetime = Field(default_factory=_now)


# ---------------------------------------------------------------------------
# Raw activity feed (read-only to the graph engine)
# ---------------------------------------------------------------------------


class ActivityEntry(BaseModel):
    """One focused window/tab span."""

    app: str
    title: str = ""
    url: str | None = None
    summary: str | None = None
    start: datetime
    end: datetime
    duration_ms: int = Field(default=0, ge=0)


class ContentSnapshot(BaseModel):
    """OCR'd screen text captured at a point in time."""

    timestamp: datetime
    app: str
    title: str = ""
    url: str | None = None
    text: str = ""
    summary: str | None = None


class ClipboardEntry(BaseModel):
    timestamp: datetime
    app: str = ""
    text: str


class NowPlayingEntry(BaseModel):
    timestamp: datetime
    app: str = ""
    track: str
    artist: str = ""


# ---------------------------------------------------------------------------
# LLM extraction / cleanup payloads (validated, invalid entries dropped)
# ---------------------------------------------------------------------------


class ExtractedEntity(BaseModel):
    label: str = Field(min_length=2, max_length=50)
    type: EntityType
    confidence: str = "medium"


class ExtractedRelation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_label: str = Field(alias="from", min_length=1)
    to_label: str = Field(alias="to", min_length=1)
    relation: str = Field(min_length=1)


class MergeInstruction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    into: str
    from_ids: list[str] = Field(alias="from", default_factory=list)


class CleanupDecision(BaseModel):
    keep: list[str] = Field(default_factory=list)
    remove: list[str] = Field(default_factory=list)
    merge: list[MergeInstruction] = Field(default_factory=list)


class MemoryContext(BaseModel):
    """A semantic-memory search hit. Only used for supplementary edges."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    title: str | None = None
    summary: str | None = None
    content: str | None = None


# ---------------------------------------------------------------------------
# User model
# ---------------------------------------------------------------------------

RelationshipType = Literal["collaborator", "manager", "mentor", "friend", "contact", "unknown"]
ProjectStatus = Literal["active", "paused", "completed", "unknown"]
Intent = Literal["creating", "communicating", "researching", "consuming", "unknown"]


class PersonEntity(BaseModel):
    id: str
    name: str
    relationship: RelationshipType
    context: str
    last_interaction: datetime
    interaction_count: int
    communication_channels: list[str] = Field(default_factory=list)
    shared_projects: list[str] = Field(default_factory=list)
    salience: float = 0.0


class ProjectEntity(BaseModel):
    id: str
    name: str
    status: ProjectStatus
    context: str
    last_activity: datetime
    total_engagement_ms: int = 0
    recent_engagement_ms: int = 0
    related_people: list[str] = Field(default_factory=list)
    related_tools: list[str] = Field(default_factory=list)
    salience: float = 0.0


class SkillEntity(BaseModel):
    id: str
    name: str
    proficiency: float
    total_engagement_ms: int
    last_used: datetime
    trend: EngagementTrend
    related_projects: list[str] = Field(default_factory=list)


class WorkPatterns(BaseModel):
    peak_hours: list[int] = Field(default_factory=list)
    peak_days: list[int] = Field(default_factory=list)
    avg_session_minutes: int = 0
    avg_focus_block_minutes: int = 0
    context_switch_rate: int = 0
    primary_work_context: ContextType = "work"
    work_life_balance: dict[str, float] = Field(default_factory=dict)


class CurrentContext(BaseModel):
    app: str
    task: str
    intent: Intent
    focus_depth: float
    active_project: ProjectEntity | None = None
    active_people: list[PersonEntity] = Field(default_factory=list)
    context_started: datetime
    context_duration_ms: int
    confidence: Confidence


class CurrentFocus(BaseModel):
    task: str
    entities: list[str] = Field(default_factory=list)
    confidence: Confidence


class UserModel(BaseModel):
    top_people: list[PersonEntity] = Field(default_factory=list)
    active_projects: list[ProjectEntity] = Field(default_factory=list)
    expertise: list[SkillEntity] = Field(default_factory=list)
    work_patterns: WorkPatterns
    current_focus: CurrentFocus
    data_quality: Literal["sparse", "moderate", "rich"] = "sparse"
    last_updated: datetime = Field(default_factory=_now)


class TaskBlock(BaseModel):
    """A contiguous span of activity with no gap reaching the split threshold."""

    id: str
    label: str
    intent: str
    start_time: datetime
    end_time: datetime
    duration_ms: int
    apps: list[str] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    project: str | None = None
    focus_score: float
    confidence: Confidence


class DaySummary(BaseModel):
    date: str  # local ISO date
    total_active_ms: int = 0
    task_blocks: list[TaskBlock] = Field(default_factory=list)
    top_apps: list[dict[str, Any]] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    avg_focus_score: float = 0.0


# ---------------------------------------------------------------------------
# Task / session shapes (importance scoring)
# ---------------------------------------------------------------------------


class ContextEntity(BaseModel):
    id: str
    label: str
    type: str = "topic"
    role: str | None = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class ContextRelationship(BaseModel):
    from_id: str
    to_id: str
    type: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    evidence: str = ""


class Task(BaseModel):
    id: str
    session_id: str = ""
    start_time: datetime
    end_time: datetime
    intent: str = "unknown"
    intent_confidence: float = 0.5
    primary_app: str = ""
    apps: list[str] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)
    entities: list[ContextEntity] = Field(default_factory=list)
    relationships: list[ContextRelationship] = Field(default_factory=list)
    activity_summary: str = ""


class Session(BaseModel):
    id: str
    start_time: datetime
    end_time: datetime | None = None  # None while ongoing
    summary: str | None = None
    primary_intent: str | None = None
    tasks: list[Task] = Field(default_factory=list)
    top_entities: list[dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True
    total_duration_ms: int = 0


class ImportanceFactors(BaseModel):
    dwell_time_ms: float = 0.0
    action_count: int = 0
    recurrence: int = 0  # sessions the entity appeared in
    centrality: float = 0.0
    last_seen: datetime | None = None


class ScoredEntity(BaseModel):
    id: str
    label: str
    type: str
    importance: float
    factors: ImportanceFactors
