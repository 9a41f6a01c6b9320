"""User model — people, projects, expertise, work patterns, current context, task blocks.

Pure projections over the entity store, engagement signals and the raw
activity feed. Nothing here mutates the graph.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from ambit.graph.store import EntityStore
from ambit.models import (
    ActivityEntry,
    ActivitySignals,
    ContextType,
    CurrentContext,
    CurrentFocus,
    EntityEdge,
    EntityEngagement,
    EntityNode,
    GraphMetadata,
    Intent,
    PersonEntity,
    ProjectEntity,
    ProjectStatus,
    RelationshipType,
    SkillEntity,
    TaskBlock,
    UserModel,
    WorkPatterns,
)
from ambit.time import MS_PER_HOUR, MS_PER_MINUTE, days_since, require_utc, utcnow

TASK_GAP = timedelta(minutes=5)
FOCUS_WINDOW = timedelta(minutes=30)
MIN_FOCUS_BLOCK_MS = 5 * MS_PER_MINUTE
MIN_EXPERTISE_MS = 10 * MS_PER_MINUTE
EXPERTISE_CAP_MS = 50 * MS_PER_HOUR
ACTIVE_RECENT_MS = 30 * MS_PER_MINUTE

SKIP_EXPERTISE_APPS = {"finder", "system preferences", "activity monitor", "preview"}

CHANNEL_PATTERNS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("slack",), "slack"),
    (("email", "gmail"), "email"),
    (("message", "imessage"), "messages"),
    (("telegram",), "telegram"),
    (("discord",), "discord"),
    (("whatsapp",), "whatsapp"),
    (("teams",), "teams"),
    (("zoom",), "zoom"),
)

_STATUS_ORDER: dict[str, int] = {"active": 0, "paused": 1, "unknown": 2, "completed": 3}


def _other(edge: EntityEdge, node_id: str) -> str:
    return edge.target if edge.source == node_id else edge.source


def _connected_of_type(store: EntityStore, node_id: str, *types: str) -> list[str]:
    ids = []
    for edge in store.neighbors(node_id):
        other = store.get(_other(edge, node_id))
        if other and other.type in types:
            ids.append(other.id)
    return ids


# --- People ---


def infer_relationship(
    node: EntityNode, edges: list[EntityEdge], store: EntityStore
) -> RelationshipType:
    for edge in edges:
        rel = (edge.relation or "").lower()
        if not rel:
            continue
        if "collaborat" in rel or "working_with" in rel:
            return "collaborator"
        if "manage" in rel or "report" in rel:
            return "manager"
        if "mentor" in rel or "learn" in rel:
            return "mentor"
        if "friend" in rel:
            return "friend"

    if node.primary_context == "work":
        has_project = any(
            (other := store.get(_other(e, node.id))) and other.type == "project" for e in edges
        )
        return "collaborator" if has_project else "contact"
    if node.primary_context == "social":
        return "friend"
    return "unknown"


def communication_channels(contexts: list[str]) -> list[str]:
    channels: list[str] = []
    for ctx in contexts:
        lower = ctx.lower()
        for needles, channel in CHANNEL_PATTERNS:
            if channel not in channels and any(n in lower for n in needles):
                channels.append(channel)
    return channels


def extract_people(store: EntityStore, signals: ActivitySignals, limit: int = 20) -> list[PersonEntity]:
    people = []
    for node in store.nodes.values():
        if node.type != "person":
            continue
        edges = store.neighbors(node.id)
        eng = signals.entity_engagement.get(node.id)
        people.append(
            PersonEntity(
                id=node.id,
                name=node.label,
                relationship=infer_relationship(node, edges, store),
                context=node.primary_context or "unknown",
                last_interaction=node.last_seen,
                interaction_count=eng.sessions if eng else node.weight,
                communication_channels=communication_channels(node.contexts),
                shared_projects=_connected_of_type(store, node.id, "project"),
                salience=node.salience,
            )
        )

    # salience first; within 0.1 of each other, most recent wins
    people.sort(key=lambda p: (round(p.salience * 10), p.last_interaction), reverse=True)
    return people[:limit]


# --- Projects ---


def infer_project_status(
    engagement: EntityEngagement | None, now: datetime | None = None
) -> ProjectStatus:
    if engagement is None:
        return "unknown"
    days = days_since(engagement.last_seen, now)
    if days < 3 and engagement.recent_ms > ACTIVE_RECENT_MS:
        return "active"
    if 3 <= days < 14:
        return "paused"
    if days >= 14:
        return "completed"
    return "active"


def extract_projects(
    store: EntityStore, signals: ActivitySignals, limit: int = 15, now: datetime | None = None
) -> list[ProjectEntity]:
    projects = []
    for node in store.nodes.values():
        if node.type != "project":
            continue
        eng = signals.entity_engagement.get(node.id)
        projects.append(
            ProjectEntity(
                id=node.id,
                name=node.label,
                status=infer_project_status(eng, now),
                context=node.primary_context or "work",
                last_activity=node.last_seen,
                total_engagement_ms=eng.total_ms if eng else 0,
                recent_engagement_ms=eng.recent_ms if eng else 0,
                related_people=_connected_of_type(store, node.id, "person"),
                related_tools=_connected_of_type(store, node.id, "app", "skill"),
                salience=node.salience,
            )
        )
    projects.sort(key=lambda p: (_STATUS_ORDER[p.status], -p.salience))
    return projects[:limit]


# --- Expertise ---


def extract_expertise(store: EntityStore, signals: ActivitySignals, limit: int = 20) -> list[SkillEntity]:
    skills = []
    for node in store.nodes.values():
        if node.type not in ("skill", "app"):
            continue
        if node.label.lower() in SKIP_EXPERTISE_APPS:
            continue
        eng = signals.entity_engagement.get(node.id)
        if eng is None or eng.total_ms < MIN_EXPERTISE_MS:
            continue
        proficiency = node.proficiency or min(1.0, eng.total_ms / EXPERTISE_CAP_MS)
        skills.append(
            SkillEntity(
                id=node.id,
                name=node.label,
                proficiency=proficiency,
                total_engagement_ms=eng.total_ms,
                last_used=eng.last_seen,
                trend=node.engagement_trend or "stable",
                related_projects=_connected_of_type(store, node.id, "project"),
            )
        )
    skills.sort(key=lambda s: s.proficiency, reverse=True)
    return skills[:limit]


# --- Work patterns ---


def compute_work_patterns(
    metadata: GraphMetadata, signals: ActivitySignals, store: EntityStore
) -> WorkPatterns:
    focus_blocks = [d for d in signals.session_durations if d > MIN_FOCUS_BLOCK_MS]
    avg_focus_ms = sum(focus_blocks) / len(focus_blocks) if focus_blocks else 0

    primary: ContextType = "work"
    best = 0
    for node in store.nodes.values():
        if node.primary_context and node.primary_context != "unknown" and node.engagement_ms > best:
            best = node.engagement_ms
            primary = node.primary_context

    return WorkPatterns(
        peak_hours=metadata.peak_hours,
        peak_days=metadata.peak_days,
        avg_session_minutes=metadata.avg_session_minutes,
        avg_focus_block_minutes=round(avg_focus_ms / MS_PER_MINUTE),
        context_switch_rate=metadata.context_switch_rate,
        primary_work_context=primary,
        work_life_balance=dict(metadata.category_distribution),
    )


# --- Current context ---


def classify_intent(app: str, title: str) -> tuple[Intent, str]:
    """Keyword heuristics over app name and window title. Returns (intent, task)."""
    a, t = app.lower(), title.lower()
    if any(k in a for k in ("vscode", "code", "cursor", "xcode", "terminal", "iterm")):
        return "creating", f"Coding: {title[:50]}"
    if any(k in a for k in ("slack", "message", "telegram", "discord", "whatsapp")):
        return "communicating", f"Messaging: {title[:40]}"
    if "search" in t or "google" in t or any(k in a for k in ("safari", "chrome", "firefox", "arc")):
        return "researching", f"Browsing: {title[:50]}"
    if any(k in a for k in ("youtube", "netflix", "spotify", "music")):
        return "consuming", f"Watching/Listening: {title[:40]}"
    if any(k in a for k in ("figma", "notion", "docs")):
        return "creating", f"Working in {app}: {title[:40]}"
    return "unknown", f"{app}: {title[:50]}"


def compute_current_context(
    store: EntityStore,
    signals: ActivitySignals,
    recent_activity: list[ActivityEntry],
    current_app: str,
    now: datetime | None = None,
) -> CurrentContext:
    now = require_utc(now) if now else utcnow()

    task, intent = "Unknown activity", "unknown"
    if recent_activity:
        last = recent_activity[-1]
        intent, task = classify_intent(last.app or current_app, last.title or "")

    projects = extract_projects(store, signals, limit=3, now=now)
    active_project = next((p for p in projects if p.status == "active"), None)
    active_people = [
        p for p in extract_people(store, signals, limit=5) if days_since(p.last_interaction, now) < 1
    ]

    window_start = now - FOCUS_WINDOW
    recent_switches = sum(1 for t in signals.switch_timestamps if t > window_start)
    focus_depth = max(0.0, 1 - recent_switches / 10)

    started = signals.switch_timestamps[-1] if signals.switch_timestamps else window_start
    n = len(recent_activity)
    confidence = "high" if n > 3 else "medium" if n > 0 else "low"

    return CurrentContext(
        app=current_app,
        task=task,
        intent=intent,
        focus_depth=focus_depth,
        active_project=active_project,
        active_people=active_people,
        context_started=started,
        context_duration_ms=max(0, int((now - started).total_seconds() * 1000)),
        confidence=confidence,
    )


# --- Task blocks ---


def task_intent(app: str) -> str:
    a = app.lower()
    if any(k in a for k in ("vscode", "code", "terminal", "xcode", "iterm")):
        return "coding"
    if any(k in a for k in ("slack", "message", "mail")):
        return "communicating"
    if any(k in a for k in ("chrome", "safari", "firefox", "arc")):
        return "researching"
    if any(k in a for k in ("figma", "notion")):
        return "designing"
    return "unknown"


def build_task_block(entries: list[ActivityEntry], store: EntityStore) -> TaskBlock:
    start = min(require_utc(e.start) for e in entries)
    end = max(require_utc(e.end) for e in entries)

    apps: list[str] = []
    app_ms: dict[str, int] = defaultdict(int)
    for e in entries:
        if e.app not in apps:
            apps.append(e.app)
        app_ms[e.app] += e.duration_ms

    # first app wins a tie on duration
    dominant = max(apps, key=lambda a: app_ms[a]) if apps else "Unknown"
    intent = task_intent(dominant)
    last_title = entries[-1].title[:50] if entries else ""

    entity_ids: list[str] = []
    people: list[str] = []
    project: str | None = None
    for e in entries:
        haystack = f"{e.app} {e.title} {e.url or ''} {e.summary or ''}".lower()
        for node in store.nodes.values():
            if node.id in entity_ids or node.label.lower() not in haystack:
                continue
            entity_ids.append(node.id)
            if node.type == "person":
                people.append(node.id)
            elif node.type == "project" and project is None:
                project = node.id

    n = len(entries)
    return TaskBlock(
        id=f"task-{int(start.timestamp() * 1000)}",
        label=f"{dominant}: {last_title or intent}",
        intent=intent,
        start_time=start,
        end_time=end,
        duration_ms=int((end - start).total_seconds() * 1000),
        apps=apps,
        entities=entity_ids,
        people=people,
        project=project,
        focus_score=max(0.0, 1 - (len(apps) - 1) / 5),
        confidence="high" if n > 3 else "medium" if n > 1 else "low",
    )


def segment_activity(activity: list[ActivityEntry], gap: timedelta = TASK_GAP) -> list[list[ActivityEntry]]:
    """Chronological runs of entries; a gap of `gap` or more starts a new run."""
    runs: list[list[ActivityEntry]] = []
    run_end: datetime | None = None
    for entry in sorted(activity, key=lambda e: require_utc(e.start)):
        start, end = require_utc(entry.start), require_utc(entry.end)
        if run_end is not None and start - run_end < gap:
            runs[-1].append(entry)
            run_end = max(run_end, end)
        else:
            runs.append([entry])
            run_end = end
    return runs


def detect_task_blocks(
    activity: list[ActivityEntry], store: EntityStore, limit: int | None = 20
) -> list[TaskBlock]:
    """Task blocks, most recent first."""
    blocks = [build_task_block(run, store) for run in segment_activity(activity)]
    blocks.reverse()
    return blocks if limit is None else blocks[:limit]


# --- Full model ---


def data_quality(signals: ActivitySignals) -> str:
    hours = signals.total_activity_ms / MS_PER_HOUR
    if hours > 50:
        return "rich"
    if hours > 10:
        return "moderate"
    return "sparse"


def compute_user_model(
    store: EntityStore,
    signals: ActivitySignals,
    metadata: GraphMetadata,
) -> UserModel:
    quality = data_quality(signals)
    focus_ids = metadata.current_focus[:5]
    labels = [store.nodes[i].label if i in store.nodes else i for i in focus_ids]

    return UserModel(
        top_people=extract_people(store, signals, limit=15),
        active_projects=extract_projects(store, signals, limit=10),
        expertise=extract_expertise(store, signals, limit=15),
        work_patterns=compute_work_patterns(metadata, signals, store),
        current_focus=CurrentFocus(
            task=", ".join(labels) or "No current focus detected",
            entities=focus_ids,
            confidence={"sparse": "low", "moderate": "medium", "rich": "high"}[quality],
        ),
        data_quality=quality,
        last_updated=utcnow(),
    )
