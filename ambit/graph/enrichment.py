"""Graph enrichment — engagement signals to salience, role, trend and context.

Signals are accumulated as activity arrives; a full pass then recomputes the
derived properties of every node and edge and produces a metadata snapshot.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime, timedelta, tzinfo
from urllib.parse import urlparse

from ambit.graph.store import EntityStore
from ambit.models import (
    ActivitySignals,
    ContextType,
    EngagementTrend,
    EntityEngagement,
    EntityNode,
    GraphMetadata,
    UserRole,
)
from ambit.time import MS_PER_HOUR, MS_PER_MINUTE, days_since, require_utc, resolve_user_tz, utcnow

RECENT_WINDOW_DAYS = 7
SESSION_HISTORY = 100
SWITCH_WINDOW = timedelta(hours=1)
RECENCY_DECAY_DAYS = 14
FOCUS_MIN_SALIENCE = 0.1

APP_CONTEXTS: dict[str, ContextType] = {
    # work
    "VSCode": "work", "Visual Studio Code": "work", "Code": "work", "Cursor": "work",
    "Xcode": "work", "IntelliJ": "work", "Terminal": "work", "iTerm": "work", "iTerm2": "work",
    "Slack": "work", "Linear": "work", "Notion": "work", "Figma": "work", "Zoom": "work",
    "Teams": "work",
    # browsers default to learning
    "Safari": "learning", "Chrome": "learning", "Google Chrome": "learning",
    "Firefox": "learning", "Arc": "learning",
    # social
    "Messages": "social", "Telegram": "social", "WhatsApp": "social", "Discord": "social",
    "Twitter": "social", "Signal": "social",
    # entertainment
    "Spotify": "entertainment", "Music": "entertainment", "Netflix": "entertainment",
    "YouTube": "entertainment",
    # personal
    "Calendar": "personal", "Photos": "personal", "Notes": "personal", "Reminders": "personal",
}

# Matched against the URL host, in order; the first hit wins. A trailing dot
# matches a host prefix.
URL_CONTEXTS: tuple[tuple[str, ContextType], ...] = (
    ("github.com", "work"),
    ("stackoverflow.com", "learning"),
    ("docs.", "learning"),
    ("youtube.com", "entertainment"),
    ("twitter.com", "social"),
    ("x.com", "social"),
    ("instagram.com", "social"),
    ("linkedin.com", "work"),
    ("reddit.com", "entertainment"),
    ("netflix.com", "entertainment"),
    ("notion.so", "work"),
    ("figma.com", "work"),
    ("medium.com", "learning"),
    ("udemy.com", "learning"),
    ("coursera.org", "learning"),
    ("calendar.google.com", "personal"),
    ("amazon.com", "personal"),
)


# --- Signal state ---


def create_empty_signals() -> ActivitySignals:
    return ActivitySignals()


def create_empty_metadata() -> GraphMetadata:
    return GraphMetadata()


def record_engagement(
    signals: ActivitySignals,
    entity_id: str,
    duration_ms: int,
    timestamp: datetime | None = None,
    user_tz: tzinfo | None = None,
    count_activity: bool = True,
) -> EntityEngagement:
    """Accumulate engagement for one entity and the temporal histograms.

    `recent_ms` restarts when the previous sighting falls outside the 7-day window.
    With `count_activity=False` only the entity totals move, so several
    entities can share one activity span without inflating the histograms.
    """
    ts = require_utc(timestamp) if timestamp else utcnow()
    duration_ms = max(0, int(duration_ms))

    eng = signals.entity_engagement.get(entity_id)
    if eng is None:
        eng = EntityEngagement(total_ms=duration_ms, sessions=1, last_seen=ts, recent_ms=duration_ms)
        signals.entity_engagement[entity_id] = eng
    else:
        if days_since(eng.last_seen, ts) >= RECENT_WINDOW_DAYS:
            eng.recent_ms = 0
        eng.total_ms += duration_ms
        eng.sessions += 1
        eng.recent_ms += duration_ms
        eng.last_seen = max(eng.last_seen, ts)

    if count_activity:
        record_activity(signals, duration_ms, ts, user_tz)
    return eng


def record_activity(
    signals: ActivitySignals,
    duration_ms: int,
    timestamp: datetime | None = None,
    user_tz: tzinfo | None = None,
) -> None:
    """Count one activity span in the histograms and the activity total."""
    ts = require_utc(timestamp) if timestamp else utcnow()
    local = ts.astimezone(user_tz or resolve_user_tz())
    signals.hourly_activity[local.hour] += 1
    signals.daily_activity[local.weekday()] += 1
    signals.total_activity_ms += max(0, int(duration_ms))
    signals.last_updated = ts


def merge_engagement(signals: ActivitySignals, target_id: str, source_id: str) -> None:
    """Fold the engagement of a merged-away entity into its target."""
    source = signals.entity_engagement.pop(source_id, None)
    if source is None or source_id == target_id:
        return
    target = signals.entity_engagement.get(target_id)
    if target is None:
        signals.entity_engagement[target_id] = source
        return
    target.total_ms += source.total_ms
    target.sessions += source.sessions
    target.recent_ms += source.recent_ms
    target.last_seen = max(target.last_seen, source.last_seen)


def prune_engagement(signals: ActivitySignals, store: EntityStore) -> int:
    """Drop engagement held for ids that are no longer graph nodes."""
    stale = [eid for eid in signals.entity_engagement if not store.has_node(eid)]
    for eid in stale:
        del signals.entity_engagement[eid]
    return len(stale)


def record_session(signals: ActivitySignals, duration_ms: int) -> None:
    signals.session_durations.append(int(duration_ms))
    del signals.session_durations[:-SESSION_HISTORY]


def record_switch(signals: ActivitySignals, timestamp: datetime | None = None) -> None:
    ts = require_utc(timestamp) if timestamp else utcnow()
    cutoff = ts - SWITCH_WINDOW
    signals.switch_timestamps = [t for t in signals.switch_timestamps if t > cutoff]
    signals.switch_timestamps.append(ts)


def decay_engagement(
    signals: ActivitySignals, window_days: float = RECENT_WINDOW_DAYS, now: datetime | None = None
) -> int:
    """Zero the recent bucket of entities not seen within the window."""
    now = now or utcnow()
    decayed = 0
    for eng in signals.entity_engagement.values():
        if eng.recent_ms and days_since(eng.last_seen, now) > window_days:
            eng.recent_ms = 0
            decayed += 1
    return decayed


# --- Derived properties ---


def _host(url: str) -> str:
    lower = url.strip().lower()
    if "://" not in lower:
        lower = "//" + lower
    try:
        host = urlparse(lower).hostname or ""
    except ValueError:
        return ""
    return host.removeprefix("www.")


def _host_matches(host: str, pattern: str) -> bool:
    if pattern.endswith("."):
        return host.startswith(pattern)
    return host == pattern or host.endswith("." + pattern)


def infer_context(app: str | None, url: str | None) -> ContextType:
    """URL host patterns first, then exact app name. Bare domains count as URLs."""
    if url:
        host = _host(url)
        for pattern, context in URL_CONTEXTS:
            if host and _host_matches(host, pattern):
                return context
    if app and app in APP_CONTEXTS:
        return APP_CONTEXTS[app]
    return "unknown"


def infer_role(
    node: EntityNode, engagement: EntityEngagement | None, created: bool = False
) -> UserRole:
    if engagement is None:
        return "unknown"
    if (created or node.type == "project") and engagement.sessions > 5 and engagement.total_ms > MS_PER_HOUR:
        return "creator"
    if node.type == "person":
        return "collaborator" if engagement.sessions > 3 else "viewer"
    if node.type in ("topic", "skill"):
        return "learner" if engagement.total_ms > 2 * MS_PER_HOUR else "consumer"
    if node.type == "content":
        return "consumer"
    return "unknown"


def calculate_trend(engagement: EntityEngagement | None, now: datetime | None = None) -> EngagementTrend:
    if engagement is None:
        return "new"
    if engagement.total_ms < 30 * MS_PER_MINUTE and days_since(engagement.last_seen, now) < RECENT_WINDOW_DAYS:
        return "new"
    ratio = engagement.recent_ms / max(engagement.total_ms, 1)
    if ratio > 0.6:
        return "increasing"
    if ratio < 0.2:
        return "decreasing"
    return "stable"


def calculate_salience(
    engagement: EntityEngagement | None, max_engagement_ms: int, now: datetime | None = None
) -> float:
    """Blend of relative engagement, recency, frequency and recent activity in [0, 1]."""
    if engagement is None or max_engagement_ms <= 0:
        return 0.0
    engagement_score = engagement.total_ms / max_engagement_ms
    recency = math.exp(-max(0.0, days_since(engagement.last_seen, now)) / RECENCY_DECAY_DAYS)
    frequency = math.log2(engagement.sessions + 1) / 10
    recent_boost = 0.2 if engagement.recent_ms > 0 else 0.0
    salience = engagement_score * 0.4 + recency * 0.3 + frequency + recent_boost
    return min(1.0, max(0.0, salience))


def skill_proficiency(total_ms: int) -> float:
    hours = total_ms / MS_PER_HOUR
    return min(1.0, math.log2(hours + 1) / math.log2(100))


def primary_context(contexts: list[str]) -> ContextType:
    """Most common inferred context over a node's source contexts."""
    counts = Counter(infer_context(ctx, ctx) for ctx in contexts)
    if not counts:
        return "unknown"
    known = [(c, n) for c, n in counts.most_common() if c != "unknown"]
    # unknown only wins when nothing else was inferred
    return known[0][0] if known else "unknown"


# --- Passes ---


def enrich_nodes(store: EntityStore, signals: ActivitySignals, now: datetime | None = None) -> None:
    now = now or utcnow()
    max_engagement = max(
        (e.total_ms for nid, e in signals.entity_engagement.items() if nid in store.nodes), default=0
    )

    for node_id, node in store.nodes.items():
        eng = signals.entity_engagement.get(node_id)
        if eng:
            node.engagement_ms = eng.total_ms
            node.session_count = eng.sessions
        node.engagement_trend = calculate_trend(eng, now)
        node.salience = calculate_salience(eng, max_engagement, now)
        node.role = infer_role(node, eng)
        if node.contexts:
            node.primary_context = primary_context(node.contexts)
        if node.type == "skill" and eng:
            node.proficiency = skill_proficiency(eng.total_ms)


def enrich_edges(store: EntityStore, signals: ActivitySignals) -> None:
    for edge in store.edges.values():
        src_eng = signals.entity_engagement.get(edge.source)
        tgt_eng = signals.entity_engagement.get(edge.target)
        if src_eng and tgt_eng:
            latest = max(src_eng.last_seen, tgt_eng.last_seen)
            edge.last_active = max(edge.last_active, latest) if edge.last_active else latest

        src = store.nodes.get(edge.source)
        tgt = store.nodes.get(edge.target)
        if src and tgt and src.primary_context and tgt.primary_context:
            if src.primary_context != "unknown":
                edge.context = src.primary_context
            else:
                edge.context = tgt.primary_context


def compute_metadata(store: EntityStore, signals: ActivitySignals) -> GraphMetadata:
    metadata = create_empty_metadata()

    hours = sorted(range(24), key=lambda h: signals.hourly_activity[h], reverse=True)
    metadata.peak_hours = [h for h in hours[:4] if signals.hourly_activity[h] > 0]
    days = sorted(range(7), key=lambda d: signals.daily_activity[d], reverse=True)
    metadata.peak_days = [d for d in days[:3] if signals.daily_activity[d] > 0]

    focus = sorted(
        (n for n in store.nodes.values() if n.salience > FOCUS_MIN_SALIENCE),
        key=lambda n: n.salience,
        reverse=True,
    )
    metadata.current_focus = [n.id for n in focus[:5]]

    if signals.session_durations:
        avg_ms = sum(signals.session_durations) / len(signals.session_durations)
        metadata.avg_session_minutes = round(avg_ms / MS_PER_MINUTE)
    metadata.context_switch_rate = len(signals.switch_timestamps)

    category_ms: Counter[str] = Counter()
    for node in store.nodes.values():
        if node.primary_context and node.engagement_ms:
            category_ms[node.primary_context] += node.engagement_ms
    total = sum(category_ms.values())
    if total:
        metadata.category_distribution = {
            cat: round(ms / total, 2) for cat, ms in category_ms.items()
        }

    metadata.total_engagement_ms = signals.total_activity_ms
    metadata.last_updated = utcnow()
    return metadata


def enrich_graph(store: EntityStore, signals: ActivitySignals, now: datetime | None = None) -> GraphMetadata:
    """Full pass: nodes, then edges (which read node contexts), then metadata."""
    enrich_nodes(store, signals, now)
    enrich_edges(store, signals)
    return compute_metadata(store, signals)
