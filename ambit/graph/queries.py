"""Read-only graph views — bounded scored subgraph, node and edge detail panels."""

from __future__ import annotations

from datetime import datetime

from ambit.feed import ActivityFeed
from ambit.graph.store import EntityStore, edge_key, normalize_entity
from ambit.models import EntityNode
from ambit.time import MS_PER_HOUR, elapsed_ms, utcnow

GRAPH_TOP_NODES = 120
GRAPH_MAX_NODES = 80
GRAPH_FALLBACK_NODES = 30
GRAPH_MIN_EDGE_WEIGHT = 2
GRAPH_EDGE_POOL = 250
GRAPH_MAX_EDGES = 200

DETAIL_NEIGHBORS = 20
DETAIL_ACTIVITY = 8
DETAIL_CONTENT = 5
DETAIL_CLIPBOARD = 5
DETAIL_MUSIC = 5


def recency_boost(last_seen: datetime, now: datetime | None = None) -> float:
    hours = elapsed_ms(last_seen, now) / MS_PER_HOUR
    if hours < 1:
        return 2.0
    if hours < 24:
        return 1.5
    if hours < 168:
        return 1.2
    return 1.0


def node_score(node: EntityNode, now: datetime | None = None) -> float:
    return (
        node.weight
        * (3 if node.verified else 1)
        * max(1, len(node.contexts))
        * recency_boost(node.last_seen, now)
    )


def _node_view(node: EntityNode, score: float | None = None) -> dict:
    view = node.model_dump(mode="json")
    view["mentions"] = node.weight
    view["context_diversity"] = len(node.contexts) or 1
    if score is not None:
        view["score"] = round(score, 3)
    return view


def get_graph_data(
    store: EntityStore,
    feed: ActivityFeed | None = None,
    include_context: bool = False,
    now: datetime | None = None,
) -> dict:
    """Scored subgraph of connected nodes, or the raw top nodes when nothing connects."""
    now = now or utcnow()
    scored = sorted(
        ((node_score(n, now), n) for n in store.nodes.values()),
        key=lambda pair: pair[0],
        reverse=True,
    )[:GRAPH_TOP_NODES]
    pool = {n.id for _, n in scored}

    edges = sorted(
        (
            e
            for e in store.edges.values()
            if e.source in pool
            and e.target in pool
            and e.source != e.target
            and e.weight >= GRAPH_MIN_EDGE_WEIGHT
        ),
        key=lambda e: e.weight,
        reverse=True,
    )[:GRAPH_EDGE_POOL]

    connected = {e.source for e in edges} | {e.target for e in edges}
    if connected:
        chosen = [(s, n) for s, n in scored if n.id in connected][:GRAPH_MAX_NODES]
    else:
        chosen = scored[:GRAPH_FALLBACK_NODES]
    chosen_ids = {n.id for _, n in chosen}
    edges = [e for e in edges if e.source in chosen_ids and e.target in chosen_ids][:GRAPH_MAX_EDGES]

    nodes_out = []
    for score, node in chosen:
        view = _node_view(node, score)
        if include_context and feed is not None:
            view["context"] = get_node_context(feed, node.label)
        nodes_out.append(view)

    edges_out = []
    for edge in edges:
        src = store.get(edge.source)
        tgt = store.get(edge.target)
        src_label = src.label if src else edge.source
        tgt_label = tgt.label if tgt else edge.target
        if normalize_entity(src_label) == normalize_entity(tgt_label):
            continue
        view = edge.model_dump(mode="json")
        view.update(
            key=edge_key(edge.source, edge.target),
            source_label=src_label,
            target_label=tgt_label,
            source_type=src.type if src else "topic",
            target_type=tgt.type if tgt else "topic",
        )
        edges_out.append(view)

    return {"nodes": nodes_out, "edges": edges_out}


def _matches(label: str, *fields: str | None) -> bool:
    return any(f and label in f.lower() for f in fields)


def get_node_context(feed: ActivityFeed, label: str) -> dict:
    """Recent feed records mentioning `label` (case-insensitive substring)."""
    needle = label.lower()
    activity = [
        a for a in feed.activity() if _matches(needle, a.app, a.title, a.url, a.summary)
    ][-DETAIL_ACTIVITY:]
    content = [
        s for s in feed.snapshots() if _matches(needle, s.app, s.title, s.text, s.summary)
    ][-DETAIL_CONTENT:]
    clipboard = [c for c in feed.clipboard() if needle in c.text.lower()][-DETAIL_CLIPBOARD:]
    music = [m for m in feed.now_playing() if _matches(needle, m.track, m.artist)][-DETAIL_MUSIC:]

    return {
        "related_activity": [a.model_dump(mode="json") for a in activity],
        "related_content": [
            {
                "timestamp": s.timestamp.isoformat(),
                "app": s.app,
                "title": s.title,
                "summary": s.summary,
                "text_preview": s.text[:200],
            }
            for s in content
        ],
        "related_clipboard": [
            {"text": c.text[:150], "timestamp": c.timestamp.isoformat(), "app": c.app}
            for c in clipboard
        ],
        "related_music": [m.model_dump(mode="json") for m in music],
    }


def get_node_detail(store: EntityStore, feed: ActivityFeed, node_id: str) -> dict | None:
    node = store.get(node_id)
    if node is None:
        return None

    neighbors = sorted(store.neighbors(node_id), key=lambda e: e.weight, reverse=True)
    connections = []
    for edge in neighbors[:DETAIL_NEIGHBORS]:
        other_id = edge.target if edge.source == node_id else edge.source
        other = store.get(other_id)
        connections.append(
            {
                "id": other_id,
                "label": other.label if other else other_id,
                "type": other.type if other else "topic",
                "co_occurrences": edge.weight,
                "relation": edge.relation,
            }
        )

    view = _node_view(node)
    view["context"] = get_node_context(feed, node.label)
    view["connections"] = connections
    return view


def get_edge_detail(
    store: EntityStore, feed: ActivityFeed, source_id: str, target_id: str
) -> dict | None:
    edge = store.edges.get(edge_key(source_id, target_id))
    if edge is None:
        return None

    src = store.get(source_id)
    tgt = store.get(target_id)
    src_label = src.label.lower() if src else ""
    tgt_label = tgt.label.lower() if tgt else ""

    shared = []
    for a in feed.activity():
        haystack = f"{a.app} {a.title} {a.url or ''} {a.summary or ''}".lower()
        if (src_label and src_label in haystack) or (tgt_label and tgt_label in haystack):
            shared.append(a)

    def endpoint(node_id: str, node: EntityNode | None) -> dict:
        return {
            "id": node_id,
            "label": node.label if node else None,
            "type": node.type if node else None,
        }

    return {
        "source": endpoint(source_id, src),
        "target": endpoint(target_id, tgt),
        "weight": edge.weight,
        "relation": edge.relation,
        "context": edge.context,
        "last_active": edge.last_active.isoformat() if edge.last_active else None,
        "shared_activity": [a.model_dump(mode="json") for a in shared[-DETAIL_ACTIVITY:]],
    }
