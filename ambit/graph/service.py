"""GraphService — owns the entity store and wires extraction, enrichment,
maintenance, persistence and the read-only query surface together."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, tzinfo
from typing import Any

from pydantic import BaseModel, ValidationError

from ambit.context.importance import ImportanceScorer
from ambit.context.sessions import SessionManager
from ambit.db import AmbitDB
from ambit.feed import ActivityFeed, DBActivityFeed, StaticFeed
from ambit.graph import enrichment, maintenance, queries, user_model
from ambit.graph.extraction import ExtractionResult, LLMExtractor, extract_from_activity, url_domain
from ambit.graph.store import EntityStore, edge_key, entity_key, node_key
from ambit.llm.client import LLMClient
from ambit.memory.nia import NiaClient
from ambit.models import (
    ActivityEntry,
    ActivitySignals,
    ContextEntity,
    ContextRelationship,
    CurrentContext,
    DaySummary,
    EntityEdge,
    EntityNode,
    GraphMetadata,
    PersonEntity,
    ProjectEntity,
    ScoredEntity,
    SkillEntity,
    Task,
    TaskBlock,
    UserModel,
)
from ambit.time import local_day_bounds, require_utc, resolve_user_tz, utcnow

logger = logging.getLogger(__name__)

ENRICH_MIN_INTERVAL = timedelta(minutes=5)
RECENT_ACTIVITY = 5

KEY_NODES = "graph_nodes"
KEY_EDGES = "graph_edges"
KEY_SIGNALS = "graph_signals"
KEY_METADATA = "graph_metadata"
KEY_CURSOR_ACTIVITY = "cursor_activity"
KEY_CURSOR_SNAPSHOTS = "cursor_snapshots"


def _validate_list(raw: Any, model: type[BaseModel], key: str) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        logger.warning("Persisted %s is not a list, starting empty", key)
        return []
    items = []
    for item in raw:
        try:
            items.append(model.model_validate(item))
        except ValidationError:
            logger.warning("Dropped malformed %s entry", key)
    return items


class GraphService:
    """One user's live graph plus the collaborators it needs.

    Persistence is optional: without a db the graph lives only in memory.
    """

    def __init__(
        self,
        db: AmbitDB | None = None,
        feed: ActivityFeed | None = None,
        llm: LLMClient | None = None,
        nia: NiaClient | None = None,
        user_tz: tzinfo | None = None,
    ):
        self.db = db
        if feed is None:
            feed = DBActivityFeed(db) if db is not None else StaticFeed()
        self.feed = feed
        self.llm = llm or LLMClient()
        self.nia = nia or NiaClient()
        self.user_tz = user_tz or resolve_user_tz()

        self.store = EntityStore()
        self.signals: ActivitySignals = enrichment.create_empty_signals()
        self.metadata: GraphMetadata = enrichment.create_empty_metadata()
        self.activity_cursor = 0
        self.extractor = LLMExtractor(self.llm)
        self.last_enriched: datetime | None = None
        self._last_app: str | None = None

    # --- Ingestion into the graph ---

    def process_new_activity(self) -> int:
        """Run rule-based extraction over activity past the cursor. Returns entries processed."""
        if self.activity_cursor > self.feed.activity_count():
            self.activity_cursor = 0
        entries = self.feed.activity(self.activity_cursor)
        for entry in entries:
            self._process_entry(entry)
        self.activity_cursor += len(entries)
        if entries:
            logger.debug("Processed %d activity entries (%d nodes)", len(entries), len(self.store))
        return len(entries)

    def _process_entry(self, entry: ActivityEntry) -> None:
        end = require_utc(entry.end)
        touched = extract_from_activity(
            self.store, entry.app, entry.title, entry.url, entry.summary, now=end
        )
        credited = self.record_activity_signal(entry.app, entry.url, entry.duration_ms, timestamp=end)
        for node_id in touched:
            node = self.store.get(node_id)
            if node and node.type != "app" and node_id not in credited:
                enrichment.record_engagement(
                    self.signals, node_id, entry.duration_ms, end, self.user_tz, count_activity=False
                )

        if self._last_app is not None and entry.app != self._last_app:
            enrichment.record_switch(self.signals, require_utc(entry.start))
        self._last_app = entry.app
        enrichment.record_session(self.signals, entry.duration_ms)

    def record_activity_signal(
        self,
        app: str,
        url: str | None,
        duration_ms: int,
        timestamp: datetime | None = None,
    ) -> list[str]:
        """Credit engagement to the app node and, when there is one, the domain node.

        Only ids already in the graph are credited. The span still counts
        towards the activity totals when neither is.
        """
        candidates = []
        if app:
            candidates.append(self.store.resolve_id(app, "app"))
        domain = url_domain(url) if url else None
        if domain:
            candidates.append(self.store.resolve_id(domain, "content"))
        credited = [c for c in dict.fromkeys(candidates) if c and self.store.has_node(c)]

        for i, node_id in enumerate(credited):
            enrichment.record_engagement(
                self.signals, node_id, duration_ms, timestamp, self.user_tz, count_activity=i == 0
            )
        if not credited:
            enrichment.record_activity(self.signals, duration_ms, timestamp, self.user_tz)
        return credited

    def record_engagement(self, entity_id: str, duration_ms: int) -> None:
        if not self.store.has_node(entity_id):
            logger.debug("Engagement for unknown entity %s ignored", entity_id)
            return
        enrichment.record_engagement(self.signals, entity_id, duration_ms, user_tz=self.user_tz)

    async def extract_with_llm(self) -> ExtractionResult:
        return await self.extractor.run(self.store, self.feed)

    # --- Enrichment and maintenance ---

    def enrich(self, force: bool = False, now: datetime | None = None) -> GraphMetadata | None:
        """Full enrichment pass, at most once every five minutes unless forced."""
        now = now or utcnow()
        if not force and self.last_enriched and now - self.last_enriched < ENRICH_MIN_INTERVAL:
            return None
        enrichment.decay_engagement(self.signals, now=now)
        self.metadata = enrichment.enrich_graph(self.store, self.signals, now)
        self.last_enriched = now
        return self.metadata

    def decay(self, now: datetime | None = None) -> maintenance.DecayResult:
        result = maintenance.decay_graph(self.store, now)
        if result.nodes_removed:
            enrichment.prune_engagement(self.signals, self.store)
        return result

    async def cleanup(self) -> maintenance.CleanupResult:
        result = await maintenance.cleanup_graph(self.store, self.llm)
        for into, merged_from in result.merged:
            enrichment.merge_engagement(self.signals, into, merged_from)
        enrichment.prune_engagement(self.signals, self.store)
        return result

    async def build_nia_edges(self) -> int:
        return await maintenance.build_nia_edges(self.store, self.nia)

    # --- Persistence ---

    def save(self) -> bool:
        """Write a full snapshot. Last write wins."""
        if self.db is None:
            return False
        self.db.set_json_many(
            {
                KEY_NODES: self.store.dump_nodes(),
                KEY_EDGES: self.store.dump_edges(),
                KEY_SIGNALS: self.signals.model_dump(mode="json"),
                KEY_METADATA: self.metadata.model_dump(mode="json"),
                KEY_CURSOR_ACTIVITY: self.activity_cursor,
                KEY_CURSOR_SNAPSHOTS: self.extractor.cursor,
            }
        )
        logger.info("Graph saved: %d nodes, %d edges", len(self.store.nodes), len(self.store.edges))
        return True

    def load(self) -> None:
        """Read the snapshot once. Missing or corrupt parts start empty."""
        if self.db is None:
            return
        nodes = _validate_list(self.db.get_json(KEY_NODES), EntityNode, KEY_NODES)
        edges = _validate_list(self.db.get_json(KEY_EDGES), EntityEdge, KEY_EDGES)
        self.store.load(nodes, edges)
        self.signals = self._load_model(KEY_SIGNALS, ActivitySignals)
        self.metadata = self._load_model(KEY_METADATA, GraphMetadata)
        self.activity_cursor = self._load_cursor(KEY_CURSOR_ACTIVITY)
        self.extractor.cursor = self._load_cursor(KEY_CURSOR_SNAPSHOTS)
        if nodes:
            logger.info("Graph loaded: %d nodes, %d edges", len(self.store.nodes), len(self.store.edges))

    def _load_model(self, key: str, model: type[BaseModel]) -> Any:
        raw = self.db.get_json(key) if self.db else None
        if raw is None:
            return model()
        try:
            return model.model_validate(raw)
        except ValidationError:
            logger.warning("Persisted %s is malformed, starting empty", key)
            return model()

    def _load_cursor(self, key: str) -> int:
        raw = self.db.get_json(key) if self.db else None
        return raw if isinstance(raw, int) and raw >= 0 else 0

    def reset(self) -> None:
        """Wipe the graph, signals, metadata and cursors, then persist the empty state."""
        self.store.reset()
        self.signals = enrichment.create_empty_signals()
        self.metadata = enrichment.create_empty_metadata()
        self.activity_cursor = 0
        self.extractor.cursor = 0
        self.last_enriched = None
        self._last_app = None
        self.save()

    # --- Read surface ---

    def stats(self) -> dict:
        return {
            **self.store.stats(),
            "activity_cursor": self.activity_cursor,
            "snapshot_cursor": self.extractor.cursor,
            "total_activity_ms": self.signals.total_activity_ms,
        }

    def graph_data(self, include_context: bool = False) -> dict:
        return queries.get_graph_data(self.store, self.feed, include_context)

    def node_detail(self, node_id: str) -> dict | None:
        return queries.get_node_detail(self.store, self.feed, node_id)

    def edge_detail(self, source_id: str, target_id: str) -> dict | None:
        return queries.get_edge_detail(self.store, self.feed, source_id, target_id)

    def node_label(self, node_id: str) -> str | None:
        node = self.store.get(node_id)
        return node.label if node else None

    def user_model(self) -> UserModel:
        return user_model.compute_user_model(self.store, self.signals, self.metadata)

    def current_context(self) -> CurrentContext:
        recent = sorted(self.feed.activity(), key=lambda a: a.start)[-RECENT_ACTIVITY:]
        return user_model.compute_current_context(
            self.store, self.signals, recent, self.feed.current_app()
        )

    def top_people(self, limit: int = 10) -> list[PersonEntity]:
        return user_model.extract_people(self.store, self.signals, limit)

    def active_projects(self, limit: int = 10) -> list[ProjectEntity]:
        return user_model.extract_projects(self.store, self.signals, limit)

    def expertise(self, limit: int = 10) -> list[SkillEntity]:
        return user_model.extract_expertise(self.store, self.signals, limit)

    def task_blocks(self, limit: int = 20) -> list[TaskBlock]:
        return user_model.detect_task_blocks(self.feed.activity(), self.store, limit)

    def timeline(self, start: datetime, end: datetime) -> list[TaskBlock]:
        """Task blocks from activity starting within [start, end), oldest first."""
        start, end = require_utc(start), require_utc(end)
        entries = [a for a in self.feed.activity() if start <= require_utc(a.start) < end]
        blocks = user_model.detect_task_blocks(entries, self.store, limit=None)
        blocks.reverse()
        return blocks

    def search_entities(self, query: str, limit: int = 20) -> list[EntityNode]:
        """Label/key substring search. Exact, then prefix, then contains."""
        q = query.strip().lower()
        key = entity_key(query)
        if not q:
            return []

        def rank(node: EntityNode) -> int | None:
            label, nkey = node.label.lower(), node_key(node.id)
            if q == label or (key and key == nkey):
                return 0
            if label.startswith(q) or (key and nkey.startswith(key)):
                return 1
            if q in label or (key and key in nkey):
                return 2
            return None

        hits = [(r, n) for n in self.store.nodes.values() if (r := rank(n)) is not None]
        hits.sort(key=lambda pair: (pair[0], -pair[1].salience, -pair[1].weight))
        return [n for _, n in hits[:limit]]

    def related_entities(self, entity_id: str, limit: int = 10) -> list[dict]:
        """Neighbors by edge weight."""
        if not self.store.has_node(entity_id):
            return []
        related = []
        for edge in sorted(self.store.neighbors(entity_id), key=lambda e: e.weight, reverse=True):
            other_id = edge.target if edge.source == entity_id else edge.source
            other = self.store.get(other_id)
            if other is None:
                continue
            related.append(
                {
                    "id": other.id,
                    "label": other.label,
                    "type": other.type,
                    "weight": edge.weight,
                    "relation": edge.relation,
                    "salience": other.salience,
                }
            )
        return related[:limit]

    def day_summary(self, day: date | None = None) -> DaySummary:
        """Totals, task blocks and touched entities for one local calendar day."""
        day = day or utcnow().astimezone(self.user_tz).date()
        start, end = local_day_bounds(day, self.user_tz)
        entries = [a for a in self.feed.activity() if start <= require_utc(a.start) < end]
        blocks = self.timeline(start, end)

        app_ms: dict[str, int] = defaultdict(int)
        for a in entries:
            app_ms[a.app] += a.duration_ms
        top_apps = sorted(app_ms.items(), key=lambda kv: kv[1], reverse=True)[:5]

        entities: list[str] = []
        people: list[str] = []
        projects: list[str] = []
        for block in blocks:
            entities.extend(e for e in block.entities if e not in entities)
            people.extend(p for p in block.people if p not in people)
            if block.project and block.project not in projects:
                projects.append(block.project)

        return DaySummary(
            date=day.isoformat(),
            total_active_ms=sum(app_ms.values()),
            task_blocks=blocks,
            top_apps=[{"app": app, "duration_ms": ms} for app, ms in top_apps],
            entities=entities,
            people=people,
            projects=projects,
            avg_focus_score=(
                round(sum(b.focus_score for b in blocks) / len(blocks), 2) if blocks else 0.0
            ),
        )

    def top_nodes(self, n: int = 10) -> list[EntityNode]:
        return sorted(
            self.store.nodes.values(), key=lambda node: (node.salience, node.weight), reverse=True
        )[:n]

    def nodes_by_context(self, context: str) -> list[EntityNode]:
        nodes = [n for n in self.store.nodes.values() if n.primary_context == context]
        return sorted(nodes, key=lambda node: node.salience, reverse=True)

    def importance_ranking(self, limit: int = 20, now: datetime | None = None) -> list[ScoredEntity]:
        """Secondary ranking: score entities from task blocks grouped into sessions."""
        scorer = ImportanceScorer()
        sessions = SessionManager()
        blocks = user_model.detect_task_blocks(self.feed.activity(), self.store, limit=None)
        blocks.reverse()

        for block in blocks:
            task = self._block_to_task(block)
            scorer.process_task(task)
            sessions.add_task(task)
        if sessions.current is not None and sessions.last_activity is not None:
            sessions.close_session(sessions.last_activity)
        for session in sessions.sessions.values():
            scorer.process_session(session)
        return scorer.top_entities(limit, now)

    def _block_to_task(self, block: TaskBlock) -> Task:
        entities = []
        for node_id in block.entities:
            node = self.store.get(node_id)
            if node:
                entities.append(ContextEntity(id=node.id, label=node.label, type=node.type))

        relationships = []
        ids = [e.id for e in entities]
        for i, a in enumerate(ids):
            for b in ids[i + 1 :]:
                edge = self.store.edges.get(edge_key(a, b))
                if edge:
                    relationships.append(
                        ContextRelationship(
                            from_id=edge.source,
                            to_id=edge.target,
                            type=edge.relation or "co_occurs",
                            confidence=min(1.0, edge.weight / 10),
                        )
                    )

        return Task(
            id=block.id,
            start_time=block.start_time,
            end_time=block.end_time,
            intent=block.intent,
            primary_app=block.apps[0] if block.apps else "",
            apps=block.apps,
            entities=entities,
            relationships=relationships,
            activity_summary=block.label,
        )
