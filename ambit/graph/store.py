"""Entity store — canonical nodes, symmetric edges, co-occurrence tracking.

Every label passes through normalization and canonical resolution before it
touches the node map, so repeated or fuzzy-equivalent mentions strengthen one
node instead of spawning duplicates. Edges are keyed by the sorted endpoint
pair and are pruned whenever an endpoint disappears.
"""

from __future__ import annotations

import logging
import re
from collections import Counter, deque
from datetime import datetime

from ambit.models import ENTITY_TYPES, EntityEdge, EntityNode
from ambit.time import days_since, require_utc, utcnow

logger = logging.getLogger(__name__)

CONTEXT_HINT_MAX = 100  # sliding window of co-occurrence hints
MAX_CONTEXTS = 10
EDGE_KEY_SEP = "|"
EDGE_DECAY_MIN_WEIGHT = 2

SKIP_ENTITIES = {
    "", "the", "and", "for", "with", "from", "that", "this", "you", "your",
    "http", "https", "www", "com", "org", "net", "html", "undefined", "null",
    "new", "tab", "untitled", "loading", "aboutblank", "about:blank",
}

# place and topic are interchangeable; everything else only matches itself
TYPE_GROUPS: dict[str, tuple[str, ...]] = {
    "person": ("person",),
    "place": ("place", "topic"),
    "topic": ("topic", "place"),
    "project": ("project",),
}
FUZZY_TYPES = frozenset(TYPE_GROUPS)

_STRIP_CHARS = re.compile(r"[^\w\s@#-]")
_GIVEN_NAME_MIN = 3


def normalize_entity(raw: str) -> str:
    """Lowercase, trim, and drop characters outside [\\w\\s@#-]."""
    return _STRIP_CHARS.sub("", raw.strip().lower()).strip()


def entity_key(raw: str) -> str:
    """Normalized label without leading handle sigils (`@sam` -> `sam`)."""
    return normalize_entity(raw).lstrip("@#").strip()


def make_node_id(label: str, entity_type: str) -> str:
    return f"{entity_type}:{entity_key(label)}"


def node_key(node_id: str) -> str:
    return node_id.split(":", 1)[1] if ":" in node_id else node_id


def edge_key(a: str, b: str) -> str:
    """Order-independent key for the edge between two node ids."""
    return EDGE_KEY_SEP.join(sorted((a, b)))


def _contains_words(shorter: str, longer: str) -> bool:
    words, needle = longer.split(), shorter.split()
    if not needle:
        return False
    n = len(needle)
    return any(words[i : i + n] == needle for i in range(len(words) - n + 1))


def labels_match(a: str, b: str, entity_type: str) -> bool:
    """Fuzzy containment between two normalized keys.

    The shorter key must appear as whole words inside the longer one. Person
    keys also match a single given-name token that prefixes the longer key's
    first word (`ben` ~ `benjamin xu`).
    """
    if a == b:
        return True
    shorter, longer = sorted((a, b), key=len)
    if len(shorter) < 2:
        return False
    if _contains_words(shorter, longer):
        return True
    if entity_type == "person" and " " not in shorter and len(shorter) >= _GIVEN_NAME_MIN:
        first = longer.split()[0] if longer.split() else ""
        return first.startswith(shorter)
    return False


class EntityStore:
    """Node and edge maps plus the co-occurrence hint window.

    Passed by reference to extraction, enrichment, maintenance and queries.
    """

    def __init__(self) -> None:
        self.nodes: dict[str, EntityNode] = {}
        self.edges: dict[str, EntityEdge] = {}
        self.recent_contexts: deque[tuple[str, str]] = deque(maxlen=CONTEXT_HINT_MAX)

    def __len__(self) -> int:
        return len(self.nodes)

    def has_node(self, node_id: str) -> bool:
        return node_id in self.nodes

    def get(self, node_id: str) -> EntityNode | None:
        return self.nodes.get(node_id)

    # --- Canonical resolution ---

    def resolve_id(self, label: str, entity_type: str) -> str | None:
        """Canonical id a label would land on, without mutating anything."""
        key = entity_key(label)
        if key in SKIP_ENTITIES or len(key) < 2:
            return None
        return self._resolve(key, entity_type)

    def _resolve(self, key: str, entity_type: str) -> str:
        group = TYPE_GROUPS.get(entity_type, (entity_type,))

        for t in group:
            candidate = f"{t}:{key}"
            if candidate in self.nodes:
                return candidate

        if entity_type in FUZZY_TYPES:
            matches = [
                node
                for node in self.nodes.values()
                if node.type in group and labels_match(key, node_key(node.id), entity_type)
            ]
            if matches:
                best = max(matches, key=lambda n: (len(n.label), n.weight))
                return best.id

        return f"{entity_type}:{key}"

    def find_node_id(self, label: str) -> str | None:
        """Exact-then-prefix lookup across all types. Never creates a node."""
        key = entity_key(label)
        if len(key) < 2:
            return None

        exact = [n for n in self.nodes.values() if node_key(n.id) == key]
        if exact:
            return max(exact, key=lambda n: n.weight).id

        prefixed = [
            n
            for n in self.nodes.values()
            if node_key(n.id).startswith(key) or key.startswith(node_key(n.id))
        ]
        if prefixed:
            return max(prefixed, key=lambda n: n.weight).id
        return None

    # --- Mutation ---

    def add_entity(
        self,
        label: str,
        entity_type: str,
        context: str | None = None,
        hint: str | None = None,
        now: datetime | None = None,
    ) -> str | None:
        """Record one occurrence of an entity. Returns its canonical id.

        Unknown types, stop-words and labels shorter than two characters are
        ignored and return None.
        """
        if entity_type not in ENTITY_TYPES:
            logger.debug("Entity skipped: %r has unknown type %r", label, entity_type)
            return None
        node_id = self.resolve_id(label, entity_type)
        if node_id is None:
            return None

        now = require_utc(now) if now else utcnow()
        context = context or "unknown"
        node = self.nodes.get(node_id)

        if node:
            node.weight += 1
            node.last_seen = max(node.last_seen, now)
            if context not in node.contexts:
                node.contexts.append(context)
        else:
            self.nodes[node_id] = EntityNode(
                id=node_id,
                label=label.strip(),
                type=entity_type,
                first_seen=now,
                last_seen=now,
                contexts=[context],
            )
            logger.debug("New entity %s (%s)", node_id, context)

        if hint:
            self.recent_contexts.append((node_id, hint))
            self._update_co_occurrences(node_id, hint, now)

        return node_id

    def _update_co_occurrences(self, node_id: str, hint: str, now: datetime) -> None:
        # One strengthening per matched pair of occurrences in the window:
        # this occurrence pairs with another entity only if that entity has
        # an occurrence under the same hint not yet paired with ours.
        counts = Counter(eid for eid, h in self.recent_contexts if h == hint)
        mine = counts[node_id]
        for other, seen in counts.items():
            if other == node_id or other not in self.nodes:
                continue
            if mine <= seen:
                self.strengthen_edge(other, node_id, now=now)

    def strengthen_edge(
        self,
        a: str,
        b: str,
        relation: str | None = None,
        now: datetime | None = None,
        amount: int = 1,
    ) -> EntityEdge | None:
        """Create or reinforce the edge between two existing nodes."""
        if a == b or a not in self.nodes or b not in self.nodes:
            return None
        now = now or utcnow()
        key = edge_key(a, b)
        edge = self.edges.get(key)
        if edge:
            edge.weight += amount
            edge.last_active = max(edge.last_active, now) if edge.last_active else now
            if relation and not edge.relation:
                edge.relation = relation
        else:
            if relation:
                source, target = a, b
            else:
                source, target = sorted((a, b))
            edge = EntityEdge(
                source=source, target=target, weight=amount, relation=relation, last_active=now
            )
            self.edges[key] = edge
        return edge

    def add_relation(
        self, from_label: str, to_label: str, relation: str, now: datetime | None = None
    ) -> EntityEdge | None:
        """Link two already-known entities with a semantic relation.

        First relation wins when the edge already carries one.
        """
        from_id = self.find_node_id(from_label)
        to_id = self.find_node_id(to_label)
        if not from_id or not to_id or from_id == to_id:
            logger.debug("Relation skipped: %r -> %r (%s)", from_label, to_label, relation)
            return None
        return self.strengthen_edge(from_id, to_id, relation=relation.strip(), now=now)

    def remove_node(self, node_id: str) -> bool:
        if self.nodes.pop(node_id, None) is None:
            return False
        self.prune_orphaned_edges()
        return True

    def merge_nodes(self, target_id: str, source_id: str) -> bool:
        """Fold `source_id` into `target_id`. No-op if either is gone."""
        if target_id == source_id:
            return False
        target = self.nodes.get(target_id)
        source = self.nodes.get(source_id)
        if target is None or source is None:
            return False

        if source.weight > target.weight:
            target.label = source.label
        target.weight += source.weight
        for ctx in source.contexts:
            if ctx not in target.contexts:
                target.contexts.append(ctx)
        target.contexts = target.contexts[-MAX_CONTEXTS:]
        target.first_seen = min(target.first_seen, source.first_seen)
        target.last_seen = max(target.last_seen, source.last_seen)
        target.verified = True

        for key, edge in list(self.edges.items()):
            if source_id not in (edge.source, edge.target):
                continue
            del self.edges[key]
            other = edge.target if edge.source == source_id else edge.source
            if other == target_id:
                continue
            new_key = edge_key(target_id, other)
            existing = self.edges.get(new_key)
            if existing:
                existing.weight += edge.weight
                existing.relation = existing.relation or edge.relation
                if edge.last_active and (
                    not existing.last_active or edge.last_active > existing.last_active
                ):
                    existing.last_active = edge.last_active
            else:
                moved = edge.model_copy()
                if moved.source == source_id:
                    moved.source = target_id
                else:
                    moved.target = target_id
                self.edges[new_key] = moved

        del self.nodes[source_id]
        self.recent_contexts = deque(
            ((target_id if eid == source_id else eid, hint) for eid, hint in self.recent_contexts),
            maxlen=CONTEXT_HINT_MAX,
        )
        self.prune_orphaned_edges()
        return True

    def decay_edges(self, stale_days: float, now: datetime | None = None) -> int:
        """Prune weak edges with no activity within `stale_days`."""
        now = now or utcnow()
        pruned = 0
        for key, edge in list(self.edges.items()):
            if edge.weight >= EDGE_DECAY_MIN_WEIGHT:
                continue
            last = edge.last_active or self._endpoint_last_seen(edge)
            if last is not None and days_since(last, now) > stale_days:
                del self.edges[key]
                pruned += 1
        return pruned

    def _endpoint_last_seen(self, edge: EntityEdge) -> datetime | None:
        seen = [n.last_seen for n in (self.nodes.get(edge.source), self.nodes.get(edge.target)) if n]
        return max(seen) if seen else None

    def prune_orphaned_edges(self) -> int:
        """Drop edges with a missing endpoint or that collapsed into a self-loop."""
        pruned = 0
        for key, edge in list(self.edges.items()):
            if (
                edge.source == edge.target
                or edge.source not in self.nodes
                or edge.target not in self.nodes
            ):
                del self.edges[key]
                pruned += 1
        return pruned

    def reset(self) -> None:
        self.nodes.clear()
        self.edges.clear()
        self.recent_contexts.clear()

    # --- Introspection / persistence ---

    def neighbors(self, node_id: str) -> list[EntityEdge]:
        return [e for e in self.edges.values() if node_id in (e.source, e.target)]

    def stats(self) -> dict:
        by_type = Counter(n.type for n in self.nodes.values())
        return {
            "nodes": len(self.nodes),
            "edges": len(self.edges),
            "verified": sum(1 for n in self.nodes.values() if n.verified),
            "by_type": dict(by_type),
        }

    def dump_nodes(self) -> list[dict]:
        return [n.model_dump(mode="json") for n in self.nodes.values()]

    def dump_edges(self) -> list[dict]:
        return [{"key": k, **e.model_dump(mode="json")} for k, e in self.edges.items()]

    def load(self, nodes: list[EntityNode], edges: list[EntityEdge]) -> None:
        self.reset()
        for node in nodes:
            self.nodes[node.id] = node
        for edge in edges:
            self.edges[edge_key(edge.source, edge.target)] = edge
        self.prune_orphaned_edges()
