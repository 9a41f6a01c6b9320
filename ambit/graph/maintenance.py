"""Graph maintenance — decay, LLM-assisted cleanup, Nia cross-reference edges.

Cleanup and Nia edge building await external services. Other jobs may delete
or merge nodes while they wait, so every mutation they drive re-checks that
the ids it names still exist.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from ambit.graph.prompts import CLEANUP_SYSTEM
from ambit.graph.store import EntityStore, edge_key
from ambit.llm.client import LLMClient
from ambit.llm.parsing import extract_json, validate_object
from ambit.memory.nia import NiaClient
from ambit.models import CleanupDecision
from ambit.time import days_since, utcnow

logger = logging.getLogger(__name__)

GRAPH_DECAY_STALE_DAYS = 7
GRAPH_DECAY_MIN_WEIGHT = 2
VERIFIED_MIN_WEIGHT = 1
EDGE_DECAY_DAYS = 5

CLEANUP_BATCH = 50
CLEANUP_MAX_TOKENS = 600

NIA_TOP_ENTITIES = 20
NIA_MIN_WEIGHT = 3
NIA_RESULTS_PER_ENTITY = 3
NIA_CALL_DELAY = 0.2
NIA_MIN_GROUP = 2
NIA_MAX_GROUP = 5
NIA_RELATION = "nia_context"


@dataclass
class DecayResult:
    nodes_removed: int = 0
    edges_removed: int = 0


@dataclass
class CleanupResult:
    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)
    merged: list[tuple[str, str]] = field(default_factory=list)  # (into, from)
    nodes_removed: int = 0
    edges_removed: int = 0
    skipped: str | None = None


def decay_graph(store: EntityStore, now: datetime | None = None) -> DecayResult:
    """Drop stale low-weight nodes, then stale weak edges, then orphans.

    A node goes when it is older than the stale window and below its
    threshold: weight 2 for unverified nodes, weight 1 for verified ones.
    """
    now = now or utcnow()
    result = DecayResult()
    edges_before = len(store.edges)

    for node_id, node in list(store.nodes.items()):
        min_weight = VERIFIED_MIN_WEIGHT if node.verified else GRAPH_DECAY_MIN_WEIGHT
        if node.weight < min_weight and days_since(node.last_seen, now) > GRAPH_DECAY_STALE_DAYS:
            del store.nodes[node_id]
            result.nodes_removed += 1

    store.decay_edges(EDGE_DECAY_DAYS, now)
    store.prune_orphaned_edges()
    result.edges_removed = edges_before - len(store.edges)

    if result.nodes_removed or result.edges_removed:
        logger.info(
            "Graph decay: pruned %d nodes, %d edges", result.nodes_removed, result.edges_removed
        )
    return result


def cleanup_candidates(store: EntityStore, limit: int = CLEANUP_BATCH) -> list:
    nodes = [n for n in store.nodes.values() if not n.verified and n.type != "app"]
    nodes.sort(key=lambda n: n.weight, reverse=True)
    return nodes[:limit]


def format_cleanup_input(nodes: list) -> str:
    return "\n".join(
        f'{n.id} | "{n.label}" | {n.type} | weight:{n.weight} | contexts:[{",".join(n.contexts[-3:])}]'
        for n in nodes
    )


def apply_cleanup(store: EntityStore, decision: CleanupDecision) -> CleanupResult:
    """Apply a keep/remove/merge decision. Unknown or already-gone ids are skipped."""
    nodes_before, edges_before = len(store.nodes), len(store.edges)
    result = CleanupResult()

    for node_id in decision.remove:
        if store.has_node(node_id):
            del store.nodes[node_id]
            result.removed.append(node_id)

    for node_id in decision.keep:
        node = store.get(node_id)
        if node:
            node.verified = True
            result.kept.append(node_id)

    for merge in decision.merge:
        if not store.has_node(merge.into):
            continue
        for from_id in merge.from_ids:
            if store.merge_nodes(merge.into, from_id):
                result.merged.append((merge.into, from_id))
        if store.has_node(merge.into):
            store.nodes[merge.into].verified = True

    store.prune_orphaned_edges()
    result.nodes_removed = nodes_before - len(store.nodes)
    result.edges_removed = edges_before - len(store.edges)

    if result.removed or result.merged:
        logger.info(
            "Graph cleanup: removed %d, merged %d. Stats: %s",
            len(result.removed),
            len(result.merged),
            store.stats(),
        )
    return result


async def cleanup_graph(store: EntityStore, client: LLMClient) -> CleanupResult:
    """Ask the LLM to classify unverified nodes as signal or noise, then apply."""
    if not client.available:
        return CleanupResult(skipped="no_api_key")

    candidates = cleanup_candidates(store)
    if not candidates:
        return CleanupResult(skipped="nothing_to_classify")

    text = await client.complete(
        CLEANUP_SYSTEM, format_cleanup_input(candidates), max_tokens=CLEANUP_MAX_TOKENS
    )
    if not text:
        return CleanupResult(skipped="no_response")

    decision = validate_object(extract_json(text, prefer="object"), CleanupDecision)
    if decision is None:
        logger.warning("Graph cleanup: unparseable response")
        return CleanupResult(skipped="unparseable")

    return apply_cleanup(store, decision)


def nia_candidates(store: EntityStore, limit: int = NIA_TOP_ENTITIES) -> list:
    nodes = [
        n
        for n in store.nodes.values()
        if n.type != "app" and (n.verified or n.weight >= NIA_MIN_WEIGHT)
    ]
    nodes.sort(key=lambda n: n.weight, reverse=True)
    return nodes[:limit]


async def build_nia_edges(
    store: EntityStore, nia: NiaClient, delay: float = NIA_CALL_DELAY
) -> int:
    """Link entities that share a semantic-memory context. Returns new edge count."""
    if not nia.available:
        return 0

    top = nia_candidates(store)
    if len(top) < NIA_MIN_GROUP:
        return 0

    groups: dict[str, set[str]] = {}
    for node in top:
        results = await nia.semantic_search(node.label, limit=NIA_RESULTS_PER_ENTITY)
        for ctx in results:
            context_id = ctx.id or ctx.title or ctx.model_dump_json()[:50]
            groups.setdefault(context_id, set()).add(node.id)
        if delay:
            await asyncio.sleep(delay)

    added = 0
    for ids in groups.values():
        if not NIA_MIN_GROUP <= len(ids) <= NIA_MAX_GROUP:
            continue
        live = sorted(i for i in ids if store.has_node(i))
        for i, a in enumerate(live):
            for b in live[i + 1 :]:
                is_new = edge_key(a, b) not in store.edges
                if store.strengthen_edge(a, b, relation=NIA_RELATION) and is_new:
                    added += 1

    if added:
        logger.info("Nia edges: added %d context-based connections", added)
    return added
