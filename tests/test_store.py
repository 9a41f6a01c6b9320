"""Tests for the entity store: canonical ids, fuzzy dedup, co-occurrence edges, merge."""

from __future__ import annotations

from datetime import timedelta

from conftest import T0

from ambit.graph.store import (
    EntityStore,
    edge_key,
    entity_key,
    labels_match,
    normalize_entity,
)
from ambit.models import EntityEdge, EntityNode


# --- Normalization ---


def test_normalize_strips_punctuation_keeps_handles():
    assert normalize_entity("  GitHub.com ") == "githubcom"
    assert normalize_entity("@Sam!") == "@sam"
    assert normalize_entity("#rust-lang") == "#rust-lang"


def test_entity_key_drops_leading_sigils():
    assert entity_key("@sam") == "sam"
    assert entity_key("#python") == "python"


def test_edge_key_is_order_independent():
    assert edge_key("person:ben", "project:x") == edge_key("project:x", "person:ben")


# --- add_entity ---


def test_idempotent_reinsertion(store):
    first = store.add_entity("VS Code", "app")
    second = store.add_entity("VS Code", "app")
    assert first == second == "app:vs code"
    assert len(store) == 1
    assert store.nodes[first].weight == 2


def test_stop_words_and_short_labels_rejected(store):
    assert store.add_entity("the", "topic") is None
    assert store.add_entity("x", "topic") is None
    assert store.add_entity("...", "topic") is None
    assert len(store) == 0


def test_unknown_entity_type_rejected(store):
    assert store.add_entity("Rust", "language") is None
    assert len(store) == 0


def test_first_seen_label_wins(store):
    node_id = store.add_entity("Rust", "skill")
    store.add_entity("RUST", "skill")
    assert store.nodes[node_id].label == "Rust"


def test_contexts_are_an_ordered_set(store):
    node_id = store.add_entity("Ben", "person", "Slack")
    store.add_entity("Ben", "person", "Messages")
    store.add_entity("Ben", "person", "Slack")
    assert store.nodes[node_id].contexts == ["Slack", "Messages"]


def test_last_seen_moves_forward_only(store):
    node_id = store.add_entity("Ben", "person", now=T0)
    store.add_entity("Ben", "person", now=T0 - timedelta(days=1))
    assert store.nodes[node_id].last_seen == T0


def test_handle_and_plain_name_share_a_node(store):
    assert store.add_entity("@sam", "person") == store.add_entity("sam", "person")


# --- Canonical resolution ---


def test_given_name_resolves_to_full_name(store):
    ben = store.add_entity("Ben", "person")
    assert store.add_entity("Benjamin Xu", "person") == ben
    assert len(store) == 1
    assert store.nodes[ben].weight == 2


def test_full_name_first_then_given_name(store):
    full = store.add_entity("Benjamin Xu", "person")
    assert store.add_entity("Ben", "person") == full


def test_whole_word_containment(store):
    project = store.add_entity("Ambit", "project")
    assert store.add_entity("Ambit Desktop", "project") == project


def test_substring_without_word_boundary_does_not_match(store):
    store.add_entity("Art", "topic")
    assert store.add_entity("Smart Contracts", "topic") == "topic:smart contracts"


def test_place_and_topic_are_interchangeable(store):
    place = store.add_entity("Berlin", "place")
    assert store.add_entity("Berlin", "topic") == place


def test_incompatible_types_do_not_merge(store):
    person = store.add_entity("Notion", "person")
    app = store.add_entity("Notion", "app")
    assert person != app
    assert len(store) == 2


def test_longest_label_wins_among_fuzzy_candidates(store):
    store.nodes["person:ben"] = EntityNode(id="person:ben", label="Ben", type="person", weight=9)
    store.nodes["person:ben xu"] = EntityNode(id="person:ben xu", label="Ben Xu", type="person")
    assert store.resolve_id("Ben Xu Jr", "person") == "person:ben xu"


def test_labels_match_rules():
    assert labels_match("ben", "benjamin xu", "person")
    assert not labels_match("ben", "benjamin xu", "project")
    assert labels_match("xu", "benjamin xu", "person")
    assert not labels_match("be", "benjamin", "person")


# --- Co-occurrence ---


def test_cooccurrence_scenario(store):
    gh = store.add_entity("github.com", "content", "Chrome", "h1")
    sam = store.add_entity("@sam", "person", "Chrome", "h1")
    assert (gh, sam) == ("content:githubcom", "person:sam")
    assert list(store.edges) == [edge_key(gh, sam)]
    assert store.edges[edge_key(gh, sam)].weight == 1

    store.add_entity("github.com", "content", "Chrome", "h1")
    store.add_entity("@sam", "person", "Chrome", "h1")
    assert len(store) == 2
    assert len(store.edges) == 1
    assert store.edges[edge_key(gh, sam)].weight == 2


def test_different_hints_do_not_connect(store):
    store.add_entity("github.com", "content", "Chrome", "h1")
    store.add_entity("@sam", "person", "Chrome", "h2")
    assert store.edges == {}


def test_no_hint_no_edge(store):
    store.add_entity("Chrome", "app", "Chrome")
    store.add_entity("github.com", "content", "Chrome", "h1")
    assert store.edges == {}


def test_hint_window_is_bounded(store):
    store.add_entity("github.com", "content", hint="old")
    for i in range(100):
        store.add_entity(f"topic {i}", "topic", hint=f"filler-{i}")
    store.add_entity("@sam", "person", hint="old")
    assert edge_key("content:githubcom", "person:sam") not in store.edges


# --- Relations ---


def test_symmetric_relation_edges(store):
    ben = store.add_entity("Ben", "person")
    px = store.add_entity("Project X", "project")

    first = store.add_relation("Ben", "Project X", "working_on")
    second = store.add_relation("Project X", "Ben", "collaborating_with")

    assert first is second
    assert list(store.edges) == [edge_key(ben, px)]
    edge = store.edges[edge_key(ben, px)]
    assert edge.weight == 2
    assert edge.relation == "working_on"


def test_relation_requires_known_entities(store):
    store.add_entity("Ben", "person")
    assert store.add_relation("Ben", "Nobody Known", "knows") is None
    assert len(store) == 1
    assert store.edges == {}


def test_relation_uses_prefix_lookup(store):
    store.add_entity("Benjamin", "person")
    store.add_entity("Ambit", "project")
    assert store.add_relation("Ben", "Ambit", "working_on") is not None


def test_relation_to_self_is_ignored(store):
    store.add_entity("Ben", "person")
    assert store.add_relation("Ben", "ben", "is") is None


# --- Merge / remove / prune ---


def _seed_merge(store):
    a = store.add_entity("Sam Altman", "person", "x.com")
    b = store.add_entity("sama", "person", "Slack")
    store.add_entity("sama", "person", "Slack")
    c = store.add_entity("OpenAI", "project")
    d = store.add_entity("Ambit", "project")
    store.strengthen_edge(b, c, amount=3)
    store.strengthen_edge(a, c, amount=1)
    store.strengthen_edge(b, d)
    store.strengthen_edge(a, b)
    return a, b, c, d


def test_merge_moves_edges_and_sums_weights(store):
    a, b, c, d = _seed_merge(store)
    weight_a, weight_b = store.nodes[a].weight, store.nodes[b].weight

    assert store.merge_nodes(a, b) is True

    assert b not in store.nodes
    assert store.nodes[a].weight == weight_a + weight_b
    assert store.nodes[a].verified is True
    assert store.edges[edge_key(a, c)].weight == 4
    assert edge_key(a, d) in store.edges
    assert all(e.source != e.target for e in store.edges.values())
    assert all(b not in (e.source, e.target) for e in store.edges.values())


def test_merge_adopts_higher_usage_label(store):
    a, b, _, _ = _seed_merge(store)
    store.merge_nodes(a, b)
    assert store.nodes[a].label == "sama"


def test_merge_unions_contexts_and_time_bounds(store):
    a = store.add_entity("Sam Altman", "person", "x.com", now=T0)
    b = store.add_entity("sama", "person", "Slack", now=T0 - timedelta(days=3))
    store.add_entity("sama", "person", "Slack", now=T0 + timedelta(days=1))
    store.merge_nodes(a, b)
    node = store.nodes[a]
    assert node.contexts == ["x.com", "Slack"]
    assert node.first_seen == T0 - timedelta(days=3)
    assert node.last_seen == T0 + timedelta(days=1)


def test_merge_missing_or_same_is_noop(store):
    a = store.add_entity("Ben", "person")
    assert store.merge_nodes(a, a) is False
    assert store.merge_nodes(a, "person:ghost") is False
    assert store.merge_nodes("person:ghost", a) is False
    assert store.nodes[a].weight == 1


def test_remove_node_prunes_edges(store):
    gh = store.add_entity("github.com", "content", hint="h")
    store.add_entity("@sam", "person", hint="h")
    assert store.remove_node(gh) is True
    assert store.edges == {}
    assert store.remove_node(gh) is False


def test_prune_orphaned_edges(store):
    store.add_entity("Ben", "person")
    store.edges["person:ben|person:ghost"] = EntityEdge(source="person:ben", target="person:ghost")
    store.edges["person:ben|person:ben"] = EntityEdge(source="person:ben", target="person:ben")
    assert store.prune_orphaned_edges() == 2
    assert store.edges == {}


def test_decay_edges_prunes_only_stale_weak_edges(store):
    a = store.add_entity("Ben", "person", now=T0)
    b = store.add_entity("Ambit", "project", now=T0)
    c = store.add_entity("Rust", "skill", now=T0)
    store.strengthen_edge(a, b, now=T0 - timedelta(days=10))
    store.strengthen_edge(a, c, now=T0 - timedelta(days=10), amount=2)
    store.strengthen_edge(b, c, now=T0 - timedelta(days=1))

    assert store.decay_edges(5, now=T0) == 1
    assert edge_key(a, b) not in store.edges
    assert edge_key(a, c) in store.edges
    assert edge_key(b, c) in store.edges


def test_reset_clears_everything(store):
    store.add_entity("github.com", "content", hint="h")
    store.add_entity("@sam", "person", hint="h")
    store.reset()
    assert len(store) == 0
    assert store.edges == {}
    assert len(store.recent_contexts) == 0


def test_stats_and_load_round_trip(store):
    store.add_entity("github.com", "content", hint="h")
    store.add_entity("@sam", "person", hint="h")
    stats = store.stats()
    assert stats == {"nodes": 2, "edges": 1, "verified": 0, "by_type": {"content": 1, "person": 1}}

    nodes = [EntityNode.model_validate(n) for n in store.dump_nodes()]
    edges = [EntityEdge.model_validate(e) for e in store.dump_edges()]
    fresh = EntityStore()
    fresh.load(nodes, edges[:1] + [EntityEdge(source="person:sam", target="topic:gone")])
    assert fresh.stats()["nodes"] == 2
    assert list(fresh.edges) == list(store.edges)
