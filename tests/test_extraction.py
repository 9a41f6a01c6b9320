"""Tests for rule-based and LLM-assisted entity extraction."""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import T0, activity

from ambit.feed import StaticFeed
from ambit.graph.extraction import (
    LLMExtractor,
    build_extraction_input,
    extract_from_activity,
    page_context,
    should_skip_title,
    url_domain,
)
from ambit.graph.store import edge_key
from ambit.models import ClipboardEntry, ContentSnapshot


def _snapshot(text="", summary=None, app="Chrome", title="Page"):
    return ContentSnapshot(timestamp=T0, app=app, title=title, text=text, summary=summary)


# --- Title and URL helpers ---


@pytest.mark.parametrize("title", ["Untitled", "Loading...", "New Tab", "   ", "about:blank", "Settings"])
def test_generic_titles_are_skipped(title):
    assert should_skip_title(title)


def test_meaningful_title_is_kept():
    assert not should_skip_title("ambit/README.md at main")


def test_url_domain_strips_www():
    assert url_domain("https://www.github.com/foo") == "github.com"
    assert url_domain("not a url") is None


def test_page_context_prefers_summary():
    assert page_context("Chrome", "T", "https://a.com", "summary") == "summary"
    assert page_context("Chrome", "T", "https://a.com", None) == "Chrome: T"
    assert page_context("Chrome", "", "https://a.com", None) == "https://a.com"


# --- Rule-based extraction ---


def test_skipped_title_extracts_nothing(store):
    assert extract_from_activity(store, "Google Chrome", "New Tab", "https://github.com") == []
    assert len(store) == 0


def test_domain_and_app(store):
    touched = extract_from_activity(
        store, "Google Chrome", "Pull requests", "https://github.com/pulls", now=T0
    )
    assert "app:google chrome" in touched
    assert "content:githubcom" in touched
    assert store.nodes["content:githubcom"].contexts == ["github.com"]


def test_generic_search_domain_ignored(store):
    extract_from_activity(store, "Safari", "rust traits - Google Search", "https://www.google.com/search?q=x")
    assert "content:googlecom" not in store.nodes


def test_github_repo_becomes_project(store):
    extract_from_activity(store, "Arc", "ambit: context graph", "https://github.com/acme/ambit")
    assert "project:acmeambit" in store.nodes
    assert store.nodes["project:acmeambit"].label == "acme/ambit"
    # repo and domain share the page context, so they co-occur
    assert edge_key("project:acmeambit", "content:githubcom") in store.edges


def test_social_profiles(store):
    extract_from_activity(store, "Chrome", "Sam (@sam) / X", "https://x.com/sam")
    extract_from_activity(store, "Chrome", "Jane Doe | LinkedIn", "https://www.linkedin.com/in/jane-doe-12345")
    extract_from_activity(store, "Chrome", "nat on Instagram", "https://instagram.com/nat/")
    extract_from_activity(store, "Chrome", "r/rust", "https://www.reddit.com/r/rust/comments/1")
    assert "person:sam" in store.nodes
    assert "person:jane doe" in store.nodes
    assert "person:nat" in store.nodes
    assert "topic:rrust" in store.nodes


def test_reserved_paths_are_not_people(store):
    extract_from_activity(store, "Chrome", "Home / X", "https://x.com/home")
    extract_from_activity(store, "Chrome", "Explore", "https://instagram.com/explore/")
    assert not any(n.type == "person" for n in store.nodes.values())


def test_domains_ending_in_x_are_not_profiles(store):
    extract_from_activity(store, "Chrome", "Browse titles", "https://www.netflix.com/browse")
    assert "person:browse" not in store.nodes
    assert "content:netflixcom" in store.nodes


def test_youtube_title_suffix_stripped(store):
    extract_from_activity(
        store, "Chrome", "Rust in 100 Seconds - YouTube", "https://www.youtube.com/watch?v=abc"
    )
    assert "content:rust in 100 seconds" in store.nodes


def test_messaging_contact_from_window_title(store):
    extract_from_activity(store, "Slack", "Benjamin Xu - Acme Workspace")
    assert store.nodes["person:benjamin xu"].contexts == ["Slack"]


def test_messaging_title_must_look_like_a_name(store):
    extract_from_activity(store, "Messages", "12345")
    assert not any(n.type == "person" for n in store.nodes.values())


def test_mentions_in_titles_capped_at_three(store):
    extract_from_activity(store, "Notion", "notes for @alice @bobby @carol @dave")
    people = {n.id for n in store.nodes.values() if n.type == "person"}
    assert people == {"person:alice", "person:bobby", "person:carol"}


def test_app_node_never_gets_cooccurrence_edges(store):
    extract_from_activity(store, "Chrome", "acme/ambit", "https://github.com/acme/ambit")
    assert all("app:chrome" not in k for k in store.edges)


def test_occurrence_timestamp_comes_from_caller(store):
    extract_from_activity(store, "Chrome", "Page", "https://example.org", now=T0)
    assert store.nodes["content:exampleorg"].last_seen == T0


# --- LLM-assisted extraction ---


def test_build_input_includes_every_source():
    feed = StaticFeed(
        activity=[activity("Code", "store.py - ambit", url="file:///ambit/store.py")],
        clipboard=[ClipboardEntry(timestamp=T0, text="pip install ambit-graph")],
    )
    snaps = [
        _snapshot(summary="Reviewing the ambit entity store pull request"),
        _snapshot(text="def add_entity(self, label, entity_type):  " * 3),
    ]
    prompt = build_extraction_input(snaps, feed)
    assert 'Code: "store.py - ambit"' in prompt
    assert "[Chrome] Reviewing the ambit" in prompt
    assert "Screen content:" in prompt
    assert 'Clipboard: "pip install ambit-graph"' in prompt


def test_build_input_titles_follow_start_time():
    recent = [activity("Code", f"module{i}.py - ambit", minute=i) for i in range(12)]
    # arrives last but happened an hour earlier
    late = activity("Mail", "Quarterly invoices", minute=-60)
    prompt = build_extraction_input([], StaticFeed(activity=[*recent, late]))

    assert "Quarterly invoices" not in prompt
    assert prompt.index("module0.py") < prompt.index("module11.py")


def test_llm_extraction_applies_entities_and_relations(store, mock_llm):
    store.add_entity("Ben", "person")
    mock_llm.complete.return_value = "Sure! " + json.dumps(
        {
            "entities": [
                {"label": "Ambit", "type": "project", "confidence": "high"},
                {"label": "Rust", "type": "skill", "confidence": "medium"},
                {"label": "x", "type": "topic"},
                {"label": "Bad Type", "type": "spaceship"},
            ],
            "relations": [
                {"from": "Ben", "to": "Ambit", "relation": "working_on"},
                {"from": "Ghost", "to": "Ambit", "relation": "knows"},
            ],
        }
    ) + " Hope that helps."
    feed = StaticFeed(snapshots=[_snapshot(summary="Ben is pairing on the Ambit graph store in Rust")])
    extractor = LLMExtractor(mock_llm)

    result = asyncio.run(extractor.run(store, feed))

    assert result.skipped is None
    assert result.entities == ["project:ambit", "skill:rust"]
    assert result.relations == 1
    assert store.nodes["project:ambit"].verified is True
    assert store.nodes["skill:rust"].verified is False
    assert store.edges[edge_key("person:ben", "project:ambit")].relation == "working_on"
    assert extractor.cursor == 1


def test_llm_extraction_accepts_bare_array(store, mock_llm):
    mock_llm.complete.return_value = '[{"label": "Kubernetes", "type": "skill"}]'
    feed = StaticFeed(snapshots=[_snapshot(summary="Debugging a Kubernetes deployment rollout in staging")])
    result = asyncio.run(LLMExtractor(mock_llm).run(store, feed))
    assert result.entities == ["skill:kubernetes"]


def test_each_snapshot_sent_once(store, mock_llm):
    mock_llm.complete.return_value = '{"entities": []}'
    feed = StaticFeed(snapshots=[_snapshot(summary="Reading about graph databases and time-based decay of weak edges")])
    extractor = LLMExtractor(mock_llm)

    asyncio.run(extractor.run(store, feed))
    second = asyncio.run(extractor.run(store, feed))

    assert second.skipped == "no_new_snapshots"
    assert mock_llm.complete.await_count == 1


def test_llm_extraction_skip_reasons(store, mock_llm):
    mock_llm.available = False
    assert asyncio.run(LLMExtractor(mock_llm).run(store, StaticFeed())).skipped == "no_api_key"

    mock_llm.available = True
    feed = StaticFeed(snapshots=[_snapshot(text="short")])
    assert asyncio.run(LLMExtractor(mock_llm).run(store, feed)).skipped == "no_meaningful_snapshots"

    feed = StaticFeed(snapshots=[_snapshot(summary="Graph maintenance notes and decay thresholds")])
    mock_llm.complete.return_value = None
    assert asyncio.run(LLMExtractor(mock_llm).run(store, feed)).skipped == "no_response"

    mock_llm.complete.return_value = "I could not find any entities."
    assert asyncio.run(LLMExtractor(mock_llm).run(store, feed)).skipped == "unparseable"
    assert len(store) == 0


def test_cursor_resets_when_feed_shrinks(store, mock_llm):
    mock_llm.complete.return_value = '{"entities": []}'
    feed = StaticFeed(snapshots=[_snapshot(summary="Notes on the scheduling of periodic jobs in the daemon loop")])
    extractor = LLMExtractor(mock_llm, cursor=10)
    asyncio.run(extractor.run(store, feed))
    assert extractor.cursor == 1
