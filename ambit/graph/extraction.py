"""Entity extraction — URL/title heuristics plus LLM-assisted batch extraction."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlparse

from ambit.feed import ActivityFeed
from ambit.graph.prompts import EXTRACTION_SYSTEM
from ambit.graph.store import EntityStore
from ambit.llm.client import LLMClient
from ambit.llm.parsing import extract_json, validate_items
from ambit.models import ContentSnapshot, ExtractedEntity, ExtractedRelation
from ambit.time import utcnow

logger = logging.getLogger(__name__)

SKIP_TITLE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (r"^untitled", r"^loading", r"^new tab", r"^\s*$", r"^about:blank", r"^settings", r"^preferences")
]

GENERIC_DOMAINS = frozenset({"google.com", "bing.com", "duckduckgo.com", "localhost", "127.0.0.1"})
MESSAGING_APPS = frozenset({"Messages", "Telegram", "WhatsApp", "Signal", "Discord", "Slack", "iMessage"})

_IG_RESERVED = {"stories", "p", "reel", "explore", "accounts", "direct", "about"}
_X_RESERVED = {
    "home", "search", "explore", "notifications", "messages", "i", "settings", "compose", "login", "logout",
}

_IG = re.compile(r"instagram\.com/([^/?]+)")
_X = re.compile(r"(?<![\w-])(?:twitter|x)\.com/([^/?]+)")
_GH = re.compile(r"github\.com/([^/?]+/[^/?]+)")
_LI = re.compile(r"linkedin\.com/in/([^/?]+)")
_REDDIT = re.compile(r"reddit\.com/r/([^/?]+)")
_YT_SUFFIX = re.compile(r"\s*[-–—|]?\s*YouTube\s*$")
_TITLE_TAIL = re.compile(r"\s*[-–—|].*$")
_MENTION = re.compile(r"@[\w.-]{3,}")

PAGE_CONTEXT_MAX = 200
MAX_MENTIONS = 3

# LLM batch shape
RECENT_TITLES = 12
RECENT_SUMMARIES = 8
RECENT_SCREENS = 6
RECENT_CLIPS = 3
MIN_SCREEN_TEXT = 50
MIN_INPUT_CHARS = 50
EXTRACT_MAX_TOKENS = 500


def should_skip_title(title: str | None) -> bool:
    return any(p.search(title or "") for p in SKIP_TITLE_PATTERNS)


def page_context(app: str, title: str, url: str | None, summary: str | None) -> str:
    """Co-occurrence hint shared by every entity pulled from one activity entry."""
    if summary:
        return summary
    if title and url:
        ctx = f"{app}: {title}"
    else:
        ctx = url or f"{app}: {title or ''}"
    return ctx[:PAGE_CONTEXT_MAX]


def url_domain(url: str) -> str | None:
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host.removeprefix("www.")


def extract_from_activity(
    store: EntityStore,
    app: str,
    title: str,
    url: str | None = None,
    summary: str | None = None,
    now: datetime | None = None,
) -> list[str]:
    """Rule-based extraction for one activity entry. Returns the ids touched."""
    if should_skip_title(title):
        return []

    hint = page_context(app, title, url, summary)
    touched: list[str] = []

    def add(label: str, entity_type: str, context: str, with_hint: bool = True) -> None:
        node_id = store.add_entity(label, entity_type, context, hint if with_hint else None, now=now)
        if node_id:
            touched.append(node_id)

    if app and app != "Unknown" and len(app) > 2:
        add(app, "app", app, with_hint=False)

    if url:
        domain = url_domain(url)
        if domain and domain not in GENERIC_DOMAINS:
            add(domain, "content", domain)

        if (m := _IG.search(url)) and m.group(1) not in _IG_RESERVED:
            add(f"@{m.group(1)}", "person", "instagram.com")

        if (m := _X.search(url)) and m.group(1) not in _X_RESERVED:
            add(f"@{m.group(1)}", "person", "x.com")

        if (m := _GH.search(url)) and "settings" not in m.group(1) and "notifications" not in m.group(1):
            add(m.group(1), "project", "github.com")

        if m := _LI.search(url):
            name = re.sub(r"\d+$", "", m.group(1).replace("-", " ")).strip()
            if len(name) > 2:
                add(name, "person", "linkedin.com")

        if (m := _REDDIT.search(url)) and len(m.group(1)) > 2:
            add(f"r/{m.group(1)}", "topic", "reddit.com")

    if title and len(title) > 2:
        if url and ("youtube.com/watch" in url or "youtu.be" in url):
            clean = _YT_SUFFIX.sub("", title).strip()
            if 5 < len(clean) < 100:
                add(clean, "content", "youtube.com")

        if app in MESSAGING_APPS:
            name = _TITLE_TAIL.sub("", title).strip()
            if (
                1 < len(name) < 30
                and not name.isdigit()
                and re.search(r"[a-zA-Z]", name)
            ):
                add(name, "person", app)

        for mention in _MENTION.findall(title)[:MAX_MENTIONS]:
            add(mention, "person", app)

    return touched


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def build_extraction_input(
    snapshots: list[ContentSnapshot],
    feed: ActivityFeed,
) -> str:
    """Assemble the LLM prompt from new snapshots plus recent titles and clipboard."""
    summaries = [
        f"[{s.app}] {s.summary}" for s in snapshots if s.summary and len(s.summary) > 20
    ][-RECENT_SUMMARIES:]

    screens = []
    for s in [s for s in snapshots if len((s.text or "").strip()) >= MIN_SCREEN_TEXT][-RECENT_SCREENS:]:
        line = f"[{s.app}] {s.title or ''}: {_collapse(s.text[:300])}"
        if len(line) > MIN_SCREEN_TEXT:
            screens.append(line)

    titles = []
    for a in sorted(feed.activity(), key=lambda a: a.start)[-RECENT_TITLES:]:
        if should_skip_title(a.title):
            continue
        line = f'{a.app}: "{a.title}"'
        if a.url:
            line += f" ({a.url[:60]})"
        if a.summary:
            line += f" - {a.summary[:100]}"
        titles.append(line)

    clips = [
        f'Clipboard: "{c.text[:120]}"'
        for c in feed.clipboard()[-RECENT_CLIPS:]
        if 10 < len(c.text) < 500
    ]

    parts = [
        "\n".join(titles),
        "\n".join(summaries),
        "Screen content:\n" + "\n".join(screens) if screens else "",
        "\n".join(clips),
    ]
    return "\n\n".join(p for p in parts if p)


@dataclass
class ExtractionResult:
    entities: list[str] = field(default_factory=list)
    relations: int = 0
    skipped: str | None = None


class LLMExtractor:
    """Batches unseen screen snapshots into one extraction request.

    `cursor` counts snapshots already consumed, so each snapshot is sent at
    most once no matter how often `run` is scheduled.
    """

    def __init__(self, client: LLMClient, cursor: int = 0):
        self.client = client
        self.cursor = cursor

    async def run(self, store: EntityStore, feed: ActivityFeed) -> ExtractionResult:
        if not self.client.available:
            return ExtractionResult(skipped="no_api_key")

        total = feed.snapshot_count()
        if self.cursor > total:
            # feed was wiped underneath us
            self.cursor = 0
        new = feed.snapshots(self.cursor)
        if not new:
            return ExtractionResult(skipped="no_new_snapshots")
        self.cursor += len(new)

        meaningful = [s for s in new if s.summary or len((s.text or "").strip()) >= MIN_SCREEN_TEXT]
        if not meaningful:
            return ExtractionResult(skipped="no_meaningful_snapshots")

        prompt = build_extraction_input(meaningful, feed)
        if len(prompt) < MIN_INPUT_CHARS:
            return ExtractionResult(skipped="input_too_short")

        text = await self.client.complete(EXTRACTION_SYSTEM, prompt, max_tokens=EXTRACT_MAX_TOKENS)
        if not text:
            return ExtractionResult(skipped="no_response")
        return self.apply(store, text, feed.current_app())

    def apply(self, store: EntityStore, text: str, current_app: str) -> ExtractionResult:
        """Validate a raw model response and write it into the store."""
        parsed = extract_json(text, prefer="object")
        if isinstance(parsed, dict):
            raw_entities = parsed.get("entities") or []
            raw_relations = parsed.get("relations") or []
        elif isinstance(parsed, list):
            raw_entities, raw_relations = parsed, []
        else:
            return ExtractionResult(skipped="unparseable")

        now = utcnow()
        hint = f"{current_app}:{int(now.timestamp() * 1000)}"
        result = ExtractionResult()

        for entity in validate_items(raw_entities, ExtractedEntity):
            node_id = store.add_entity(entity.label, entity.type, "ai-extract", hint, now=now)
            if node_id is None:
                continue
            result.entities.append(node_id)
            if entity.confidence == "high" and store.has_node(node_id):
                store.nodes[node_id].verified = True

        for rel in validate_items(raw_relations, ExtractedRelation):
            if store.add_relation(rel.from_label.strip(), rel.to_label.strip(), rel.relation, now=now):
                result.relations += 1

        if result.entities or result.relations:
            logger.info(
                "LLM extracted %d entities, %d relations", len(result.entities), result.relations
            )
        return result
