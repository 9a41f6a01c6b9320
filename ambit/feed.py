"""Read-only views over the raw activity feed.

The graph engine reads the feed through `ActivityFeed` and never writes to it;
only the ingestion gateway inserts records.
"""

from __future__ import annotations

from typing import Protocol

from ambit.db import AmbitDB
from ambit.models import ActivityEntry, ClipboardEntry, ContentSnapshot, NowPlayingEntry


class ActivityFeed(Protocol):
    def activity(self, offset: int = 0) -> list[ActivityEntry]: ...

    def snapshots(self, offset: int = 0) -> list[ContentSnapshot]: ...

    def clipboard(self) -> list[ClipboardEntry]: ...

    def now_playing(self) -> list[NowPlayingEntry]: ...

    def activity_count(self) -> int: ...

    def snapshot_count(self) -> int: ...

    def current_app(self) -> str: ...


class DBActivityFeed:
    """Feed backed by the SQLite feed tables."""

    def __init__(self, db: AmbitDB):
        self.db = db

    def activity(self, offset: int = 0) -> list[ActivityEntry]:
        return self.db.get_activity(offset=offset)

    def snapshots(self, offset: int = 0) -> list[ContentSnapshot]:
        return self.db.get_snapshots(offset=offset)

    def clipboard(self) -> list[ClipboardEntry]:
        return self.db.get_clipboard()

    def now_playing(self) -> list[NowPlayingEntry]:
        return self.db.get_now_playing()

    def activity_count(self) -> int:
        return self.db.count("activity")

    def snapshot_count(self) -> int:
        return self.db.count("snapshots")

    def current_app(self) -> str:
        latest = self.db.latest_activity()
        return latest.app if latest else "Unknown"


class StaticFeed:
    """In-memory feed for tests and embedding callers."""

    def __init__(
        self,
        activity: list[ActivityEntry] | None = None,
        snapshots: list[ContentSnapshot] | None = None,
        clipboard: list[ClipboardEntry] | None = None,
        now_playing: list[NowPlayingEntry] | None = None,
        current_app: str | None = None,
    ):
        self._activity = list(activity or [])
        self._snapshots = list(snapshots or [])
        self._clipboard = list(clipboard or [])
        self._now_playing = list(now_playing or [])
        self._current_app = current_app

    def activity(self, offset: int = 0) -> list[ActivityEntry]:
        return self._activity[offset:]

    def snapshots(self, offset: int = 0) -> list[ContentSnapshot]:
        return self._snapshots[offset:]

    def clipboard(self) -> list[ClipboardEntry]:
        return list(self._clipboard)

    def now_playing(self) -> list[NowPlayingEntry]:
        return list(self._now_playing)

    def activity_count(self) -> int:
        return len(self._activity)

    def snapshot_count(self) -> int:
        return len(self._snapshots)

    def current_app(self) -> str:
        if self._current_app:
            return self._current_app
        return max(self._activity, key=lambda a: a.start).app if self._activity else "Unknown"

    def append(self, entry: ActivityEntry) -> None:
        self._activity.append(entry)

    def append_snapshot(self, snapshot: ContentSnapshot) -> None:
        self._snapshots.append(snapshot)
