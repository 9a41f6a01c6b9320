"""IngestGateway — validates, filters, and inserts raw feed records pushed from capture tools."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from ambit.db import AmbitDB
from ambit.ingestion.filter import ContentFilter
from ambit.models import ActivityEntry, ClipboardEntry, ContentSnapshot, NowPlayingEntry
from ambit.time import require_utc, utcnow

logger = logging.getLogger(__name__)

KINDS = ("activity", "snapshot", "clipboard", "now_playing")


def _first_error(e: ValidationError) -> str:
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid")


class IngestGateway:
    """The only writer of the raw feed tables."""

    def __init__(self, db: AmbitDB):
        self.db = db
        self.filter = ContentFilter()

    def push(self, kind: str, record: Any) -> dict:
        """Push one record. Returns {status, ...}; never raises on bad input."""
        if kind not in KINDS:
            return {"status": "error", "error": f"Unknown kind {kind!r} (expected one of {', '.join(KINDS)})"}
        if not isinstance(record, dict):
            return {"status": "error", "error": f"Record must be a dict, got {type(record).__name__}"}
        try:
            return getattr(self, f"_push_{kind}")(dict(record))
        except ValidationError as e:
            return {"status": "error", "error": _first_error(e)}

    def _push_activity(self, record: dict) -> dict:
        if "end" not in record and "start" in record:
            record["end"] = record["start"]
        entry = ActivityEntry.model_validate(record)
        if not entry.app.strip():
            return {"status": "error", "error": "app is required"}
        entry.start, entry.end = require_utc(entry.start), require_utc(entry.end)
        if entry.end < entry.start:
            return {"status": "error", "error": "end is before start"}
        if not entry.duration_ms:
            entry.duration_ms = int((entry.end - entry.start) / timedelta(milliseconds=1))
        elif entry.end == entry.start:
            entry.end = entry.start + timedelta(milliseconds=entry.duration_ms)

        entry.title = self.filter.sanitize(entry.title) or ""
        entry.url = self.filter.sanitize(entry.url)
        entry.summary = self.filter.sanitize(entry.summary)

        if not self.db.insert_activity(entry):
            return {"status": "duplicate"}
        logger.debug("Push activity: %s - %s", entry.app, entry.title[:60])
        return {"status": "ok"}

    def _push_snapshot(self, record: dict) -> dict:
        record.setdefault("timestamp", utcnow())
        snapshot = ContentSnapshot.model_validate(record)
        if not snapshot.text.strip() and not snapshot.summary:
            return {"status": "filtered", "reason": "empty content"}
        text, reason = self.filter.process(snapshot.text, snapshot.title)
        if text is None:
            return {"status": "filtered", "reason": reason}
        snapshot.text = text
        snapshot.title = self.filter.sanitize(snapshot.title) or ""
        snapshot.summary = self.filter.sanitize(snapshot.summary)
        self.db.insert_snapshot(snapshot)
        return {"status": "ok"}

    def _push_clipboard(self, record: dict) -> dict:
        record.setdefault("timestamp", utcnow())
        entry = ClipboardEntry.model_validate(record)
        if not entry.text.strip():
            return {"status": "filtered", "reason": "empty content"}
        text, reason = self.filter.process(entry.text)
        if text is None:
            return {"status": "filtered", "reason": reason}
        entry.text = text
        self.db.insert_clipboard(entry)
        return {"status": "ok"}

    def _push_now_playing(self, record: dict) -> dict:
        record.setdefault("timestamp", utcnow())
        entry = NowPlayingEntry.model_validate(record)
        if not entry.track.strip():
            return {"status": "filtered", "reason": "empty track"}
        self.db.insert_now_playing(entry)
        return {"status": "ok"}

    def push_batch(self, records: list) -> dict:
        """Push records shaped {"kind": ..., **fields}. Returns per-status counts."""
        counts = {"inserted": 0, "duplicates": 0, "filtered": 0}
        errors = []
        for i, rec in enumerate(records):
            if not isinstance(rec, dict):
                errors.append({"index": i, "error": f"Record must be a dict, got {type(rec).__name__}"})
                continue
            fields = {k: v for k, v in rec.items() if k != "kind"}
            result = self.push(rec.get("kind", ""), fields)
            status = result["status"]
            if status == "ok":
                counts["inserted"] += 1
            elif status == "duplicate":
                counts["duplicates"] += 1
            elif status == "filtered":
                counts["filtered"] += 1
            else:
                errors.append({"index": i, "error": result["error"]})

        logger.info(
            "Push batch: %d inserted, %d duplicates, %d filtered (of %d)",
            counts["inserted"], counts["duplicates"], counts["filtered"], len(records),
        )
        return {
            "status": "ok" if not errors else "partial_error",
            **counts,
            "errors": errors,
            "total": len(records),
        }
