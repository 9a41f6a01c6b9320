"""Operational metrics and logging setup.

Every tracked operation appends one JSON line to ``<data_dir>/<user>/metrics.jsonl``
with its duration, outcome, token spend and the graph size before and after.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from ambit.config import user_data_dir

if TYPE_CHECKING:
    from ambit.graph.service import GraphService

logger = logging.getLogger("ambit")

CONSOLE_FORMAT = "%(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(user_id: str, verbose: bool = False) -> None:
    """Send the ``ambit`` logger to stderr and to the user's ambit.log."""
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    file_handler = logging.FileHandler(user_data_dir(user_id) / "ambit.log")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    logger.setLevel(logging.DEBUG)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(console)
    logger.addHandler(file_handler)


def _iso_now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class RunMetrics:
    """One tracked operation (sync, enrich, maintain, ...)."""

    operation: str
    user_id: str
    started_at: str = ""
    completed_at: str = ""
    duration_seconds: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    entries_processed: int = 0
    nodes_before: int = 0
    nodes_after: int = 0
    edges_before: int = 0
    edges_after: int = 0
    success: bool = True
    error: str | None = None
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


def _sample(service: GraphService) -> tuple[int, int, int, int]:
    """(nodes, edges, input tokens, output tokens) right now."""
    stats = service.store.stats()
    llm = service.llm
    return stats["nodes"], stats["edges"], llm.total_input_tokens, llm.total_output_tokens


def _run_tokens(run: dict) -> int:
    return run.get("input_tokens", 0) + run.get("output_tokens", 0)


class MetricsTracker:
    """Appends RunMetrics to metrics.jsonl and summarizes them."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.metrics_file = user_data_dir(user_id) / "metrics.jsonl"

    def record(self, metrics: RunMetrics) -> None:
        with open(self.metrics_file, "a") as f:
            f.write(json.dumps(metrics.to_dict()) + "\n")
        logger.debug(
            "[metrics] %s: %.2fs, nodes %d->%d, edges %d->%d",
            metrics.operation,
            metrics.duration_seconds,
            metrics.nodes_before,
            metrics.nodes_after,
            metrics.edges_before,
            metrics.edges_after,
        )

    @contextmanager
    def track(self, operation: str, service: GraphService | None = None, **details):
        """Time the block and write one record, even when it raises.

        Given a service, the record also carries the graph size before and
        after and the LLM tokens spent inside the block.
        """
        metrics = RunMetrics(
            operation=operation, user_id=self.user_id, started_at=_iso_now(), details=details
        )
        before = _sample(service) if service is not None else None
        if before is not None:
            metrics.nodes_before, metrics.edges_before = before[0], before[1]
        start = time.monotonic()
        try:
            yield metrics
        except Exception as e:
            metrics.success = False
            metrics.error = str(e)
            raise
        finally:
            metrics.duration_seconds = round(time.monotonic() - start, 3)
            metrics.completed_at = _iso_now()
            if before is not None:
                nodes, edges, tokens_in, tokens_out = _sample(service)
                metrics.nodes_after, metrics.edges_after = nodes, edges
                metrics.input_tokens = tokens_in - before[2]
                metrics.output_tokens = tokens_out - before[3]
            self.record(metrics)

    def load_runs(self) -> list[dict]:
        """All readable records, oldest first. Unparseable lines are skipped."""
        if not self.metrics_file.exists():
            return []
        runs = []
        for line in self.metrics_file.read_text().splitlines():
            if not line.strip():
                continue
            try:
                run = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(run, dict):
                runs.append(run)
        return runs

    def get_summary(self) -> dict:
        runs = self.load_runs()
        by_operation: dict[str, dict] = defaultdict(
            lambda: {"count": 0, "total_seconds": 0.0, "total_tokens": 0, "errors": 0}
        )
        for run in runs:
            agg = by_operation[run.get("operation", "unknown")]
            agg["count"] += 1
            agg["total_seconds"] += run.get("duration_seconds", 0.0)
            agg["total_tokens"] += _run_tokens(run)
            if not run.get("success", True):
                agg["errors"] += 1

        return {
            "total_runs": len(runs),
            "total_tokens": sum(_run_tokens(r) for r in runs),
            "total_entries_processed": sum(r.get("entries_processed", 0) for r in runs),
            "by_operation": dict(by_operation),
            "last_run": runs[-1] if runs else None,
        }


def run_health_check(user_id: str) -> dict:
    """Check the interpreter, collaborator keys, the database and recent runs."""
    from ambit import config
    from ambit.db import AmbitDB

    checks: dict[str, dict] = {}

    def check(name: str, ok, detail: str) -> None:
        checks[name] = {"ok": bool(ok), "detail": detail}

    check("python", sys.version_info >= (3, 12), f"Python {sys.version.split()[0]}")
    check(
        "anthropic_key",
        config.ANTHROPIC_API_KEY,
        "Set" if config.ANTHROPIC_API_KEY else "Missing: LLM extraction and cleanup are skipped",
    )
    check(
        "nia_key",
        config.NIA_API_KEY,
        "Set" if config.NIA_API_KEY else "Missing: no cross-reference edges (optional)",
    )

    try:
        with AmbitDB(config.user_db_path(user_id)) as db:
            feed = db.get_status()["feed"]
        check("database", True, ", ".join(f"{count} {table}" for table, count in feed.items()))
    except Exception as e:
        check("database", False, str(e))

    summary = MetricsTracker(user_id).get_summary()
    last = summary["last_run"]
    if last is None:
        check("metrics", False, "No runs recorded yet")
    else:
        outcome = "ok" if last.get("success", True) else f"failed ({last.get('error', '?')})"
        check("metrics", last.get("success", True), f"{summary['total_runs']} runs, last {last.get('operation')} {outcome}")

    return {
        "healthy": checks["python"]["ok"] and checks["database"]["ok"],
        "checks": checks,
    }
