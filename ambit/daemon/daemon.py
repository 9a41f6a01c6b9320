"""Background daemon — one asyncio loop running the graph jobs on independent timers."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import traceback
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ambit import config
from ambit.config import AMBIT_HOME
from ambit.daemon.metrics import MetricsTracker
from ambit.graph.service import GraphService

logger = logging.getLogger(__name__)

PIDFILE = AMBIT_HOME / "daemon.pid"


def _log(level: str, msg: str) -> None:
    """Write a clean one-liner to stdout."""
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    print(f"{ts} {level:<5} {msg}", flush=True)


@dataclass
class Job:
    name: str
    interval: float
    func: Callable[[], Awaitable[Any]]
    run_at_start: bool = False


class AmbitDaemon:
    """Keeps one user's graph current until signalled.

    Every job has its own timer. A failing job is logged and retried on its
    next tick; it never stops the others.
    """

    def __init__(
        self,
        user_id: str,
        service: GraphService,
        tracker: MetricsTracker | None = None,
        intervals: dict[str, float] | None = None,
    ):
        self.user_id = user_id
        self.service = service
        self.tracker = tracker
        self.intervals = {
            "activity": config.ACTIVITY_INTERVAL,
            "extract": config.EXTRACT_INTERVAL,
            "enrich": config.ENRICH_INTERVAL,
            "maintain": config.MAINTENANCE_INTERVAL,
            "save": config.SAVE_INTERVAL,
            **(intervals or {}),
        }
        self.failures: dict[str, int] = {}
        self._stop: asyncio.Event | None = None

    def jobs(self) -> list[Job]:
        return [
            Job("activity", self.intervals["activity"], self._activity, run_at_start=True),
            Job("extract", self.intervals["extract"], self._extract),
            Job("enrich", self.intervals["enrich"], self._enrich),
            Job("maintain", self.intervals["maintain"], self._maintain),
            Job("save", self.intervals["save"], self._save),
        ]

    # --- Jobs ---

    async def _activity(self) -> None:
        n = self.service.process_new_activity()
        if n:
            logger.debug("activity: +%d entries", n)

    async def _extract(self) -> None:
        result = await self.service.extract_with_llm()
        if result.entities or result.relations:
            _log("LLM", f"+{len(result.entities)} entities, +{result.relations} relations")

    async def _enrich(self) -> None:
        self.service.enrich()

    async def _maintain(self) -> None:
        decayed = self.service.decay()
        cleaned = await self.service.cleanup()
        nia_edges = await self.service.build_nia_edges()
        _log(
            "MAINT",
            f"decay -{decayed.nodes_removed} nodes -{decayed.edges_removed} edges, "
            f"cleanup -{cleaned.nodes_removed} nodes, nia +{nia_edges} edges",
        )

    async def _save(self) -> None:
        self.service.save()

    # --- Loop ---

    async def run_job(self, job: Job) -> bool:
        """Run one job once. Returns False (and logs) if it raised."""
        try:
            # activity ticks every few seconds; only the heavier jobs get a metrics line
            if self.tracker is None or job.name == "activity":
                await job.func()
            else:
                with self.tracker.track(job.name, service=self.service):
                    await job.func()
        except Exception as exc:
            self.failures[job.name] = self.failures.get(job.name, 0) + 1
            _log("ERROR", f"{job.name} failed: {exc!r}")
            logger.error("Job %s failed:\n%s", job.name, traceback.format_exc())
            return False
        return True

    async def _schedule(self, job: Job) -> None:
        if job.run_at_start:
            await self.run_job(job)
        while not await self._wait(job.interval):
            await self.run_job(job)

    async def _wait(self, seconds: float) -> bool:
        """Interruptible sleep. Returns True once stop was requested."""
        assert self._stop is not None
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def main(self) -> None:
        self._stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # not the main thread, or a platform without signal support
                pass

        self.service.load()
        tasks = [asyncio.create_task(self._schedule(job), name=job.name) for job in self.jobs()]
        try:
            await self._stop.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self.service.save()

    def run(self) -> None:
        """Blocks until SIGTERM/SIGINT."""
        _write_pid()
        _log(
            "START",
            f"user={self.user_id} pid={os.getpid()} "
            + " ".join(f"{k}={v}s" for k, v in self.intervals.items()),
        )
        try:
            asyncio.run(self.main())
        finally:
            _remove_pid()
            _log("STOP", "daemon stopped")


# --- PID file helpers ---


def _write_pid() -> None:
    PIDFILE.parent.mkdir(parents=True, exist_ok=True)
    PIDFILE.write_text(str(os.getpid()))


def _remove_pid() -> None:
    PIDFILE.unlink(missing_ok=True)


def is_running() -> tuple[bool, int | None]:
    """Check if daemon is running. Returns (running, pid)."""
    if not PIDFILE.exists():
        return False, None
    try:
        pid = int(PIDFILE.read_text().strip())
    except (ValueError, OSError):
        PIDFILE.unlink(missing_ok=True)
        return False, None
    try:
        os.kill(pid, 0)
        return True, pid
    except OSError:
        PIDFILE.unlink(missing_ok=True)
        return False, None


def stop_daemon() -> bool:
    """Send SIGTERM to running daemon. Returns True if signal sent."""
    running, pid = is_running()
    if not running or pid is None:
        return False
    os.kill(pid, signal.SIGTERM)
    return True
