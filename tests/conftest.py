"""Shared test fixtures — keeps individual test files lean."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from ambit.db import AmbitDB
from ambit.graph.enrichment import create_empty_signals
from ambit.graph.store import EntityStore
from ambit.models import ActivityEntry

# Fixed reference time: a Tuesday afternoon
T0 = datetime(2026, 3, 10, 14, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def data_dir(tmp_path, monkeypatch):
    """Per-test data directory and timezone so nothing touches ~/.ambit."""
    target = tmp_path / "data"
    monkeypatch.setattr("ambit.config.DATA_DIR", target)
    monkeypatch.setenv("AMBIT_TIMEZONE", "UTC")
    return target


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database per test."""
    with AmbitDB(tmp_path / "test.db") as database:
        yield database


@pytest.fixture
def store():
    return EntityStore()


@pytest.fixture
def signals():
    return create_empty_signals()


@pytest.fixture
def user_id():
    return "test_user"


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def now():
    return T0


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def activity(
    app: str,
    title: str = "",
    minute: float = 0,
    duration_min: float = 1,
    url: str | None = None,
    summary: str | None = None,
    base: datetime = T0,
) -> ActivityEntry:
    """Activity entry starting `minute` minutes after `base`."""
    start = base + timedelta(minutes=minute)
    end = start + timedelta(minutes=duration_min)
    return ActivityEntry(
        app=app,
        title=title,
        url=url,
        summary=summary,
        start=start,
        end=end,
        duration_ms=int(duration_min * 60_000),
    )


# ---------------------------------------------------------------------------
# Mock collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm():
    """LLMClient stand-in: set `.complete.return_value` per test."""
    client = MagicMock()
    client.available = True
    client.complete = AsyncMock(return_value=None)
    client.total_input_tokens = 0
    client.total_output_tokens = 0
    return client


@pytest.fixture
def mock_nia():
    """NiaClient stand-in: set `.semantic_search.side_effect` per test."""
    client = MagicMock()
    client.available = True
    client.semantic_search = AsyncMock(return_value=[])
    return client
