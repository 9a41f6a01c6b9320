"""Tests for the Click CLI."""

from __future__ import annotations

import json
import logging

import pytest

from ambit import __version__
from ambit.cli import cli

RECORDS = [
    {
        "kind": "activity",
        "app": "Code",
        "title": "store.py - ambit",
        "start": "2026-03-10T14:00:00Z",
        "end": "2026-03-10T14:20:00Z",
    },
    {
        "kind": "activity",
        "app": "Chrome",
        "title": "acme/ambit",
        "url": "https://github.com/acme/ambit",
        "start": "2026-03-10T14:21:00Z",
        "end": "2026-03-10T14:26:00Z",
    },
]


@pytest.fixture(autouse=True)
def _offline(monkeypatch, tmp_path):
    """No collaborator keys, a private PID file, and no leftover log handlers."""
    monkeypatch.setattr("ambit.llm.client.ANTHROPIC_API_KEY", "", raising=False)
    monkeypatch.setattr("ambit.memory.nia.NIA_API_KEY", "", raising=False)
    monkeypatch.setattr("ambit.daemon.daemon.PIDFILE", tmp_path / "daemon.pid")
    yield
    logger = logging.getLogger("ambit")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _run(cli_runner, *args, **kwargs):
    return cli_runner.invoke(cli, ["--user", "test_user", *args], **kwargs)


def _json(result):
    """Parse the JSON document in a command's output, skipping any log lines before it."""
    out = result.stdout
    start = min(i for i in (out.find("{"), out.find("[")) if i >= 0)
    return json.loads(out[start:])


def _pushed(cli_runner):
    result = _run(cli_runner, "push", input=json.dumps(RECORDS))
    assert result.exit_code == 0, result.output
    return result


def _synced(cli_runner):
    _pushed(cli_runner)
    result = _run(cli_runner, "sync")
    assert result.exit_code == 0, result.output
    return result


def test_version(cli_runner):
    result = cli_runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_status_is_default_command(cli_runner):
    result = _run(cli_runner)
    assert result.exit_code == 0
    assert "Ambit Status" in result.output
    assert "Graph is empty" in result.output


def test_push_json_list(cli_runner):
    result = _pushed(cli_runner)
    assert "2 inserted" in result.output

    again = _run(cli_runner, "push", input=json.dumps(RECORDS))
    assert "0 inserted" in again.output
    assert "2 duplicates" in again.output


def test_push_jsonl_file_with_kind(cli_runner, tmp_path):
    path = tmp_path / "feed.jsonl"
    lines = [
        {"text": "first copy", "timestamp": "2026-03-10T14:00:00Z"},
        {"text": "second copy", "timestamp": "2026-03-10T14:01:00Z"},
    ]
    path.write_text("\n".join(json.dumps(line) for line in lines) + "\n")

    result = _run(cli_runner, "push", str(path), "--kind", "clipboard")

    assert result.exit_code == 0, result.output
    assert "2 inserted" in result.output


def test_push_errors_exit_nonzero(cli_runner):
    result = _run(cli_runner, "push", input=json.dumps([{"kind": "activity", "title": "no app"}]))
    assert result.exit_code == 1
    assert "#0" in result.output


def test_push_invalid_json(cli_runner):
    result = _run(cli_runner, "push", input="{not json\n")
    assert result.exit_code == 1
    assert "Invalid JSON" in result.output


def test_sync_builds_graph_and_records_metrics(cli_runner, data_dir):
    result = _synced(cli_runner)
    assert "Synced 2 activity entries" in result.output

    status = _run(cli_runner, "status")
    assert "Graph is empty" not in status.output
    assert "nodes" in status.output

    metrics = (data_dir / "test_user" / "metrics.jsonl").read_text().splitlines()
    assert json.loads(metrics[-1])["operation"] == "sync"

    # a second sync has nothing new
    assert "Synced 0 activity entries" in _run(cli_runner, "sync").output


def test_graph_json_and_node(cli_runner):
    _synced(cli_runner)

    data = _json(_run(cli_runner, "graph", "--json"))
    ids = {n["id"] for n in data["nodes"]}
    assert {"app:code", "app:chrome", "project:acmeambit"} <= ids

    detail = _json(_run(cli_runner, "node", "app:code"))
    assert detail["label"] == "Code"


def test_node_and_edge_missing(cli_runner):
    missing = _run(cli_runner, "node", "person:ghost")
    assert missing.exit_code == 1
    assert "No node" in missing.output

    no_edge = _run(cli_runner, "edge", "app:code", "person:ghost")
    assert no_edge.exit_code == 1


def test_search_and_related(cli_runner):
    _synced(cli_runner)

    hits = _run(cli_runner, "search", "code")
    assert hits.exit_code == 0
    assert "app:code" in hits.output

    assert "No entities match" in _run(cli_runner, "search", "zzzz").output
    assert "Nothing related" in _run(cli_runner, "related", "person:ghost").output


def test_day_json(cli_runner):
    _synced(cli_runner)

    summary = _json(_run(cli_runner, "day", "2026-03-10", "--json"))

    assert summary["date"] == "2026-03-10"
    assert summary["total_active_ms"] == 25 * 60_000
    assert summary["task_blocks"]


def test_day_rejects_bad_date(cli_runner):
    result = _run(cli_runner, "day", "March 10")
    assert result.exit_code == 2


def test_timeline_window(cli_runner):
    _synced(cli_runner)

    inside = _run(cli_runner, "timeline", "--since", "2026-03-10", "--until", "2026-03-11")
    assert inside.exit_code == 0
    assert "No activity in that window" not in inside.output

    outside = _run(cli_runner, "timeline", "--since", "2026-03-01", "--until", "2026-03-02")
    assert "No activity in that window" in outside.output


@pytest.mark.parametrize("command", ["people", "projects", "expertise", "tasks", "importance", "context"])
def test_read_commands_run_on_synced_graph(cli_runner, command):
    _synced(cli_runner)
    result = _run(cli_runner, command)
    assert result.exit_code == 0, result.output


def test_model_and_context_json(cli_runner):
    _synced(cli_runner)

    model = _json(_run(cli_runner, "model"))
    assert "top_people" in model
    assert "active_projects" in model

    current = _json(_run(cli_runner, "context", "--json"))
    assert current["app"] == "Chrome"


def test_maintain_offline(cli_runner):
    _synced(cli_runner)
    result = _run(cli_runner, "maintain", "--no-llm", "--no-nia")
    assert result.exit_code == 0, result.output
    assert "Decay: -" in result.output
    assert "Cleanup" not in result.output


def test_reset(cli_runner):
    _synced(cli_runner)

    cancelled = _run(cli_runner, "reset", input="n\n")
    assert "Cancelled" in cancelled.output

    result = _run(cli_runner, "reset", "--yes")
    assert "Graph reset" in result.output
    assert "Graph is empty" in _run(cli_runner, "status").output


def test_doctor(cli_runner):
    result = _run(cli_runner, "doctor")
    assert result.exit_code == 0
    assert "database" in result.output
    assert "not running" in result.output


def test_daemon_status_and_stop(cli_runner):
    _synced(cli_runner)

    status = _run(cli_runner, "daemon", "status")
    assert status.exit_code == 0
    assert "sync" in status.output

    assert "not running" in _run(cli_runner, "daemon", "stop").output
