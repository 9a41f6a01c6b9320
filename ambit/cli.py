"""Click CLI for Ambit."""

from __future__ import annotations

import asyncio
import json
import sys
from contextlib import contextmanager
from datetime import date, datetime, timedelta

import click
from rich.console import Console
from rich.table import Table

from ambit import __version__
from ambit.config import DEFAULT_USER, user_db_path
from ambit.db import AmbitDB
from ambit.graph.service import GraphService
from ambit.time import format_duration, format_for_human, local_day_bounds, resolve_user_tz, utcnow

console = Console()


def get_db(user_id: str) -> AmbitDB:
    """Get an initialized DB for a user."""
    return AmbitDB(user_db_path(user_id))


@contextmanager
def open_service(user_id: str):
    """Yield a loaded GraphService; closes the DB on exit."""
    db = get_db(user_id)
    try:
        service = GraphService(db)
        service.load()
        yield service
    finally:
        db.close()


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group(invoke_without_command=True)
@click.option("--user", "-u", default=DEFAULT_USER, help="User ID")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__)
@click.pass_context
def cli(ctx: click.Context, user: str, verbose: bool) -> None:
    """Ambit — personal context graph built from ambient activity."""
    ctx.ensure_object(dict)
    ctx.obj["user"] = user
    ctx.obj["verbose"] = verbose

    from ambit.daemon.metrics import setup_logging

    setup_logging(user, verbose=verbose)

    if ctx.invoked_subcommand is None:
        ctx.invoke(status)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show feed counts and graph size."""
    user_id = ctx.obj["user"]
    with open_service(user_id) as service:
        info = service.db.get_status()
        stats = service.stats()

    console.print(f"\n[bold]Ambit Status[/bold] — user: [cyan]{user_id}[/cyan]\n")

    table = Table(title="Activity Feed")
    table.add_column("Table", style="cyan")
    table.add_column("Rows", justify="right", style="green")
    for name, count in info["feed"].items():
        table.add_row(name, str(count))
    console.print(table)

    if not stats["nodes"]:
        console.print("\n[dim]Graph is empty. Push activity, then run: ambit sync[/dim]")
        return

    console.print(
        f"\n[bold]Graph[/bold]: {stats['nodes']} nodes, {stats['edges']} edges "
        f"({stats['verified']} verified)"
    )
    for node_type, count in sorted(stats["by_type"].items()):
        console.print(f"  {node_type:<8} {count}")
    if info["graph_saved_at"]:
        console.print(f"  [dim]saved at {info['graph_saved_at']}[/dim]")


@cli.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option("--kind", "-k", default=None, help="Kind for records without a 'kind' field")
@click.pass_context
def push(ctx: click.Context, source, kind: str | None) -> None:
    """Push feed records from a JSON or JSONL file (or stdin).

    Accepts one object, a list of objects, or one object per line. Each
    record carries a "kind" (activity, snapshot, clipboard, now_playing)
    unless --kind is given.
    """
    from ambit.ingestion.gateway import IngestGateway

    raw = source.read()
    try:
        payload = json.loads(raw)
        records = payload if isinstance(payload, list) else [payload]
    except json.JSONDecodeError:
        # JSONL: one record per line
        try:
            records = [json.loads(line) for line in raw.splitlines() if line.strip()]
        except json.JSONDecodeError as e:
            raise click.ClickException(f"Invalid JSON: {e}")
    if kind:
        records = [{"kind": kind, **r} if isinstance(r, dict) else r for r in records]

    db = get_db(ctx.obj["user"])
    try:
        result = IngestGateway(db).push_batch(records)
    finally:
        db.close()

    console.print(
        f"[green]{result['inserted']} inserted[/green], "
        f"{result['duplicates']} duplicates, {result['filtered']} filtered "
        f"(of {result['total']})"
    )
    for err in result["errors"]:
        console.print(f"  [red]#{err['index']}[/red] {err['error']}")
    if result["errors"]:
        sys.exit(1)


@cli.command()
@click.option("--llm", "use_llm", is_flag=True, help="Also run LLM extraction over new snapshots")
@click.pass_context
def sync(ctx: click.Context, use_llm: bool) -> None:
    """Fold new activity into the graph, enrich it and save."""
    from ambit.daemon.metrics import MetricsTracker

    user_id = ctx.obj["user"]
    tracker = MetricsTracker(user_id)
    with open_service(user_id) as service:
        with tracker.track("sync", service=service, llm=use_llm) as metrics:
            metrics.entries_processed = service.process_new_activity()
            if use_llm:
                result = asyncio.run(service.extract_with_llm())
                if result.skipped:
                    console.print(f"  [dim]LLM extraction skipped: {result.skipped}[/dim]")
                else:
                    console.print(
                        f"  LLM: +{len(result.entities)} entities, +{result.relations} relations"
                    )
            service.enrich(force=True)
            service.save()

    console.print(
        f"[bold]Synced {metrics.entries_processed} activity entries.[/bold] "
        f"Graph: {metrics.nodes_after} nodes ({metrics.nodes_after - metrics.nodes_before:+d}), "
        f"{metrics.edges_after} edges ({metrics.edges_after - metrics.edges_before:+d})"
    )


@cli.command()
@click.option("--no-llm", is_flag=True, help="Skip LLM cleanup")
@click.option("--no-nia", is_flag=True, help="Skip semantic cross-reference edges")
@click.pass_context
def maintain(ctx: click.Context, no_llm: bool, no_nia: bool) -> None:
    """Decay stale nodes and edges, clean up noise, add cross-reference edges."""
    with open_service(ctx.obj["user"]) as service:
        decayed = service.decay()
        console.print(f"Decay: -{decayed.nodes_removed} nodes, -{decayed.edges_removed} edges")
        if not no_llm:
            cleaned = asyncio.run(service.cleanup())
            if cleaned.skipped:
                console.print(f"Cleanup: [dim]skipped ({cleaned.skipped})[/dim]")
            else:
                console.print(
                    f"Cleanup: removed {len(cleaned.removed)}, merged {len(cleaned.merged)}, "
                    f"kept {len(cleaned.kept)}"
                )
        if not no_nia:
            added = asyncio.run(service.build_nia_edges())
            console.print(f"Nia: +{added} edges")
        service.save()


@cli.command()
@click.option("--context", "include_context", is_flag=True, help="Attach related feed items to each node")
@click.option("--json", "as_json", is_flag=True, help="Emit the full graph as JSON")
@click.option("--limit", "-n", default=25, help="Rows to show in table mode")
@click.pass_context
def graph(ctx: click.Context, include_context: bool, as_json: bool, limit: int) -> None:
    """Show the entity graph."""
    with open_service(ctx.obj["user"]) as service:
        data = service.graph_data(include_context=include_context)

    if as_json:
        _echo_json(data)
        return

    table = Table(title=f"Entities ({len(data['nodes'])} nodes, {len(data['edges'])} edges)")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Weight", justify="right")
    table.add_column("Salience", justify="right", style="green")
    table.add_column("Context", style="dim")
    for node in data["nodes"][:limit]:
        table.add_row(
            node["id"],
            node["label"],
            str(node["weight"]),
            f"{node['salience']:.2f}",
            node.get("primary_context") or "",
        )
    console.print(table)


@cli.command()
@click.argument("node_id")
@click.pass_context
def node(ctx: click.Context, node_id: str) -> None:
    """Show one node with its connections and related feed items."""
    with open_service(ctx.obj["user"]) as service:
        detail = service.node_detail(node_id)
    if detail is None:
        raise click.ClickException(f"No node {node_id!r}")
    _echo_json(detail)


@cli.command()
@click.argument("source_id")
@click.argument("target_id")
@click.pass_context
def edge(ctx: click.Context, source_id: str, target_id: str) -> None:
    """Show the edge between two nodes."""
    with open_service(ctx.obj["user"]) as service:
        detail = service.edge_detail(source_id, target_id)
    if detail is None:
        raise click.ClickException(f"No edge between {source_id!r} and {target_id!r}")
    _echo_json(detail)


@cli.command()
@click.pass_context
def model(ctx: click.Context) -> None:
    """Dump the user model (people, projects, expertise, patterns) as JSON."""
    with open_service(ctx.obj["user"]) as service:
        result = service.user_model()
    click.echo(result.model_dump_json(indent=2))


@cli.command()
@click.option("--json", "as_json", is_flag=True)
@click.pass_context
def context(ctx: click.Context, as_json: bool) -> None:
    """What the user is doing right now."""
    with open_service(ctx.obj["user"]) as service:
        current = service.current_context()
        tz = service.user_tz

    if as_json:
        click.echo(current.model_dump_json(indent=2))
        return

    console.print(f"[bold]{current.app}[/bold] — {current.task}")
    console.print(f"  Intent:  {current.intent} ({current.confidence} confidence)")
    console.print(f"  Focus:   {current.focus_depth:.2f}")
    console.print(
        f"  Since:   {format_for_human(current.context_started, tz)} "
        f"({format_duration(current.context_duration_ms)})"
    )
    if current.active_project:
        console.print(f"  Project: [cyan]{current.active_project.name}[/cyan]")
    if current.active_people:
        console.print(f"  People:  {', '.join(p.name for p in current.active_people)}")


@cli.command()
@click.option("--limit", "-n", default=10)
@click.pass_context
def people(ctx: click.Context, limit: int) -> None:
    """Top people by salience."""
    with open_service(ctx.obj["user"]) as service:
        rows = service.top_people(limit)

    table = Table(title="People")
    table.add_column("Name", style="cyan")
    table.add_column("Relationship")
    table.add_column("Channels", style="dim")
    table.add_column("Interactions", justify="right")
    table.add_column("Salience", justify="right", style="green")
    for p in rows:
        table.add_row(
            p.name, p.relationship, ", ".join(p.communication_channels),
            str(p.interaction_count), f"{p.salience:.2f}",
        )
    console.print(table)


@cli.command()
@click.option("--limit", "-n", default=10)
@click.pass_context
def projects(ctx: click.Context, limit: int) -> None:
    """Projects with status and engagement."""
    with open_service(ctx.obj["user"]) as service:
        rows = service.active_projects(limit)

    table = Table(title="Projects")
    table.add_column("Project", style="cyan")
    table.add_column("Status")
    table.add_column("Recent", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Tools", style="dim")
    for p in rows:
        table.add_row(
            p.name, p.status, format_duration(p.recent_engagement_ms),
            format_duration(p.total_engagement_ms), ", ".join(p.related_tools),
        )
    console.print(table)


@cli.command()
@click.option("--limit", "-n", default=10)
@click.pass_context
def expertise(ctx: click.Context, limit: int) -> None:
    """Skills ranked by proficiency."""
    with open_service(ctx.obj["user"]) as service:
        rows = service.expertise(limit)

    table = Table(title="Expertise")
    table.add_column("Skill", style="cyan")
    table.add_column("Proficiency", justify="right", style="green")
    table.add_column("Trend")
    table.add_column("Time", justify="right")
    for s in rows:
        table.add_row(s.name, f"{s.proficiency:.2f}", s.trend, format_duration(s.total_engagement_ms))
    console.print(table)


def _print_blocks(blocks, tz) -> None:
    table = Table()
    table.add_column("Start", style="dim")
    table.add_column("Duration", justify="right")
    table.add_column("Intent")
    table.add_column("Label", style="cyan")
    table.add_column("Focus", justify="right", style="green")
    for b in blocks:
        table.add_row(
            format_for_human(b.start_time, tz), format_duration(b.duration_ms),
            b.intent, b.label, f"{b.focus_score:.2f}",
        )
    console.print(table)


@cli.command()
@click.option("--limit", "-n", default=20)
@click.pass_context
def tasks(ctx: click.Context, limit: int) -> None:
    """Recent task blocks, most recent first."""
    with open_service(ctx.obj["user"]) as service:
        blocks = service.task_blocks(limit)
        tz = service.user_tz
    if not blocks:
        console.print("[dim]No activity yet.[/dim]")
        return
    _print_blocks(blocks, tz)


@cli.command()
@click.option("--since", default=None, help="ISO date or datetime (default: 24h ago)")
@click.option("--until", "until", default=None, help="ISO date or datetime (default: now)")
@click.pass_context
def timeline(ctx: click.Context, since: str | None, until: str | None) -> None:
    """Task blocks in a time window, oldest first."""
    tz = resolve_user_tz()
    try:
        end = _parse_when(until, tz) if until else utcnow()
        start = _parse_when(since, tz) if since else end - timedelta(days=1)
    except ValueError as e:
        raise click.BadParameter(str(e))

    with open_service(ctx.obj["user"]) as service:
        blocks = service.timeline(start, end)
    if not blocks:
        console.print("[dim]No activity in that window.[/dim]")
        return
    _print_blocks(blocks, tz)


def _parse_when(value: str, tz) -> datetime:
    """A bare date means local midnight; naive datetimes are local time."""
    if len(value) == 10:
        return local_day_bounds(date.fromisoformat(value), tz)[0]
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt


@cli.command()
@click.argument("query")
@click.option("--limit", "-n", default=20)
@click.pass_context
def search(ctx: click.Context, query: str, limit: int) -> None:
    """Find entities by label."""
    with open_service(ctx.obj["user"]) as service:
        hits = service.search_entities(query, limit)
    if not hits:
        console.print(f"[dim]No entities match {query!r}[/dim]")
        return
    table = Table(title=f"Search: {query}")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Type")
    table.add_column("Salience", justify="right", style="green")
    for n in hits:
        table.add_row(n.id, n.label, n.type, f"{n.salience:.2f}")
    console.print(table)


@cli.command()
@click.argument("entity_id")
@click.option("--limit", "-n", default=10)
@click.pass_context
def related(ctx: click.Context, entity_id: str, limit: int) -> None:
    """Entities connected to ENTITY_ID by edge weight."""
    with open_service(ctx.obj["user"]) as service:
        rows = service.related_entities(entity_id, limit)
    if not rows:
        console.print(f"[dim]Nothing related to {entity_id!r}[/dim]")
        return
    table = Table(title=f"Related to {entity_id}")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Weight", justify="right")
    table.add_column("Relation", style="dim")
    for r in rows:
        table.add_row(r["id"], r["label"], str(r["weight"]), r["relation"] or "")
    console.print(table)


@cli.command()
@click.argument("day", required=False)
@click.option("--json", "as_json", is_flag=True)
@click.pass_context
def day(ctx: click.Context, day: str | None, as_json: bool) -> None:
    """Summary of one local day (default: today)."""
    try:
        which = date.fromisoformat(day) if day else None
    except ValueError as e:
        raise click.BadParameter(str(e))

    with open_service(ctx.obj["user"]) as service:
        summary = service.day_summary(which)
        tz = service.user_tz

    if as_json:
        click.echo(summary.model_dump_json(indent=2))
        return

    console.print(f"\n[bold]{summary.date}[/bold] — {format_duration(summary.total_active_ms)} active")
    for app in summary.top_apps:
        console.print(f"  {app['app']:<20} {format_duration(app['duration_ms'])}")
    if summary.projects:
        console.print(f"  Projects: {', '.join(summary.projects)}")
    if summary.people:
        console.print(f"  People:   {', '.join(summary.people)}")
    if summary.task_blocks:
        _print_blocks(summary.task_blocks, tz)


@cli.command()
@click.option("--limit", "-n", default=20)
@click.pass_context
def importance(ctx: click.Context, limit: int) -> None:
    """Entities ranked by dwell time, recurrence, centrality and recency."""
    with open_service(ctx.obj["user"]) as service:
        rows = service.importance_ranking(limit)
    table = Table(title="Importance")
    table.add_column("ID", style="cyan")
    table.add_column("Label")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Dwell", justify="right")
    table.add_column("Sessions", justify="right")
    for r in rows:
        table.add_row(
            r.id, r.label, f"{r.importance:.2f}",
            format_duration(int(r.factors.dwell_time_ms)), str(r.factors.recurrence),
        )
    console.print(table)


@cli.command()
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.pass_context
def reset(ctx: click.Context, yes: bool) -> None:
    """Wipe the graph. The activity feed is kept and will be re-processed."""
    user_id = ctx.obj["user"]
    if not yes and not click.confirm(f"Reset the graph for {user_id}?"):
        console.print("[dim]Cancelled.[/dim]")
        return
    with open_service(user_id) as service:
        service.reset()
    console.print("[green]✓[/green] Graph reset.")


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Verify Ambit installation health."""
    from ambit.daemon.daemon import is_running
    from ambit.daemon.metrics import run_health_check

    user_id = ctx.obj["user"]
    console.print(f"[bold]Ambit Doctor[/bold]  ·  user: {user_id}\n")

    report = run_health_check(user_id)
    for name, check in report["checks"].items():
        _print_check(name, check["ok"], check["detail"])

    running, pid = is_running()
    _print_check("daemon", running, f"PID {pid}" if running else "not running — run 'ambit daemon start'")


def _print_check(name: str, ok: bool, detail: str) -> None:
    tag = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
    console.print(f"  {tag}  {name}: {detail}")


# ---------------------------------------------------------------------------
# ambit daemon
# ---------------------------------------------------------------------------


@cli.group()
@click.pass_context
def daemon(ctx: click.Context) -> None:
    """Background daemon (start, stop, status)."""
    pass


@daemon.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Run the daemon in the foreground until stopped."""
    from ambit.daemon.daemon import AmbitDaemon, is_running
    from ambit.daemon.metrics import MetricsTracker

    user_id = ctx.obj["user"]
    running, pid = is_running()
    if running:
        console.print(f"[yellow]Daemon already running (PID {pid})[/yellow]")
        return

    db = get_db(user_id)
    try:
        AmbitDaemon(user_id, GraphService(db), tracker=MetricsTracker(user_id)).run()
    finally:
        db.close()


@daemon.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the running daemon."""
    from ambit.daemon.daemon import stop_daemon

    if stop_daemon():
        console.print("[green]✓[/green] Daemon stopped.")
    else:
        console.print("[dim]Daemon not running.[/dim]")


@daemon.command("status")
@click.pass_context
def daemon_status_cmd(ctx: click.Context) -> None:
    """Check daemon status."""
    from ambit.daemon.daemon import is_running
    from ambit.daemon.metrics import MetricsTracker

    running, pid = is_running()
    user_id = ctx.obj["user"]
    console.print("[bold]Daemon status[/bold]")
    console.print(
        f"  Running:  {'[green]yes[/green] (PID ' + str(pid) + ')' if running else '[red]no[/red]'}"
    )
    summary = MetricsTracker(user_id).get_summary()
    last = summary.get("last_run")
    if last:
        ts = last.get("completed_at", "")[:19].replace("T", " ")
        ok = "[green]ok[/green]" if last.get("success") else "[red]failed[/red]"
        console.print(f"  Last run: {ts}  {last.get('operation', '?')}  {ok}")
    else:
        console.print("  Last run: [dim]no data yet[/dim]")
    for op, agg in summary["by_operation"].items():
        console.print(f"  {op:<10} {agg['count']} runs, {agg['errors']} errors")
    console.print(f"  Version:  [cyan]{__version__}[/cyan]")
