"""Command line interface for workgraph.

The graph lives in a SQLite snapshot database. Each command restores the
latest snapshot into a KnowledgeGraphService; commands that change the
graph save a new snapshot afterwards.
"""

import json
import logging
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .constants import DEFAULT_DB_FILENAME, DEFAULT_QUERY_LIMIT
from .errors import GraphError
from .models import ConfidenceRange, DateRange, GraphSnapshot, QueryParams, utc_now
from .persistence import SnapshotStore
from .service import KnowledgeGraphService
from .timeutil import format_duration, format_relative_time, parse_time_reference

console = Console()
logger = logging.getLogger(__name__)

NODE_TYPES = ["concept", "task", "learning", "pattern", "improvement", "workflow", "step", "trigger", "condition", "outcome"]
PATTERN_TYPES = ["sequence", "parallel", "choice", "iteration", "temporal", "dependency", "optimization"]


def _open_service(store: SnapshotStore) -> KnowledgeGraphService:
    service = KnowledgeGraphService()
    service.restore(store.latest_or_empty())
    return service


def _print_json(data) -> None:
    console.print_json(json.dumps(data, default=str))


def _fail(ctx: click.Context, message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    ctx.exit(1)


@click.group()
@click.option(
    "--db",
    "db_path",
    envvar="WORKGRAPH_DB",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB_FILENAME,
    show_default=True,
    help="Snapshot database",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, db_path, verbose):
    """Workgraph - knowledge graph analysis for project workflows."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db_path
    logger.debug(f"Using snapshot database {db_path}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--replace", is_flag=True, help="Replace the graph instead of merging into it")
@click.option("-m", "--label", default="", help="Label for the saved snapshot")
@click.pass_context
def load(ctx, file, replace, label):
    """Load nodes and relationships from a JSON snapshot file."""
    try:
        incoming = GraphSnapshot.model_validate_json(file.read_text())
    except ValidationError as e:
        _fail(ctx, f"Invalid snapshot file {file}: {e}")
        return

    with SnapshotStore(ctx.obj["db_path"]) as store:
        service = _open_service(store)
        try:
            if replace:
                service.restore(incoming)
            else:
                embedded = [r for n in incoming.nodes for r in n.relationships]
                service.batch_add_nodes(
                    n.model_copy(update={"relationships": []}) for n in incoming.nodes
                )
                service.batch_add_relationships([*embedded, *incoming.relationships])
        except GraphError as e:
            _fail(ctx, str(e))
            return

        info = store.save(service.snapshot(), label=label or f"load {file.name}")

    console.print(
        f"[green]✓[/green] Loaded {len(incoming.nodes)} nodes "
        f"-> snapshot [yellow]{info.id}[/yellow] ({info.node_count} nodes, {info.relationship_count} relationships)"
    )


@cli.command()
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), help="Write to file instead of stdout")
@click.option("--snapshot", "snapshot_id", default=None, help="Snapshot id (default: latest)")
@click.pass_context
def export(ctx, output, snapshot_id):
    """Export a snapshot as JSON."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        try:
            snapshot = store.load(snapshot_id) if snapshot_id else store.latest_or_empty()
        except GraphError as e:
            _fail(ctx, str(e))
            return

    payload = snapshot.model_dump_json(indent=2)
    if output:
        output.write_text(payload)
        console.print(f"[green]✓[/green] Exported {len(snapshot.nodes)} nodes to {output}")
    else:
        click.echo(payload)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def stats(ctx, as_json):
    """Show graph statistics."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        result = _open_service(store).get_stats()

    if as_json:
        _print_json(result.model_dump(mode="json"))
        return

    console.print(f"Nodes: [bold]{result.total_nodes}[/bold], Relationships: [bold]{result.total_relationships}[/bold]")
    console.print(f"Average confidence: {result.average_confidence:.2f}")

    if result.nodes_by_type:
        table = Table(title="Nodes by type")
        table.add_column("Type", style="cyan")
        table.add_column("Count", justify="right")
        for node_type, count in sorted(result.nodes_by_type.items()):
            table.add_row(node_type, str(count))
        console.print(table)

    wm = result.workflow_metrics
    if wm.critical_paths or wm.average_duration:
        console.print()
        console.print("[bold]Workflows[/bold]")
        console.print(f"  Average duration: {format_duration(wm.average_duration)}")
        console.print(f"  Success rate: {wm.success_rate:.0%}")
        if wm.bottlenecks:
            console.print(f"  Bottlenecks: {', '.join(wm.bottlenecks)}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def validate(ctx, as_json):
    """Check graph consistency. Exits 1 when errors are found."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        result = _open_service(store).validate_graph()

    if as_json:
        _print_json(result.model_dump(mode="json"))
    else:
        for err in result.errors:
            console.print(f"[red]✗ {err.type}[/red] ({err.severity}) {err.message}")
        for warn in result.warnings:
            console.print(f"[yellow]! {warn.type}[/yellow] {warn.message}")
        if result.is_valid:
            console.print(f"[green]✓[/green] Graph is valid ({len(result.warnings)} warnings)")

    if not result.is_valid:
        ctx.exit(1)


@cli.command()
@click.option("-t", "--type", "pattern_type", type=click.Choice(PATTERN_TYPES), help="Only this pattern type")
@click.option("--node", "node_id", default=None, help="Only patterns involving this node")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def patterns(ctx, pattern_type, node_id, as_json):
    """Detect workflow patterns."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        service = _open_service(store)
        try:
            if node_id:
                analysis = service.analyze(node_id)
                if pattern_type:
                    analysis.patterns = [p for p in analysis.patterns if p.type == pattern_type]
            else:
                analysis = service.find_patterns(QueryParams(pattern_type=pattern_type))
        except GraphError as e:
            _fail(ctx, str(e))
            return

    if as_json:
        _print_json(analysis.model_dump(mode="json"))
        return

    if not analysis.patterns:
        console.print("[dim]No patterns found[/dim]")
        return

    table = Table(title="Patterns")
    table.add_column("Type", style="cyan")
    table.add_column("Description")
    table.add_column("Conf.", justify="right")
    table.add_column("Impact", justify="right")
    table.add_column("Nodes", justify="right")
    for p in analysis.patterns:
        table.add_row(p.type, p.description, f"{p.confidence:.2f}", f"{p.impact:.2f}", str(len(p.related_nodes)))
    console.print(table)

    wa = analysis.workflow_analysis
    if wa is not None:
        console.print(f"Workflow efficiency: {wa.efficiency:.2f}")
        for suggestion in wa.suggestions:
            console.print(f"  • {suggestion}")


@cli.command()
@click.option("-t", "--type", "types", multiple=True, type=click.Choice(NODE_TYPES), help="Node type (repeatable)")
@click.option("--tag", "tags", multiple=True, help="Required tag (repeatable)")
@click.option("--since", default=None, help="Updated since (ISO, '7 days ago', 'yesterday')")
@click.option("--min-confidence", type=float, default=None, help="Minimum confidence")
@click.option("-n", "--limit", type=int, default=DEFAULT_QUERY_LIMIT, show_default=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def query(ctx, types, tags, since, min_confidence, limit, as_json):
    """Find nodes matching all given filters."""
    try:
        params = QueryParams(
            type=list(types) or None,
            tags=list(tags) or None,
            date_range=DateRange(start=parse_time_reference(since), end=utc_now()) if since else None,
            confidence=ConfidenceRange(min=min_confidence) if min_confidence is not None else None,
            limit=limit,
        )
    except ValueError as e:
        _fail(ctx, str(e))
        return

    with SnapshotStore(ctx.obj["db_path"]) as store:
        nodes = _open_service(store).query(params)

    if as_json:
        _print_json([n.to_summary() for n in nodes])
        return

    if not nodes:
        console.print("[dim]No matching nodes[/dim]")
        return

    table = Table(title=f"Nodes ({len(nodes)})")
    table.add_column("ID", style="dim")
    table.add_column("Type", style="cyan")
    table.add_column("Title")
    table.add_column("Conf.", justify="right")
    table.add_column("Updated")
    for n in nodes:
        table.add_row(
            n.id, n.type, n.title, f"{n.metadata.confidence:.2f}",
            format_relative_time(n.metadata.updated),
        )
    console.print(table)


@cli.command()
@click.argument("node_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def related(ctx, node_id, as_json):
    """List nodes referenced by a node's relationships."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        try:
            nodes = _open_service(store).find_related(node_id)
        except GraphError as e:
            _fail(ctx, str(e))
            return

    if as_json:
        _print_json([n.to_summary() for n in nodes])
        return

    if not nodes:
        console.print(f"[dim]{node_id} has no related nodes[/dim]")
        return
    for n in nodes:
        console.print(f"  {n.id} ({n.type}) {n.title}")


@cli.command("critical-paths")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def critical_paths(ctx, as_json):
    """Show the longest step chain of every workflow."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        paths = _open_service(store).analyzer.critical_paths()

    if as_json:
        _print_json([p.model_dump(mode="json") for p in paths])
        return

    if not paths:
        console.print("[dim]No workflows with steps[/dim]")
        return
    for p in paths:
        console.print(f"[cyan]{p.workflow_id}[/cyan]: {' -> '.join(p.path)} [dim](frequency {p.frequency:g})[/dim]")


@cli.command()
@click.option("-t", "--type", "pattern_type", type=click.Choice(PATTERN_TYPES), help="Only learn from this pattern type")
@click.option("--dry-run", is_flag=True, help="Show what would change without saving")
@click.pass_context
def learn(ctx, pattern_type, dry_run):
    """Reinforce nodes from the currently detected patterns."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        service = _open_service(store)
        analysis = service.find_patterns(QueryParams(pattern_type=pattern_type))
        updated = service.learn(analysis)

        if dry_run:
            console.print(f"Would update {len(updated)} nodes from {len(analysis.patterns)} patterns")
            return

        info = store.save(service.snapshot(), label=f"learn ({len(analysis.patterns)} patterns)")

    console.print(
        f"[green]✓[/green] Updated {len(updated)} nodes from {len(analysis.patterns)} patterns "
        f"-> snapshot [yellow]{info.id}[/yellow]"
    )


@cli.command()
@click.option("-n", "--max-count", default=10, help="Number of snapshots to show")
@click.pass_context
def snapshots(ctx, max_count):
    """List stored snapshots, newest first."""
    with SnapshotStore(ctx.obj["db_path"]) as store:
        infos = store.list_snapshots(limit=max_count)

    if not infos:
        console.print("[dim]No snapshots[/dim]")
        return

    table = Table(title="Snapshots")
    table.add_column("ID", style="yellow")
    table.add_column("Taken")
    table.add_column("Nodes", justify="right")
    table.add_column("Rels", justify="right")
    table.add_column("Label")
    for info in infos:
        table.add_row(
            info.id, format_relative_time(info.taken_at),
            str(info.node_count), str(info.relationship_count), info.label,
        )
    console.print(table)


def main():
    """Entry point for the workgraph command."""
    cli()


if __name__ == "__main__":
    main()
