"""CLI entry point for the Antigravity Negotiator."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import click
from rich.console import Console
from rich.table import Table

from negotiator import __version__

if TYPE_CHECKING:
    from negotiator.capabilities.registry import CapabilityRegistry
    from negotiator.config import Settings
    from negotiator.storage.database import EventJournal

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="negotiate")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    envvar="NEGOTIATOR_HOME",
    default=None,
    help="Data directory (default ~/.negotiator)",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, data_dir: Path | None) -> None:
    """Antigravity Negotiator: capability matching and multi-agent consensus."""
    from dataclasses import replace

    from negotiator.config import Settings
    from negotiator.logger import configure_logging

    if data_dir is None:
        settings = Settings.load()
    else:
        settings = replace(Settings.load(data_dir / "config.toml"), data_dir=data_dir)
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj = settings


@main.command()
@click.pass_obj
def init(settings: Settings) -> None:
    """Initialize negotiator: create ~/.negotiator/ and database."""
    from negotiator.storage.database import Database

    db = Database(settings.data_dir)
    db.ensure_tables()
    console.print(f"[green]Negotiator initialized at {db.data_dir}[/green]")
    console.print(f"  Database: {db.db_path}")
    console.print(f"  Config:   {settings.config_path}")


def _load_catalogue(path: Path) -> CapabilityRegistry:
    """Build a registry from ``{"agent-id": [capability, ...]}`` JSON."""
    from negotiator.capabilities.models import Capability
    from negotiator.capabilities.registry import CapabilityRegistry

    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise click.BadParameter(f"{path} must map agent ids to capability lists")

    registry = CapabilityRegistry()
    for agent_id, entries in raw.items():
        for entry in entries:
            capability = (
                Capability(name=entry) if isinstance(entry, str) else Capability.from_dict(entry)
            )
            registry.register(capability, agent_id)
    return registry


@main.command()
@click.argument("catalogue", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("capabilities", nargs=-1, required=True)
@click.option("--required", "-r", multiple=True, help="Capability every team must cover")
@click.option("--max-providers", default=5, show_default=True)
def match(
    catalogue: Path, capabilities: tuple[str, ...], required: tuple[str, ...], max_providers: int
) -> None:
    """Pick providers that together cover CAPABILITIES."""
    registry = _load_catalogue(catalogue)
    result = registry.find_providers_for_capabilities(
        list(capabilities), required=list(required), max_providers=max_providers
    )

    table = Table(title="Selected Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Capabilities")
    table.add_column("Score", justify="right", style="green")
    for provider in result.providers:
        table.add_row(provider.provider_id, ", ".join(provider.capabilities), f"{provider.score:.3f}")
    console.print(table)

    colour = "green" if result.success else "red"
    console.print(f"[{colour}]Coverage: {result.coverage_score:.0%}[/{colour}]")
    if result.unfulfilled:
        console.print(f"[yellow]Unfulfilled:[/yellow] {', '.join(result.unfulfilled)}")


@main.command()
@click.argument("catalogue", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("name")
def similar(catalogue: Path, name: str) -> None:
    """Show capabilities similar to NAME."""
    registry = _load_catalogue(catalogue)
    if not registry.has_capability(name):
        console.print(f"[red]Unknown capability: {name}[/red]")
        raise SystemExit(1)

    matches = registry.get_similar(name)
    if not matches:
        console.print("[dim]No similar capabilities.[/dim]")
        return
    table = Table(title=f"Similar to {name}")
    table.add_column("Capability", style="cyan")
    table.add_column("Score", justify="right", style="green")
    for item in matches:
        table.add_row(item.name, f"{item.score:.3f}")
    console.print(table)


@main.command()
@click.argument("catalogue", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("capabilities", nargs=-1, required=True)
def combo(catalogue: Path, capabilities: tuple[str, ...]) -> None:
    """Score how well CAPABILITIES work together."""
    registry = _load_catalogue(catalogue)
    result = registry.score_capability_combination(list(capabilities))

    console.print(f"[bold]Composition:[/bold]     {result.composition_score:.3f}")
    console.print(f"[bold]Complementarity:[/bold] {result.complementarity_score:.3f}")
    console.print(f"[bold]Taxonomy:[/bold]        {result.taxonomic_coverage_score:.3f}")
    if result.missing_critical:
        console.print(f"[yellow]Missing prerequisites:[/yellow] {', '.join(result.missing_critical)}")
    if result.suggested_additions:
        console.print(f"[cyan]Suggested:[/cyan] {', '.join(result.suggested_additions)}")


@main.command()
@click.option("--topic", required=True, help="What is being decided")
@click.option("--choice", "choices", multiple=True, required=True, help="A choice (repeatable)")
@click.option("--ballot", "ballots", multiple=True, help="AGENT=CHOICE (repeatable)")
@click.option("--voter", "voters", multiple=True, help="Eligible voter (defaults to ballot agents)")
def vote(
    topic: str, choices: tuple[str, ...], ballots: tuple[str, ...], voters: tuple[str, ...]
) -> None:
    """Run a voting from the given ballots and print the result."""
    from negotiator.consensus.voting import VotingEngine, VotingStatus
    from negotiator.errors import NegotiatorError

    parsed: list[tuple[str, str]] = []
    for ballot in ballots:
        agent_id, sep, choice = ballot.partition("=")
        if not sep or not agent_id or not choice:
            raise click.BadParameter(f"ballot must be AGENT=CHOICE, got {ballot!r}")
        parsed.append((agent_id, choice))

    engine = VotingEngine()
    try:
        voting = engine.create(
            topic,
            list(choices),
            eligible_voters=list(voters) or list(dict.fromkeys(a for a, _ in parsed)),
        )
        for agent_id, choice in parsed:
            if voting.status != VotingStatus.OPEN:
                console.print(f"[dim]Voting closed before {agent_id} voted[/dim]")
                break
            engine.cast(voting.id, agent_id, choice)
        results = engine.close(voting.id)
    except NegotiatorError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from e

    table = Table(title=topic)
    table.add_column("Choice", style="cyan")
    table.add_column("Votes", justify="right")
    for choice, count in results.counts.items():
        table.add_row(choice, str(count))
    console.print(table)
    tie = " (tie, first declared wins)" if results.tied else ""
    console.print(f"[bold]Top choice:[/bold] {results.top_choice}{tie}")
    console.print(
        f"Participation {results.participation_rate:.0%}, "
        f"consensus {results.consensus_level:.0%} ({results.close_reason.value})"
    )


@main.command("breakdown-score")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def breakdown_score(path: Path) -> None:
    """Score a task breakdown JSON file ({"task": {...}, "subtasks": [...]})."""
    from negotiator.breakdown.metrics import compute_metrics
    from negotiator.breakdown.models import SubtaskDefinition
    from negotiator.breakdown.service import validate_subtasks
    from negotiator.errors import NegotiatorError

    data: dict[str, Any] = json.loads(path.read_text())
    task = data.get("task", {})
    try:
        subtasks = [SubtaskDefinition.from_dict(s) for s in data.get("subtasks", [])]
        validate_subtasks(subtasks)
    except NegotiatorError as e:
        console.print(f"[red]{e}[/red]")
        raise SystemExit(1) from e

    assignees: dict[str, list[str]] = data.get("agents", {})
    metrics = compute_metrics(
        task.get("description", ""), subtasks, lambda agent_id: assignees.get(agent_id, [])
    )

    table = Table(title=f"Breakdown: {task.get('name', path.stem)}")
    table.add_column("Metric", style="cyan")
    table.add_column("Score", justify="right", style="green")
    for key, value in metrics.to_dict().items():
        table.add_row(key.replace("_", " "), f"{value:.3f}")
    console.print(table)


def _journal(settings: Settings) -> EventJournal:
    from negotiator.storage.database import Database, EventJournal

    return EventJournal(Database(settings.data_dir))


@main.command()
@click.option("--limit", default=20, help="Number of events to show")
@click.option("--topic", default=None, help="Only this event family")
@click.pass_obj
def events(settings: Settings, limit: int, topic: str | None) -> None:
    """Show recent journaled events."""
    entries = _journal(settings).recent(limit=limit, topic=topic)
    if not entries:
        console.print("[dim]No events recorded.[/dim]")
        return

    table = Table(title="Recent Events")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Topic", style="cyan")
    table.add_column("Kind", style="green")
    table.add_column("Timestamp", justify="right")
    for entry in entries:
        table.add_row(str(entry["id"]), entry["topic"], entry["kind"], f"{entry['timestamp']:.0f}")
    console.print(table)


@main.command()
@click.option("--top", default=5, help="Number of agents to rank")
@click.pass_obj
def stats(settings: Settings, top: int) -> None:
    """Show event counts by family and the best-performing agents."""
    journal = _journal(settings)
    rows = journal.db.execute(
        "SELECT topic, kind, COUNT(*) AS n FROM events GROUP BY topic, kind ORDER BY topic, kind"
    )
    if rows:
        table = Table(title="Event Statistics")
        table.add_column("Topic", style="cyan")
        table.add_column("Kind")
        table.add_column("Count", justify="right", style="green")
        for row in rows:
            table.add_row(row["topic"], row["kind"], str(row["n"]))
        console.print(table)
        console.print(f"[bold]Total:[/bold] {journal.count()}")
    else:
        console.print("[dim]No events recorded.[/dim]")

    agents = _top_agents(settings, top)
    if not agents:
        console.print("[dim]No delegation history.[/dim]")
        return

    table = Table(title="Top Agents")
    table.add_column("Agent", style="cyan")
    table.add_column("Tasks", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Avg time", justify="right")
    table.add_column("Score", justify="right", style="bold")
    for agent in agents:
        table.add_row(
            agent["agent_id"],
            str(agent["task_count"]),
            f"{agent['success_rate']:.0%}",
            f"{agent['avg_completion_time']:.1f}s",
            f"{agent['score']:.3f}",
        )
    console.print(table)


def _top_agents(settings: Settings, limit: int) -> list[dict[str, Any]]:
    import asyncio

    from negotiator.delegation.store import PerformanceStore

    if not settings.performance_db_path.exists():
        return []

    async def load() -> list[dict[str, Any]]:
        async with PerformanceStore(settings.performance_db_path) as store:
            return await store.get_top_agents(limit=limit)

    return asyncio.run(load())


if __name__ == "__main__":
    main()
