"""
stackgraph CLI: deploy the bundled service stack from the command line.

Usage:
    stackgraph plan          Preview the actions a deployment would take
    stackgraph up            Deploy the stack and print its exports
    stackgraph destroy       Delete every recorded resource
    stackgraph state         Show recorded state
    stackgraph graph         Show the resource graph and its parallel levels
    stackgraph config        Show the effective configuration
"""

import asyncio
import functools
import json
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_config
from ..errors import DeclarationError, StackGraphError, StateBackendError
from ..programs import fargate_service
from ..provider import SimulatedProvider
from ..stack import RunResult, Stack
from ..state import get_state_backend

console = Console()
cli = typer.Typer(
    name="stackgraph",
    help="Declarative infrastructure: plan, deploy and destroy a resource graph.",
    no_args_is_help=True,
)

_ACTION_STYLES = {
    "CREATE": "green",
    "UPDATE": "yellow",
    "REPLACE": "magenta",
    "DELETE": "red",
    "NOOP": "dim",
}


def _make_stack(stack_name: str, state_path: Optional[str]) -> Stack:
    config = get_config()
    backend = get_state_backend(
        config.backend.state_backend, state_path or config.backend.state_path
    )
    provider = SimulatedProvider(region=config.backend.region)
    # A new process starts with an empty simulation; seed it with what was recorded.
    provider.restore(backend.load().resources.values())
    return Stack(stack_name, provider, backend, config=config)


def _program():
    return functools.partial(fargate_service.program, region=get_config().backend.region)


def _fail(label: str, error: Exception):
    console.print(f"[red]{label}:[/red] {error}")
    raise typer.Exit(code=1)


@cli.command()
def plan(
    stack_name: str = typer.Option("dev", "--stack", "-s", help="Stack name"),
    state_path: Optional[str] = typer.Option(None, "--state", help="State file path"),
    output_json: bool = typer.Option(False, "--json", help="Output the plan as JSON"),
):
    """Preview the actions a deployment would take. Makes no provider calls."""
    try:
        stack = _make_stack(stack_name, state_path)
        summary = asyncio.run(stack.plan(_program()))
    except DeclarationError as e:
        _fail("Declaration error", e)
    except StackGraphError as e:
        _fail("Error", e)

    if output_json:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
        return

    table = Table(title=f"Plan for stack {stack_name}", box=box.ROUNDED)
    table.add_column("Resource", style="bold")
    table.add_column("Action")
    table.add_column("Changed fields")

    rows = [(name, "REPLACE") for name in summary.to_replace]
    rows += [(name, "CREATE") for name in summary.to_create if name not in summary.to_replace]
    rows += [(name, "UPDATE") for name in summary.to_update]
    rows += [(name, "DELETE") for name in summary.to_delete if name not in summary.to_replace]
    rows += [(name, "NOOP") for name in summary.no_op]

    for name, action in rows:
        style = _ACTION_STYLES[action]
        table.add_row(
            name,
            f"[{style}]{action}[/{style}]",
            ", ".join(summary.changed_fields.get(name, [])),
        )

    console.print(table)

    counts = summary.counts()
    console.print(
        f"\n[green]{counts['create']} to create[/green], "
        f"[yellow]{counts['update']} to update[/yellow], "
        f"[magenta]{counts['replace']} to replace[/magenta], "
        f"[red]{counts['delete']} to delete[/red], "
        f"{counts['no_op']} unchanged"
    )


@cli.command()
def up(
    stack_name: str = typer.Option("dev", "--stack", "-s", help="Stack name"),
    state_path: Optional[str] = typer.Option(None, "--state", help="State file path"),
    output_json: bool = typer.Option(False, "--json", help="Output the result as JSON"),
):
    """Deploy the stack."""
    try:
        stack = _make_stack(stack_name, state_path)
        result = asyncio.run(stack.run(_program()))
    except DeclarationError as e:
        _fail("Declaration error", e)
    except StateBackendError as e:
        _fail("State backend error", e)
    except StackGraphError as e:
        _fail("Error", e)

    _render_result(result, output_json, title=f"Deployment of stack {stack_name}")


@cli.command()
def destroy(
    stack_name: str = typer.Option("dev", "--stack", "-s", help="Stack name"),
    state_path: Optional[str] = typer.Option(None, "--state", help="State file path"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
    output_json: bool = typer.Option(False, "--json", help="Output the result as JSON"),
):
    """Delete every resource recorded for the stack."""
    if not yes and not typer.confirm(f"Destroy every resource of stack {stack_name}?"):
        console.print("[yellow]Aborted.[/yellow]")
        raise typer.Exit(code=1)

    try:
        stack = _make_stack(stack_name, state_path)
        result = asyncio.run(stack.destroy())
    except StackGraphError as e:
        _fail("Error", e)

    _render_result(result, output_json, title=f"Destruction of stack {stack_name}")


@cli.command()
def state(
    state_path: Optional[str] = typer.Option(None, "--state", help="State file path"),
    output_json: bool = typer.Option(False, "--json", help="Output the state as JSON"),
):
    """Show recorded state. Secret inputs are shown only as digests."""
    config = get_config()
    backend = get_state_backend(
        config.backend.state_backend, state_path or config.backend.state_path
    )
    try:
        recorded = backend.load()
    except StateBackendError as e:
        _fail("State backend error", e)

    if output_json:
        typer.echo(recorded.model_dump_json(indent=2))
        return

    if not recorded.resources:
        console.print("[dim]No resources recorded.[/dim]")
        return

    table = Table(
        title=f"Recorded state (serial {recorded.serial})", box=box.ROUNDED
    )
    table.add_column("Resource", style="bold")
    table.add_column("Kind")
    table.add_column("Physical id")
    table.add_column("Dependencies")
    table.add_column("Updated", style="dim")

    for record in recorded.resources.values():
        table.add_row(
            record.name,
            record.kind,
            record.physical_id,
            ", ".join(record.dependencies),
            record.updated_at,
        )

    console.print(table)


@cli.command()
def graph(
    output_json: bool = typer.Option(False, "--json", help="Output the graph as JSON"),
):
    """Show the declared resource graph. Makes no provider calls."""
    config = get_config()
    stack = Stack(
        "graph",
        SimulatedProvider(region=config.backend.region),
        get_state_backend("memory"),
        config=config,
    )
    try:
        context = stack.build(_program())
    except DeclarationError as e:
        _fail("Declaration error", e)

    resource_graph = context.graph

    if output_json:
        typer.echo(json.dumps(resource_graph.to_dict(), indent=2, default=str))
        return

    table = Table(title="Resources", box=box.ROUNDED)
    table.add_column("#", style="dim")
    table.add_column("Resource", style="bold")
    table.add_column("Kind")
    table.add_column("Depends on")

    for i, name in enumerate(resource_graph.topological_order()):
        node = resource_graph[name]
        table.add_row(
            str(i + 1),
            name,
            node.kind.value,
            ", ".join(sorted(resource_graph.dependencies_of(name))),
        )

    console.print(table)

    levels = resource_graph.parallel_levels()
    console.print(
        Panel(
            "\n".join(f"{i + 1}: {', '.join(level)}" for i, level in enumerate(levels)),
            title="Parallel levels",
            border_style="cyan",
        )
    )


@cli.command("config")
def show_config():
    """Show the effective configuration."""
    config = get_config()

    for section, values in config.to_dict().items():
        if not isinstance(values, dict):
            continue
        table = Table(show_header=False, box=box.SIMPLE)
        table.add_column("Setting", style="bold")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, "-" if value is None else str(value))
        console.print(Panel(table, title=section.capitalize(), border_style="blue"))

    errors = config.validate()
    if errors:
        for error in errors:
            console.print(f"  [red]FAIL[/red] {error}")
        raise typer.Exit(code=1)
    console.print("[green]Configuration is valid.[/green]")


def _render_result(result: RunResult, output_json: bool, title: str):
    if output_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        table = Table(title=title, box=box.ROUNDED)
        table.add_column("Resource", style="bold")
        table.add_column("Action")

        for name, action in result.actions.items():
            style = _ACTION_STYLES.get(action, "white")
            table.add_row(name, f"[{style}]{action}[/{style}]")
        for name in result.skipped:
            table.add_row(name, "[dim]SKIPPED[/dim]")

        console.print(table)

        for failure in result.failures:
            console.print(
                f"[red]FAILED[/red] {failure.name} ({failure.action}): {failure.message}"
            )

        exports = result.to_dict()["exported_values"]
        if exports:
            export_table = Table(title="Outputs", box=box.SIMPLE)
            export_table.add_column("Name", style="bold")
            export_table.add_column("Value")
            for name, value in exports.items():
                export_table.add_row(name, str(value))
            console.print(export_table)

        console.print(f"\nStatus: [bold]{result.status.value}[/bold]")

    if not result.succeeded:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
