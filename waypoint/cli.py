"""Waypoint CLI - manage agent conversation checkpoints."""

import json
import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from waypoint import __version__
from waypoint.config import CONFIG_FILENAME, WaypointConfig, get_config, get_storage_dir
from waypoint.errors import format_error
from waypoint.models import Scope, record_to_payload
from waypoint.service import CheckpointService, list_response, restore_response
from waypoint.types import AgentId, WorkspaceId

console = Console()


def _fail(error) -> None:
    console.print(f"[red]{escape(format_error(error))}[/red]")
    sys.exit(1)


def _scope(workspace: str, agent: str) -> Scope:
    return Scope(WorkspaceId(workspace), AgentId(agent))


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _entries_table(entries, show_source: bool = False) -> Table:
    table = Table()
    table.add_column("ID")
    table.add_column("NAME")
    table.add_column("MODEL")
    table.add_column("MSGS", justify="right")
    if show_source:
        table.add_column("SOURCE")
    table.add_column("SAVED")

    for entry in entries:
        name = entry.name[:40] + "..." if len(entry.name) > 40 else entry.name
        row = [entry.id[:12], escape(name), entry.model, str(entry.message_count)]
        if show_source:
            source = (
                f"{entry.source_workspace_id}/{entry.source_agent_id}"
                if entry.source_workspace_id
                else "-"
            )
            row.append(escape(source))
        row.append(entry.created_at[:16].replace("T", " "))
        table.add_row(*row)
    return table


def _show_record(record) -> None:
    console.print(f"[bold]{escape(record.name)}[/bold] [dim]({record.id})[/dim]")
    if record.description:
        console.print(f"  {escape(record.description)}")
    console.print(f"  Agent: {escape(record.agent_name)} ({escape(record.agent_title)})")
    console.print(f"  Model: {record.selected_model}")
    console.print(f"  Saved: {record.created_at}")
    if record.provenance:
        origin = f"{record.provenance.source_workspace_id}/{record.provenance.source_agent_id}"
        console.print(f"  Source: {escape(origin)}")
        if record.provenance.migrated_at:
            console.print(f"  Migrated: {record.provenance.migrated_at}")
    console.print()

    for message in record.messages:
        content = message.content[:200] + "..." if len(message.content) > 200 else message.content
        console.print(f"[cyan]{message.role}[/cyan]: {escape(content)}")


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose):
    """Waypoint: checkpoint persistence for workspace agents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


@main.command()
@click.argument("workspace")
@click.argument("agent")
@click.argument("payload", type=click.File("r", encoding="utf-8"))
def save(workspace, agent, payload):
    """Save a checkpoint from a JSON create payload (use - for stdin).

    Examples:
        waypoint save ws-1 react-expert conversation.json
    """
    try:
        data = json.load(payload)
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON payload: {escape(str(e))}[/red]")
        sys.exit(1)

    result = CheckpointService().save_checkpoint(_scope(workspace, agent), data)
    if result.is_err():
        _fail(result.unwrap_err())

    console.print(f"[green]✓[/green] Saved checkpoint: {result.unwrap()}")


@main.command("list")
@click.argument("workspace")
@click.argument("agent")
@click.option(
    "--limit", "-n", type=click.IntRange(min=0), default=None, help="Number of checkpoints to show (0 = all)"
)
@click.option("--json", "as_json", is_flag=True, help="Print the API list response")
def list_cmd(workspace, agent, limit, as_json):
    """List a scope's checkpoints, newest first."""
    result = CheckpointService().list_checkpoints(_scope(workspace, agent), limit)
    if result.is_err():
        _fail(result.unwrap_err())

    entries = result.unwrap()
    if as_json:
        _echo_json(list_response(entries))
        return

    if not entries:
        console.print("[yellow]No checkpoints found.[/yellow]")
        return

    console.print(_entries_table(entries))


@main.command()
@click.argument("workspace")
@click.argument("agent")
@click.argument("checkpoint_id")
@click.option("--json", "as_json", is_flag=True, help="Print the API restore response")
def restore(workspace, agent, checkpoint_id, as_json):
    """Load a checkpoint's conversation."""
    result = CheckpointService().restore_checkpoint(_scope(workspace, agent), checkpoint_id)
    if result.is_err():
        _fail(result.unwrap_err())

    if as_json:
        _echo_json(restore_response(result.unwrap()))
        return

    _show_record(result.unwrap())


@main.command()
@click.argument("workspace")
@click.argument("agent")
@click.argument("checkpoint_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
def rm(workspace, agent, checkpoint_id, force):
    """Delete a checkpoint (a migrated copy in the global registry is kept)."""
    if not force:
        if not click.confirm(f"Delete checkpoint '{checkpoint_id}'?"):
            console.print("Cancelled.")
            return

    result = CheckpointService().delete_checkpoint(_scope(workspace, agent), checkpoint_id)
    if result.is_err():
        _fail(result.unwrap_err())

    console.print(f"[green]✓[/green] Deleted: {checkpoint_id}")


@main.command()
@click.argument("workspace")
@click.argument("agent")
def reindex(workspace, agent):
    """Rebuild a scope's index from its checkpoint documents."""
    service = CheckpointService()
    store = service.store_for(_scope(workspace, agent))
    if store.is_err():
        _fail(store.unwrap_err())

    result = store.unwrap().rebuild_index()
    if result.is_err():
        _fail(result.unwrap_err())

    console.print(f"[green]✓[/green] Reindexed {workspace}/{agent}: {result.unwrap()} checkpoints")


@main.group("global")
def global_():
    """Browse the global checkpoint registry."""
    pass


@global_.command("list")
@click.option(
    "--limit", "-n", type=click.IntRange(min=0), default=None, help="Number of checkpoints to show (0 = all)"
)
@click.option("--json", "as_json", is_flag=True, help="Print the API list response")
def global_list(limit, as_json):
    """List global checkpoints, newest first."""
    entries = CheckpointService().list_global_checkpoints(limit)
    if as_json:
        _echo_json(list_response(entries))
        return

    if not entries:
        console.print("[yellow]No global checkpoints found.[/yellow]")
        console.print("Copy scoped checkpoints in with: waypoint migrate")
        return

    console.print(_entries_table(entries, show_source=True))


@global_.command("show")
@click.argument("checkpoint_id")
@click.option("--json", "as_json", is_flag=True, help="Print the stored record")
def global_show(checkpoint_id, as_json):
    """Show a global checkpoint."""
    result = CheckpointService().restore_global_checkpoint(checkpoint_id)
    if result.is_err():
        _fail(result.unwrap_err())

    if as_json:
        _echo_json({"checkpoint": record_to_payload(result.unwrap())})
        return

    _show_record(result.unwrap())


@global_.command("rm")
@click.argument("checkpoint_id")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation")
def global_rm(checkpoint_id, force):
    """Delete a global checkpoint."""
    if not force:
        if not click.confirm(f"Delete global checkpoint '{checkpoint_id}'?"):
            console.print("Cancelled.")
            return

    result = CheckpointService().delete_global_checkpoint(checkpoint_id)
    if result.is_err():
        _fail(result.unwrap_err())

    console.print(f"[green]✓[/green] Deleted: {checkpoint_id}")


@click.command()
def migrate():
    """Copy all scoped checkpoints into the global registry.

    Safe to re-run: checkpoints already in the registry are skipped and
    scoped checkpoints are never modified.
    """
    service = CheckpointService()
    console.print(f"Migrating checkpoints under {service.storage_dir}")

    result = service.migrate()
    if result.is_err():
        _fail(result.unwrap_err())

    report = result.unwrap()
    for failure in report.failures:
        console.print(f"[yellow]{escape(format_error(failure))}[/yellow]")

    console.print()
    console.print("[bold]Migration summary[/bold]")
    console.print(f"  Scopes: {report.scopes_discovered}")
    console.print(f"  Checkpoints found: {report.records_discovered}")
    console.print(f"  [green]Migrated: {report.migrated}[/green]")
    console.print(f"  Already present: {report.already_present}")
    if report.skipped:
        console.print(f"  [yellow]Skipped: {report.skipped}[/yellow]")
    console.print(f"  Global checkpoints: {len(service.list_global_checkpoints(limit=0))}")


main.add_command(migrate)


@main.group()
def config():
    """Manage configuration (<storage>/waypoint.yaml)."""
    pass


@config.command("show")
def config_show():
    """Show current configuration."""
    storage_dir = get_storage_dir()
    effective = get_config(storage_dir)
    defaults = WaypointConfig()

    console.print(f"[bold]Storage[/bold] [dim]({storage_dir})[/dim]")
    console.print()
    for key, value in effective.to_dict().items():
        default = getattr(defaults, key)
        if key == "file_mode":
            value, default = oct(value), oct(default)
        if value != default:
            console.print(f"  {key}: [cyan]{escape(str(value))}[/cyan] [dim](default: {escape(str(default))})[/dim]")
        else:
            console.print(f"  {key}: {escape(str(value))}")

    console.print()
    console.print("[dim]waypoint config set KEY VALUE      Set a value[/dim]")


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str):
    """Set a configuration value.

    Examples:
        waypoint config set recognized_models claude,gemini,gpt
        waypoint config set json_indent none
        waypoint config set file_mode 640
    """
    storage_dir = get_storage_dir()
    current = get_config(storage_dir)

    # Normalize key (allow hyphens)
    key = key.replace("-", "_")

    if key == "recognized_models":
        models = [m.strip() for m in value.split(",") if m.strip()]
        if not models:
            console.print("[red]At least one model is required[/red]")
            sys.exit(1)
        current.recognized_models = models
    elif key == "json_indent":
        if value.lower() == "none":
            current.json_indent = None
        else:
            try:
                current.json_indent = int(value)
            except ValueError:
                console.print(f"[red]Invalid integer value: {escape(value)}[/red]")
                sys.exit(1)
    elif key == "file_mode":
        try:
            current.file_mode = int(value, 8)
        except ValueError:
            console.print(f"[red]Invalid octal mode: {escape(value)}[/red]")
            sys.exit(1)
    elif key == "list_limit":
        try:
            current.list_limit = int(value)
        except ValueError:
            console.print(f"[red]Invalid integer value: {escape(value)}[/red]")
            sys.exit(1)
    else:
        console.print(f"[red]Unknown config key: {escape(key)}[/red]")
        console.print()
        console.print("[dim]Keys: recognized_models, json_indent, file_mode, list_limit[/dim]")
        sys.exit(1)

    if key in current.invalid_fields():
        console.print(f"[red]Invalid value for {key}: {escape(value)}[/red]")
        sys.exit(1)

    saved = current.save(storage_dir)
    if saved.is_err():
        _fail(saved.unwrap_err())

    console.print(f"[green]✓[/green] Set {key} in {storage_dir / CONFIG_FILENAME}")


if __name__ == "__main__":
    main()
