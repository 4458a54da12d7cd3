"""Command line interface."""

import asyncio
import dataclasses
import json
import logging
import platform
from pathlib import Path
from typing import List, Optional

import httpx
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from agent_workspace import __version__, modify
from agent_workspace.clients import CANONICAL_SKILLS_PATH, SUPPORTED_CLIENTS, get_client_table
from agent_workspace.config import (
    CONFIG_DIR,
    SYNC_MODES,
    WORKSPACE_CONFIG_FILE,
    WorkspaceConfig,
    get_agent_home,
    get_config_path,
    get_sync_state_path,
    is_user_scope,
    load_config,
    save_config,
)
from agent_workspace.errors import AgentWorkspaceError, ConfigError
from agent_workspace.purge import DELETED, FAILED, WOULD_DELETE
from agent_workspace.state import FileSyncStateStore
from agent_workspace.sync import SyncOptions, SyncResult, sync_workspace
from agent_workspace.transform import ACTION_FAILED, ACTION_SKIPPED, REASON_UP_TO_DATE

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="agent-workspace",
    help="Sync plugin skills, commands and agent files into AI client directories",
    add_completion=False,
)

WORKSPACE_OPTION = typer.Option(
    None, "--workspace", "-w",
    help="Workspace directory (defaults to the current directory)",
)


def setup_logging(verbose: bool = False) -> None:
    """Route library logging through rich, on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
        force=True,
    )


def _workspace(path: Optional[Path]) -> Path:
    return (path or Path.cwd()).resolve()


@app.callback(invoke_without_command=True)
def main_callback(ctx: typer.Context):
    """
    Sync plugin skills, commands and agent files into AI client directories.
    """
    setup_logging()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


# Sub-apps for config edits
plugin_app = typer.Typer(help="Add, remove and prune configured plugins", no_args_is_help=True)
app.add_typer(plugin_app, name="plugin")

client_app = typer.Typer(help="Add and remove configured clients", no_args_is_help=True)
app.add_typer(client_app, name="client")

skills_app = typer.Typer(help="List, disable and enable plugin skills", no_args_is_help=True)
app.add_typer(skills_app, name="skills")


# =============================================================================
# Sync
# =============================================================================

def print_sync_result(result: SyncResult, verbose: bool = False) -> None:
    if result.dry_run:
        console.print("[yellow]Dry run: no files were changed[/yellow]\n")

    for plugin in result.plugin_results:
        if plugin.error:
            console.print(f"[red]✗[/red] {plugin.plugin}: {plugin.error}")
            continue
        written = sum(1 for r in plugin.copy_results if r.action not in (ACTION_SKIPPED, ACTION_FAILED))
        failed = [r for r in plugin.copy_results if r.action == ACTION_FAILED]
        mark = "[green]✓[/green]" if not failed else "[yellow]![/yellow]"
        console.print(f"{mark} {plugin.plugin} [dim]({written} written, {len(plugin.copy_results)} total)[/dim]")
        for r in failed:
            console.print(f"    [red]failed[/red] {r.destination}: {r.error}")
        if verbose:
            for r in plugin.copy_results:
                if r.action == ACTION_FAILED or r.reason == REASON_UP_TO_DATE:
                    continue
                detail = f" ({r.reason})" if r.reason else ""
                console.print(f"    [dim]{r.action}{detail}[/dim] {r.destination}")

    for r in result.generated_results:
        if r.action == ACTION_FAILED:
            console.print(f"[red]✗[/red] {r.destination}: {r.error}")
        elif verbose or r.action != ACTION_SKIPPED:
            detail = f" ({r.reason})" if r.reason else ""
            console.print(f"[green]✓[/green] {r.destination} [dim]{r.action}{detail}[/dim]")

    if result.purge_outcomes:
        label = "Would purge" if result.dry_run else "Purged"
        for outcome in result.purge_outcomes:
            if outcome.action == FAILED:
                console.print(f"  [red]✗[/red] {outcome.path}: {outcome.error}")
            elif outcome.action in (DELETED, WOULD_DELETE):
                console.print(f"  [dim]{label}[/dim] {outcome.path}")

    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Value")
    table.add_row("Copied", str(result.copied))
    table.add_row("Generated", str(result.generated))
    table.add_row("Skipped", str(result.skipped))
    table.add_row("Failed", str(result.failed))
    table.add_row("Purged", str(len(result.purged)))
    console.print()
    console.print(table)


@app.command()
def sync(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    offline: bool = typer.Option(False, "--offline", help="Use cached remote plugins only"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would change without writing"),
    client: Optional[List[str]] = typer.Option(
        None, "--client", "-c",
        help="Only sync these clients (repeatable)",
    ),
    disable: Optional[List[str]] = typer.Option(
        None, "--disable",
        help="Skip a skill for this run, as plugin:skill (repeatable)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every file operation"),
):
    """
    Sync configured plugins into the workspace.

    Examples:
        agent-workspace sync
        agent-workspace sync --dry-run
        agent-workspace sync -c claude --offline
    """
    setup_logging(verbose)
    options = SyncOptions(
        offline=offline,
        dry_run=dry_run,
        clients=list(client or []),
        disabled_skills=list(disable or []),
    )
    result = asyncio.run(sync_workspace(_workspace(workspace), options))

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    elif result.error:
        console.print(f"[red]Error:[/red] {result.error}")
        for warning in result.warnings:
            console.print(f"  [yellow]{warning}[/yellow]")
    else:
        print_sync_result(result, verbose)

    if not result.success:
        raise typer.Exit(1)
    if not as_json:
        verb = "Dry run complete" if dry_run else "Sync complete"
        console.print(f"\n[green]✓ {verb}[/green]")


# =============================================================================
# Workspace Commands
# =============================================================================

@app.command()
def init(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    client: Optional[List[str]] = typer.Option(
        None, "--client", "-c",
        help=f"Client to sync to (repeatable). One of: {', '.join(SUPPORTED_CLIENTS)}",
    ),
    plugin: Optional[List[str]] = typer.Option(
        None, "--plugin", "-p",
        help="Plugin reference: local path, GitHub URL or plugin@marketplace (repeatable)",
    ),
    mode: str = typer.Option("symlink", "--mode", "-m", help="Sync mode: symlink or copy"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing config"),
):
    """Create .agent/workspace.yaml in the workspace."""
    root = _workspace(workspace)
    config_path = get_config_path(root)

    if config_path.exists() and not force:
        console.print(f"[yellow]{CONFIG_DIR}/{WORKSPACE_CONFIG_FILE} already exists.[/yellow] Use --force to overwrite.")
        raise typer.Exit(1)

    clients = list(client or ["claude"])
    unknown = [c for c in clients if c not in SUPPORTED_CLIENTS]
    if unknown:
        console.print(f"[red]Error:[/red] Unknown client(s): {', '.join(unknown)}")
        console.print(f"  Supported: {', '.join(SUPPORTED_CLIENTS)}")
        raise typer.Exit(1)
    if mode not in SYNC_MODES:
        console.print(f"[red]Error:[/red] Unknown sync mode '{mode}' (expected one of {', '.join(SYNC_MODES)})")
        raise typer.Exit(1)

    config = WorkspaceConfig(plugins=list(plugin or []), clients=clients, sync_mode=mode)
    save_config(config_path, config)
    console.print(f"[green]✓[/green] Created {config_path}")
    console.print("  Run [cyan]agent-workspace sync[/cyan] to apply it")


@app.command()
def status(workspace: Optional[Path] = WORKSPACE_OPTION):
    """Show the workspace config and what the last sync wrote."""
    root = _workspace(workspace)
    try:
        config = load_config(get_config_path(root))
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    user_scope = is_user_scope(root)
    table_data = get_client_table(user_scope)
    state = FileSyncStateStore(get_sync_state_path(root)).load()

    console.print(f"[cyan]Workspace:[/cyan] {root}" + (" [dim](user scope)[/dim]" if user_scope else ""))
    console.print(f"[cyan]Sync mode:[/cyan] {config.sync_mode}")
    console.print(f"[cyan]Plugins:[/cyan] {len(config.plugins)}")
    for ref in config.plugins:
        console.print(f"  - {ref}")

    table = Table(title="Clients")
    table.add_column("Client", style="cyan")
    table.add_column("Skills Path")
    table.add_column("Agent File")
    table.add_column("Synced Paths", style="green", justify="right")
    for key in config.clients:
        info = table_data[key]
        synced = len(state.files.get(key, [])) if state else 0
        table.add_row(info["name"], info.get("skills_path") or "N/A", info.get("agent_file") or "N/A", str(synced))
    console.print(table)

    if state is None:
        console.print("[dim]Not synced yet[/dim]")
    else:
        stale = sorted(set(state.files) - set(config.clients))
        if stale:
            console.print(f"[yellow]Clients removed since last sync:[/yellow] {', '.join(stale)}")


@app.command()
def clients(
    user: bool = typer.Option(False, "--user", help="Show user-scope (home directory) paths"),
):
    """List supported clients and where they read from."""
    table = Table(title="User-scope Clients" if user else "Project Clients")
    table.add_column("Key", style="cyan")
    table.add_column("Name")
    table.add_column("Commands")
    table.add_column("Skills")
    table.add_column("Hooks")
    table.add_column("Agent File")
    for key, info in get_client_table(user).items():
        skills_path = info.get("skills_path") or "N/A"
        if skills_path == CANONICAL_SKILLS_PATH:
            skills_path += " [dim](canonical)[/dim]"
        agent_file = info.get("agent_file") or "N/A"
        if info.get("agent_file_fallback"):
            agent_file += f" [dim](or {info['agent_file_fallback']})[/dim]"
        table.add_row(
            key,
            info["name"],
            info.get("commands_path") or "N/A",
            skills_path,
            info.get("hooks_path") or "N/A",
            agent_file,
        )
    console.print(table)


# =============================================================================
# Config Edit Commands
# =============================================================================

def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(1)


@plugin_app.command("add")
def plugin_add(
    reference: str = typer.Argument(..., help="Local path, GitHub URL or plugin@marketplace"),
    workspace: Optional[Path] = WORKSPACE_OPTION,
    offline: bool = typer.Option(False, "--offline", help="Use cached remote plugins only"),
):
    """Add a plugin to the workspace config after checking that it resolves."""
    try:
        plugin = asyncio.run(modify.add_plugin(_workspace(workspace), reference, offline=offline))
    except AgentWorkspaceError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Added {reference} [dim]({plugin.resolved_path})[/dim]")
    if plugin.registered_as:
        console.print(f"  [dim]Resolved through marketplace '{plugin.registered_as}'[/dim]")
    console.print("  Run [cyan]agent-workspace sync[/cyan] to apply it")


@plugin_app.command("remove")
def plugin_remove(
    reference: str = typer.Argument(..., help="Configured reference, or plugin name for plugin@marketplace"),
    workspace: Optional[Path] = WORKSPACE_OPTION,
):
    """Remove a plugin from the workspace config."""
    try:
        removed = modify.remove_plugin(_workspace(workspace), reference)
    except AgentWorkspaceError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Removed {removed}")
    console.print("  Its files are purged on the next [cyan]agent-workspace sync[/cyan]")


@plugin_app.command("prune")
def plugin_prune(workspace: Optional[Path] = WORKSPACE_OPTION):
    """Remove plugin@marketplace entries whose marketplace no longer exists."""
    try:
        removed = modify.prune_orphaned_plugins(_workspace(workspace))
    except AgentWorkspaceError as e:
        _fail(e)
    if not removed:
        console.print("[dim]No orphaned plugins[/dim]")
        return
    for reference in removed:
        console.print(f"  [red]-[/red] {reference}")
    console.print(f"[green]✓[/green] Pruned {len(removed)} plugin(s)")


@client_app.command("add")
def client_add(
    client: str = typer.Argument(..., help=f"One of: {', '.join(SUPPORTED_CLIENTS)}"),
    workspace: Optional[Path] = WORKSPACE_OPTION,
):
    """Start syncing to a client."""
    try:
        modify.add_client(_workspace(workspace), client)
    except AgentWorkspaceError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Added client {client}")


@client_app.command("remove")
def client_remove(
    client: str = typer.Argument(..., help="Configured client key"),
    workspace: Optional[Path] = WORKSPACE_OPTION,
):
    """Stop syncing to a client."""
    try:
        modify.remove_client(_workspace(workspace), client)
    except AgentWorkspaceError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Removed client {client}")
    console.print("  Its files are purged on the next full [cyan]agent-workspace sync[/cyan]")


@skills_app.command("list")
def skills_list(
    workspace: Optional[Path] = WORKSPACE_OPTION,
    offline: bool = typer.Option(False, "--offline", help="Use cached remote plugins only"),
    as_json: bool = typer.Option(False, "--json", help="Print the skills as JSON"),
):
    """List skills from configured plugins and whether they are enabled."""
    try:
        skills = asyncio.run(modify.list_skills(_workspace(workspace), offline=offline))
    except AgentWorkspaceError as e:
        _fail(e)

    if as_json:
        typer.echo(json.dumps([dataclasses.asdict(s) for s in skills], indent=2))
        return
    if not skills:
        console.print("[dim]No skills found in configured plugins[/dim]")
        return

    table = Table(title="Skills")
    table.add_column("Plugin", style="cyan")
    table.add_column("Skill")
    table.add_column("Synced As")
    table.add_column("Status")
    for s in skills:
        status_text = "[green]enabled[/green]" if s.enabled else "[yellow]disabled[/yellow]"
        table.add_row(s.plugin, s.folder, s.name or "-", status_text)
    console.print(table)


@skills_app.command("disable")
def skills_disable(
    skill: str = typer.Argument(..., help="Skill folder name, or plugin:skill"),
    plugin: Optional[str] = typer.Option(None, "--plugin", "-p", help="Plugin name when the skill is ambiguous"),
    workspace: Optional[Path] = WORKSPACE_OPTION,
    offline: bool = typer.Option(False, "--offline", help="Use cached remote plugins only"),
):
    """Stop syncing a skill. It is removed on the next sync."""
    try:
        key = asyncio.run(modify.disable_skill(_workspace(workspace), skill, plugin=plugin, offline=offline))
    except AgentWorkspaceError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Disabled {key}")


@skills_app.command("enable")
def skills_enable(
    skill: str = typer.Argument(..., help="Skill folder name, or plugin:skill"),
    plugin: Optional[str] = typer.Option(None, "--plugin", "-p", help="Plugin name when the skill is ambiguous"),
    workspace: Optional[Path] = WORKSPACE_OPTION,
):
    """Sync a previously disabled skill again."""
    try:
        key = modify.enable_skill(_workspace(workspace), skill, plugin=plugin)
    except AgentWorkspaceError as e:
        _fail(e)
    console.print(f"[green]✓[/green] Enabled {key}")


# =============================================================================
# Version
# =============================================================================

def get_installed_version() -> str:
    """Get the currently installed version."""
    import importlib.metadata
    try:
        return importlib.metadata.version("agent-workspace")
    except importlib.metadata.PackageNotFoundError:
        return __version__


def get_latest_version() -> Optional[str]:
    """Fetch the latest published version from PyPI."""
    try:
        response = httpx.get(
            "https://pypi.org/pypi/agent-workspace/json",
            timeout=5,
            follow_redirects=True,
        )
    except httpx.HTTPError as e:
        logger.debug("Version check failed: %s", e)
        return None
    if response.status_code != 200:
        return None
    try:
        data = response.json()
    except ValueError as e:
        logger.debug("Version check returned invalid JSON: %s", e)
        return None
    info = data.get("info") if isinstance(data, dict) else None
    latest = info.get("version") if isinstance(info, dict) else None
    return latest if isinstance(latest, str) else None


@app.command()
def version(
    check_update: bool = typer.Option(
        False, "--check",
        help="Check for available updates",
    ),
):
    """Display version and check for updates."""
    installed = get_installed_version()

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="cyan", justify="right")
    table.add_column("Value", style="white")

    table.add_row("Version", installed)
    table.add_row("Python", platform.python_version())
    table.add_row("Platform", platform.system())
    table.add_row("Agent home", str(get_agent_home()))

    if check_update:
        latest = get_latest_version()
        if latest:
            table.add_row("Latest", latest)
            if latest != installed:
                table.add_row("", "[yellow]Update available![/yellow]")
        else:
            table.add_row("Latest", "[dim]Unable to check[/dim]")

    console.print(Panel(
        table,
        title="[bold cyan]Agent Workspace[/bold cyan]",
        border_style="cyan",
        padding=(1, 2),
    ))

    if check_update:
        console.print("\n[dim]To update, run:[/dim]")
        console.print("  [cyan]uv tool upgrade agent-workspace[/cyan]")
        console.print("  [dim]or[/dim]")
        console.print("  [cyan]pip install --upgrade agent-workspace[/cyan]")


def main():
    """Main entry point."""
    app()
