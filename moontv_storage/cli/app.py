"""
Defines the operator command-line interface using Typer.

Every command opens the configured backend, runs one storage operation and
closes the backend again.
"""

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from moontv_storage import __version__
from moontv_storage.core.config_transfer import ConfigTransfer
from moontv_storage.core.db_manager import DbManager, get_db_manager, reset_db_manager
from moontv_storage.exceptions import MoonStorageError
from moontv_storage.models import UserRole
from moontv_storage.storage.config_manager import ConfigManager

from .formatters import (
    format_error_with_suggestions,
    print_backend_info,
    print_config,
    print_search_history,
    print_users_table,
)

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("moontv_storage")

app = typer.Typer(
    name="moontv-storage",
    help=(
        "Inspect and maintain the MoonTV user-data store. Use 'moontv-storage"
        " <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
config_file_app = typer.Typer(help="Show or replace the site ConfigFile.")
app.add_typer(config_file_app, name="config-file")

T = TypeVar("T")


def get_config_dir() -> Path:
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "moontv-storage"


CONFIG_FILE = get_config_dir() / "config.ini"


def _run(ctx: typer.Context, action: Callable[[DbManager], Awaitable[T]]) -> T:
    """Runs ``action`` against the configured backend, then closes it."""
    options: dict[str, Any] = ctx.obj or {}

    async def runner() -> T:
        try:
            config_manager = ConfigManager(options.get("config_file", CONFIG_FILE))
            config = config_manager.load_config(options.get("cli_options"))
            db = await get_db_manager(config)
            return await action(db)
        finally:
            await reset_db_manager()

    try:
        return asyncio.run(runner())
    except MoonStorageError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v for progress, -vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    config_file: Path = typer.Option(  # noqa: B008
        CONFIG_FILE, "--config", "-c", help="Path to the INI configuration file."
    ),
    storage_type: str | None = typer.Option(
        None,
        "--storage-type",
        "-t",
        help="Backend to use: memory, redis, upstash or relational.",
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the effective configuration."
    ),
):
    """MoonTV storage maintenance CLI"""
    if version:
        console.print(
            f"[bold]moontv-storage[/bold] version [cyan]{__version__}[/cyan]"
        )
        raise typer.Exit()

    log_level = "WARNING"
    if verbose == 1:
        log_level = "INFO"
    elif verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("moontv_storage").setLevel(log_level)

    ctx.obj = {
        "config_file": config_file,
        "cli_options": {"storage_type": storage_type},
    }

    if show_config:
        try:
            config = ConfigManager(config_file).load_config(ctx.obj["cli_options"])
        except MoonStorageError as e:
            console.print(format_error_with_suggestions(e))
            raise typer.Exit(code=1) from e
        print_config(config_file, config)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    ctx: typer.Context,
    storage_type: str = typer.Argument(
        ..., help="Backend to use: memory, redis, upstash or relational."
    ),
    redis_url: str | None = typer.Option(None, "--redis-url"),
    upstash_url: str | None = typer.Option(None, "--upstash-url"),
    upstash_token: str | None = typer.Option(None, "--upstash-token"),
    sqlite_path: str | None = typer.Option(None, "--sqlite-path"),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing file without asking."
    ),
):
    """Write a configuration file for the chosen backend."""
    config_path: Path = (ctx.obj or {}).get("config_file", CONFIG_FILE)
    if (
        config_path.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        key: value
        for key, value in {
            "storage_type": storage_type,
            "redis_url": redis_url,
            "upstash_url": upstash_url,
            "upstash_token": upstash_token,
            "sqlite_path": sqlite_path,
        }.items()
        if value is not None
    }
    config_manager = ConfigManager(config_path)
    try:
        # Validate before writing anything to disk.
        ConfigManager().load_config(settings, environ={})
        config_manager.save_new_config(settings)
    except MoonStorageError as e:
        console.print(format_error_with_suggestions(e))
        raise typer.Exit(code=1) from e
    console.print(f"[bold green]✓ Configuration saved to '{config_path}'[/bold green]")


@app.command()
def info(ctx: typer.Context):
    """Show the active backend and the admin-config layout."""

    async def _info(db: DbManager):
        details = db.storage.describe()
        legacy = await db.get_admin_config()
        config = await db.get_admin_config_from_separated()
        if config is None and legacy is not None:
            details["layout"] = "legacy (run 'migrate')"
            config = legacy
        elif config is None:
            details["layout"] = "empty"
        elif legacy is not None:
            details["layout"] = "normalized (stale legacy blob present)"
        else:
            details["layout"] = "normalized"
        print_backend_info(details, config)

    _run(ctx, _info)


@app.command()
def migrate(ctx: typer.Context):
    """Move a legacy admin:config blob into the normalized layout."""

    async def _migrate(db: DbManager):
        if await db.migrate_from_legacy():
            console.print("[green]✓ Migration completed.[/green]")
        else:
            console.print("[yellow]Nothing to migrate.[/yellow]")

    _run(ctx, _migrate)


@app.command(name="export")
def export_command(
    ctx: typer.Context,
    output: Path | None = typer.Option(  # noqa: B008
        None, "--output", "-o", help="Write to this file instead of stdout."
    ),
):
    """Export the admin configuration as JSON."""

    async def _export(db: DbManager):
        return await ConfigTransfer(db).export_config()

    data = _run(ctx, _export)
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if output is None:
        console.print_json(text)
        return
    try:
        output.write_text(text, encoding="utf-8")
    except OSError as e:
        console.print(f"[red]✗ Failed to write '{output}': {e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"[green]✓ Exported admin config to '{output}'.[/green]")


@app.command(name="import")
def import_command(
    ctx: typer.Context,
    input_file: Path = typer.Argument(  # noqa: B008
        ..., exists=True, dir_okay=False, help="A file created by 'export'."
    ),
):
    """Merge an exported admin configuration into the current one."""
    try:
        payload = json.loads(input_file.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[red]✗ Could not read '{input_file}': {e}[/red]")
        raise typer.Exit(code=1) from e

    async def _import(db: DbManager):
        merged = await ConfigTransfer(db).import_config(payload)
        console.print(
            f"[green]✓ Import finished: {len(merged.source_config)} sources, "
            f"{len(merged.custom_categories)} categories.[/green]"
        )

    _run(ctx, _import)


@app.command()
def users(ctx: typer.Context):
    """List every known user with role and ban state."""

    async def _users(db: DbManager):
        print_users_table(await db.get_all_users_with_roles())

    _run(ctx, _users)


@app.command(name="set-role")
def set_role(
    ctx: typer.Context,
    username: str = typer.Argument(...),
    role: UserRole = typer.Argument(..., case_sensitive=False),  # noqa: B008
):
    """Assign a role; 'user' removes any stored role."""

    async def _set_role(db: DbManager):
        await db.set_user_role(username, role)
        console.print(
            f"[green]✓ {escape(username)} is now '{role.value}'.[/green]"
        )

    _run(ctx, _set_role)


@app.command()
def ban(ctx: typer.Context, username: str = typer.Argument(...)):
    """Ban a user."""

    async def _ban(db: DbManager):
        await db.set_user_banned(username, True)
        console.print(f"[green]✓ {escape(username)} has been banned.[/green]")

    _run(ctx, _ban)


@app.command()
def unban(ctx: typer.Context, username: str = typer.Argument(...)):
    """Lift a user's ban."""

    async def _unban(db: DbManager):
        await db.set_user_banned(username, False)
        console.print(f"[green]✓ {escape(username)} has been unbanned.[/green]")

    _run(ctx, _unban)


@app.command(name="delete-user")
def delete_user(
    ctx: typer.Context,
    username: str = typer.Argument(...),
    force: bool = typer.Option(
        False, "--force", "-f", help="Bypass the confirmation prompt."
    ),
):
    """Delete a user together with all of their data."""
    if not force and not typer.confirm(
        f"Delete '{username}' and all of their records? This cannot be undone."
    ):
        console.print("[yellow]Operation cancelled.[/yellow]")
        raise typer.Abort()

    async def _delete(db: DbManager):
        await db.delete_user(username)
        console.print(f"[green]✓ Deleted user {escape(username)}.[/green]")

    _run(ctx, _delete)


@app.command()
def history(
    ctx: typer.Context,
    username: str = typer.Argument(...),
    clear: bool = typer.Option(False, "--clear", help="Erase the whole history."),
    remove: str | None = typer.Option(
        None, "--remove", help="Remove a single keyword."
    ),
):
    """Show or edit a user's search history."""

    async def _history(db: DbManager):
        if clear:
            await db.delete_search_history(username)
            console.print("[green]✓ Search history cleared.[/green]")
            return
        if remove:
            await db.delete_search_history(username, remove)
        print_search_history(username, await db.get_search_history(username))

    _run(ctx, _history)


@config_file_app.command("show")
def config_file_show(ctx: typer.Context):
    """Print the stored ConfigFile."""

    async def _show(db: DbManager):
        return await ConfigTransfer(db).get_config_file()

    text = _run(ctx, _show)
    try:
        console.print_json(text)
    except ValueError:
        console.print(text, markup=False)


@config_file_app.command("set")
def config_file_set(
    ctx: typer.Context,
    input_file: Path = typer.Argument(  # noqa: B008
        ..., exists=True, dir_okay=False, help="JSON file to store as ConfigFile."
    ),
):
    """Replace the stored ConfigFile with the contents of a JSON file."""
    try:
        text = input_file.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]✗ Could not read '{input_file}': {e}[/red]")
        raise typer.Exit(code=1) from e

    async def _set(db: DbManager):
        await ConfigTransfer(db).set_config_file(text)
        console.print("[green]✓ ConfigFile updated.[/green]")

    _run(ctx, _set)
