"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from moontv_storage.models import AdminConfig, StorageConfig, UserEntry, UserRole
from moontv_storage.storage.clients import redact_url

SENSITIVE_KEYS = ("upstash_token",)


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "StorageUnavailableError": [
            "• The storage backend could not be reached after several retries.",
            "• Check REDIS_URL / UPSTASH_URL and your network connection.",
            "• Raise STORAGE_RETRY_ATTEMPTS if the store is slow to recover.",
        ],
        "CircuitOpenError": [
            "• Too many consecutive storage failures; calls are paused.",
            "• Wait for the cooldown and try again.",
        ],
        "ConfigurationError": [
            "• Check the values in your config file or environment.",
            "• Valid storage types: memory, redis, upstash, relational.",
            "• Run `moontv-storage init` to write a fresh config file.",
        ],
        "CorruptRecordError": [
            "• A stored value could not be parsed.",
            "• Inspect or delete the key shown above in the store.",
        ],
        "ImportFormatError": [
            "• Import files must come from `moontv-storage export`.",
            "• The file needs top-level 'version' and 'data' fields.",
        ],
        "ConfigFileError": [
            "• The config file content must be valid JSON.",
            "• Validate it with a JSON linter before uploading.",
        ],
        "InvalidUsernameError": ["• Pass a non-empty username."],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path | None, config: StorageConfig):
    """Displays the effective storage configuration, hiding secrets."""
    console = Console()
    content = ""
    for key, value in config.model_dump(mode="json").items():
        if key in SENSITIVE_KEYS and value:
            value = "********"
        elif key == "redis_url":
            value = redact_url(value)
        content += f"{key} = {value}\n"

    source = config_path if config_path and config_path.is_file() else "environment"
    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{source}[/dim])",
            border_style="cyan",
        )
    )


def print_backend_info(details: dict[str, Any], admin_config: AdminConfig | None):
    """Shows the backend status and which admin-config layout is in use."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    for key, value in details.items():
        table.add_row(f"{key.capitalize()}:", str(value))

    if admin_config is None:
        table.add_row("Admin Config:", "[yellow]not initialized[/yellow]")
    else:
        table.add_row("Site Name:", admin_config.site_config.site_name)
        table.add_row("Sources:", str(len(admin_config.source_config)))
        table.add_row("Categories:", str(len(admin_config.custom_categories)))
        table.add_row(
            "Registration:",
            "✓ Open" if admin_config.user_config.allow_register else "✗ Closed",
        )

    console.print(
        Panel(
            table,
            title="[bold green]Storage Backend[/bold green]",
            border_style="green",
        )
    )


def print_users_table(users: list[UserEntry]):
    console = Console()
    if not users:
        console.print("[dim]No users found.[/dim]")
        return

    role_styles = {UserRole.OWNER: "magenta", UserRole.ADMIN: "cyan"}
    table = Table(title=f"Users ({len(users)})")
    table.add_column("Username", style="bold")
    table.add_column("Role")
    table.add_column("Status")
    for user in users:
        style = role_styles.get(user.role, "white")
        status = "[red]banned[/red]" if user.banned else "[green]active[/green]"
        role = f"[{style}]{user.role.value}[/{style}]"
        table.add_row(escape(user.username), role, status)
    console.print(table)


def print_search_history(username: str, keywords: list[str]):
    console = Console()
    if not keywords:
        console.print(f"[dim]No search history for '{escape(username)}'.[/dim]")
        return

    table = Table(title=f"Search history of {escape(username)}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Keyword", style="cyan")
    for i, keyword in enumerate(keywords, 1):
        table.add_row(str(i), escape(keyword))
    console.print(table)
