"""
CLI UX utilities built on rich and questionary.

Environment handling:
- Automatically detects TTY vs pipe/CI
- Respects NO_COLOR and FORCE_COLOR environment variables
- Prompts refuse (return False) when there is no terminal to ask on
"""

from __future__ import annotations

import os
import sys

import questionary
from questionary import Style as QStyle
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

# Nord color palette (https://www.nordtheme.com/)
LAB_THEME = Theme(
    {
        "info": "#88C0D0",  # Nord frost - light blue
        "success": "#A3BE8C",  # Nord aurora - green
        "warning": "#EBCB8B",  # Nord aurora - yellow
        "error": "#BF616A bold",  # Nord aurora - red
        "highlight": "#B48EAD",  # Nord aurora - purple
        "muted": "#D8DEE9",  # Nord snow storm - light grey
    }
)


def _is_interactive() -> bool:
    """Check if we're in an interactive terminal environment."""
    ci_vars = ["CI", "GITHUB_ACTIONS", "JENKINS_URL", "GITLAB_CI", "CIRCLECI", "TRAVIS"]
    if any(os.environ.get(var) for var in ci_vars):
        return False
    return sys.stdin.isatty() and sys.stdout.isatty()


console = Console(
    theme=LAB_THEME,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
)

PROMPT_STYLE = QStyle(
    [
        ("qmark", "fg:#88C0D0 bold"),
        ("question", "bold"),
        ("answer", "fg:#A3BE8C"),
        ("pointer", "fg:#88C0D0 bold"),
    ]
)


# === Output Formatting ===


def success(message: str) -> None:
    console.print(f"[success]✓ {message}[/success]")


def error(message: str) -> None:
    console.print(f"[error]✗ {message}[/error]")


def warning(message: str) -> None:
    console.print(f"[warning]⚠ {message}[/warning]")


def info(message: str) -> None:
    console.print(f"[info]ℹ {message}[/info]")


def muted(message: str) -> None:
    console.print(f"[muted]  {message}[/muted]")


def header(title: str) -> None:
    """Print a section header."""
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="cyan"))


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    show_header: bool = True,
) -> None:
    """Print a formatted table."""
    table = Table(title=title, show_header=show_header)
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*row)
    console.print(table)


def print_key_value(items: dict[str, str], title: str | None = None) -> None:
    """Print key-value pairs in a nice format."""
    if title:
        console.print(f"\n[bold]{title}[/bold]")
    for key, value in items.items():
        console.print(f"  [cyan]{key}:[/cyan] {value}")


# === Interactive Prompts ===


def confirm(message: str, default: bool = False) -> bool:
    """Ask for confirmation."""
    if not _is_interactive():
        return False
    return questionary.confirm(message, default=default, style=PROMPT_STYLE).ask() or False


def text_input(message: str, default: str = "") -> str:
    """Get text input from user."""
    if not _is_interactive():
        return default
    return questionary.text(message, default=default, style=PROMPT_STYLE).ask() or default


class ConsolePrompter:
    """Prompter backed by questionary, used by the orchestrator for destructive steps."""

    def confirm(self, message: str) -> bool:
        return confirm(message, default=False)

    def confirm_typed(self, message: str, expected: str) -> bool:
        answer = text_input(f"{message} ({expected}):")
        if answer.strip() != expected:
            if answer:
                warning("Confirmation did not match the lab name")
            return False
        return True
