#!/usr/bin/env python3
"""
Console UI Module using Rich

Styled messages, configuration and summary tables, section headers,
activity progress and confirmation prompts for the Exaleipsis CLI.
"""

from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.prompt import Confirm
from rich.table import Table

from auxiliary import format_bytes, format_path_for_display
from finding_ledger import Candidate


class ConsoleUI:
    """Console UI handler using Rich"""

    def __init__(self, force_terminal: Optional[bool] = None, console: Optional[Console] = None):
        """Initialize console with optional terminal forcing"""
        self.console = console or Console(force_terminal=force_terminal, highlight=False)

    # Basic styled output methods
    def print_success(self, message: str):
        """Print success message in green"""
        self.console.print(message, style="green")

    def print_error(self, message: str):
        """Print error message in red"""
        self.console.print(message, style="red bold")

    def print_warning(self, message: str):
        """Print warning message in yellow"""
        self.console.print(message, style="yellow")

    def print_info(self, message: str):
        """Print info message in cyan"""
        self.console.print(message, style="cyan")

    def print_plain(self, message: str):
        """Print message in plain white"""
        self.console.print(message, style="white")

    def print_header(self, title: str, subtitle: Optional[str] = None):
        """Print a header with optional subtitle"""
        if subtitle:
            header_text = f"[bold]{title}[/bold]\n[dim]{subtitle}[/dim]"
        else:
            header_text = f"[bold]{title}[/bold]"

        panel = Panel(header_text, box=box.ROUNDED, padding=(0, 1))
        self.console.print(panel)

    def print_section(self, title: str, index: int, total: int):
        self.console.print()
        self.console.print(f"[bold]── {title} ──[/bold] [dim]({index}/{total})[/dim]")

    # Configuration display
    def show_configuration(self, config: dict[str, Any]):
        """Display configuration in a formatted table"""
        table = Table(show_header=False, box=box.SIMPLE)
        table.add_column("Setting", style="cyan dim", min_width=20, justify="right")
        table.add_column("Value", style="cyan", min_width=30)

        for key, value in config.items():
            if isinstance(value, list):
                value = ", ".join(str(v) for v in value)
            table.add_row(key, str(value))

        self.console.print(table)

    # Progress
    def create_activity_progress(self):
        """Create a Rich progress context manager for activity-only display (no counts)"""
        return Progress(
            SpinnerColumn(),
            TextColumn("{task.description}"),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        )

    # Run results
    def show_summary(self, summary: dict[str, int], scan: bool):
        """Show the ledger counters and total size"""
        table = Table(title="Scan Summary" if scan else "Removal Summary", box=box.ROUNDED, show_header=False)
        table.add_column("Outcome", style="cyan", min_width=16)
        table.add_column("Count", justify="right", min_width=10)

        if scan:
            table.add_row("Found", str(summary["found"]))
            table.add_row("Skipped", str(summary["skipped"]))
            table.add_row("Size", f"[yellow]{format_bytes(summary['total_size_bytes'])}[/yellow]")
        else:
            table.add_row("Removed", f"[green]{summary['removed']}[/green]")
            table.add_row("Failed", f"[red]{summary['failed']}[/red]" if summary["failed"] else "0")
            table.add_row("Skipped", str(summary["skipped"]))
            table.add_row("Reclaimed", f"[yellow]{format_bytes(summary['total_size_bytes'])}[/yellow]")

        self.console.print()
        self.console.print(table)

    def show_failures(self, entries: list[Candidate], title: str = "Failed", show_limit: int = 10):
        """List failed or skipped candidates with their reason"""
        if not entries:
            return
        self.console.print(f"\n[red]{title} ({len(entries)}):[/red]")
        for candidate in entries[:show_limit]:
            reason = f": {candidate.detail}" if candidate.detail else ""
            location = format_path_for_display(candidate.location)
            self.console.print(f"[red dim]  • {candidate.identifier} {location}{reason}[/red dim]")
        if len(entries) > show_limit:
            self.console.print(f"[red dim]  • ... and {len(entries) - show_limit} more[/red dim]")

    def show_manual_actions(self, actions: list[tuple[str, str]]):
        """Commands the user has to run by hand"""
        if not actions:
            return
        self.console.print("\n[yellow]Manual action required:[/yellow]")
        for name, command in actions:
            self.console.print(f"  [yellow]{name}[/yellow]")
            self.console.print(f"    [dim]{command}[/dim]")

    def show_verification(self, residual_signals: list):
        if not residual_signals:
            self.print_success("Verification passed: no Python traces left.")
            return
        self.print_warning(f"Verification found {len(residual_signals)} residual signals:")
        for signal in residual_signals:
            self.console.print(f"[yellow dim]  • {signal.kind}: {signal.name} {signal.location}[/yellow dim]")

    # Interactive prompts
    def confirm(self, question: str, default: bool = False) -> bool:
        """Ask for yes/no confirmation"""
        return Confirm.ask(question, default=default, console=self.console)
