"""Operator-facing console output."""

from __future__ import annotations

from pathlib import Path

from rich.console import Console
from rich.table import Table

from tosc_injector import __version__


class Display:
    """Formats and prints operator-facing console output."""

    def __init__(self, console: Console | None = None, *, clear: bool = True) -> None:
        self.console = console or Console()
        self._clear = clear

    def banner(self) -> None:
        if self._clear:
            self.console.clear()
        self.console.rule(f"[bold]tosc-injector[/bold] v{__version__}")

    def results(self, counts: dict[str, int]) -> None:
        """Per-selector injection counts; orphans are flagged with ``!``."""
        if not counts:
            return
        table = Table(title="Results", show_header=True, header_style="bold")
        table.add_column("", width=1)
        table.add_column("Target")
        table.add_column("Injected", justify="right")
        for key in sorted(counts):
            value = counts[key]
            mark = "[red]![/red]" if value == 0 else "•"
            table.add_row(mark, key, str(value))
        self.console.print(table)

    def written(self, path: Path) -> None:
        self.console.print(f"[green]Project file written:[/green] {path}")

    def watching(self, scripts_dir: Path, project_path: Path) -> None:
        self.console.print(f"Watching [bold]{scripts_dir}[/bold] and [bold]{project_path.name}[/bold]")

    def change(self, path: Path) -> None:
        self.console.print(f"Change detected in [bold]{path}[/bold]")

    def failure(self, message: str, retry_delay: float) -> None:
        self.console.print(f"[red]{message}[/red] -- retrying in {retry_delay:.1f}s")
