"""Injectable status reporting built on Rich.

The security helpers never print directly.  They accept a ``Reporter`` and
fall back to :class:`NullReporter`, so library calls stay silent unless the
CLI constructs a :class:`ConsoleReporter` at startup and passes it down.
"""

from __future__ import annotations

from typing import Protocol

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class Reporter(Protocol):
    """Minimal logging interface consumed by the security layer."""

    def debug(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def success(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class NullReporter:
    """Discards every message."""

    def debug(self, message: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def error(self, message: str) -> None:
        pass


class ConsoleReporter:
    """Reporter that renders to a Rich console.

    Debug output is shown only when *verbose* is set.  *quiet* suppresses
    everything except errors, which are always written to stderr.
    """

    def __init__(
        self,
        console: Console | None = None,
        *,
        verbose: bool = False,
        quiet: bool = False,
    ) -> None:
        self.console = console or Console()
        self.err_console = Console(stderr=True) if console is None else console
        self.verbose = verbose
        self.quiet = quiet

    def debug(self, message: str) -> None:
        if self.verbose and not self.quiet:
            self.console.print(f"[dim]{escape(message)}[/dim]")

    def info(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[blue]i[/blue] {escape(message)}")

    def success(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[bold green]✓[/bold green] {escape(message)}")

    def warning(self, message: str) -> None:
        if not self.quiet:
            self.console.print(f"[bold yellow]![/bold yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[bold red]✗[/bold red] {escape(message)}")

    def summary(self, data: dict[str, str], title: str = "Summary") -> None:
        """Print a two-column key/value table."""
        if self.quiet:
            return
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Item", style="dim", no_wrap=True)
        table.add_column("Value")
        for key, value in data.items():
            table.add_row(key, escape(str(value)))
        self.console.print(table)


def resolve_reporter(reporter: Reporter | None) -> Reporter:
    """Return *reporter*, or a silent one when ``None``."""
    return reporter if reporter is not None else NullReporter()
