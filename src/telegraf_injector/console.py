"""Rich console utilities for styled log output.

This module provides the shared themed console and the Reporter used by
every component to write timestamped, consistently styled log lines.
"""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

# Custom theme with consistent colors
_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
        "muted": "dim",
    }
)

# Shared console instance; stdout is reserved for command output
console = Console(theme=_THEME, stderr=True, log_path=False)


class Reporter:
    """Named logger writing styled lines to a rich Console.

    A Reporter is created once at startup and handed to components through
    the injector context; ``child`` derives a reporter for a sub-component.

    Attributes:
        name: Component name printed with each line.
        verbose: Whether debug lines are emitted.

    """

    def __init__(self, name: str = "telegraf-injector", *, target: Console | None = None, verbose: bool = False) -> None:
        """Initialize Reporter.

        Args:
            name: Component name printed with each line.
            target: Console to write to, the shared stderr console by default.
            verbose: Whether debug lines are emitted.

        """
        self.name = name
        self.verbose = verbose
        self._console = target if target is not None else console

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Reporter(name={self.name!r}, verbose={self.verbose!r})"

    def child(self, name: str) -> "Reporter":
        """Return a reporter for a sub-component sharing this reporter's console."""
        return Reporter(f"{self.name}.{name}", target=self._console, verbose=self.verbose)

    def _emit(self, symbol: str, message: str) -> None:
        # messages carry TOML headers and pod data, never markup
        self._console.log(f"{symbol} [muted]{self.name}[/muted] {escape(message)}")

    def debug(self, message: str) -> None:
        """Print a debug message when verbose output is enabled."""
        if self.verbose:
            self._emit("[muted]•[/muted]", message)

    def info(self, message: str) -> None:
        """Print an informational message."""
        self._emit("[info]ℹ[/info]", message)

    def success(self, message: str) -> None:
        """Print a success message."""
        self._emit("[success]✓[/success]", message)

    def warning(self, message: str) -> None:
        """Print a warning message."""
        self._emit("[warning]⚠[/warning]", message)

    def error(self, message: str, err: BaseException | None = None) -> None:
        """Print an error message.

        Args:
            message: The message to display.
            err: Optional exception whose text is appended to the message.

        """
        if err is not None:
            message = f"{message}: {err}"
        self._emit("[error]✗[/error]", message)


def summary_panel(title: str, items: dict[str, str]) -> None:
    """Print a summary panel with key-value pairs.

    Args:
        title: Title for the panel.
        items: Dictionary of label -> value pairs to display.

    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(style="cyan")

    for label, value in items.items():
        table.add_row(f"{label}:", value)

    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style="green"))
