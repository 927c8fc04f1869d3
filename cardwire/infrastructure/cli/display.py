import logging
from typing import Any, Optional, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cardwire.domain.interfaces.user_interface import UserInterface

logger = logging.getLogger(__name__)


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output.

    Results go to stdout; errors and warnings go to stderr so piped output
    stays clean.
    """

    def __init__(self, console: Optional[Console] = None, error_console: Optional[Console] = None):
        """Initializes the rich Consoles."""
        self._console = console or Console()
        self._error_console = error_console or Console(stderr=True)

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_json(self, data: Any) -> None:
        self.console.print_json(data=data, default=str)

    def display_table(self, title: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> None:
        table = Table(title=title, box=ROUNDED, border_style="cyan", padding=(0, 1))
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*(str(cell) for cell in row))
        if not rows:
            logger.debug(f"Table '{title}' has no rows")
        self.console.print(table)

    def display_error(self, error_message: str, details: Optional[Any] = None) -> None:
        """Displays an error message in a distinct style.

        Args:
            error_message: The error message to display.
            details: Optional structured details (e.g. validation errors).
        """
        body = Text(error_message, style="white")
        if details:
            body.append(f"\n{details}", style="dim")
        self._error_console.print(Panel(
            body,
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        ))

    def display_warning(self, warning_message: str) -> None:
        logger.debug(f"Display warning: {warning_message}")
        self._error_console.print(Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        ))

    def display_info(self, info_message: str) -> None:
        self.console.print(Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        ))
