from logging import getLogger

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from .github.models import Check, StatusState
from .results import HandlerStatus

logger = getLogger(__name__)

STATE_STYLES = {
    StatusState.SUCCESS: "[green]success[/green]",
    StatusState.PENDING: "[yellow]pending[/yellow]",
    StatusState.FAILURE: "[red]failure[/red]",
    StatusState.ERROR: "[red]error[/red]",
}


def format_status(status: HandlerStatus, console: Console | None = None) -> None:
    """Display the outcome of an auto-merge run.

    Args:
        status: Result to display
        console: Console to print to (default: a new stdout console)
    """
    console = console or Console()

    if status.code != 0:
        border_style, title = "red", "Failed"
    elif status.is_hidden:
        border_style, title = "dim", "Nothing to do"
    else:
        border_style, title = "green", "Done"

    console.print(Panel(status.reason or "-", title=title, border_style=border_style))


def format_check_list(checks: list[Check], required: list[str] | None = None, console: Console | None = None) -> None:
    """Display aggregated checks as a table, marking required ones.

    Args:
        checks: Aggregated checks of a pull request head
        required: Names of required checks (default: none)
        console: Console to print to (default: a new stdout console)
    """
    console = console or Console()
    required = required or []

    if not checks:
        console.print(
            Panel(
                "[yellow]No statuses or check runs found for this pull request.[/yellow]",
                title="No Checks",
                border_style="yellow",
            )
        )
        return

    table = Table(title="Checks", show_header=True, header_style="bold magenta")
    table.add_column("Name", style="white")
    table.add_column("App", style="dim", no_wrap=True)
    table.add_column("State", style="white", no_wrap=True)
    table.add_column("Required", style="cyan", no_wrap=True)
    table.add_column("Description", style="dim")

    for check in checks:
        is_required = any(check.matches(name) for name in required)
        table.add_row(
            check.name,
            check.app or "-",
            STATE_STYLES.get(check.state, check.state.value),
            "yes" if is_required else "",
            check.description or "",
        )

    console.print(table)

    missing = [name for name in required if not any(check.matches(name) for check in checks)]
    if missing:
        console.print(f"\n[bold red]Missing required checks:[/bold red] {', '.join(missing)}")


def show_progress(message: str) -> Progress:
    """Create and return a progress spinner.

    Args:
        message: Message to display with spinner

    Returns:
        Progress context manager
    """
    progress = Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        transient=True,
    )
    progress.add_task(description=message, total=None)
    return progress
