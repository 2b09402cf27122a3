import asyncio
from collections.abc import Callable
from functools import wraps
from logging import getLogger
from typing import Any

import typer
from rich.console import Console

from .conf.automerge import MergeMethod
from .services.checks import aggregate_checks_and_statuses
from .services.formatter import format_check_list, format_status, show_progress
from .services.github.auth import GitHubClient
from .services.github.models import AutoMergeConfiguration
from .services.github.pullrequests import PullRequestLoader
from .services.labels import converge_auto_merge_labels
from .services.orchestrator import execute_auto_merge, execute_auto_merge_for_pull_requests
from .services.results import HandlerStatus
from .settings import settings

app = typer.Typer()
logger = getLogger(__name__)
console = Console()

TOKEN_OPTION = typer.Option(None, "--token", help="GitHub token (overrides env var)")
DRY_RUN_OPTION = typer.Option(
    None,
    "--dry-run/--no-dry-run",
    help="Leave a preview comment instead of merging (default from AUTOMERGE_DRY_RUN)",
)
MERGE_METHOD_OPTION = typer.Option(
    None, "--merge-method", help="Default merge method when the pull request has no method label"
)
AUTHOR_OPTION = typer.Option(
    None, "--author", help="Only auto-merge pull requests by this user. Can be specified multiple times."
)
CHECK_OPTION = typer.Option(None, "--check", help="Require this check to succeed. Can be specified multiple times.")


def syncify(f: Callable[..., Any]) -> Callable[..., Any]:
    """This simple decorator converts an async function into a sync function,
    allowing it to work with Typer.
    """

    @wraps(f)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return asyncio.run(f(*args, **kwargs))

    return wrapper


@app.command(help=f"Display the current installed version of {settings.project_name}.")
def version() -> None:
    from . import __version__

    typer.echo(f"{settings.project_name} - {__version__}")


@app.command(name="merge", help="Evaluate a pull request and auto-merge it if every rule passes.")
@syncify
async def merge_command(
    repository: str = typer.Argument(..., help="Repository in owner/name form"),
    number: int = typer.Argument(..., help="Pull request number"),
    token: str | None = TOKEN_OPTION,
    dry_run: bool | None = DRY_RUN_OPTION,
    merge_method: MergeMethod | None = MERGE_METHOD_OPTION,
    author: list[str] | None = AUTHOR_OPTION,
    check: list[str] | None = CHECK_OPTION,
) -> None:
    """Evaluate a pull request and auto-merge it if every rule passes."""
    try:
        owner, repo = _parse_repository(repository)
        configuration = _build_configuration(dry_run, merge_method, author, check)

        async with GitHubClient(token_override=token).get_authenticated_client() as github_client:
            with show_progress(f"Loading {owner}/{repo}#{number}..."):
                pr = await PullRequestLoader(github_client).load(owner, repo, number)
            with show_progress(f"Evaluating {pr.slug}..."):
                status = await execute_auto_merge(pr, github_client, configuration)

    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error during auto-merge")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _finish(status)


@app.command(name="commit", help="Evaluate every open pull request whose head is the given commit.")
@syncify
async def commit_command(
    repository: str = typer.Argument(..., help="Repository in owner/name form"),
    sha: str = typer.Argument(..., help="Commit SHA"),
    token: str | None = TOKEN_OPTION,
    dry_run: bool | None = DRY_RUN_OPTION,
    merge_method: MergeMethod | None = MERGE_METHOD_OPTION,
    author: list[str] | None = AUTHOR_OPTION,
    check: list[str] | None = CHECK_OPTION,
) -> None:
    """Evaluate every open pull request whose head is the given commit."""
    try:
        owner, repo = _parse_repository(repository)
        configuration = _build_configuration(dry_run, merge_method, author, check)

        async with GitHubClient(token_override=token).get_authenticated_client() as github_client:
            with show_progress(f"Loading pull requests for {sha[:7]}..."):
                prs = await PullRequestLoader(github_client).load_for_commit(owner, repo, sha)
            with show_progress(f"Evaluating {len(prs)} pull requests..."):
                status = await execute_auto_merge_for_pull_requests(prs, github_client, configuration)

    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error during auto-merge")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _finish(status)


@app.command(name="labels", help="Create the auto-merge labels and label a pull request with the defaults.")
@syncify
async def labels_command(
    repository: str = typer.Argument(..., help="Repository in owner/name form"),
    number: int = typer.Argument(..., help="Pull request number"),
    token: str | None = TOKEN_OPTION,
    merge_method: MergeMethod | None = MERGE_METHOD_OPTION,
) -> None:
    """Create the auto-merge labels and label a pull request with the defaults."""
    try:
        owner, repo = _parse_repository(repository)
        configuration = _build_configuration(None, merge_method, None, None)

        async with GitHubClient(token_override=token).get_authenticated_client() as github_client:
            with show_progress(f"Converging labels of {owner}/{repo}..."):
                pr = await PullRequestLoader(github_client).load(owner, repo, number)
                status = await converge_auto_merge_labels(pr, "opened", github_client, configuration)

    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error while converging labels")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    _finish(status)


@app.command(name="checks", help="Show the statuses and check runs auto-merge would evaluate.")
@syncify
async def checks_command(
    repository: str = typer.Argument(..., help="Repository in owner/name form"),
    number: int = typer.Argument(..., help="Pull request number"),
    token: str | None = TOKEN_OPTION,
    check: list[str] | None = CHECK_OPTION,
) -> None:
    """Show the statuses and check runs auto-merge would evaluate."""
    try:
        owner, repo = _parse_repository(repository)
        configuration = _build_configuration(None, None, None, check)

        async with GitHubClient(token_override=token).get_authenticated_client() as github_client:
            with show_progress(f"Loading {owner}/{repo}#{number}..."):
                pr = await PullRequestLoader(github_client).load(owner, repo, number)

    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except Exception as e:
        logger.exception("Unexpected error while loading checks")
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    format_check_list(aggregate_checks_and_statuses(pr), required=configuration.checks, console=console)


def _finish(status: HandlerStatus) -> None:
    format_status(status, console=console)
    if status.code != 0:
        raise typer.Exit(status.code)


def _parse_repository(repository: str) -> tuple[str, str]:
    """Split an ``owner/name`` repository argument.

    Raises:
        ValueError: If the argument is not in owner/name form
    """
    parts = repository.strip().split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid repository: {repository}. Expected format: owner/name")
    return parts[0], parts[1]


def _build_configuration(
    dry_run: bool | None,
    merge_method: MergeMethod | None,
    authors: list[str] | None,
    checks: list[str] | None,
) -> AutoMergeConfiguration:
    """Build the configuration from settings, applying command line overrides."""
    return settings.to_configuration(
        dry_run=dry_run,
        merge_method=merge_method,
        authors=authors or None,
        checks=checks or None,
    )


if __name__ == "__main__":
    app()
