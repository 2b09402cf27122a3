"""Merging of pull requests that passed every auto-merge rule."""

from dataclasses import dataclass
from logging import getLogger
from typing import Any

from automerger.conf.automerge import MergeMethod

from .checks import aggregate_checks_and_statuses, successful_checks
from .github.client import GitHubAPIClient
from .github.models import AutoMergeConfiguration, PullRequest, ReviewState
from .results import HandlerStatus, success
from .retry import Exhausted, poll_until
from .tags import requested_merge_method

logger = getLogger(__name__)


@dataclass(frozen=True)
class CommitDetails:
    title: str | None
    message: str


def merge_method(pr: PullRequest, configuration: AutoMergeConfiguration) -> MergeMethod:
    """Pick the merge method: the pull request's method label wins over configuration."""
    return requested_merge_method(pr) or configuration.merge_method or MergeMethod.MERGE


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def review_comment(pr: PullRequest) -> str:
    """Summarize the approving reviews, e.g. ``2 approved reviews by @alice, @bob``."""
    approved = [review for review in pr.reviews if review.state == ReviewState.APPROVED]
    if not approved:
        return "No reviews"

    reviewers = ", ".join(f"@{login}" for review in approved for login in review.by)
    return f"{len(approved)} approved {_plural(len(approved), 'review', 'reviews')} by {reviewers}"


def status_comment(pr: PullRequest, configuration: AutoMergeConfiguration) -> str:
    """Summarize the successful checks, counting only required checks when configured."""
    checks = aggregate_checks_and_statuses(pr)
    if not checks:
        return "No checks"

    if configuration.checks:
        count = len(configuration.checks)
    else:
        count = len(successful_checks(checks))
    return f"{count} successful {_plural(count, 'check', 'checks')}"


def merge_summary(pr: PullRequest, configuration: AutoMergeConfiguration, protection: dict[str, Any] | None) -> str:
    """Markdown bullet list explaining why the pull request qualified."""
    lines = []
    if protection is not None:
        lines.append(f"* Branch protection rule for branch `{pr.base_branch_name}` passed")
    lines.append(f"* {review_comment(pr)}")
    lines.append(f"* {status_comment(pr, configuration)}")
    return "\n".join(lines)


def commit_details(
    method: MergeMethod,
    pr: PullRequest,
    configuration: AutoMergeConfiguration,
    protection: dict[str, Any] | None,
) -> CommitDetails:
    """Compose the merge commit title and message for a merge method.

    Rebase merges have no merge commit, so GitHub ignores title and message.
    """
    title: str | None = None
    message = ""
    if method is MergeMethod.MERGE:
        title = f"Auto-merge pull request #{pr.number} from {pr.repository.full_name}"
        message = pr.title
    elif method is MergeMethod.SQUASH:
        title = f"{pr.title} (#{pr.number})"
        message = "\n".join(f" * {commit.message}" for commit in pr.commits)

    message = f"{message}\n\nPull request auto merged:\n\n{merge_summary(pr, configuration, protection)}".lstrip("\n")
    return CommitDetails(title=title, message=message)


def dry_run_comment_body(summary: str, configuration: AutoMergeConfiguration) -> str:
    if configuration.configuration_url:
        instructions = (
            "To enable auto-merge on this pull request disable the dry-run mode in the "
            f"[configuration]({configuration.configuration_url})."
        )
    else:
        instructions = "To enable auto-merge on this pull request disable the dry-run mode (`AUTOMERGE_DRY_RUN=false`)."
    return f"Pull request ready to be auto-merged:\n\n{summary}\n\n{instructions}\n{configuration.marker}"


async def upsert_marker_comment(
    pr: PullRequest, client: GitHubAPIClient, body: str, configuration: AutoMergeConfiguration
) -> None:
    """Update the comment carrying the marker, or create it if there is none."""
    owner, repo = pr.repository.owner, pr.repository.name
    comments = await client.list_issue_comments(owner, repo, pr.number)
    existing = next((c for c in comments if configuration.marker in (c.get("body") or "")), None)

    if existing is not None:
        await client.update_issue_comment(owner, repo, existing["id"], body)
        logger.info(f"Pull request {pr.slug} dry-run comment {existing['id']} updated")
    else:
        await client.create_issue_comment(owner, repo, pr.number, body)
        logger.info(f"Pull request {pr.slug} dry-run comment created")


async def merge_pull_request(
    pr: PullRequest,
    client: GitHubAPIClient,
    configuration: AutoMergeConfiguration,
    protection: dict[str, Any] | None = None,
) -> HandlerStatus:
    """Merge a pull request once GitHub reports whether it is mergeable.

    In dry-run mode a preview comment is written instead of merging. Errors are
    reported as a "can't be merged at this time" result and never raised.

    Args:
        pr: Pull request snapshot (labels already refreshed)
        client: Authenticated GitHub API client
        configuration: Auto-merge configuration
        protection: Branch protection rule that passed, if any

    Returns:
        HandlerStatus describing the outcome
    """
    owner, repo = pr.repository.owner, pr.repository.name
    not_mergeable = success(f"Pull request {pr.link} not auto-merged because it can't be merged at this time")

    async def fetch_mergeable() -> bool | None:
        data = await client.get_pull_request(owner, repo, pr.number)
        mergeable: bool | None = data.get("mergeable")
        logger.info(f"GitHub indicates that pull request {pr.slug} is mergeable: {mergeable}")
        return mergeable

    try:
        result = await poll_until(
            fetch_mergeable,
            lambda mergeable: mergeable is not None,
            policy=configuration.retry,
            description=f"mergeable of {pr.slug}",
        )
        if isinstance(result, Exhausted) or not result.value:
            logger.info(f"Pull request {pr.slug} not auto-merged because it can't be merged at this time")
            return not_mergeable

        method = merge_method(pr, configuration)
        summary = merge_summary(pr, configuration, protection)

        if configuration.dry_run:
            await upsert_marker_comment(pr, client, dry_run_comment_body(summary, configuration), configuration)
            return success(f"Pull request {pr.link} ready to be auto-merged")

        details = commit_details(method, pr, configuration, protection)
        await client.merge_pull_request(
            owner,
            repo,
            pr.number,
            merge_method=method.value,
            commit_title=details.title,
            commit_message=details.message,
        )
        logger.info(f"Pull request {pr.slug} auto-merged with method '{method.value}'")

    except Exception:
        logger.warning(f"Pull request {pr.slug} not auto-merged because of an error", exc_info=True)
        return not_mergeable

    try:
        await client.create_issue_comment(
            owner, repo, pr.number, f"Pull request auto merged:\n\n{summary}\n{configuration.marker}"
        )
        logger.info(f"Pull request {pr.slug} auto-merge comment created")
    except Exception:
        logger.warning(f"Failed to comment on auto-merged pull request {pr.slug}", exc_info=True)

    return success(f"Pull request {pr.link} auto-merged")
