"""Converging the auto-merge labels of a repository and newly opened pull requests."""

from logging import getLogger
from typing import Any

import httpx

from automerger.conf.automerge import MergeMethod

from .github.client import GitHubAPIClient
from .github.models import AutoMergeConfiguration, PullRequest
from .results import HandlerStatus, failure, success
from .tags import (
    AUTO_MERGE_METHOD_LABEL,
    AUTO_MERGE_POLICIES,
    AUTO_MERGE_POLICY_DESCRIPTIONS,
    MERGE_METHOD_DESCRIPTIONS,
    MERGE_METHODS,
    merge_method_label,
)

logger = getLogger(__name__)

POLICY_LABEL_COLOR = "277D7D"
METHOD_LABEL_COLOR = "1C334B"


def allowed_merge_methods(repository: dict[str, Any]) -> dict[MergeMethod, bool]:
    """Map each merge method to whether the repository settings allow it."""
    return {
        MergeMethod.MERGE: bool(repository.get("allow_merge_commit", True)),
        MergeMethod.REBASE: bool(repository.get("allow_rebase_merge", True)),
        MergeMethod.SQUASH: bool(repository.get("allow_squash_merge", True)),
    }


async def ensure_label(
    client: GitHubAPIClient, owner: str, repo: str, name: str, color: str, description: str | None = None
) -> None:
    """Create a repository label unless it already exists."""
    try:
        await client.get_label(owner, repo, name)
    except httpx.HTTPStatusError as e:
        if e.response.status_code != 404:
            raise
        logger.info(f"Creating label '{name}' in {owner}/{repo}")
        await client.create_label(owner, repo, name, color, description)


async def remove_label(client: GitHubAPIClient, owner: str, repo: str, name: str) -> None:
    """Delete a repository label, ignoring labels that do not exist."""
    try:
        await client.delete_label(owner, repo, name)
        logger.info(f"Removed label '{name}' from {owner}/{repo}")
    except httpx.HTTPStatusError as e:
        if e.response.status_code != 404:
            raise
        logger.debug(f"Label '{name}' not present in {owner}/{repo}")


async def converge_repository_labels(
    client: GitHubAPIClient, owner: str, repo: str, allowed: dict[MergeMethod, bool]
) -> None:
    """Make the repository's auto-merge labels match its merge settings.

    Policy labels always exist. A method label exists only if the repository
    allows that merge method.
    """
    for policy, (label, _) in AUTO_MERGE_POLICIES.items():
        await ensure_label(client, owner, repo, label, POLICY_LABEL_COLOR, AUTO_MERGE_POLICY_DESCRIPTIONS[policy])

    for method in MERGE_METHODS:
        name = merge_method_label(method)
        if allowed[method]:
            await ensure_label(client, owner, repo, name, METHOD_LABEL_COLOR, MERGE_METHOD_DESCRIPTIONS[method])
        else:
            await remove_label(client, owner, repo, name)


async def converge_auto_merge_labels(
    pr: PullRequest,
    action: str,
    client: GitHubAPIClient,
    configuration: AutoMergeConfiguration,
) -> HandlerStatus:
    """Label a newly opened pull request with the configured policy and method.

    The repository's label set is converged first. Existing auto-merge labels
    on the pull request are left alone.

    Args:
        pr: Pull request snapshot
        action: Webhook action that triggered the call (only "opened" is handled)
        client: Authenticated GitHub API client
        configuration: Auto-merge configuration

    Returns:
        HandlerStatus; code 1 when the configured merge method is disabled on the repository
    """
    owner, repo = pr.repository.owner, pr.repository.name

    if action != "opened":
        logger.info(f"Pull request {pr.slug} action not opened. Ignoring...")
        return success(f"Pull request {pr.link} action not opened. Ignoring...").hidden()

    repository = await client.get_repository(owner, repo)
    allowed = allowed_merge_methods(repository)

    logger.info(f"Converging auto-merge labels of {owner}/{repo} based on repository's merge configuration")
    await converge_repository_labels(client, owner, repo, allowed)

    labels: list[str] = []
    if not any(name.startswith("auto-merge:") for name in pr.label_names):
        labels.append(AUTO_MERGE_POLICIES[configuration.merge_on][0])

    if not any(name.startswith(AUTO_MERGE_METHOD_LABEL) for name in pr.label_names):
        method = configuration.merge_method
        if not allowed[method]:
            logger.warning(
                f"Pull request {pr.slug} can't be labelled with auto-merge labels because configured merge "
                f"method '{method.value}' is not available on this repository"
            )
            return failure(f"Pull request {pr.link} can't be labelled with auto-merge labels")
        labels.append(merge_method_label(method))

    if not labels:
        return success(
            f"Pull request {pr.link} not labelled with auto-merge labels because labels already present"
        ).hidden()

    await client.add_labels(owner, repo, pr.number, labels)
    logger.info(f"Pull request {pr.slug} labelled with: {', '.join(labels)}")
    return success(f"Pull request {pr.link} labelled with auto-merge labels")
