"""Per pull request auto-merge processing."""

import dataclasses
from logging import getLogger

import httpx

from .executor import merge_pull_request
from .github.client import GitHubAPIClient
from .github.models import AutoMergeConfiguration, Label, PullRequest
from .results import HandlerStatus, combine, success
from .rules import evaluate_rules
from .tags import is_pr_auto_merge_enabled

logger = getLogger(__name__)


async def refresh_labels(pr: PullRequest, client: GitHubAPIClient) -> PullRequest:
    """Return a copy of the snapshot carrying the labels currently on GitHub.

    Event payloads can be delivered before label changes propagate. If the
    lookup fails the payload labels are kept.
    """
    try:
        data = await client.get_pull_request(pr.repository.owner, pr.repository.name, pr.number)
    except httpx.HTTPError as e:
        logger.warning(f"Could not refresh labels of {pr.slug}, using event labels: {e}")
        return pr

    labels = data.get("labels")
    if labels is None:
        return pr
    return dataclasses.replace(pr, labels=[Label(name=label["name"]) for label in labels])


async def execute_auto_merge(
    pr: PullRequest | None,
    client: GitHubAPIClient,
    configuration: AutoMergeConfiguration,
) -> HandlerStatus:
    """Decide whether a pull request should be auto-merged and merge it.

    Closed pull requests, pull requests by authors outside the configured
    allow-list and pull requests without an auto-merge label or marker are
    ignored with a hidden result. Failing rules produce a visible result naming
    every failed rule.

    Args:
        pr: Pull request snapshot from the event (None if the event had none)
        client: Authenticated GitHub API client scoped to the repository
        configuration: Auto-merge configuration

    Returns:
        HandlerStatus describing the outcome
    """
    if pr is None:
        return success("Pull request missing in incoming event").hidden()

    if pr.state != "open":
        logger.info(f"Pull request auto-merge ignoring closed {pr.slug}")
        return success(f"Pull request auto-merge ignoring closed {pr.link}").hidden()

    if configuration.authors and pr.author not in configuration.authors:
        logger.info(f"Pull request {pr.slug} ignored because not authored by any of the configured users")
        return success(
            f"Pull request {pr.link} ignored because not authored by any of the configured users"
        ).hidden()

    pr = await refresh_labels(pr, client)

    if not is_pr_auto_merge_enabled(pr):
        logger.info(f"Pull request auto-merge not requested for {pr.slug}")
        return success(f"Pull request {pr.link} not auto-merged").hidden()

    logger.info(f"Starting auto-merge processing for pull request {pr.slug} with labels: {', '.join(pr.label_names)}")

    evaluation = await evaluate_rules(pr, client, configuration)
    if not evaluation.passed:
        failed = ", ".join(evaluation.failed_rule_names)
        logger.info(f"Pull request auto-merge not enabled for {pr.slug} because following rules failed: {failed}")
        return success(f"Pull request auto-merge not enabled for {pr.link} because following rules failed: {failed}")

    logger.info(f"Pull request auto-merge enabled for {pr.slug}. Attempting to merge...")
    return await merge_pull_request(pr, client, configuration, protection=evaluation.protection)


async def execute_auto_merge_for_pull_requests(
    prs: list[PullRequest],
    client: GitHubAPIClient,
    configuration: AutoMergeConfiguration,
) -> HandlerStatus:
    """Process the pull requests affected by a status change one after another.

    Args:
        prs: Pull request snapshots for the commit that changed
        client: Authenticated GitHub API client
        configuration: Auto-merge configuration

    Returns:
        Combined HandlerStatus (code 1 if any pull request failed)
    """
    results = []
    for pr in prs:
        results.append(await execute_auto_merge(pr, client, configuration))
    return combine(results)
