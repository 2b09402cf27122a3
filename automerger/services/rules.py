"""Rules a pull request has to pass before it is auto-merged."""

from dataclasses import dataclass, field
from enum import Enum
from logging import getLogger
from typing import Any

import httpx

from automerger.conf.automerge import MergeOn

from .checks import aggregate_checks_and_statuses
from .github.client import GitHubAPIClient
from .github.models import AutoMergeConfiguration, Check, PullRequest, ReviewState, StatusState
from .retry import Exhausted, poll_until
from .tags import is_pr_tagged_for

logger = getLogger(__name__)

# mergeable_state values that allow a merge (has_hooks is GitHub Enterprise only)
MERGEABLE_STATES = {"clean", "unstable", "has_hooks"}


class AutoMergeRule(str, Enum):
    """The rules, named as they appear in diagnostics."""

    BRANCH_PROTECTION = "branch protection rule"
    APPROVED_REVIEWS = "approved reviews"
    CHECKS = "checks and statuses"


@dataclass(frozen=True)
class RuleOutcome:
    allowed: bool
    protection: dict[str, Any] | None = None


@dataclass
class RuleEvaluation:
    """Result of evaluating every selected rule for a pull request."""

    rules: list[AutoMergeRule] = field(default_factory=list)
    failed_rules: list[AutoMergeRule] = field(default_factory=list)
    protection: dict[str, Any] | None = None

    @property
    def passed(self) -> bool:
        return not self.failed_rules

    @property
    def failed_rule_names(self) -> list[str]:
        return [rule.value for rule in self.failed_rules]


def select_rules(pr: PullRequest) -> list[AutoMergeRule]:
    """Pick the rules to evaluate based on the policies the pull request opted into.

    Branch protection is always evaluated. Each rule appears at most once.
    """
    rules = [AutoMergeRule.BRANCH_PROTECTION]
    if is_pr_tagged_for(pr, MergeOn.ON_APPROVE):
        rules.extend([AutoMergeRule.APPROVED_REVIEWS, AutoMergeRule.CHECKS])
    if is_pr_tagged_for(pr, MergeOn.ON_CHECK_SUCCESS):
        rules.append(AutoMergeRule.CHECKS)
    return list(dict.fromkeys(rules))


def reviews_approved(pr: PullRequest) -> bool:
    if not pr.reviews:
        return False
    return all(review.state == ReviewState.APPROVED for review in pr.reviews)


def required_checks_passed(checks: list[Check], required: list[str]) -> bool:
    """Every required check must be present and every check matching it successful."""
    for name in required:
        matching = [check for check in checks if check.matches(name)]
        if not matching or any(check.state != StatusState.SUCCESS for check in matching):
            logger.info(f"Required check '{name}' is missing or not successful")
            return False
    return True


def checks_passed(pr: PullRequest, configuration: AutoMergeConfiguration) -> bool:
    """Evaluate statuses and check runs of the pull request head.

    Without a list of required checks every present check has to succeed. A
    head without any checks only passes when the pull request is tagged for
    merging on approval, since reviews gate it instead.
    """
    checks = aggregate_checks_and_statuses(pr)
    if configuration.checks:
        return required_checks_passed(checks, configuration.checks)

    if not checks:
        return is_pr_tagged_for(pr, MergeOn.ON_APPROVE)
    return all(check.state == StatusState.SUCCESS for check in checks)


async def branch_protection_passed(
    pr: PullRequest, client: GitHubAPIClient, configuration: AutoMergeConfiguration
) -> RuleOutcome:
    """Evaluate the protection rule of the base branch.

    Without a protection rule the rule passes unless the pull request asked to
    be merged on a passing protection rule. With one, GitHub's
    ``mergeable_state`` decides once it is no longer ``unknown``.
    """
    owner, repo = pr.repository.owner, pr.repository.name
    bpr_requested = is_pr_tagged_for(pr, MergeOn.ON_BPR_SUCCESS)

    try:
        protection = await client.get_branch_protection(owner, repo, pr.base_branch_name)
    except httpx.HTTPError as e:
        logger.info(f"No branch protection available for {owner}/{repo}@{pr.base_branch_name}: {e}")
        return RuleOutcome(allowed=not bpr_requested)

    async def fetch_mergeable_state() -> str | None:
        data = await client.get_pull_request(owner, repo, pr.number)
        state: str | None = data.get("mergeable_state")
        logger.info(f"GitHub indicates that pull request {pr.slug} has mergeable_state: {state}")
        return state

    result = await poll_until(
        fetch_mergeable_state,
        lambda state: state != "unknown",
        policy=configuration.retry,
        description=f"mergeable_state of {pr.slug}",
    )
    if isinstance(result, Exhausted):
        return RuleOutcome(allowed=False, protection=protection)

    return RuleOutcome(allowed=result.value in MERGEABLE_STATES, protection=protection)


async def check_rule(
    rule: AutoMergeRule, pr: PullRequest, client: GitHubAPIClient, configuration: AutoMergeConfiguration
) -> RuleOutcome:
    """Evaluate a single rule."""
    if rule is AutoMergeRule.BRANCH_PROTECTION:
        return await branch_protection_passed(pr, client, configuration)
    if rule is AutoMergeRule.APPROVED_REVIEWS:
        return RuleOutcome(allowed=reviews_approved(pr))
    if rule is AutoMergeRule.CHECKS:
        return RuleOutcome(allowed=checks_passed(pr, configuration))
    raise ValueError(f"Unsupported rule: {rule}")


async def evaluate_rules(
    pr: PullRequest, client: GitHubAPIClient, configuration: AutoMergeConfiguration
) -> RuleEvaluation:
    """Evaluate every selected rule and collect the failures.

    Evaluation does not stop at the first failing rule so the diagnostic can
    name all of them. A rule that raises counts as failed.

    Args:
        pr: Pull request snapshot
        client: Authenticated GitHub API client
        configuration: Auto-merge configuration

    Returns:
        RuleEvaluation with the failed rules and the branch protection rule, if any
    """
    evaluation = RuleEvaluation(rules=select_rules(pr))

    for rule in evaluation.rules:
        try:
            outcome = await check_rule(rule, pr, client, configuration)
        except Exception:
            logger.exception(f"Rule '{rule.value}' raised for {pr.slug}")
            outcome = RuleOutcome(allowed=False)

        if outcome.protection is not None:
            evaluation.protection = outcome.protection
        if not outcome.allowed:
            evaluation.failed_rules.append(rule)

    return evaluation
