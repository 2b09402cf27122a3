"""Normalization of commit statuses and check runs into one list of checks."""

from .github.models import Check, CheckRun, CheckRunConclusion, CheckRunStatus, PullRequest, StatusState

SUCCESSFUL_CONCLUSIONS = {CheckRunConclusion.SUCCESS, CheckRunConclusion.NEUTRAL, CheckRunConclusion.SKIPPED}


def check_run_state(run: CheckRun) -> StatusState:
    """Map a check run's status and conclusion onto a status state.

    Runs that are not completed are pending. Completed runs without a
    conclusion count as successful.
    """
    if run.status is not CheckRunStatus.COMPLETED:
        return StatusState.PENDING
    if run.conclusion is None or run.conclusion in SUCCESSFUL_CONCLUSIONS:
        return StatusState.SUCCESS
    return StatusState.FAILURE


def latest_check_runs(runs: list[CheckRun]) -> list[CheckRun]:
    """Keep only the newest run per name, in the order names were first seen.

    Reruns of a check share its name; the highest ``check_run_id`` wins.
    """
    latest: dict[str, CheckRun] = {}
    for run in runs:
        current = latest.get(run.name)
        if current is None or run.check_run_id > current.check_run_id:
            latest[run.name] = run
    return list(latest.values())


def aggregate_checks_and_statuses(pr: PullRequest) -> list[Check]:
    """Build the list of checks for the pull request head.

    Statuses come first in their original order, followed by one entry per
    distinct check run name of each check suite. The list is not sorted.

    Args:
        pr: Pull request snapshot

    Returns:
        List of normalized checks (empty when the head has no signals)
    """
    if pr.head is None:
        return []

    checks: list[Check] = [
        Check(
            name=status.context,
            state=status.state,
            description=status.description,
            url=status.target_url,
        )
        for status in pr.head.statuses
    ]

    for suite in pr.head.check_suites:
        for run in latest_check_runs(suite.check_runs):
            checks.append(
                Check(
                    name=run.name,
                    state=check_run_state(run),
                    description=run.output_title,
                    url=run.html_url,
                    details_url=run.details_url,
                    app=suite.app_slug,
                )
            )

    return checks


def successful_checks(checks: list[Check]) -> list[Check]:
    return [check for check in checks if check.state == StatusState.SUCCESS]
