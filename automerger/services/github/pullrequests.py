"""Service for loading pull request snapshots from the GitHub REST API."""

from logging import getLogger
from typing import Any

from .client import GitHubAPIClient
from .models import (
    CheckRun,
    CheckRunConclusion,
    CheckRunStatus,
    CheckSuite,
    Comment,
    Commit,
    Head,
    Label,
    PullRequest,
    Repository,
    Review,
    ReviewState,
    Status,
    StatusState,
)

logger = getLogger(__name__)

# Review states that do not express a verdict and never replace an earlier one
NON_VERDICT_REVIEW_STATES = {ReviewState.COMMENTED, ReviewState.PENDING}


def parse_review_state(value: str | None) -> ReviewState:
    try:
        return ReviewState((value or "").lower())
    except ValueError:
        logger.warning(f"Unknown review state '{value}', treating it as commented")
        return ReviewState.COMMENTED


def latest_reviews(items: list[dict[str, Any]]) -> list[Review]:
    """Reduce raw reviews to the latest verdict per reviewer.

    GitHub returns every review ever submitted. A reviewer who requested
    changes and later approved only counts as approving. Comment-only
    reviews do not override an earlier verdict and dismissed reviews drop it.

    Args:
        items: Review dictionaries in chronological order

    Returns:
        One review per reviewer, in order of first verdict
    """
    latest: dict[str, Review] = {}
    for item in items:
        state = parse_review_state(item.get("state"))
        if state in NON_VERDICT_REVIEW_STATES:
            continue
        login = (item.get("user") or {}).get("login") or "ghost"
        if state is ReviewState.DISMISSED:
            latest.pop(login, None)
            continue
        latest[login] = Review(state=state, by=[login])
    return list(latest.values())


def parse_status(item: dict[str, Any]) -> Status:
    return Status(
        context=item["context"],
        state=StatusState(item["state"]),
        target_url=item.get("target_url"),
        description=item.get("description"),
    )


def parse_check_run(item: dict[str, Any]) -> CheckRun:
    return CheckRun(
        name=item["name"],
        check_run_id=int(item["id"]),
        status=_parse_check_run_status(item.get("status")),
        conclusion=_parse_conclusion(item.get("conclusion")),
        html_url=item.get("html_url"),
        output_title=(item.get("output") or {}).get("title"),
        details_url=item.get("details_url"),
    )


def _parse_check_run_status(value: str | None) -> CheckRunStatus:
    if value is None:
        return CheckRunStatus.COMPLETED
    try:
        return CheckRunStatus(value)
    except ValueError:
        # Unknown statuses are treated as not finished yet
        logger.warning(f"Unknown check run status '{value}', treating it as pending")
        return CheckRunStatus.PENDING


def _parse_conclusion(value: str | None) -> CheckRunConclusion | None:
    if value is None:
        return None
    try:
        return CheckRunConclusion(value)
    except ValueError:
        # Unknown conclusions are treated as failing by the aggregator
        logger.warning(f"Unknown check run conclusion '{value}'")
        return CheckRunConclusion.FAILURE


def parse_pull_request(data: dict[str, Any]) -> PullRequest:
    """Build a pull request snapshot from a REST or webhook pull request object.

    Reviews, comments, commits and head signals are left empty; use
    ``PullRequestLoader`` to populate them.

    Args:
        data: Pull request dictionary as returned by ``GET /repos/{owner}/{repo}/pulls/{number}``

    Returns:
        PullRequest snapshot

    Raises:
        KeyError: If required fields are missing
    """
    base_repo = data["base"]["repo"]
    return PullRequest(
        repository=Repository(owner=base_repo["owner"]["login"], name=base_repo["name"]),
        number=data["number"],
        url=data.get("html_url", ""),
        state=data.get("state", "open"),
        author=(data.get("user") or {}).get("login", ""),
        title=data.get("title") or "",
        body=data.get("body"),
        base_branch_name=data["base"]["ref"],
        head=Head(sha=data["head"]["sha"]),
        labels=[Label(name=label["name"]) for label in data.get("labels") or []],
    )


class PullRequestLoader:
    """Loads complete pull request snapshots for auto-merge evaluation."""

    def __init__(self, github_client: GitHubAPIClient) -> None:
        """Initialize the loader.

        Args:
            github_client: Authenticated GitHub API client
        """
        self.github_client = github_client

    async def load(self, owner: str, repo: str, number: int) -> PullRequest:
        """Load a pull request with its reviews, comments, commits and checks.

        Args:
            owner: Repository owner
            repo: Repository name
            number: Pull request number

        Returns:
            PullRequest snapshot

        Raises:
            httpx.HTTPStatusError: If a GitHub API request fails
        """
        logger.debug(f"Loading pull request {owner}/{repo}#{number}")
        data = await self.github_client.get_pull_request(owner, repo, number)
        pr = parse_pull_request(data)

        reviews = await self.github_client.list_pull_request_reviews(owner, repo, number)
        pr.reviews = latest_reviews(reviews)

        comments = await self.github_client.list_issue_comments(owner, repo, number)
        pr.comments = [
            Comment(body=item.get("body"), id=item.get("id"), author=(item.get("user") or {}).get("login"))
            for item in comments
        ]

        commits = await self.github_client.list_pull_request_commits(owner, repo, number)
        pr.commits = [
            Commit(message=(item.get("commit") or {}).get("message"), sha=item.get("sha")) for item in commits
        ]

        if pr.head is not None:
            pr.head = await self.load_head(owner, repo, pr.head.sha)

        logger.info(
            f"Loaded {pr.slug}: {len(pr.reviews)} reviews, {len(pr.comments)} comments, {len(pr.commits)} commits"
        )
        return pr

    async def load_head(self, owner: str, repo: str, sha: str) -> Head:
        """Load legacy statuses and check suites for a commit."""
        combined = await self.github_client.get_combined_status(owner, repo, sha)
        statuses = [parse_status(item) for item in combined.get("statuses", [])]

        check_suites: list[CheckSuite] = []
        for suite in await self.github_client.list_check_suites(owner, repo, sha):
            runs = await self.github_client.list_check_runs(owner, repo, suite["id"])
            if not runs:
                # Suites without runs are created for every installed app and carry no signal
                continue
            check_suites.append(
                CheckSuite(
                    app_slug=(suite.get("app") or {}).get("slug"),
                    check_runs=[parse_check_run(run) for run in runs],
                )
            )

        return Head(sha=sha, statuses=statuses, check_suites=check_suites)

    async def load_for_commit(self, owner: str, repo: str, sha: str) -> list[PullRequest]:
        """Load every open pull request whose head is the given commit.

        Args:
            owner: Repository owner
            repo: Repository name
            sha: Commit SHA reported by a status or check event

        Returns:
            List of PullRequest snapshots
        """
        items = await self.github_client.list_pull_requests_for_commit(owner, repo, sha)
        numbers = [
            item["number"]
            for item in items
            if item.get("state") == "open" and (item.get("head") or {}).get("sha", sha) == sha
        ]
        logger.info(f"Found {len(numbers)} open pull requests for commit {sha[:7]} in {owner}/{repo}")
        return [await self.load(owner, repo, number) for number in numbers]
