import os

# Set required environment variables for testing BEFORE any automerger imports
# This must happen before settings are loaded
os.environ.setdefault("GITHUB_TOKEN", "test_token")
os.environ.setdefault("WEBHOOK_PROCESS_IN_BACKGROUND", "false")

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from automerger.conf.automerge import MergeMethod, MergeOn
from automerger.services.github.client import GitHubAPIClient
from automerger.services.github.models import (
    AutoMergeConfiguration,
    CheckRun,
    CheckRunConclusion,
    CheckRunStatus,
    CheckSuite,
    Head,
    Label,
    PullRequest,
    Repository,
    Review,
    ReviewState,
    Status,
    StatusState,
)
from automerger.services.retry import RetryPolicy
from automerger.www import app

# No waiting between polling attempts in tests
FAST_RETRY = RetryPolicy(attempts=3, min_delay=0, max_delay=0, randomize=False)


def make_pull_request(**kwargs) -> PullRequest:
    """Build a pull request snapshot with sensible defaults."""
    values = {
        "repository": Repository(owner="octo", name="widgets"),
        "number": 7,
        "url": "https://github.com/octo/widgets/pull/7",
        "state": "open",
        "author": "alice",
        "title": "Add widget",
        "head": Head(sha="abc1234def"),
    }
    values.update(kwargs)
    return PullRequest(**values)


def make_configuration(**kwargs) -> AutoMergeConfiguration:
    values = {
        "merge_on": MergeOn.ON_APPROVE,
        "merge_method": MergeMethod.MERGE,
        "dry_run": False,
        "retry": FAST_RETRY,
    }
    values.update(kwargs)
    return AutoMergeConfiguration(**values)


def approved(*logins: str) -> list[Review]:
    return [Review(state=ReviewState.APPROVED, by=[login]) for login in logins]


def passing_head(sha: str = "abc1234def") -> Head:
    """A head with one successful status and one successful check run."""
    return Head(
        sha=sha,
        statuses=[Status(context="ci/lint", state=StatusState.SUCCESS)],
        check_suites=[
            CheckSuite(
                app_slug="github-actions",
                check_runs=[
                    CheckRun(
                        name="build",
                        check_run_id=1,
                        status=CheckRunStatus.COMPLETED,
                        conclusion=CheckRunConclusion.SUCCESS,
                    )
                ],
            )
        ],
    )


@pytest.fixture
def fastapi_client() -> TestClient:
    """Fixture to create a FastAPI test client."""
    return TestClient(app)


@pytest.fixture
def mock_client() -> GitHubAPIClient:
    """Create a test GitHub API client for mocking."""
    return GitHubAPIClient(token=SecretStr("test_token"))


@pytest.fixture
def configuration() -> AutoMergeConfiguration:
    return make_configuration()


@pytest.fixture
def tagged_pr() -> PullRequest:
    """Open pull request labelled for merge on approval, approved and green."""
    return make_pull_request(
        labels=[Label(name="auto-merge:on-approve")],
        reviews=approved("bob"),
        head=passing_head(),
    )


@pytest.fixture
def make_pr():
    """Factory fixture building pull request snapshots."""
    return make_pull_request


@pytest.fixture
def make_config():
    """Factory fixture building auto-merge configurations without polling delays."""
    return make_configuration


@pytest.fixture
def green_head() -> Head:
    return passing_head()
