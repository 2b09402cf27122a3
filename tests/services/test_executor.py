"""Tests for merging pull requests."""

from unittest.mock import AsyncMock

import httpx
import pytest

from automerger.conf.automerge import MergeMethod
from automerger.services.executor import (
    commit_details,
    dry_run_comment_body,
    merge_method,
    merge_pull_request,
    merge_summary,
    review_comment,
    status_comment,
)
from automerger.services.github.models import Commit, Head, Label, Review, ReviewState

MARKER = "<!-- [automerger:auto-merge-comment] -->"


def mergeable_client(*values) -> AsyncMock:
    client = AsyncMock()
    client.get_pull_request.side_effect = [{"mergeable": value} for value in values]
    client.list_issue_comments.return_value = []
    return client


def test_merge_method_defaults_to_configuration(make_pr, make_config):
    assert merge_method(make_pr(), make_config(merge_method=MergeMethod.SQUASH)) is MergeMethod.SQUASH


def test_merge_method_label_wins(make_pr, make_config):
    pr = make_pr(labels=[Label(name="auto-merge-method:rebase")])
    assert merge_method(pr, make_config(merge_method=MergeMethod.SQUASH)) is MergeMethod.REBASE


def test_merge_method_invalid_label_falls_back(make_pr, make_config):
    pr = make_pr(labels=[Label(name="auto-merge-method:fast-forward")])
    assert merge_method(pr, make_config(merge_method=MergeMethod.SQUASH)) is MergeMethod.SQUASH


def test_review_comment(make_pr):
    assert review_comment(make_pr()) == "No reviews"
    assert review_comment(make_pr(reviews=[Review(ReviewState.APPROVED, ["bob"])])) == "1 approved review by @bob"

    pr = make_pr(
        reviews=[
            Review(ReviewState.APPROVED, ["bob"]),
            Review(ReviewState.DISMISSED, ["eve"]),
            Review(ReviewState.APPROVED, ["carol"]),
        ]
    )
    assert review_comment(pr) == "2 approved reviews by @bob, @carol"


def test_status_comment(make_pr, make_config, green_head):
    assert status_comment(make_pr(head=Head(sha="abc")), make_config()) == "No checks"
    assert status_comment(make_pr(head=green_head), make_config()) == "2 successful checks"
    assert status_comment(make_pr(head=green_head), make_config(checks=["build"])) == "1 successful check"


def test_merge_summary_with_protection(tagged_pr, configuration):
    summary = merge_summary(tagged_pr, configuration, {"url": "protection"})

    assert summary == (
        "* Branch protection rule for branch `main` passed\n* 1 approved review by @bob\n* 2 successful checks"
    )


def test_merge_summary_without_protection(tagged_pr, configuration):
    assert merge_summary(tagged_pr, configuration, None) == "* 1 approved review by @bob\n* 2 successful checks"


def test_commit_details_merge(tagged_pr, configuration):
    details = commit_details(MergeMethod.MERGE, tagged_pr, configuration, None)

    assert details.title == "Auto-merge pull request #7 from octo/widgets"
    assert details.message.startswith("Add widget\n\nPull request auto merged:\n\n* 1 approved review")


def test_commit_details_squash(tagged_pr, configuration):
    tagged_pr.commits = [Commit(message="First"), Commit(message="Second")]

    details = commit_details(MergeMethod.SQUASH, tagged_pr, configuration, None)

    assert details.title == "Add widget (#7)"
    assert details.message.startswith(" * First\n * Second\n\nPull request auto merged:")


def test_commit_details_rebase(tagged_pr, configuration):
    details = commit_details(MergeMethod.REBASE, tagged_pr, configuration, None)

    assert details.title is None
    assert details.message.startswith("Pull request auto merged:")


def test_dry_run_comment_body(make_config):
    body = dry_run_comment_body("* No reviews", make_config(configuration_url="https://example.com/config"))

    assert body.startswith("Pull request ready to be auto-merged:\n\n* No reviews")
    assert "[configuration](https://example.com/config)" in body
    assert body.endswith(MARKER)


def test_dry_run_comment_body_without_url(make_config):
    body = dry_run_comment_body("* No reviews", make_config())
    assert "AUTOMERGE_DRY_RUN=false" in body


@pytest.mark.asyncio
async def test_merge_pull_request_merges(tagged_pr, configuration):
    client = mergeable_client(True)

    result = await merge_pull_request(tagged_pr, client, configuration)

    assert result.code == 0
    assert result.reason == "Pull request [octo/widgets#7](https://github.com/octo/widgets/pull/7) auto-merged"
    client.merge_pull_request.assert_awaited_once()
    args, kwargs = client.merge_pull_request.await_args
    assert args == ("octo", "widgets", 7)
    assert kwargs["merge_method"] == "merge"
    assert kwargs["commit_title"] == "Auto-merge pull request #7 from octo/widgets"
    client.create_issue_comment.assert_awaited_once()
    assert client.create_issue_comment.await_args.args[3].endswith(MARKER)


@pytest.mark.asyncio
async def test_merge_pull_request_uses_label_method(tagged_pr, configuration):
    tagged_pr.labels.append(Label(name="auto-merge-method:squash"))
    client = mergeable_client(True)

    await merge_pull_request(tagged_pr, client, configuration)

    assert client.merge_pull_request.await_args.kwargs["merge_method"] == "squash"


@pytest.mark.asyncio
async def test_merge_pull_request_waits_for_mergeable(tagged_pr, configuration):
    client = mergeable_client(None, None, True)

    result = await merge_pull_request(tagged_pr, client, configuration)

    assert result.reason.endswith("auto-merged")
    assert client.get_pull_request.await_count == 3


@pytest.mark.asyncio
async def test_merge_pull_request_not_mergeable(tagged_pr, configuration):
    client = mergeable_client(False)

    result = await merge_pull_request(tagged_pr, client, configuration)

    assert result.code == 0
    assert result.reason.endswith("not auto-merged because it can't be merged at this time")
    client.merge_pull_request.assert_not_awaited()
    client.create_issue_comment.assert_not_awaited()


@pytest.mark.asyncio
async def test_merge_pull_request_mergeable_never_computed(tagged_pr, configuration):
    client = mergeable_client(None, None, None)

    result = await merge_pull_request(tagged_pr, client, configuration)

    assert "can't be merged at this time" in result.reason
    client.merge_pull_request.assert_not_awaited()


@pytest.mark.asyncio
async def test_merge_pull_request_merge_rejected(tagged_pr, configuration):
    client = mergeable_client(True)
    request = httpx.Request("PUT", "https://api.github.com/repos/octo/widgets/pulls/7/merge")
    client.merge_pull_request.side_effect = httpx.HTTPStatusError(
        "Conflict", request=request, response=httpx.Response(409, request=request)
    )

    result = await merge_pull_request(tagged_pr, client, configuration)

    assert result.code == 0
    assert "can't be merged at this time" in result.reason
    client.create_issue_comment.assert_not_awaited()


@pytest.mark.asyncio
async def test_merge_pull_request_comment_failure_still_merged(tagged_pr, configuration):
    client = mergeable_client(True)
    client.create_issue_comment.side_effect = RuntimeError("comments disabled")

    result = await merge_pull_request(tagged_pr, client, configuration)

    assert result.reason.endswith("auto-merged")


@pytest.mark.asyncio
async def test_dry_run_creates_comment(tagged_pr, make_config):
    client = mergeable_client(True)

    result = await merge_pull_request(tagged_pr, client, make_config(dry_run=True))

    assert result.reason.endswith("ready to be auto-merged")
    client.merge_pull_request.assert_not_awaited()
    client.create_issue_comment.assert_awaited_once()
    client.update_issue_comment.assert_not_awaited()


@pytest.mark.asyncio
async def test_dry_run_updates_existing_comment(tagged_pr, make_config):
    """Test that repeated dry runs keep a single preview comment."""
    client = mergeable_client(True, True)
    client.list_issue_comments.return_value = [
        {"id": 1, "body": "LGTM"},
        {"id": 42, "body": f"Pull request ready to be auto-merged:\n{MARKER}"},
    ]
    configuration = make_config(dry_run=True)

    await merge_pull_request(tagged_pr, client, configuration)
    await merge_pull_request(tagged_pr, client, configuration)

    client.create_issue_comment.assert_not_awaited()
    assert client.update_issue_comment.await_count == 2
    assert client.update_issue_comment.await_args.args[:3] == ("octo", "widgets", 42)
