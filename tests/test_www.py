"""Tests for the webhook receiver."""

import hashlib
import hmac
import json

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from pydantic import SecretStr

from automerger.services.results import failure, success
from automerger.settings import settings
from automerger.www import app, dispatch_event, process_event, verify_signature

SECRET = "webhook-secret"


def sign(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def pull_request_payload(action: str = "opened") -> dict:
    return {
        "action": action,
        "repository": {"name": "widgets", "owner": {"login": "octo"}},
        "pull_request": {"number": 7},
    }


def test_app_exists():
    """Test that the FastAPI app is properly instantiated."""
    assert app is not None
    routes = [route.path for route in app.routes]
    assert "/health" in routes
    assert "/webhook" in routes


def test_health(fastapi_client):
    response = fastapi_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_verify_signature():
    body = b'{"zen": "Keep it logically awesome."}'
    assert verify_signature(body, sign(body), SECRET)
    assert not verify_signature(body, sign(body, "other"), SECRET)
    assert not verify_signature(body, None, SECRET)
    assert not verify_signature(body, "sha1=abc", SECRET)
    assert verify_signature(body, None, None)


def test_webhook_ping(fastapi_client):
    response = fastapi_client.post(
        "/webhook", json={"zen": "Design for failure."}, headers={"X-GitHub-Event": "ping"}
    )
    assert response.status_code == 202
    assert response.json()["zen"] == "Design for failure."


def test_webhook_requires_event_header(fastapi_client):
    response = fastapi_client.post("/webhook", json={})
    assert response.status_code == 400


def test_webhook_invalid_json(fastapi_client):
    response = fastapi_client.post("/webhook", content=b"not json", headers={"X-GitHub-Event": "status"})
    assert response.status_code == 400


def test_webhook_rejects_bad_signature(fastapi_client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_secret", SecretStr(SECRET))
    body = json.dumps({"zen": "Speak like a human."}).encode()

    response = fastapi_client.post(
        "/webhook",
        content=body,
        headers={"X-GitHub-Event": "ping", "X-Hub-Signature-256": sign(body, "wrong")},
    )

    assert response.status_code == 401


def test_webhook_accepts_valid_signature(fastapi_client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_secret", SecretStr(SECRET))
    body = json.dumps({"zen": "Speak like a human."}).encode()

    response = fastapi_client.post(
        "/webhook",
        content=body,
        headers={"X-GitHub-Event": "ping", "X-Hub-Signature-256": sign(body), "Content-Type": "application/json"},
    )

    assert response.status_code == 202


def test_webhook_processes_inline(fastapi_client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_process_in_background", False)
    payload = pull_request_payload("labeled")

    with patch("automerger.www.process_event", new_callable=AsyncMock) as mock_process:
        mock_process.return_value = success("Pull request auto-merged")
        response = fastapi_client.post("/webhook", json=payload, headers={"X-GitHub-Event": "pull_request"})

    assert response.status_code == 202
    assert response.json()["result"] == {"code": 0, "reason": "Pull request auto-merged", "visibility": "visible"}
    mock_process.assert_awaited_once_with("pull_request", payload)


def test_webhook_processes_in_background(fastapi_client, monkeypatch):
    monkeypatch.setattr(settings, "webhook_process_in_background", True)

    with patch("automerger.www.process_event", new_callable=AsyncMock) as mock_process:
        mock_process.return_value = success("done")
        response = fastapi_client.post("/webhook", json={"sha": "abc"}, headers={"X-GitHub-Event": "status"})

    assert response.status_code == 202
    assert "result" not in response.json()
    # TestClient runs background tasks before returning
    mock_process.assert_awaited_once()


@pytest.mark.asyncio
async def test_dispatch_pull_request_opened(configuration):
    client = AsyncMock()
    mock_pr = MagicMock()

    with (
        patch("automerger.www.PullRequestLoader") as mock_loader_class,
        patch("automerger.www.converge_auto_merge_labels", new_callable=AsyncMock) as mock_converge,
        patch("automerger.www.execute_auto_merge", new_callable=AsyncMock) as mock_execute,
    ):
        mock_loader_class.return_value.load = AsyncMock(return_value=mock_pr)
        mock_converge.return_value = success("labelled")
        mock_execute.return_value = success("merged")

        result = await dispatch_event("pull_request", pull_request_payload("opened"), client, configuration)

    assert result.reason == "labelled\nmerged"
    mock_loader_class.return_value.load.assert_awaited_once_with("octo", "widgets", 7)
    mock_converge.assert_awaited_once_with(mock_pr, "opened", client, configuration)


@pytest.mark.asyncio
async def test_dispatch_pull_request_opened_label_error_still_evaluates(configuration):
    """Test that a failed label setup is reported and auto-merge still runs."""
    request = httpx.Request("GET", "https://api.github.com/repos/octo/widgets")
    mock_pr = MagicMock(link="[octo/widgets#7](https://github.com/octo/widgets/pull/7)", slug="octo/widgets#7")

    with (
        patch("automerger.www.PullRequestLoader") as mock_loader_class,
        patch("automerger.www.converge_auto_merge_labels", new_callable=AsyncMock) as mock_converge,
        patch("automerger.www.execute_auto_merge", new_callable=AsyncMock) as mock_execute,
    ):
        mock_loader_class.return_value.load = AsyncMock(return_value=mock_pr)
        mock_converge.side_effect = httpx.HTTPStatusError(
            "Forbidden", request=request, response=httpx.Response(403, request=request)
        )
        mock_execute.return_value = success("merged")

        result = await dispatch_event("pull_request", pull_request_payload("opened"), AsyncMock(), configuration)

    assert result.code == 1
    lines = result.reason.splitlines()
    assert lines[0].startswith(
        "Pull request [octo/widgets#7](https://github.com/octo/widgets/pull/7) can't be labelled with auto-merge labels"
    )
    assert lines[-1] == "merged"
    mock_execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_dispatch_pull_request_synchronize_skips_labels(configuration):
    with (
        patch("automerger.www.PullRequestLoader") as mock_loader_class,
        patch("automerger.www.converge_auto_merge_labels", new_callable=AsyncMock) as mock_converge,
        patch("automerger.www.execute_auto_merge", new_callable=AsyncMock) as mock_execute,
    ):
        mock_loader_class.return_value.load = AsyncMock(return_value=MagicMock())
        mock_execute.return_value = success("merged")

        result = await dispatch_event("pull_request", pull_request_payload("synchronize"), AsyncMock(), configuration)

    assert result.reason == "merged"
    mock_converge.assert_not_awaited()


@pytest.mark.asyncio
async def test_dispatch_review_submitted(configuration):
    payload = pull_request_payload("submitted")

    with (
        patch("automerger.www.PullRequestLoader") as mock_loader_class,
        patch("automerger.www.execute_auto_merge", new_callable=AsyncMock) as mock_execute,
    ):
        mock_loader_class.return_value.load = AsyncMock(return_value=MagicMock())
        mock_execute.return_value = success("merged")

        result = await dispatch_event("pull_request_review", payload, AsyncMock(), configuration)

    assert result.reason == "merged"


@pytest.mark.asyncio
async def test_dispatch_status_event(configuration):
    payload = {"sha": "abc1234def", "repository": {"name": "widgets", "owner": {"login": "octo"}}}
    prs = [MagicMock(), MagicMock()]

    with (
        patch("automerger.www.PullRequestLoader") as mock_loader_class,
        patch("automerger.www.execute_auto_merge_for_pull_requests", new_callable=AsyncMock) as mock_execute,
    ):
        mock_loader_class.return_value.load_for_commit = AsyncMock(return_value=prs)
        mock_execute.return_value = success("a\nb")

        result = await dispatch_event("status", payload, AsyncMock(), configuration)

    assert result.reason == "a\nb"
    mock_loader_class.return_value.load_for_commit.assert_awaited_once_with("octo", "widgets", "abc1234def")


@pytest.mark.asyncio
async def test_dispatch_check_suite_without_pull_requests(configuration):
    payload = {
        "action": "completed",
        "check_suite": {"head_sha": "abc1234def"},
        "repository": {"name": "widgets", "owner": {"login": "octo"}},
    }

    with patch("automerger.www.PullRequestLoader") as mock_loader_class:
        mock_loader_class.return_value.load_for_commit = AsyncMock(return_value=[])
        result = await dispatch_event("check_suite", payload, AsyncMock(), configuration)

    assert result.is_hidden
    assert result.reason == "No open pull requests for commit abc1234 in octo/widgets"


@pytest.mark.asyncio
async def test_dispatch_ignores_other_events(configuration):
    result = await dispatch_event("issues", {"action": "opened"}, AsyncMock(), configuration)

    assert result.is_hidden
    assert result.reason == "Ignoring issues event with action opened"


@pytest.mark.asyncio
async def test_process_event_reports_errors():
    with patch("automerger.www.GitHubClient") as mock_client_class:
        mock_client_class.return_value.get_authenticated_client.side_effect = ValueError("no token")
        result = await process_event("status", {"sha": "abc"})

    assert result == failure("Failed to process status event: no token")


@pytest.mark.asyncio
async def test_process_event_dispatches():
    mock_api_client = MagicMock()
    mock_api_client.__aenter__ = AsyncMock(return_value=mock_api_client)
    mock_api_client.__aexit__ = AsyncMock(return_value=None)

    with (
        patch("automerger.www.GitHubClient") as mock_client_class,
        patch("automerger.www.dispatch_event", new_callable=AsyncMock) as mock_dispatch,
    ):
        mock_client_class.return_value.get_authenticated_client.return_value = mock_api_client
        mock_dispatch.return_value = success("merged")

        result = await process_event("pull_request", pull_request_payload())

    assert result == success("merged")
    assert mock_dispatch.await_args.args[:3] == ("pull_request", pull_request_payload(), mock_api_client)
