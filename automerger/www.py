import hashlib
import hmac
import json
from logging import getLogger
from typing import Any

import httpx
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.responses import Response

from automerger.services.github.auth import GitHubClient
from automerger.services.github.client import GitHubAPIClient
from automerger.services.github.models import AutoMergeConfiguration
from automerger.services.github.pullrequests import PullRequestLoader
from automerger.services.labels import converge_auto_merge_labels
from automerger.services.orchestrator import execute_auto_merge, execute_auto_merge_for_pull_requests
from automerger.services.results import HandlerStatus, combine, failure, success
from automerger.settings import settings

logger = getLogger(__name__)

# Pull request actions that can change whether a pull request qualifies
PULL_REQUEST_ACTIONS = {"opened", "reopened", "labeled", "edited", "synchronize", "ready_for_review"}

app = FastAPI(title=settings.project_name)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """Handle request validation errors.

    Args:
        request: FastAPI request object
        exc: RequestValidationError instance

    Returns:
        JSON error response
    """
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Invalid request"})


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check a webhook's X-Hub-Signature-256 header.

    Args:
        body: Raw request body
        signature: Header value in ``sha256=<hex>`` form
        secret: Shared webhook secret (None disables verification)

    Returns:
        True if the signature matches or no secret is configured
    """
    if not secret:
        return True
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(f"sha256={expected}", signature)


def _repository(payload: dict[str, Any]) -> tuple[str, str]:
    repository = payload["repository"]
    return repository["owner"]["login"], repository["name"]


async def handle_pull_request_event(
    payload: dict[str, Any], client: GitHubAPIClient, configuration: AutoMergeConfiguration
) -> HandlerStatus:
    action = payload.get("action", "")
    owner, repo = _repository(payload)
    number = payload["pull_request"]["number"]

    pr = await PullRequestLoader(client).load(owner, repo, number)
    results = []
    if action == "opened":
        try:
            results.append(await converge_auto_merge_labels(pr, action, client, configuration))
        except httpx.HTTPError as e:
            logger.warning(f"Failed to converge auto-merge labels for {pr.slug}: {e}")
            results.append(failure(f"Pull request {pr.link} can't be labelled with auto-merge labels: {e}"))
    results.append(await execute_auto_merge(pr, client, configuration))
    return combine(results)


async def handle_commit_event(
    owner: str, repo: str, sha: str, client: GitHubAPIClient, configuration: AutoMergeConfiguration
) -> HandlerStatus:
    prs = await PullRequestLoader(client).load_for_commit(owner, repo, sha)
    if not prs:
        return success(f"No open pull requests for commit {sha[:7]} in {owner}/{repo}").hidden()
    return await execute_auto_merge_for_pull_requests(prs, client, configuration)


async def dispatch_event(
    event: str, payload: dict[str, Any], client: GitHubAPIClient, configuration: AutoMergeConfiguration
) -> HandlerStatus:
    """Route a webhook event to the matching handler.

    Args:
        event: Value of the X-GitHub-Event header
        payload: Parsed webhook payload
        client: Authenticated GitHub API client
        configuration: Auto-merge configuration

    Returns:
        HandlerStatus of the handled event (hidden success for ignored events)
    """
    action = payload.get("action")

    if event == "pull_request" and action in PULL_REQUEST_ACTIONS:
        return await handle_pull_request_event(payload, client, configuration)

    if event == "pull_request_review" and action == "submitted":
        owner, repo = _repository(payload)
        pr = await PullRequestLoader(client).load(owner, repo, payload["pull_request"]["number"])
        return await execute_auto_merge(pr, client, configuration)

    if event == "status":
        owner, repo = _repository(payload)
        return await handle_commit_event(owner, repo, payload["sha"], client, configuration)

    if event == "check_suite" and action == "completed":
        owner, repo = _repository(payload)
        return await handle_commit_event(owner, repo, payload["check_suite"]["head_sha"], client, configuration)

    return success(f"Ignoring {event} event" + (f" with action {action}" if action else "")).hidden()


async def process_event(event: str, payload: dict[str, Any]) -> HandlerStatus:
    """Evaluate a webhook event end to end and log its outcome.

    Errors never escape; they are logged and reported as a failed status.
    """
    try:
        configuration = settings.to_configuration()
        async with GitHubClient().get_authenticated_client() as client:
            result = await dispatch_event(event, payload, client, configuration)
    except Exception as e:
        logger.exception(f"Failed to process {event} event")
        return failure(f"Failed to process {event} event: {e}")

    log = logger.debug if result.is_hidden else logger.info
    log(f"Processed {event} event (code {result.code}): {result.reason}")
    return result


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/webhook", status_code=status.HTTP_202_ACCEPTED)
async def webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_github_event: str = Header(...),
    x_hub_signature_256: str | None = Header(default=None),
    x_github_delivery: str | None = Header(default=None),
) -> dict[str, Any]:
    """Receive a GitHub webhook and evaluate the affected pull requests."""
    body = await request.body()
    secret = settings.webhook_secret.get_secret_value() if settings.webhook_secret else None
    if not verify_signature(body, x_hub_signature_256, secret):
        logger.warning(f"Rejected webhook delivery {x_github_delivery} with invalid signature")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from None

    if x_github_event == "ping":
        return {"accepted": True, "event": x_github_event, "zen": payload.get("zen")}

    logger.info(f"Received {x_github_event} event (delivery {x_github_delivery})")

    if settings.webhook_process_in_background:
        background_tasks.add_task(process_event, x_github_event, payload)
        return {"accepted": True, "event": x_github_event}

    result = await process_event(x_github_event, payload)
    return {"accepted": True, "event": x_github_event, "result": result.to_dict()}
