"""Async GitHub API client using httpx."""

import asyncio
import time
from logging import getLogger
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import SecretStr

logger = getLogger(__name__)


class GitHubAPIClient:
    """Async GitHub API client for the calls auto-merge needs."""

    def __init__(self, token: SecretStr, base_url: str = "https://api.github.com") -> None:
        """Initialize GitHub API client.

        Args:
            token: GitHub Personal Access Token or installation token
            base_url: Base URL for GitHub API (default: https://api.github.com)
        """
        self.token = token.get_secret_value()
        self.base_url = base_url.rstrip("/")
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "GitHubAPIClient":
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {self.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=httpx.Timeout(30.0, connect=10.0),
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()

    def _repo_url(self, owner: str, repo: str) -> str:
        return f"{self.base_url}/repos/{owner}/{repo}"

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        max_retries: int = 3,
        retry_count: int = 0,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make HTTP request with automatic retry on timeout and rate limiting.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: URL to request
            max_retries: Maximum number of retries
            retry_count: Current retry attempt (internal use)
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            httpx.Response object

        Raises:
            httpx.HTTPStatusError: If the request fails after retries
            httpx.TimeoutException: If request times out after retries
        """
        if not self._client:
            raise RuntimeError("Client not initialized - use async with context manager")

        try:
            response = await self._client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        except httpx.TimeoutException:
            # Retry on timeout with exponential backoff
            if retry_count < max_retries:
                wait_time = 2**retry_count  # 1, 2, 4 seconds
                logger.warning(
                    f"Timeout on {method} {url} (attempt {retry_count + 1}/{max_retries}). "
                    f"Waiting {wait_time} seconds before retry..."
                )
                await asyncio.sleep(wait_time)
                return await self._request_with_retry(method, url, max_retries, retry_count + 1, **kwargs)
            logger.error(f"{method} {url} failed after {max_retries} retries due to timeout")
            raise

        except httpx.HTTPStatusError as e:
            # Handle rate limiting (403 or 429)
            if e.response.status_code in (403, 429) and retry_count < max_retries:
                reset_time = e.response.headers.get("X-RateLimit-Reset")
                remaining = e.response.headers.get("X-RateLimit-Remaining", "")
                is_rate_limit = e.response.status_code == 429 or remaining == "0"

                if is_rate_limit:
                    if reset_time:
                        wait_time = min(int(reset_time) - int(time.time()), 60)
                        wait_time = max(wait_time, 1)
                    else:
                        wait_time = 2**retry_count

                    logger.warning(
                        f"Rate limit hit on {method} {url} (attempt {retry_count + 1}/{max_retries}). "
                        f"Waiting {wait_time} seconds before retry..."
                    )
                    await asyncio.sleep(wait_time)
                    return await self._request_with_retry(method, url, max_retries, retry_count + 1, **kwargs)
            raise

    async def _get_paginated(self, url: str, per_page: int = 100, params: dict[str, Any] | None = None) -> list[Any]:
        """Fetch every page of a list endpoint.

        Args:
            url: Endpoint URL returning a JSON array
            per_page: Page size (max 100)
            params: Additional query parameters

        Returns:
            Concatenated items of all pages
        """
        page = 1
        items: list[Any] = []

        while True:
            query: dict[str, Any] = {**(params or {}), "per_page": per_page, "page": page}
            response = await self._request_with_retry("GET", url, params=query)
            batch: list[Any] = response.json()

            if not batch:
                break

            items.extend(batch)

            if len(batch) < per_page:
                break

            page += 1

        return items

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        """Get a repository, including its allowed merge methods.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name

        Returns:
            Repository data dictionary including allow_merge_commit, allow_rebase_merge
            and allow_squash_merge

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        response = await self._request_with_retry("GET", self._repo_url(owner, repo))
        result: dict[str, Any] = response.json()
        return result

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        """Get a pull request.

        GitHub computes ``mergeable`` and ``mergeable_state`` in the background; they
        are ``null`` and ``"unknown"`` until that job finishes.

        Args:
            owner: Repository owner
            repo: Repository name
            number: Pull request number

        Returns:
            Pull request data dictionary

        Raises:
            httpx.HTTPStatusError: If the request fails
        """
        response = await self._request_with_retry("GET", f"{self._repo_url(owner, repo)}/pulls/{number}")
        result: dict[str, Any] = response.json()
        return result

    async def get_branch_protection(self, owner: str, repo: str, branch: str) -> dict[str, Any]:
        """Get the protection rule of a branch.

        Raises:
            httpx.HTTPStatusError: 404 if the branch is not protected
        """
        response = await self._request_with_retry(
            "GET", f"{self._repo_url(owner, repo)}/branches/{branch}/protection", max_retries=0
        )
        result: dict[str, Any] = response.json()
        return result

    async def merge_pull_request(
        self,
        owner: str,
        repo: str,
        number: int,
        merge_method: str,
        commit_title: str | None = None,
        commit_message: str | None = None,
        sha: str | None = None,
    ) -> dict[str, Any]:
        """Merge a pull request.

        Args:
            owner: Repository owner
            repo: Repository name
            number: Pull request number
            merge_method: One of merge, rebase or squash
            commit_title: Title of the merge commit (omitted when None)
            commit_message: Extra detail for the merge commit (omitted when None)
            sha: Head SHA that must match for the merge to proceed

        Returns:
            Merge result dictionary with 'sha', 'merged' and 'message' keys

        Raises:
            httpx.HTTPStatusError: If the merge is rejected (405, 409, 422)
        """
        payload: dict[str, Any] = {"merge_method": merge_method}
        if commit_title is not None:
            payload["commit_title"] = commit_title
        if commit_message is not None:
            payload["commit_message"] = commit_message
        if sha is not None:
            payload["sha"] = sha

        response = await self._request_with_retry(
            "PUT", f"{self._repo_url(owner, repo)}/pulls/{number}/merge", max_retries=0, json=payload
        )
        result: dict[str, Any] = response.json()
        return result

    async def list_issue_comments(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """List all comments on a pull request's conversation."""
        return await self._get_paginated(f"{self._repo_url(owner, repo)}/issues/{number}/comments")

    async def create_issue_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        response = await self._request_with_retry(
            "POST", f"{self._repo_url(owner, repo)}/issues/{number}/comments", json={"body": body}
        )
        result: dict[str, Any] = response.json()
        return result

    async def update_issue_comment(self, owner: str, repo: str, comment_id: int, body: str) -> dict[str, Any]:
        response = await self._request_with_retry(
            "PATCH", f"{self._repo_url(owner, repo)}/issues/comments/{comment_id}", json={"body": body}
        )
        result: dict[str, Any] = response.json()
        return result

    async def add_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[dict[str, Any]]:
        """Add labels to a pull request.

        Returns:
            The full list of labels now on the pull request
        """
        response = await self._request_with_retry(
            "POST", f"{self._repo_url(owner, repo)}/issues/{number}/labels", json={"labels": labels}
        )
        result: list[dict[str, Any]] = response.json()
        return result

    async def get_label(self, owner: str, repo: str, name: str) -> dict[str, Any]:
        """Get a repository label.

        Raises:
            httpx.HTTPStatusError: 404 if the label does not exist
        """
        response = await self._request_with_retry("GET", f"{self._repo_url(owner, repo)}/labels/{quote_label(name)}")
        result: dict[str, Any] = response.json()
        return result

    async def create_label(
        self, owner: str, repo: str, name: str, color: str, description: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"name": name, "color": color}
        if description:
            payload["description"] = description
        response = await self._request_with_retry("POST", f"{self._repo_url(owner, repo)}/labels", json=payload)
        result: dict[str, Any] = response.json()
        return result

    async def delete_label(self, owner: str, repo: str, name: str) -> None:
        await self._request_with_retry("DELETE", f"{self._repo_url(owner, repo)}/labels/{quote_label(name)}")

    async def list_pull_request_reviews(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """List reviews of a pull request in chronological order."""
        return await self._get_paginated(f"{self._repo_url(owner, repo)}/pulls/{number}/reviews")

    async def list_pull_request_commits(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        """List commits of a pull request (GitHub caps this at 250 commits)."""
        return await self._get_paginated(f"{self._repo_url(owner, repo)}/pulls/{number}/commits")

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> dict[str, Any]:
        """Get the combined legacy status for a ref.

        Returns:
            Dictionary with 'state' and 'statuses' (latest status per context)
        """
        response = await self._request_with_retry(
            "GET", f"{self._repo_url(owner, repo)}/commits/{ref}/status", params={"per_page": 100}
        )
        result: dict[str, Any] = response.json()
        return result

    async def list_check_suites(self, owner: str, repo: str, ref: str) -> list[dict[str, Any]]:
        """List the check suites for a ref."""
        response = await self._request_with_retry(
            "GET", f"{self._repo_url(owner, repo)}/commits/{ref}/check-suites", params={"per_page": 100}
        )
        suites: list[dict[str, Any]] = response.json().get("check_suites", [])
        return suites

    async def list_check_runs(self, owner: str, repo: str, check_suite_id: int) -> list[dict[str, Any]]:
        """List every check run of a check suite, reruns included."""
        response = await self._request_with_retry(
            "GET",
            f"{self._repo_url(owner, repo)}/check-suites/{check_suite_id}/check-runs",
            params={"per_page": 100, "filter": "all"},
        )
        runs: list[dict[str, Any]] = response.json().get("check_runs", [])
        return runs

    async def list_pull_requests_for_commit(self, owner: str, repo: str, sha: str) -> list[dict[str, Any]]:
        """List pull requests associated with a commit."""
        return await self._get_paginated(f"{self._repo_url(owner, repo)}/commits/{sha}/pulls")


def quote_label(name: str) -> str:
    """URL-encode a label name for use in a path segment (labels contain ':')."""
    return quote(name, safe="")
