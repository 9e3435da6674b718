import base64
import binascii
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from config.models import GitHubConfig
from core.contracts.models import ChangedFile, InlineComment
from utils.errors import GitHubError
from utils.logger import logger

DEFAULT_ACCEPT_HEADER = "application/vnd.github+json"
DEFAULT_API_VERSION = "2022-11-28"
PER_PAGE = 100


class GitHubClient:
    """
    Thin async wrapper over the GitHub REST endpoints the reviewer needs.
    """

    def __init__(self, config: GitHubConfig, client: Optional[httpx.AsyncClient] = None):
        if not config.token:
            raise GitHubError("GitHub token not found. Please set `github.token`, the `github-token` input or GITHUB_TOKEN.")
        if not config.repository or "/" not in config.repository:
            raise GitHubError(f"GitHub repository must look like 'owner/repo', got '{config.repository}'.")

        self.repository = config.repository
        self._client = client or httpx.AsyncClient(
            base_url=config.api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {config.token}",
                "Accept": DEFAULT_ACCEPT_HEADER,
                "X-GitHub-Api-Version": DEFAULT_API_VERSION,
                "User-Agent": "aireview",
            },
            timeout=config.timeout_sec,
        )
        self._owns_client = client is None

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise GitHubError(f"Request to GitHub timed out: {method} {url}: {e}") from e
        except httpx.RequestError as e:
            raise GitHubError(f"An unexpected network error occurred calling GitHub: {e}") from e

        if response.status_code >= 400:
            detail: Any = None
            if response.content:
                try:
                    detail = response.json()
                except ValueError:
                    detail = response.text
            message = detail.get("message") if isinstance(detail, dict) else detail
            raise GitHubError(
                f"GitHub API request {method} {url} failed with status {response.status_code}: {message}",
                response.status_code,
                detail,
            )
        return response

    def _repo_url(self, suffix: str) -> str:
        return f"/repos/{self.repository}/{suffix}"

    async def get_changed_files(self, base_sha: str, head_sha: str) -> List[ChangedFile]:
        """Returns the files changed between two commits, in GitHub's order."""
        response = await self._request("GET", self._repo_url(f"compare/{base_sha}...{head_sha}"))
        files = response.json().get("files") or []
        return [ChangedFile.from_github(f) for f in files]

    async def get_file_content(self, path: str, ref: str) -> Optional[str]:
        """
        Returns the text of a file at a ref, or None if it does not exist there.

        Raises:
            GitHubError: If the path is not a file or the API call fails.
        """
        try:
            response = await self._request("GET", self._repo_url(f"contents/{quote(path)}"), params={"ref": ref})
        except GitHubError as e:
            if e.status_code == 404:
                return None
            raise

        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            raise GitHubError(f"Path is not a file: {path}")
        try:
            return base64.b64decode(data.get("content", "")).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise GitHubError(f"Could not decode content of {path}: {e}") from e

    async def get_pull_request(self, pull_number: int) -> Dict[str, Any]:
        response = await self._request("GET", self._repo_url(f"pulls/{pull_number}"))
        return response.json()

    async def post_comment(self, pull_number: int, body: str) -> Optional[str]:
        """Posts a PR-level comment and returns its URL."""
        response = await self._request(
            "POST", self._repo_url(f"issues/{pull_number}/comments"), json={"body": body}
        )
        return response.json().get("html_url")

    async def submit_review(
        self,
        pull_number: int,
        commit_sha: str,
        body: str,
        event: str = "COMMENT",
        comments: Optional[List[InlineComment]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "commit_id": commit_sha,
            "body": body,
            "event": event,
            "comments": [c.model_dump() for c in comments or []],
        }
        response = await self._request("POST", self._repo_url(f"pulls/{pull_number}/reviews"), json=payload)
        return response.json()

    async def get_existing_review_comments(self, pull_number: int) -> List[Dict[str, Any]]:
        """
        Lists every inline review comment on the pull request, following pagination.
        Failures are logged and yield an empty list so duplicate suppression degrades
        instead of aborting the review.
        """
        comments: List[Dict[str, Any]] = []
        page = 1
        try:
            while True:
                response = await self._request(
                    "GET",
                    self._repo_url(f"pulls/{pull_number}/comments"),
                    params={"per_page": PER_PAGE, "page": page},
                )
                batch = response.json()
                comments.extend(batch)
                if len(batch) < PER_PAGE:
                    return comments
                page += 1
        except GitHubError as e:
            logger.warning(f"Failed to get existing review comments: {e}")
            return []

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance owns it."""
        if self._owns_client:
            await self._client.aclose()
