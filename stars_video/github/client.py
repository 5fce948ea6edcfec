"""Minimal async GitHub REST client for repository and stargazer data."""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from stars_video.errors import GitHubError

logger = logging.getLogger(__name__)

STAR_MEDIA_TYPE = "application/vnd.github.v3.star+json"
DEFAULT_MEDIA_TYPE = "application/vnd.github+json"


class GitHubClient:
    """Wraps the two GitHub endpoints the star pipeline needs.

    Usage:
        async with GitHubClient(token=settings.github_token) as gh:
            repo = await gh.get_repo("octocat", "Hello-World")
            page = await gh.list_stargazers("octocat", "Hello-World", page=1)
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {
            "Accept": DEFAULT_MEDIA_TYPE,
            "User-Agent": "stars-video",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_repo(self, owner: str, repo: str) -> Dict[str, Any]:
        return await self._get(_repo_path(owner, repo))

    async def list_stargazers(
        self,
        owner: str,
        repo: str,
        page: int = 1,
        per_page: int = 100,
    ) -> List[Dict[str, Any]]:
        """One page of stargazers with ``starred_at`` timestamps."""
        return await self._get(
            f"{_repo_path(owner, repo)}/stargazers",
            params={"page": page, "per_page": per_page},
            headers={"Accept": STAR_MEDIA_TYPE},
        )

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None) -> Any:
        response = await self._client.get(path, params=params, headers=headers)
        if response.is_error:
            raise GitHubError(_error_message(response), status_code=response.status_code)
        return response.json()


def _repo_path(owner: str, repo: str) -> str:
    return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"


def _error_message(response: httpx.Response) -> str:
    """GitHub puts a human-readable reason in ``message``; fall back to the status line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return f"GitHub API returned {response.status_code} {response.reason_phrase}".strip()
