"""Shared fixtures: fake GitHub + renderer and an app wired to them."""

from __future__ import annotations

import os
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from stars_video.config import Settings
from stars_video.errors import GitHubError
from stars_video.main import create_app


def make_repo(owner: str = "octocat", name: str = "Hello-World", stars: int = 3) -> dict[str, Any]:
    return {
        "name": name,
        "full_name": f"{owner}/{name}",
        "stargazers_count": stars,
        "forks_count": 1,
        "owner": {"login": owner, "avatar_url": f"https://avatars.example/{owner}.png"},
    }


def make_stargazer(login: str, starred_at: str) -> dict[str, Any]:
    return {
        "starred_at": starred_at,
        "user": {"login": login, "avatar_url": f"https://avatars.example/{login}.png"},
    }


class FakeGitHub:
    """Stands in for GitHubClient. ``pages`` is a list of stargazer pages."""

    def __init__(self, repos: dict[tuple[str, str], dict] | None = None, pages: list[list[dict]] | None = None):
        self.repos = repos if repos is not None else {("octocat", "Hello-World"): make_repo()}
        self.pages = pages if pages is not None else [[
            make_stargazer("alice", "2024-01-01T10:00:00Z"),
            make_stargazer("bob", "2024-01-01T12:00:00Z"),
            make_stargazer("carol", "2024-01-03T09:00:00Z"),
        ]]
        self.page_errors: dict[int, Exception] = {}
        self.requested_pages: list[int] = []
        self.closed = False

    async def get_repo(self, owner: str, repo: str) -> dict:
        try:
            return self.repos[(owner, repo)]
        except KeyError:
            raise GitHubError("Not Found", status_code=404) from None

    async def list_stargazers(self, owner: str, repo: str, page: int = 1, per_page: int = 100) -> list[dict]:
        self.requested_pages.append(page)
        if page in self.page_errors:
            raise self.page_errors[page]
        if page - 1 < len(self.pages):
            return self.pages[page - 1]
        return []

    async def aclose(self) -> None:
        self.closed = True


class FakeRenderer:
    """Writes a placeholder file instead of encoding a video."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[tuple] = []

    def render(self, star_data, theme, output_path: str) -> str:
        self.calls.append((star_data, theme, output_path))
        if self.error is not None:
            raise self.error
        with open(output_path, "wb") as fh:
            fh.write(b"\x00\x00\x00\x18ftypmp42fake-video")
        return output_path


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        videos_dir=os.path.join(tmp_path, "videos"),
        state_dir=os.path.join(tmp_path, "state"),
        state_backend="memory",
        page_delay_seconds=0,
        stale_job_timeout_minutes=0,
        log_level="DEBUG",
    )


@pytest.fixture
def fake_github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def fake_renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def app(settings, fake_github, fake_renderer):
    return create_app(settings, github=fake_github, renderer=fake_renderer)


@pytest.fixture
async def client(app):
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
