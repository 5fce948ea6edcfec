"""Stargazer collection and aggregation for the star video."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

from stars_video.github.client import GitHubClient
from stars_video.jobs.models import StarData

logger = logging.getLogger(__name__)


@dataclass
class Stargazer:
    user: str
    avatar_url: str
    starred_at: str


@dataclass
class TimelinePoint:
    date: str
    count: int
    cumulative: int


async def fetch_stargazers(
    client: GitHubClient,
    owner: str,
    repo: str,
    per_page: int = 100,
    limit: int = 1000,
    page_delay: float = 0.1,
) -> List[Stargazer]:
    """Page through stargazers until an empty page or ``limit`` is reached.

    A page that fails after at least one success ends pagination with what
    was collected so far; a failure on the first page propagates.
    """
    stargazers: List[Stargazer] = []
    page = 1
    while len(stargazers) < limit:
        try:
            data = await client.list_stargazers(owner, repo, page=page, per_page=per_page)
        except Exception as exc:
            if page == 1:
                raise
            logger.warning("Error fetching stargazers page %d for %s/%s: %s", page, owner, repo, exc)
            break

        if not data:
            break

        stargazers.extend(_parse_stargazer(item) for item in data)
        logger.info("Fetched stargazers page %d (%d items, %d total)", page, len(data), len(stargazers))
        page += 1

        if page_delay > 0:
            await asyncio.sleep(page_delay)

    return stargazers


def _parse_stargazer(item: Dict[str, Any]) -> Stargazer:
    user = item.get("user") or {}
    return Stargazer(
        user=user.get("login", ""),
        avatar_url=user.get("avatar_url", ""),
        starred_at=item.get("starred_at", ""),
    )


def build_timeline(stargazers: List[Stargazer]) -> List[TimelinePoint]:
    """Stars per day with a running total, oldest day first."""
    per_day: Dict[str, int] = {}
    for star in stargazers:
        if not star.starred_at:
            continue
        day = star.starred_at.split("T")[0]
        per_day[day] = per_day.get(day, 0) + 1

    timeline = []
    cumulative = 0
    for day in sorted(per_day):
        cumulative += per_day[day]
        timeline.append(TimelinePoint(date=day, count=per_day[day], cumulative=cumulative))
    return timeline


def build_star_data(repo_data: Dict[str, Any], stargazers: List[Stargazer], sample_size: int = 50) -> StarData:
    """Video payload: owner, repository, total stars and the newest avatars."""
    owner = repo_data.get("owner") or {}
    recent = stargazers[-sample_size:] if sample_size > 0 else []
    return StarData(
        user=owner.get("login", ""),
        user_avatar_url=owner.get("avatar_url", ""),
        repository=repo_data.get("name", ""),
        stars=int(repo_data.get("stargazers_count") or 0),
        stargazers=[s.avatar_url for s in reversed(recent)],
    )
