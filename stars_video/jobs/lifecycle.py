"""Job lifecycle: pending -> processing -> rendering -> completed | failed.

``submit`` writes the pending record and emits ``process-github-stars``.
``process_stars`` fetches and aggregates the star history, caches the
video payload and emits ``render-video``. ``render_video`` produces the MP4
and writes the completed record. Every stage overwrites the whole job
record before its slow work starts, and any exception in a stage ends the
job as failed. Nothing is retried.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from stars_video.config import Settings
from stars_video.errors import StarsVideoError, error_message
from stars_video.github.client import GitHubClient
from stars_video.github.stars import build_star_data, build_timeline, fetch_stargazers
from stars_video.jobs.dispatcher import EventDispatcher
from stars_video.jobs.ids import JobIdAllocator
from stars_video.jobs.models import (
    JobRecord,
    JobStatus,
    ProcessStarsEvent,
    RenderVideoEvent,
    StarData,
    StarsRequest,
    Theme,
    utc_now,
)
from stars_video.storage.state_store import StateStore
from stars_video.storage.videos import VideoStore

logger = logging.getLogger(__name__)

JOB_GROUP = "job"
STARS_GROUP = "stars"
PROCESS_TOPIC = "process-github-stars"
RENDER_TOPIC = "render-video"
STALE_JOB_ERROR = "Job timed out"


class InvalidTransition(StarsVideoError):
    """A stage write would move a job backwards or out of a terminal state."""


class Renderer(Protocol):
    def render(self, star_data: StarData, theme: Theme, output_path: str) -> str:
        ...


def stars_key(owner: str, repo: str) -> str:
    return f"{owner}:{repo}"


class JobLifecycleController:
    """Drives star-video jobs through their stages.

    All collaborators are injected; the GitHub token lives in the
    ``GitHubClient`` built from ``Settings`` at startup.
    """

    def __init__(
        self,
        settings: Settings,
        store: StateStore,
        dispatcher: EventDispatcher,
        github: GitHubClient,
        renderer: Renderer,
        videos: VideoStore,
        ids: Optional[JobIdAllocator] = None,
        clock: Callable[[], str] = utc_now,
    ):
        self.settings = settings
        self.store = store
        self.dispatcher = dispatcher
        self.github = github
        self.renderer = renderer
        self.videos = videos
        self.ids = ids or JobIdAllocator()
        self._clock = clock
        self._write_lock = asyncio.Lock()

    def register(self) -> None:
        """Subscribe the stage handlers to the dispatcher."""
        self.dispatcher.subscribe(PROCESS_TOPIC, self.process_stars)
        self.dispatcher.subscribe(RENDER_TOPIC, self.render_video)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> Optional[JobRecord]:
        document = await self.store.get(JOB_GROUP, job_id)
        return JobRecord.model_validate(document) if document is not None else None

    async def get_star_data(self, owner: str, repo: str) -> Optional[StarData]:
        document = await self.store.get(STARS_GROUP, stars_key(owner, repo))
        return StarData.model_validate(document) if document is not None else None

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def submit(self, request: StarsRequest) -> str:
        """Create a pending job and hand it to the processing stage."""
        owner, repo, theme = request.owner, request.repo, request.theme
        job_id = self.ids.allocate(owner, repo)

        await self._write(job_id, JobRecord(
            status=JobStatus.PENDING,
            owner=owner,
            repo=repo,
            created_at=self._clock(),
        ))
        await self.dispatcher.emit(PROCESS_TOPIC, ProcessStarsEvent(
            owner=owner, repo=repo, job_id=job_id, theme=theme,
        ).model_dump(mode="json", by_alias=True))

        logger.info("Star fetch job initiated job_id=%s theme=%s", job_id, theme.value)
        return job_id

    async def process_stars(self, data: Dict[str, Any]) -> None:
        event = ProcessStarsEvent.model_validate(data)
        owner, repo, job_id = event.owner, event.repo, event.job_id

        try:
            logger.info("Processing GitHub stars job_id=%s repo=%s/%s", job_id, owner, repo)
            await self._write(job_id, JobRecord(
                status=JobStatus.PROCESSING,
                owner=owner,
                repo=repo,
                updated_at=self._clock(),
            ))

            repo_data = await self.github.get_repo(owner, repo)
            logger.info(
                "Repository data fetched stars=%s forks=%s",
                repo_data.get("stargazers_count"), repo_data.get("forks_count"),
            )

            stargazers = await fetch_stargazers(
                self.github, owner, repo,
                per_page=self.settings.stargazers_per_page,
                limit=self.settings.max_stargazers,
                page_delay=self.settings.page_delay_seconds,
            )
            timeline = build_timeline(stargazers)
            star_data = build_star_data(repo_data, stargazers, self.settings.avatar_sample_size)

            await self.store.set(STARS_GROUP, stars_key(owner, repo), star_data.to_document())

            logger.info(
                "GitHub stars processing completed job_id=%s stargazers=%d days=%d total_stars=%d avatars=%d",
                job_id, len(stargazers), len(timeline), star_data.stars, len(star_data.stargazers),
            )

            await self.dispatcher.emit(RENDER_TOPIC, RenderVideoEvent(
                owner=owner, repo=repo, job_id=job_id, theme=event.theme, star_data=star_data,
            ).model_dump(mode="json", by_alias=True))
            logger.info("Video render job initiated job_id=%s", job_id)

        except Exception as exc:
            logger.error("Failed to process GitHub stars job_id=%s", job_id, exc_info=True)
            await self._fail(job_id, owner, repo, exc)

    async def render_video(self, data: Dict[str, Any]) -> None:
        event = RenderVideoEvent.model_validate(data)
        owner, repo, job_id = event.owner, event.repo, event.job_id

        try:
            logger.info("Starting video render job_id=%s theme=%s", job_id, event.theme.value)
            await self._write(job_id, JobRecord(
                status=JobStatus.RENDERING,
                owner=owner,
                repo=repo,
                updated_at=self._clock(),
            ))

            filename = self.videos.new_filename(owner, repo, self.ids.next_timestamp())
            output_path = self.videos.get_path(filename)

            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.renderer.render, event.star_data, event.theme, output_path)

            video_url = self.videos.url_for(filename)
            await self._write(job_id, JobRecord(
                status=JobStatus.COMPLETED,
                owner=owner,
                repo=repo,
                completed_at=self._clock(),
                video_url=video_url,
                data=event.star_data,
            ))
            logger.info("Video render complete job_id=%s video_url=%s", job_id, video_url)

        except Exception as exc:
            logger.error("Failed to render video job_id=%s", job_id, exc_info=True)
            await self._fail(job_id, owner, repo, exc)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def sweep_stale(self, max_age: timedelta) -> int:
        """Fail jobs that have sat in a non-terminal stage longer than ``max_age``.

        Returns the number of jobs marked failed.
        """
        now = datetime.now(timezone.utc)

        def is_stale(document: Dict[str, Any]) -> bool:
            job = JobRecord.model_validate(document)
            if job.status.is_terminal:
                return False
            stamp = _parse_timestamp(job.updated_at or job.created_at)
            return stamp is not None and now - stamp > max_age

        swept = 0
        for job_id, document in await self.store.items(JOB_GROUP):
            if not is_stale(document):
                continue
            job = JobRecord.model_validate(document)
            try:
                # the snapshot may be out of date by now
                await self._write(job_id, self._failed_record(job.owner, job.repo, STALE_JOB_ERROR), only_if=is_stale)
            except InvalidTransition:
                continue
            logger.warning("Marked stale job failed job_id=%s status=%s", job_id, job.status.value)
            swept += 1
        return swept

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _write(
        self,
        job_id: str,
        record: JobRecord,
        only_if: Optional[Callable[[Dict[str, Any]], bool]] = None,
    ) -> None:
        """Overwrite the job record, refusing transitions out of order.

        ``only_if`` is checked against the stored document inside the lock.
        """
        async with self._write_lock:
            current = await self.store.get(JOB_GROUP, job_id)
            if only_if is not None and (current is None or not only_if(current)):
                raise InvalidTransition(f"Job {job_id} changed before it could be updated")
            if current is None:
                if record.status != JobStatus.PENDING:
                    raise InvalidTransition(f"Job {job_id} does not exist")
            else:
                current_status = JobStatus(current["status"])
                if not current_status.can_transition_to(record.status):
                    raise InvalidTransition(
                        f"Job {job_id} cannot move from {current_status.value} to {record.status.value}"
                    )
            await self.store.set(JOB_GROUP, job_id, record.to_document())

    def _failed_record(self, owner: str, repo: str, message: str) -> JobRecord:
        return JobRecord(
            status=JobStatus.FAILED,
            owner=owner,
            repo=repo,
            error=message,
            failed_at=self._clock(),
        )

    async def _fail(self, job_id: str, owner: str, repo: str, exc: BaseException) -> None:
        try:
            await self._write(job_id, self._failed_record(owner, repo, error_message(exc)))
        except InvalidTransition as transition_error:
            logger.warning("Not marking job failed: %s", transition_error)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
