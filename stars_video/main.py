"""GitHub Stars Video - FastAPI application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stars_video.api.v1 import health as health_api
from stars_video.api.v1 import stars as stars_api
from stars_video.api.v1 import videos as videos_api
from stars_video.api.v1.router import api_router
from stars_video.config import VERSION, Settings, settings as default_settings
from stars_video.errors import register_exception_handlers
from stars_video.github.client import GitHubClient
from stars_video.jobs.in_process_queue import InProcessQueue
from stars_video.jobs.lifecycle import JobLifecycleController, Renderer
from stars_video.logging_config import configure_logging
from stars_video.rendering.encoder import FFmpegEncoder
from stars_video.rendering.renderer import VideoRenderer
from stars_video.storage.state_store import StateStore, create_state_store
from stars_video.storage.videos import VideoStore

logger = logging.getLogger(__name__)


async def run_maintenance(controller: JobLifecycleController, videos: VideoStore, settings: Settings) -> None:
    """Periodically fail stale jobs and drop expired videos."""
    max_age = timedelta(minutes=settings.stale_job_timeout_minutes)
    while True:
        try:
            if settings.stale_job_timeout_minutes > 0:
                swept = await controller.sweep_stale(max_age)
                if swept:
                    logger.warning("Marked %d stale job(s) failed", swept)
            videos.cleanup_expired()
        except Exception:
            logger.exception("Maintenance pass failed")
        await asyncio.sleep(settings.stale_sweep_interval_seconds)


def create_app(
    settings: Optional[Settings] = None,
    github: Optional[GitHubClient] = None,
    renderer: Optional[Renderer] = None,
    store: Optional[StateStore] = None,
) -> FastAPI:
    """Build the application. Collaborators default to the real implementations."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown logic."""
        configure_logging(settings.log_level)
        logger.info("Starting GitHub Stars Video on port %s", settings.port)
        logger.info("Videos dir: %s", settings.videos_dir)
        logger.info("State backend: %s", settings.state_backend)

        owns_github = github is None
        github_client = github or GitHubClient(
            token=settings.github_token,
            base_url=settings.github_api_url,
            timeout=settings.github_timeout_seconds,
        )
        if owns_github and not settings.github_token:
            logger.warning("GITHUB_TOKEN not set; GitHub API rate limits will be low")

        videos = VideoStore(settings.videos_dir, ttl_hours=settings.video_ttl_hours)
        dispatcher = InProcessQueue()
        controller = JobLifecycleController(
            settings=settings,
            store=store or create_state_store(settings.state_backend, settings.state_dir),
            dispatcher=dispatcher,
            github=github_client,
            renderer=renderer or VideoRenderer(FFmpegEncoder(settings.ffmpeg_binary, settings.video_crf)),
            videos=videos,
        )
        controller.register()
        await dispatcher.start()
        logger.info("Job dispatcher started")

        # Wire controller and stores into API endpoints
        stars_api.set_controller(controller)
        videos_api.set_video_store(videos)
        health_api.set_ffmpeg_binary(settings.ffmpeg_binary)
        app.state.controller = controller
        app.state.dispatcher = dispatcher

        maintenance = None
        if settings.stale_job_timeout_minutes > 0 or settings.video_ttl_hours > 0:
            maintenance = asyncio.create_task(run_maintenance(controller, videos, settings))

        yield

        # Shutdown
        logger.info("Shutting down GitHub Stars Video")
        if maintenance is not None:
            maintenance.cancel()
            try:
                await maintenance
            except asyncio.CancelledError:
                pass
        await dispatcher.stop()
        if owns_github:
            await github_client.aclose()
        stars_api.set_controller(None)
        videos_api.set_video_store(None)

    app = FastAPI(
        title="GitHub Stars Video",
        description="Renders an animated star-count video for a GitHub repository",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
