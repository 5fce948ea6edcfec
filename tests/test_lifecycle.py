import asyncio
import os
import time
from datetime import timedelta

import pytest

from conftest import FakeGitHub, FakeRenderer, make_repo, make_stargazer
from stars_video.jobs.ids import JobIdAllocator
from stars_video.jobs.lifecycle import (
    JOB_GROUP,
    PROCESS_TOPIC,
    RENDER_TOPIC,
    STALE_JOB_ERROR,
    InvalidTransition,
    JobLifecycleController,
)
from stars_video.jobs.models import JobRecord, JobStatus, StarsRequest, Theme, utc_now
from stars_video.main import create_app, run_maintenance
from stars_video.storage.state_store import InMemoryStateStore
from stars_video.storage.videos import VideoStore


class RecordingDispatcher:
    """Collects emitted events so each stage can be driven by hand."""

    def __init__(self):
        self.events = []

    def subscribe(self, topic, handler):
        pass

    async def emit(self, topic, data):
        self.events.append((topic, data))

    async def start(self):
        pass

    async def stop(self):
        pass


@pytest.fixture
def controller(settings, tmp_path):
    return JobLifecycleController(
        settings=settings,
        store=InMemoryStateStore(),
        dispatcher=RecordingDispatcher(),
        github=FakeGitHub(),
        renderer=FakeRenderer(),
        videos=VideoStore(str(tmp_path / "videos")),
        ids=JobIdAllocator(clock=lambda: 1700000000.0),
        clock=lambda: "2024-05-01T00:00:00.000Z",
    )


@pytest.mark.anyio
async def test_stages_overwrite_the_record(controller):
    job_id = await controller.submit(StarsRequest(owner="octocat", repo="Hello-World", theme=Theme.LIGHT))

    assert job_id == "octocat-Hello-World-1700000000000"
    pending = await controller.store.get(JOB_GROUP, job_id)
    assert pending == {
        "status": "pending",
        "owner": "octocat",
        "repo": "Hello-World",
        "createdAt": "2024-05-01T00:00:00.000Z",
    }

    topic, event = controller.dispatcher.events[-1]
    assert topic == PROCESS_TOPIC
    assert event == {"owner": "octocat", "repo": "Hello-World", "jobId": job_id, "theme": "light"}

    await controller.process_stars(event)
    topic, render_event = controller.dispatcher.events[-1]
    assert topic == RENDER_TOPIC
    assert render_event["starData"]["stars"] == 3
    assert render_event["theme"] == "light"

    await controller.render_video(render_event)
    completed = await controller.store.get(JOB_GROUP, job_id)
    assert completed["status"] == "completed"
    assert completed["videoUrl"] == "/videos/octocat-Hello-World-1700000000001.mp4"
    assert completed["data"]["user"] == "octocat"
    assert "createdAt" not in completed
    assert "updatedAt" not in completed


@pytest.mark.anyio
async def test_processing_record_written_before_fetch(controller):
    seen = []

    async def get_repo(owner, repo):
        seen.append((await controller.get_job(job_id)).status)
        return make_repo()

    controller.github.get_repo = get_repo
    job_id = await controller.submit(StarsRequest(owner="octocat", repo="Hello-World"))
    await controller.process_stars(controller.dispatcher.events[-1][1])

    assert seen == [JobStatus.PROCESSING]


@pytest.mark.anyio
async def test_rendering_record_written_before_render(controller):
    seen = []
    loop = asyncio.get_running_loop()

    class PeekingRenderer(FakeRenderer):
        def render(self, star_data, theme, output_path):
            future = asyncio.run_coroutine_threadsafe(controller.get_job(job_id), loop)
            seen.append(future.result(timeout=5).status)
            return super().render(star_data, theme, output_path)

    controller.renderer = PeekingRenderer()
    job_id = await controller.submit(StarsRequest(owner="octocat", repo="Hello-World"))
    await controller.process_stars(controller.dispatcher.events[-1][1])
    await controller.render_video(controller.dispatcher.events[-1][1])

    assert seen == [JobStatus.RENDERING]
    assert (await controller.get_job(job_id)).status == JobStatus.COMPLETED


@pytest.mark.anyio
async def test_upstream_error_fails_job_without_render_event(controller):
    job_id = await controller.submit(StarsRequest(owner="ghost", repo="gone"))
    await controller.process_stars(controller.dispatcher.events[-1][1])

    job = await controller.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Not Found"
    assert job.failed_at == "2024-05-01T00:00:00.000Z"
    assert [topic for topic, _ in controller.dispatcher.events] == [PROCESS_TOPIC]


@pytest.mark.anyio
async def test_empty_exception_message_still_gives_error_text(controller):
    controller.renderer = FakeRenderer(error=RuntimeError())
    job_id = await controller.submit(StarsRequest(owner="octocat", repo="Hello-World"))
    await controller.process_stars(controller.dispatcher.events[-1][1])
    await controller.render_video(controller.dispatcher.events[-1][1])

    job = await controller.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "RuntimeError"


@pytest.mark.anyio
async def test_star_data_cache_is_overwritten(controller):
    await controller.submit(StarsRequest(owner="octocat", repo="Hello-World"))
    await controller.process_stars(controller.dispatcher.events[-1][1])

    controller.github.repos[("octocat", "Hello-World")] = make_repo(stars=4)
    controller.github.pages[0].append(make_stargazer("dave", "2024-02-01T00:00:00Z"))
    await controller.submit(StarsRequest(owner="octocat", repo="Hello-World"))
    await controller.process_stars(controller.dispatcher.events[-1][1])

    data = await controller.get_star_data("octocat", "Hello-World")
    assert data.stars == 4
    assert data.stargazers[0] == "https://avatars.example/dave.png"


@pytest.mark.anyio
async def test_terminal_jobs_cannot_move(controller):
    job_id = await controller.submit(StarsRequest(owner="ghost", repo="gone"))
    event = controller.dispatcher.events[-1][1]
    await controller.process_stars(event)

    with pytest.raises(InvalidTransition):
        await controller._write(job_id, JobRecord(status=JobStatus.PROCESSING, owner="ghost", repo="gone"))

    # a late stage handler for a failed job leaves the failure in place
    await controller.process_stars(event)
    job = await controller.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Not Found"


@pytest.mark.anyio
async def test_stage_cannot_be_skipped(controller):
    job_id = await controller.submit(StarsRequest(owner="octocat", repo="Hello-World"))

    with pytest.raises(InvalidTransition):
        await controller._write(job_id, JobRecord(status=JobStatus.RENDERING, owner="octocat", repo="Hello-World"))


@pytest.mark.anyio
async def test_unknown_job_is_none(controller):
    assert await controller.get_job("missing-job-1") is None
    assert await controller.get_star_data("nobody", "nothing") is None


@pytest.mark.anyio
async def test_sweep_stale_fails_stuck_jobs(settings, tmp_path):
    store = InMemoryStateStore()
    controller = JobLifecycleController(
        settings=settings,
        store=store,
        dispatcher=RecordingDispatcher(),
        github=FakeGitHub(),
        renderer=FakeRenderer(),
        videos=VideoStore(str(tmp_path / "videos")),
    )
    await store.set(JOB_GROUP, "old-processing", {
        "status": "processing", "owner": "o", "repo": "r", "updatedAt": "2020-01-01T00:00:00.000Z",
    })
    await store.set(JOB_GROUP, "old-done", {
        "status": "completed", "owner": "o", "repo": "r", "completedAt": "2020-01-01T00:00:00.000Z",
        "videoUrl": "/videos/x.mp4",
    })
    fresh_id = await controller.submit(StarsRequest(owner="o", repo="r"))

    swept = await controller.sweep_stale(timedelta(minutes=30))

    assert swept == 1
    stale = await controller.get_job("old-processing")
    assert stale.status == JobStatus.FAILED
    assert stale.error == STALE_JOB_ERROR
    assert (await controller.get_job("old-done")).status == JobStatus.COMPLETED
    assert (await controller.get_job(fresh_id)).status == JobStatus.PENDING


class SnapshotStore(InMemoryStateStore):
    """``items`` returns a fixed, possibly outdated, listing once one is set."""

    def __init__(self):
        super().__init__()
        self.snapshot = None

    async def items(self, group):
        if self.snapshot is not None:
            return self.snapshot
        return await super().items(group)


@pytest.mark.anyio
async def test_sweep_skips_job_that_advanced_after_listing(settings, tmp_path):
    store = SnapshotStore()
    controller = JobLifecycleController(
        settings=settings,
        store=store,
        dispatcher=RecordingDispatcher(),
        github=FakeGitHub(),
        renderer=FakeRenderer(),
        videos=VideoStore(str(tmp_path / "videos")),
    )
    old = {"status": "processing", "owner": "o", "repo": "r", "updatedAt": "2020-01-01T00:00:00.000Z"}
    store.snapshot = [("o-r-1", old)]
    # moved on to rendering just now
    await store.set(JOB_GROUP, "o-r-1", {
        "status": "rendering", "owner": "o", "repo": "r", "updatedAt": utc_now(),
    })

    swept = await controller.sweep_stale(timedelta(minutes=30))

    assert swept == 0
    assert (await controller.get_job("o-r-1")).status == JobStatus.RENDERING


def _write_video(videos, name, age_seconds=0):
    path = videos.get_path(name)
    with open(path, "wb") as fh:
        fh.write(b"x")
    if age_seconds:
        stamp = time.time() - age_seconds
        os.utime(path, (stamp, stamp))
    return path


async def _wait_until_removed(path, attempts=200):
    for _ in range(attempts):
        if not os.path.exists(path):
            return
        await asyncio.sleep(0.01)


@pytest.mark.anyio
async def test_maintenance_expires_videos_with_stale_sweep_disabled(controller, settings, tmp_path):
    settings = settings.model_copy(update={"video_ttl_hours": 1, "stale_job_timeout_minutes": 0})
    videos = VideoStore(str(tmp_path / "expiring"), ttl_hours=1)
    old = _write_video(videos, "old.mp4", age_seconds=3 * 3600)
    new = _write_video(videos, "new.mp4")
    job_id = await controller.submit(StarsRequest(owner="o", repo="r"))

    task = asyncio.create_task(run_maintenance(controller, videos, settings))
    try:
        await _wait_until_removed(old)
    finally:
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    assert not os.path.exists(old)
    assert os.path.exists(new)
    assert (await controller.get_job(job_id)).status == JobStatus.PENDING


@pytest.mark.anyio
async def test_app_runs_video_cleanup_without_stale_sweep(settings, fake_github, fake_renderer):
    settings = settings.model_copy(update={"video_ttl_hours": 1, "stale_job_timeout_minutes": 0})
    old = _write_video(VideoStore(settings.videos_dir), "old.mp4", age_seconds=3 * 3600)
    app = create_app(settings, github=fake_github, renderer=fake_renderer)

    async with app.router.lifespan_context(app):
        await _wait_until_removed(old)

    assert not os.path.exists(old)
