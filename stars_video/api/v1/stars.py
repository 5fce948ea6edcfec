"""Star video API: submit jobs, poll status, read cached star data."""

import json
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from stars_video.jobs.models import StarsRequest

logger = logging.getLogger(__name__)

router = APIRouter()

# Set by main.py during lifespan
_controller = None


def set_controller(controller):
    global _controller
    _controller = controller


class StarsSubmitResponse(BaseModel):
    success: bool
    message: str
    jobId: str


def _require_controller():
    if _controller is None:
        raise HTTPException(status_code=503, detail="Job controller not initialized")
    return _controller


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        message = error.get("msg", "")
        # pydantic prefixes custom validator messages
        messages.append(message.removeprefix("Value error, "))
    return "Invalid request body: " + "; ".join(messages)


@router.post("/api/github/stars", response_model=StarsSubmitResponse)
async def submit_stars_job(request: Request):
    """Start a star video job for ``{owner, repo, theme?}``.

    Poll GET /api/github/jobs/{jobId} for progress.
    """
    controller = _require_controller()

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(status_code=400, content={"error": "Invalid request body: malformed JSON"})

    try:
        stars_request = StarsRequest.model_validate(body)
    except ValidationError as exc:
        logger.warning("Rejected star fetch request: %s", exc.errors())
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    logger.info("Fetching GitHub stars owner=%s repo=%s theme=%s", stars_request.owner, stars_request.repo, stars_request.theme.value)

    try:
        job_id = await controller.submit(stars_request)
    except Exception:
        logger.exception("Failed to initiate star fetch")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return StarsSubmitResponse(
        success=True,
        message="Star fetch job initiated successfully",
        jobId=job_id,
    )


@router.get("/api/github/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Current job record; fields depend on the stage."""
    controller = _require_controller()

    job = await controller.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_document()


@router.get("/api/github/stars/{owner}/{repo}")
async def get_stars_data(owner: str, repo: str):
    """Star data cached by the last successful processing run for a repository."""
    controller = _require_controller()

    data = await controller.get_star_data(owner, repo)
    if data is None:
        raise HTTPException(status_code=404, detail="No data found for this repository")
    return data.to_document()
