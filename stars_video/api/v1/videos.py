"""Serves rendered videos from the videos directory."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from stars_video.storage.videos import VideoStore, is_safe_filename

logger = logging.getLogger(__name__)

router = APIRouter()

# Wired in during lifespan (same pattern as stars.py)
_video_store = None

CACHE_CONTROL = "public, max-age=31536000"


def set_video_store(store: VideoStore):
    global _video_store
    _video_store = store


# {filename:path} so names containing separators reach the check below
@router.get("/videos/{filename:path}")
async def serve_video(filename: str):
    """Stream a rendered MP4."""
    if _video_store is None:
        raise HTTPException(status_code=503, detail="Video store not initialized")

    if not is_safe_filename(filename):
        logger.warning("Rejected video filename %r", filename)
        raise HTTPException(status_code=404, detail="Invalid filename")

    if not _video_store.exists(filename):
        logger.error("Video file not found filename=%s", filename)
        raise HTTPException(status_code=404, detail="Video not found")

    path = _video_store.get_path(filename)
    logger.info("Serving video filename=%s", filename)
    return FileResponse(
        path,
        media_type="video/mp4",
        headers={"Cache-Control": CACHE_CONTROL, "Accept-Ranges": "bytes"},
    )
