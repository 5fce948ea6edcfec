"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

from stars_video.config import VERSION
from stars_video.rendering.encoder import find_ffmpeg

router = APIRouter()

# Set by main.py during lifespan
_ffmpeg_binary = "ffmpeg"


def set_ffmpeg_binary(binary: str):
    global _ffmpeg_binary
    _ffmpeg_binary = binary


@router.get("/health")
async def health_check():
    """Service health and renderer availability."""
    return {
        "status": "healthy",
        "version": VERSION,
        "ffmpeg_available": find_ffmpeg(_ffmpeg_binary) is not None,
        "python_version": sys.version,
        "platform": platform.platform(),
    }
