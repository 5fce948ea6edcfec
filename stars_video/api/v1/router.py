"""Aggregate all API routers."""

from fastapi import APIRouter
from stars_video.api.v1.health import router as health_router
from stars_video.api.v1.stars import router as stars_router
from stars_video.api.v1.videos import router as videos_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(stars_router, tags=["github"])
api_router.include_router(videos_router, tags=["videos"])
