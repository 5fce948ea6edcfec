"""Application configuration via environment variables."""

import os
from typing import Optional

from pydantic_settings import BaseSettings

VERSION = "0.1.0"

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class Settings(BaseSettings):
    # GitHub
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"
    github_timeout_seconds: float = 30.0
    stargazers_per_page: int = 100
    max_stargazers: int = 1000
    avatar_sample_size: int = 50
    page_delay_seconds: float = 0.1

    # Storage
    videos_dir: str = os.path.join(BASE_DIR, "public", "videos")
    state_backend: str = "memory"  # "memory" or "file"
    state_dir: str = os.path.join(BASE_DIR, ".state")
    video_ttl_hours: int = 0  # 0 keeps videos forever

    # Job processing
    stale_job_timeout_minutes: int = 30  # 0 disables the sweep
    stale_sweep_interval_seconds: int = 60

    # Rendering
    ffmpeg_binary: str = "ffmpeg"
    video_crf: int = 18

    # Server / client
    host: str = "0.0.0.0"
    port: int = 3000
    server_url: str = "http://localhost:3000"
    poll_interval_seconds: float = 3.0
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
