"""Rendered video storage with optional TTL-based cleanup."""

import logging
import os
import time

logger = logging.getLogger(__name__)

_FORBIDDEN_SEQUENCES = ("..", "/", "\\")


def is_safe_filename(filename: str) -> bool:
    """Reject names that could escape the videos directory."""
    if not filename:
        return False
    return not any(seq in filename for seq in _FORBIDDEN_SEQUENCES)


class VideoStore:
    """Manages rendered MP4 files served under ``/videos/``."""

    url_prefix = "/videos/"

    def __init__(self, base_dir: str, ttl_hours: int = 0):
        self._base_dir = base_dir
        os.makedirs(self._base_dir, exist_ok=True)
        self._ttl_seconds = ttl_hours * 3600

    @property
    def base_dir(self) -> str:
        return self._base_dir

    def new_filename(self, owner: str, repo: str, timestamp_ms: int) -> str:
        return f"{owner}-{repo}-{timestamp_ms}.mp4"

    def get_path(self, filename: str) -> str:
        """Full path for a video. Raises ValueError for unsafe names."""
        if not is_safe_filename(filename):
            raise ValueError(f"Invalid filename: {filename!r}")
        return os.path.join(self._base_dir, filename)

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix}{filename}"

    def exists(self, filename: str) -> bool:
        return is_safe_filename(filename) and os.path.isfile(self.get_path(filename))

    def cleanup_expired(self) -> int:
        """Remove videos older than the TTL. Returns count of removed files."""
        if self._ttl_seconds <= 0 or not os.path.exists(self._base_dir):
            return 0
        now = time.time()
        removed = 0
        for entry in os.listdir(self._base_dir):
            path = os.path.join(self._base_dir, entry)
            if not os.path.isfile(path):
                continue
            if now - os.path.getmtime(path) > self._ttl_seconds:
                os.remove(path)
                removed += 1
        if removed:
            logger.info("Removed %d expired video(s)", removed)
        return removed
