"""Job ID allocation: ``owner-repo-<epoch ms>``."""

import threading
import time
from typing import Callable


class JobIdAllocator:
    """Hands out IDs whose timestamp part strictly increases within a process.

    Two submissions in the same millisecond (or a clock step backwards)
    get the previous timestamp plus one instead of a duplicate.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._last_ms = 0
        self._lock = threading.Lock()

    def next_timestamp(self) -> int:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            if now_ms <= self._last_ms:
                now_ms = self._last_ms + 1
            self._last_ms = now_ms
            return now_ms

    def allocate(self, owner: str, repo: str) -> str:
        return f"{owner}-{repo}-{self.next_timestamp()}"
