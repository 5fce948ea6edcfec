"""Key-value state storage for job records and cached star data.

Documents are addressed by ``(group, key)`` and every ``set`` replaces the
stored document as a whole.
"""

import asyncio
import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

logger = logging.getLogger(__name__)

Document = Dict[str, Any]


class StateStore(ABC):
    """Abstract interface for JSON document storage."""

    @abstractmethod
    async def get(self, group: str, key: str) -> Optional[Document]:
        ...

    @abstractmethod
    async def set(self, group: str, key: str, value: Document) -> None:
        ...

    @abstractmethod
    async def delete(self, group: str, key: str) -> None:
        ...

    @abstractmethod
    async def items(self, group: str) -> List[Tuple[str, Document]]:
        """All ``(key, document)`` pairs in a group."""
        ...


class InMemoryStateStore(StateStore):
    """Process-local store. Contents are lost on restart."""

    def __init__(self):
        self._groups: Dict[str, Dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    async def get(self, group: str, key: str) -> Optional[Document]:
        async with self._lock:
            value = self._groups.get(group, {}).get(key)
            return copy.deepcopy(value) if value is not None else None

    async def set(self, group: str, key: str, value: Document) -> None:
        async with self._lock:
            self._groups.setdefault(group, {})[key] = copy.deepcopy(value)

    async def delete(self, group: str, key: str) -> None:
        async with self._lock:
            self._groups.get(group, {}).pop(key, None)

    async def items(self, group: str) -> List[Tuple[str, Document]]:
        async with self._lock:
            return [(k, copy.deepcopy(v)) for k, v in self._groups.get(group, {}).items()]


class FileStateStore(StateStore):
    """One JSON file per document under ``base_dir/<group>/``.

    Writes go to a temp file first and are moved into place with
    ``os.replace`` so readers never see a half-written document.
    """

    def __init__(self, base_dir: str):
        self._base_dir = base_dir
        os.makedirs(self._base_dir, exist_ok=True)
        self._lock = asyncio.Lock()

    def _group_dir(self, group: str) -> str:
        return os.path.join(self._base_dir, quote(group, safe=""))

    def _path(self, group: str, key: str) -> str:
        # keys such as "owner:repo" must map to a single safe filename
        return os.path.join(self._group_dir(group), quote(key, safe="") + ".json")

    async def get(self, group: str, key: str) -> Optional[Document]:
        async with self._lock:
            return self._read(self._path(group, key))

    async def set(self, group: str, key: str, value: Document) -> None:
        async with self._lock:
            group_dir = self._group_dir(group)
            os.makedirs(group_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=group_dir, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(value, fh)
                os.replace(tmp_path, self._path(group, key))
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise

    async def delete(self, group: str, key: str) -> None:
        async with self._lock:
            path = self._path(group, key)
            if os.path.exists(path):
                os.remove(path)

    async def items(self, group: str) -> List[Tuple[str, Document]]:
        async with self._lock:
            group_dir = self._group_dir(group)
            if not os.path.isdir(group_dir):
                return []
            result = []
            for entry in sorted(os.listdir(group_dir)):
                if not entry.endswith(".json"):
                    continue
                document = self._read(os.path.join(group_dir, entry))
                if document is not None:
                    result.append((unquote(entry[: -len(".json")]), document))
            return result

    @staticmethod
    def _read(path: str) -> Optional[Document]:
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)


def create_state_store(backend: str, state_dir: str) -> StateStore:
    if backend == "memory":
        return InMemoryStateStore()
    if backend == "file":
        logger.info("Using file state store at %s", state_dir)
        return FileStateStore(state_dir)
    raise ValueError(f"Unknown state backend '{backend}'. Available: ['memory', 'file']")
