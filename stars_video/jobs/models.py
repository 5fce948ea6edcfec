"""Job record data model for async processing."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, target: "JobStatus") -> bool:
        """Forward-only along pending -> processing -> rendering -> completed.

        FAILED is reachable from every non-terminal stage.
        """
        if self.is_terminal:
            return False
        if target == JobStatus.FAILED:
            return True
        return _STAGE_ORDER.index(target) == _STAGE_ORDER.index(self) + 1


_STAGE_ORDER = [
    JobStatus.PENDING,
    JobStatus.PROCESSING,
    JobStatus.RENDERING,
    JobStatus.COMPLETED,
]


class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready dict with camelCase keys and unset fields omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StarData(_CamelModel):
    """Visualization payload cached per repository and fed to the renderer."""
    user: str
    user_avatar_url: str
    repository: str
    stars: int
    stargazers: List[str] = Field(default_factory=list)


class JobRecord(_CamelModel):
    """Tracks the lifecycle of a star-video job.

    Each stage writes a fresh record; only the fields that belong to that
    stage are set.
    """
    status: JobStatus
    owner: str
    repo: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
    failed_at: Optional[str] = None
    error: Optional[str] = None
    video_url: Optional[str] = None
    data: Optional[StarData] = None


class StarsRequest(BaseModel):
    owner: str
    repo: str
    theme: Theme = Theme.DARK

    @field_validator("owner")
    @classmethod
    def _owner_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("Repository owner cannot be empty")
        return value

    @field_validator("repo")
    @classmethod
    def _repo_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("Repository name cannot be empty")
        return value


class ProcessStarsEvent(BaseModel):
    owner: str
    repo: str
    job_id: str = Field(alias="jobId")
    theme: Theme = Theme.DARK

    model_config = ConfigDict(populate_by_name=True)


class RenderVideoEvent(ProcessStarsEvent):
    star_data: StarData = Field(alias="starData")
