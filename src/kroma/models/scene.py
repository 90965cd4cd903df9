"""Scene data model."""

from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from ..errors import PreconditionViolation

DEFAULT_SCENE_DESCRIPTION = "A new scene description..."
INTERRUPTED_MESSAGE = "Generation interrupted"


class SceneStatus(str, Enum):
    """Generation lifecycle of a scene."""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class Scene(BaseModel):
    """Represents a single scene in the video.

    ``video_url`` is set only when completed and ``error`` only when failed;
    the model refuses any other combination.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique scene identifier")
    order: int = Field(..., description="1-based display position", ge=1)
    description: str = Field(default=DEFAULT_SCENE_DESCRIPTION, description="Video generation prompt")
    status: SceneStatus = Field(default=SceneStatus.PENDING, description="Generation status")
    video_url: Optional[str] = Field(None, description="Generated clip reference")
    error: Optional[str] = Field(None, description="Failure message from the last attempt")

    class Config:
        """Pydantic config."""
        frozen = False

    @model_validator(mode="after")
    def _check_status_fields(self) -> "Scene":
        if self.status == SceneStatus.COMPLETED:
            if not self.video_url:
                raise ValueError("completed scene requires video_url")
            if self.error:
                raise ValueError("completed scene cannot carry an error")
        elif self.status == SceneStatus.ERROR:
            if not self.error:
                raise ValueError("errored scene requires an error message")
            if self.video_url:
                raise ValueError("errored scene cannot carry a video_url")
        elif self.video_url or self.error:
            raise ValueError(f"{self.status.value} scene cannot carry video_url or error")
        return self

    @property
    def can_generate(self) -> bool:
        """Whether the primary generate action is offered."""
        return self.status in (SceneStatus.PENDING, SceneStatus.ERROR)

    def _evolve(self, **changes: Any) -> "Scene":
        # model_copy skips validation
        return type(self).model_validate({**self.model_dump(), **changes})

    def with_description(self, description: str) -> "Scene":
        return self._evolve(description=description)

    def start_generation(self) -> "Scene":
        if not self.can_generate:
            raise PreconditionViolation(
                f"Scene {self.id} cannot start generating from {self.status.value}"
            )
        return self._evolve(status=SceneStatus.GENERATING, error=None, video_url=None)

    def complete(self, video_url: str) -> "Scene":
        if self.status != SceneStatus.GENERATING:
            raise PreconditionViolation(f"Scene {self.id} is not generating")
        return self._evolve(status=SceneStatus.COMPLETED, video_url=video_url, error=None)

    def fail(self, message: str) -> "Scene":
        if self.status != SceneStatus.GENERATING:
            raise PreconditionViolation(f"Scene {self.id} is not generating")
        return self._evolve(
            status=SceneStatus.ERROR,
            error=message or "Video generation failed",
            video_url=None,
        )
