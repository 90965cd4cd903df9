"""Project state model."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field
import yaml

from .scene import Scene


class PipelineStep(str, Enum):
    """Editing surface a project is on."""
    SCRIPT = "script"
    CHARACTER = "character"
    PRODUCTION = "production"

    @property
    def index(self) -> int:
        return list(PipelineStep).index(self)


class AspectRatio(str, Enum):
    """Output aspect ratio for every clip in a project."""
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"

    def toggled(self) -> "AspectRatio":
        if self is AspectRatio.LANDSCAPE:
            return AspectRatio.PORTRAIT
        return AspectRatio.LANDSCAPE


class Project(BaseModel):
    """A video production: script, character reference and scenes."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Unique project identifier")
    name: str = Field(..., description="Project name")
    created_at: datetime = Field(default_factory=datetime.now)
    last_modified: datetime = Field(default_factory=datetime.now)
    step: PipelineStep = Field(default=PipelineStep.SCRIPT, description="Current pipeline stage")
    script_prompt: str = Field(default="", description="Concept used for the scene breakdown")
    scenes: List[Scene] = Field(default_factory=list, description="Ordered scenes")
    character_prompt: str = Field(default="", description="Character reference description")
    character_image_base64: Optional[str] = Field(None, description="Generated character reference")
    aspect_ratio: AspectRatio = Field(default=AspectRatio.LANDSCAPE, description="Output aspect ratio")

    class Config:
        """Pydantic config."""
        frozen = False

    def scene_map(self) -> Dict[str, Scene]:
        """Scenes keyed by id."""
        return {scene.id: scene for scene in self.scenes}

    def get_scene(self, scene_id: str) -> Optional[Scene]:
        return self.scene_map().get(scene_id)

    def can_enter(self, step: PipelineStep) -> bool:
        """Whether navigating to ``step`` is offered.

        Going back is always allowed. Going forward needs at least one scene
        to reach the character stage and a character image to reach
        production.
        """
        if step.index <= self.step.index:
            return True
        if step.index >= PipelineStep.CHARACTER.index and not self.scenes:
            return False
        if step == PipelineStep.PRODUCTION and not self.character_image_base64:
            return False
        return True

    def next_step(self) -> Optional[PipelineStep]:
        steps = list(PipelineStep)
        if self.step.index + 1 < len(steps):
            return steps[self.step.index + 1]
        return None

    def to_yaml(self, path: Path) -> None:
        """Export the project as a YAML shot list.

        The character image is left out; ``kroma character --save`` writes it.
        """
        data = self.model_dump(mode="json", exclude={"character_image_base64"})
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
