"""Data models for the production studio."""

from .scene import Scene, SceneStatus, DEFAULT_SCENE_DESCRIPTION, INTERRUPTED_MESSAGE
from .project import Project, PipelineStep, AspectRatio

__all__ = [
    "Scene",
    "SceneStatus",
    "DEFAULT_SCENE_DESCRIPTION",
    "INTERRUPTED_MESSAGE",
    "Project",
    "PipelineStep",
    "AspectRatio",
]
