"""External service integrations."""

from .anthropic import AnthropicClient
from .imagen import ImagenClient, ImageResult
from .veo import VeoClient, GenerationStatus, GenerationResult

__all__ = [
    "AnthropicClient",
    "ImagenClient",
    "ImageResult",
    "VeoClient",
    "GenerationStatus",
    "GenerationResult",
]
