"""Generation gateway: async access to the script, image and video backends."""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional
from uuid import uuid4

from anthropic import APIError

from .agents import ScriptAgent, ScriptInput
from .config import config
from .errors import GenerationFailure, PreconditionViolation
from .models import AspectRatio
from .services.imagen import ImagenClient
from .services.veo import GenerationStatus, VeoClient

logger = logging.getLogger(__name__)


class GenerationGateway(ABC):
    """The three paid generation capabilities.

    Every method either returns an artifact or raises ``GenerationFailure``
    with a message fit for users. Nothing is retried here; a retry is a new
    request from the user.
    """

    @abstractmethod
    async def breakdown_script(self, prompt: str) -> List[str]:
        """Return ordered scene descriptions for a concept."""
        ...

    @abstractmethod
    async def synthesize_character(self, prompt: str) -> str:
        """Return a base64-encoded character reference image."""
        ...

    @abstractmethod
    async def synthesize_video(
        self,
        description: str,
        reference_image: Optional[str],
        aspect_ratio: AspectRatio,
    ) -> str:
        """Return a reference to the generated clip."""
        ...


def require_text(value: str, what: str) -> str:
    if not value or not value.strip():
        raise PreconditionViolation(f"{what} cannot be empty")
    return value.strip()


class StudioGateway(GenerationGateway):
    """Gateway backed by Claude (script), Imagen (character) and Veo (video).

    The service clients block, so each call runs in a worker thread. Clients
    are created on first use.
    """

    def __init__(
        self,
        script_agent: Optional[ScriptAgent] = None,
        imagen: Optional[ImagenClient] = None,
        veo: Optional[VeoClient] = None,
        clips_dir: Optional[Path] = None,
    ) -> None:
        self._script_agent = script_agent
        self._imagen = imagen
        self._veo = veo
        self._clips_dir = clips_dir if clips_dir is not None else config.clips_dir

    def _get_script_agent(self) -> ScriptAgent:
        if self._script_agent is None:
            self._script_agent = ScriptAgent()
        return self._script_agent

    def _get_imagen(self) -> ImagenClient:
        if self._imagen is None:
            self._imagen = ImagenClient()
        return self._imagen

    def _get_veo(self) -> VeoClient:
        if self._veo is None:
            self._veo = VeoClient()
        return self._veo

    async def breakdown_script(self, prompt: str) -> List[str]:
        prompt = require_text(prompt, "Script prompt")
        try:
            agent = self._get_script_agent()
            return await asyncio.to_thread(agent.run, ScriptInput(concept=prompt))
        except (APIError, ValueError) as e:
            logger.error(f"Script breakdown failed: {e}")
            raise GenerationFailure(str(e) or "Failed to generate script", kind="script") from e

    async def synthesize_character(self, prompt: str) -> str:
        prompt = require_text(prompt, "Character prompt")
        try:
            client = self._get_imagen()
        except ValueError as e:
            raise GenerationFailure(str(e), kind="character") from e

        result = await asyncio.to_thread(client.generate_image, prompt, "1:1")
        if not result.ok:
            raise GenerationFailure(
                result.error_message or "Failed to generate character",
                kind="character",
            )
        return result.image_base64

    async def synthesize_video(
        self,
        description: str,
        reference_image: Optional[str],
        aspect_ratio: AspectRatio,
    ) -> str:
        description = require_text(description, "Scene description")
        try:
            client = self._get_veo()
        except ValueError as e:
            raise GenerationFailure(str(e), kind="video") from e

        output_path = None
        if self._clips_dir is not None:
            output_path = Path(self._clips_dir) / f"clip-{uuid4().hex}.mp4"

        result = await asyncio.to_thread(
            client.generate_clip,
            description,
            AspectRatio(aspect_ratio).value,
            reference_image,
            output_path,
        )
        if result.status != GenerationStatus.COMPLETED:
            raise GenerationFailure(result.error_message or "Video generation failed", kind="video")

        if result.local_path is not None:
            return str(result.local_path)
        return result.output_uri
