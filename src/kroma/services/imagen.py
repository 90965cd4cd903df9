"""Google Imagen API client wrapper via Vertex AI."""

import base64
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import requests

from ..config import config

logger = logging.getLogger(__name__)


@dataclass
class ImageResult:
    """Result of an Imagen generation operation."""

    prompt: str
    image_base64: Optional[str] = None
    local_path: Optional[Path] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.image_base64 is not None and self.error_message is None


class ImagenClient:
    """Client wrapper for Google Imagen image generation via Vertex AI."""

    DEFAULT_LOCATION = "us-central1"
    REQUEST_TIMEOUT = 120.0

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: str = DEFAULT_LOCATION,
        model: Optional[str] = None,
    ) -> None:
        """Initialize the Imagen client.

        Args:
            project_id: Google Cloud project ID.
            location: GCP region for Vertex AI.
            model: Imagen model name.
        """
        self._project_id = project_id or config.google_cloud_project
        self._location = location
        self._model = model or config.imagen_model

        if not self._project_id:
            raise ValueError("GOOGLE_CLOUD_PROJECT not set")

    @property
    def project_id(self) -> str:
        return self._project_id

    @property
    def model(self) -> str:
        return self._model

    def _auth_headers(self) -> dict:
        scopes = ["https://www.googleapis.com/auth/cloud-platform"]
        credentials, _ = google.auth.default(scopes=scopes)
        credentials.refresh(google.auth.transport.requests.Request())
        return {
            "Authorization": f"Bearer {credentials.token}",
            "Content-Type": "application/json",
        }

    def generate_image(
        self,
        prompt: str,
        aspect_ratio: str = "1:1",
        negative_prompt: Optional[str] = None,
        output_path: Optional[Path] = None,
    ) -> ImageResult:
        """Generate a character reference image from a text prompt.

        The image comes back base64-encoded; it is also written to
        ``output_path`` when one is given.

        Args:
            prompt: Text description of the image to generate.
            aspect_ratio: Image aspect ratio ('1:1', '16:9', '9:16', '4:3', '3:4').
            negative_prompt: Things to avoid in the image.
            output_path: Optional local path to save the image.

        Returns:
            ImageResult; ``error_message`` is set when generation failed.
        """
        result = ImageResult(
            prompt=prompt,
            created_at=datetime.now(),
            metadata={
                "aspect_ratio": aspect_ratio,
                "model": self._model,
            },
        )

        url = (
            f"https://{self._location}-aiplatform.googleapis.com/v1/"
            f"projects/{self._project_id}/locations/{self._location}/"
            f"publishers/google/models/{self._model}:predict"
        )
        request_body = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": 1,
                "aspectRatio": aspect_ratio,
            },
        }
        if negative_prompt:
            request_body["parameters"]["negativePrompt"] = negative_prompt

        try:
            logger.info(f"Generating image with Imagen: {prompt[:50]}...")
            response = requests.post(
                url,
                json=request_body,
                headers=self._auth_headers(),
                timeout=self.REQUEST_TIMEOUT,
            )

            if response.status_code != 200:
                error_msg = f"{response.status_code}: {response.text[:500]}"
                logger.error(f"Imagen API error: {error_msg}")
                result.error_message = error_msg
                return result

            predictions = response.json().get("predictions", [])
            if not predictions:
                result.error_message = "No predictions in response (the prompt may have been filtered)"
                return result

            image_data = predictions[0].get("bytesBase64Encoded")
            if not image_data:
                result.error_message = "No image data in response"
                return result

            result.image_base64 = image_data

            if output_path:
                output_path.parent.mkdir(parents=True, exist_ok=True)
                with open(output_path, "wb") as f:
                    f.write(base64.b64decode(image_data))
                result.local_path = output_path
                logger.info(f"Saved image to {output_path}")

            return result

        except (requests.RequestException, google.auth.exceptions.GoogleAuthError) as e:
            logger.error(f"Image generation failed: {e}")
            result.error_message = str(e)
            return result
