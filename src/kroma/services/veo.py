"""Google Veo API client wrapper via Vertex AI."""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import requests
from google.cloud import storage
from google.api_core import exceptions as google_exceptions

from ..config import config

logger = logging.getLogger(__name__)


class GenerationStatus(str, Enum):
    """Status of a Veo generation operation."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class GenerationResult:
    """Result of a Veo generation operation."""

    operation_id: str
    status: GenerationStatus
    output_uri: Optional[str] = None
    local_path: Optional[Path] = None
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    def finish(self, status: GenerationStatus, error_message: Optional[str] = None) -> "GenerationResult":
        self.status = status
        self.error_message = error_message
        self.completed_at = datetime.now()
        return self


class VeoClient:
    """Client wrapper for Google Veo video generation via Vertex AI.

    This client handles:
    - Submitting long-running generation requests, optionally anchored on a
      character reference image
    - Polling the operation until it finishes or the polling window closes
    - Downloading generated videos from GCS
    """

    # Default configuration
    DEFAULT_LOCATION = "us-central1"
    DEFAULT_POLL_INTERVAL = 10.0  # seconds
    DEFAULT_MAX_POLL_TIME = 600.0  # 10 minutes
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0
    DEFAULT_DURATION = 8

    def __init__(
        self,
        project_id: Optional[str] = None,
        location: str = DEFAULT_LOCATION,
        output_bucket: Optional[str] = None,
        model: Optional[str] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_poll_time: float = DEFAULT_MAX_POLL_TIME,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize the Veo client.

        Args:
            project_id: Google Cloud project ID. Defaults to GOOGLE_CLOUD_PROJECT env var.
            location: GCP region for Vertex AI. Defaults to us-central1.
            output_bucket: GCS bucket for output videos. Defaults to VEO_OUTPUT_BUCKET env var.
            model: Veo model name. Defaults to config.veo_model.
            poll_interval: Seconds between polling checks.
            max_poll_time: Maximum seconds to wait for generation.
            max_retries: Maximum retry attempts for downloads.
            retry_delay: Base delay between retries (exponential backoff).
        """
        self._project_id = project_id or config.google_cloud_project
        self._location = location
        self._output_bucket = output_bucket or config.veo_output_bucket
        self._model = model or config.veo_model
        self._poll_interval = poll_interval
        self._max_poll_time = max_poll_time
        self._max_retries = max_retries
        self._retry_delay = retry_delay

        self._validate_config()
        self._storage_client = storage.Client(project=self._project_id)
        logger.info(
            f"Initialized Veo client for project {self._project_id} "
            f"in {self._location}"
        )

    def _validate_config(self) -> None:
        """Validate that required configuration is set."""
        missing = []
        if not self._project_id:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not self._output_bucket:
            missing.append("VEO_OUTPUT_BUCKET")

        if missing:
            raise ValueError(
                f"Missing required configuration: {', '.join(missing)}. "
                "Set the corresponding environment variables."
            )

        if not self._output_bucket.startswith("gs://"):
            raise ValueError(
                f"VEO_OUTPUT_BUCKET must be a GCS URI starting with 'gs://'. "
                f"Got: {self._output_bucket}"
            )

    @property
    def project_id(self) -> str:
        """Return the Google Cloud project ID."""
        return self._project_id

    @property
    def output_bucket(self) -> str:
        """Return the output GCS bucket."""
        return self._output_bucket

    @property
    def _model_url(self) -> str:
        return (
            f"https://{self._location}-aiplatform.googleapis.com/v1/"
            f"projects/{self._project_id}/locations/{self._location}/"
            f"publishers/google/models/{self._model}"
        )

    def _auth_headers(self) -> dict:
        credentials, _ = google.auth.default(
            scopes=["https://www.googleapis.com/auth/cloud-platform"]
        )
        credentials.refresh(google.auth.transport.requests.Request())
        return {
            "Authorization": f"Bearer {credentials.token}",
            "Content-Type": "application/json",
        }

    def generate_clip(
        self,
        prompt: str,
        aspect_ratio: str = "16:9",
        reference_image_base64: Optional[str] = None,
        output_path: Optional[Path] = None,
        scene_id: Optional[str] = None,
        duration: int = DEFAULT_DURATION,
    ) -> GenerationResult:
        """Generate a video clip from a text prompt.

        Args:
            prompt: Text description of the video to generate.
            aspect_ratio: Video aspect ratio ('16:9' or '9:16').
            reference_image_base64: Optional PNG used as the first frame so the
                character stays consistent across scenes.
            output_path: Local path to save the generated video.
            scene_id: Optional identifier for tracking.
            duration: Clip length in seconds (clamped to 5-8).

        Returns:
            GenerationResult with operation details and status.

        Raises:
            ValueError: If prompt is empty or aspect ratio is unsupported.
        """
        if not prompt or not prompt.strip():
            raise ValueError("Prompt cannot be empty")

        if aspect_ratio not in ("16:9", "9:16"):
            raise ValueError(f"Invalid aspect_ratio: {aspect_ratio}. Must be '16:9' or '9:16'")

        duration = max(5, min(8, int(duration)))
        operation_id = f"veo-{scene_id or 'clip'}-{int(time.time())}"
        bucket_name = self._output_bucket.replace("gs://", "").rstrip("/")
        result = GenerationResult(
            operation_id=operation_id,
            status=GenerationStatus.PENDING,
            started_at=datetime.now(),
            metadata={
                "prompt": prompt,
                "duration": duration,
                "aspect_ratio": aspect_ratio,
                "scene_id": scene_id,
                "reference_image": reference_image_base64 is not None,
            },
        )

        instance = {"prompt": prompt}
        if reference_image_base64:
            instance["image"] = {
                "bytesBase64Encoded": reference_image_base64,
                "mimeType": "image/png",
            }
        request_body = {
            "instances": [instance],
            "parameters": {
                "aspectRatio": aspect_ratio,
                "durationSeconds": duration,
                "sampleCount": 1,
                "storageUri": f"gs://{bucket_name}/{operation_id}/",
            },
        }

        try:
            logger.info(f"Starting Veo generation: {operation_id}")
            logger.debug(f"Prompt: {prompt[:100]}...")

            response = requests.post(
                f"{self._model_url}:predictLongRunning",
                json=request_body,
                headers=self._auth_headers(),
                timeout=60,
            )
            if response.status_code != 200:
                return result.finish(
                    GenerationStatus.FAILED,
                    f"{response.status_code}: {response.text[:500]}",
                )

            result.status = GenerationStatus.PROCESSING
            self._poll_operation(response.json()["name"], result)

            if result.status == GenerationStatus.COMPLETED and output_path and result.output_uri:
                self._download_from_gcs(result.output_uri, output_path)
                result.local_path = output_path
                logger.info(f"Downloaded generated video to {output_path}")

            return result

        except google_exceptions.GoogleAPICallError as e:
            logger.error(f"Storage error: {e}")
            return result.finish(GenerationStatus.FAILED, str(e))

        except (requests.RequestException, google.auth.exceptions.GoogleAuthError, KeyError) as e:
            logger.error(f"Veo request failed: {e}")
            return result.finish(GenerationStatus.FAILED, str(e))

    def _poll_operation(self, operation_name: str, result: GenerationResult) -> GenerationResult:
        """Poll an operation until completion or timeout.

        Args:
            operation_name: The long-running operation resource name.
            result: The GenerationResult to update.

        Returns:
            Updated GenerationResult with final status.
        """
        start_time = time.time()
        poll_count = 0

        while True:
            elapsed = time.time() - start_time
            if elapsed > self._max_poll_time:
                logger.warning(f"Operation {operation_name} timed out after {elapsed:.1f}s")
                return result.finish(
                    GenerationStatus.FAILED,
                    f"Operation timed out after {self._max_poll_time:.0f}s",
                )

            poll_count += 1
            logger.debug(f"Polling operation (attempt {poll_count}): {operation_name}")

            try:
                response = requests.post(
                    f"{self._model_url}:fetchPredictOperation",
                    json={"operationName": operation_name},
                    headers=self._auth_headers(),
                    timeout=60,
                )
                response.raise_for_status()
                operation = response.json()
            except requests.RequestException as e:
                logger.warning(f"Error checking operation status: {e}")
                time.sleep(self._poll_interval)
                continue

            if operation.get("done"):
                return self._apply_operation(operation, result)

            time.sleep(self._poll_interval)

    def _apply_operation(self, operation: dict, result: GenerationResult) -> GenerationResult:
        if "error" in operation:
            message = operation["error"].get("message", "Video generation failed")
            logger.error(f"Operation {result.operation_id} failed: {message}")
            return result.finish(GenerationStatus.FAILED, message)

        videos = operation.get("response", {}).get("videos", [])
        if not videos or not videos[0].get("gcsUri"):
            filtered = operation.get("response", {}).get("raiMediaFilteredReasons")
            message = filtered[0] if filtered else "No video returned by Veo"
            return result.finish(GenerationStatus.FAILED, message)

        result.output_uri = videos[0]["gcsUri"]
        logger.info(f"Operation {result.operation_id} completed: {result.output_uri}")
        return result.finish(GenerationStatus.COMPLETED)

    def _download_from_gcs(self, gcs_uri: str, local_path: Path) -> None:
        """Download a file from GCS to local path.

        Args:
            gcs_uri: GCS URI (gs://bucket/path/to/file).
            local_path: Local path to save the file.
        """
        if not gcs_uri.startswith("gs://"):
            raise ValueError(f"Invalid GCS URI: {gcs_uri}")

        uri_parts = gcs_uri[5:].split("/", 1)
        if len(uri_parts) != 2:
            raise ValueError(f"Invalid GCS URI format: {gcs_uri}")

        bucket_name, blob_name = uri_parts
        local_path.parent.mkdir(parents=True, exist_ok=True)

        for attempt in range(self._max_retries):
            try:
                blob = self._storage_client.bucket(bucket_name).blob(blob_name)
                blob.download_to_filename(str(local_path))
                logger.debug(f"Downloaded {gcs_uri} to {local_path}")
                return

            except google_exceptions.NotFound:
                logger.error(f"File not found in GCS: {gcs_uri}")
                raise

            except google_exceptions.GoogleAPICallError as e:
                delay = self._retry_delay * (2**attempt)
                logger.warning(f"Download failed (attempt {attempt + 1}): {e}. Retrying in {delay}s...")
                if attempt == self._max_retries - 1:
                    raise
                time.sleep(delay)
