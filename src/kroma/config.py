"""Configuration management."""

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


class CreditCosts(BaseModel):
    """Credit price of each paid generation step."""

    script: int = Field(default=10, ge=0, description="Script breakdown cost")
    character: int = Field(default=25, ge=0, description="Character image cost")
    video: int = Field(default=150, ge=0, description="Per-scene video cost")


class Config(BaseModel):
    """Application configuration."""

    # API Keys
    anthropic_api_key: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""),
        description="Anthropic API key"
    )
    google_application_credentials: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_APPLICATION_CREDENTIALS", ""),
        description="Path to Google Cloud service account JSON"
    )
    google_cloud_project: str = Field(
        default_factory=lambda: os.getenv("GOOGLE_CLOUD_PROJECT", ""),
        description="Google Cloud project ID"
    )
    veo_output_bucket: str = Field(
        default_factory=lambda: os.getenv("VEO_OUTPUT_BUCKET", ""),
        description="GCS bucket for Veo output"
    )

    # Paths
    workspace: Path = Field(
        default_factory=lambda: Path(os.getenv("KROMA_WORKSPACE", ".")),
        description="Workspace directory holding the studio database"
    )
    clips_dir: Optional[Path] = Field(
        default_factory=lambda: Path(os.environ["KROMA_CLIPS_DIR"]) if os.getenv("KROMA_CLIPS_DIR") else None,
        description="Download generated clips here instead of returning GCS URIs"
    )

    # Model settings
    default_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Default Claude model"
    )
    imagen_model: str = Field(
        default_factory=lambda: os.getenv("IMAGEN_MODEL", "imagen-3.0-generate-001"),
        description="Imagen model used for character references"
    )
    veo_model: str = Field(
        default_factory=lambda: os.getenv("VEO_MODEL", "veo-3"),
        description="Veo model used for scene clips"
    )

    # Studio settings
    user_id: str = Field(
        default_factory=lambda: os.getenv("KROMA_USER_ID", "local"),
        description="User whose credit balance pays for generations"
    )
    starting_credits: int = Field(
        default_factory=lambda: _env_int("KROMA_STARTING_CREDITS", 0),
        description="Balance granted to a user the ledger has never seen"
    )
    cost_script: int = Field(default_factory=lambda: _env_int("KROMA_COST_SCRIPT", 10))
    cost_character: int = Field(default_factory=lambda: _env_int("KROMA_COST_CHARACTER", 25))
    cost_video: int = Field(default_factory=lambda: _env_int("KROMA_COST_VIDEO", 150))
    max_parallel: int = Field(
        default_factory=lambda: _env_int("KROMA_MAX_PARALLEL", 3),
        description="Maximum concurrent scene generations (0 = unbounded)"
    )
    generation_timeout: float = Field(
        default_factory=lambda: _env_float("KROMA_GENERATION_TIMEOUT", 0.0),
        description="Seconds before a scene generation is failed (0 = never)"
    )

    class Config:
        """Pydantic config."""
        frozen = False

    @property
    def database_path(self) -> Path:
        """SQLite file holding projects and credit balances."""
        return self.workspace / "kroma.db"

    def costs(self) -> CreditCosts:
        """Return the configured credit costs."""
        return CreditCosts(
            script=self.cost_script,
            character=self.cost_character,
            video=self.cost_video,
        )

    def validate_required(self) -> None:
        """Validate that required credentials are set."""
        if not self.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY not set")

    def validate_veo_required(self) -> None:
        """Validate that Veo 3 / Google Cloud credentials are set.

        Raises:
            ValueError: If any required Veo configuration is missing.
        """
        missing: list[str] = []

        if not self.google_cloud_project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not self.veo_output_bucket:
            missing.append("VEO_OUTPUT_BUCKET")

        if missing:
            raise ValueError(
                f"Missing required Veo configuration: {', '.join(missing)}. "
                "Set the corresponding environment variables."
            )

        # Validate bucket format
        if self.veo_output_bucket and not self.veo_output_bucket.startswith("gs://"):
            raise ValueError(
                f"VEO_OUTPUT_BUCKET must be a GCS URI starting with 'gs://'. "
                f"Got: {self.veo_output_bucket}"
            )


# Global config instance
config = Config()
