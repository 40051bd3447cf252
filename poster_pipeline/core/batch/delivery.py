"""
Artifact Delivery
=================

Naming and delivery of completed batch artifacts. Filenames follow
``{subject}_{variant}_{suffix}.png`` exactly; names are concatenated as
given, without escaping.
"""

from typing import Any, Optional
from abc import ABC, abstractmethod
from pathlib import Path
import asyncio

from poster_pipeline.config.logging import get_logger
from poster_pipeline.config.settings import get_settings
from poster_pipeline.models.schemas import RenderArtifact

logger = get_logger(__name__)


class ArtifactDeliveryError(Exception):
    """Exception raised when an artifact cannot be delivered."""

    pass


def build_artifact_filename(subject_name: str, variant_name: str, suffix: str) -> str:
    """Filename for one variant's artifact."""
    return f"{subject_name}_{variant_name}_{suffix}.png"


class ArtifactDelivery(ABC):
    """Destination for completed artifacts."""

    @abstractmethod
    async def deliver(self, filename: str, artifact: RenderArtifact) -> str:
        """
        Deliver one artifact.

        Returns:
            Location of the delivered artifact
        """
        pass


class FileSystemDelivery(ArtifactDelivery):
    """Writes artifacts into an output directory."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir or get_settings().output_path)
        self.logger: Any = logger.bind(component="delivery")  # structlog.BoundLoggerBase

    async def deliver(self, filename: str, artifact: RenderArtifact) -> str:
        path = self.output_dir / filename
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(path.write_bytes, artifact.png_data)
        except OSError as e:
            raise ArtifactDeliveryError(f"Failed to write {filename}: {e}")

        self.logger.info("Artifact delivered", path=str(path), file_size=artifact.file_size)
        return str(path)
