"""
Rasterizer
==========

The rasterization capability turns a mounted surface into PNG bytes. The
orchestrator only depends on the ``Rasterizer`` interface; the Playwright
implementation screenshots the mounted container.

``encode_artifact`` converts raw PNG bytes into the artifact stored on a
completed batch task.
"""

from typing import Any
from abc import ABC, abstractmethod
import base64
import io

from PIL import Image, UnidentifiedImageError

from poster_pipeline.config.logging import get_logger
from poster_pipeline.core.rendering.surface import MountedSurface
from poster_pipeline.models.schemas import RasterOptions, RenderArtifact

logger = get_logger(__name__)


class RasterizationError(Exception):
    """Exception raised when a surface cannot be rasterized or encoded."""

    pass


class Rasterizer(ABC):
    """Rasterization capability used by the batch orchestrator."""

    @abstractmethod
    async def rasterize(self, surface: MountedSurface, options: RasterOptions) -> bytes:
        """
        Render a mounted surface to PNG bytes.

        Args:
            surface: Surface mounted by a SurfaceHost
            options: Width, height and scale of the output

        Returns:
            PNG image bytes
        """
        pass


class PlaywrightRasterizer(Rasterizer):
    """Screenshots the mounted container of a Playwright-backed surface."""

    def __init__(self) -> None:
        self.logger: Any = logger.bind(rasterizer="playwright")  # structlog.BoundLoggerBase

    async def rasterize(self, surface: MountedSurface, options: RasterOptions) -> bytes:
        if surface.page is None:
            raise RasterizationError("Surface is not mounted on a browser page")

        try:
            self.logger.info(
                "Rasterizing surface",
                surface_id=surface.surface_id,
                width=options.width,
                height=options.height,
                scale=options.scale,
            )
            screenshot_bytes = await surface.page.screenshot(
                type="png",
                clip={"x": 0, "y": 0, "width": options.width, "height": options.height},
                scale="device",
                animations="disabled",
            )
        except Exception as e:
            error_msg = f"Rasterization failed: {e}"
            self.logger.error("Rasterization error", error=error_msg)
            raise RasterizationError(error_msg)

        self.logger.debug("Surface rasterized", file_size=len(screenshot_bytes))
        return screenshot_bytes


def optimize_png(png_bytes: bytes) -> bytes:
    """
    Re-encode PNG bytes with maximum compression.

    Falls back to the original bytes when Pillow cannot re-encode them.
    """
    try:
        with Image.open(io.BytesIO(png_bytes)) as image:
            output = io.BytesIO()
            image.save(output, format="PNG", optimize=True, compress_level=9)
            optimized_bytes = output.getvalue()
    except (OSError, ValueError) as e:
        logger.warning("PNG optimization failed, using original", error=str(e))
        return png_bytes

    if len(optimized_bytes) >= len(png_bytes):
        return png_bytes

    logger.debug(
        "PNG optimization completed",
        original_size=len(png_bytes),
        optimized_size=len(optimized_bytes),
        reduction_percent=round((1 - len(optimized_bytes) / len(png_bytes)) * 100, 2),
    )
    return optimized_bytes


def encode_artifact(
    png_bytes: bytes, options: RasterOptions, optimize: bool = False
) -> RenderArtifact:
    """
    Encode raster output into a render artifact.

    Args:
        png_bytes: PNG bytes returned by a Rasterizer
        options: Raster surface the bytes came from
        optimize: Re-encode with Pillow before storing

    Returns:
        RenderArtifact with bytes, base64 data and a data URI

    Raises:
        RasterizationError: If the bytes are not a readable image
    """
    if not png_bytes:
        raise RasterizationError("Rasterizer returned no image data")

    try:
        with Image.open(io.BytesIO(png_bytes)) as image:
            width, height = image.size
    except (UnidentifiedImageError, OSError) as e:
        raise RasterizationError(f"Raster output is not a readable image: {e}")

    if optimize:
        png_bytes = optimize_png(png_bytes)

    base64_data = base64.b64encode(png_bytes).decode("utf-8")
    return RenderArtifact(
        png_data=png_bytes,
        base64_data=base64_data,
        url=f"data:image/png;base64,{base64_data}",
        width=width,
        height=height,
        file_size=len(png_bytes),
        surface=options,
    )
