"""
Pydantic Models and Schemas
===========================

Core data models for parsed posters, batch tasks and rendered artifacts.
Parsed elements are immutable value objects; batch tasks are mutated only
by the orchestrator that owns them.
"""

from typing import Optional, List, Union, Literal, Annotated
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


# Enums
class PosterType(str, Enum):
    """Poster type hints with their default canvas sizes."""

    GENERAL = "general"
    INVITATION = "invitation"
    WECHAT = "wechat"

    @property
    def default_size(self) -> tuple[int, int]:
        """Default (width, height) of the canvas for this poster type."""
        return POSTER_TYPE_SIZES[self]


POSTER_TYPE_SIZES = {
    PosterType.GENERAL: (800, 1200),
    PosterType.INVITATION: (800, 1200),
    PosterType.WECHAT: (900, 383),
}


class ElementType(str, Enum):
    """Poster element types."""

    TEXT = "text"
    IMAGE = "image"


class Complexity(str, Enum):
    """Estimated poster complexity derived from the element count."""

    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"

    @classmethod
    def from_count(cls, total_elements: int) -> "Complexity":
        if total_elements <= 5:
            return cls.SIMPLE
        if total_elements <= 10:
            return cls.MEDIUM
        return cls.COMPLEX


class TaskStatus(str, Enum):
    """Batch task status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


# Parser Models
class CanvasDescription(BaseModel):
    """Target raster surface recovered from poster markup."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    width: int = Field(..., description="Canvas width in pixels")
    height: int = Field(..., description="Canvas height in pixels")
    background_color: str = Field("#ffffff", alias="backgroundColor")
    background_image: Optional[str] = Field(None, alias="backgroundImage")

    @classmethod
    def for_poster_type(cls, poster_type: Optional[PosterType] = None) -> "CanvasDescription":
        """Default canvas for a poster type (general when unknown)."""
        width, height = (poster_type or PosterType.GENERAL).default_size
        return cls(width=width, height=height)


class BaseElement(BaseModel):
    """Fields shared by every poster element."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., description="Element identifier, unique within a parse")
    x: float = Field(0.0, description="X position in pixels")
    y: float = Field(0.0, description="Y position in pixels")
    width: float = Field(..., description="Width in pixels")
    height: float = Field(..., description="Height in pixels")
    opacity: float = Field(1.0, ge=0.0, le=1.0)


class TextElement(BaseElement):
    """Positioned text recovered from markup."""

    type: Literal["text"] = "text"
    content: str = Field(..., description="Text content")
    font_size: float = Field(16.0, alias="fontSize")
    font_family: str = Field("Arial, sans-serif", alias="fontFamily")
    color: str = "#000000"
    font_weight: Literal["normal", "bold"] = Field("normal", alias="fontWeight")

    background_color: Optional[str] = Field(None, alias="backgroundColor")
    text_shadow: Optional[str] = Field(None, alias="textShadow")
    border_radius: float = Field(0.0, alias="borderRadius")
    padding: float = 0.0
    text_align: Optional[Literal["left", "center", "right"]] = Field(None, alias="textAlign")


class ImageElement(BaseElement):
    """Positioned image (inline or background) recovered from markup."""

    type: Literal["image"] = "image"
    content: str = Field(..., description="Image URL or data URI")


PosterElement = Annotated[Union[TextElement, ImageElement], Field(discriminator="type")]


class ParseMetadata(BaseModel):
    """Summary of a parse."""

    model_config = ConfigDict(populate_by_name=True)

    total_elements: int = Field(0, ge=0, alias="totalElements")
    has_images: bool = Field(False, alias="hasImages")
    has_text: bool = Field(False, alias="hasText")
    estimated_complexity: Complexity = Field(Complexity.SIMPLE, alias="estimatedComplexity")

    @classmethod
    def from_elements(cls, elements: List[PosterElement]) -> "ParseMetadata":
        total = len(elements)
        return cls(
            total_elements=total,
            has_images=any(el.type == ElementType.IMAGE.value for el in elements),
            has_text=any(el.type == ElementType.TEXT.value for el in elements),
            estimated_complexity=Complexity.from_count(total),
        )


class ParseResult(BaseModel):
    """Result of a poster markup parse."""

    elements: List[PosterElement] = Field(default_factory=list)
    canvas: CanvasDescription
    metadata: ParseMetadata = Field(default_factory=ParseMetadata)


class ValidationReport(BaseModel):
    """Outcome of validating parsed elements."""

    valid: bool = Field(..., description="Whether no errors were found")
    errors: List[str] = Field(default_factory=list, description="Structurally unusable elements")
    warnings: List[str] = Field(default_factory=list, description="Suspicious but usable elements")


# Rendering Models
class RasterOptions(BaseModel):
    """Size and scale of a rasterization call."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(800, gt=0, le=8000, description="Surface width in CSS pixels")
    height: int = Field(1200, gt=0, le=8000, description="Surface height in CSS pixels")
    scale: float = Field(2.0, gt=0, le=4.0, description="Device pixel ratio")


class RenderArtifact(BaseModel):
    """Encoded image produced for one batch task."""

    png_data: bytes = Field(..., description="PNG binary data", exclude=True, repr=False)
    base64_data: str = Field(..., description="Base64 encoded PNG data", repr=False)
    url: str = Field(..., description="Data URI for the PNG", repr=False)
    width: int = Field(..., description="Image width in pixels")
    height: int = Field(..., description="Image height in pixels")
    file_size: int = Field(..., description="File size in bytes")
    surface: RasterOptions = Field(..., description="Raster surface the image came from")


# Batch Models
class BatchTaskInput(BaseModel):
    """One named variant to render."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    markup: str = Field(..., description="Resolved poster markup for this variant")


class BatchTask(BaseModel):
    """Unit of work producing one artifact for one variant."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    name: str
    status: TaskStatus = TaskStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    error: Optional[str] = None
    result: Optional[RenderArtifact] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class TaskUpdate(BaseModel):
    """Per-task notification emitted on every transition."""

    task_id: str
    status: TaskStatus
    progress: int = Field(..., ge=0, le=100)
    error: Optional[str] = None


class OverallUpdate(BaseModel):
    """Aggregate notification emitted after a task reaches a terminal state."""

    completed_count: int = Field(..., ge=0)
    failed_count: int = Field(0, ge=0)
    total_count: int = Field(..., ge=0)
    overall_progress: float = Field(..., ge=0.0, le=100.0)


class BatchRunState(BaseModel):
    """Snapshot of the orchestrator's run state."""

    tasks: List[BatchTask] = Field(default_factory=list)
    current_index: int = Field(-1, description="Index of the task in flight, -1 when idle")
    is_processing: bool = False
    is_paused: bool = False
    overall_progress: float = Field(0.0, ge=0.0, le=100.0)
    completed_count: int = 0
    failed_count: int = 0
    pending_count: int = 0
