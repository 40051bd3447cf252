"""
Poster Element Validator
========================

Structural checks over parsed poster elements. Errors mark elements that are
unusable; warnings mark elements that are suspicious but can still be placed.
Validation never raises.
"""

from typing import Any, Dict, List, Mapping, Sequence, Tuple, Union
from cerberus import Validator  # type: ignore[import-untyped]
from pydantic import BaseModel

from poster_pipeline.config.logging import get_logger
from poster_pipeline.models.schemas import ElementType, PosterElement, ValidationReport

logger = get_logger(__name__)

ElementLike = Union[PosterElement, Mapping[str, Any]]


class PosterElementValidator:
    """Element validation using a Cerberus schema plus custom rules."""

    def __init__(self) -> None:
        self.logger: Any = logger.bind(component="validator")  # structlog.BoundLoggerBase
        self._setup_schema()

    def _setup_schema(self) -> None:
        """Setup the element schema."""
        self.element_schema: Dict[str, Any] = {
            "id": {"type": "string", "required": True, "empty": False, "nullable": False},
            "type": {
                "type": "string",
                "required": True,
                "nullable": False,
                "allowed": [e.value for e in ElementType],
            },
            "x": {"type": "number", "nullable": True},
            "y": {"type": "number", "nullable": True},
            "width": {"type": "number", "required": True, "nullable": False},
            "height": {"type": "number", "required": True, "nullable": False},
            "content": {"type": "string", "nullable": True},
            "opacity": {"type": "number", "nullable": True},
        }

    def validate(self, elements: Sequence[ElementLike]) -> ValidationReport:
        """
        Validate a list of poster elements.

        Args:
            elements: Parsed elements, or their dictionary form

        Returns:
            ValidationReport with errors and warnings
        """
        errors: List[str] = []
        warnings: List[str] = []

        try:
            for index, element in enumerate(elements or []):
                element_errors, element_warnings = self._validate_element(
                    element, f"elements[{index}]"
                )
                errors.extend(element_errors)
                warnings.extend(element_warnings)
        except Exception as e:
            self.logger.error("Element validation aborted", error=str(e))
            errors.append(f"Validation aborted: {e}")

        if errors:
            self.logger.info(
                "Element validation found errors",
                error_count=len(errors),
                warning_count=len(warnings),
            )

        return ValidationReport(valid=not errors, errors=errors, warnings=warnings)

    def _validate_element(self, element: ElementLike, path: str) -> Tuple[List[str], List[str]]:
        """Validate one element."""
        errors: List[str] = []
        warnings: List[str] = []

        data = self._as_dict(element)
        if data is None:
            errors.append(f"{path}: Element must be an object, got {type(element).__name__}")
            return errors, warnings

        validator = Validator(self.element_schema)  # type: ignore[misc]
        validator.allow_unknown = True  # type: ignore[attr-defined]
        if not validator.validate(data):  # type: ignore[misc]
            errors.extend(self._format_validation_errors(validator.errors, path))  # type: ignore[attr-defined]

        width = data.get("width")
        height = data.get("height")
        if _is_number(width) and _is_number(height) and (width <= 0 or height <= 0):
            errors.append(f"{path}: Invalid size {width}x{height}, width and height must be positive")

        x = data.get("x") or 0
        y = data.get("y") or 0
        if _is_number(x) and _is_number(y) and (x < 0 or y < 0):
            warnings.append(f"{path}: Position ({x}, {y}) may fall outside the canvas")

        element_type = data.get("type")
        content = data.get("content")
        if element_type == ElementType.TEXT.value and not content:
            errors.append(f"{path}: Text element has empty content")
        if element_type == ElementType.IMAGE.value and not content:
            errors.append(f"{path}: Image element is missing its source")

        return errors, warnings

    @staticmethod
    def _as_dict(element: ElementLike) -> Union[Dict[str, Any], None]:
        if isinstance(element, BaseModel):
            return element.model_dump()
        if isinstance(element, Mapping):
            return dict(element)
        return None

    def _format_validation_errors(self, errors: Any, path: str = "") -> List[str]:
        """Format Cerberus validation errors into readable messages."""
        formatted_errors: List[str] = []

        for field, error_info in errors.items():
            current_path = f"{path}.{field}" if path else field

            if isinstance(error_info, list):
                for error in error_info:
                    if isinstance(error, dict):
                        formatted_errors.extend(self._format_validation_errors(error, current_path))
                    else:
                        formatted_errors.append(f"{current_path}: {error}")
            elif isinstance(error_info, dict):
                formatted_errors.extend(self._format_validation_errors(error_info, current_path))

        return formatted_errors


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_default_validator: Union[PosterElementValidator, None] = None


def validate_poster_elements(elements: Sequence[ElementLike]) -> ValidationReport:
    """
    Validate parsed poster elements without raising.

    Rules: ``id`` and ``type`` are required; width and height must be positive;
    text needs content and images need a source. Negative positions are warnings.

    Returns:
        ValidationReport (``valid`` is True for an empty list)
    """
    global _default_validator
    if _default_validator is None:
        _default_validator = PosterElementValidator()
    return _default_validator.validate(elements)
