"""
Poster Markup Parser
====================

Recovers a canvas description and an ordered list of typed, positioned
elements from AI-generated poster markup.

Two generation dialects are recognised:

- tagged: a flat ``.poster`` container whose children are styled only through
  class rules in an embedded stylesheet.
- generic: arbitrary nested markup with inline positional styles.

Parsing never raises. Anything unrecognisable degrades to defaults, and the
worst case is an empty element list on the poster type's default canvas.
"""

from typing import Any, Dict, Iterator, List, Optional, Union
from abc import ABC, abstractmethod
import itertools
import math
import time

import lxml.html
from lxml import etree

from poster_pipeline.config.logging import get_logger
from poster_pipeline.core.markup.stylesheet import (
    Declarations,
    extract_background_from_css,
    extract_background_image,
    extract_number,
    extract_pixel_value,
    find_canvas_size,
    normalize_font_weight,
    normalize_opacity,
    normalize_text_align,
    parse_declarations,
    scan_stylesheet,
)
from poster_pipeline.models.schemas import (
    CanvasDescription,
    ImageElement,
    ParseMetadata,
    ParseResult,
    PosterElement,
    PosterType,
    TextElement,
)

logger = get_logger(__name__)

TAGGED_CONTAINER_CLASS = "poster"
DEFAULT_FONT_SIZE = 16.0
DEFAULT_FONT_FAMILY = "Arial, sans-serif"
DEFAULT_COLOR = "#000000"
DEFAULT_BACKGROUND = "#ffffff"
DEFAULT_TAGGED_WIDTH = 200.0
DEFAULT_IMAGE_SIZE = 100.0
TAGGED_CHARS_PER_LINE = 30
MIN_CANVAS_SIDE = 200
EXPECTED_SIZE_TOLERANCE = 50

SKIPPED_TAGS = frozenset({"head", "script", "style"})


class MarkupParseError(Exception):
    """Exception raised inside the parser when markup cannot be processed."""

    pass


def coerce_poster_type(poster_type: Union[PosterType, str, None]) -> Optional[PosterType]:
    """Turn a poster-type hint into a PosterType, ignoring unknown hints."""
    if poster_type is None or isinstance(poster_type, PosterType):
        return poster_type
    try:
        return PosterType(str(poster_type).strip().lower())
    except ValueError:
        logger.warning("Unknown poster type hint, using defaults", poster_type=poster_type)
        return None


def load_document(raw_markup: str) -> etree._Element:
    """
    Parse raw markup into an lxml HTML document.

    Raises:
        MarkupParseError: If lxml cannot build a document
    """
    try:
        return lxml.html.document_fromstring(raw_markup)
    except (etree.ParserError, ValueError) as e:
        raise MarkupParseError(f"Unreadable markup: {e}")


def collect_stylesheet_text(document: etree._Element) -> str:
    """Concatenate the text of every embedded <style> element."""
    return "\n".join(style.text_content() for style in document.iter("style"))


def iter_element_children(element: etree._Element) -> Iterator[etree._Element]:
    """Yield child elements, skipping comments and processing instructions."""
    for child in element:
        if isinstance(child.tag, str):
            yield child


def direct_text(element: etree._Element) -> str:
    """Return the element's own text (not its descendants'), whitespace collapsed."""
    parts = [element.text or ""]
    parts.extend(child.tail or "" for child in element)
    return " ".join("".join(parts).split())


class BaseMarkupParser(ABC):
    """Abstract base class for dialect parsers."""

    dialect = "base"

    def __init__(self) -> None:
        self.logger: Any = logger.bind(parser=self.dialect)  # structlog.BoundLoggerBase

    @abstractmethod
    def parse(
        self, document: etree._Element, poster_type: Optional[PosterType] = None
    ) -> ParseResult:
        """Extract canvas and elements from a parsed document."""
        pass

    @staticmethod
    def _build_result(elements: List[PosterElement], canvas: CanvasDescription) -> ParseResult:
        return ParseResult(
            elements=elements,
            canvas=canvas,
            metadata=ParseMetadata.from_elements(elements),
        )


class TaggedMarkupParser(BaseMarkupParser):
    """Parser for flat ``.poster`` containers styled by class rules."""

    dialect = "tagged"

    def parse(
        self, document: etree._Element, poster_type: Optional[PosterType] = None
    ) -> ParseResult:
        containers = document.find_class(TAGGED_CONTAINER_CLASS)
        if not containers:
            raise MarkupParseError(f"No .{TAGGED_CONTAINER_CLASS} container found")
        container = containers[0]

        rules = scan_stylesheet(collect_stylesheet_text(document))
        self.logger.debug("Stylesheet scanned", rule_count=len(rules))

        canvas = self._extract_canvas(container, rules, poster_type)
        elements: List[PosterElement] = []

        for index, child in enumerate(iter_element_children(container)):
            classes = (child.get("class") or "").split()
            if not classes:
                continue

            text = child.text_content().strip()
            if not text:
                self.logger.debug("Skipping empty element", class_name=classes[0])
                continue

            style = self._resolve_style(child, classes, rules)
            elements.append(self._create_text_element(classes[0], index, text, style))

        self.logger.info(
            "Tagged markup parsed",
            element_count=len(elements),
            canvas_width=canvas.width,
            canvas_height=canvas.height,
        )
        return self._build_result(elements, canvas)

    def _extract_canvas(
        self,
        container: etree._Element,
        rules: Dict[str, Declarations],
        poster_type: Optional[PosterType],
    ) -> CanvasDescription:
        """Derive the canvas from the container's own declarations."""
        style = dict(rules.get(f".{TAGGED_CONTAINER_CLASS}", {}))
        style.update(parse_declarations(container.get("style") or ""))

        default_width, default_height = (poster_type or PosterType.GENERAL).default_size
        width = extract_pixel_value(style.get("width"))
        height = extract_pixel_value(style.get("height"))

        return CanvasDescription(
            width=round(width) if width and width > 0 else default_width,
            height=round(height) if height and height > 0 else default_height,
            background_color=(
                style.get("background") or style.get("background-color") or DEFAULT_BACKGROUND
            ),
        )

    @staticmethod
    def _resolve_style(
        child: etree._Element, classes: List[str], rules: Dict[str, Declarations]
    ) -> Declarations:
        """Merge the rules of every class on the element, then its inline style."""
        style: Declarations = {}
        for class_name in classes:
            style.update(rules.get(f".{class_name}", {}))
        style.update(parse_declarations(child.get("style") or ""))
        return style

    @staticmethod
    def _create_text_element(
        class_name: str, index: int, text: str, style: Declarations
    ) -> TextElement:
        font_size = extract_pixel_value(style.get("font-size")) or DEFAULT_FONT_SIZE
        x = extract_pixel_value(style.get("left"))
        y = extract_pixel_value(style.get("top"))
        width = extract_pixel_value(style.get("width"))
        height = extract_pixel_value(style.get("height"))

        if height is None:
            lines = math.ceil(len(text) / TAGGED_CHARS_PER_LINE)
            height = font_size * 1.5 * lines

        return TextElement(
            id=f"tagged_{class_name}_{index}",
            content=text,
            x=x if x is not None else 0.0,
            y=y if y is not None else 0.0,
            width=width if width is not None else DEFAULT_TAGGED_WIDTH,
            height=height,
            font_size=font_size,
            font_family=style.get("font-family") or DEFAULT_FONT_FAMILY,
            color=style.get("color") or DEFAULT_COLOR,
            font_weight=normalize_font_weight(style.get("font-weight")),
            opacity=normalize_opacity(style.get("opacity")),
            background_color=(
                style.get("background") or style.get("background-color") or "transparent"
            ),
            text_shadow=style.get("text-shadow"),
            border_radius=extract_pixel_value(style.get("border-radius")) or 0.0,
            padding=extract_pixel_value(style.get("padding")) or 0.0,
            text_align=normalize_text_align(style.get("text-align")),
        )


class GenericMarkupParser(BaseMarkupParser):
    """Parser for arbitrary nested markup with inline positional styles."""

    dialect = "generic"

    def parse(
        self, document: etree._Element, poster_type: Optional[PosterType] = None
    ) -> ParseResult:
        canvas = self.extract_canvas_info(document)
        if canvas is None:
            self.logger.info("No canvas hints found, using poster type default")
            canvas = CanvasDescription.for_poster_type(poster_type)

        elements: List[PosterElement] = []
        counter = itertools.count(1)
        root = document.find("body")
        if root is None:
            root = document

        self._walk(root, 0.0, 0.0, canvas, elements, counter)

        self.logger.info(
            "Generic markup parsed",
            element_count=len(elements),
            canvas_width=canvas.width,
            canvas_height=canvas.height,
        )
        return self._build_result(elements, canvas)

    def extract_canvas_info(self, document: etree._Element) -> Optional[CanvasDescription]:
        """
        Recover canvas size and background from likely container elements.

        Candidates are checked in order: the first element whose inline style
        mentions a width, ``.poster-container``, ``.container`` and ``body``.
        Failing those, the embedded stylesheet is scanned for a width/height pair.

        Returns:
            CanvasDescription, or None when no usable hint exists
        """
        candidates: List[etree._Element] = []
        candidates.extend(document.xpath("//*[contains(@style, 'width')]")[:1])
        candidates.extend(document.find_class("poster-container")[:1])
        candidates.extend(document.find_class("container")[:1])
        body = document.find("body")
        if body is not None:
            candidates.append(body)

        for candidate in candidates:
            styles = parse_declarations(candidate.get("style") or "")
            width = extract_pixel_value(styles.get("width"))
            if width is None:
                width = extract_pixel_value(styles.get("max-width"))
            height = extract_pixel_value(styles.get("height"))
            if height is None:
                height = extract_pixel_value(styles.get("max-height"))

            if width is not None and height is not None:
                if width >= MIN_CANVAS_SIDE and height >= MIN_CANVAS_SIDE:
                    background_image = extract_background_image(
                        styles.get("background-image") or styles.get("background")
                    )
                    return CanvasDescription(
                        width=round(width),
                        height=round(height),
                        background_color=(
                            styles.get("background-color")
                            or styles.get("background")
                            or DEFAULT_BACKGROUND
                        ),
                        background_image=background_image or None,
                    )

        css_text = collect_stylesheet_text(document)
        size = find_canvas_size(css_text)
        if size:
            return CanvasDescription(
                width=size[0],
                height=size[1],
                background_color=extract_background_from_css(css_text, DEFAULT_BACKGROUND),
            )

        return None

    def _walk(
        self,
        element: etree._Element,
        offset_x: float,
        offset_y: float,
        canvas: CanvasDescription,
        elements: List[PosterElement],
        counter: Iterator[int],
    ) -> None:
        """Pre-order traversal accumulating positional offsets from ancestors."""
        if not isinstance(element.tag, str) or element.tag.lower() in SKIPPED_TAGS:
            return

        styles = parse_declarations(element.get("style") or "")
        x = offset_x + (extract_pixel_value(styles.get("left")) or 0.0)
        x += extract_pixel_value(styles.get("margin-left")) or 0.0
        y = offset_y + (extract_pixel_value(styles.get("top")) or 0.0)
        y += extract_pixel_value(styles.get("margin-top")) or 0.0

        text = direct_text(element)
        if text:
            elements.append(self._create_text_element(text, styles, x, y, canvas, next(counter)))

        if element.tag.lower() == "img":
            image = self._create_image_element(element, styles, x, y, next(counter))
            if image is not None:
                elements.append(image)

        background = styles.get("background-image")
        if background and background.strip().lower() != "none":
            source = extract_background_image(background)
            if source:
                elements.append(
                    ImageElement(
                        id=f"bg_image_{next(counter)}",
                        content=source,
                        x=x,
                        y=y,
                        width=extract_pixel_value(styles.get("width")) or DEFAULT_IMAGE_SIZE,
                        height=extract_pixel_value(styles.get("height")) or DEFAULT_IMAGE_SIZE,
                        opacity=normalize_opacity(styles.get("opacity")),
                    )
                )

        for child in iter_element_children(element):
            self._walk(child, x, y, canvas, elements, counter)

    @staticmethod
    def _create_text_element(
        text: str,
        styles: Declarations,
        x: float,
        y: float,
        canvas: CanvasDescription,
        sequence: int,
    ) -> TextElement:
        """Estimate the text box and clamp it into the canvas."""
        font_size = extract_pixel_value(styles.get("font-size")) or DEFAULT_FONT_SIZE
        width = min(len(text) * font_size * 0.6, canvas.width * 0.8)
        height = font_size * 1.5

        return TextElement(
            id=f"text_{sequence}",
            content=text,
            x=max(0.0, min(x, canvas.width - width)),
            y=max(0.0, min(y, canvas.height - height)),
            width=width,
            height=height,
            font_size=font_size,
            font_family=styles.get("font-family") or DEFAULT_FONT_FAMILY,
            color=styles.get("color") or DEFAULT_COLOR,
            font_weight=normalize_font_weight(styles.get("font-weight")),
            opacity=normalize_opacity(styles.get("opacity")),
            text_align=normalize_text_align(styles.get("text-align")),
        )

    @staticmethod
    def _create_image_element(
        element: etree._Element, styles: Declarations, x: float, y: float, sequence: int
    ) -> Optional[ImageElement]:
        source = (element.get("src") or "").strip()
        if not source:
            return None

        width = extract_pixel_value(styles.get("width")) or extract_number(element.get("width"))
        height = extract_pixel_value(styles.get("height")) or extract_number(
            element.get("height")
        )

        return ImageElement(
            id=f"image_{sequence}",
            content=source,
            x=x,
            y=y,
            width=width or DEFAULT_IMAGE_SIZE,
            height=height or DEFAULT_IMAGE_SIZE,
            opacity=normalize_opacity(styles.get("opacity")),
        )


class MarkupParserFactory:
    """Factory for creating dialect parsers."""

    _parsers = {
        "tagged": TaggedMarkupParser,
        "generic": GenericMarkupParser,
    }

    @classmethod
    def create_parser(cls, dialect: str) -> BaseMarkupParser:
        """
        Create a parser instance for a dialect.

        Raises:
            ValueError: If the dialect is not supported
        """
        if dialect not in cls._parsers:
            raise ValueError(f"Unsupported markup dialect: {dialect}")

        return cls._parsers[dialect]()

    @classmethod
    def detect_dialect(cls, document: etree._Element) -> str:
        """Tagged when a ``.poster`` container exists, generic otherwise."""
        if document.find_class(TAGGED_CONTAINER_CLASS):
            return "tagged"
        return "generic"


def _check_expected_size(canvas: CanvasDescription, poster_type: Optional[PosterType]) -> None:
    if poster_type is None:
        return
    expected_width, expected_height = poster_type.default_size
    if (
        abs(canvas.width - expected_width) > EXPECTED_SIZE_TOLERANCE
        or abs(canvas.height - expected_height) > EXPECTED_SIZE_TOLERANCE
    ):
        logger.warning(
            "Canvas size differs from poster type default",
            poster_type=poster_type.value,
            actual=f"{canvas.width}x{canvas.height}",
            expected=f"{expected_width}x{expected_height}",
        )


def parse_poster_markup(
    raw_markup: str, poster_type: Union[PosterType, str, None] = None
) -> ParseResult:
    """
    Parse poster markup into a canvas description and positioned elements.

    Args:
        raw_markup: Markup and embedded stylesheet text
        poster_type: Optional hint ('general', 'invitation', 'wechat') used for
            canvas defaults

    Returns:
        ParseResult. Never raises; unreadable input yields no elements on the
        poster type's default canvas.
    """
    start_time = time.time()
    hint = coerce_poster_type(poster_type)
    fallback = ParseResult(canvas=CanvasDescription.for_poster_type(hint))

    if not raw_markup or not raw_markup.strip():
        logger.info("Empty poster markup, returning default canvas")
        return fallback

    try:
        document = load_document(raw_markup)
        dialect = MarkupParserFactory.detect_dialect(document)
        logger.info(
            "Parsing poster markup",
            dialect=dialect,
            poster_type=hint.value if hint else None,
            markup_length=len(raw_markup),
        )
        result = MarkupParserFactory.create_parser(dialect).parse(document, hint)
    except Exception as e:
        logger.error("Poster markup parsing failed, returning empty result", error=str(e))
        return fallback

    _check_expected_size(result.canvas, hint)
    logger.debug(
        "Poster markup parse finished",
        element_count=result.metadata.total_elements,
        complexity=result.metadata.estimated_complexity.value,
        processing_time=round(time.time() - start_time, 4),
    )
    return result
