"""
Stylesheet Scanner
==================

Best-effort scanning of embedded stylesheets and inline style attributes.

Not a CSS parser. Only single class selectors with flat declaration blocks
are recognised, and only pixel quantities are extracted. Anything else is
skipped rather than rejected.
"""

from typing import Dict, Optional
import re

Declarations = Dict[str, str]

_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_CLASS_RULE_RE = re.compile(r"\.([\w-]+)\s*\{([^{}]*)\}")
_PIXEL_RE = re.compile(r"(-?\d+(?:\.\d+)?)px")
_LEADING_NUMBER_RE = re.compile(r"^\s*(-?\d+(?:\.\d+)?)")
_URL_RE = re.compile(r"url\(\s*['\"]?([^'\")]+)['\"]?\s*\)")
_BACKGROUND_RE = re.compile(r"background(?:-color)?\s*:\s*([^;}]+)")
_CANVAS_SIZE_RE = re.compile(r"width:\s*(\d+)px.*height:\s*(\d+)px")

TEXT_ALIGNMENTS = ("left", "center", "right")


def parse_declarations(text: str) -> Declarations:
    """
    Split a declaration block into a property map.

    Args:
        text: Declarations such as ``"left: 10px; color: red"``

    Returns:
        Lower-cased property names mapped to trimmed values. Declarations
        without a name or a value are dropped.
    """
    declarations: Declarations = {}
    for chunk in text.split(";"):
        name, sep, value = chunk.partition(":")
        name = name.strip().lower()
        value = value.strip()
        if not sep or not name or not value:
            continue
        declarations[name] = value
    return declarations


def scan_stylesheet(css_text: str) -> Dict[str, Declarations]:
    """
    Scan stylesheet text for ``.class { ... }`` rules.

    Args:
        css_text: Raw stylesheet text

    Returns:
        Mapping of ``".class"`` selectors to their declarations. Repeated
        selectors are merged, later declarations winning.
    """
    rules: Dict[str, Declarations] = {}
    for match in _CLASS_RULE_RE.finditer(_COMMENT_RE.sub("", css_text or "")):
        selector = f".{match.group(1)}"
        declarations = parse_declarations(match.group(2))
        if not declarations:
            continue
        rules.setdefault(selector, {}).update(declarations)
    return rules


def extract_pixel_value(value: Optional[str]) -> Optional[float]:
    """Return the first ``NNpx`` quantity in a value, or None when there is none."""
    if not value:
        return None
    match = _PIXEL_RE.search(value)
    return float(match.group(1)) if match else None


def extract_number(value: Optional[str]) -> Optional[float]:
    """Return the leading number of a value (``"0.8"``, ``"700"``), or None."""
    if not value:
        return None
    match = _LEADING_NUMBER_RE.match(value)
    return float(match.group(1)) if match else None


def extract_background_image(value: Optional[str]) -> str:
    """Return the ``url(...)`` target of a background value, or an empty string."""
    if not value or value.strip() == "none":
        return ""
    match = _URL_RE.search(value)
    return match.group(1).strip() if match else ""


def extract_background_from_css(css_text: str, default: str = "#ffffff") -> str:
    """Return the first ``background``/``background-color`` value in stylesheet text."""
    match = _BACKGROUND_RE.search(css_text or "")
    return match.group(1).strip() if match else default


def find_canvas_size(css_text: str) -> Optional[tuple[int, int]]:
    """Find a ``width:NNpx ... height:NNpx`` pair on a single stylesheet line."""
    match = _CANVAS_SIZE_RE.search(css_text or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def normalize_font_weight(value: Optional[str]) -> str:
    """Map a declared font weight to ``bold`` or ``normal``."""
    if not value:
        return "normal"
    if value.strip().lower() == "bold":
        return "bold"
    weight = extract_number(value)
    return "bold" if weight is not None and weight > 500 else "normal"


def normalize_text_align(value: Optional[str]) -> Optional[str]:
    """Keep only the alignments the element model understands."""
    if not value:
        return None
    value = value.strip().lower()
    return value if value in TEXT_ALIGNMENTS else None


def normalize_opacity(value: Optional[str], default: float = 1.0) -> float:
    opacity = extract_number(value)
    if opacity is None:
        return default
    return min(1.0, max(0.0, opacity))
