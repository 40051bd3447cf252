"""
Markup Processing Module
========================

Recovery of a typed, positioned element model from poster markup.

Components:
- stylesheet: best-effort stylesheet and inline style scanner
- parser: dialect detection and tagged/generic element extraction
- validator: structural checks over recovered elements
"""

from poster_pipeline.core.markup.parser import parse_poster_markup
from poster_pipeline.core.markup.validator import validate_poster_elements

__all__ = ["parse_poster_markup", "validate_poster_elements"]
