"""
Variants
========

Expansion of one poster template into named variant tasks, e.g. one
invitation per invitee with ``XXX女士`` replaced by each invitee's name.
"""

from typing import Iterable, List, Optional

from poster_pipeline.config.logging import get_logger
from poster_pipeline.config.settings import get_settings
from poster_pipeline.models.schemas import BatchTaskInput

logger = get_logger(__name__)


class VariantError(ValueError):
    """Raised when a template or its variant names are unusable."""

    pass


def normalize_variant_names(names: Iterable[str]) -> List[str]:
    """Trim names, drop empty ones and keep the first occurrence of duplicates."""
    normalized: List[str] = []
    for name in names:
        cleaned = (name or "").strip()
        if not cleaned:
            continue
        if cleaned in normalized:
            logger.warning("Duplicate variant name ignored", name=cleaned)
            continue
        normalized.append(cleaned)
    return normalized


def render_variant(template: str, name: str, token: str, replacement: str) -> str:
    """Replace every occurrence of ``token`` with ``replacement`` filled with ``name``."""
    return template.replace(token, replacement.replace("{name}", name))


def build_variant_tasks(
    template: str,
    names: Iterable[str],
    token: Optional[str] = None,
    replacement: Optional[str] = None,
    id_prefix: str = "variant",
) -> List[BatchTaskInput]:
    """
    Build orchestrator inputs for every variant of a template.

    Args:
        template: Poster markup containing the variant token
        names: Variant names, e.g. invitee names
        token: Placeholder to replace (settings.variant_token by default)
        replacement: Pattern containing ``{name}`` (settings.variant_replacement by default)
        id_prefix: Prefix of generated task ids

    Returns:
        One BatchTaskInput per distinct, non-empty name, in input order

    Raises:
        VariantError: If the template is empty or no usable name remains
    """
    settings = get_settings()
    token = token or settings.variant_token
    replacement = replacement or settings.variant_replacement

    if not template or not template.strip():
        raise VariantError("Template markup is empty")

    variant_names = normalize_variant_names(names)
    if not variant_names:
        raise VariantError("At least one variant name is required")

    if token not in template:
        logger.warning("Variant token not found in template, variants will be identical", token=token)

    tasks = [
        BatchTaskInput(
            id=f"{id_prefix}_{index}",
            name=name,
            markup=render_variant(template, name, token, replacement),
        )
        for index, name in enumerate(variant_names, start=1)
    ]

    logger.info("Variant tasks built", count=len(tasks), token=token)
    return tasks
