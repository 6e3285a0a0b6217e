"""
SEO Scorer - Listing search-quality score in [0, 100].

Pure functions of the base content and the channel overrides. Channel-level
factors (tags, bullets, materials) take the best value over all overrides, so
the score does not depend on override order.
"""

import math
from collections.abc import Iterable, Mapping
from typing import Any

from listing_engine.models.domain import ChannelOverrideInput

TITLE_WEIGHT = 20
DESCRIPTION_WEIGHT = 20
TAGS_WEIGHT = 15
BULLETS_WEIGHT = 15
IMAGES_WEIGHT = 15
CATEGORY_WEIGHT = 10
MATERIALS_WEIGHT = 5


def _title_points(length: int) -> float:
    if 40 <= length <= 80:
        return TITLE_WEIGHT
    if 20 <= length < 40 or 80 < length <= 120:
        return TITLE_WEIGHT * 0.7
    if length > 0:
        return TITLE_WEIGHT * 0.4
    return 0.0


def _description_points(length: int) -> float:
    if 200 <= length <= 2000:
        return DESCRIPTION_WEIGHT
    if 100 <= length < 200 or 2000 < length <= 3000:
        return DESCRIPTION_WEIGHT * 0.7
    if length > 0:
        return DESCRIPTION_WEIGHT * 0.4
    return 0.0


def _image_points(count: int) -> float:
    if count >= 5:
        return IMAGES_WEIGHT
    if count >= 3:
        return IMAGES_WEIGHT * 0.8
    if count >= 1:
        return IMAGES_WEIGHT * 0.5
    return 0.0


def _tag_points(count: int) -> float:
    if count >= 10:
        return TAGS_WEIGHT
    if count >= 5:
        return TAGS_WEIGHT * 0.7
    if count > 0:
        return TAGS_WEIGHT * 0.4
    return 0.0


def _bullet_points(count: int) -> float:
    if count >= 5:
        return BULLETS_WEIGHT
    if count >= 3:
        return BULLETS_WEIGHT * 0.7
    if count > 0:
        return BULLETS_WEIGHT * 0.4
    return 0.0


def _material_points(count: int) -> float:
    if count >= 3:
        return MATERIALS_WEIGHT
    if count > 0:
        return MATERIALS_WEIGHT * 0.6
    return 0.0


def _text(base: Mapping[str, Any], key: str) -> str:
    value = base.get(key)
    return value if isinstance(value, str) else ""


def score(
    base: Mapping[str, Any],
    overrides: Iterable[ChannelOverrideInput] = (),
    image_count: int | None = None,
) -> int:
    """
    Compute the SEO score.

    Args:
        base: Base listing data (title, description, category, images)
        overrides: Channel overrides
        image_count: Image count when images are stored apart from base data

    Returns:
        Integer score, rounded half-up and clamped to [0, 100]
    """
    if image_count is None:
        image_count = len(base.get("images") or ())

    total = _title_points(len(_text(base, "title")))
    total += _description_points(len(_text(base, "description")))
    total += _image_points(image_count)
    if _text(base, "category"):
        total += CATEGORY_WEIGHT

    tag_points = bullet_points = material_points = 0.0
    for override in overrides:
        tag_points = max(tag_points, _tag_points(len(override.tags)))
        bullet_points = max(bullet_points, _bullet_points(len(override.bullets)))
        material_points = max(material_points, _material_points(len(override.materials)))
    total += tag_points + bullet_points + material_points

    return int(math.floor(min(100.0, max(0.0, total)) + 0.5))


def recommendations(
    base: Mapping[str, Any],
    overrides: Iterable[ChannelOverrideInput] = (),
    image_count: int | None = None,
) -> list[str]:
    """Actionable suggestions for raising the score."""
    overrides = list(overrides)
    if image_count is None:
        image_count = len(base.get("images") or ())
    suggestions: list[str] = []

    title_length = len(_text(base, "title"))
    if title_length == 0:
        suggestions.append("Add a product title")
    elif title_length < 40:
        suggestions.append("Expand your title to 40-80 characters for better SEO")
    elif title_length > 120:
        suggestions.append("Shorten your title to under 120 characters")

    description_length = len(_text(base, "description"))
    if description_length == 0:
        suggestions.append("Add a product description")
    elif description_length < 200:
        suggestions.append("Expand your description to 200+ characters for better SEO")
    elif description_length > 3000:
        suggestions.append("Consider shortening your description to under 3000 characters")

    if image_count == 0:
        suggestions.append("Add product images")
    elif image_count < 3:
        suggestions.append("Add more images (recommended: 5+ images)")

    if not _text(base, "category"):
        suggestions.append("Select a product category")

    if not any(override.tags for override in overrides):
        suggestions.append("Add tags/keywords for better discoverability")

    if not any(override.bullets for override in overrides):
        suggestions.append("Add key features/bullet points")

    return suggestions
