"""
Channel Validation - Evaluates listing content against a channel's rules.

Pure functions. Every rule a channel declares (plus the channel's own
marketplace checks) is one check; readiness is the share of checks met.
Rule violations are returned as data, never raised.
"""

import math
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from listing_engine.exceptions import UnknownChannelError
from listing_engine.models.domain import (
    ChannelContent,
    ChannelDefinition,
    ChannelOverrideInput,
    FieldRule,
    OverallReadiness,
    ValidationResult,
)

NEAR_LIMIT_RATIO = 0.85

LIST_FIELDS = frozenset({"images", "tags", "bullets", "materials"})
NUMERIC_FIELDS = frozenset({"price"})

FIELD_LABELS = {
    "title": "Title",
    "description": "Description",
    "price": "Price",
    "category": "Category",
    "images": "Images",
    "tags": "Tags",
    "bullets": "Bullet points",
    "materials": "Materials",
    "video": "Video",
}

PROMOTIONAL_TITLE = re.compile(r"\bfree shipping\b|\bsale\b", re.IGNORECASE)


class _Checks:
    """Accumulates check outcomes for one channel."""

    def __init__(self, channel: ChannelDefinition) -> None:
        self.channel = channel
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.total = 0
        self.satisfied = 0

    def passed(self, warning: str | None = None) -> None:
        """A met rule, optionally with a near-limit warning."""
        self.total += 1
        self.satisfied += 1
        if warning:
            self.warnings.append(warning)

    def failed(self, error: str) -> None:
        """A hard rule that is not met."""
        self.total += 1
        self.errors.append(error)

    def advised(self, warning: str) -> None:
        """A soft rule that is not met."""
        self.total += 1
        self.warnings.append(warning)

    def skipped(self, count: int) -> None:
        """Rules that cannot be met because the field is missing."""
        self.total += count

    def result(self) -> ValidationResult:
        if self.total == 0:
            score = 100
        else:
            score = int(math.floor(100 * self.satisfied / self.total + 0.5))
        return ValidationResult(
            channel_id=self.channel.id,
            channel_name=self.channel.name,
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            readiness_score=score,
        )


def effective_content(
    base_data: Mapping[str, Any],
    images: Sequence[str],
    override: ChannelOverrideInput | None = None,
) -> ChannelContent:
    """
    Merge base data with a channel override.

    Override title/description fall back to the base values; tags, bullets
    and custom fields come from the override; materials fall back to the
    base list; price, category and images always come from the base.
    """
    title = (override.title if override else None) or base_data.get("title") or ""
    description = (
        (override.description if override else None) or base_data.get("description") or ""
    )
    materials = (override.materials if override else ()) or tuple(
        base_data.get("materials") or ()
    )
    price = base_data.get("price")
    return ChannelContent(
        title=str(title),
        description=str(description),
        price=price,
        category=base_data.get("category") or None,
        images=tuple(images),
        tags=override.tags if override else (),
        bullets=override.bullets if override else (),
        materials=tuple(materials),
        video=base_data.get("video") or base_data.get("videoUrl") or None,
        custom_fields=dict(override.custom_fields) if override else {},
    )


def _field_value(content: ChannelContent, field_name: str) -> Any:
    if field_name in FIELD_LABELS:
        return getattr(content, field_name)
    return content.custom_fields.get(field_name)


def _label(field_name: str) -> str:
    return FIELD_LABELS.get(field_name, field_name.replace("_", " ").capitalize())


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def _rule_count(rule: FieldRule) -> int:
    return sum(
        1
        for present in (
            rule.min_length is not None,
            rule.max_length is not None,
            rule.min is not None,
            rule.max is not None,
            rule.count is not None,
            rule.allowed is not None,
        )
        if present
    )


def _check_text_length(
    checks: _Checks, rule: FieldRule, label: str, values: Sequence[str], itemized: bool
) -> None:
    channel = checks.channel.name

    def name(index: int) -> str:
        return f"{label} item {index + 1}" if itemized else label

    if rule.max_length is not None:
        limit = rule.max_length
        too_long = [i for i, v in enumerate(values) if len(v) > limit]
        if too_long:
            for i in too_long:
                checks.errors.append(
                    f"{name(i)} exceeds maximum length of {limit} characters for "
                    f"{channel} (current: {len(values[i])})"
                )
            checks.total += 1
        else:
            near = [i for i, v in enumerate(values) if v and len(v) >= NEAR_LIMIT_RATIO * limit]
            checks.passed()
            for i in near:
                checks.warnings.append(
                    f"{name(i)} is close to the {limit} character limit for {channel} "
                    f"(current: {len(values[i])})"
                )

    if rule.min_length is not None:
        limit = rule.min_length
        too_short = [i for i, v in enumerate(values) if len(v) < limit]
        if too_short:
            for i in too_short:
                checks.warnings.append(
                    f"{name(i)} should be at least {limit} characters for {channel} "
                    f"(current: {len(values[i])})"
                )
            checks.total += 1
        else:
            checks.passed()


def _check_allowed(checks: _Checks, rule: FieldRule, label: str, values: Sequence[Any]) -> None:
    if rule.allowed is None:
        return
    rejected = [v for v in values if str(v) not in rule.allowed]
    if rejected:
        checks.failed(
            f"{label} must be one of {', '.join(rule.allowed)} for {checks.channel.name} "
            f"(current: {', '.join(str(v) for v in rejected)})"
        )
    else:
        checks.passed()


def _check_list(checks: _Checks, rule: FieldRule, label: str, values: Sequence[Any]) -> None:
    channel = checks.channel.name
    size = len(values)
    if rule.min is not None:
        if size < rule.min:
            checks.failed(
                f"At least {int(rule.min)} {label.lower()} required for {channel} (current: {size})"
            )
        else:
            checks.passed()
    if rule.max is not None:
        if size > rule.max:
            checks.failed(
                f"Maximum {int(rule.max)} {label.lower()} allowed for {channel} (current: {size})"
            )
        else:
            checks.passed()
    if rule.count is not None:
        if size != rule.count:
            checks.failed(
                f"Exactly {rule.count} {label.lower()} required for {channel} (current: {size})"
            )
        else:
            checks.passed()
    texts = [v for v in values if isinstance(v, str)]
    _check_text_length(checks, rule, label, texts, itemized=True)
    _check_allowed(checks, rule, label, values)


def _check_number(checks: _Checks, rule: FieldRule, label: str, value: Any) -> None:
    channel = checks.channel.name
    bounds = int(rule.min is not None) + int(rule.max is not None)
    if bounds == 0:
        return
    try:
        number = float(value)
    except (TypeError, ValueError):
        checks.failed(f"{label} must be a number for {channel}")
        checks.skipped(bounds - 1)
        return
    if rule.min is not None:
        if number < rule.min:
            checks.failed(
                f"{label} must be at least ${rule.min:g} for {channel} (current: ${number:g})"
            )
        else:
            checks.passed()
    if rule.max is not None:
        if number > rule.max:
            checks.failed(
                f"{label} must be at most ${rule.max:g} for {channel} (current: ${number:g})"
            )
        else:
            checks.passed()


def _check_field(checks: _Checks, field_name: str, rule: FieldRule, value: Any) -> None:
    label = _label(field_name)
    channel = checks.channel.name
    is_list = field_name in LIST_FIELDS or isinstance(value, (list, tuple))

    if _is_empty(value):
        if rule.required:
            checks.failed(f"{label} is required for {channel}")
            checks.skipped(_rule_count(rule) + int(rule.recommended))
            return
        if rule.recommended:
            checks.advised(f"{label} is recommended for {channel}")
        if not is_list:
            # Bounds on an absent optional scalar are vacuously met
            for _ in range(_rule_count(rule)):
                checks.passed()
            return
    else:
        if rule.required:
            checks.passed()
        if rule.recommended:
            checks.passed()

    if is_list:
        _check_list(checks, rule, label, list(value or ()))
    elif field_name in NUMERIC_FIELDS or isinstance(value, (int, float)):
        _check_number(checks, rule, label, value)
        _check_allowed(checks, rule, label, [value])
    else:
        text = str(value)
        _check_text_length(checks, rule, label, [text], itemized=False)
        _check_allowed(checks, rule, label, [text])


# ============================================================================
# Marketplace-specific checks
# ============================================================================


def _shopify_checks(checks: _Checks, content: ChannelContent) -> None:
    title = content.title
    if title.isupper() and len(title) > 10:
        checks.advised("Avoid using all caps in titles for Shopify (may affect SEO)")
    else:
        checks.passed()


def _ebay_checks(checks: _Checks, content: ChannelContent) -> None:
    if _is_empty(content.custom_fields.get("condition")):
        checks.failed('Condition is required for eBay (e.g., "New", "Used")')
    else:
        checks.passed()


def _amazon_checks(checks: _Checks, content: ChannelContent) -> None:
    if PROMOTIONAL_TITLE.search(content.title):
        checks.failed("Amazon does not allow promotional language in titles")
    else:
        checks.passed()
    if len(content.bullets) != 5:
        checks.advised("Amazon recommends exactly 5 bullet points for optimal presentation")
    else:
        checks.passed()


def _etsy_checks(checks: _Checks, content: ChannelContent) -> None:
    if len(content.tags) < 8:
        checks.failed("Etsy requires at least 8 tags (up to 13)")
    else:
        checks.passed()
    if not content.materials:
        checks.advised("Adding materials helps with Etsy search visibility")
    else:
        checks.passed()


MARKETPLACE_CHECKS: dict[str, Callable[[_Checks, ChannelContent], None]] = {
    "shopify": _shopify_checks,
    "ebay": _ebay_checks,
    "amazon": _amazon_checks,
    "etsy": _etsy_checks,
}


# ============================================================================
# Public API
# ============================================================================


def validate(channel: ChannelDefinition, content: ChannelContent) -> ValidationResult:
    """
    Validate effective content against a channel.

    Returns:
        ValidationResult; is_ready is True exactly when there are no errors
    """
    checks = _Checks(channel)
    for field_name, rule in channel.rules.items():
        _check_field(checks, field_name, rule, _field_value(content, field_name))

    marketplace_checks = MARKETPLACE_CHECKS.get(channel.slug)
    if marketplace_checks is not None:
        marketplace_checks(checks, content)

    return checks.result()


def validate_by_slug(
    slug: str, content: ChannelContent, channels: Iterable[ChannelDefinition]
) -> ValidationResult:
    """
    Validate against the channel with the given slug.

    Raises:
        UnknownChannelError: If no channel has this slug
    """
    channel = next((c for c in channels if c.slug == slug), None)
    if channel is None:
        raise UnknownChannelError(slug)
    return validate(channel, content)


def overall_readiness(results: Iterable[ValidationResult]) -> OverallReadiness:
    """Aggregate readiness across channels."""
    results = list(results)
    total = len(results)
    ready = sum(1 for r in results if r.is_ready)
    average = (
        int(math.floor(sum(r.readiness_score for r in results) / total + 0.5)) if total else 0
    )
    critical = tuple(
        f"{r.channel_name}: {', '.join(r.errors)}" for r in results if r.errors
    )
    return OverallReadiness(
        is_all_ready=ready == total,
        ready_count=ready,
        total_count=total,
        average_score=average,
        critical_errors=critical,
    )
