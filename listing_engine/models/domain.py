"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
The only mappings are the freeform listing base data and channel custom fields.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from listing_engine.models.api import (
    ActionType,
    DenialReason,
    ListingStatus,
    SubscriptionStatus,
)

# ============================================================================
# Credits
# ============================================================================


@dataclass(frozen=True)
class Plan:
    """Immutable subscription plan from the static catalog."""

    id: str
    name: str
    credits: int
    price_monthly: int
    trial_days: int | None = None
    features: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate plan constraints."""
        if self.credits < 0:
            raise ValueError(f"Plan credits cannot be negative: {self.credits}")
        if self.trial_days is not None and self.trial_days <= 0:
            raise ValueError(f"Trial days must be positive: {self.trial_days}")


@dataclass(frozen=True)
class CreditAvailability:
    """Result of a read-only admission check."""

    available: bool
    credits_needed: int
    credits_remaining: int
    reason: DenialReason | None = None


@dataclass(frozen=True)
class DeductionResult:
    """Result of an atomic deduction attempt."""

    success: bool
    credits_deducted: int
    credits_remaining: int
    reason: DenialReason | None = None
    error: str | None = None


@dataclass(frozen=True)
class CreditBalance:
    """Snapshot of an account's credit counters."""

    account_id: UUID
    plan_id: str
    plan_name: str
    credits_used: int
    credits_limit: int
    trial_days_remaining: int | None
    subscription_status: SubscriptionStatus

    @property
    def credits_remaining(self) -> int:
        """Remaining credits, never negative."""
        return max(0, self.credits_limit - self.credits_used)


@dataclass(frozen=True)
class UsageEntry:
    """Immutable credit usage log entry."""

    id: UUID
    account_id: UUID
    action_type: ActionType
    quantity: int
    credits_used: int
    credits_remaining: int
    listing_id: UUID | None
    created_at: datetime


@dataclass(frozen=True)
class PaidActionOutcome:
    """Outcome of a credit-gated operation."""

    admitted: bool
    credits_needed: int
    credits_deducted: int
    credits_remaining: int
    reason: DenialReason | None = None
    result: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class PlanChange:
    """Plan/subscription change derived from a payment processor event."""

    event_id: str
    event_type: str
    account_id: UUID | None
    plan_id: str | None
    subscription_status: SubscriptionStatus | None
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    current_period_end: datetime | None = None
    reset_usage: bool = False
    clear_subscription: bool = False
    credits_granted: int = 0


# ============================================================================
# Channels
# ============================================================================


@dataclass(frozen=True)
class FieldRule:
    """Validation constraints for one listing field."""

    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None
    count: int | None = None
    recommended: bool = False
    allowed: tuple[str, ...] | None = None

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "FieldRule":
        """Parse a camelCase rule object as stored in the catalog."""
        allowed = raw.get("allowed")
        return cls(
            required=bool(raw.get("required", False)),
            min_length=raw.get("minLength"),
            max_length=raw.get("maxLength"),
            min=raw.get("min"),
            max=raw.get("max"),
            count=raw.get("count"),
            recommended=bool(raw.get("recommended", False)),
            allowed=tuple(allowed) if allowed is not None else None,
        )

    def to_json(self) -> dict[str, Any]:
        """Serialize to the camelCase catalog form, omitting unset keys."""
        raw: dict[str, Any] = {}
        if self.required:
            raw["required"] = True
        for key, value in (
            ("minLength", self.min_length),
            ("maxLength", self.max_length),
            ("min", self.min),
            ("max", self.max),
            ("count", self.count),
        ):
            if value is not None:
                raw[key] = value
        if self.recommended:
            raw["recommended"] = True
        if self.allowed is not None:
            raw["allowed"] = list(self.allowed)
        return raw


@dataclass(frozen=True)
class ChannelDefinition:
    """Immutable channel catalog entry."""

    id: str
    slug: str
    name: str
    export_format: str = "csv"
    description: str | None = None
    rules: Mapping[str, FieldRule] = field(default_factory=dict)

    @classmethod
    def from_json_rules(
        cls,
        id: str,
        slug: str,
        name: str,
        export_format: str,
        validation_rules: Mapping[str, Mapping[str, Any]],
        description: str | None = None,
    ) -> "ChannelDefinition":
        """Build a definition from the JSON rule schema."""
        return cls(
            id=id,
            slug=slug,
            name=name,
            export_format=export_format,
            description=description,
            rules={name_: FieldRule.from_json(raw) for name_, raw in validation_rules.items()},
        )

    def rules_json(self) -> dict[str, dict[str, Any]]:
        """Rule schema in catalog JSON form."""
        return {name: rule.to_json() for name, rule in self.rules.items()}


@dataclass(frozen=True)
class ChannelContent:
    """Effective field set validated against a channel."""

    title: str = ""
    description: str = ""
    price: float | None = None
    category: str | None = None
    images: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()
    bullets: tuple[str, ...] = ()
    materials: tuple[str, ...] = ()
    video: str | None = None
    custom_fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationResult:
    """Validation outcome for one channel."""

    channel_id: str
    channel_name: str
    errors: tuple[str, ...]
    warnings: tuple[str, ...]
    readiness_score: int

    @property
    def valid(self) -> bool:
        """True when there are no errors."""
        return not self.errors

    @property
    def is_ready(self) -> bool:
        """Ready exactly when valid."""
        return self.valid

    def to_state(self) -> dict[str, Any]:
        """Serialize for the override's validation_state column."""
        return {
            "channelId": self.channel_id,
            "channelName": self.channel_name,
            "valid": self.valid,
            "isReady": self.is_ready,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "readinessScore": self.readiness_score,
        }

    @classmethod
    def from_state(cls, state: Mapping[str, Any]) -> "ValidationResult":
        """Rebuild from a stored validation_state blob."""
        return cls(
            channel_id=state.get("channelId", ""),
            channel_name=state.get("channelName", ""),
            errors=tuple(state.get("errors", ())),
            warnings=tuple(state.get("warnings", ())),
            readiness_score=int(state.get("readinessScore", 0)),
        )


@dataclass(frozen=True)
class OverallReadiness:
    """Readiness aggregated across channels."""

    is_all_ready: bool
    ready_count: int
    total_count: int
    average_score: int
    critical_errors: tuple[str, ...]


# ============================================================================
# Listings
# ============================================================================


@dataclass(frozen=True)
class ImageInput:
    """Image as submitted by the caller (position optional)."""

    url: str
    position: int | None = None
    alt_text: str | None = None

    def __post_init__(self) -> None:
        """Validate image input."""
        if not self.url:
            raise ValueError("Image url cannot be empty")
        if self.position is not None and self.position < 0:
            raise ValueError(f"Image position cannot be negative: {self.position}")


@dataclass(frozen=True)
class ChannelOverrideInput:
    """Channel override as submitted by the caller."""

    channel_id: str
    title: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()
    bullets: tuple[str, ...] = ()
    materials: tuple[str, ...] = ()
    custom_fields: Mapping[str, Any] = field(default_factory=dict)

    def to_override_data(self) -> dict[str, Any]:
        """Serialize for the override_data column."""
        return {
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "bullets": list(self.bullets),
            "materials": list(self.materials),
            "customFields": dict(self.custom_fields),
        }


@dataclass(frozen=True)
class ListingInput:
    """Complete desired state of a listing aggregate."""

    status: ListingStatus
    base_data: Mapping[str, Any]
    images: tuple[ImageInput, ...] = ()
    channels: tuple[ChannelOverrideInput, ...] = ()
    listing_id: UUID | None = None
    last_step: str | None = None
    last_channel_tab: str | None = None
    scroll_position: int = 0

    @property
    def title(self) -> str:
        """Base title."""
        return str(self.base_data.get("title") or "")

    @property
    def description(self) -> str:
        """Base description."""
        return str(self.base_data.get("description") or "")


@dataclass(frozen=True)
class ListingImageData:
    """Persisted image."""

    url: str
    position: int
    is_main: bool
    alt_text: str | None = None


@dataclass(frozen=True)
class ListingChannelData:
    """Persisted channel override joined with its catalog entry."""

    channel_id: str
    slug: str
    name: str
    override: ChannelOverrideInput
    validation: ValidationResult
    readiness_score: int
    is_ready: bool
    exported_at: datetime | None = None


@dataclass(frozen=True)
class ListingAggregate:
    """Reconstructed listing: base record, ordered images, channel overrides."""

    id: UUID
    user_id: UUID
    status: ListingStatus
    base_data: Mapping[str, Any]
    images: tuple[ListingImageData, ...]
    channels: tuple[ListingChannelData, ...]
    seo_score: int
    last_step: str | None
    last_channel_tab: str | None
    scroll_position: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ExportFile:
    """Generated channel upload file."""

    file_name: str
    content_type: str
    content: str


@dataclass(frozen=True)
class ExportResult:
    """Export file with the validation it passed and the stamp written."""

    channel_id: str
    export_format: str
    file: ExportFile
    validation: ValidationResult
    exported_at: datetime


@dataclass(frozen=True)
class ChannelReadiness:
    """Light channel readiness entry for summaries."""

    channel_id: str
    slug: str
    name: str
    readiness_score: int
    is_ready: bool


@dataclass(frozen=True)
class ListingSummary:
    """Listing summary for list views."""

    id: UUID
    status: ListingStatus
    title: str
    price: float | None
    preview_image: str | None
    image_count: int
    channels: tuple[ChannelReadiness, ...]
    seo_score: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ListingFilters:
    """Filters for listing summaries."""

    status: ListingStatus | None = None
    limit: int = 50
    offset: int = 0

    def __post_init__(self) -> None:
        """Validate pagination."""
        if not 1 <= self.limit <= 200:
            raise ValueError(f"Limit must be between 1 and 200: {self.limit}")
        if self.offset < 0:
            raise ValueError(f"Offset cannot be negative: {self.offset}")
