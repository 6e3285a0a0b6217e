"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed. Freeform JSON is
confined to listing base data and channel custom fields.

Wire format is camelCase; Python attributes are snake_case.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ActionType(str, Enum):
    """Metered action enumeration. Every member must have a credit cost."""

    IMAGE_GENERATION = "image_generation"
    VIDEO_GENERATION = "video_generation"
    MOCKUP_DOWNLOAD = "mockup_download"
    SEO_CONTENT = "seo_content"
    AI_PROMPT_SUGGESTION = "ai_prompt_suggestion"
    TITLE_GENERATION = "title_generation"
    DESCRIPTION_GENERATION = "description_generation"
    TAGS_GENERATION = "tags_generation"


class DenialReason(str, Enum):
    """Why a metered action was not admitted."""

    TRIAL_EXPIRED = "trial_expired"
    INSUFFICIENT_CREDITS = "insufficient_credits"


class SubscriptionStatus(str, Enum):
    """Subscription status as mirrored from the payment processor."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class ListingStatus(str, Enum):
    """Listing lifecycle status."""

    DRAFT = "draft"
    OPTIMIZED = "optimized"
    COMPLETED = "completed"
    PUBLISHED = "published"


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting either case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Credit Models
# ============================================================================


class CreditCheckRequest(CamelModel):
    """POST /v1/credits/check request body."""

    account_id: UUID
    action_type: ActionType
    quantity: int = Field(default=1, ge=1, le=100)


class CreditCheckResponse(CamelModel):
    """POST /v1/credits/check response."""

    available: bool
    credits_needed: int
    credits_remaining: int
    reason: DenialReason | None = None


class CreditDenialResponse(CamelModel):
    """403 body returned when a metered action is refused."""

    credits_needed: int
    credits_remaining: int
    upgrade: bool = True
    reason: DenialReason | None = None


class CreateAccountRequest(CamelModel):
    """POST /v1/accounts request body."""

    account_id: UUID


class CreditBalanceResponse(CamelModel):
    """GET /v1/accounts/{id}/credits response."""

    account_id: UUID
    plan_id: str
    plan_name: str
    credits_used: int
    credits_limit: int
    credits_remaining: int
    trial_days_remaining: int | None = None
    subscription_status: SubscriptionStatus


class UsageEntryResponse(CamelModel):
    """One credit usage log entry."""

    id: UUID
    action_type: ActionType
    quantity: int
    credits_used: int
    credits_remaining: int
    listing_id: UUID | None = None
    created_at: datetime


class UsageListResponse(CamelModel):
    """GET /v1/accounts/{id}/usage response."""

    account_id: UUID
    entries: list[UsageEntryResponse]


class AccountStatsResponse(CamelModel):
    """GET /v1/accounts/{id}/stats response."""

    account_id: UUID
    total_listings: int
    published_count: int
    listings_by_status: dict[ListingStatus, int]
    channels_count: int
    credits_used: int
    credits_limit: int
    credits_remaining: int
    plan_id: str
    subscription_status: SubscriptionStatus


# ============================================================================
# Metered Action Models
# ============================================================================


class ActionRequest(CamelModel):
    """POST /v1/actions/{action_type} request body."""

    account_id: UUID
    quantity: int = Field(default=1, ge=1, le=100)
    listing_id: UUID | None = None
    prompt: str | None = Field(default=None, max_length=4000)
    image_url: str | None = Field(default=None, max_length=2048)


class ActionResponse(CamelModel):
    """POST /v1/actions/{action_type} response."""

    action_type: ActionType
    credits_deducted: int
    credits_remaining: int
    result: dict[str, Any]


# ============================================================================
# Channel Models
# ============================================================================


class ChannelResponse(CamelModel):
    """Channel catalog entry."""

    id: str
    slug: str
    name: str
    export_format: str
    config: dict[str, Any]
    validation_rules: dict[str, dict[str, Any]]


class ChannelListResponse(CamelModel):
    """GET /v1/channels response."""

    channels: list[ChannelResponse]


class ValidateContentRequest(CamelModel):
    """POST /v1/channels/{slug}/validate request body (effective content)."""

    title: str = ""
    description: str = ""
    price: float | None = None
    category: str | None = None
    images: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    bullets: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    video: str | None = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ValidationResultResponse(CamelModel):
    """Validation outcome for one channel."""

    channel_id: str
    channel_name: str
    valid: bool
    is_ready: bool
    errors: list[str]
    warnings: list[str]
    readiness_score: int


# ============================================================================
# Listing Models
# ============================================================================


class ImageRef(CamelModel):
    """Image reference with optional explicit position."""

    url: str = Field(..., min_length=1, max_length=2048)
    position: int | None = Field(default=None, ge=0)
    alt_text: str | None = Field(default=None, max_length=500)


class ListingBaseRequest(CamelModel):
    """Base listing content. Unknown keys are preserved in base data."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    title: str = Field(default="", max_length=10000)
    description: str = Field(default="", max_length=500000)
    price: float | None = Field(default=None, ge=0)
    category: str | None = None
    materials: list[str] = Field(default_factory=list)
    sku: str | None = None
    quantity: int | None = Field(default=None, ge=0)
    product_type: str | None = None
    original_image: str | None = None
    images: list[str | ImageRef] = Field(default_factory=list)


class ChannelOverrideRequest(CamelModel):
    """Per-channel override in a save request."""

    channel_id: str = Field(..., min_length=1, max_length=64)
    title: str | None = None
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    bullets: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class SaveListingRequest(CamelModel):
    """POST /v1/listings request body (full replace upsert)."""

    id: UUID | None = None
    user_id: UUID
    status: ListingStatus = ListingStatus.DRAFT
    base: ListingBaseRequest
    channels: list[ChannelOverrideRequest] = Field(default_factory=list)
    last_step: str | None = Field(default=None, max_length=50)
    last_channel_tab: str | None = Field(default=None, max_length=64)
    scroll_position: int = Field(default=0, ge=0)


class DeleteListingsRequest(CamelModel):
    """DELETE /v1/listings bulk body."""

    ids: list[UUID] = Field(..., min_length=1, max_length=500)
    user_id: UUID

    @field_validator("ids")
    @classmethod
    def dedupe_ids(cls, v: list[UUID]) -> list[UUID]:
        """Drop repeated ids, keeping first-seen order."""
        return list(dict.fromkeys(v))


class ListingImageResponse(CamelModel):
    """Image in a reconstructed listing."""

    url: str
    position: int
    is_main: bool
    alt_text: str | None = None


class ListingChannelResponse(CamelModel):
    """Channel override in a reconstructed listing."""

    channel_id: str
    slug: str
    name: str
    title: str | None = None
    description: str | None = None
    tags: list[str]
    bullets: list[str]
    materials: list[str]
    custom_fields: dict[str, Any]
    validation_state: ValidationResultResponse
    readiness_score: int
    is_ready: bool
    exported_at: datetime | None = None


class OverallReadinessResponse(CamelModel):
    """Readiness aggregated across a listing's channels."""

    is_all_ready: bool
    ready_count: int
    total_count: int
    average_score: int
    critical_errors: list[str]


class ListingResponse(CamelModel):
    """Reconstructed listing aggregate."""

    id: UUID
    user_id: UUID
    status: ListingStatus
    base: dict[str, Any]
    images: list[ListingImageResponse]
    channels: list[ListingChannelResponse]
    seo_score: int
    seo_recommendations: list[str] = Field(default_factory=list)
    readiness: OverallReadinessResponse
    last_step: str | None = None
    last_channel_tab: str | None = None
    scroll_position: int = 0
    created_at: datetime
    updated_at: datetime


class ChannelReadinessResponse(CamelModel):
    """Channel readiness entry in a listing summary."""

    channel_id: str
    slug: str
    name: str
    readiness_score: int
    is_ready: bool


class ListingSummaryResponse(CamelModel):
    """Listing summary for list views."""

    id: UUID
    status: ListingStatus
    title: str
    price: float | None = None
    preview_image: str | None = None
    image_count: int
    channels: list[ChannelReadinessResponse]
    seo_score: int
    created_at: datetime
    updated_at: datetime


class ListingListResponse(CamelModel):
    """GET /v1/listings response."""

    listings: list[ListingSummaryResponse]
    limit: int
    offset: int


class DeleteListingsResponse(CamelModel):
    """DELETE /v1/listings response."""

    deleted: int


class ExportListingRequest(CamelModel):
    """POST /v1/listings/{id}/export request body."""

    user_id: UUID
    channel_id: str = Field(..., min_length=1, description="Channel id or slug")


class ExportListingResponse(CamelModel):
    """Generated channel upload file."""

    channel_id: str
    export_format: str
    file_name: str
    content_type: str
    content: str
    exported_at: datetime
    validation: ValidationResultResponse


# ============================================================================
# Webhook Models
# ============================================================================


class WebhookAckResponse(CamelModel):
    """Acknowledgement returned to the payment processor."""

    status: str
    event_id: str


# ============================================================================
# Health Check Models
# ============================================================================


class HealthResponse(CamelModel):
    """Health check response."""

    status: str
    database: str
    timestamp: datetime
