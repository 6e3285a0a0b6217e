"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations. JSON columns hold
the freeform listing payloads only.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from listing_engine.models.api import ActionType, ListingStatus, SubscriptionStatus

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for accounts table.

    Holds the credit counters. Only the credit ledger and plan-change events
    write to it.
    """

    __tablename__ = "accounts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Plan and credits
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False, default="free")
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Subscription (mirrors the payment processor)
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(
            SubscriptionStatus,
            name="subscription_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=SubscriptionStatus.TRIALING,
    )
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    account_created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_credits_used_non_negative"),
        CheckConstraint("credits_limit >= 0", name="ck_credits_limit_non_negative"),
        Index("idx_accounts_plan_id", "plan_id"),
        Index(
            "idx_accounts_stripe_subscription",
            "stripe_subscription_id",
            postgresql_where=(stripe_subscription_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Account(id={self.id}, plan_id={self.plan_id}, "
            f"credits_used={self.credits_used}, credits_limit={self.credits_limit})>"
        )


class CreditUsageLog(Base):
    """
    ORM model for credit_usage_log table.

    Immutable audit trail of every successful deduction.
    """

    __tablename__ = "credit_usage_log"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )

    action_type: Mapped[ActionType] = mapped_column(
        SQLEnum(
            ActionType,
            name="action_type",
            native_enum=False,
            length=40,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False)
    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    listing_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_usage_credits_non_negative"),
        CheckConstraint("quantity > 0", name="ck_usage_quantity_positive"),
        Index("idx_credit_usage_account_created", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditUsageLog(account_id={self.account_id}, action={self.action_type}, "
            f"credits_used={self.credits_used}, remaining={self.credits_remaining})>"
        )


class ProcessedWebhookEvent(Base):
    """
    ORM model for processed_webhook_events table.

    One row per payment-provider event id; the primary key is the dedupe key
    that keeps plan grants at-most-once.
    """

    __tablename__ = "processed_webhook_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    account_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class Channel(Base):
    """
    ORM model for channels table.

    Marketplace catalog entry with its validation rule schema.
    """

    __tablename__ = "channels"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    export_format: Mapped[str] = mapped_column(String(20), nullable=False, default="csv")
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    validation_rules: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Channel(id={self.id}, slug={self.slug})>"


class Listing(Base):
    """
    ORM model for listings table (the base record of a listing aggregate).
    """

    __tablename__ = "listings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[ListingStatus] = mapped_column(
        SQLEnum(
            ListingStatus,
            name="listing_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=ListingStatus.DRAFT,
    )
    base_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    seo_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Wizard position
    last_step: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_channel_tab: Mapped[str | None] = mapped_column(String(64), nullable=True)
    scroll_position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("seo_score >= 0 AND seo_score <= 100", name="ck_listing_seo_score_range"),
        Index("idx_listings_user_created", "user_id", "created_at"),
        Index("idx_listings_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Listing(id={self.id}, user_id={self.user_id}, status={self.status})>"


class ListingImage(Base):
    """
    ORM model for listing_images table.

    Positions are contiguous per listing; only position 0 is the main image.
    """

    __tablename__ = "listing_images"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    listing_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_main: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    alt_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("position >= 0", name="ck_listing_image_position_non_negative"),
        CheckConstraint("is_main = (position = 0)", name="ck_listing_image_main_first"),
        UniqueConstraint("listing_id", "position", name="uq_listing_image_position"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<ListingImage(listing_id={self.listing_id}, position={self.position})>"


class ListingChannel(Base):
    """
    ORM model for listing_channels table (per-channel overrides).
    """

    __tablename__ = "listing_channels"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    listing_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False
    )
    channel_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("channels.id", ondelete="RESTRICT"), nullable=False
    )
    override_data: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    validation_state: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=dict
    )
    readiness_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_ready: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    exported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "readiness_score >= 0 AND readiness_score <= 100",
            name="ck_listing_channel_readiness_range",
        ),
        UniqueConstraint("listing_id", "channel_id", name="uq_listing_channel"),
        Index("idx_listing_channels_channel", "channel_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ListingChannel(listing_id={self.listing_id}, channel_id={self.channel_id}, "
            f"is_ready={self.is_ready})>"
        )
