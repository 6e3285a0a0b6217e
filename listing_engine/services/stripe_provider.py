"""
Stripe Webhook Verification - Turns subscription and add-on events into plan changes.

NO DICTIONARIES - Events leave this module as PlanChange dataclasses.
"""

import json
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import stripe
from structlog import get_logger

from listing_engine.exceptions import WebhookVerificationError
from listing_engine.models.api import SubscriptionStatus
from listing_engine.models.domain import PlanChange
from listing_engine.services.plan_catalog import FREE_PLAN_ID, addon_credits

logger = get_logger(__name__)

HANDLED_EVENT_TYPES = frozenset(
    {
        "checkout.session.completed",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "invoice.paid",
        "invoice.payment_failed",
    }
)

_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
    "incomplete_expired": SubscriptionStatus.CANCELED,
}


class StripeWebhookVerifier:
    """Verifies Stripe webhook signatures."""

    def __init__(self, webhook_secret: str, api_key: str = "") -> None:
        self.webhook_secret = webhook_secret
        if api_key:
            stripe.api_key = api_key

    def verify(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify the signature and return the decoded event.

        Raises:
            WebhookVerificationError: If the signature or payload is invalid
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)
        decoded: dict[str, Any] = json.loads(payload)
        return decoded


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _account_id(raw: Any) -> UUID | None:
    if not raw:
        return None
    try:
        return UUID(str(raw))
    except ValueError:
        logger.warning("stripe_webhook_invalid_user_id", user_id=str(raw))
        return None


def _timestamp(raw: Any) -> datetime | None:
    if raw is None:
        return None
    return datetime.fromtimestamp(int(raw), tz=UTC)


def _subscription_period_end(subscription: dict[str, Any]) -> datetime | None:
    if subscription.get("current_period_end") is not None:
        return _timestamp(subscription["current_period_end"])
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return _timestamp(items[0].get("current_period_end"))
    return None


def _invoice_subscription(invoice: dict[str, Any]) -> tuple[str | None, dict[str, Any]]:
    """Subscription id and metadata from either invoice API shape."""
    details = invoice.get("subscription_details") or (
        (invoice.get("parent") or {}).get("subscription_details") or {}
    )
    subscription_id = invoice.get("subscription") or details.get("subscription")
    return subscription_id, details.get("metadata") or {}


def _invoice_period_end(invoice: dict[str, Any]) -> datetime | None:
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        return _timestamp((lines[0].get("period") or {}).get("end"))
    return None


def _addon_change(
    event_id: str, event_type: str, session: dict[str, Any], metadata: dict[str, Any]
) -> PlanChange | None:
    """One-time add-on purchase: grants credits without touching the plan."""
    addon_type = metadata.get("addonType")
    try:
        credits = addon_credits(str(addon_type))
    except KeyError:
        logger.warning("stripe_checkout_unknown_addon", event_id=event_id, addon_type=addon_type)
        return None
    return PlanChange(
        event_id=event_id,
        event_type=event_type,
        account_id=_account_id(metadata.get("userId")),
        plan_id=None,
        subscription_status=None,
        stripe_customer_id=session.get("customer"),
        credits_granted=credits,
    )


def plan_change_from_event(event: dict[str, Any]) -> PlanChange | None:
    """
    Map a decoded Stripe event to a plan change.

    Returns:
        PlanChange, or None for event types (and checkout modes or add-ons)
        that do not affect plans or credits
    """
    event_id = event["id"]
    event_type = event["type"]
    obj: dict[str, Any] = (event.get("data") or {}).get("object") or {}

    if event_type not in HANDLED_EVENT_TYPES:
        return None

    if event_type == "checkout.session.completed":
        metadata = _metadata(obj)
        if obj.get("mode") == "payment":
            return _addon_change(event_id, event_type, obj, metadata)
        if obj.get("mode") != "subscription":
            return None
        return PlanChange(
            event_id=event_id,
            event_type=event_type,
            account_id=_account_id(metadata.get("userId")),
            plan_id=metadata.get("planId") or FREE_PLAN_ID,
            subscription_status=SubscriptionStatus.ACTIVE,
            stripe_customer_id=obj.get("customer"),
            stripe_subscription_id=obj.get("subscription"),
            reset_usage=True,
        )

    if event_type == "customer.subscription.updated":
        metadata = _metadata(obj)
        return PlanChange(
            event_id=event_id,
            event_type=event_type,
            account_id=_account_id(metadata.get("userId")),
            plan_id=metadata.get("planId") or FREE_PLAN_ID,
            subscription_status=_STATUS_MAP.get(obj.get("status", ""), SubscriptionStatus.PAST_DUE),
            stripe_customer_id=obj.get("customer"),
            stripe_subscription_id=obj.get("id"),
            current_period_end=_subscription_period_end(obj),
        )

    if event_type == "customer.subscription.deleted":
        return PlanChange(
            event_id=event_id,
            event_type=event_type,
            account_id=_account_id(_metadata(obj).get("userId")),
            plan_id=FREE_PLAN_ID,
            subscription_status=SubscriptionStatus.CANCELED,
            stripe_subscription_id=obj.get("id"),
            clear_subscription=True,
        )

    subscription_id, metadata = _invoice_subscription(obj)
    if not subscription_id:
        return None

    if event_type == "invoice.paid":
        return PlanChange(
            event_id=event_id,
            event_type=event_type,
            account_id=_account_id(metadata.get("userId")),
            plan_id=None,
            subscription_status=SubscriptionStatus.ACTIVE,
            stripe_subscription_id=subscription_id,
            current_period_end=_invoice_period_end(obj),
            reset_usage=True,
        )

    return PlanChange(
        event_id=event_id,
        event_type=event_type,
        account_id=_account_id(metadata.get("userId")),
        plan_id=None,
        subscription_status=SubscriptionStatus.PAST_DUE,
        stripe_subscription_id=subscription_id,
    )
