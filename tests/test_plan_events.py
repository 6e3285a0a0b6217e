"""
Tests for PlanEventService.

Plan grants must be at-most-once per event id, and events for accounts or
plans we do not know are recorded and dropped.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from listing_engine.db.models import Account, ProcessedWebhookEvent
from listing_engine.models.api import SubscriptionStatus
from listing_engine.models.domain import PlanChange
from listing_engine.services.plan_events import PlanEventOutcome, PlanEventService


def _change(account_id: UUID | None, **overrides) -> PlanChange:
    values = {
        "event_id": f"evt_{uuid4().hex[:16]}",
        "event_type": "checkout.session.completed",
        "account_id": account_id,
        "plan_id": "pro",
        "subscription_status": SubscriptionStatus.ACTIVE,
        "stripe_customer_id": "cus_123",
        "stripe_subscription_id": "sub_123",
        "reset_usage": True,
    }
    values.update(overrides)
    return PlanChange(**values)


async def _account(session: AsyncSession, account_id: UUID) -> Account:
    account = await session.get(Account, account_id, populate_existing=True)
    assert account is not None
    return account


class TestApply:
    """Tests for applying plan changes."""

    @pytest.mark.asyncio
    async def test_checkout_upgrades_plan(self, db_session: AsyncSession, make_account):
        """A completed checkout grants the plan allowance and resets usage."""
        account_id = await make_account(credits_used=12)
        service = PlanEventService(db_session)

        outcome = await service.apply(_change(account_id))

        assert outcome == PlanEventOutcome.APPLIED
        account = await _account(db_session, account_id)
        assert account.plan_id == "pro"
        assert account.credits_limit == 300
        assert account.credits_used == 0
        assert account.subscription_status == SubscriptionStatus.ACTIVE
        assert account.stripe_customer_id == "cus_123"
        assert account.stripe_subscription_id == "sub_123"

    @pytest.mark.asyncio
    async def test_redelivery_does_not_double_grant(
        self, db_session: AsyncSession, make_account
    ):
        """The same event twice is applied once."""
        account_id = await make_account()
        service = PlanEventService(db_session)
        change = _change(account_id)

        assert await service.apply(change) == PlanEventOutcome.APPLIED

        # Usage accrues between deliveries; a replay must not reset it again
        account = await _account(db_session, account_id)
        account.credits_used = 40
        await db_session.commit()

        assert await service.apply(change) == PlanEventOutcome.DUPLICATE
        account = await _account(db_session, account_id)
        assert account.credits_used == 40

        processed = await db_session.scalar(
            select(func.count()).select_from(ProcessedWebhookEvent)
        )
        assert processed == 1

    @pytest.mark.asyncio
    async def test_unknown_account_ignored(self, db_session: AsyncSession):
        """Events for unknown accounts are recorded and ignored."""
        change = _change(uuid4())
        service = PlanEventService(db_session)

        assert await service.apply(change) == PlanEventOutcome.IGNORED
        assert await service.apply(change) == PlanEventOutcome.DUPLICATE

    @pytest.mark.asyncio
    async def test_unknown_plan_ignored(self, db_session: AsyncSession, make_account):
        """An unrecognized plan id leaves the account untouched."""
        account_id = await make_account(credits_used=5)

        outcome = await PlanEventService(db_session).apply(
            _change(account_id, plan_id="platinum")
        )

        assert outcome == PlanEventOutcome.IGNORED
        account = await _account(db_session, account_id)
        assert account.plan_id == "free"
        assert account.credits_used == 5

    @pytest.mark.asyncio
    async def test_subscription_id_fallback(self, db_session: AsyncSession, make_account):
        """Invoice events without a user id resolve the account by subscription."""
        account_id = await make_account(
            plan_id="starter",
            credits_used=80,
            subscription_status=SubscriptionStatus.ACTIVE,
            stripe_subscription_id="sub_renew",
        )
        period_end = datetime(2026, 12, 1, tzinfo=UTC)

        outcome = await PlanEventService(db_session).apply(
            _change(
                None,
                event_type="invoice.paid",
                plan_id=None,
                stripe_customer_id=None,
                stripe_subscription_id="sub_renew",
                current_period_end=period_end,
            )
        )

        assert outcome == PlanEventOutcome.APPLIED
        account = await _account(db_session, account_id)
        assert account.plan_id == "starter"
        assert account.credits_limit == 100
        assert account.credits_used == 0
        assert account.current_period_end is not None

    @pytest.mark.asyncio
    async def test_payment_failure_marks_past_due(self, db_session: AsyncSession, make_account):
        """Failed payments change status only."""
        account_id = await make_account(
            plan_id="pro",
            credits_used=10,
            subscription_status=SubscriptionStatus.ACTIVE,
            stripe_subscription_id="sub_fail",
        )

        await PlanEventService(db_session).apply(
            _change(
                None,
                event_type="invoice.payment_failed",
                plan_id=None,
                subscription_status=SubscriptionStatus.PAST_DUE,
                stripe_customer_id=None,
                stripe_subscription_id="sub_fail",
                reset_usage=False,
            )
        )

        account = await _account(db_session, account_id)
        assert account.subscription_status == SubscriptionStatus.PAST_DUE
        assert account.plan_id == "pro"
        assert account.credits_used == 10

    @pytest.mark.asyncio
    async def test_cancellation_reverts_to_free(self, db_session: AsyncSession, make_account):
        """A deleted subscription drops to the free allowance."""
        account_id = await make_account(
            plan_id="pro",
            subscription_status=SubscriptionStatus.ACTIVE,
            stripe_subscription_id="sub_gone",
        )

        await PlanEventService(db_session).apply(
            _change(
                account_id,
                event_type="customer.subscription.deleted",
                plan_id="free",
                subscription_status=SubscriptionStatus.CANCELED,
                stripe_customer_id=None,
                stripe_subscription_id="sub_gone",
                reset_usage=False,
                clear_subscription=True,
            )
        )

        account = await _account(db_session, account_id)
        assert account.plan_id == "free"
        assert account.credits_limit == 15
        assert account.subscription_status == SubscriptionStatus.CANCELED
        assert account.stripe_subscription_id is None


class TestAddonGrants:
    """Tests for one-time add-on credit grants."""

    @staticmethod
    def _addon(account_id: UUID | None, credits: int = 60) -> PlanChange:
        return _change(
            account_id,
            plan_id=None,
            subscription_status=None,
            stripe_subscription_id=None,
            reset_usage=False,
            credits_granted=credits,
        )

    @pytest.mark.asyncio
    async def test_grant_raises_limit(self, db_session: AsyncSession, make_account):
        """Add-on credits stack on the current allowance; usage and plan are kept."""
        account_id = await make_account(
            plan_id="starter", credits_used=90, subscription_status=SubscriptionStatus.ACTIVE
        )

        outcome = await PlanEventService(db_session).apply(self._addon(account_id))

        assert outcome == PlanEventOutcome.APPLIED
        account = await _account(db_session, account_id)
        assert account.plan_id == "starter"
        assert account.credits_limit == 160
        assert account.credits_used == 90
        assert account.subscription_status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_redelivered_grant_applied_once(self, db_session: AsyncSession, make_account):
        """Replaying the same purchase event does not grant twice."""
        account_id = await make_account()
        service = PlanEventService(db_session)
        change = self._addon(account_id, credits=10)

        assert await service.apply(change) == PlanEventOutcome.APPLIED
        assert await service.apply(change) == PlanEventOutcome.DUPLICATE

        account = await _account(db_session, account_id)
        assert account.credits_limit == 25

    @pytest.mark.asyncio
    async def test_grant_without_account_ignored(self, db_session: AsyncSession):
        """Purchases with no resolvable account are recorded and dropped."""
        outcome = await PlanEventService(db_session).apply(self._addon(None))

        assert outcome == PlanEventOutcome.IGNORED
