"""
Plan Events - Applies payment-processor plan changes to accounts.

Each event is applied at most once: the processed-event row and the account
update commit in the same transaction, keyed by the provider's event id.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listing_engine.db.models import Account, ProcessedWebhookEvent
from listing_engine.models.domain import PlanChange
from listing_engine.observability.metrics import metrics
from listing_engine.services.plan_catalog import get_plan

logger = get_logger(__name__)


class PlanEventOutcome(str, Enum):
    """What happened to a delivered event."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class PlanEventService:
    """Idempotent application of plan changes."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def apply(self, change: PlanChange) -> PlanEventOutcome:
        """
        Apply a plan change unless its event id was already processed.

        Unknown accounts and unknown plans are recorded as processed and
        ignored so redelivery does not retry them forever.
        """
        if await self.session.get(ProcessedWebhookEvent, change.event_id) is not None:
            return self._duplicate(change)

        try:
            outcome = await self._apply(change)
            await self.session.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            await self.session.rollback()
            return self._duplicate(change)
        except Exception as exc:
            await self.session.rollback()
            metrics.record_error(type(exc).__name__, "plan_event")
            logger.error(
                "plan_event_failed",
                event_id=change.event_id,
                event_type=change.event_type,
                error=str(exc),
            )
            raise

        metrics.record_webhook_event(change.event_type, outcome.value)
        return outcome

    async def _apply(self, change: PlanChange) -> PlanEventOutcome:
        account = await self._lock_account(change.account_id, change.stripe_subscription_id)

        self.session.add(
            ProcessedWebhookEvent(
                event_id=change.event_id,
                event_type=change.event_type,
                account_id=account.id if account else None,
            )
        )
        await self.session.flush()

        if account is None:
            logger.warning(
                "plan_event_account_unresolved",
                event_id=change.event_id,
                event_type=change.event_type,
                account_id=str(change.account_id) if change.account_id else None,
                subscription_id=change.stripe_subscription_id,
            )
            return PlanEventOutcome.IGNORED

        if change.plan_id is not None:
            try:
                plan = get_plan(change.plan_id)
            except KeyError:
                logger.warning(
                    "plan_event_unknown_plan", event_id=change.event_id, plan_id=change.plan_id
                )
                return PlanEventOutcome.IGNORED
            account.plan_id = plan.id
            account.credits_limit = plan.credits

        if change.subscription_status is not None:
            account.subscription_status = change.subscription_status
        if change.stripe_customer_id:
            account.stripe_customer_id = change.stripe_customer_id
        if change.clear_subscription:
            account.stripe_subscription_id = None
        elif change.stripe_subscription_id:
            account.stripe_subscription_id = change.stripe_subscription_id
        if change.current_period_end is not None:
            account.current_period_end = change.current_period_end
        if change.reset_usage:
            account.credits_used = 0
        if change.credits_granted:
            account.credits_limit += change.credits_granted

        await self.session.flush()

        logger.info(
            "plan_change_applied",
            event_id=change.event_id,
            event_type=change.event_type,
            account_id=str(account.id),
            plan_id=account.plan_id,
            credits_limit=account.credits_limit,
            subscription_status=account.subscription_status.value,
            usage_reset=change.reset_usage,
            credits_granted=change.credits_granted,
        )
        return PlanEventOutcome.APPLIED

    async def _lock_account(
        self, account_id: UUID | None, subscription_id: str | None
    ) -> Account | None:
        """Lock the target account (SELECT FOR UPDATE), by id or subscription id."""
        if account_id is not None:
            stmt = select(Account).where(Account.id == account_id)
        elif subscription_id:
            stmt = select(Account).where(Account.stripe_subscription_id == subscription_id)
        else:
            return None
        result = await self.session.execute(stmt.with_for_update())
        return result.scalars().first()

    def _duplicate(self, change: PlanChange) -> PlanEventOutcome:
        logger.info(
            "plan_event_duplicate_ignored",
            event_id=change.event_id,
            event_type=change.event_type,
        )
        metrics.record_webhook_event(change.event_type, PlanEventOutcome.DUPLICATE.value)
        return PlanEventOutcome.DUPLICATE
