"""
Credit Ledger - Per-account credit metering with trial semantics.

NO DICTIONARIES - All operations use strongly typed domain models.

Deductions are a single conditional UPDATE: the usage check, the trial check
and the increment happen in one statement, so concurrent deductions for one
account can never push credits_used past credits_limit. A deduction that
updates no row is reported as a denial and never retried.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement
from structlog import get_logger

from listing_engine.db.models import Account, CreditUsageLog
from listing_engine.exceptions import (
    AccountNotFoundError,
    DatabaseError,
    DataIntegrityError,
    WriteVerificationError,
)
from listing_engine.models.api import ActionType, DenialReason, SubscriptionStatus
from listing_engine.models.domain import (
    CreditAvailability,
    CreditBalance,
    DeductionResult,
    Plan,
    UsageEntry,
)
from listing_engine.observability.metrics import metrics, track_duration
from listing_engine.services.plan_catalog import (
    PLANS,
    credit_cost,
    free_plan,
    get_plan,
    is_free_action,
)

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are stored as UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _account_plan(plan_id: str) -> Plan:
    try:
        return get_plan(plan_id)
    except KeyError as exc:
        logger.error("unknown_plan_on_account", plan_id=plan_id)
        raise DataIntegrityError(f"Account has unknown plan: {plan_id}") from exc


def trial_days_remaining(account: Account, now: datetime | None = None) -> int | None:
    """Whole trial days left, or None when the account's plan has no trial."""
    plan = _account_plan(account.plan_id)
    if plan.trial_days is None:
        return None
    elapsed = (now or _utc_now()) - _as_utc(account.account_created_at)
    return max(0, plan.trial_days - elapsed.days)


def is_trial_expired(account: Account, now: datetime | None = None) -> bool:
    """True once whole days since creation reach the plan's trial length."""
    remaining = trial_days_remaining(account, now)
    return remaining is not None and remaining == 0


def _trial_open_clause(now: datetime) -> ColumnElement[bool]:
    """SQL condition mirroring is_trial_expired; accounts on unknown plans never match."""
    trial_open = [
        or_(
            Account.plan_id != plan.id,
            Account.account_created_at > now - timedelta(days=plan.trial_days),
        )
        for plan in PLANS.values()
        if plan.trial_days is not None
    ]
    return and_(Account.plan_id.in_(list(PLANS)), *trial_open)


class CreditLedgerService:
    """
    Credit ledger over the accounts table.

    Admission denials are returned as data (CreditAvailability and
    DeductionResult); only missing accounts and storage failures raise.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def check_available(
        self, account_id: UUID, action_type: ActionType, quantity: int = 1
    ) -> CreditAvailability:
        """
        Read-only admission check.

        Raises:
            AccountNotFoundError: Account doesn't exist
            DataIntegrityError: Account is on a plan missing from the catalog
            ValueError: quantity < 1
        """
        needed = credit_cost(action_type, quantity)
        account = await self._get_account(account_id)
        remaining = max(0, account.credits_limit - account.credits_used)

        reason: DenialReason | None = None
        if not is_free_action(action_type):
            if is_trial_expired(account):
                reason = DenialReason.TRIAL_EXPIRED
            elif remaining < needed:
                reason = DenialReason.INSUFFICIENT_CREDITS

        availability = CreditAvailability(
            available=reason is None,
            credits_needed=needed,
            credits_remaining=remaining,
            reason=reason,
        )
        metrics.record_credit_check(
            action_type.value, availability.available, reason.value if reason else None
        )
        logger.info(
            "credit_check_performed",
            account_id=str(account_id),
            action_type=action_type.value,
            available=availability.available,
            credits_needed=needed,
            credits_remaining=remaining,
            reason=reason.value if reason else None,
        )
        return availability

    async def deduct(
        self,
        account_id: UUID,
        action_type: ActionType,
        quantity: int = 1,
        listing_id: UUID | None = None,
    ) -> DeductionResult:
        """
        Atomically deduct credits and append a usage log entry.

        Raises:
            AccountNotFoundError: Account doesn't exist
            DataIntegrityError: Account is on a plan missing from the catalog
            ValueError: quantity < 1
        """
        amount = credit_cost(action_type, quantity)

        with track_duration() as timer:
            try:
                result = await self._deduct(account_id, action_type, quantity, amount, listing_id)
            except Exception as exc:
                await self.session.rollback()
                metrics.record_error(type(exc).__name__, "credit_deduction")
                logger.error(
                    "credit_deduction_failed",
                    account_id=str(account_id),
                    action_type=action_type.value,
                    error=str(exc),
                )
                if isinstance(exc, SQLAlchemyError):
                    raise DatabaseError(str(exc)) from exc
                raise

        metrics.record_deduction(
            action_type.value,
            result.success,
            result.credits_deducted,
            timer.elapsed,
            result.reason.value if result.reason else None,
        )
        return result

    async def _deduct(
        self,
        account_id: UUID,
        action_type: ActionType,
        quantity: int,
        amount: int,
        listing_id: UUID | None,
    ) -> DeductionResult:
        now = _utc_now()

        if is_free_action(action_type):
            account = await self._get_account(account_id)
            credits_used, credits_limit = account.credits_used, account.credits_limit
        else:
            stmt = (
                update(Account)
                .where(
                    Account.id == account_id,
                    Account.credits_used + amount <= Account.credits_limit,
                    _trial_open_clause(now),
                )
                .values(credits_used=Account.credits_used + amount, updated_at=now)
                .returning(Account.credits_used, Account.credits_limit)
                .execution_options(synchronize_session=False)
            )
            row = (await self.session.execute(stmt)).one_or_none()

            if row is None:
                await self.session.rollback()
                return await self._denial(account_id, amount)

            credits_used, credits_limit = row
            if credits_used > credits_limit:
                raise DataIntegrityError(
                    f"Account {account_id} over limit after deduction: "
                    f"{credits_used} > {credits_limit}"
                )

        remaining = max(0, credits_limit - credits_used)
        usage = CreditUsageLog(
            account_id=account_id,
            action_type=action_type,
            quantity=quantity,
            credits_used=amount,
            credits_remaining=remaining,
            listing_id=listing_id,
            created_at=now,
        )
        self.session.add(usage)
        await self.session.flush()
        await self.session.commit()

        logger.info(
            "credits_deducted",
            account_id=str(account_id),
            action_type=action_type.value,
            quantity=quantity,
            credits_deducted=amount,
            credits_remaining=remaining,
            listing_id=str(listing_id) if listing_id else None,
        )
        return DeductionResult(success=True, credits_deducted=amount, credits_remaining=remaining)

    async def _denial(self, account_id: UUID, amount: int) -> DeductionResult:
        """Explain why the conditional update matched no row."""
        account = await self._get_account(account_id, refresh=True)
        remaining = max(0, account.credits_limit - account.credits_used)

        if is_trial_expired(account):
            reason = DenialReason.TRIAL_EXPIRED
            error = "Free trial has expired"
        else:
            reason = DenialReason.INSUFFICIENT_CREDITS
            error = f"Insufficient credits: need {amount}, have {remaining}"

        logger.warning(
            "credit_deduction_denied",
            account_id=str(account_id),
            credits_needed=amount,
            credits_remaining=remaining,
            reason=reason.value,
        )
        return DeductionResult(
            success=False,
            credits_deducted=0,
            credits_remaining=remaining,
            reason=reason,
            error=error,
        )

    async def get_balance(self, account_id: UUID) -> CreditBalance:
        """
        Current credit counters for an account.

        Raises:
            AccountNotFoundError: Account doesn't exist
            DataIntegrityError: Account is on a plan missing from the catalog
        """
        account = await self._get_account(account_id)
        return self._balance(account)

    async def get_or_create_account(self, account_id: UUID) -> CreditBalance:
        """
        Get existing account or provision a free-plan account.

        Provisioning happens on first contact from the identity provider.
        """
        account = await self.session.get(Account, account_id)
        if account is not None:
            return self._balance(account)

        plan = free_plan()
        new_account = Account(
            id=account_id,
            plan_id=plan.id,
            credits_used=0,
            credits_limit=plan.credits,
            subscription_status=SubscriptionStatus.TRIALING,
            account_created_at=_utc_now(),
        )
        self.session.add(new_account)

        try:
            await self.session.flush()
        except IntegrityError:
            # Race condition - account created by another request
            await self.session.rollback()
            account = await self.session.get(Account, account_id)
            if account is None:
                raise WriteVerificationError("Account creation failed due to race condition")
            return self._balance(account)

        verified = await self.session.get(Account, account_id)
        if verified is None:
            raise WriteVerificationError(f"Account {account_id} not found after insert")

        await self.session.commit()
        metrics.accounts_created_total.inc()
        logger.info("account_provisioned", account_id=str(account_id), plan_id=plan.id)
        return self._balance(verified)

    async def list_usage(self, account_id: UUID, limit: int = 50) -> list[UsageEntry]:
        """
        Most recent usage log entries, newest first.

        Raises:
            AccountNotFoundError: Account doesn't exist
        """
        await self._get_account(account_id)
        stmt = (
            select(CreditUsageLog)
            .where(CreditUsageLog.account_id == account_id)
            .order_by(CreditUsageLog.created_at.desc())
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        return [
            UsageEntry(
                id=row.id,
                account_id=row.account_id,
                action_type=row.action_type,
                quantity=row.quantity,
                credits_used=row.credits_used,
                credits_remaining=row.credits_remaining,
                listing_id=row.listing_id,
                created_at=_as_utc(row.created_at),
            )
            for row in rows
        ]

    async def _get_account(self, account_id: UUID, refresh: bool = False) -> Account:
        stmt = select(Account).where(Account.id == account_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        account = (await self.session.execute(stmt)).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _balance(self, account: Account) -> CreditBalance:
        plan = _account_plan(account.plan_id)
        return CreditBalance(
            account_id=account.id,
            plan_id=account.plan_id,
            plan_name=plan.name,
            credits_used=account.credits_used,
            credits_limit=account.credits_limit,
            trial_days_remaining=trial_days_remaining(account),
            subscription_status=account.subscription_status,
        )
