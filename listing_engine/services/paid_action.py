"""
Paid Action Gate - Check, generate, then deduct.

Credits are spent only after the external operation succeeds. If another
request drains the balance while the operation runs, the deduction is refused
and the generated result is withheld.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any
from uuid import UUID

from structlog import get_logger

from listing_engine.models.api import ActionType
from listing_engine.models.domain import PaidActionOutcome
from listing_engine.observability.tracing import trace_operation
from listing_engine.services.credit_ledger import CreditLedgerService

logger = get_logger(__name__)


class PaidActionGate:
    """Runs an operation under the two-phase credit contract."""

    def __init__(self, ledger: CreditLedgerService) -> None:
        self.ledger = ledger

    async def run(
        self,
        account_id: UUID,
        action_type: ActionType,
        quantity: int,
        operation: Callable[[], Awaitable[Mapping[str, Any]]],
        listing_id: UUID | None = None,
    ) -> PaidActionOutcome:
        """
        Admit, run, and charge for an operation.

        Returns:
            PaidActionOutcome; admitted is False when the check or the
            deduction refused the action

        Raises:
            AccountNotFoundError: Account doesn't exist
            Exception: Whatever the operation raises; nothing is charged
        """
        availability = await self.ledger.check_available(account_id, action_type, quantity)
        if not availability.available:
            return PaidActionOutcome(
                admitted=False,
                credits_needed=availability.credits_needed,
                credits_deducted=0,
                credits_remaining=availability.credits_remaining,
                reason=availability.reason,
            )

        with trace_operation(
            "paid_action_operation", account_id=account_id, action_type=action_type.value
        ):
            result = await operation()

        deduction = await self.ledger.deduct(account_id, action_type, quantity, listing_id)
        if not deduction.success:
            logger.warning(
                "paid_action_deduct_lost_race",
                account_id=str(account_id),
                action_type=action_type.value,
                reason=deduction.reason.value if deduction.reason else None,
            )
            return PaidActionOutcome(
                admitted=False,
                credits_needed=availability.credits_needed,
                credits_deducted=0,
                credits_remaining=deduction.credits_remaining,
                reason=deduction.reason,
            )

        return PaidActionOutcome(
            admitted=True,
            credits_needed=availability.credits_needed,
            credits_deducted=deduction.credits_deducted,
            credits_remaining=deduction.credits_remaining,
            result=result,
        )
