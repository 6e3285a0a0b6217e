"""
API Routes - FastAPI endpoints for credit metering, accounts and webhooks.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listing_engine.api.dependencies import get_generation_provider, require_api_key
from listing_engine.config import settings
from listing_engine.db.session import get_read_db, get_write_db
from listing_engine.exceptions import (
    AccountNotFoundError,
    DatabaseError,
    DataIntegrityError,
    GenerationProviderError,
    WebhookVerificationError,
    WriteVerificationError,
)
from listing_engine.models.api import (
    AccountStatsResponse,
    ActionRequest,
    ActionResponse,
    ActionType,
    CreateAccountRequest,
    CreditBalanceResponse,
    CreditCheckRequest,
    CreditCheckResponse,
    CreditDenialResponse,
    HealthResponse,
    ListingStatus,
    UsageEntryResponse,
    UsageListResponse,
    WebhookAckResponse,
)
from listing_engine.models.domain import CreditBalance
from listing_engine.services.credit_ledger import CreditLedgerService
from listing_engine.services.generation_provider import GenerationProvider, GenerationRequest
from listing_engine.services.listing_store import ListingStore
from listing_engine.services.paid_action import PaidActionGate
from listing_engine.services.plan_events import PlanEventService
from listing_engine.services.stripe_provider import StripeWebhookVerifier, plan_change_from_event

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])
public_router = APIRouter()


def _balance_response(balance: CreditBalance) -> CreditBalanceResponse:
    return CreditBalanceResponse(
        account_id=balance.account_id,
        plan_id=balance.plan_id,
        plan_name=balance.plan_name,
        credits_used=balance.credits_used,
        credits_limit=balance.credits_limit,
        credits_remaining=balance.credits_remaining,
        trial_days_remaining=balance.trial_days_remaining,
        subscription_status=balance.subscription_status,
    )


def _account_not_found(exc: AccountNotFoundError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Account not found: {exc.account_id}",
    )


def _integrity_error() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Database integrity error",
    )


# =============================================================================
# Credits
# =============================================================================


@router.post("/v1/credits/check", response_model=CreditCheckResponse)
async def check_credits(
    request: CreditCheckRequest,
    db: AsyncSession = Depends(get_read_db),
) -> CreditCheckResponse:
    """
    Check whether an account may perform a metered action.

    Read-only. A denial is a normal 200 response with available=false.
    """
    ledger = CreditLedgerService(db)
    try:
        availability = await ledger.check_available(
            request.account_id, request.action_type, request.quantity
        )
    except AccountNotFoundError as exc:
        raise _account_not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _integrity_error() from exc

    return CreditCheckResponse(
        available=availability.available,
        credits_needed=availability.credits_needed,
        credits_remaining=availability.credits_remaining,
        reason=availability.reason,
    )


@router.post(
    "/v1/accounts",
    response_model=CreditBalanceResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_account(
    request: CreateAccountRequest,
    db: AsyncSession = Depends(get_write_db),
) -> CreditBalanceResponse:
    """
    Provision a free-plan account, or return the existing one.

    Called on first contact from the identity provider.
    """
    ledger = CreditLedgerService(db)
    try:
        balance = await ledger.get_or_create_account(request.account_id)
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _integrity_error() from exc
    return _balance_response(balance)


@router.get("/v1/accounts/{account_id}/credits", response_model=CreditBalanceResponse)
async def get_credits(
    account_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> CreditBalanceResponse:
    """Current credit balance and trial state."""
    ledger = CreditLedgerService(db)
    try:
        balance = await ledger.get_balance(account_id)
    except AccountNotFoundError as exc:
        raise _account_not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _integrity_error() from exc
    return _balance_response(balance)


@router.get("/v1/accounts/{account_id}/usage", response_model=UsageListResponse)
async def get_usage(
    account_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_read_db),
) -> UsageListResponse:
    """Recent credit usage, newest first."""
    ledger = CreditLedgerService(db)
    try:
        entries = await ledger.list_usage(account_id, limit)
    except AccountNotFoundError as exc:
        raise _account_not_found(exc) from exc

    return UsageListResponse(
        account_id=account_id,
        entries=[
            UsageEntryResponse(
                id=entry.id,
                action_type=entry.action_type,
                quantity=entry.quantity,
                credits_used=entry.credits_used,
                credits_remaining=entry.credits_remaining,
                listing_id=entry.listing_id,
                created_at=entry.created_at,
            )
            for entry in entries
        ],
    )


@router.get("/v1/accounts/{account_id}/stats", response_model=AccountStatsResponse)
async def get_account_stats(
    account_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> AccountStatsResponse:
    """Listing, channel and credit statistics for the dashboard."""
    ledger = CreditLedgerService(db)
    store = ListingStore(db)
    try:
        balance = await ledger.get_balance(account_id)
    except AccountNotFoundError as exc:
        raise _account_not_found(exc) from exc
    except DataIntegrityError as exc:
        raise _integrity_error() from exc

    by_status = await store.status_counts(account_id)
    return AccountStatsResponse(
        account_id=account_id,
        total_listings=sum(by_status.values()),
        published_count=by_status[ListingStatus.PUBLISHED],
        listings_by_status=by_status,
        channels_count=await store.channel_count(account_id),
        credits_used=balance.credits_used,
        credits_limit=balance.credits_limit,
        credits_remaining=balance.credits_remaining,
        plan_id=balance.plan_id,
        subscription_status=balance.subscription_status,
    )


# =============================================================================
# Metered Actions
# =============================================================================


@router.post(
    "/v1/actions/{action_type}",
    response_model=ActionResponse,
    responses={403: {"model": CreditDenialResponse}},
)
async def run_action(
    action_type: ActionType,
    request: ActionRequest,
    db: AsyncSession = Depends(get_write_db),
    provider: GenerationProvider = Depends(get_generation_provider),
) -> ActionResponse | JSONResponse:
    """
    Run a credit-gated generation.

    Credits are checked before the provider is called and deducted only
    after it succeeds. A refusal returns 403 with the credit shortfall.
    """
    gate = PaidActionGate(CreditLedgerService(db))
    generation = GenerationRequest(
        action_type=action_type,
        account_id=request.account_id,
        quantity=request.quantity,
        prompt=request.prompt,
        image_url=request.image_url,
        listing_id=request.listing_id,
    )

    async def operation() -> dict[str, Any]:
        result = await provider.generate(generation)
        return result.payload

    try:
        outcome = await gate.run(
            request.account_id,
            action_type,
            request.quantity,
            operation,
            listing_id=request.listing_id,
        )
    except AccountNotFoundError as exc:
        raise _account_not_found(exc) from exc
    except GenerationProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc
    except (DatabaseError, DataIntegrityError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database error",
        ) from exc

    if not outcome.admitted:
        denial = CreditDenialResponse(
            credits_needed=outcome.credits_needed,
            credits_remaining=outcome.credits_remaining,
            reason=outcome.reason,
        )
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content=denial.model_dump(mode="json", by_alias=True),
        )

    return ActionResponse(
        action_type=action_type,
        credits_deducted=outcome.credits_deducted,
        credits_remaining=outcome.credits_remaining,
        result=dict(outcome.result or {}),
    )


# =============================================================================
# Webhooks (signature-verified, no API key)
# =============================================================================


@public_router.post("/v1/webhooks/stripe", response_model=WebhookAckResponse)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_write_db),
) -> WebhookAckResponse:
    """
    Handle Stripe subscription events.

    Each event id is applied at most once; redelivered events are
    acknowledged without effect.
    """
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )

    verifier = StripeWebhookVerifier(
        webhook_secret=settings.stripe_webhook_secret,
        api_key=settings.stripe_api_key,
    )
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = verifier.verify(payload, signature)
    except WebhookVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        ) from exc

    change = plan_change_from_event(event)
    if change is None:
        logger.info("stripe_webhook_ignored", event_id=event["id"], event_type=event["type"])
        return WebhookAckResponse(status="ignored", event_id=event["id"])

    outcome = await PlanEventService(db).apply(change)
    return WebhookAckResponse(status=outcome.value, event_id=change.event_id)


# =============================================================================
# Health
# =============================================================================


@public_router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
            },
        ) from exc

    return HealthResponse(status="healthy", database="connected", timestamp=datetime.now(UTC))
