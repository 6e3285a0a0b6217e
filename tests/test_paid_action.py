"""
Tests for PaidActionGate and the HTTP generation provider.

The gate is tested with a mocked ledger so each phase can be forced to
succeed or fail independently.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import httpx
import pytest

from listing_engine.exceptions import GenerationProviderError
from listing_engine.models.api import ActionType, DenialReason
from listing_engine.models.domain import CreditAvailability, DeductionResult
from listing_engine.services.generation_provider import (
    GenerationRequest,
    HttpGenerationProvider,
)
from listing_engine.services.paid_action import PaidActionGate


@pytest.fixture
def mock_ledger() -> MagicMock:
    """Ledger that admits and charges 3 credits by default."""
    ledger = MagicMock()
    ledger.check_available = AsyncMock(
        return_value=CreditAvailability(available=True, credits_needed=3, credits_remaining=9)
    )
    ledger.deduct = AsyncMock(
        return_value=DeductionResult(success=True, credits_deducted=3, credits_remaining=6)
    )
    return ledger


class TestPaidActionGate:
    """Tests for the check, generate, deduct sequence."""

    @pytest.mark.asyncio
    async def test_success_charges_after_operation(self, mock_ledger: MagicMock):
        """Admitted action runs the operation and then deducts."""
        operation = AsyncMock(return_value={"url": "https://cdn.example.com/x.png"})
        account_id = uuid4()
        listing_id = uuid4()

        outcome = await PaidActionGate(mock_ledger).run(
            account_id, ActionType.IMAGE_GENERATION, 1, operation, listing_id=listing_id
        )

        assert outcome.admitted is True
        assert outcome.credits_deducted == 3
        assert outcome.credits_remaining == 6
        assert outcome.result == {"url": "https://cdn.example.com/x.png"}
        operation.assert_awaited_once()
        mock_ledger.deduct.assert_awaited_once_with(
            account_id, ActionType.IMAGE_GENERATION, 1, listing_id
        )

    @pytest.mark.asyncio
    async def test_denied_check_skips_operation(self, mock_ledger: MagicMock):
        """Refused admission never calls the provider or the deduction."""
        mock_ledger.check_available.return_value = CreditAvailability(
            available=False,
            credits_needed=3,
            credits_remaining=2,
            reason=DenialReason.INSUFFICIENT_CREDITS,
        )
        operation = AsyncMock()

        outcome = await PaidActionGate(mock_ledger).run(
            uuid4(), ActionType.IMAGE_GENERATION, 1, operation
        )

        assert outcome.admitted is False
        assert outcome.credits_needed == 3
        assert outcome.credits_remaining == 2
        assert outcome.reason == DenialReason.INSUFFICIENT_CREDITS
        assert outcome.result is None
        operation.assert_not_awaited()
        mock_ledger.deduct.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_operation_failure_charges_nothing(self, mock_ledger: MagicMock):
        """A provider error propagates and no deduction happens."""
        operation = AsyncMock(side_effect=GenerationProviderError("upstream down"))

        with pytest.raises(GenerationProviderError):
            await PaidActionGate(mock_ledger).run(
                uuid4(), ActionType.VIDEO_GENERATION, 1, operation
            )

        mock_ledger.deduct.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lost_race_withholds_result(self, mock_ledger: MagicMock):
        """If the deduction is refused after generation the result is dropped."""
        mock_ledger.deduct.return_value = DeductionResult(
            success=False,
            credits_deducted=0,
            credits_remaining=1,
            reason=DenialReason.INSUFFICIENT_CREDITS,
            error="Insufficient credits: need 3, have 1",
        )
        operation = AsyncMock(return_value={"url": "https://cdn.example.com/y.png"})

        outcome = await PaidActionGate(mock_ledger).run(
            uuid4(), ActionType.IMAGE_GENERATION, 1, operation
        )

        assert outcome.admitted is False
        assert outcome.credits_deducted == 0
        assert outcome.credits_remaining == 1
        assert outcome.reason == DenialReason.INSUFFICIENT_CREDITS
        assert outcome.result is None


# ============================================================================
# HTTP Generation Provider
# ============================================================================


def _provider(handler) -> HttpGenerationProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpGenerationProvider(
        "https://gen.example.com/", api_token="tok", http_client=client
    )


def _request() -> GenerationRequest:
    return GenerationRequest(
        action_type=ActionType.IMAGE_GENERATION, account_id=uuid4(), prompt="mug on a table"
    )


class TestHttpGenerationProvider:
    """Tests for the HTTP provider against a mock transport."""

    @pytest.mark.asyncio
    async def test_posts_to_action_endpoint(self):
        """Request goes to /v1/generate/{action} with bearer auth."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"url": "https://cdn.example.com/z.png"})

        provider = _provider(handler)
        result = await provider.generate(_request())
        await provider.close()

        assert result.action_type == ActionType.IMAGE_GENERATION
        assert result.payload == {"url": "https://cdn.example.com/z.png"}
        assert str(seen[0].url) == "https://gen.example.com/v1/generate/image_generation"
        assert seen[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        """Non-2xx responses become GenerationProviderError."""
        provider = _provider(lambda request: httpx.Response(500, json={"error": "boom"}))

        with pytest.raises(GenerationProviderError, match="status 500"):
            await provider.generate(_request())

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        """Connection failures become GenerationProviderError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GenerationProviderError):
            await _provider(handler).generate(_request())

    @pytest.mark.asyncio
    async def test_non_object_payload_raises(self):
        """The provider must answer with a JSON object."""
        provider = _provider(lambda request: httpx.Response(200, json=["a", "b"]))

        with pytest.raises(GenerationProviderError, match="non-object"):
            await provider.generate(_request())

    def test_payload_is_camel_case(self):
        """to_payload serializes ids as strings."""
        request = _request()
        payload = request.to_payload()
        assert payload["accountId"] == str(request.account_id)
        assert payload["listingId"] is None
        assert payload["prompt"] == "mug on a table"
