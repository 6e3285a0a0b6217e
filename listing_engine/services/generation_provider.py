"""
Generation Provider Interface - Narrow seam to the external AI generators.

The engine never talks to image/video/mockup vendors directly; it calls a
GenerationProvider and only charges credits once the provider succeeds.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

import httpx
from structlog import get_logger

from listing_engine.exceptions import GenerationProviderError
from listing_engine.models.api import ActionType

logger = get_logger(__name__)


@dataclass(frozen=True)
class GenerationRequest:
    """Provider-agnostic generation request."""

    action_type: ActionType
    account_id: UUID
    quantity: int = 1
    prompt: str | None = None
    image_url: str | None = None
    listing_id: UUID | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON body sent to the provider."""
        return {
            "accountId": str(self.account_id),
            "quantity": self.quantity,
            "prompt": self.prompt,
            "imageUrl": self.image_url,
            "listingId": str(self.listing_id) if self.listing_id else None,
        }


@dataclass(frozen=True)
class GenerationResult:
    """Provider output; the payload is passed through to the caller."""

    action_type: ActionType
    payload: dict[str, Any] = field(default_factory=dict)


class GenerationProvider(Protocol):
    """
    Generation provider protocol.

    Any generator (hosted model API, internal worker) must implement this.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Run one generation.

        Raises:
            GenerationProviderError: If generation fails
        """
        ...


class HttpGenerationProvider:
    """Generation provider reached over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout_seconds: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """POST the request to {base_url}/v1/generate/{action_type}."""
        url = f"{self.base_url}/v1/generate/{request.action_type.value}"
        headers = {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}

        try:
            response = await self.http_client.post(
                url, json=request.to_payload(), headers=headers
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "generation_request_rejected",
                action_type=request.action_type.value,
                status=exc.response.status_code,
            )
            raise GenerationProviderError(
                f"{request.action_type.value} failed with status {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error(
                "generation_request_failed",
                action_type=request.action_type.value,
                error=str(exc),
            )
            raise GenerationProviderError(f"{request.action_type.value} failed: {exc}") from exc
        except ValueError as exc:
            logger.error("generation_response_invalid", action_type=request.action_type.value)
            raise GenerationProviderError("Provider returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise GenerationProviderError("Provider returned a non-object payload")

        logger.info("generation_completed", action_type=request.action_type.value)
        return GenerationResult(action_type=request.action_type, payload=payload)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
