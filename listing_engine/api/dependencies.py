"""
FastAPI Dependencies - Service authentication and collaborators.

NO DICTIONARIES - All dependencies return typed objects.
"""

import hmac
from collections.abc import AsyncIterator

from fastapi import Header, HTTPException, status
from structlog import get_logger

from listing_engine.config import settings
from listing_engine.exceptions import AuthenticationError
from listing_engine.services.generation_provider import GenerationProvider, HttpGenerationProvider

logger = get_logger(__name__)


# ============================================================================
# API Key Authentication (for service-to-service)
# ============================================================================


def verify_service_key(presented: str | None, expected: str | None) -> None:
    """
    Compare a presented key against the configured one.

    No configured key means the service runs open (local development).

    Raises:
        AuthenticationError: If a key is configured and does not match
    """
    if not expected:
        return
    if not presented:
        raise AuthenticationError("X-API-Key header required")
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        raise AuthenticationError("Invalid API key")


async def require_api_key(
    x_api_key: str | None = Header(None, description="Service API key"),
) -> None:
    """
    FastAPI dependency enforcing the X-API-Key header when one is configured.

    Usage:
        router = APIRouter(dependencies=[Depends(require_api_key)])

    Raises:
        HTTPException 401 if the key is missing or wrong
    """
    try:
        verify_service_key(x_api_key, settings.api_key)
    except AuthenticationError as exc:
        logger.warning("api_key_rejected", has_key=bool(x_api_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc


# ============================================================================
# Generation Provider
# ============================================================================


async def get_generation_provider() -> AsyncIterator[GenerationProvider]:
    """
    FastAPI dependency yielding the configured generation provider.

    The HTTP client is closed when the request finishes.
    """
    provider = HttpGenerationProvider(
        base_url=settings.generation_api_url,
        api_token=settings.generation_api_token,
        timeout_seconds=settings.generation_timeout_seconds,
    )
    try:
        yield provider
    finally:
        await provider.close()
