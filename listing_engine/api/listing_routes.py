"""
Listing Routes - Listing aggregate and channel catalog endpoints.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from listing_engine.api.dependencies import require_api_key
from listing_engine.db.session import get_read_db, get_write_db
from listing_engine.exceptions import (
    AccountNotFoundError,
    ChannelNotOnListingError,
    DatabaseError,
    DataIntegrityError,
    DuplicateChannelOverrideError,
    DuplicateImagePositionError,
    ListingForbiddenError,
    ListingNotFoundError,
    ListingNotReadyError,
    UnknownChannelError,
    WriteVerificationError,
)
from listing_engine.models.api import (
    ChannelListResponse,
    ChannelReadinessResponse,
    ChannelResponse,
    DeleteListingsRequest,
    DeleteListingsResponse,
    ExportListingRequest,
    ExportListingResponse,
    ImageRef,
    ListingChannelResponse,
    ListingImageResponse,
    ListingListResponse,
    ListingResponse,
    ListingStatus,
    ListingSummaryResponse,
    OverallReadinessResponse,
    SaveListingRequest,
    ValidateContentRequest,
    ValidationResultResponse,
)
from listing_engine.models.domain import (
    ChannelContent,
    ChannelOverrideInput,
    ImageInput,
    ListingAggregate,
    ListingFilters,
    ListingInput,
    ValidationResult,
)
from listing_engine.services import channel_validation, seo_scorer
from listing_engine.services.channel_catalog import ChannelCatalogService, to_definition
from listing_engine.services.listing_store import ListingStore

router = APIRouter(dependencies=[Depends(require_api_key)])


# =============================================================================
# Conversions
# =============================================================================


def _to_listing_input(request: SaveListingRequest) -> ListingInput:
    """Map the wire request onto the store's input dataclasses."""
    images = tuple(
        ImageInput(url=image.url, position=image.position, alt_text=image.alt_text)
        if isinstance(image, ImageRef)
        else ImageInput(url=image)
        for image in request.base.images
    )
    base_data = request.base.model_dump(by_alias=True, exclude={"images"}, exclude_none=True)
    channels = tuple(
        ChannelOverrideInput(
            channel_id=channel.channel_id,
            title=channel.title,
            description=channel.description,
            tags=tuple(channel.tags),
            bullets=tuple(channel.bullets),
            materials=tuple(channel.materials),
            custom_fields=channel.custom_fields,
        )
        for channel in request.channels
    )
    return ListingInput(
        status=request.status,
        base_data=base_data,
        images=images,
        channels=channels,
        listing_id=request.id,
        last_step=request.last_step,
        last_channel_tab=request.last_channel_tab,
        scroll_position=request.scroll_position,
    )


def _validation_response(result: ValidationResult) -> ValidationResultResponse:
    return ValidationResultResponse(
        channel_id=result.channel_id,
        channel_name=result.channel_name,
        valid=result.valid,
        is_ready=result.is_ready,
        errors=list(result.errors),
        warnings=list(result.warnings),
        readiness_score=result.readiness_score,
    )


def _listing_response(aggregate: ListingAggregate) -> ListingResponse:
    readiness = channel_validation.overall_readiness(c.validation for c in aggregate.channels)
    overrides = [c.override for c in aggregate.channels]
    return ListingResponse(
        id=aggregate.id,
        user_id=aggregate.user_id,
        status=aggregate.status,
        base=dict(aggregate.base_data),
        images=[
            ListingImageResponse(
                url=image.url,
                position=image.position,
                is_main=image.is_main,
                alt_text=image.alt_text,
            )
            for image in aggregate.images
        ],
        channels=[
            ListingChannelResponse(
                channel_id=channel.channel_id,
                slug=channel.slug,
                name=channel.name,
                title=channel.override.title,
                description=channel.override.description,
                tags=list(channel.override.tags),
                bullets=list(channel.override.bullets),
                materials=list(channel.override.materials),
                custom_fields=dict(channel.override.custom_fields),
                validation_state=_validation_response(channel.validation),
                readiness_score=channel.readiness_score,
                is_ready=channel.is_ready,
                exported_at=channel.exported_at,
            )
            for channel in aggregate.channels
        ],
        seo_score=aggregate.seo_score,
        seo_recommendations=seo_scorer.recommendations(
            aggregate.base_data, overrides, image_count=len(aggregate.images)
        ),
        readiness=OverallReadinessResponse(
            is_all_ready=readiness.is_all_ready,
            ready_count=readiness.ready_count,
            total_count=readiness.total_count,
            average_score=readiness.average_score,
            critical_errors=list(readiness.critical_errors),
        ),
        last_step=aggregate.last_step,
        last_channel_tab=aggregate.last_channel_tab,
        scroll_position=aggregate.scroll_position,
        created_at=aggregate.created_at,
        updated_at=aggregate.updated_at,
    )


def _store_error(exc: Exception) -> HTTPException:
    """Translate a store exception to its HTTP status."""
    if isinstance(exc, (ListingNotFoundError, AccountNotFoundError)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ListingForbiddenError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, (WriteVerificationError, DataIntegrityError, DatabaseError)):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        )
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


_STORE_ERRORS = (
    AccountNotFoundError,
    ListingNotFoundError,
    ListingForbiddenError,
    UnknownChannelError,
    DuplicateImagePositionError,
    DuplicateChannelOverrideError,
    ChannelNotOnListingError,
    WriteVerificationError,
    DataIntegrityError,
    DatabaseError,
)


# =============================================================================
# Listings
# =============================================================================


@router.post("/v1/listings", response_model=ListingResponse)
@router.post("/v1/listings/save", response_model=ListingResponse, include_in_schema=False)
async def save_listing(
    request: SaveListingRequest,
    db: AsyncSession = Depends(get_write_db),
) -> ListingResponse:
    """
    Create or fully replace a listing.

    Images and channel overrides in the body replace what is stored.
    Readiness and SEO scores are always recomputed on the server.
    """
    try:
        listing = _to_listing_input(request)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    store = ListingStore(db)
    try:
        aggregate = await store.save(request.user_id, listing)
    except _STORE_ERRORS as exc:
        raise _store_error(exc) from exc
    return _listing_response(aggregate)


@router.get("/v1/listings", response_model=ListingListResponse)
async def list_listings(
    user_id: UUID = Query(..., alias="userId"),
    listing_status: ListingStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_read_db),
) -> ListingListResponse:
    """Listing summaries for an account, newest first."""
    store = ListingStore(db)
    summaries = await store.list(
        user_id, ListingFilters(status=listing_status, limit=limit, offset=offset)
    )
    return ListingListResponse(
        listings=[
            ListingSummaryResponse(
                id=summary.id,
                status=summary.status,
                title=summary.title,
                price=summary.price,
                preview_image=summary.preview_image,
                image_count=summary.image_count,
                channels=[
                    ChannelReadinessResponse(
                        channel_id=channel.channel_id,
                        slug=channel.slug,
                        name=channel.name,
                        readiness_score=channel.readiness_score,
                        is_ready=channel.is_ready,
                    )
                    for channel in summary.channels
                ],
                seo_score=summary.seo_score,
                created_at=summary.created_at,
                updated_at=summary.updated_at,
            )
            for summary in summaries
        ],
        limit=limit,
        offset=offset,
    )


@router.get("/v1/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: UUID,
    user_id: UUID = Query(..., alias="userId"),
    db: AsyncSession = Depends(get_read_db),
) -> ListingResponse:
    """Reconstructed listing with images in position order."""
    store = ListingStore(db)
    try:
        aggregate = await store.get(listing_id, user_id)
    except (ListingNotFoundError, ListingForbiddenError) as exc:
        raise _store_error(exc) from exc
    return _listing_response(aggregate)


@router.delete("/v1/listings", response_model=DeleteListingsResponse)
async def delete_listings(
    listing_id: UUID | None = Query(None, alias="id"),
    user_id: UUID | None = Query(None, alias="userId"),
    body: DeleteListingsRequest | None = Body(None),
    db: AsyncSession = Depends(get_write_db),
) -> DeleteListingsResponse:
    """
    Delete one listing (query parameters) or several (JSON body).

    Nothing is deleted if any id is unknown or owned by another account.
    """
    if body is not None:
        ids, owner = body.ids, body.user_id
    elif listing_id is not None and user_id is not None:
        ids, owner = [listing_id], user_id
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide id and userId query parameters or an {ids, userId} body",
        )

    store = ListingStore(db)
    try:
        deleted = await store.delete(ids, owner)
    except _STORE_ERRORS as exc:
        raise _store_error(exc) from exc
    return DeleteListingsResponse(deleted=deleted)


@router.post("/v1/listings/{listing_id}/export", response_model=ExportListingResponse)
async def export_listing(
    listing_id: UUID,
    request: ExportListingRequest,
    db: AsyncSession = Depends(get_write_db),
) -> ExportListingResponse:
    """
    Generate a channel's bulk-upload CSV and stamp the override as exported.

    400 when the channel has blocking validation errors; the detail carries
    the errors to fix.
    """
    store = ListingStore(db)
    try:
        result = await store.export(listing_id, request.user_id, request.channel_id)
    except ListingNotReadyError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "errors": list(exc.errors)},
        ) from exc
    except _STORE_ERRORS as exc:
        raise _store_error(exc) from exc

    return ExportListingResponse(
        channel_id=result.channel_id,
        export_format=result.export_format,
        file_name=result.file.file_name,
        content_type=result.file.content_type,
        content=result.file.content,
        exported_at=result.exported_at,
        validation=_validation_response(result.validation),
    )


# =============================================================================
# Channels
# =============================================================================


@router.get("/v1/channels", response_model=ChannelListResponse)
async def list_channels(db: AsyncSession = Depends(get_read_db)) -> ChannelListResponse:
    """Channel catalog with validation rule schemas."""
    channels = await ChannelCatalogService(db).list_channels()
    return ChannelListResponse(
        channels=[
            ChannelResponse(
                id=channel.id,
                slug=channel.slug,
                name=channel.name,
                export_format=channel.export_format,
                config=channel.config or {},
                validation_rules=channel.validation_rules or {},
            )
            for channel in channels
        ]
    )


@router.post("/v1/channels/{slug}/validate", response_model=ValidationResultResponse)
async def validate_content(
    slug: str,
    request: ValidateContentRequest,
    db: AsyncSession = Depends(get_read_db),
) -> ValidationResultResponse:
    """Validate ad-hoc effective content against one channel."""
    definitions = [to_definition(c) for c in await ChannelCatalogService(db).list_channels()]
    content = ChannelContent(
        title=request.title,
        description=request.description,
        price=request.price,
        category=request.category,
        images=tuple(request.images),
        tags=tuple(request.tags),
        bullets=tuple(request.bullets),
        materials=tuple(request.materials),
        video=request.video,
        custom_fields=request.custom_fields,
    )
    try:
        result = channel_validation.validate_by_slug(slug, content, definitions)
    except UnknownChannelError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown channel: {exc.channel}",
        ) from exc
    return _validation_response(result)
