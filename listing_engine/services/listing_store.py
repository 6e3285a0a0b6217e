"""
Listing Store - Persists and reconstructs listing aggregates.

NO DICTIONARIES - Aggregates cross the service boundary as domain dataclasses.

A listing is one base row, an ordered image set and per-channel overrides.
Saves are full replacements: the base row is locked, children are deleted
and re-inserted, readiness and SEO are recomputed, and everything commits
in one transaction or not at all.
"""

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listing_engine.db.models import Account, Channel, Listing, ListingChannel, ListingImage
from listing_engine.exceptions import (
    AccountNotFoundError,
    ChannelNotOnListingError,
    DatabaseError,
    DuplicateChannelOverrideError,
    DuplicateImagePositionError,
    ListingForbiddenError,
    ListingNotFoundError,
    ListingNotReadyError,
    WriteVerificationError,
)
from listing_engine.models.api import ListingStatus
from listing_engine.models.domain import (
    ChannelOverrideInput,
    ChannelReadiness,
    ExportResult,
    ImageInput,
    ListingAggregate,
    ListingChannelData,
    ListingFilters,
    ListingImageData,
    ListingInput,
    ListingSummary,
    ValidationResult,
)
from listing_engine.observability.metrics import metrics, track_duration
from listing_engine.observability.tracing import trace_operation
from listing_engine.services import channel_validation, listing_export, seo_scorer
from listing_engine.services.channel_catalog import ChannelCatalogService

logger = get_logger(__name__)


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _stamp(value: datetime | None) -> datetime | None:
    return _as_utc(value) if value is not None else None


def normalize_images(images: Sequence[ImageInput]) -> list[ImageInput]:
    """
    Order images and assign contiguous positions.

    An image without an explicit position sits at its index in the input.
    Images are sorted by that position and renumbered 0..N-1.

    Raises:
        DuplicateImagePositionError: If two images map to the same position
    """
    placed: dict[int, ImageInput] = {}
    for index, image in enumerate(images):
        position = image.position if image.position is not None else index
        if position in placed:
            raise DuplicateImagePositionError(position)
        placed[position] = image

    return [
        ImageInput(url=image.url, position=new_position, alt_text=image.alt_text)
        for new_position, (_, image) in enumerate(sorted(placed.items()))
    ]


def _override_from_data(channel_id: str, data: dict[str, Any]) -> ChannelOverrideInput:
    return ChannelOverrideInput(
        channel_id=channel_id,
        title=data.get("title"),
        description=data.get("description"),
        tags=tuple(data.get("tags") or ()),
        bullets=tuple(data.get("bullets") or ()),
        materials=tuple(data.get("materials") or ()),
        custom_fields=dict(data.get("customFields") or {}),
    )


class ListingStore:
    """Listing aggregate persistence scoped to one account per call."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize store with database session."""
        self.session = session
        self.catalog = ChannelCatalogService(session)

    # ========================================================================
    # Save
    # ========================================================================

    async def save(self, account_id: UUID, listing: ListingInput) -> ListingAggregate:
        """
        Create or fully replace a listing aggregate.

        Raises:
            DuplicateImagePositionError: Two images share a position
            DuplicateChannelOverrideError: A channel appears twice
            UnknownChannelError: An override names a channel not in the catalog
            ListingNotFoundError: listing_id given but unknown
            ListingForbiddenError: listing_id belongs to another account
            AccountNotFoundError: Account doesn't exist
        """
        images = normalize_images(listing.images)
        operation = "update" if listing.listing_id else "create"

        with track_duration() as timer, trace_operation(
            "listing_save", account_id=account_id, operation=operation
        ):
            try:
                aggregate = await self._save(account_id, listing, images)
                await self.session.commit()
            except Exception as exc:
                await self.session.rollback()
                metrics.record_listing_save(operation, False, 0.0)
                logger.warning(
                    "listing_save_failed",
                    account_id=str(account_id),
                    listing_id=str(listing.listing_id) if listing.listing_id else None,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                if isinstance(exc, SQLAlchemyError):
                    raise DatabaseError(str(exc)) from exc
                raise

        metrics.record_listing_save(operation, True, timer.elapsed)
        for channel in aggregate.channels:
            metrics.channel_readiness_score.labels(channel=channel.slug).observe(
                channel.readiness_score
            )
        logger.info(
            "listing_saved",
            account_id=str(account_id),
            listing_id=str(aggregate.id),
            operation=operation,
            image_count=len(aggregate.images),
            channel_count=len(aggregate.channels),
            seo_score=aggregate.seo_score,
        )
        return aggregate

    async def _save(
        self, account_id: UUID, listing: ListingInput, images: list[ImageInput]
    ) -> ListingAggregate:
        definitions = await self.catalog.resolve(o.channel_id for o in listing.channels)

        seen: set[str] = set()
        for override in listing.channels:
            channel_id = definitions[override.channel_id].id
            if channel_id in seen:
                raise DuplicateChannelOverrideError(channel_id)
            seen.add(channel_id)

        now = _utc_now()
        urls = [image.url for image in images]
        base_data = {key: value for key, value in listing.base_data.items() if key != "images"}
        base_data["originalImage"] = base_data.get("originalImage") or (urls[0] if urls else "")
        seo_score = seo_scorer.score(base_data, listing.channels, image_count=len(urls))

        row = await self._upsert_base(account_id, listing, base_data, seo_score, now)

        # Re-submitted channels keep their last export stamp
        exported = dict(
            (
                await self.session.execute(
                    select(ListingChannel.channel_id, ListingChannel.exported_at).where(
                        ListingChannel.listing_id == row.id
                    )
                )
            ).all()
        )

        await self.session.execute(delete(ListingImage).where(ListingImage.listing_id == row.id))
        await self.session.execute(
            delete(ListingChannel).where(ListingChannel.listing_id == row.id)
        )

        image_rows = [
            ListingImage(
                listing_id=row.id,
                url=image.url,
                position=image.position,
                is_main=image.position == 0,
                alt_text=image.alt_text,
                created_at=now,
            )
            for image in images
        ]

        channel_data: list[ListingChannelData] = []
        channel_rows: list[ListingChannel] = []
        for override in listing.channels:
            definition = definitions[override.channel_id]
            canonical = ChannelOverrideInput(
                channel_id=definition.id,
                title=override.title,
                description=override.description,
                tags=override.tags,
                bullets=override.bullets,
                materials=override.materials,
                custom_fields=override.custom_fields,
            )
            result = channel_validation.validate(
                definition, channel_validation.effective_content(base_data, urls, canonical)
            )
            channel_rows.append(
                ListingChannel(
                    listing_id=row.id,
                    channel_id=definition.id,
                    override_data=canonical.to_override_data(),
                    validation_state=result.to_state(),
                    readiness_score=result.readiness_score,
                    is_ready=result.is_ready,
                    exported_at=exported.get(definition.id),
                    created_at=now,
                    updated_at=now,
                )
            )
            channel_data.append(
                ListingChannelData(
                    channel_id=definition.id,
                    slug=definition.slug,
                    name=definition.name,
                    override=canonical,
                    validation=result,
                    readiness_score=result.readiness_score,
                    is_ready=result.is_ready,
                    exported_at=_stamp(exported.get(definition.id)),
                )
            )

        self.session.add_all(image_rows)
        self.session.add_all(channel_rows)
        await self.session.flush()

        stored_images = await self.session.scalar(
            select(func.count(ListingImage.id)).where(ListingImage.listing_id == row.id)
        )
        if stored_images != len(image_rows):
            raise WriteVerificationError(
                f"Listing {row.id} has {stored_images} images after save, "
                f"expected {len(image_rows)}"
            )

        return ListingAggregate(
            id=row.id,
            user_id=row.user_id,
            status=row.status,
            base_data=base_data,
            images=tuple(
                ListingImageData(
                    url=image.url,
                    position=image.position,
                    is_main=image.is_main,
                    alt_text=image.alt_text,
                )
                for image in image_rows
            ),
            channels=tuple(channel_data),
            seo_score=row.seo_score,
            last_step=row.last_step,
            last_channel_tab=row.last_channel_tab,
            scroll_position=row.scroll_position,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def _upsert_base(
        self,
        account_id: UUID,
        listing: ListingInput,
        base_data: dict[str, Any],
        seo_score: int,
        now: datetime,
    ) -> Listing:
        if listing.listing_id is None:
            if await self.session.get(Account, account_id) is None:
                raise AccountNotFoundError(account_id)
            row = Listing(
                id=uuid4(),
                user_id=account_id,
                created_at=now,
            )
            self.session.add(row)
        else:
            stmt = select(Listing).where(Listing.id == listing.listing_id).with_for_update()
            row = (await self.session.execute(stmt)).scalar_one_or_none()
            if row is None:
                raise ListingNotFoundError(listing.listing_id)
            if row.user_id != account_id:
                raise ListingForbiddenError(listing.listing_id, account_id)

        row.status = listing.status
        row.base_data = base_data
        row.seo_score = seo_score
        row.last_step = listing.last_step
        row.last_channel_tab = listing.last_channel_tab
        row.scroll_position = listing.scroll_position
        row.updated_at = now
        await self.session.flush()
        return row

    # ========================================================================
    # Read
    # ========================================================================

    async def get(self, listing_id: UUID, account_id: UUID) -> ListingAggregate:
        """
        Reconstruct a listing with images ordered by position.

        Raises:
            ListingNotFoundError: Listing doesn't exist
            ListingForbiddenError: Listing belongs to another account
        """
        row = await self._owned_listing(listing_id, account_id)

        image_rows = (
            await self.session.execute(
                select(ListingImage)
                .where(ListingImage.listing_id == listing_id)
                .order_by(ListingImage.position)
            )
        ).scalars().all()

        channel_rows = (
            await self.session.execute(
                select(ListingChannel, Channel.slug, Channel.name)
                .join(Channel, Channel.id == ListingChannel.channel_id)
                .where(ListingChannel.listing_id == listing_id)
                .order_by(Channel.slug)
            )
        ).all()

        return ListingAggregate(
            id=row.id,
            user_id=row.user_id,
            status=row.status,
            base_data=dict(row.base_data or {}),
            images=tuple(
                ListingImageData(
                    url=image.url,
                    position=image.position,
                    is_main=image.is_main,
                    alt_text=image.alt_text,
                )
                for image in image_rows
            ),
            channels=tuple(
                ListingChannelData(
                    channel_id=override.channel_id,
                    slug=slug,
                    name=name,
                    override=_override_from_data(override.channel_id, override.override_data or {}),
                    validation=ValidationResult.from_state(override.validation_state or {}),
                    readiness_score=override.readiness_score,
                    is_ready=override.is_ready,
                    exported_at=_stamp(override.exported_at),
                )
                for override, slug, name in channel_rows
            ),
            seo_score=row.seo_score,
            last_step=row.last_step,
            last_channel_tab=row.last_channel_tab,
            scroll_position=row.scroll_position,
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )

    async def list(
        self, account_id: UUID, filters: ListingFilters | None = None
    ) -> list[ListingSummary]:
        """
        Listing summaries, newest first.

        Three queries regardless of page size: base rows, image aggregates,
        channel readiness. Override payloads are never loaded.
        """
        filters = filters or ListingFilters()

        stmt = select(
            Listing.id,
            Listing.status,
            Listing.base_data,
            Listing.seo_score,
            Listing.created_at,
            Listing.updated_at,
        ).where(Listing.user_id == account_id)
        if filters.status is not None:
            stmt = stmt.where(Listing.status == filters.status)
        stmt = (
            stmt.order_by(Listing.created_at.desc(), Listing.id)
            .limit(filters.limit)
            .offset(filters.offset)
        )
        base_rows = (await self.session.execute(stmt)).all()
        if not base_rows:
            return []

        ids = [r.id for r in base_rows]

        image_stats = {
            listing_id: (count, preview)
            for listing_id, count, preview in (
                await self.session.execute(
                    select(
                        ListingImage.listing_id,
                        func.count(ListingImage.id),
                        func.max(case((ListingImage.position == 0, ListingImage.url))),
                    )
                    .where(ListingImage.listing_id.in_(ids))
                    .group_by(ListingImage.listing_id)
                )
            ).all()
        }

        readiness: dict[UUID, list[ChannelReadiness]] = {listing_id: [] for listing_id in ids}
        channel_rows = (
            await self.session.execute(
                select(
                    ListingChannel.listing_id,
                    ListingChannel.channel_id,
                    Channel.slug,
                    Channel.name,
                    ListingChannel.readiness_score,
                    ListingChannel.is_ready,
                )
                .join(Channel, Channel.id == ListingChannel.channel_id)
                .where(ListingChannel.listing_id.in_(ids))
                .order_by(ListingChannel.listing_id, Channel.slug)
            )
        ).all()
        for r in channel_rows:
            readiness[r.listing_id].append(
                ChannelReadiness(
                    channel_id=r.channel_id,
                    slug=r.slug,
                    name=r.name,
                    readiness_score=r.readiness_score,
                    is_ready=r.is_ready,
                )
            )

        summaries = []
        for r in base_rows:
            base = r.base_data or {}
            count, preview = image_stats.get(r.id, (0, None))
            price = base.get("price")
            summaries.append(
                ListingSummary(
                    id=r.id,
                    status=r.status,
                    title=str(base.get("title") or ""),
                    price=float(price) if isinstance(price, (int, float)) else None,
                    preview_image=preview or base.get("originalImage") or None,
                    image_count=count,
                    channels=tuple(readiness[r.id]),
                    seo_score=r.seo_score,
                    created_at=_as_utc(r.created_at),
                    updated_at=_as_utc(r.updated_at),
                )
            )
        return summaries

    async def count(self, account_id: UUID, status: ListingStatus | None = None) -> int:
        """Number of listings owned by an account."""
        stmt = select(func.count(Listing.id)).where(Listing.user_id == account_id)
        if status is not None:
            stmt = stmt.where(Listing.status == status)
        return int(await self.session.scalar(stmt) or 0)

    async def status_counts(self, account_id: UUID) -> dict[ListingStatus, int]:
        """Listings per status (every status present, zero when empty)."""
        rows = (
            await self.session.execute(
                select(Listing.status, func.count(Listing.id))
                .where(Listing.user_id == account_id)
                .group_by(Listing.status)
            )
        ).all()
        counts = {status: 0 for status in ListingStatus}
        for status, count in rows:
            counts[ListingStatus(status)] = count
        return counts

    async def channel_count(self, account_id: UUID) -> int:
        """Distinct channels the account has at least one override on."""
        stmt = (
            select(func.count(func.distinct(ListingChannel.channel_id)))
            .join(Listing, Listing.id == ListingChannel.listing_id)
            .where(Listing.user_id == account_id)
        )
        return int(await self.session.scalar(stmt) or 0)

    # ========================================================================
    # Export
    # ========================================================================

    async def export(self, listing_id: UUID, account_id: UUID, channel_key: str) -> ExportResult:
        """
        Render one channel's upload file and stamp the override as exported.

        Validation is re-run against the current catalog rules; a channel
        with blocking errors is not exported.

        Raises:
            UnknownChannelError: channel_key is not in the catalog
            ListingNotFoundError: Listing doesn't exist
            ListingForbiddenError: Listing belongs to another account
            ChannelNotOnListingError: Listing has no override for the channel
            ListingNotReadyError: Channel content has validation errors
        """
        definition = await self.catalog.get(channel_key)

        try:
            await self.session.execute(
                select(Listing.id).where(Listing.id == listing_id).with_for_update()
            )
            aggregate = await self.get(listing_id, account_id)

            channel = next(
                (c for c in aggregate.channels if c.channel_id == definition.id), None
            )
            if channel is None:
                raise ChannelNotOnListingError(listing_id, definition.id)

            content = channel_validation.effective_content(
                aggregate.base_data, [image.url for image in aggregate.images], channel.override
            )
            result = channel_validation.validate(definition, content)
            if not result.is_ready:
                raise ListingNotReadyError(definition.id, result.errors)

            now = _utc_now()
            export_file = listing_export.build_export(definition, aggregate, content, now)
            await self.session.execute(
                update(ListingChannel)
                .where(
                    ListingChannel.listing_id == listing_id,
                    ListingChannel.channel_id == definition.id,
                )
                .values(exported_at=now)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DatabaseError(str(exc)) from exc
        except Exception:
            await self.session.rollback()
            raise

        metrics.listings_exported_total.labels(channel=definition.slug).inc()
        logger.info(
            "listing_exported",
            account_id=str(account_id),
            listing_id=str(listing_id),
            channel_id=definition.id,
            export_format=definition.export_format,
            file_name=export_file.file_name,
        )
        return ExportResult(
            channel_id=definition.id,
            export_format=definition.export_format,
            file=export_file,
            validation=result,
            exported_at=now,
        )

    # ========================================================================
    # Delete
    # ========================================================================

    async def delete(self, listing_ids: Iterable[UUID], account_id: UUID) -> int:
        """
        Delete one or more listings with their images and overrides.

        All ids are checked before anything is deleted.

        Raises:
            ListingNotFoundError: Any id is unknown
            ListingForbiddenError: Any id belongs to another account
        """
        ids = list(dict.fromkeys(listing_ids))
        if not ids:
            return 0

        try:
            owners = dict(
                (
                    await self.session.execute(
                        select(Listing.id, Listing.user_id)
                        .where(Listing.id.in_(ids))
                        .with_for_update()
                    )
                ).all()
            )
            for listing_id in ids:
                if listing_id not in owners:
                    raise ListingNotFoundError(listing_id)
                if owners[listing_id] != account_id:
                    raise ListingForbiddenError(listing_id, account_id)

            await self.session.execute(delete(ListingImage).where(ListingImage.listing_id.in_(ids)))
            await self.session.execute(
                delete(ListingChannel).where(ListingChannel.listing_id.in_(ids))
            )
            result = await self.session.execute(delete(Listing).where(Listing.id.in_(ids)))
            if result.rowcount != len(ids):
                raise WriteVerificationError(
                    f"Deleted {result.rowcount} listings, expected {len(ids)}"
                )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DatabaseError(str(exc)) from exc
        except Exception:
            await self.session.rollback()
            raise

        metrics.listings_deleted_total.inc(len(ids))
        logger.info("listings_deleted", account_id=str(account_id), count=len(ids))
        return len(ids)

    async def _owned_listing(self, listing_id: UUID, account_id: UUID) -> Listing:
        row = await self.session.get(Listing, listing_id)
        if row is None:
            raise ListingNotFoundError(listing_id)
        if row.user_id != account_id:
            raise ListingForbiddenError(listing_id, account_id)
        return row
