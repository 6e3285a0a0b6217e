"""
Tests for ListingStore.

Covers full-replace saves, image ordering, ownership checks, summaries and
cascading deletes against a seeded channel catalog.
"""

from uuid import UUID, uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from listing_engine.db.models import ListingChannel, ListingImage
from listing_engine.exceptions import (
    AccountNotFoundError,
    ChannelNotOnListingError,
    DatabaseError,
    DuplicateChannelOverrideError,
    DuplicateImagePositionError,
    ListingForbiddenError,
    ListingNotFoundError,
    ListingNotReadyError,
    UnknownChannelError,
)
from listing_engine.models.api import ListingStatus
from listing_engine.models.domain import ChannelOverrideInput, ImageInput, ListingFilters
from listing_engine.services import channel_validation
from listing_engine.services.listing_store import ListingStore, normalize_images

pytestmark = pytest.mark.usefixtures("seeded_channels")


async def _child_counts(session: AsyncSession, listing_id: UUID) -> tuple[int, int]:
    images = await session.scalar(
        select(func.count(ListingImage.id)).where(ListingImage.listing_id == listing_id)
    )
    channels = await session.scalar(
        select(func.count(ListingChannel.id)).where(ListingChannel.listing_id == listing_id)
    )
    return int(images or 0), int(channels or 0)


# ============================================================================
# Image Normalization
# ============================================================================


class TestNormalizeImages:
    """Tests for position assignment."""

    def test_unpositioned_images_keep_array_order(self):
        """Position defaults to the array index."""
        result = normalize_images([ImageInput("a.png"), ImageInput("b.png")])
        assert [(i.url, i.position) for i in result] == [("a.png", 0), ("b.png", 1)]

    def test_explicit_positions_reorder(self):
        """Explicit positions decide the order."""
        result = normalize_images(
            [ImageInput("b.png", position=1), ImageInput("a.png", position=0)]
        )
        assert [i.url for i in result] == ["a.png", "b.png"]

    def test_gaps_are_closed(self):
        """Sparse positions are renumbered contiguously."""
        result = normalize_images([ImageInput("z.png", position=7), ImageInput("y.png")])
        assert [(i.url, i.position) for i in result] == [("y.png", 0), ("z.png", 1)]

    def test_collision_raises(self):
        """An explicit position equal to another image's index is a conflict."""
        with pytest.raises(DuplicateImagePositionError) as exc_info:
            normalize_images([ImageInput("x.png", position=1), ImageInput("y.png")])
        assert exc_info.value.position == 1

    def test_empty(self):
        """No images is valid."""
        assert normalize_images([]) == []


# ============================================================================
# Save & Get
# ============================================================================


class TestSave:
    """Tests for creating and replacing listings."""

    @pytest.mark.asyncio
    async def test_create_and_get_roundtrip(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Three images and an Etsy override come back in order."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(
                images=("a.png", "b.png", "c.png"),
                channels=(ChannelOverrideInput(channel_id="etsy", title="X"),),
            ),
        )

        listing = await store.get(saved.id, account_id)

        assert [i.url for i in listing.images] == ["a.png", "b.png", "c.png"]
        assert [i.is_main for i in listing.images] == [True, False, False]
        assert [i.position for i in listing.images] == [0, 1, 2]
        assert len(listing.channels) == 1
        etsy = listing.channels[0]
        assert etsy.slug == "etsy"
        assert etsy.name == "Etsy"
        assert etsy.override.title == "X"

    @pytest.mark.asyncio
    async def test_save_computes_readiness(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Stored readiness matches the validation result."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(channels=(ChannelOverrideInput(channel_id="etsy", title="X"),)),
        )

        etsy = saved.channels[0]
        assert etsy.is_ready is False
        assert etsy.is_ready == etsy.validation.is_ready
        assert "Etsy requires at least 8 tags (up to 13)" in etsy.validation.errors
        assert 0 <= etsy.readiness_score < 100

    @pytest.mark.asyncio
    async def test_save_computes_seo_score(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """47-char title, 300-char description, 3 images."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder(images=("a.png", "b.png", "c.png")))

        assert saved.seo_score == 52

    @pytest.mark.asyncio
    async def test_original_image_defaults_to_first(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Base data gets originalImage from the main image."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder(images=("main.png", "alt.png")))

        listing = await store.get(saved.id, account_id)
        assert listing.base_data["originalImage"] == "main.png"

    @pytest.mark.asyncio
    async def test_update_replaces_children(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Full replace: old images and overrides are gone after update."""
        store = ListingStore(db_session)
        first = await store.save(
            account_id,
            listing_builder(
                images=("a.png", "b.png"),
                channels=(
                    ChannelOverrideInput(channel_id="etsy"),
                    ChannelOverrideInput(channel_id="ebay"),
                ),
            ),
        )

        await store.save(
            account_id,
            listing_builder(
                listing_id=first.id,
                images=("c.png",),
                channels=(ChannelOverrideInput(channel_id="amazon"),),
                status=ListingStatus.OPTIMIZED,
            ),
        )

        listing = await store.get(first.id, account_id)
        assert [i.url for i in listing.images] == ["c.png"]
        assert listing.images[0].is_main is True
        assert [c.slug for c in listing.channels] == ["amazon"]
        assert listing.status == ListingStatus.OPTIMIZED
        assert await _child_counts(db_session, first.id) == (1, 1)

    @pytest.mark.asyncio
    async def test_update_unknown_listing(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """An unknown listing id is not silently created."""
        with pytest.raises(ListingNotFoundError):
            await ListingStore(db_session).save(account_id, listing_builder(listing_id=uuid4()))

    @pytest.mark.asyncio
    async def test_update_other_accounts_listing(
        self, listing_builder, db_session: AsyncSession, make_account, account_id: UUID
    ):
        """Another account's listing cannot be overwritten."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder())
        intruder = await make_account()

        with pytest.raises(ListingForbiddenError):
            await store.save(intruder, listing_builder(listing_id=saved.id, title="Mine now"))

        listing = await store.get(saved.id, account_id)
        assert listing.base_data["title"] != "Mine now"

    @pytest.mark.asyncio
    async def test_duplicate_channel_rejected(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """The same channel twice is a caller error and nothing is written."""
        store = ListingStore(db_session)
        with pytest.raises(DuplicateChannelOverrideError):
            await store.save(
                account_id,
                listing_builder(
                    channels=(
                        ChannelOverrideInput(channel_id="etsy", title="One"),
                        ChannelOverrideInput(channel_id="etsy", title="Two"),
                    )
                ),
            )
        assert await store.count(account_id) == 0

    @pytest.mark.asyncio
    async def test_unknown_channel_rejected(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Overrides must reference catalog channels."""
        with pytest.raises(UnknownChannelError) as exc_info:
            await ListingStore(db_session).save(
                account_id,
                listing_builder(channels=(ChannelOverrideInput(channel_id="myspace"),)),
            )
        assert exc_info.value.channel == "myspace"

    @pytest.mark.asyncio
    async def test_duplicate_image_position_rejected(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Conflicting positions fail before anything is written."""
        store = ListingStore(db_session)
        with pytest.raises(DuplicateImagePositionError):
            await store.save(
                account_id,
                listing_builder(images=(ImageInput("x.png", position=1), "y.png")),
            )

    @pytest.mark.asyncio
    async def test_missing_account(self, listing_builder, db_session: AsyncSession):
        """Listings need an existing account."""
        with pytest.raises(AccountNotFoundError):
            await ListingStore(db_session).save(uuid4(), listing_builder())


class TestGet:
    """Tests for ownership on reads."""

    @pytest.mark.asyncio
    async def test_not_found(self, db_session: AsyncSession, account_id: UUID):
        """Unknown ids raise NotFound."""
        with pytest.raises(ListingNotFoundError):
            await ListingStore(db_session).get(uuid4(), account_id)

    @pytest.mark.asyncio
    async def test_forbidden_is_distinct(
        self, listing_builder, db_session: AsyncSession, make_account, account_id: UUID
    ):
        """Existing listing of another account raises Forbidden, not NotFound."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder())
        other = await make_account()

        with pytest.raises(ListingForbiddenError):
            await store.get(saved.id, other)


# ============================================================================
# List & Counts
# ============================================================================


class TestList:
    """Tests for listing summaries."""

    @pytest.mark.asyncio
    async def test_summaries_newest_first(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Summaries carry preview image, counts and channel readiness."""
        store = ListingStore(db_session)
        older = await store.save(account_id, listing_builder(title="Older"))
        newer = await store.save(
            account_id,
            listing_builder(
                title="Newer",
                price=12.5,
                images=("p.png", "q.png"),
                channels=(
                    ChannelOverrideInput(channel_id="shopify"),
                    ChannelOverrideInput(channel_id="etsy"),
                ),
            ),
        )

        summaries = await store.list(account_id)

        assert [s.id for s in summaries] == [newer.id, older.id]
        top = summaries[0]
        assert top.title == "Newer"
        assert top.price == 12.5
        assert top.preview_image == "p.png"
        assert top.image_count == 2
        assert [c.slug for c in top.channels] == ["etsy", "shopify"]
        assert summaries[1].channels == ()

    @pytest.mark.asyncio
    async def test_status_filter_and_pagination(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Status filters and limit/offset apply."""
        store = ListingStore(db_session)
        for status in (ListingStatus.DRAFT, ListingStatus.PUBLISHED, ListingStatus.PUBLISHED):
            await store.save(account_id, listing_builder(status=status))

        published = await store.list(account_id, ListingFilters(status=ListingStatus.PUBLISHED))
        assert len(published) == 2
        assert all(s.status == ListingStatus.PUBLISHED for s in published)

        page = await store.list(account_id, ListingFilters(limit=1, offset=2))
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_other_accounts_excluded(
        self, listing_builder, db_session: AsyncSession, make_account, account_id: UUID
    ):
        """Summaries are scoped to the account."""
        store = ListingStore(db_session)
        await store.save(account_id, listing_builder())
        other = await make_account()

        assert await store.list(other) == []

    @pytest.mark.asyncio
    async def test_counts(self, listing_builder, db_session: AsyncSession, account_id: UUID):
        """count, status_counts and channel_count agree with what was saved."""
        store = ListingStore(db_session)
        await store.save(
            account_id,
            listing_builder(
                status=ListingStatus.PUBLISHED,
                channels=(ChannelOverrideInput(channel_id="etsy"),),
            ),
        )
        await store.save(
            account_id,
            listing_builder(
                channels=(
                    ChannelOverrideInput(channel_id="etsy"),
                    ChannelOverrideInput(channel_id="ebay"),
                ),
            ),
        )

        assert await store.count(account_id) == 2
        assert await store.count(account_id, ListingStatus.PUBLISHED) == 1
        counts = await store.status_counts(account_id)
        assert counts[ListingStatus.PUBLISHED] == 1
        assert counts[ListingStatus.DRAFT] == 1
        assert counts[ListingStatus.COMPLETED] == 0
        assert await store.channel_count(account_id) == 2


# ============================================================================
# Delete
# ============================================================================


class TestDelete:
    """Tests for cascading deletes."""

    @pytest.mark.asyncio
    async def test_delete_removes_children(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """No image or override rows survive their listing."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(
                images=("a.png", "b.png"),
                channels=(ChannelOverrideInput(channel_id="etsy"),),
            ),
        )

        assert await store.delete([saved.id], account_id) == 1

        assert await _child_counts(db_session, saved.id) == (0, 0)
        with pytest.raises(ListingNotFoundError):
            await store.get(saved.id, account_id)

    @pytest.mark.asyncio
    async def test_bulk_delete_dedupes(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """Repeated ids are deleted once."""
        store = ListingStore(db_session)
        a = await store.save(account_id, listing_builder())
        b = await store.save(account_id, listing_builder())

        assert await store.delete([a.id, b.id, a.id], account_id) == 2
        assert await store.count(account_id) == 0

    @pytest.mark.asyncio
    async def test_bulk_delete_is_all_or_nothing(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """One unknown id aborts the whole delete."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder())

        with pytest.raises(ListingNotFoundError):
            await store.delete([saved.id, uuid4()], account_id)

        assert await store.count(account_id) == 1

    @pytest.mark.asyncio
    async def test_delete_forbidden(
        self, listing_builder, db_session: AsyncSession, make_account, account_id: UUID
    ):
        """Another account cannot delete the listing."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder())
        other = await make_account()

        with pytest.raises(ListingForbiddenError):
            await store.delete([saved.id], other)

        assert await store.count(account_id) == 1

    @pytest.mark.asyncio
    async def test_delete_nothing(
        self, listing_builder, db_session: AsyncSession, account_id: UUID
    ):
        """An empty id list is a no-op."""
        assert await ListingStore(db_session).delete([], account_id) == 0


# ============================================================================
# Storage Failure
# ============================================================================


class TestStorageFailure:
    """A failed save leaves the previous aggregate untouched."""

    @pytest.mark.asyncio
    async def test_failure_after_child_deletes_rolls_back(
        self,
        db_session: AsyncSession,
        account_id,
        listing_builder,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Images and overrides survive an error raised mid-replace."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(
                images=("a.png", "b.png"),
                channels=(ChannelOverrideInput(channel_id="shopify", title="Mug"),),
            ),
        )

        def failing_validate(*args, **kwargs):
            raise OperationalError("INSERT INTO listing_channels", {}, Exception("disk full"))

        monkeypatch.setattr(channel_validation, "validate", failing_validate)

        with pytest.raises(DatabaseError):
            await store.save(
                account_id,
                listing_builder(
                    listing_id=saved.id,
                    title="Replaced",
                    images=("z.png",),
                    channels=(ChannelOverrideInput(channel_id="ebay"),),
                ),
            )

        monkeypatch.undo()
        restored = await store.get(saved.id, account_id)
        assert [image.url for image in restored.images] == ["a.png", "b.png"]
        assert [channel.channel_id for channel in restored.channels] == ["shopify"]
        assert restored.base_data["title"] == saved.base_data["title"]


# ============================================================================
# Export
# ============================================================================


def _shopify(**fields) -> ChannelOverrideInput:
    return ChannelOverrideInput(channel_id="shopify", **fields)


class TestExport:
    """Tests for channel export."""

    @pytest.mark.asyncio
    async def test_export_renders_and_stamps(
        self, db_session: AsyncSession, account_id, listing_builder
    ):
        """The file uses effective content and the override gets an export time."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(
                images=("a.png", "b.png"),
                channels=(_shopify(title="Speckled Mug", tags=("mug", "ceramic")),),
            ),
        )

        result = await store.export(saved.id, account_id, "shopify")

        assert result.channel_id == "shopify"
        assert result.export_format == "csv"
        assert result.validation.is_ready is True
        assert result.file.file_name.startswith("shopify-speckled-mug-")
        assert result.file.content_type == "text/csv; charset=utf-8"
        lines = result.file.content.lstrip("\ufeff").split("\r\n")
        assert lines[0].startswith("Handle,Title,Body (HTML)")
        assert lines[1].startswith("speckled-mug,Speckled Mug,")
        assert "a.png" in lines[1]
        assert "b.png" in lines[2]

        reloaded = await store.get(saved.id, account_id)
        assert reloaded.channels[0].exported_at == result.exported_at

    @pytest.mark.asyncio
    async def test_resave_keeps_export_stamp(
        self, db_session: AsyncSession, account_id, listing_builder
    ):
        """Re-submitted channels keep their stamp; dropped channels lose it."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id, listing_builder(channels=(_shopify(title="Mug"),))
        )
        exported = await store.export(saved.id, account_id, "shopify")

        updated = await store.save(
            account_id,
            listing_builder(
                listing_id=saved.id,
                channels=(_shopify(title="Better Mug"), ChannelOverrideInput(channel_id="ebay")),
            ),
        )

        stamps = {channel.channel_id: channel.exported_at for channel in updated.channels}
        assert stamps == {"shopify": exported.exported_at, "ebay": None}
        reloaded = await store.get(saved.id, account_id)
        assert {c.channel_id: c.exported_at for c in reloaded.channels} == stamps

    @pytest.mark.asyncio
    async def test_export_by_slug(self, db_session: AsyncSession, account_id, listing_builder):
        """Channels resolve by slug as well as id."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(channels=(ChannelOverrideInput(channel_id="facebook-ig"),)),
        )

        result = await store.export(saved.id, account_id, "facebook-ig")

        assert result.file.content.lstrip("\ufeff").startswith("id,title,description")

    @pytest.mark.asyncio
    async def test_not_ready_is_refused(
        self, db_session: AsyncSession, account_id, listing_builder
    ):
        """Blocking validation errors stop the export and write no stamp."""
        store = ListingStore(db_session)
        saved = await store.save(
            account_id,
            listing_builder(channels=(ChannelOverrideInput(channel_id="etsy", title="X"),)),
        )

        with pytest.raises(ListingNotReadyError) as exc_info:
            await store.export(saved.id, account_id, "etsy")

        assert exc_info.value.channel_id == "etsy"
        assert exc_info.value.errors
        reloaded = await store.get(saved.id, account_id)
        assert reloaded.channels[0].exported_at is None

    @pytest.mark.asyncio
    async def test_channel_not_on_listing(
        self, db_session: AsyncSession, account_id, listing_builder
    ):
        """Only channels the listing carries can be exported."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder())

        with pytest.raises(ChannelNotOnListingError):
            await store.export(saved.id, account_id, "shopify")

    @pytest.mark.asyncio
    async def test_unknown_channel(self, db_session: AsyncSession, account_id, listing_builder):
        """Channels outside the catalog are rejected."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder())

        with pytest.raises(UnknownChannelError):
            await store.export(saved.id, account_id, "myspace")

    @pytest.mark.asyncio
    async def test_forbidden(
        self, db_session: AsyncSession, account_id, make_account, listing_builder
    ):
        """Another account's listing cannot be exported."""
        store = ListingStore(db_session)
        saved = await store.save(account_id, listing_builder(channels=(_shopify(),)))
        other = await make_account()

        with pytest.raises(ListingForbiddenError):
            await store.export(saved.id, other, "shopify")
