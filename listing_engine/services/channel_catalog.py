"""
Channel Catalog - Marketplace definitions and their validation rule schemas.

DEFAULT_CHANNELS is the seeded catalog; the channels table is the runtime
source of truth and is read through ChannelCatalogService.
"""

from collections.abc import Iterable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listing_engine.db.models import Channel
from listing_engine.exceptions import UnknownChannelError
from listing_engine.models.domain import ChannelDefinition, FieldRule

logger = get_logger(__name__)

DEFAULT_CHANNELS: tuple[ChannelDefinition, ...] = (
    ChannelDefinition(
        id="shopify",
        slug="shopify",
        name="Shopify",
        export_format="csv",
        description="Perfect for your own online store",
        rules={
            "title": FieldRule(required=True, max_length=255),
            "description": FieldRule(required=True, max_length=65535),
            "price": FieldRule(required=True, min=0),
            "images": FieldRule(required=True, min=1, max=250),
        },
    ),
    ChannelDefinition(
        id="ebay",
        slug="ebay",
        name="eBay",
        export_format="csv",
        description="Auction and fixed-price marketplace",
        rules={
            "title": FieldRule(required=True, max_length=80),
            "description": FieldRule(required=True, max_length=500000),
            "price": FieldRule(required=True, min=0),
            "category": FieldRule(required=True),
            "images": FieldRule(required=True, min=1, max=24),
        },
    ),
    ChannelDefinition(
        id="amazon",
        slug="amazon",
        name="Amazon",
        export_format="csv",
        description="Worlds largest marketplace",
        rules={
            "title": FieldRule(required=True, max_length=200),
            "description": FieldRule(required=True, max_length=2000),
            "bullets": FieldRule(required=True, max=5),
            "price": FieldRule(required=True, min=0),
            "images": FieldRule(required=True, min=1, max=9),
        },
    ),
    ChannelDefinition(
        id="etsy",
        slug="etsy",
        name="Etsy",
        export_format="api",
        description="Handmade and vintage marketplace",
        rules={
            "title": FieldRule(required=True, max_length=140),
            "description": FieldRule(required=True, max_length=5000),
            "tags": FieldRule(required=True, max=13),
            "price": FieldRule(required=True, min=0.20),
            "images": FieldRule(required=True, min=1, max=10),
            "materials": FieldRule(max=13),
        },
    ),
    ChannelDefinition(
        id="facebook-ig",
        slug="facebook-ig",
        name="Facebook & Instagram",
        export_format="csv",
        description="Social commerce platform",
        rules={
            "title": FieldRule(required=True, max_length=100),
            "description": FieldRule(required=True, max_length=5000),
            "price": FieldRule(required=True, min=0),
            "images": FieldRule(required=True, min=1, max=20),
        },
    ),
    ChannelDefinition(
        id="tiktok",
        slug="tiktok",
        name="TikTok Shop",
        export_format="csv",
        description="Social shopping platform",
        rules={
            "title": FieldRule(required=True, max_length=255),
            "description": FieldRule(required=True, max_length=5000),
            "price": FieldRule(required=True, min=0),
            "images": FieldRule(required=True, min=1, max=9),
            "video": FieldRule(recommended=True),
        },
    ),
)


def channel_row(definition: ChannelDefinition) -> dict[str, object]:
    """Column values for inserting a catalog entry."""
    return {
        "id": definition.id,
        "slug": definition.slug,
        "name": definition.name,
        "export_format": definition.export_format,
        "config": {"description": definition.description} if definition.description else {},
        "validation_rules": definition.rules_json(),
    }


def to_definition(channel: Channel) -> ChannelDefinition:
    """Convert an ORM channel to its immutable definition."""
    return ChannelDefinition.from_json_rules(
        id=channel.id,
        slug=channel.slug,
        name=channel.name,
        export_format=channel.export_format,
        validation_rules=channel.validation_rules or {},
        description=(channel.config or {}).get("description"),
    )


class ChannelCatalogService:
    """Read access to the channel catalog."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_channels(self) -> list[Channel]:
        """All catalog channels ordered by name."""
        result = await self.session.execute(select(Channel).order_by(Channel.name))
        return list(result.scalars().all())

    async def get(self, key: str) -> ChannelDefinition:
        """
        Resolve a channel by id or slug.

        Raises:
            UnknownChannelError: If no catalog entry matches
        """
        resolved = await self.resolve([key])
        return resolved[key]

    async def resolve(self, keys: Iterable[str]) -> dict[str, ChannelDefinition]:
        """
        Resolve several channel ids or slugs in one query.

        Returns:
            Mapping from each requested key to its definition

        Raises:
            UnknownChannelError: For the first key with no catalog entry
        """
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}

        result = await self.session.execute(
            select(Channel).where(or_(Channel.id.in_(wanted), Channel.slug.in_(wanted)))
        )
        channels = list(result.scalars().all())

        resolved: dict[str, ChannelDefinition] = {}
        for key in wanted:
            match = next((c for c in channels if c.id == key or c.slug == key), None)
            if match is None:
                logger.warning("unknown_channel_requested", channel=key)
                raise UnknownChannelError(key)
            resolved[key] = to_definition(match)
        return resolved
