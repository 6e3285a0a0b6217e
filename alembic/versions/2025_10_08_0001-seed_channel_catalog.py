"""seed channel catalog

Revision ID: 2025_10_08_0001
Revises: 2025_10_08_0000
Create Date: 2025-10-08 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from listing_engine.services.channel_catalog import DEFAULT_CHANNELS, channel_row


# revision identifiers, used by Alembic.
revision: str = '2025_10_08_0001'
down_revision: Union[str, None] = '2025_10_08_0000'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), 'postgresql')

channels_table = sa.table(
    'channels',
    sa.column('id', sa.String),
    sa.column('slug', sa.String),
    sa.column('name', sa.String),
    sa.column('export_format', sa.String),
    sa.column('config', JSONType),
    sa.column('validation_rules', JSONType),
)


def upgrade() -> None:
    """Insert the six marketplace channels with their rule schemas."""
    op.bulk_insert(channels_table, [channel_row(definition) for definition in DEFAULT_CHANNELS])


def downgrade() -> None:
    """Remove the seeded channels."""
    ids = [definition.id for definition in DEFAULT_CHANNELS]
    op.execute(channels_table.delete().where(channels_table.c.id.in_(ids)))
