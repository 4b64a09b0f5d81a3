"""Initial schema — listings, descriptions and AI analyses.

Revision ID: 001
Revises: (none)
Create Date: 2026-10-17

The unique constraints on listings.item_id, listing_descriptions.listing_id
and ai_analyses.listing_id are the ON CONFLICT targets of the store upserts.
"""

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    # --- listings ---
    op.create_table(
        "listings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("item_id", sa.String(50), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("price", sa.Float(), nullable=False),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("available_quantity", sa.Integer(), nullable=False),
        sa.Column("sold_quantity", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.String(50), nullable=True),
        sa.Column("permalink", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("item_id", name="uq_listings_item_id"),
    )

    # --- listing_descriptions ---
    op.create_table(
        "listing_descriptions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "listing_id",
            UUID(as_uuid=True),
            sa.ForeignKey("listings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("plain_text", sa.Text(), nullable=False),
        _timestamp("updated_at"),
        sa.UniqueConstraint("listing_id", name="uq_listing_descriptions_listing_id"),
    )

    # --- ai_analyses ---
    op.create_table(
        "ai_analyses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "listing_id",
            UUID(as_uuid=True),
            sa.ForeignKey("listings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("recommendations", JSONB(), nullable=False),
        sa.Column("model", sa.String(100), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("listing_id", name="uq_ai_analyses_listing_id"),
    )


def downgrade() -> None:
    op.drop_table("ai_analyses")
    op.drop_table("listing_descriptions")
    op.drop_table("listings")
