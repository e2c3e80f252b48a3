"""Initial schema for Shelf Agent.

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "collectables",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("kind", sa.String(20), nullable=False, server_default="other"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("subtitle", sa.String(500), nullable=True),
        sa.Column("primary_creator", sa.String(255), nullable=True),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("format", sa.String(100), nullable=True),
        sa.Column("platform", sa.String(100), nullable=True),
        sa.Column("publisher", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        # Dedup keys
        sa.Column("fingerprint", sa.String(40), nullable=True, unique=True),
        sa.Column("lightweight_fingerprint", sa.String(40), nullable=False, unique=True),
        sa.Column("fuzzy_fingerprints_json", sa.Text(), server_default="[]"),
        # JSON payloads
        sa.Column("creators_json", sa.Text(), server_default="[]"),
        sa.Column("identifiers_json", sa.Text(), server_default="{}"),
        sa.Column("images_json", sa.Text(), server_default="[]"),
        sa.Column("tags_json", sa.Text(), server_default="[]"),
        sa.Column("sources_json", sa.Text(), server_default="[]"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_collectables_kind_title", "collectables", ["kind", "title"])

    op.create_table(
        "shelf_items",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("shelf_id", sa.String(64), nullable=False),
        sa.Column("collectable_id", sa.String(36), sa.ForeignKey("collectables.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "shelf_id", "collectable_id", name="uq_shelf_items_membership"),
    )
    op.create_index("ix_shelf_items_user_id", "shelf_items", ["user_id"])
    op.create_index("ix_shelf_items_shelf_id", "shelf_items", ["shelf_id"])

    op.create_table(
        "needs_review",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("shelf_id", sa.String(64), nullable=False),
        sa.Column("raw_data_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("confidence", sa.Float(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_needs_review_user_id", "needs_review", ["user_id"])
    op.create_index("ix_needs_review_shelf_id", "needs_review", ["shelf_id"])
    op.create_index("ix_needs_review_status", "needs_review", ["status"])


def downgrade() -> None:
    op.drop_index("ix_needs_review_status", table_name="needs_review")
    op.drop_index("ix_needs_review_shelf_id", table_name="needs_review")
    op.drop_index("ix_needs_review_user_id", table_name="needs_review")
    op.drop_table("needs_review")
    op.drop_index("ix_shelf_items_shelf_id", table_name="shelf_items")
    op.drop_index("ix_shelf_items_user_id", table_name="shelf_items")
    op.drop_table("shelf_items")
    op.drop_index("ix_collectables_kind_title", table_name="collectables")
    op.drop_table("collectables")
