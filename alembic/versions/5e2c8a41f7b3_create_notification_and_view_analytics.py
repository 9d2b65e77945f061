"""Create notification_object and entity view analytics tables

Revision ID: 5e2c8a41f7b3
Revises:
Create Date: 2026-10-18 09:12:31.204118

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5e2c8a41f7b3'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the polymorphic notification and view analytics schema."""

    # --- entity_kinds ---
    op.create_table(
        "entity_kinds",
        sa.Column("tag", sa.Integer, primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("shape", sa.String(32), nullable=False),
        sa.Column("since_version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("retired_in", sa.Integer, nullable=True),
        sa.Column(
            "synced_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
    )

    # --- notification_object ---
    op.create_table(
        "notification_object",
        sa.Column(
            "id", sa.Uuid, primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("entity_type", sa.Integer, nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column(
            "created_on", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column("status", sa.SmallInteger, nullable=False, server_default="1"),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.CheckConstraint("status IN (0, 1)", name="ck_notification_object_status"),
    )
    op.create_index(
        "ix_notification_object_entity", "notification_object",
        ["entity_type", "entity_id"],
    )
    op.create_index(
        "ix_notification_object_created_on", "notification_object", ["created_on"],
    )
    op.create_index(
        "ix_notification_object_status", "notification_object", ["status"],
    )

    # --- entity_view_analytics ---
    # The id default lives on the server so that no insert path, ORM or raw
    # SQL, can write a NULL key.
    op.create_table(
        "entity_view_analytics",
        sa.Column(
            "id", sa.Uuid, primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("entity_type", sa.Integer, nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("view_date", sa.Date, nullable=False),
        sa.Column("total_views", sa.Integer, nullable=False, server_default="0"),
        sa.Column("unique_views", sa.Integer, nullable=False, server_default="0"),
        sa.Column("first_viewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_viewed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "entity_type", "entity_id", "view_date",
            name="uq_entity_view_analytics_ref_day",
        ),
    )
    op.create_index(
        "ix_entity_view_analytics_type_day", "entity_view_analytics",
        ["entity_type", "view_date"],
    )

    # --- entity_view_receipts ---
    op.create_table(
        "entity_view_receipts",
        sa.Column("entity_type", sa.Integer, nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("source_id", sa.String(128), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("entity_type", "entity_id", "source_id"),
    )
    op.create_index(
        "ix_entity_view_receipts_created_at", "entity_view_receipts", ["created_at"],
    )

    # --- entity_viewers ---
    op.create_table(
        "entity_viewers",
        sa.Column("entity_type", sa.Integer, nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("view_date", sa.Date, nullable=False),
        sa.Column("viewer_id", sa.String(64), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("entity_type", "entity_id", "view_date", "viewer_id"),
    )
    op.create_index("ix_entity_viewers_view_date", "entity_viewers", ["view_date"])


def downgrade() -> None:
    """Drop the notification and view analytics schema."""
    op.drop_index("ix_entity_viewers_view_date", table_name="entity_viewers")
    op.drop_table("entity_viewers")
    op.drop_index("ix_entity_view_receipts_created_at", table_name="entity_view_receipts")
    op.drop_table("entity_view_receipts")
    op.drop_index("ix_entity_view_analytics_type_day", table_name="entity_view_analytics")
    op.drop_table("entity_view_analytics")
    op.drop_index("ix_notification_object_status", table_name="notification_object")
    op.drop_index("ix_notification_object_created_on", table_name="notification_object")
    op.drop_index("ix_notification_object_entity", table_name="notification_object")
    op.drop_table("notification_object")
    op.drop_table("entity_kinds")
