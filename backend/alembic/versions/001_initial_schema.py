# @TASK P0-T0.5 - Remote store schema: notes and push subscriptions

"""Create remote_notes and push_subscriptions.

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-10-17 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema migrations."""
    op.create_table(
        "remote_notes",
        sa.Column("id", sa.Integer, nullable=False),
        sa.Column("client_id", sa.String(255), nullable=False),
        sa.Column("text", sa.Text, nullable=False, server_default=""),
        sa.Column("source", sa.String(20), nullable=False, server_default="online"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    # Dedup key for offline sync: one remote record per client-generated id
    op.create_index("ix_remote_notes_client_id", "remote_notes", ["client_id"], unique=True)
    op.create_index("idx_remote_notes_created_at", "remote_notes", ["created_at"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", sa.Integer, nullable=False),
        sa.Column("endpoint", sa.String(2048), nullable=False),
        sa.Column("keys", sa.JSON, nullable=False),
        sa.Column("user_name", sa.String(255), nullable=False, server_default="Usuario"),
        sa.Column("preferences", sa.JSON, nullable=False),
        sa.Column("subscribed_at", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=False, server_default=""),
        sa.Column("language", sa.String(16), nullable=False, server_default="es"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_push_subscriptions_endpoint", "push_subscriptions", ["endpoint"], unique=True)


def downgrade() -> None:
    """Revert schema migrations."""
    op.drop_index("ix_push_subscriptions_endpoint", table_name="push_subscriptions")
    op.drop_table("push_subscriptions")
    op.drop_index("idx_remote_notes_created_at", table_name="remote_notes")
    op.drop_index("ix_remote_notes_client_id", table_name="remote_notes")
    op.drop_table("remote_notes")
