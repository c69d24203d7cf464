"""Create push subscriptions table.

Revision ID: 4a1d7c2e9b10
Revises:
Create Date: 2026-10-19 09:12:41.201553
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "4a1d7c2e9b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "push_subscriptions",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("recipient_id", sa.Text(), nullable=False),
    sa.Column("endpoint", sa.Text(), nullable=False),
    sa.Column("user_agent", sa.Text(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_push_subscriptions_recipient_id"), "push_subscriptions", ["recipient_id"], unique=False)
  op.create_index("ux_push_subscriptions_endpoint", "push_subscriptions", ["endpoint"], unique=True)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ux_push_subscriptions_endpoint", table_name="push_subscriptions")
  op.drop_index(op.f("ix_push_subscriptions_recipient_id"), table_name="push_subscriptions")
  op.drop_table("push_subscriptions")
