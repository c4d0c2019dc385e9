"""Initial schema: users, settings, integrations and events.

Revision ID: 001
Revises:
Create Date: 2024-03-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users table, keyed by the identity provider's uid
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # User settings table
    op.create_table(
        "user_settings",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("timezone", sa.String(100), server_default="UTC"),
        sa.Column("use_24_hour_format", sa.Boolean, nullable=True),
        sa.Column("default_working_hours", postgresql.JSONB, server_default="{}"),
        sa.Column("unavailability_blocks", postgresql.JSONB, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )

    # User integrations table
    op.create_table(
        "user_integrations",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("provider_type", sa.String(20), nullable=False),
        sa.Column("provider_id", sa.String(255), nullable=False),
        sa.Column("account_email", sa.String(255), nullable=True),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scope", postgresql.JSONB, server_default="[]"),
        sa.Column("primary_timezone", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
    )
    op.create_index("idx_integration_unique", "user_integrations", ["user_id", "provider_type"], unique=True)

    # Events table
    op.create_table(
        "events",
        sa.Column("id", sa.Uuid, primary_key=True),
        sa.Column("user_id", sa.String(128), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("provider_type", sa.String(20), nullable=False),
        sa.Column("external_event_id", sa.String(1024), nullable=True),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("location", sa.Text, nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_all_day", sa.Boolean, server_default=sa.false()),
        sa.Column("timezone", sa.String(100), server_default="UTC"),
        sa.Column("status", sa.String(20), server_default="confirmed"),
        sa.Column("meeting_type", sa.String(20), nullable=True),
        sa.Column("meeting_url", sa.Text, nullable=True),
        sa.Column("attendees", postgresql.JSONB, server_default="[]"),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now()),
        sa.CheckConstraint("start_date <= end_date", name="ck_event_range"),
    )
    op.create_index(
        "idx_event_natural_key",
        "events",
        ["user_id", "provider_type", "external_event_id"],
        unique=True,
    )
    op.create_index("idx_event_user_range", "events", ["user_id", "start_date", "end_date"])


def downgrade() -> None:
    op.drop_table("events")
    op.drop_table("user_integrations")
    op.drop_table("user_settings")
    op.drop_table("users")
