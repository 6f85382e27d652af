"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamp(name):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255)),
        sa.Column("image", sa.Text()),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("requires_password_change", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("token", sa.String(length=128), nullable=False, unique=True),
        sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_address", sa.String(length=64)),
        sa.Column("user_agent", sa.String(length=512)),
        _timestamp("created_at"),
    )
    op.create_index("ix_sessions_user_id", "sessions", ["user_id"])

    op.create_table(
        "verifications",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("identifier", sa.String(length=255), nullable=False),
        sa.Column("value", sa.String(length=128), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_verifications_identifier", "verifications", ["identifier"])

    op.create_table(
        "campaigns",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_campaigns_user_id", "campaigns", ["user_id"])

    op.create_table(
        "characters",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("player_name", sa.String(length=255)),
        sa.Column("race", sa.String(length=255)),
        sa.Column("character_class", sa.String(length=255)),
        sa.Column("background", sa.String(length=255)),
        sa.Column("profile_image", sa.Text()),
        sa.Column("notes", sa.Text()),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_characters_user_id", "characters", ["user_id"])

    op.create_table(
        "character_levels",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column(
            "character_id",
            sa.String(length=32),
            sa.ForeignKey("characters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("sheet_key", sa.String(length=1024)),
        sa.Column("content_type", sa.String(length=128), nullable=False, server_default="application/pdf"),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("extracted_data", JSON_TYPE, nullable=False),
        _timestamp("uploaded_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("character_id", "level", name="uq_character_levels_level"),
    )
    op.create_index("ix_character_levels_character_id", "character_levels", ["character_id"])

    op.create_table(
        "campaign_party",
        sa.Column(
            "campaign_id",
            sa.String(length=32),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "character_id",
            sa.String(length=32),
            sa.ForeignKey("characters.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        _timestamp("added_at"),
    )

    op.create_table(
        "user_campaign_preferences",
        sa.Column("user_id", sa.String(length=32), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "campaign_id",
            sa.String(length=32),
            sa.ForeignKey("campaigns.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("selected_level", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "documents",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("title", sa.String(length=512)),
        sa.Column("description", sa.Text()),
        sa.Column("file_name", sa.String(length=512), nullable=False),
        sa.Column("pdf_url", sa.String(length=1024), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("uploaded_by", sa.String(length=32), sa.ForeignKey("users.id", ondelete="SET NULL")),
        _timestamp("created_at"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=32), primary_key=True),
        _timestamp("ts"),
        sa.Column("username", sa.String(length=320), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("target_id", sa.String(length=64)),
        sa.Column("before", JSON_TYPE),
        sa.Column("after", JSON_TYPE),
    )


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("documents")
    op.drop_table("user_campaign_preferences")
    op.drop_table("campaign_party")
    op.drop_table("character_levels")
    op.drop_table("characters")
    op.drop_table("campaigns")
    op.drop_table("verifications")
    op.drop_table("sessions")
    op.drop_table("users")
