"""Credit ledger, hosted assets and learning store"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_generation_core"
down_revision = None
branch_labels = None
depends_on = None

json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

reservation_status_enum = sa.Enum("pending", "committed", "released", name="credit_reservation_status")
media_kind_enum = sa.Enum("text", "image", "video", name="media_kind")
storage_tier_enum = sa.Enum("tierA", "tierB", "tierC", name="storage_tier")
pattern_type_enum = sa.Enum("structure", "sentiment", "length", "features", name="learning_pattern_type")


def upgrade() -> None:
    op.create_table(
        "credit_accounts",
        sa.Column("user_id", sa.String(length=255), primary_key=True),
        sa.Column("credits_limit", sa.Integer(), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credits_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "credit_reservations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=255), sa.ForeignKey("credit_accounts.user_id"), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("campaign_ref", sa.String(length=255), nullable=True),
        sa.Column("status", reservation_status_enum, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_credit_reservations_user_id", "credit_reservations", ["user_id"])
    op.create_index("ix_credit_reservations_status", "credit_reservations", ["status"])

    op.create_table(
        "credit_ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("credits_consumed", sa.Integer(), nullable=False),
        sa.Column("campaign_ref", sa.String(length=255), nullable=True),
        sa.Column(
            "reservation_id",
            sa.String(length=36),
            sa.ForeignKey("credit_reservations.id"),
            nullable=True,
            unique=True,
        ),
        sa.Column("provider_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_credit_ledger_entries_user_id", "credit_ledger_entries", ["user_id"])

    op.create_table(
        "hosted_assets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("campaign_ref", sa.String(length=255), nullable=False),
        sa.Column("media_kind", media_kind_enum, nullable=False),
        sa.Column("source_provider_id", sa.String(length=64), nullable=False),
        sa.Column("storage_tier", storage_tier_enum, nullable=False),
        sa.Column("permanent_url", sa.Text(), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False),
        sa.Column("content_type", sa.String(length=128), nullable=True),
        sa.Column("byte_size", sa.Integer(), nullable=True),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        sa.Column(
            "supersedes_asset_id",
            sa.String(length=36),
            sa.ForeignKey("hosted_assets.id"),
            nullable=True,
            unique=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_hosted_assets_campaign_kind", "hosted_assets", ["campaign_ref", "media_kind"])
    op.create_index("ix_hosted_assets_storage_tier", "hosted_assets", ["storage_tier"])
    op.create_index(
        "uq_hosted_assets_chain_head",
        "hosted_assets",
        ["campaign_ref", "media_kind"],
        unique=True,
        postgresql_where=sa.text("supersedes_asset_id IS NULL"),
        sqlite_where=sa.text("supersedes_asset_id IS NULL"),
    )

    op.create_table(
        "content_performance",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("content_id", sa.String(length=255), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("platform", sa.String(length=64), nullable=False),
        sa.Column("language", sa.String(length=64), nullable=False),
        sa.Column("content_type", sa.String(length=64), nullable=False),
        sa.Column("content_text", sa.Text(), nullable=False),
        sa.Column("extracted_features", json_type, nullable=False),
        sa.Column("feature_source", sa.String(length=32), nullable=False),
        sa.Column("performance_score", sa.Integer(), nullable=False),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comments", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("shares", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("click_through_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_content_performance_content_id", "content_performance", ["content_id"])
    op.create_index("ix_content_performance_user_id", "content_performance", ["user_id"])

    op.create_table(
        "learning_patterns",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("platform", sa.String(length=64), nullable=False),
        sa.Column("language", sa.String(length=64), nullable=False),
        sa.Column("content_type", sa.String(length=64), nullable=False),
        sa.Column("pattern_type", pattern_type_enum, nullable=False),
        sa.Column("pattern_key", sa.String(length=512), nullable=False),
        sa.Column("pattern_data", json_type, nullable=False),
        sa.Column("avg_performance_score", sa.Integer(), nullable=False),
        sa.Column("score_total", sa.Integer(), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "platform",
            "language",
            "content_type",
            "pattern_type",
            "pattern_key",
            name="uq_learning_pattern_key",
        ),
    )


def downgrade() -> None:
    op.drop_table("learning_patterns")
    op.drop_index("ix_content_performance_user_id", table_name="content_performance")
    op.drop_index("ix_content_performance_content_id", table_name="content_performance")
    op.drop_table("content_performance")
    op.drop_index("uq_hosted_assets_chain_head", table_name="hosted_assets")
    op.drop_index("ix_hosted_assets_storage_tier", table_name="hosted_assets")
    op.drop_index("ix_hosted_assets_campaign_kind", table_name="hosted_assets")
    op.drop_table("hosted_assets")
    op.drop_index("ix_credit_ledger_entries_user_id", table_name="credit_ledger_entries")
    op.drop_table("credit_ledger_entries")
    op.drop_index("ix_credit_reservations_status", table_name="credit_reservations")
    op.drop_index("ix_credit_reservations_user_id", table_name="credit_reservations")
    op.drop_table("credit_reservations")
    op.drop_table("credit_accounts")
    bind = op.get_bind()
    for enum in (pattern_type_enum, storage_tier_enum, media_kind_enum, reservation_status_enum):
        enum.drop(bind, checkfirst=True)
