from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

import sqlalchemy as sa
from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from adforge.db.base import Base, utcnow
from adforge.db.enums import (
    MediaKindEnum,
    PatternTypeEnum,
    ReservationStatusEnum,
    StorageTierEnum,
)

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def _uuid_str() -> str:
    return str(uuid4())


class CreditAccount(Base):
    __tablename__ = "credit_accounts"

    user_id: Mapped[str] = mapped_column(String(length=255), primary_key=True)
    credits_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    # Mirrors the sum of ledger entries; only ever incremented alongside an entry insert.
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    credits_reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class CreditReservation(Base):
    __tablename__ = "credit_reservations"

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(length=255), ForeignKey("credit_accounts.user_id"), nullable=False, index=True
    )
    action_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    credits: Mapped[int] = mapped_column(Integer, nullable=False)
    campaign_ref: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    status: Mapped[ReservationStatusEnum] = mapped_column(
        Enum(ReservationStatusEnum, name="credit_reservation_status"),
        nullable=False,
        default=ReservationStatusEnum.pending,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class CreditLedgerEntry(Base):
    __tablename__ = "credit_ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(length=255), nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    credits_consumed: Mapped[int] = mapped_column(Integer, nullable=False)
    campaign_ref: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    reservation_id: Mapped[Optional[str]] = mapped_column(
        String(length=36), ForeignKey("credit_reservations.id"), nullable=True, unique=True
    )
    provider_id: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class HostedAsset(Base):
    __tablename__ = "hosted_assets"
    __table_args__ = (
        sa.Index("ix_hosted_assets_campaign_kind", "campaign_ref", "media_kind"),
        # One chain head per campaign and media kind.
        sa.Index(
            "uq_hosted_assets_chain_head",
            "campaign_ref",
            "media_kind",
            unique=True,
            postgresql_where=sa.text("supersedes_asset_id IS NULL"),
            sqlite_where=sa.text("supersedes_asset_id IS NULL"),
        ),
    )

    id: Mapped[str] = mapped_column(String(length=36), primary_key=True, default=_uuid_str)
    campaign_ref: Mapped[str] = mapped_column(String(length=255), nullable=False)
    media_kind: Mapped[MediaKindEnum] = mapped_column(
        Enum(MediaKindEnum, name="media_kind"), nullable=False
    )
    source_provider_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    storage_tier: Mapped[StorageTierEnum] = mapped_column(
        Enum(StorageTierEnum, name="storage_tier"), nullable=False, index=True
    )
    permanent_url: Mapped[str] = mapped_column(Text, nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(length=128), nullable=True)
    byte_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sha256: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    supersedes_asset_id: Mapped[Optional[str]] = mapped_column(
        String(length=36), ForeignKey("hosted_assets.id"), nullable=True, unique=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class ContentPerformance(Base):
    __tablename__ = "content_performance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    content_id: Mapped[str] = mapped_column(String(length=255), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(length=255), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(length=64), nullable=False)
    language: Mapped[str] = mapped_column(String(length=64), nullable=False)
    content_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    content_text: Mapped[str] = mapped_column(Text, nullable=False)
    extracted_features: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    feature_source: Mapped[str] = mapped_column(String(length=32), nullable=False)
    performance_score: Mapped[int] = mapped_column(Integer, nullable=False)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    likes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    shares: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    click_through_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    conversion_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class LearningPattern(Base):
    __tablename__ = "learning_patterns"
    __table_args__ = (
        UniqueConstraint(
            "platform",
            "language",
            "content_type",
            "pattern_type",
            "pattern_key",
            name="uq_learning_pattern_key",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(length=64), nullable=False)
    language: Mapped[str] = mapped_column(String(length=64), nullable=False)
    content_type: Mapped[str] = mapped_column(String(length=64), nullable=False)
    pattern_type: Mapped[PatternTypeEnum] = mapped_column(
        Enum(PatternTypeEnum, name="learning_pattern_type"), nullable=False
    )
    # Canonical JSON of pattern_data; part of the identity of the row.
    pattern_key: Mapped[str] = mapped_column(String(length=512), nullable=False)
    pattern_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    avg_performance_score: Mapped[int] = mapped_column(Integer, nullable=False)
    score_total: Mapped[int] = mapped_column(Integer, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    @property
    def confidence(self) -> int:
        return min(100, self.usage_count * 10)
