from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from adforge.db.enums import MediaKindEnum, StorageTierEnum
from adforge.db.models import HostedAsset
from adforge.db.repositories.base import Repository

_CREATE_ATTEMPTS = 3


class HostedAssetsRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def get(self, asset_id: str) -> Optional[HostedAsset]:
        return self.session.get(HostedAsset, asset_id)

    def current_for_campaign(self, *, campaign_ref: str, media_kind: MediaKindEnum) -> Optional[HostedAsset]:
        successor = aliased(HostedAsset)
        stmt = (
            select(HostedAsset)
            .where(
                HostedAsset.campaign_ref == campaign_ref,
                HostedAsset.media_kind == media_kind,
                ~select(successor.id).where(successor.supersedes_asset_id == HostedAsset.id).exists(),
            )
            .order_by(HostedAsset.created_at.desc())
        )
        return self.session.scalars(stmt).first()

    def superseded_by(self, asset_id: str) -> Optional[str]:
        stmt = select(HostedAsset.id).where(HostedAsset.supersedes_asset_id == asset_id)
        return self.session.scalars(stmt).first()

    def create(
        self,
        *,
        campaign_ref: str,
        media_kind: MediaKindEnum,
        source_provider_id: str,
        storage_tier: StorageTierEnum,
        permanent_url: str,
        storage_path: str,
        content_type: Optional[str],
        byte_size: Optional[int],
        sha256: Optional[str],
    ) -> HostedAsset:
        """
        Insert a new asset that supersedes the campaign's current asset of the same kind.

        The unique supersedes_asset_id column lets only one concurrent writer claim a predecessor, and
        a partial unique index allows a single chain head per campaign and kind. The loser of either
        race re-reads the head of the chain and retries.
        """
        last_error: IntegrityError | None = None
        for _ in range(_CREATE_ATTEMPTS):
            current = self.current_for_campaign(campaign_ref=campaign_ref, media_kind=media_kind)
            asset = HostedAsset(
                campaign_ref=campaign_ref,
                media_kind=media_kind,
                source_provider_id=source_provider_id,
                storage_tier=storage_tier,
                permanent_url=permanent_url,
                storage_path=storage_path,
                content_type=content_type,
                byte_size=byte_size,
                sha256=sha256,
                supersedes_asset_id=current.id if current else None,
            )
            try:
                return self.save(asset)
            except IntegrityError as exc:
                self.session.rollback()
                last_error = exc
        assert last_error is not None
        raise last_error

    def tier_counts(self) -> dict[str, int]:
        stmt = select(HostedAsset.storage_tier, func.count(HostedAsset.id)).group_by(HostedAsset.storage_tier)
        counts = {tier.value: 0 for tier in StorageTierEnum}
        for tier, count in self.session.execute(stmt):
            counts[StorageTierEnum(tier).value] = int(count)
        return counts

    def iter_urls(self) -> list[tuple[str, str]]:
        stmt = select(HostedAsset.id, HostedAsset.permanent_url).order_by(HostedAsset.created_at.asc())
        return [(asset_id, url) for asset_id, url in self.session.execute(stmt)]
