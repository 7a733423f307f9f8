from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from adforge.config import settings
from adforge.db.base import get_session
from adforge.db.repositories.hosted_assets import HostedAssetsRepository
from adforge.routers.generation import serialize_asset
from adforge.schemas.assets import AssetAuditResponse, ProviderOriginAsset
from adforge.schemas.generation import HostedAssetOut
from adforge.security import require_internal_api_token
from adforge.services.hosting import HostedAssetRecord, is_provider_origin

router = APIRouter(prefix="/assets", tags=["assets"], dependencies=[Depends(require_internal_api_token)])


@router.get("/audit", response_model=AssetAuditResponse)
def audit_assets(session: Session = Depends(get_session)) -> AssetAuditResponse:
    repo = HostedAssetsRepository(session)
    tier_counts = repo.tier_counts()
    origin_hosts = settings.provider_origin_hosts
    leaked = [
        ProviderOriginAsset(assetId=asset_id, permanentUrl=url)
        for asset_id, url in repo.iter_urls()
        if is_provider_origin(url, origin_hosts)
    ]
    return AssetAuditResponse(
        totalAssets=sum(tier_counts.values()),
        tierCounts=tier_counts,
        providerOriginAssets=leaked,
    )


@router.get("/{asset_id}", response_model=HostedAssetOut)
def get_asset(asset_id: str, session: Session = Depends(get_session)) -> HostedAssetOut:
    repo = HostedAssetsRepository(session)
    asset = repo.get(asset_id)
    if asset is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    return serialize_asset(HostedAssetRecord.from_model(asset), superseded_by=repo.superseded_by(asset_id))
