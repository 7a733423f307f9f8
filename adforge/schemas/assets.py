from __future__ import annotations

from pydantic import BaseModel


class ProviderOriginAsset(BaseModel):
    assetId: str
    permanentUrl: str


class AssetAuditResponse(BaseModel):
    totalAssets: int
    tierCounts: dict[str, int]
    providerOriginAssets: list[ProviderOriginAsset]
