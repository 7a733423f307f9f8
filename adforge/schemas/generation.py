from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from adforge.db.enums import MediaKindEnum, ProviderOutcomeEnum, StorageTierEnum


class GenerateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    campaignRef: str = Field(..., min_length=1, max_length=255)
    brief: str = Field(..., min_length=1, max_length=4000)
    platform: str = Field(..., min_length=1, max_length=64)
    language: str = Field(..., min_length=1, max_length=64)
    mediaKind: MediaKindEnum
    referenceAssetRef: Optional[str] = Field(None, max_length=2048)
    userId: str = Field(..., min_length=1, max_length=255)
    style: Optional[str] = Field(None, max_length=255)


class ProviderAttemptOut(BaseModel):
    providerId: str
    mediaKind: MediaKindEnum
    startedAt: datetime
    outcome: ProviderOutcomeEnum
    rawOutputRef: Optional[str] = None
    errorDetail: Optional[str] = None


class GeneratedCopyOut(BaseModel):
    hook: str
    caption: str
    hashtags: list[str]
    videoScript: list[Any]


class HostedAssetOut(BaseModel):
    assetId: str
    campaignRef: str
    mediaKind: MediaKindEnum
    sourceProviderId: str
    storageTier: StorageTierEnum
    permanentUrl: str
    createdAt: datetime
    byteSize: Optional[int] = None
    contentType: Optional[str] = None
    supersedesAssetId: Optional[str] = None
    supersededByAssetId: Optional[str] = None


class GenerateResponse(BaseModel):
    contentId: str
    mediaKind: MediaKindEnum
    providerId: str
    creditsCharged: int
    attempts: list[ProviderAttemptOut]
    content: Optional[GeneratedCopyOut] = None
    asset: Optional[HostedAssetOut] = None
