from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, status

from adforge.deps import get_coordinator
from adforge.security import require_internal_api_token
from adforge.schemas.generation import (
    GeneratedCopyOut,
    GenerateRequest,
    GenerateResponse,
    HostedAssetOut,
    ProviderAttemptOut,
)
from adforge.services.generation import GeneratedContent, GenerationCoordinator, GenerationRequest
from adforge.services.hosting import HostedAssetRecord

router = APIRouter(tags=["generation"], dependencies=[Depends(require_internal_api_token)])


def serialize_asset(record: HostedAssetRecord, *, superseded_by: Optional[str] = None) -> HostedAssetOut:
    return HostedAssetOut(
        assetId=record.asset_id,
        campaignRef=record.campaign_ref,
        mediaKind=record.media_kind,
        sourceProviderId=record.source_provider_id,
        storageTier=record.storage_tier,
        permanentUrl=record.permanent_url,
        createdAt=record.created_at,
        byteSize=record.byte_size,
        contentType=record.content_type,
        supersedesAssetId=record.supersedes_asset_id,
        supersededByAssetId=superseded_by,
    )


def _serialize_result(result: GeneratedContent) -> GenerateResponse:
    return GenerateResponse(
        contentId=result.content_id,
        mediaKind=result.media_kind,
        providerId=result.provider_id,
        creditsCharged=result.credits_charged,
        attempts=[ProviderAttemptOut.model_validate(attempt.as_dict()) for attempt in result.attempts],
        content=GeneratedCopyOut.model_validate(result.content.as_dict()) if result.content else None,
        asset=serialize_asset(result.asset) if result.asset else None,
    )


@router.post("/generate", response_model=GenerateResponse, status_code=status.HTTP_201_CREATED)
async def generate(
    payload: GenerateRequest,
    coordinator: GenerationCoordinator = Depends(get_coordinator),
) -> GenerateResponse:
    await coordinator.ensure_campaign(payload.campaignRef)
    result = await coordinator.generate_content(
        GenerationRequest(
            brief=payload.brief,
            platform=payload.platform,
            language=payload.language,
            media_kind=payload.mediaKind,
            user_id=payload.userId,
            campaign_ref=payload.campaignRef,
            reference_asset_ref=payload.referenceAssetRef,
            style=payload.style,
        )
    )
    return _serialize_result(result)
