from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from adforge.db.base import SessionLocal
from adforge.db.enums import MediaKindEnum
from adforge.db.repositories.hosted_assets import HostedAssetsRepository
from adforge.errors import AllProvidersExhausted, CampaignServiceError, HostingExhausted, InsufficientCredits
from adforge.services.campaigns import CampaignServiceClient
from adforge.services.content import GeneratedCopy, parse_generated_copy
from adforge.services.credits import CreditLedger, Reservation
from adforge.services.hosting import DurableHostingPipeline, HostedAssetRecord
from adforge.services.metrics import GenerationMetrics
from adforge.services.orchestrator import ProviderAttempt, ProviderFallbackOrchestrator
from adforge.services.prompt_optimizer import PromptOptimizer

logger = logging.getLogger(__name__)

_DEFAULT_EXTENSIONS = {
    MediaKindEnum.image: "png",
    MediaKindEnum.video: "mp4",
}


@dataclass(frozen=True)
class GenerationRequest:
    brief: str
    platform: str
    language: str
    media_kind: MediaKindEnum
    user_id: str
    campaign_ref: str
    reference_asset_ref: Optional[str] = None
    style: Optional[str] = None


@dataclass(frozen=True)
class GeneratedContent:
    content_id: str
    media_kind: MediaKindEnum
    provider_id: str
    credits_charged: int
    attempts: list[ProviderAttempt] = field(default_factory=list)
    content: Optional[GeneratedCopy] = None
    asset: Optional[HostedAssetRecord] = None


class GenerationCoordinator:
    """
    Entry point for one generation: reserve credits, generate, host, then commit the debit.

    The reservation is released on every failure path (including cancellation), so work that was
    not delivered is never charged.
    """

    def __init__(
        self,
        *,
        ledger: CreditLedger,
        optimizer: PromptOptimizer,
        orchestrator: ProviderFallbackOrchestrator,
        hosting: DurableHostingPipeline,
        metrics: GenerationMetrics | None = None,
        campaigns: CampaignServiceClient | None = None,
        session_factory: sessionmaker = SessionLocal,
    ) -> None:
        self.ledger = ledger
        self.optimizer = optimizer
        self.orchestrator = orchestrator
        self.hosting = hosting
        self.metrics = metrics
        self.campaigns = campaigns
        self._session_factory = session_factory

    async def ensure_campaign(self, campaign_ref: str) -> None:
        """Raise CampaignServiceError(404) when the campaign service reports the campaign missing."""
        if self.campaigns is None:
            return
        try:
            campaign = await self.campaigns.get_campaign(campaign_ref)
        except CampaignServiceError as exc:
            logger.warning(
                "campaigns.lookup_failed",
                extra={"campaign_ref": campaign_ref, "error": str(exc)},
            )
            return
        if campaign is None:
            raise CampaignServiceError(f"Campaign not found: {campaign_ref}", status_code=404)

    async def generate_content(self, request: GenerationRequest) -> GeneratedContent:
        started = time.monotonic()
        outcome = "error"
        if self.metrics is not None:
            self.metrics.generation_started()
        try:
            result = await self._generate(request)
            outcome = "success"
            return result
        except InsufficientCredits:
            outcome = "insufficient_credits"
            raise
        except AllProvidersExhausted:
            outcome = "providers_exhausted"
            raise
        except HostingExhausted:
            outcome = "hosting_exhausted"
            raise
        finally:
            if self.metrics is not None:
                self.metrics.generation_finished(
                    media_kind=request.media_kind.value,
                    outcome=outcome,
                    duration_seconds=time.monotonic() - started,
                )

    async def _generate(self, request: GenerationRequest) -> GeneratedContent:
        reservation = await self.ledger.reserve(
            request.user_id,
            request.media_kind,
            campaign_ref=request.campaign_ref,
        )
        try:
            content_id, copy, asset, provider_id, attempts = await self._produce(request)
        except BaseException as exc:
            await self._release(reservation, exc)
            raise

        try:
            committed = await self.ledger.commit(reservation, provider_id=provider_id)
        except BaseException as exc:
            await self._release(reservation, exc)
            raise
        credits_charged = reservation.credits if committed else 0
        if committed and self.metrics is not None:
            self.metrics.credits_debited(media_kind=request.media_kind.value, credits=reservation.credits)

        logger.info(
            "generation.completed",
            extra={
                "content_id": content_id,
                "user_id": request.user_id,
                "campaign_ref": request.campaign_ref,
                "media_kind": request.media_kind.value,
                "provider_id": provider_id,
                "credits_charged": credits_charged,
            },
        )

        if asset is not None:
            await self._tag_campaign(request.campaign_ref, asset)

        return GeneratedContent(
            content_id=content_id,
            media_kind=request.media_kind,
            provider_id=provider_id,
            credits_charged=credits_charged,
            attempts=attempts,
            content=copy,
            asset=asset,
        )

    async def _produce(
        self, request: GenerationRequest
    ) -> tuple[str, Optional[GeneratedCopy], Optional[HostedAssetRecord], str, list[ProviderAttempt]]:
        if request.media_kind == MediaKindEnum.text:
            prompts = await self.optimizer.optimize_prompt(
                request.platform,
                request.language,
                request.media_kind.value,
                request.brief,
            )
            result = await self.orchestrator.generate(
                MediaKindEnum.text,
                prompts.user_prompt,
                style=request.style,
                system_prompt=prompts.system_prompt,
            )
            copy = parse_generated_copy(result.output.text or "")
            if not copy.structured:
                logger.warning(
                    "generation.unstructured_copy",
                    extra={"provider_id": result.provider_id, "campaign_ref": request.campaign_ref},
                )
            return uuid4().hex, copy, None, result.provider_id, result.attempts

        reference_url = await self._resolve_reference(request.reference_asset_ref)
        result = await self.orchestrator.generate(
            request.media_kind,
            request.brief,
            style=request.style,
            reference_url=reference_url,
        )
        filename = f"{request.campaign_ref}-{request.media_kind.value}.{_DEFAULT_EXTENSIONS[request.media_kind]}"
        asset = await self.hosting.host_asset(result.output, filename, campaign_ref=request.campaign_ref)
        return asset.asset_id, None, asset, result.provider_id, result.attempts

    async def _resolve_reference(self, reference_asset_ref: Optional[str]) -> Optional[str]:
        if not reference_asset_ref:
            return None
        if reference_asset_ref.startswith(("http://", "https://")):
            return reference_asset_ref

        def _lookup() -> Optional[str]:
            with self._session_factory() as session:
                asset = HostedAssetsRepository(session).get(reference_asset_ref)
                return asset.permanent_url if asset is not None else None

        url = await asyncio.to_thread(_lookup)
        if url is None:
            logger.warning("generation.reference_not_found", extra={"reference_asset_ref": reference_asset_ref})
        return url

    async def _release(self, reservation: Reservation, exc: BaseException) -> None:
        try:
            await asyncio.shield(self.ledger.release(reservation))
        except Exception:  # noqa: BLE001
            logger.exception(
                "credits.release_failed",
                extra={"reservation_id": reservation.reservation_id, "cause": type(exc).__name__},
            )

    async def _tag_campaign(self, campaign_ref: str, asset: HostedAssetRecord) -> None:
        if self.campaigns is None:
            return
        try:
            await self.campaigns.attach_asset(
                campaign_ref,
                asset_id=asset.asset_id,
                media_kind=asset.media_kind.value,
                permanent_url=asset.permanent_url,
            )
            await self.campaigns.update_campaign_status(campaign_ref, "generated")
        except CampaignServiceError as exc:
            logger.warning(
                "campaigns.tag_failed",
                extra={"campaign_ref": campaign_ref, "asset_id": asset.asset_id, "error": str(exc)},
            )

    def describe(self) -> dict[str, Any]:
        return {
            kind.value: [provider.provider_id for provider in self.orchestrator.providers_for(kind)]
            for kind in MediaKindEnum
        }
