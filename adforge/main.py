import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from adforge.config import settings
from adforge.db.base import init_db
from adforge.db.enums import MediaKindEnum
from adforge.errors import AllProvidersExhausted, CampaignServiceError, HostingExhausted, InsufficientCredits
from adforge.providers.registry import build_provider_chains
from adforge.routers import assets, credits, generation, learning, media
from adforge.services.campaigns import CampaignServiceClient
from adforge.services.credits import CreditLedger
from adforge.services.generation import GenerationCoordinator
from adforge.services.hosting import DurableHostingPipeline
from adforge.services.learning import LearningService, ModelFeatureExtractor
from adforge.services.metrics import GenerationMetrics
from adforge.services.orchestrator import ProviderFallbackOrchestrator
from adforge.services.prompt_optimizer import PromptOptimizer
from adforge.services.storage_tiers import LocalFileTier, build_storage_tiers

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _app_lifespan(app: FastAPI) -> AsyncIterator[None]:
    init_db()

    metrics = GenerationMetrics()
    chains = build_provider_chains()
    tiers = build_storage_tiers()
    ledger = CreditLedger()
    orchestrator = ProviderFallbackOrchestrator(chains, timeouts=settings.provider_timeouts, metrics=metrics)
    hosting = DurableHostingPipeline(tiers, metrics=metrics)
    campaigns = CampaignServiceClient() if settings.CAMPAIGN_SERVICE_BASE_URL else None

    text_providers = chains.get(MediaKindEnum.text) or []
    extractor = (
        ModelFeatureExtractor(text_providers[0], timeout_seconds=settings.PROVIDER_TIMEOUT_TEXT_SECONDS)
        if text_providers
        else None
    )

    app.state.metrics = metrics
    app.state.ledger = ledger
    app.state.learning = LearningService(extractor=extractor)
    app.state.local_tier = next(tier for tier in tiers if isinstance(tier, LocalFileTier))
    app.state.coordinator = GenerationCoordinator(
        ledger=ledger,
        optimizer=PromptOptimizer(),
        orchestrator=orchestrator,
        hosting=hosting,
        metrics=metrics,
        campaigns=campaigns,
    )

    for kind in MediaKindEnum:
        if not chains.get(kind):
            logger.warning("provider.chain_empty", extra={"media_kind": kind.value})

    await ledger.release_expired()
    sweeper = asyncio.create_task(ledger.run_sweeper())
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        metrics.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="AdForge Generation API",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    @app.exception_handler(InsufficientCredits)
    async def insufficient_credits_handler(_request: Request, exc: InsufficientCredits) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=402,
            content={
                "detail": str(exc),
                "required": exc.required,
                "remaining": exc.remaining,
                "action": "upgrade",
            },
        )

    @app.exception_handler(AllProvidersExhausted)
    async def providers_exhausted_handler(_request: Request, exc: AllProvidersExhausted) -> ORJSONResponse:
        return ORJSONResponse(
            status_code=502,
            content={
                "detail": "All generation providers failed. Please try again.",
                "mediaKind": exc.media_kind,
                "attempts": [attempt.as_dict() for attempt in exc.attempts],
                "retryable": True,
                "creditsCharged": 0,
            },
        )

    @app.exception_handler(HostingExhausted)
    async def hosting_exhausted_handler(_request: Request, exc: HostingExhausted) -> ORJSONResponse:
        logger.error("hosting.request_failed", extra={"failures": exc.failures})
        return ORJSONResponse(
            status_code=503,
            content={
                "detail": "Generated media could not be stored. Please try again.",
                "retryable": True,
                "creditsCharged": 0,
            },
        )

    @app.exception_handler(CampaignServiceError)
    async def campaign_service_error_handler(_request: Request, exc: CampaignServiceError) -> ORJSONResponse:
        status_code = 404 if exc.status_code == 404 else 502
        return ORJSONResponse(status_code=status_code, content={"detail": exc.message})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(status_code=500, content={"detail": "Internal server error."})

    @app.get("/health")
    async def health(request: Request) -> dict[str, Any]:
        return {"ok": True, "providers": request.app.state.coordinator.describe()}

    @app.get("/metrics")
    async def metrics(request: Request) -> Response:
        return Response(content=request.app.state.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(generation.router)
    app.include_router(learning.router)
    app.include_router(credits.router)
    app.include_router(assets.router)
    app.include_router(media.router)

    return app


app = create_app()
