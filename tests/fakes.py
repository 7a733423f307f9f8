from __future__ import annotations

import asyncio
import json
from typing import Optional

import httpx

from adforge.db.enums import MediaKindEnum, StorageTierEnum
from adforge.errors import ProviderError
from adforge.providers.base import GenerationParams, GenerationProvider, ProviderKind, RawOutput
from adforge.services.campaigns import CampaignServiceClient
from adforge.services.credits import CreditLedger
from adforge.services.generation import GenerationCoordinator
from adforge.services.hosting import DurableHostingPipeline
from adforge.services.metrics import GenerationMetrics
from adforge.services.orchestrator import ProviderFallbackOrchestrator
from adforge.services.prompt_optimizer import PromptOptimizer


class FakeProvider(GenerationProvider):
    """Scripted provider: returns `output`, raises `error`, or sleeps past its timeout."""

    def __init__(
        self,
        kind: ProviderKind,
        media_kind: MediaKindEnum,
        *,
        output: Optional[RawOutput] = None,
        error: Optional[str] = None,
        delay: float = 0.0,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.media_kind = media_kind
        self.output = output
        self.error = error
        self.delay = delay
        self.timeout_seconds = timeout_seconds
        self.calls: list[tuple[str, GenerationParams]] = []

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        self.calls.append((prompt, params))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise ProviderError(self.provider_id, self.error, status_code=500)
        assert self.output is not None
        return self.output


class MemoryTier:
    """In-memory stand-in for a storage tier, optionally failing every write."""

    def __init__(self, tier, *, base_url: str, fail: bool = False) -> None:
        self.tier = tier
        self.base_url = base_url.rstrip("/")
        self.fail = fail
        self.objects: dict[str, bytes] = {}
        self.put_calls: list[str] = []
        self.reference_calls: list[str] = []

    async def put(self, data: bytes, path: str, *, content_type: Optional[str] = None) -> str:
        self.put_calls.append(path)
        if self.fail:
            raise RuntimeError(f"{self.tier.value} unavailable")
        url = f"{self.base_url}/{path}"
        self.objects[url] = data
        return url

    async def put_from_url(self, url: str, path: str, *, headers=None, content_type=None) -> str:
        self.reference_calls.append(url)
        if self.fail:
            raise RuntimeError(f"{self.tier.value} unavailable")
        stored = f"{self.base_url}/{path}"
        self.objects[stored] = b"fetched-by-tier"
        return stored

    async def get(self, url: str) -> bytes:
        return self.objects[url]

    def owns(self, url: str) -> bool:
        return url in self.objects


class CampaignRecorder:
    """httpx.MockTransport handler standing in for the campaign service."""

    def __init__(self, *, get_status: int = 200, attach_status: int = 201) -> None:
        self.get_status = get_status
        self.attach_status = attach_status
        self.requests: list[tuple[str, str, dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else {}
        self.requests.append((request.method, request.url.path, body))
        if request.method == "GET":
            return httpx.Response(self.get_status, json={"id": "camp_1", "status": "draft"})
        if request.method == "POST":
            return httpx.Response(self.attach_status, json={"ok": True})
        return httpx.Response(200, json={"id": "camp_1", "status": body.get("status")})

    def client(self) -> CampaignServiceClient:
        return CampaignServiceClient(base_url="https://campaigns.test", transport=httpx.MockTransport(self))


def build_coordinator(
    providers,
    *,
    media_kind: MediaKindEnum,
    limit: int = 100,
    tiers=None,
    campaigns: Optional[CampaignServiceClient] = None,
    metrics: Optional[GenerationMetrics] = None,
) -> tuple[GenerationCoordinator, CreditLedger]:
    tiers = tiers or [MemoryTier(StorageTierEnum.tierC, base_url="https://adforge.test/media")]
    ledger = CreditLedger(default_limit=limit)
    coordinator = GenerationCoordinator(
        ledger=ledger,
        optimizer=PromptOptimizer(),
        orchestrator=ProviderFallbackOrchestrator(
            {media_kind: providers},
            timeouts={"text": 10.0, "image": 10.0, "video": 10.0},
            metrics=metrics,
        ),
        hosting=DurableHostingPipeline(tiers, backoff_base_seconds=0, block_private_networks=False),
        metrics=metrics,
        campaigns=campaigns,
    )
    return coordinator, ledger
