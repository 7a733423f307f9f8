from __future__ import annotations

import asyncio

import httpx
import pytest
from sqlalchemy import select

from adforge.db.enums import MediaKindEnum, ProviderOutcomeEnum, StorageTierEnum
from adforge.db.models import HostedAsset
from adforge.db.repositories.hosted_assets import HostedAssetsRepository
from adforge.errors import HostingExhausted
from adforge.providers.base import ProviderKind, RawOutput
from adforge.services.hosting import DurableHostingPipeline, is_provider_origin, safe_filename
from adforge.services.metrics import GenerationMetrics
from adforge.services.orchestrator import ProviderFallbackOrchestrator
from adforge.services.asset_service_client import AssetServiceClient
from adforge.services.storage_tiers import LocalFileTier, ManagedAssetTier
from tests.fakes import FakeProvider, MemoryTier

PROVIDER_URL = "https://replicate.delivery/pbxt/abc123/out-0.png"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _pipeline(tiers, **kwargs) -> DurableHostingPipeline:
    kwargs.setdefault("backoff_base_seconds", 0)
    kwargs.setdefault("block_private_networks", False)
    return DurableHostingPipeline(tiers, **kwargs)


def _url_output() -> RawOutput:
    return RawOutput(provider_id="replicate_sdxl", media_kind=MediaKindEnum.image, url=PROVIDER_URL)


def test_timeout_then_bytes_then_tier_fallback(db_session):
    slow = FakeProvider(
        ProviderKind.replicate_sdxl,
        MediaKindEnum.image,
        output=RawOutput(provider_id="replicate_sdxl", media_kind=MediaKindEnum.image, url=PROVIDER_URL),
        delay=5,
    )
    inline = FakeProvider(
        ProviderKind.openai_dalle,
        MediaKindEnum.image,
        output=RawOutput(
            provider_id="openai_dalle",
            media_kind=MediaKindEnum.image,
            data=PNG_BYTES,
            content_type="image/png",
        ),
    )
    last = FakeProvider(ProviderKind.gemini_image, MediaKindEnum.image, error="unused")
    orchestrator = ProviderFallbackOrchestrator(
        {MediaKindEnum.image: [slow, inline, last]},
        timeouts={"text": 0.2, "image": 0.2, "video": 0.2},
    )
    tier_a = MemoryTier(StorageTierEnum.tierA, base_url="https://bucket.example", fail=True)
    tier_b = MemoryTier(StorageTierEnum.tierB, base_url="https://assets.example")
    tier_c = MemoryTier(StorageTierEnum.tierC, base_url="https://adforge.test/media")
    metrics = GenerationMetrics()
    pipeline = _pipeline([tier_a, tier_b, tier_c], metrics=metrics)

    async def run():
        result = await orchestrator.generate(MediaKindEnum.image, "summer sale banner")
        asset = await pipeline.host_asset(result.output, "camp_1-image.png", campaign_ref="camp_1")
        return result, asset

    result, asset = asyncio.run(run())

    assert asset.storage_tier == StorageTierEnum.tierB
    assert asset.source_provider_id == "openai_dalle"
    assert asset.permanent_url.startswith("https://assets.example/image/")
    assert asset.byte_size == len(PNG_BYTES)
    failures = [attempt for attempt in result.attempts if attempt.outcome != ProviderOutcomeEnum.success]
    assert [attempt.provider_id for attempt in failures] == ["replicate_sdxl"]
    # The same captured buffer is offered to each tier in turn.
    assert tier_a.put_calls == tier_b.put_calls
    assert tier_c.put_calls == []
    assert metrics.registry.get_sample_value("adforge_hosted_assets_total", {"storage_tier": "tierB"}) == 1

    row = db_session.get(HostedAsset, asset.asset_id)
    assert row is not None
    assert row.storage_tier == StorageTierEnum.tierB


def test_capture_retries_with_backoff_and_survives_provider_expiry(media_root):
    calls = {"count": 0}
    expired = {"value": False}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if expired["value"]:
            return httpx.Response(404)
        if calls["count"] < 3:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, content=PNG_BYTES, headers={"content-type": "image/png"})

    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    local = LocalFileTier(media_root, public_base_url="https://adforge.test")
    pipeline = _pipeline(
        [local],
        backoff_base_seconds=2,
        transport=httpx.MockTransport(handler),
        sleep=fake_sleep,
    )

    asset = asyncio.run(pipeline.host_asset(_url_output(), "hero.png", campaign_ref="camp_1"))

    assert calls["count"] == 3
    assert sleeps == [2, 4]
    assert asset.storage_tier == StorageTierEnum.tierC
    assert asset.permanent_url.startswith("https://adforge.test/media/image/")
    assert asset.permanent_url.endswith(".png")
    assert not is_provider_origin(asset.permanent_url, ["replicate.delivery"])

    expired["value"] = True
    assert asyncio.run(pipeline.fetch(asset)) == PNG_BYTES


def test_reference_upload_is_used_only_after_capture_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="signature expired")

    tier_a = MemoryTier(StorageTierEnum.tierA, base_url="https://bucket.example", fail=True)
    tier_b = MemoryTier(StorageTierEnum.tierB, base_url="https://assets.example")
    pipeline = _pipeline([tier_a, tier_b], transport=httpx.MockTransport(handler))

    asset = asyncio.run(pipeline.host_asset(_url_output(), "hero.png", campaign_ref="camp_1"))

    assert tier_a.put_calls == []
    assert tier_b.put_calls == []
    assert tier_a.reference_calls == [PROVIDER_URL]
    assert tier_b.reference_calls == [PROVIDER_URL]
    assert asset.storage_tier == StorageTierEnum.tierB
    assert "/ref/" in asset.permanent_url
    assert asset.byte_size is None


def test_api_key_gated_reference_stays_inside_the_process(media_root):
    veo_url = "https://generativelanguage.googleapis.com/v1beta/files/vid123:download?alt=media"
    raw = RawOutput(
        provider_id="gemini_veo3",
        media_kind=MediaKindEnum.video,
        url=veo_url,
        content_type="video/mp4",
        request_headers={"x-goog-api-key": "gemini-secret"},
    )
    asset_service_requests: list[httpx.Request] = []

    def asset_service(request: httpx.Request) -> httpx.Response:
        asset_service_requests.append(request)
        return httpx.Response(201, json={"id": "asset_1", "primary_url": "https://assets.example/asset_1.mp4"})

    def capture(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text="quota")

    def local_fetch(request: httpx.Request) -> httpx.Response:
        if request.headers.get("x-goog-api-key") != "gemini-secret":
            return httpx.Response(401)
        return httpx.Response(200, content=b"mp4-bytes", headers={"content-type": "video/mp4"})

    tier_b = ManagedAssetTier(
        AssetServiceClient(
            base_url="https://assets-api.example",
            bearer_token="svc_token",
            transport=httpx.MockTransport(asset_service),
        )
    )
    tier_c = LocalFileTier(
        media_root,
        public_base_url="https://adforge.test",
        transport=httpx.MockTransport(local_fetch),
    )
    pipeline = _pipeline([tier_b, tier_c], transport=httpx.MockTransport(capture))

    asset = asyncio.run(pipeline.host_asset(raw, "launch.mp4", campaign_ref="camp_1"))

    assert asset.storage_tier == StorageTierEnum.tierC
    assert asyncio.run(tier_c.get(asset.permanent_url)) == b"mp4-bytes"
    assert asset_service_requests == []


def test_tier_returning_provider_origin_url_counts_as_failure():
    leaky = MemoryTier(StorageTierEnum.tierA, base_url="https://replicate.delivery/mirror")
    safe = MemoryTier(StorageTierEnum.tierB, base_url="https://assets.example")
    pipeline = _pipeline([leaky, safe], provider_origin_hosts=["replicate.delivery"])
    raw = RawOutput(
        provider_id="gemini_image",
        media_kind=MediaKindEnum.image,
        data=PNG_BYTES,
        content_type="image/png",
    )

    asset = asyncio.run(pipeline.host_asset(raw, "hero.png", campaign_ref="camp_1"))

    assert leaky.put_calls
    assert asset.storage_tier == StorageTierEnum.tierB
    assert asset.permanent_url.startswith("https://assets.example/")


def test_hosting_exhausted_records_nothing(db_session):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    tiers = [
        MemoryTier(StorageTierEnum.tierA, base_url="https://bucket.example", fail=True),
        MemoryTier(StorageTierEnum.tierB, base_url="https://assets.example", fail=True),
        MemoryTier(StorageTierEnum.tierC, base_url="https://adforge.test/media", fail=True),
    ]
    pipeline = _pipeline(tiers, transport=httpx.MockTransport(handler))

    with pytest.raises(HostingExhausted) as excinfo:
        asyncio.run(pipeline.host_asset(_url_output(), "hero.png", campaign_ref="camp_1"))

    assert excinfo.value.source_url == PROVIDER_URL
    assert len(excinfo.value.failures) == 3 + 3
    assert db_session.scalars(select(HostedAsset)).all() == []


def test_regeneration_supersedes_without_mutating_previous_asset(db_session):
    tier = MemoryTier(StorageTierEnum.tierA, base_url="https://bucket.example")
    pipeline = _pipeline([tier])

    def raw(payload: bytes) -> RawOutput:
        return RawOutput(
            provider_id="gemini_image",
            media_kind=MediaKindEnum.image,
            data=payload,
            content_type="image/png",
        )

    async def run():
        first = await pipeline.host_asset(raw(PNG_BYTES), "v1.png", campaign_ref="camp_1")
        second = await pipeline.host_asset(raw(PNG_BYTES + b"v2"), "v2.png", campaign_ref="camp_1")
        other = await pipeline.host_asset(raw(PNG_BYTES + b"x"), "x.png", campaign_ref="camp_2")
        return first, second, other

    first, second, other = asyncio.run(run())

    assert first.supersedes_asset_id is None
    assert second.supersedes_asset_id == first.asset_id
    assert other.supersedes_asset_id is None
    original = db_session.get(HostedAsset, first.asset_id)
    assert original.permanent_url == first.permanent_url
    assert original.supersedes_asset_id is None


def test_oversized_download_is_rejected():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"x" * 2048, headers={"content-type": "image/png"})

    tier = MemoryTier(StorageTierEnum.tierA, base_url="https://bucket.example", fail=True)
    pipeline = _pipeline([tier], transport=httpx.MockTransport(handler), max_bytes=1024, download_attempts=1)

    with pytest.raises(HostingExhausted) as excinfo:
        asyncio.run(pipeline.host_asset(_url_output(), "hero.png", campaign_ref="camp_1"))

    assert any("media_too_large" in failure for failure in excinfo.value.failures)


def test_safe_filename_strips_path_characters():
    assert safe_filename("../../etc/passwd") == "etc-passwd"
    assert safe_filename("   ") == "asset"


def test_racing_first_assets_still_form_a_single_chain(db_session, monkeypatch):
    def create(repo: HostedAssetsRepository, path: str) -> HostedAsset:
        return repo.create(
            campaign_ref="camp_1",
            media_kind=MediaKindEnum.image,
            source_provider_id="gemini_image",
            storage_tier=StorageTierEnum.tierC,
            permanent_url=f"https://adforge.test/media/{path}",
            storage_path=path,
            content_type="image/png",
            byte_size=8,
            sha256=None,
        )

    repo = HostedAssetsRepository(db_session)
    first = create(repo, "image/aa/first.png")

    # The second writer read the chain before the first one committed.
    original = HostedAssetsRepository.current_for_campaign
    reads = {"count": 0}

    def current_for_campaign(self, **kwargs):
        reads["count"] += 1
        if reads["count"] == 1:
            return None
        return original(self, **kwargs)

    monkeypatch.setattr(HostedAssetsRepository, "current_for_campaign", current_for_campaign)
    second = create(repo, "image/bb/second.png")

    heads = db_session.scalars(
        select(HostedAsset).where(
            HostedAsset.campaign_ref == "camp_1",
            HostedAsset.supersedes_asset_id.is_(None),
        )
    ).all()
    assert [asset.id for asset in heads] == [first.id]
    assert reads["count"] == 2
    assert second.supersedes_asset_id == first.id
