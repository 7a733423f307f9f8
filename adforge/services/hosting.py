from __future__ import annotations

import asyncio
import hashlib
import ipaddress
import logging
import mimetypes
import re
import socket
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Awaitable, Callable, Optional, Sequence
from urllib.parse import urlparse
from uuid import uuid4

import httpx
from PIL import Image, UnidentifiedImageError
from sqlalchemy.orm import sessionmaker

from adforge.config import settings
from adforge.db.base import SessionLocal
from adforge.db.enums import MediaKindEnum, StorageTierEnum
from adforge.db.models import HostedAsset
from adforge.db.repositories.hosted_assets import HostedAssetsRepository
from adforge.errors import HostingExhausted, StorageTierError
from adforge.providers.base import RawOutput
from adforge.services.metrics import GenerationMetrics
from adforge.services.storage_tiers import StorageTier

logger = logging.getLogger(__name__)

_GENERIC_CONTENT_TYPES = {"application/octet-stream", "binary/octet-stream"}
_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class CapturedMedia:
    content: bytes
    sha256: str
    content_type: Optional[str]
    size_bytes: int

    @classmethod
    def from_bytes(cls, data: bytes, content_type: Optional[str]) -> "CapturedMedia":
        return cls(
            content=data,
            sha256=hashlib.sha256(data).hexdigest(),
            content_type=content_type,
            size_bytes=len(data),
        )


@dataclass(frozen=True)
class HostedAssetRecord:
    """Immutable view of a hosted asset row."""

    asset_id: str
    campaign_ref: str
    media_kind: MediaKindEnum
    source_provider_id: str
    storage_tier: StorageTierEnum
    permanent_url: str
    created_at: datetime
    byte_size: Optional[int]
    content_type: Optional[str] = None
    supersedes_asset_id: Optional[str] = None

    @classmethod
    def from_model(cls, asset: HostedAsset) -> "HostedAssetRecord":
        return cls(
            asset_id=asset.id,
            campaign_ref=asset.campaign_ref,
            media_kind=MediaKindEnum(asset.media_kind),
            source_provider_id=asset.source_provider_id,
            storage_tier=StorageTierEnum(asset.storage_tier),
            permanent_url=asset.permanent_url,
            created_at=asset.created_at,
            byte_size=asset.byte_size,
            content_type=asset.content_type,
            supersedes_asset_id=asset.supersedes_asset_id,
        )


def is_provider_origin(url: str, origin_hosts: Sequence[str]) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    return any(host == origin or host.endswith("." + origin) for origin in origin_hosts)


def safe_filename(name: str) -> str:
    cleaned = _SAFE_FILENAME_RE.sub("-", name).strip("-.")
    return cleaned[:120] or "asset"


class DurableHostingPipeline:
    """
    Turn provider output into media this service owns.

    Bytes are captured first (retrying with exponential backoff), then written to the storage tiers in
    order using the same buffer. Only when that path yields nothing does each tier get asked to pull
    the provider URL itself. A provider-origin URL is never recorded as a permanent URL.
    """

    def __init__(
        self,
        tiers: Sequence[StorageTier],
        *,
        session_factory: sessionmaker = SessionLocal,
        download_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        download_timeout_seconds: Optional[float] = None,
        max_bytes: Optional[int] = None,
        block_private_networks: Optional[bool] = None,
        provider_origin_hosts: Optional[Sequence[str]] = None,
        transport: httpx.AsyncBaseTransport | None = None,
        metrics: GenerationMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not tiers:
            raise ValueError("at least one storage tier is required")
        self.tiers = list(tiers)
        self._session_factory = session_factory
        self.download_attempts = int(download_attempts or settings.HOSTING_DOWNLOAD_ATTEMPTS)
        self.backoff_base_seconds = float(
            settings.HOSTING_BACKOFF_BASE_SECONDS if backoff_base_seconds is None else backoff_base_seconds
        )
        self.download_timeout_seconds = float(download_timeout_seconds or settings.HOSTING_DOWNLOAD_TIMEOUT_SECONDS)
        self.max_bytes = int(max_bytes or settings.HOSTING_MAX_BYTES)
        self.block_private_networks = (
            settings.HOSTING_BLOCK_PRIVATE_NETWORKS if block_private_networks is None else block_private_networks
        )
        self.provider_origin_hosts = [
            host.lower() for host in (provider_origin_hosts or settings.provider_origin_hosts)
        ]
        self._transport = transport
        self._metrics = metrics
        self._sleep = sleep

    async def host_asset(
        self,
        raw: RawOutput,
        suggested_filename: str,
        *,
        campaign_ref: str,
    ) -> HostedAssetRecord:
        failures: list[str] = []

        captured: Optional[CapturedMedia] = None
        if raw.data is not None:
            captured = CapturedMedia.from_bytes(raw.data, raw.content_type)
        elif raw.url:
            captured = await self._capture(raw, failures)
        else:
            raise HostingExhausted(source_url=None, failures=["provider output carried no media"])

        if captured is not None:
            content_type = self._resolve_content_type(captured, raw, suggested_filename)
            ext = self._guess_extension(content_type, suggested_filename)
            path = f"{raw.media_kind.value}/{captured.sha256[:2]}/{captured.sha256}.{ext}"
            for tier in self.tiers:
                try:
                    url = await tier.put(captured.content, path, content_type=content_type)
                    self._assert_durable(tier, url, raw)
                except Exception as exc:  # noqa: BLE001
                    self._tier_failed(tier, exc, failures, mode="bytes")
                    continue
                return await self._record(
                    raw,
                    tier=tier,
                    url=url,
                    path=path,
                    campaign_ref=campaign_ref,
                    content_type=content_type,
                    byte_size=captured.size_bytes,
                    sha256=captured.sha256,
                )

        if raw.url:
            path = f"{raw.media_kind.value}/ref/{uuid4().hex}-{safe_filename(suggested_filename)}"
            logger.warning(
                "hosting.reference_fallback",
                extra={"provider_id": raw.provider_id, "campaign_ref": campaign_ref},
            )
            for tier in self.tiers:
                try:
                    url = await tier.put_from_url(
                        raw.url,
                        path,
                        headers=raw.request_headers,
                        content_type=raw.content_type,
                    )
                    self._assert_durable(tier, url, raw)
                except Exception as exc:  # noqa: BLE001
                    self._tier_failed(tier, exc, failures, mode="reference")
                    continue
                return await self._record(
                    raw,
                    tier=tier,
                    url=url,
                    path=path,
                    campaign_ref=campaign_ref,
                    content_type=raw.content_type,
                    byte_size=None,
                    sha256=None,
                )

        logger.error(
            "hosting.exhausted",
            extra={"provider_id": raw.provider_id, "campaign_ref": campaign_ref, "failures": failures},
        )
        raise HostingExhausted(source_url=raw.url, failures=failures)

    async def _capture(self, raw: RawOutput, failures: list[str]) -> Optional[CapturedMedia]:
        assert raw.url is not None
        for attempt in range(1, self.download_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._download(raw.url, headers=raw.request_headers),
                    timeout=self.download_timeout_seconds,
                )
            except Exception as exc:  # noqa: BLE001
                detail = "timed out" if isinstance(exc, asyncio.TimeoutError) else (str(exc) or type(exc).__name__)
                failures.append(f"capture attempt {attempt}: {detail}")
                logger.warning(
                    "hosting.capture_failed",
                    extra={"provider_id": raw.provider_id, "attempt": attempt, "error": detail},
                )
                if attempt < self.download_attempts:
                    await self._sleep(self.backoff_base_seconds * (2 ** (attempt - 1)))
        return None

    async def _download(self, url: str, *, headers: Optional[dict[str, str]] = None) -> CapturedMedia:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise RuntimeError("unsupported_scheme")
        if not parsed.hostname:
            raise RuntimeError("invalid_url")
        if self.block_private_networks:
            await self._assert_public_hostname(parsed.hostname)

        request_headers = {
            "User-Agent": "Mozilla/5.0 (compatible; MediaCapture/1.0)",
            "Accept": "*/*",
        }
        request_headers.update(headers or {})
        async with httpx.AsyncClient(timeout=self.download_timeout_seconds, transport=self._transport) as client:
            async with client.stream("GET", url, headers=request_headers, follow_redirects=True) as resp:
                resp.raise_for_status()
                hasher = hashlib.sha256()
                data = bytearray()
                size = 0
                async for chunk in resp.aiter_bytes():
                    size += len(chunk)
                    if size > self.max_bytes:
                        raise RuntimeError("media_too_large")
                    hasher.update(chunk)
                    data.extend(chunk)
                if size == 0:
                    raise RuntimeError("empty_body")

                content_type = resp.headers.get("content-type")
                if content_type:
                    content_type = content_type.split(";")[0].strip()
                return CapturedMedia(
                    content=bytes(data),
                    sha256=hasher.hexdigest(),
                    content_type=content_type or None,
                    size_bytes=size,
                )

    async def _assert_public_hostname(self, hostname: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            infos = await loop.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise RuntimeError(f"dns_lookup_failed:{hostname}") from exc
        for _, _, _, _, sockaddr in infos:
            ip = ipaddress.ip_address(sockaddr[0])
            if ip.is_private or ip.is_loopback or ip.is_reserved or ip.is_link_local or ip.is_multicast:
                raise RuntimeError("blocked_private_network")

    def _assert_durable(self, tier: StorageTier, url: str, raw: RawOutput) -> None:
        if not url:
            raise StorageTierError(tier.tier.value, "tier returned an empty url")
        if url == raw.url or is_provider_origin(url, self.provider_origin_hosts):
            raise StorageTierError(tier.tier.value, "tier returned a provider-origin url")

    def _tier_failed(self, tier: StorageTier, exc: Exception, failures: list[str], *, mode: str) -> None:
        failures.append(f"{tier.tier.value} ({mode}): {exc}")
        logger.warning(
            "hosting.tier_failed",
            extra={"tier": tier.tier.value, "mode": mode, "error": str(exc)},
        )

    def _resolve_content_type(self, captured: CapturedMedia, raw: RawOutput, suggested_filename: str) -> Optional[str]:
        content_type = captured.content_type or raw.content_type
        if content_type and content_type not in _GENERIC_CONTENT_TYPES:
            return content_type
        if raw.media_kind == MediaKindEnum.image:
            sniffed = self._sniff_image_type(captured.content)
            if sniffed:
                return sniffed
        guessed, _ = mimetypes.guess_type(suggested_filename)
        if guessed:
            return guessed
        if raw.url:
            guessed, _ = mimetypes.guess_type(urlparse(raw.url).path)
            if guessed:
                return guessed
        if raw.media_kind == MediaKindEnum.video:
            return "video/mp4"
        if raw.media_kind == MediaKindEnum.image:
            return "image/png"
        return content_type

    def _sniff_image_type(self, data: bytes) -> Optional[str]:
        try:
            with Image.open(BytesIO(data)) as img:
                return Image.MIME.get(img.format or "")
        except (UnidentifiedImageError, OSError) as exc:
            logger.warning("hosting.image_sniff_failed", extra={"error": str(exc)})
            return None

    def _guess_extension(self, content_type: Optional[str], suggested_filename: str) -> str:
        if content_type:
            ext = mimetypes.guess_extension(content_type)
            if ext:
                return ext.lstrip(".")
            if content_type.startswith(("image/", "video/")):
                return content_type.split("/", 1)[1]
        suffix = suggested_filename.rsplit(".", 1)
        if len(suffix) == 2 and suffix[1].isalnum():
            return suffix[1].lower()
        return "bin"

    async def _record(
        self,
        raw: RawOutput,
        *,
        tier: StorageTier,
        url: str,
        path: str,
        campaign_ref: str,
        content_type: Optional[str],
        byte_size: Optional[int],
        sha256: Optional[str],
    ) -> HostedAssetRecord:
        def _create() -> HostedAssetRecord:
            with self._session_factory() as session:
                asset = HostedAssetsRepository(session).create(
                    campaign_ref=campaign_ref,
                    media_kind=raw.media_kind,
                    source_provider_id=raw.provider_id,
                    storage_tier=tier.tier,
                    permanent_url=url,
                    storage_path=path,
                    content_type=content_type,
                    byte_size=byte_size,
                    sha256=sha256,
                )
                return HostedAssetRecord.from_model(asset)

        record = await asyncio.to_thread(_create)
        logger.info(
            "hosting.asset_hosted",
            extra={
                "asset_id": record.asset_id,
                "tier": record.storage_tier.value,
                "provider_id": record.source_provider_id,
                "byte_size": record.byte_size,
            },
        )
        if self._metrics is not None:
            self._metrics.asset_hosted(storage_tier=record.storage_tier.value)
        return record

    async def fetch(self, record: HostedAssetRecord) -> bytes:
        """Read a hosted asset back through the tier that accepted it."""
        for tier in self.tiers:
            if tier.tier == record.storage_tier:
                return await tier.get(record.permanent_url)
        raise StorageTierError(record.storage_tier.value, "tier is not configured")
