from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote, unquote

import httpx

from adforge.config import settings
from adforge.db.enums import StorageTierEnum
from adforge.errors import StorageTierError
from adforge.schemas.asset_service import AssetServiceCreateFromUriIn
from adforge.services.asset_service_client import AssetServiceClient, AssetServiceConfigError
from adforge.services.media_storage import MediaStorage

logger = logging.getLogger(__name__)


class StorageTier(ABC):
    """
    Uniform byte-persistence capability: put bytes at a path, fetch them back by URL.

    Tier adapters own their URL format; callers treat URLs as opaque.
    """

    tier: StorageTierEnum

    @abstractmethod
    async def put(self, data: bytes, path: str, *, content_type: Optional[str] = None) -> str:
        ...

    @abstractmethod
    async def put_from_url(
        self,
        url: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        """Persist media that only exists at `url`, letting the tier side do the fetch."""

    @abstractmethod
    async def get(self, url: str) -> bytes:
        ...

    def owns(self, url: str) -> bool:
        return False


async def _fetch_remote(
    tier: StorageTierEnum,
    url: str,
    *,
    headers: Optional[dict[str, str]],
    timeout_seconds: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[bytes, Optional[str]]:
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds, transport=transport) as client:
            resp = await client.get(url, headers=headers or {}, follow_redirects=True)
    except httpx.RequestError as exc:
        raise StorageTierError(tier.value, f"reference fetch failed: {exc}") from exc
    if resp.status_code >= 400:
        raise StorageTierError(tier.value, "reference fetch failed", status_code=resp.status_code)
    content_type = resp.headers.get("content-type")
    if content_type:
        content_type = content_type.split(";")[0].strip()
    return resp.content, content_type or None


class ObjectStorageTier(StorageTier):
    """Tier A: S3-compatible object storage."""

    tier = StorageTierEnum.tierA

    def __init__(
        self,
        storage: MediaStorage,
        *,
        fetch_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.storage = storage
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._transport = transport

    def _put_sync(self, data: bytes, path: str, content_type: Optional[str]) -> str:
        key = self.storage.build_key(path)
        if not self.storage.object_exists(key=key):
            self.storage.upload_bytes(key=key, data=data, content_type=content_type)
        return self.storage.public_url(key)

    async def put(self, data: bytes, path: str, *, content_type: Optional[str] = None) -> str:
        try:
            return await asyncio.to_thread(self._put_sync, data, path, content_type)
        except Exception as exc:  # noqa: BLE001
            raise StorageTierError(self.tier.value, f"upload failed: {exc}") from exc

    async def put_from_url(
        self,
        url: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        data, fetched_type = await _fetch_remote(
            self.tier,
            url,
            headers=headers,
            timeout_seconds=self._fetch_timeout_seconds,
            transport=self._transport,
        )
        return await self.put(data, path, content_type=content_type or fetched_type)

    async def get(self, url: str) -> bytes:
        try:
            key = self.storage.key_for_url(url)
            data, _ = await asyncio.to_thread(self.storage.download_bytes, key=key)
        except Exception as exc:  # noqa: BLE001
            raise StorageTierError(self.tier.value, f"download failed: {exc}") from exc
        return data

    def owns(self, url: str) -> bool:
        return url.startswith(self.storage.public_base_url + "/")


class ManagedAssetTier(StorageTier):
    """Tier B: managed asset service; it can fetch a remote URI on its own side."""

    tier = StorageTierEnum.tierB

    def __init__(self, client: AssetServiceClient) -> None:
        self.client = client

    @staticmethod
    def _kind_from_path(path: str) -> str:
        head = path.strip("/").split("/", 1)[0]
        return head if head in ("image", "video", "text") else "image"

    async def put(self, data: bytes, path: str, *, content_type: Optional[str] = None) -> str:
        try:
            asset = await self.client.upload_asset(
                kind=self._kind_from_path(path),
                file_name=Path(path).name,
                file_bytes=data,
                content_type=content_type or "application/octet-stream",
                metadata_json={"path": path},
            )
        except Exception as exc:  # noqa: BLE001
            raise StorageTierError(self.tier.value, f"upload failed: {exc}") from exc
        return asset.primary_url

    async def put_from_url(
        self,
        url: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        # Provider credentials never leave this process; the service fetches anonymously.
        if headers:
            raise StorageTierError(self.tier.value, "reference requires credentials")
        payload = AssetServiceCreateFromUriIn(
            kind=self._kind_from_path(path),
            primary_uri=url,
            file_name=Path(path).name,
            metadata_json={"path": path},
        )
        try:
            asset = await self.client.create_asset_from_uri(payload=payload)
        except Exception as exc:  # noqa: BLE001
            raise StorageTierError(self.tier.value, f"from_uri failed: {exc}") from exc
        return asset.primary_url

    async def get(self, url: str) -> bytes:
        try:
            return await self.client.download(url)
        except Exception as exc:  # noqa: BLE001
            raise StorageTierError(self.tier.value, f"download failed: {exc}") from exc


class LocalFileTier(StorageTier):
    """Tier C: files under a directory this service controls, served back at /media/<path>."""

    tier = StorageTierEnum.tierC

    def __init__(
        self,
        root: str | Path,
        *,
        public_base_url: str,
        fetch_timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.root = Path(root).resolve()
        self.url_prefix = f"{public_base_url.rstrip('/')}/media/"
        self._fetch_timeout_seconds = fetch_timeout_seconds
        self._transport = transport

    def resolve_path(self, path: str) -> Path:
        target = (self.root / path.strip("/")).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageTierError(self.tier.value, "path escapes media root")
        return target

    def _write_sync(self, data: bytes, path: str) -> None:
        target = self.resolve_path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def put(self, data: bytes, path: str, *, content_type: Optional[str] = None) -> str:
        try:
            await asyncio.to_thread(self._write_sync, data, path)
        except StorageTierError:
            raise
        except OSError as exc:
            raise StorageTierError(self.tier.value, f"write failed: {exc}") from exc
        return self.url_prefix + quote(path.strip("/"))

    async def put_from_url(
        self,
        url: str,
        path: str,
        *,
        headers: Optional[dict[str, str]] = None,
        content_type: Optional[str] = None,
    ) -> str:
        data, _ = await _fetch_remote(
            self.tier,
            url,
            headers=headers,
            timeout_seconds=self._fetch_timeout_seconds,
            transport=self._transport,
        )
        return await self.put(data, path, content_type=content_type)

    async def get(self, url: str) -> bytes:
        if not self.owns(url):
            raise StorageTierError(self.tier.value, "url is not served by this tier")
        target = self.resolve_path(unquote(url[len(self.url_prefix) :]))
        try:
            return await asyncio.to_thread(target.read_bytes)
        except OSError as exc:
            raise StorageTierError(self.tier.value, f"read failed: {exc}") from exc

    def owns(self, url: str) -> bool:
        return url.startswith(self.url_prefix)


def build_storage_tiers() -> list[StorageTier]:
    """Ordered tiers from configuration; unconfigured remote tiers are skipped, tier C always exists."""
    tiers: list[StorageTier] = []
    if settings.MEDIA_STORAGE_BUCKET:
        tiers.append(
            ObjectStorageTier(MediaStorage(), fetch_timeout_seconds=settings.HOSTING_DOWNLOAD_TIMEOUT_SECONDS)
        )
    else:
        logger.warning("storage.tier_skipped", extra={"tier": StorageTierEnum.tierA.value})
    try:
        tiers.append(ManagedAssetTier(AssetServiceClient()))
    except AssetServiceConfigError as exc:
        logger.warning("storage.tier_skipped", extra={"tier": StorageTierEnum.tierB.value, "error": str(exc)})
    tiers.append(
        LocalFileTier(
            settings.LOCAL_MEDIA_ROOT,
            public_base_url=settings.public_base_url,
            fetch_timeout_seconds=settings.HOSTING_DOWNLOAD_TIMEOUT_SECONDS,
        )
    )
    return tiers
