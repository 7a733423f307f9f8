from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from adforge.config import settings
from adforge.schemas.asset_service import (
    AssetServiceAssetOut,
    AssetServiceCreateFromUriIn,
    AssetServiceErrorEnvelope,
)


class AssetServiceConfigError(RuntimeError):
    pass


@dataclass
class AssetServiceRequestError(RuntimeError):
    message: str
    status_code: Optional[int] = None
    error_code: Optional[str] = None
    request_id: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        if self.error_code:
            parts.append(f"code={self.error_code}")
        if self.request_id:
            parts.append(f"request_id={self.request_id}")
        return " | ".join(parts)


class AssetServiceClient:
    """Client for the managed asset service used as the secondary storage tier."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        bearer_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_base_url = (base_url or settings.ASSET_SERVICE_BASE_URL or "").strip()
        if not resolved_base_url:
            raise AssetServiceConfigError("ASSET_SERVICE_BASE_URL is required")
        resolved_token = (bearer_token or settings.ASSET_SERVICE_TOKEN or "").strip()
        if not resolved_token:
            raise AssetServiceConfigError("ASSET_SERVICE_TOKEN is required")

        self.base_url = resolved_base_url.rstrip("/")
        self.bearer_token = resolved_token
        self.timeout_seconds = float(timeout_seconds or settings.ASSET_SERVICE_TIMEOUT_SECONDS or 60.0)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout_seconds, transport=self._transport)

    async def upload_asset(
        self,
        *,
        kind: str,
        file_name: str,
        file_bytes: bytes,
        content_type: str,
        metadata_json: Optional[dict[str, Any]] = None,
    ) -> AssetServiceAssetOut:
        if not file_bytes:
            raise AssetServiceRequestError("Cannot upload empty asset bytes")
        if not file_name.strip():
            raise AssetServiceRequestError("Asset upload file_name cannot be empty")

        form_data: dict[str, Any] = {"kind": kind, "source": "generated"}
        if metadata_json is not None:
            form_data["metadata_json"] = json.dumps(metadata_json)
        files = {"file": (file_name, file_bytes, content_type or "application/octet-stream")}
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/assets/upload",
                    data=form_data,
                    files=files,
                    headers={"Authorization": f"Bearer {self.bearer_token}", "Accept": "application/json"},
                )
        except httpx.RequestError as exc:
            raise AssetServiceRequestError(f"Asset service upload failed: {exc}") from exc
        return self._parse_asset(resp, context="upload_asset")

    async def create_asset_from_uri(self, *, payload: AssetServiceCreateFromUriIn) -> AssetServiceAssetOut:
        try:
            async with self._client() as client:
                resp = await client.post(
                    "/assets/from_uri",
                    json=payload.model_dump(mode="json"),
                    headers=self._headers(),
                )
        except httpx.RequestError as exc:
            raise AssetServiceRequestError(f"Asset service from_uri failed: {exc}") from exc
        return self._parse_asset(resp, context="create_asset_from_uri")

    async def download(self, url: str) -> bytes:
        try:
            async with self._client() as client:
                resp = await client.get(url, headers={"Authorization": f"Bearer {self.bearer_token}"})
        except httpx.RequestError as exc:
            raise AssetServiceRequestError(f"Asset service download failed: {exc}") from exc
        if resp.status_code >= 400:
            self._raise_request_error(resp)
        return resp.content

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.bearer_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _parse_asset(self, resp: httpx.Response, *, context: str) -> AssetServiceAssetOut:
        if resp.status_code >= 400:
            self._raise_request_error(resp)
        try:
            data = resp.json()
        except ValueError as exc:
            raise AssetServiceRequestError(
                f"Asset service returned non-JSON payload for {context}",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise AssetServiceRequestError(
                f"Asset service returned non-object JSON payload for {context}",
                status_code=resp.status_code,
            )
        try:
            return AssetServiceAssetOut.model_validate(data)
        except ValidationError as exc:
            raise AssetServiceRequestError(f"Asset service payload validation failed for {context}: {exc}") from exc

    def _raise_request_error(self, resp: httpx.Response) -> None:
        message = f"Asset service request failed ({resp.status_code})"
        error_code: str | None = None
        request_id: str | None = None
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            try:
                envelope = AssetServiceErrorEnvelope.model_validate(payload)
            except ValidationError:
                envelope = None
            if envelope and envelope.error:
                if envelope.error.message:
                    message = envelope.error.message
                error_code = envelope.error.code
                request_id = envelope.error.request_id
        raise AssetServiceRequestError(
            message=message,
            status_code=resp.status_code,
            error_code=error_code,
            request_id=request_id,
        )
