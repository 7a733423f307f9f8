from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from adforge.config import settings
from adforge.errors import CampaignServiceError

logger = logging.getLogger(__name__)


class CampaignServiceClient:
    """
    Client for the campaign service that owns campaign records.

    Generation only reads campaigns and tags them with produced assets; it never creates them.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        bearer_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_base = (base_url or settings.CAMPAIGN_SERVICE_BASE_URL or "").strip()
        if not resolved_base:
            raise CampaignServiceError("CAMPAIGN_SERVICE_BASE_URL is required")
        self.base_url = resolved_base.rstrip("/")
        self.bearer_token = (bearer_token or settings.CAMPAIGN_SERVICE_TOKEN or "").strip() or None
        self.timeout_seconds = float(timeout_seconds or settings.CAMPAIGN_SERVICE_TIMEOUT_SECONDS or 15.0)
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                transport=self._transport,
            ) as client:
                return await client.request(method, path, json=json_payload, headers=self._headers())
        except httpx.RequestError as exc:
            raise CampaignServiceError(f"Campaign service request failed: {exc}") from exc

    @staticmethod
    def _json_object(resp: httpx.Response, *, context: str) -> dict[str, Any]:
        if resp.status_code >= 400:
            raise CampaignServiceError(
                f"Campaign service {context} failed ({resp.status_code}): {resp.text[:300]}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise CampaignServiceError(
                f"Campaign service returned non-JSON payload for {context}",
                status_code=resp.status_code,
            ) from exc
        if not isinstance(data, dict):
            raise CampaignServiceError(
                f"Campaign service returned non-object JSON payload for {context}",
                status_code=resp.status_code,
            )
        return data

    async def get_campaign(self, campaign_ref: str) -> Optional[dict[str, Any]]:
        resp = await self._request("GET", f"/campaigns/{campaign_ref}")
        if resp.status_code == 404:
            return None
        return self._json_object(resp, context="get_campaign")

    async def update_campaign_status(self, campaign_ref: str, status: str) -> dict[str, Any]:
        resp = await self._request("PATCH", f"/campaigns/{campaign_ref}", json_payload={"status": status})
        return self._json_object(resp, context="update_campaign_status")

    async def attach_asset(
        self,
        campaign_ref: str,
        *,
        asset_id: str,
        media_kind: str,
        permanent_url: str,
    ) -> dict[str, Any]:
        resp = await self._request(
            "POST",
            f"/campaigns/{campaign_ref}/assets",
            json_payload={"assetId": asset_id, "mediaKind": media_kind, "url": permanent_url},
        )
        data = self._json_object(resp, context="attach_asset")
        logger.info(
            "campaigns.asset_attached",
            extra={"campaign_ref": campaign_ref, "asset_id": asset_id, "media_kind": media_kind},
        )
        return data
