from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from adforge.db.enums import MediaKindEnum
from adforge.errors import ProviderError


class ProviderKind(str, Enum):
    openai_chat = "openai_chat"
    anthropic_messages = "anthropic_messages"
    gemini_text = "gemini_text"
    replicate_sdxl = "replicate_sdxl"
    openai_dalle = "openai_dalle"
    gemini_image = "gemini_image"
    gemini_veo3 = "gemini_veo3"
    gemini_veo2 = "gemini_veo2"
    replicate_minimax = "replicate_minimax"


@dataclass(frozen=True)
class GenerationParams:
    media_kind: MediaKindEnum
    style: Optional[str] = None
    reference_url: Optional[str] = None
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class RawOutput:
    """What a provider handed back: inline bytes, a (possibly ephemeral) URL, or text."""

    provider_id: str
    media_kind: MediaKindEnum
    url: Optional[str] = None
    data: Optional[bytes] = None
    content_type: Optional[str] = None
    text: Optional[str] = None
    # Headers required to fetch `url` (some vendors gate downloads behind the API key).
    request_headers: dict[str, str] = field(default_factory=dict)

    @property
    def ref(self) -> str:
        if self.url:
            return self.url
        if self.data is not None:
            return f"inline:{len(self.data)}b"
        return "text"


def styled_prompt(prompt: str, style: Optional[str]) -> str:
    style_clause = f", {style} style" if style else ""
    return (
        f"{prompt}{style_clause}, high quality, professional advertising photo, clean background, "
        "well-lit, commercial photography, social media ready, no text or watermarks"
    )


class GenerationProvider(ABC):
    kind: ProviderKind
    media_kind: MediaKindEnum
    # Overrides the orchestrator's per-media-kind timeout when set.
    timeout_seconds: Optional[float] = None

    @property
    def provider_id(self) -> str:
        return self.kind.value

    @abstractmethod
    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        ...


class HttpGenerationProvider(GenerationProvider):
    """Shared JSON-over-HTTP plumbing for vendors called through their REST APIs."""

    def __init__(
        self,
        *,
        http_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._http_timeout = http_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._http_timeout, transport=self._transport)

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json_payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=headers, json=json_payload)
        except httpx.RequestError as exc:
            raise ProviderError(self.provider_id, f"request failed: {exc}") from exc

        if response.status_code >= 400:
            raise ProviderError(
                self.provider_id,
                f"vendor returned error: {response.text[:500]}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(self.provider_id, "vendor returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(self.provider_id, "vendor returned non-object JSON")
        return data

    async def _fetch_bytes(self, url: str, *, headers: Optional[dict[str, str]] = None) -> tuple[bytes, Optional[str]]:
        try:
            async with self._client() as client:
                response = await client.get(url, headers=headers or {}, follow_redirects=True)
        except httpx.RequestError as exc:
            raise ProviderError(self.provider_id, f"reference download failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(
                self.provider_id, "reference download failed", status_code=response.status_code
            )
        content_type = response.headers.get("content-type")
        if content_type:
            content_type = content_type.split(";")[0].strip()
        return response.content, content_type or None

    async def _poll(
        self,
        fetch: Callable[[], Awaitable[dict[str, Any]]],
        *,
        is_done: Callable[[dict[str, Any]], bool],
        ceiling_seconds: float,
        interval_seconds: float,
    ) -> dict[str, Any]:
        """Poll a long-running vendor job, giving up once the wall-clock ceiling is reached."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + ceiling_seconds
        while True:
            data = await fetch()
            if is_done(data):
                return data
            if loop.time() + interval_seconds > deadline:
                raise ProviderError(self.provider_id, f"job did not finish within {ceiling_seconds:.0f}s")
            await asyncio.sleep(interval_seconds)
