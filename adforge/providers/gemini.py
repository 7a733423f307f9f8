from __future__ import annotations

import base64
import logging
from typing import Any, Optional

import httpx

from adforge.db.enums import MediaKindEnum
from adforge.errors import ProviderConfigError, ProviderError
from adforge.providers.base import (
    GenerationParams,
    HttpGenerationProvider,
    ProviderKind,
    RawOutput,
    styled_prompt,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


def _extract_text(response_json: dict[str, Any]) -> str:
    texts: list[str] = []
    for cand in response_json.get("candidates") or []:
        content = cand.get("content") if isinstance(cand, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            continue
        for part in parts:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
    return "".join(texts)


def _extract_first_inline_image(response_json: dict[str, Any]) -> Optional[tuple[bytes, str]]:
    for cand in response_json.get("candidates") or []:
        content = cand.get("content") if isinstance(cand, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list):
            continue
        for part in parts:
            if not isinstance(part, dict):
                continue
            inline = part.get("inlineData") or part.get("inline_data")
            if not isinstance(inline, dict):
                continue
            data = inline.get("data")
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            if isinstance(data, str) and data:
                return base64.b64decode(data), str(mime_type)
    return None


def _extract_video_uri(operation: dict[str, Any]) -> Optional[str]:
    response = operation.get("response") or {}
    video_response = response.get("generateVideoResponse") or response.get("generate_video_response") or {}
    for sample in video_response.get("generatedSamples") or video_response.get("generated_samples") or []:
        video = sample.get("video") if isinstance(sample, dict) else None
        if isinstance(video, dict) and video.get("uri"):
            return str(video["uri"])
    return None


class _GeminiProvider(HttpGenerationProvider):
    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        http_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(http_timeout=http_timeout, transport=transport)
        if not api_key:
            raise ProviderConfigError("GEMINI_API_KEY not configured")
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key, "Content-Type": "application/json"}


class GeminiTextProvider(_GeminiProvider):
    kind = ProviderKind.gemini_text
    media_kind = MediaKindEnum.text

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.8, "responseMimeType": "application/json"},
        }
        if params.system_prompt:
            payload["systemInstruction"] = {"parts": [{"text": params.system_prompt}]}
        data = await self._request_json(
            "POST",
            f"{self._base_url}/models/{self._model}:generateContent",
            headers=self._headers(),
            json_payload=payload,
        )
        text = _extract_text(data)
        if not text:
            raise ProviderError(self.provider_id, "no content generated")
        return RawOutput(provider_id=self.provider_id, media_kind=self.media_kind, text=text)


class GeminiImageProvider(_GeminiProvider):
    """Returns inline image bytes; accepts a reference image as an extra inline part."""

    kind = ProviderKind.gemini_image
    media_kind = MediaKindEnum.image

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        parts: list[dict[str, Any]] = []
        if params.reference_url:
            reference_bytes, reference_mime = await self._fetch_bytes(params.reference_url)
            if reference_bytes:
                parts.append(
                    {
                        "inlineData": {
                            "mimeType": reference_mime or "image/png",
                            "data": base64.b64encode(reference_bytes).decode("ascii"),
                        }
                    }
                )
        parts.append({"text": styled_prompt(prompt, params.style)})
        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        data = await self._request_json(
            "POST",
            f"{self._base_url}/models/{self._model}:generateContent",
            headers=self._headers(),
            json_payload=payload,
        )
        image = _extract_first_inline_image(data)
        if image is None:
            raise ProviderError(self.provider_id, "response did not include inline image data")
        image_bytes, mime_type = image
        return RawOutput(
            provider_id=self.provider_id,
            media_kind=self.media_kind,
            data=image_bytes,
            content_type=mime_type,
        )


class GeminiVeoProvider(_GeminiProvider):
    """
    Veo video generation through the long-running predict API.

    The operation is polled until done or until the wall-clock ceiling passes. The resulting video URI
    is only downloadable with the API key header, which is carried on the RawOutput.
    """

    media_kind = MediaKindEnum.video

    def __init__(
        self,
        *,
        kind: ProviderKind,
        api_key: Optional[str],
        model: str,
        base_url: str = DEFAULT_BASE_URL,
        poll_ceiling_seconds: float = 300.0,
        poll_interval_seconds: float = 10.0,
        http_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key,
            model=model,
            base_url=base_url,
            http_timeout=http_timeout,
            transport=transport,
        )
        self.kind = kind
        self._poll_ceiling_seconds = poll_ceiling_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = poll_ceiling_seconds + http_timeout

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        video_prompt = f"{prompt}, {params.style} style" if params.style else prompt
        started = await self._request_json(
            "POST",
            f"{self._base_url}/models/{self._model}:predictLongRunning",
            headers=self._headers(),
            json_payload={"instances": [{"prompt": video_prompt}], "parameters": {"aspectRatio": "16:9"}},
        )
        operation_name = started.get("name")
        if not isinstance(operation_name, str) or not operation_name:
            raise ProviderError(self.provider_id, "operation name missing from response")
        logger.info(
            "provider.video_job_started",
            extra={"provider_id": self.provider_id, "operation": operation_name},
        )

        async def fetch() -> dict[str, Any]:
            return await self._request_json(
                "GET",
                f"{self._base_url}/{operation_name}",
                headers=self._headers(),
            )

        operation = await self._poll(
            fetch,
            is_done=lambda op: bool(op.get("done")),
            ceiling_seconds=self._poll_ceiling_seconds,
            interval_seconds=self._poll_interval_seconds,
        )
        if operation.get("error"):
            error = operation["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ProviderError(self.provider_id, f"operation failed: {message}")
        uri = _extract_video_uri(operation)
        if not uri:
            raise ProviderError(self.provider_id, "operation finished without a video")
        return RawOutput(
            provider_id=self.provider_id,
            media_kind=self.media_kind,
            url=uri,
            content_type="video/mp4",
            request_headers={"x-goog-api-key": self._api_key},
        )
