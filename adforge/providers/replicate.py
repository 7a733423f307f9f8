from __future__ import annotations

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

DEFAULT_BASE_URL = "https://api.replicate.com/v1"
_TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}


def _first_output_url(output: Any) -> Optional[str]:
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list):
        for item in output:
            if isinstance(item, str) and item:
                return item
    return None


class _ReplicateProvider(HttpGenerationProvider):
    def __init__(
        self,
        *,
        api_token: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        poll_ceiling_seconds: float = 300.0,
        poll_interval_seconds: float = 2.0,
        http_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(http_timeout=http_timeout, transport=transport)
        if not api_token:
            raise ProviderConfigError("REPLICATE_API_TOKEN not configured")
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._poll_ceiling_seconds = poll_ceiling_seconds
        self._poll_interval_seconds = poll_interval_seconds

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
            "Prefer": "wait",
        }

    async def _run_prediction(self, path: str, payload: dict[str, Any]) -> str:
        prediction = await self._request_json(
            "POST", f"{self._base_url}{path}", headers=self._headers(), json_payload=payload
        )
        if prediction.get("status") not in _TERMINAL_STATUSES:
            prediction_id = prediction.get("id")
            if not prediction_id:
                raise ProviderError(self.provider_id, "prediction id missing from response")
            get_url = (prediction.get("urls") or {}).get("get") or f"{self._base_url}/predictions/{prediction_id}"
            logger.info(
                "provider.prediction_pending",
                extra={"provider_id": self.provider_id, "prediction_id": prediction_id},
            )

            async def fetch() -> dict[str, Any]:
                return await self._request_json("GET", get_url, headers=self._headers())

            prediction = await self._poll(
                fetch,
                is_done=lambda p: p.get("status") in _TERMINAL_STATUSES,
                ceiling_seconds=self._poll_ceiling_seconds,
                interval_seconds=self._poll_interval_seconds,
            )

        if prediction.get("status") != "succeeded":
            raise ProviderError(
                self.provider_id,
                f"prediction {prediction.get('status')}: {prediction.get('error') or 'no detail'}",
            )
        url = _first_output_url(prediction.get("output"))
        if not url:
            raise ProviderError(self.provider_id, "prediction succeeded without output")
        return url


class ReplicateImageProvider(_ReplicateProvider):
    """SDXL. Output lives on replicate.delivery and expires; a reference image is used for img2img."""

    kind = ProviderKind.replicate_sdxl
    media_kind = MediaKindEnum.image

    def __init__(self, *, version: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._version = version

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        model_input: dict[str, Any] = {
            "prompt": styled_prompt(prompt, params.style),
            "negative_prompt": "blurry, low quality, distorted, text, watermark",
            "width": 1024,
            "height": 1024,
            "num_inference_steps": 50,
        }
        if params.reference_url:
            model_input["image"] = params.reference_url
        url = await self._run_prediction("/predictions", {"version": self._version, "input": model_input})
        return RawOutput(provider_id=self.provider_id, media_kind=self.media_kind, url=url)


class ReplicateVideoProvider(_ReplicateProvider):
    kind = ProviderKind.replicate_minimax
    media_kind = MediaKindEnum.video

    def __init__(self, *, model: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._model = model
        self.timeout_seconds = self._poll_ceiling_seconds + self._http_timeout

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        video_prompt = f"{prompt}, {params.style} style" if params.style else prompt
        model_input: dict[str, Any] = {"prompt": video_prompt, "prompt_optimizer": True}
        if params.reference_url:
            model_input["first_frame_image"] = params.reference_url
        url = await self._run_prediction(f"/models/{self._model}/predictions", {"input": model_input})
        return RawOutput(
            provider_id=self.provider_id,
            media_kind=self.media_kind,
            url=url,
            content_type="video/mp4",
        )
