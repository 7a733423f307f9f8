from __future__ import annotations

import base64
from typing import Any, Optional

from openai import AsyncOpenAI, OpenAIError

from adforge.db.enums import MediaKindEnum
from adforge.errors import ProviderConfigError, ProviderError
from adforge.providers.base import GenerationParams, GenerationProvider, ProviderKind, RawOutput, styled_prompt


def _build_client(api_key: Optional[str]) -> AsyncOpenAI:
    if not api_key:
        raise ProviderConfigError("OPENAI_API_KEY not configured")
    return AsyncOpenAI(api_key=api_key, max_retries=0)


class OpenAIChatProvider(GenerationProvider):
    kind = ProviderKind.openai_chat
    media_kind = MediaKindEnum.text

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        temperature: float = 0.8,
        max_tokens: int = 2000,
        client: Any = None,
    ) -> None:
        self._client = client or _build_client(api_key)
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        messages = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            raise ProviderError(self.provider_id, str(exc)) from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ProviderError(self.provider_id, "no content generated")
        return RawOutput(provider_id=self.provider_id, media_kind=self.media_kind, text=content)


class OpenAIImageProvider(GenerationProvider):
    """DALL-E images. Returned URLs expire after roughly an hour; reference images are not supported."""

    kind = ProviderKind.openai_dalle
    media_kind = MediaKindEnum.image

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "dall-e-3",
        size: str = "1024x1024",
        client: Any = None,
    ) -> None:
        self._client = client or _build_client(api_key)
        self._model = model
        self._size = size

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        try:
            response = await self._client.images.generate(
                model=self._model,
                prompt=styled_prompt(prompt, params.style),
                size=self._size,
                n=1,
            )
        except OpenAIError as exc:
            raise ProviderError(self.provider_id, str(exc)) from exc

        image = response.data[0] if response.data else None
        if image is None:
            raise ProviderError(self.provider_id, "no image returned")
        if getattr(image, "url", None):
            return RawOutput(provider_id=self.provider_id, media_kind=self.media_kind, url=image.url)
        if getattr(image, "b64_json", None):
            return RawOutput(
                provider_id=self.provider_id,
                media_kind=self.media_kind,
                data=base64.b64decode(image.b64_json),
                content_type="image/png",
            )
        raise ProviderError(self.provider_id, "image response carried neither url nor data")
