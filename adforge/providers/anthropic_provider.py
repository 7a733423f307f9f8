from __future__ import annotations

from typing import Any, Optional

from anthropic import AnthropicError, AsyncAnthropic

from adforge.db.enums import MediaKindEnum
from adforge.errors import ProviderConfigError, ProviderError
from adforge.providers.base import GenerationParams, GenerationProvider, ProviderKind, RawOutput


class AnthropicTextProvider(GenerationProvider):
    kind = ProviderKind.anthropic_messages
    media_kind = MediaKindEnum.text

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        model: str = "claude-3-5-sonnet-latest",
        temperature: float = 0.8,
        max_tokens: int = 2000,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ProviderConfigError("ANTHROPIC_API_KEY not configured")
            client = AsyncAnthropic(api_key=api_key, max_retries=0)
        self._client = client
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def submit(self, prompt: str, params: GenerationParams) -> RawOutput:
        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if params.system_prompt:
            kwargs["system"] = params.system_prompt
        try:
            response = await self._client.messages.create(**kwargs)
        except AnthropicError as exc:
            raise ProviderError(self.provider_id, str(exc)) from exc

        text_parts = [block.text for block in response.content if getattr(block, "text", None)]
        if not text_parts:
            raise ProviderError(self.provider_id, "no content generated")
        return RawOutput(provider_id=self.provider_id, media_kind=self.media_kind, text="".join(text_parts))
