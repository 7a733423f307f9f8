from __future__ import annotations

import logging
from typing import Callable

from adforge.config import Settings, settings as default_settings
from adforge.db.enums import MediaKindEnum
from adforge.errors import ProviderConfigError
from adforge.providers.anthropic_provider import AnthropicTextProvider
from adforge.providers.base import GenerationProvider, ProviderKind
from adforge.providers.gemini import GeminiImageProvider, GeminiTextProvider, GeminiVeoProvider
from adforge.providers.openai_provider import OpenAIChatProvider, OpenAIImageProvider
from adforge.providers.replicate import ReplicateImageProvider, ReplicateVideoProvider

logger = logging.getLogger(__name__)

_MEDIA_KIND_BY_PROVIDER: dict[ProviderKind, MediaKindEnum] = {
    ProviderKind.openai_chat: MediaKindEnum.text,
    ProviderKind.anthropic_messages: MediaKindEnum.text,
    ProviderKind.gemini_text: MediaKindEnum.text,
    ProviderKind.replicate_sdxl: MediaKindEnum.image,
    ProviderKind.openai_dalle: MediaKindEnum.image,
    ProviderKind.gemini_image: MediaKindEnum.image,
    ProviderKind.gemini_veo3: MediaKindEnum.video,
    ProviderKind.gemini_veo2: MediaKindEnum.video,
    ProviderKind.replicate_minimax: MediaKindEnum.video,
}


def _builders(cfg: Settings) -> dict[ProviderKind, Callable[[], GenerationProvider]]:
    return {
        ProviderKind.openai_chat: lambda: OpenAIChatProvider(
            api_key=cfg.OPENAI_API_KEY, model=cfg.OPENAI_TEXT_MODEL
        ),
        ProviderKind.anthropic_messages: lambda: AnthropicTextProvider(
            api_key=cfg.ANTHROPIC_API_KEY, model=cfg.ANTHROPIC_TEXT_MODEL
        ),
        ProviderKind.gemini_text: lambda: GeminiTextProvider(
            api_key=cfg.GEMINI_API_KEY, model=cfg.GEMINI_TEXT_MODEL, base_url=cfg.GEMINI_API_BASE_URL
        ),
        ProviderKind.replicate_sdxl: lambda: ReplicateImageProvider(
            api_token=cfg.REPLICATE_API_TOKEN,
            base_url=cfg.REPLICATE_API_BASE_URL,
            version=cfg.REPLICATE_SDXL_VERSION,
            poll_ceiling_seconds=cfg.PROVIDER_TIMEOUT_IMAGE_SECONDS,
        ),
        ProviderKind.openai_dalle: lambda: OpenAIImageProvider(
            api_key=cfg.OPENAI_API_KEY, model=cfg.OPENAI_IMAGE_MODEL
        ),
        ProviderKind.gemini_image: lambda: GeminiImageProvider(
            api_key=cfg.GEMINI_API_KEY, model=cfg.GEMINI_IMAGE_MODEL, base_url=cfg.GEMINI_API_BASE_URL
        ),
        ProviderKind.gemini_veo3: lambda: GeminiVeoProvider(
            kind=ProviderKind.gemini_veo3,
            api_key=cfg.GEMINI_API_KEY,
            model=cfg.GEMINI_VEO3_MODEL,
            base_url=cfg.GEMINI_API_BASE_URL,
            poll_ceiling_seconds=cfg.VIDEO_POLL_CEILING_SECONDS,
            poll_interval_seconds=cfg.VIDEO_POLL_INTERVAL_SECONDS,
        ),
        ProviderKind.gemini_veo2: lambda: GeminiVeoProvider(
            kind=ProviderKind.gemini_veo2,
            api_key=cfg.GEMINI_API_KEY,
            model=cfg.GEMINI_VEO2_MODEL,
            base_url=cfg.GEMINI_API_BASE_URL,
            poll_ceiling_seconds=cfg.VIDEO_POLL_CEILING_SECONDS,
            poll_interval_seconds=cfg.VIDEO_POLL_INTERVAL_SECONDS,
        ),
        ProviderKind.replicate_minimax: lambda: ReplicateVideoProvider(
            api_token=cfg.REPLICATE_API_TOKEN,
            base_url=cfg.REPLICATE_API_BASE_URL,
            model=cfg.REPLICATE_VIDEO_MODEL,
            poll_ceiling_seconds=cfg.VIDEO_POLL_CEILING_SECONDS,
            poll_interval_seconds=cfg.VIDEO_POLL_INTERVAL_SECONDS,
        ),
    }


def build_provider_chains(cfg: Settings | None = None) -> dict[MediaKindEnum, list[GenerationProvider]]:
    """
    Build the ordered provider list for every media kind from configuration.

    Providers without credentials are left out of their chain rather than failing at request time.
    """
    cfg = cfg or default_settings
    builders = _builders(cfg)
    chains: dict[MediaKindEnum, list[GenerationProvider]] = {kind: [] for kind in MediaKindEnum}
    for media_kind_value, provider_names in cfg.provider_chains.items():
        media_kind = MediaKindEnum(media_kind_value)
        for name in provider_names:
            try:
                kind = ProviderKind(name)
            except ValueError as exc:
                raise ProviderConfigError(f"Unknown provider '{name}' in {media_kind.value} chain") from exc
            if _MEDIA_KIND_BY_PROVIDER[kind] != media_kind:
                raise ProviderConfigError(
                    f"Provider '{name}' cannot serve {media_kind.value} generation"
                )
            try:
                chains[media_kind].append(builders[kind]())
            except ProviderConfigError as exc:
                logger.warning(
                    "provider.skipped_unconfigured",
                    extra={"provider_id": kind.value, "media_kind": media_kind.value, "error": str(exc)},
                )
    return chains
