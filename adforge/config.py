from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    DATABASE_URL: str = "sqlite:///./adforge.db"
    INTERNAL_API_TOKEN: str
    PUBLIC_BASE_URL: str = "http://localhost:8000"

    # Credit metering
    CREDIT_COST_TEXT: int = 1
    CREDIT_COST_IMAGE: int = 5
    CREDIT_COST_VIDEO: int = 15
    CREDITS_DEFAULT_LIMIT: int = 100
    CREDIT_RESERVATION_TTL_SECONDS: int = 1800
    CREDIT_RESERVATION_SWEEP_SECONDS: float = 300.0

    # Performance learning
    PERFORMANCE_WEIGHT_ENGAGEMENT: float = 0.4
    PERFORMANCE_WEIGHT_CTR: float = 0.3
    PERFORMANCE_WEIGHT_CONVERSION: float = 0.3
    PATTERN_SCORE_THRESHOLD: int = 70
    PROMPT_PATTERN_LIMIT: int = 5
    FEATURE_EXTRACTION_MODEL: str = "gpt-4o"

    # Provider chains, in fallback order
    TEXT_PROVIDERS: str = "openai_chat,anthropic_messages,gemini_text"
    IMAGE_PROVIDERS: str = "replicate_sdxl,openai_dalle,gemini_image"
    VIDEO_PROVIDERS: str = "gemini_veo3,gemini_veo2,replicate_minimax"
    PROVIDER_TIMEOUT_TEXT_SECONDS: float = 30.0
    PROVIDER_TIMEOUT_IMAGE_SECONDS: float = 60.0
    PROVIDER_TIMEOUT_VIDEO_SECONDS: float = 180.0
    VIDEO_POLL_CEILING_SECONDS: float = 300.0
    VIDEO_POLL_INTERVAL_SECONDS: float = 10.0

    OPENAI_API_KEY: str | None = None
    OPENAI_TEXT_MODEL: str = "gpt-4o"
    OPENAI_IMAGE_MODEL: str = "dall-e-3"
    ANTHROPIC_API_KEY: str | None = None
    ANTHROPIC_TEXT_MODEL: str = "claude-3-5-sonnet-latest"
    GEMINI_API_KEY: str | None = None
    GEMINI_API_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    GEMINI_TEXT_MODEL: str = "gemini-2.0-flash"
    GEMINI_IMAGE_MODEL: str = "gemini-2.0-flash-preview-image-generation"
    GEMINI_VEO3_MODEL: str = "veo-3.0-generate-preview"
    GEMINI_VEO2_MODEL: str = "veo-2.0-generate-001"
    REPLICATE_API_TOKEN: str | None = None
    REPLICATE_API_BASE_URL: str = "https://api.replicate.com/v1"
    REPLICATE_SDXL_VERSION: str = "39ed52f2a78e934b3ba6e2a89f5b1c712de7dfea535525255b1aa35c5565e08b"
    REPLICATE_VIDEO_MODEL: str = "minimax/video-01"

    # Durable hosting
    HOSTING_DOWNLOAD_ATTEMPTS: int = 3
    HOSTING_BACKOFF_BASE_SECONDS: float = 2.0
    HOSTING_DOWNLOAD_TIMEOUT_SECONDS: float = 30.0
    HOSTING_MAX_BYTES: int = 200 * 1024 * 1024
    HOSTING_BLOCK_PRIVATE_NETWORKS: bool = True
    PROVIDER_ORIGIN_HOSTS: str = (
        "replicate.delivery,oaidalleapiprodscus.blob.core.windows.net,generativelanguage.googleapis.com"
    )

    MEDIA_STORAGE_BUCKET: str | None = None
    MEDIA_STORAGE_PREFIX: str = "campaigns"
    MEDIA_STORAGE_REGION: str | None = None
    MEDIA_STORAGE_ENDPOINT_URL: str | None = None
    MEDIA_STORAGE_ACCESS_KEY_ID: str | None = None
    MEDIA_STORAGE_SECRET_ACCESS_KEY: str | None = None
    MEDIA_STORAGE_PUBLIC_BASE_URL: str | None = None

    ASSET_SERVICE_BASE_URL: str | None = None
    ASSET_SERVICE_TOKEN: str | None = None
    ASSET_SERVICE_TIMEOUT_SECONDS: float = 60.0

    LOCAL_MEDIA_ROOT: str = "./media"

    # Campaign collaborator
    CAMPAIGN_SERVICE_BASE_URL: str | None = None
    CAMPAIGN_SERVICE_TOKEN: str | None = None
    CAMPAIGN_SERVICE_TIMEOUT_SECONDS: float = 15.0

    @field_validator("TEXT_PROVIDERS", "IMAGE_PROVIDERS", "VIDEO_PROVIDERS")
    @classmethod
    def validate_provider_chain(cls, value: str) -> str:
        providers = _split_csv(value)
        if not providers:
            raise ValueError("provider chains must include at least one provider")
        return ",".join(providers)

    @field_validator(
        "PERFORMANCE_WEIGHT_ENGAGEMENT",
        "PERFORMANCE_WEIGHT_CTR",
        "PERFORMANCE_WEIGHT_CONVERSION",
    )
    @classmethod
    def validate_weight(cls, value: float) -> float:
        if value < 0:
            raise ValueError("performance weights must be non-negative")
        return value

    @model_validator(mode="after")
    def validate_costs(self) -> "Settings":
        for name in ("CREDIT_COST_TEXT", "CREDIT_COST_IMAGE", "CREDIT_COST_VIDEO"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        if self.HOSTING_DOWNLOAD_ATTEMPTS < 1:
            raise ValueError("HOSTING_DOWNLOAD_ATTEMPTS must be at least 1")
        if self.CREDIT_RESERVATION_SWEEP_SECONDS <= 0:
            raise ValueError("CREDIT_RESERVATION_SWEEP_SECONDS must be positive")
        return self

    @property
    def public_base_url(self) -> str:
        return self.PUBLIC_BASE_URL.rstrip("/")

    @property
    def provider_chains(self) -> dict[str, list[str]]:
        return {
            "text": _split_csv(self.TEXT_PROVIDERS),
            "image": _split_csv(self.IMAGE_PROVIDERS),
            "video": _split_csv(self.VIDEO_PROVIDERS),
        }

    @property
    def provider_origin_hosts(self) -> list[str]:
        return [host.lower() for host in _split_csv(self.PROVIDER_ORIGIN_HOSTS)]

    @property
    def credit_costs(self) -> dict[str, int]:
        return {
            "text": self.CREDIT_COST_TEXT,
            "image": self.CREDIT_COST_IMAGE,
            "video": self.CREDIT_COST_VIDEO,
        }

    @property
    def provider_timeouts(self) -> dict[str, float]:
        return {
            "text": self.PROVIDER_TIMEOUT_TEXT_SECONDS,
            "image": self.PROVIDER_TIMEOUT_IMAGE_SECONDS,
            "video": self.PROVIDER_TIMEOUT_VIDEO_SECONDS,
        }

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
