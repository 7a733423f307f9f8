from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence


class ProviderConfigError(RuntimeError):
    """Raised when a provider is selected but its credentials or model are missing."""


@dataclass
class ProviderError(RuntimeError):
    provider_id: str
    message: str
    status_code: Optional[int] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.provider_id}: {self.message} (status={self.status_code})"
        return f"{self.provider_id}: {self.message}"


@dataclass
class StorageTierError(RuntimeError):
    tier: str
    message: str
    status_code: Optional[int] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.tier}: {self.message} (status={self.status_code})"
        return f"{self.tier}: {self.message}"


class CampaignServiceError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class InsufficientCredits(RuntimeError):
    user_id: str
    required: int
    remaining: int

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"Insufficient credits: {self.required} required, {self.remaining} remaining"


@dataclass
class AllProvidersExhausted(RuntimeError):
    media_kind: str
    attempts: Sequence[Any] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        providers = ", ".join(getattr(attempt, "provider_id", "?") for attempt in self.attempts)
        return f"All {self.media_kind} providers failed ({providers or 'none configured'})"


@dataclass
class HostingExhausted(RuntimeError):
    source_url: Optional[str]
    failures: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return "Generated media could not be stored durably: " + ("; ".join(self.failures) or "no tiers")


class FeatureExtractionDegraded(RuntimeError):
    """Model-backed feature extraction failed; heuristic features are used instead."""
