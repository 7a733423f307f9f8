from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional, Sequence

from adforge.db.base import utcnow
from adforge.db.enums import MediaKindEnum, ProviderOutcomeEnum
from adforge.errors import AllProvidersExhausted
from adforge.providers.base import GenerationParams, GenerationProvider, RawOutput
from adforge.services.metrics import GenerationMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderAttempt:
    provider_id: str
    media_kind: MediaKindEnum
    started_at: datetime
    outcome: ProviderOutcomeEnum
    raw_output_ref: Optional[str] = None
    error_detail: Optional[str] = None

    def as_dict(self) -> dict[str, Optional[str]]:
        return {
            "providerId": self.provider_id,
            "mediaKind": self.media_kind.value,
            "startedAt": self.started_at.isoformat(),
            "outcome": self.outcome.value,
            "rawOutputRef": self.raw_output_ref,
            "errorDetail": self.error_detail,
        }


@dataclass(frozen=True)
class OrchestratorResult:
    output: RawOutput
    attempts: list[ProviderAttempt] = field(default_factory=list)

    @property
    def provider_id(self) -> str:
        return self.output.provider_id


class ProviderFallbackOrchestrator:
    """
    Walks a static, ordered provider list for one media kind until a provider succeeds.

    Attempts are strictly sequential; each one is bounded by its own timeout, and a timeout counts
    the same as a vendor error. Raw outputs are never cached between calls.
    """

    def __init__(
        self,
        chains: Mapping[MediaKindEnum, Sequence[GenerationProvider]],
        *,
        timeouts: Mapping[str, float],
        metrics: GenerationMetrics | None = None,
    ) -> None:
        self._chains = {kind: list(providers) for kind, providers in chains.items()}
        self._timeouts = dict(timeouts)
        self._metrics = metrics

    def providers_for(self, media_kind: MediaKindEnum) -> list[GenerationProvider]:
        return list(self._chains.get(media_kind, []))

    def _timeout_for(self, provider: GenerationProvider, media_kind: MediaKindEnum) -> float:
        if provider.timeout_seconds is not None:
            return provider.timeout_seconds
        return self._timeouts[media_kind.value]

    async def generate(
        self,
        media_kind: MediaKindEnum,
        prompt: str,
        *,
        style: Optional[str] = None,
        reference_url: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ) -> OrchestratorResult:
        params = GenerationParams(
            media_kind=media_kind,
            style=style,
            reference_url=reference_url,
            system_prompt=system_prompt,
        )
        attempts: list[ProviderAttempt] = []

        for provider in self.providers_for(media_kind):
            started_at = utcnow()
            timeout = self._timeout_for(provider, media_kind)
            try:
                output = await asyncio.wait_for(provider.submit(prompt, params), timeout=timeout)
            except asyncio.TimeoutError:
                attempt = ProviderAttempt(
                    provider_id=provider.provider_id,
                    media_kind=media_kind,
                    started_at=started_at,
                    outcome=ProviderOutcomeEnum.timeout,
                    error_detail=f"timed out after {timeout:g}s",
                )
            except Exception as exc:  # noqa: BLE001
                attempt = ProviderAttempt(
                    provider_id=provider.provider_id,
                    media_kind=media_kind,
                    started_at=started_at,
                    outcome=ProviderOutcomeEnum.error,
                    error_detail=str(exc) or exc.__class__.__name__,
                )
            else:
                attempt = ProviderAttempt(
                    provider_id=provider.provider_id,
                    media_kind=media_kind,
                    started_at=started_at,
                    outcome=ProviderOutcomeEnum.success,
                    raw_output_ref=output.ref,
                )
                attempts.append(attempt)
                self._record(attempt)
                return OrchestratorResult(output=output, attempts=attempts)

            attempts.append(attempt)
            self._record(attempt)

        raise AllProvidersExhausted(media_kind=media_kind.value, attempts=attempts)

    def _record(self, attempt: ProviderAttempt) -> None:
        extra = {
            "provider_id": attempt.provider_id,
            "media_kind": attempt.media_kind.value,
            "outcome": attempt.outcome.value,
            "raw_output_ref": attempt.raw_output_ref,
            "error_detail": attempt.error_detail,
        }
        if attempt.outcome == ProviderOutcomeEnum.success:
            logger.info("provider.attempt_succeeded", extra=extra)
        else:
            logger.warning("provider.attempt_failed", extra=extra)
        if self._metrics is not None:
            self._metrics.provider_attempt(provider_id=attempt.provider_id, outcome=attempt.outcome.value)
