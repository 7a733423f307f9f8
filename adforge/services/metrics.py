from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest


class GenerationMetrics:
    """
    Metrics collector injected into the generation pipeline.

    Each instance owns its registry, so it is created with the service and dropped with it.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.generations = Counter(
            "adforge_generations_total",
            "Generation requests by media kind and outcome",
            ["media_kind", "outcome"],
            registry=self.registry,
        )
        self.provider_attempts = Counter(
            "adforge_provider_attempts_total",
            "Provider attempts by provider and outcome",
            ["provider_id", "outcome"],
            registry=self.registry,
        )
        self.hosted_assets = Counter(
            "adforge_hosted_assets_total",
            "Assets made durable, by storage tier",
            ["storage_tier"],
            registry=self.registry,
        )
        self.credits_committed = Counter(
            "adforge_credits_committed_total",
            "Credits converted from reservations into ledger entries",
            ["media_kind"],
            registry=self.registry,
        )
        self.active_generations = Gauge(
            "adforge_active_generations",
            "Generations currently in flight",
            registry=self.registry,
        )
        self.peak_active_generations = Gauge(
            "adforge_peak_active_generations",
            "Highest number of concurrent generations observed",
            registry=self.registry,
        )
        self.generation_latency = Histogram(
            "adforge_generation_latency_seconds",
            "End-to-end generation latency",
            ["media_kind"],
            buckets=(1, 5, 15, 30, 60, 120, 300, 600),
            registry=self.registry,
        )
        self._collectors = [
            self.generations,
            self.provider_attempts,
            self.hosted_assets,
            self.credits_committed,
            self.active_generations,
            self.peak_active_generations,
            self.generation_latency,
        ]
        self._active = 0
        self._peak = 0

    def generation_started(self) -> None:
        self._active += 1
        self.active_generations.set(self._active)
        if self._active > self._peak:
            self._peak = self._active
            self.peak_active_generations.set(self._peak)

    def generation_finished(self, *, media_kind: str, outcome: str, duration_seconds: float) -> None:
        self._active = max(0, self._active - 1)
        self.active_generations.set(self._active)
        self.generations.labels(media_kind, outcome).inc()
        self.generation_latency.labels(media_kind).observe(duration_seconds)

    def provider_attempt(self, *, provider_id: str, outcome: str) -> None:
        self.provider_attempts.labels(provider_id, outcome).inc()

    def asset_hosted(self, *, storage_tier: str) -> None:
        self.hosted_assets.labels(storage_tier).inc()

    def credits_debited(self, *, media_kind: str, credits: int) -> None:
        self.credits_committed.labels(media_kind).inc(credits)

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        return self._peak

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def close(self) -> None:
        """Unregister every collector; safe to call more than once."""
        while self._collectors:
            self.registry.unregister(self._collectors.pop())
