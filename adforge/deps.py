from __future__ import annotations

from fastapi import Request

from adforge.services.credits import CreditLedger
from adforge.services.generation import GenerationCoordinator
from adforge.services.learning import LearningService
from adforge.services.metrics import GenerationMetrics
from adforge.services.storage_tiers import LocalFileTier


def get_coordinator(request: Request) -> GenerationCoordinator:
    return request.app.state.coordinator


def get_ledger(request: Request) -> CreditLedger:
    return request.app.state.ledger


def get_learning(request: Request) -> LearningService:
    return request.app.state.learning


def get_metrics(request: Request) -> GenerationMetrics:
    return request.app.state.metrics


def get_local_tier(request: Request) -> LocalFileTier:
    return request.app.state.local_tier
