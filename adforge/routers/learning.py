from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from adforge.deps import get_learning
from adforge.schemas.learning import PerformanceAnalyticsResponse, RecordPerformanceAck, RecordPerformanceRequest
from adforge.security import require_internal_api_token
from adforge.services.learning import LearningService, PerformanceMetrics

logger = logging.getLogger(__name__)

router = APIRouter(tags=["learning"], dependencies=[Depends(require_internal_api_token)])


async def _record_performance(learning: LearningService, payload: RecordPerformanceRequest) -> None:
    try:
        await learning.record_performance(
            content_id=payload.contentId,
            user_id=payload.userId,
            platform=payload.platform,
            language=payload.language,
            content_type=payload.contentType,
            content_text=payload.contentText,
            metrics=PerformanceMetrics(
                views=payload.metrics.views,
                likes=payload.metrics.likes,
                comments=payload.metrics.comments,
                shares=payload.metrics.shares,
                click_through_rate=payload.metrics.clickThroughRate,
                conversion_rate=payload.metrics.conversionRate,
            ),
        )
    except Exception:  # noqa: BLE001
        logger.exception("learning.record_failed", extra={"content_id": payload.contentId})


@router.post("/performance", response_model=RecordPerformanceAck, status_code=status.HTTP_202_ACCEPTED)
async def record_performance(
    payload: RecordPerformanceRequest,
    background_tasks: BackgroundTasks,
    learning: LearningService = Depends(get_learning),
) -> RecordPerformanceAck:
    background_tasks.add_task(_record_performance, learning, payload)
    return RecordPerformanceAck(accepted=True, contentId=payload.contentId)


@router.get("/analytics/performance", response_model=PerformanceAnalyticsResponse)
async def performance_analytics(
    user_id: str = Query(..., alias="userId", min_length=1),
    learning: LearningService = Depends(get_learning),
) -> PerformanceAnalyticsResponse:
    return PerformanceAnalyticsResponse.model_validate(await learning.performance_analytics(user_id))
