from __future__ import annotations

import asyncio
import json

import pytest
from sqlalchemy import select

from adforge.db.enums import MediaKindEnum, PatternTypeEnum
from adforge.db.models import ContentPerformance, LearningPattern
from adforge.db.repositories.learning import LearningRepository
from adforge.providers.base import ProviderKind, RawOutput
from adforge.services.learning import (
    LearningService,
    ModelFeatureExtractor,
    PerformanceMetrics,
    PerformanceWeights,
    calculate_performance_score,
    heuristic_features,
    length_bucket,
)
from tests.fakes import FakeProvider

CTR_ONLY = PerformanceWeights(engagement=0.0, click_through=1.0, conversion=0.0)
COPY = "Love this amazing glow serum? Shop now! 🔥 #skincare"


def _record(service: LearningService, *, content_id: str, score: int, text: str = COPY, user_id: str = "user_1"):
    return service.record_performance(
        content_id=content_id,
        user_id=user_id,
        platform="tiktok",
        language="tagalog",
        content_type="text",
        content_text=text,
        metrics=PerformanceMetrics(views=1000, click_through_rate=score),
    )


def test_performance_score_blends_weighted_rates():
    metrics = PerformanceMetrics(
        views=1000,
        likes=100,
        comments=50,
        shares=50,
        click_through_rate=80,
        conversion_rate=90,
    )

    assert calculate_performance_score(metrics, PerformanceWeights()) == 59


def test_performance_score_caps_each_component():
    metrics = PerformanceMetrics(views=10, likes=500, click_through_rate=250, conversion_rate=100)

    assert calculate_performance_score(metrics, PerformanceWeights()) == 100
    assert calculate_performance_score(PerformanceMetrics(), PerformanceWeights()) == 0


def test_heuristic_features_detect_copy_traits():
    features = heuristic_features(COPY)

    assert features.sentiment == "positive"
    assert features.has_emojis
    assert features.has_hashtags
    assert features.has_questions
    assert features.has_call_to_action
    assert features.structure == "question-answer"
    assert features.length_bucket == "medium"


def test_heuristic_structure_recognises_lists():
    features = heuristic_features("Top picks this week:\n1. Serum\n2. Toner\n3. Sheet mask")

    assert features.structure == "list"
    assert features.has_numbers


def test_length_buckets():
    assert [length_bucket(n) for n in (0, 49, 50, 149, 150, 299, 300)] == [
        "short",
        "short",
        "medium",
        "medium",
        "long",
        "long",
        "very-long",
    ]


def test_model_extraction_failure_degrades_to_heuristics():
    broken = FakeProvider(ProviderKind.openai_chat, MediaKindEnum.text, error="rate limited")
    service = LearningService(extractor=ModelFeatureExtractor(broken), weights=CTR_ONLY)

    outcome = asyncio.run(_record(service, content_id="c1", score=90))

    assert outcome.feature_source == "heuristic"
    assert outcome.performance_score == 90
    assert len(outcome.patterns_updated) == 4
    assert len(broken.calls) == 1


def test_model_extraction_is_used_when_available():
    payload = {
        "sentiment": "positive",
        "keywords": ["glow", "serum"],
        "hasEmojis": True,
        "hasHashtags": True,
        "hasNumbers": False,
        "hasQuestions": True,
        "hasCallToAction": True,
        "structure": "Hook-Benefit-CTA",
    }
    provider = FakeProvider(
        ProviderKind.openai_chat,
        MediaKindEnum.text,
        output=RawOutput(provider_id="openai_chat", media_kind=MediaKindEnum.text, text=json.dumps(payload)),
    )
    service = LearningService(extractor=ModelFeatureExtractor(provider))

    features, source = asyncio.run(service.extract_features(COPY, "text"))

    assert source == "model"
    assert features.structure == "hook-benefit-cta"
    assert features.keywords == ("glow", "serum")


def test_scores_at_or_below_threshold_do_not_create_patterns(db_session):
    service = LearningService(weights=CTR_ONLY, pattern_threshold=70)

    outcome = asyncio.run(_record(service, content_id="c1", score=70))

    assert outcome.patterns_updated == []
    repo = LearningRepository(db_session)
    assert repo.top_patterns(platform="tiktok", language="tagalog", content_type="text", limit=5) == []


def test_failed_pattern_upsert_rolls_back_the_whole_record(db_session, monkeypatch):
    service = LearningService(weights=CTR_ONLY, pattern_threshold=70)
    original = LearningRepository.upsert_pattern
    calls = {"count": 0}

    def flaky_upsert(self, **kwargs):
        calls["count"] += 1
        if calls["count"] == 3:
            raise RuntimeError("database went away")
        return original(self, **kwargs)

    monkeypatch.setattr(LearningRepository, "upsert_pattern", flaky_upsert)

    with pytest.raises(RuntimeError):
        asyncio.run(_record(service, content_id="c1", score=90))

    assert calls["count"] == 3
    assert db_session.scalars(select(ContentPerformance)).all() == []
    assert db_session.scalars(select(LearningPattern)).all() == []


def test_running_average_is_the_mean_under_concurrent_updates(db_session):
    service = LearningService(weights=CTR_ONLY, pattern_threshold=70)
    scores = [71, 80, 95, 88, 100, 74]

    async def run():
        await asyncio.gather(
            *(_record(service, content_id=f"c{index}", score=score) for index, score in enumerate(scores))
        )

    asyncio.run(run())

    pattern = LearningRepository(db_session).get_pattern(
        platform="tiktok",
        language="tagalog",
        content_type="text",
        pattern_type=PatternTypeEnum.structure,
        pattern_data={"structure": "question-answer"},
    )
    assert pattern is not None
    assert pattern.usage_count == len(scores)
    assert pattern.score_total == sum(scores)
    assert pattern.avg_performance_score == round(sum(scores) / len(scores))
    assert pattern.confidence == 60


def test_performance_analytics_summarises_user_history():
    service = LearningService(weights=CTR_ONLY)

    async def run():
        await _record(service, content_id="c1", score=80)
        await _record(service, content_id="c2", score=60)
        await _record(service, content_id="other", score=99, user_id="user_2")
        return await service.performance_analytics("user_1")

    analytics = asyncio.run(run())

    assert analytics["totalContent"] == 2
    assert analytics["avgPerformanceScore"] == 70.0
    assert analytics["topPerformingPlatforms"][0]["platform"] == "tiktok"
    assert analytics["topPerformingPlatforms"][0]["contentCount"] == 2
    assert {row["contentId"] for row in analytics["recentPerformance"]} == {"c1", "c2"}
