from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.orm import sessionmaker

from adforge.config import settings
from adforge.db.base import SessionLocal
from adforge.db.enums import MediaKindEnum, PatternTypeEnum
from adforge.db.models import ContentPerformance
from adforge.db.repositories.learning import LearningRepository
from adforge.errors import FeatureExtractionDegraded
from adforge.providers.base import GenerationParams, GenerationProvider
from adforge.schemas.learning import ExtractedFeaturesPayload
from adforge.services.content import extract_json_object

logger = logging.getLogger(__name__)

_EMOJI_RE = re.compile(
    "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF\U0001F1E0-\U0001F1FF"
    "\U0001F900-\U0001F9FF☀-➿]"
)
_CTA_RE = re.compile(r"\b(click|buy|shop|visit|download|try|get|order)\b", re.IGNORECASE)
_LIST_LINE_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+")
_WORD_RE = re.compile(r"[^\W\d_]{3,}", re.UNICODE)
_POSITIVE_WORDS = {
    "amazing", "best", "love", "great", "perfect", "happy", "beautiful", "awesome", "free", "new",
    "exclusive", "win", "save", "easy", "fresh", "glow", "enjoy", "favorite", "wow", "proven",
}
_NEGATIVE_WORDS = {
    "bad", "worst", "hate", "problem", "pain", "tired", "sad", "never", "fail", "broken",
    "ugly", "stress", "angry", "worry", "lose", "annoying", "difficult", "struggle",
}
_STOPWORDS = {"the", "and", "for", "with", "you", "your", "this", "that", "are", "our", "now", "from"}

_FEATURE_SYSTEM_PROMPT = (
    "You are an expert content analyst. Extract features from social media content and return valid JSON only."
)


def length_bucket(length: int) -> str:
    if length < 50:
        return "short"
    if length < 150:
        return "medium"
    if length < 300:
        return "long"
    return "very-long"


@dataclass(frozen=True)
class ContentFeatures:
    length: int
    sentiment: str
    has_emojis: bool
    has_hashtags: bool
    has_questions: bool
    has_call_to_action: bool
    structure: str
    has_numbers: bool = False
    keywords: tuple[str, ...] = ()

    @property
    def length_bucket(self) -> str:
        return length_bucket(self.length)

    def as_dict(self) -> dict[str, Any]:
        return {
            "length": self.length,
            "lengthBucket": self.length_bucket,
            "sentiment": self.sentiment,
            "keywords": list(self.keywords),
            "hasEmojis": self.has_emojis,
            "hasHashtags": self.has_hashtags,
            "hasNumbers": self.has_numbers,
            "hasQuestions": self.has_questions,
            "hasCallToAction": self.has_call_to_action,
            "structure": self.structure,
        }

    def pattern_entries(self) -> list[tuple[PatternTypeEnum, dict[str, Any]]]:
        return [
            (PatternTypeEnum.structure, {"structure": self.structure}),
            (PatternTypeEnum.sentiment, {"sentiment": self.sentiment}),
            (PatternTypeEnum.length, {"lengthRange": self.length_bucket}),
            (
                PatternTypeEnum.features,
                {
                    "hasEmojis": self.has_emojis,
                    "hasHashtags": self.has_hashtags,
                    "hasQuestions": self.has_questions,
                    "hasCallToAction": self.has_call_to_action,
                },
            ),
        ]


@dataclass(frozen=True)
class PerformanceMetrics:
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0
    click_through_rate: float = 0.0
    conversion_rate: float = 0.0


@dataclass(frozen=True)
class PerformanceWeights:
    engagement: float = 0.4
    click_through: float = 0.3
    conversion: float = 0.3

    @classmethod
    def from_settings(cls) -> "PerformanceWeights":
        return cls(
            engagement=settings.PERFORMANCE_WEIGHT_ENGAGEMENT,
            click_through=settings.PERFORMANCE_WEIGHT_CTR,
            conversion=settings.PERFORMANCE_WEIGHT_CONVERSION,
        )


def calculate_performance_score(metrics: PerformanceMetrics, weights: PerformanceWeights) -> int:
    """Blend engagement, CTR and conversion (each capped at 100) into a 0-100 score."""
    engagement = 0.0
    if metrics.views > 0:
        engagement = min(100.0, (metrics.likes + metrics.comments + metrics.shares) / metrics.views * 100)
    ctr = min(100.0, max(0.0, metrics.click_through_rate))
    conversion = min(100.0, max(0.0, metrics.conversion_rate))
    score = engagement * weights.engagement + ctr * weights.click_through + conversion * weights.conversion
    # Half-up rounding, clamped so custom weights can never leave the 0-100 range.
    return max(0, min(100, int(score + 0.5)))


def _heuristic_sentiment(words: list[str]) -> str:
    positive = sum(1 for word in words if word in _POSITIVE_WORDS)
    negative = sum(1 for word in words if word in _NEGATIVE_WORDS)
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def _heuristic_structure(text: str, has_cta: bool) -> str:
    lines = [line for line in text.splitlines() if line.strip()]
    if sum(1 for line in lines if _LIST_LINE_RE.match(line)) >= 2:
        return "list"
    first_sentence = re.split(r"(?<=[.!?])\s+", text.strip(), maxsplit=1)[0]
    if first_sentence.endswith("?"):
        return "question-answer"
    if has_cta:
        return "hook-benefit-cta"
    return "statement"


def heuristic_features(text: str) -> ContentFeatures:
    words = [word.lower() for word in _WORD_RE.findall(text)]
    has_cta = bool(_CTA_RE.search(text))
    keywords: list[str] = []
    for word in words:
        if word not in _STOPWORDS and word not in keywords:
            keywords.append(word)
        if len(keywords) == 5:
            break
    return ContentFeatures(
        length=len(text),
        sentiment=_heuristic_sentiment(words),
        has_emojis=bool(_EMOJI_RE.search(text)),
        has_hashtags="#" in text,
        has_questions="?" in text,
        has_call_to_action=has_cta,
        structure=_heuristic_structure(text, has_cta),
        has_numbers=any(ch.isdigit() for ch in text),
        keywords=tuple(keywords),
    )


class ModelFeatureExtractor:
    """Feature extraction through a text model; any failure surfaces as FeatureExtractionDegraded."""

    def __init__(self, provider: GenerationProvider, *, timeout_seconds: float = 30.0) -> None:
        self._provider = provider
        self._timeout_seconds = timeout_seconds

    async def extract(self, text: str, content_type: str) -> ContentFeatures:
        prompt = (
            f"Analyze this {content_type} content and extract key features.\n\n"
            f'Content: "{text}"\n\n'
            "Return a JSON object with exactly these fields: sentiment (positive|negative|neutral), "
            "keywords (3-5 strings), hasEmojis, hasHashtags, hasNumbers, hasQuestions, hasCallToAction "
            "(booleans), structure (short pattern label such as hook-benefit-cta, question-answer, story-lesson)."
        )
        params = GenerationParams(media_kind=MediaKindEnum.text, system_prompt=_FEATURE_SYSTEM_PROMPT)
        try:
            output = await asyncio.wait_for(self._provider.submit(prompt, params), timeout=self._timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise FeatureExtractionDegraded("feature extraction timed out") from exc
        except Exception as exc:  # noqa: BLE001
            raise FeatureExtractionDegraded(f"feature extraction call failed: {exc}") from exc

        parsed = extract_json_object(output.text or "")
        if parsed is None:
            raise FeatureExtractionDegraded("feature extraction returned no JSON object")
        try:
            payload = ExtractedFeaturesPayload.model_validate(parsed)
        except ValidationError as exc:
            raise FeatureExtractionDegraded(f"feature extraction returned invalid fields: {exc}") from exc

        return ContentFeatures(
            length=len(text),
            sentiment=payload.sentiment,
            has_emojis=payload.hasEmojis,
            has_hashtags=payload.hasHashtags,
            has_questions=payload.hasQuestions,
            has_call_to_action=payload.hasCallToAction,
            structure=payload.structure.strip().lower(),
            has_numbers=payload.hasNumbers,
            keywords=tuple(payload.keywords[:5]),
        )


@dataclass(frozen=True)
class PerformanceOutcome:
    content_id: str
    performance_score: int
    feature_source: str
    patterns_updated: list[str] = field(default_factory=list)


class LearningService:
    """Records reported performance and folds high scorers into learning patterns."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker = SessionLocal,
        extractor: Optional[ModelFeatureExtractor] = None,
        weights: Optional[PerformanceWeights] = None,
        pattern_threshold: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self._extractor = extractor
        self._weights = weights or PerformanceWeights.from_settings()
        self._pattern_threshold = settings.PATTERN_SCORE_THRESHOLD if pattern_threshold is None else pattern_threshold

    async def extract_features(self, text: str, content_type: str) -> tuple[ContentFeatures, str]:
        if self._extractor is not None:
            try:
                return await self._extractor.extract(text, content_type), "model"
            except FeatureExtractionDegraded as exc:
                logger.warning(
                    "learning.feature_extraction_degraded",
                    extra={"content_type": content_type, "error": str(exc)},
                )
        return heuristic_features(text), "heuristic"

    async def record_performance(
        self,
        *,
        content_id: str,
        user_id: str,
        platform: str,
        language: str,
        content_type: str,
        content_text: str,
        metrics: PerformanceMetrics,
    ) -> PerformanceOutcome:
        features, feature_source = await self.extract_features(content_text, content_type)
        score = calculate_performance_score(metrics, self._weights)
        patterns = features.pattern_entries() if score > self._pattern_threshold else []

        def _persist() -> None:
            with self._session_factory() as session:
                repo = LearningRepository(session)
                repo.add_performance(
                    ContentPerformance(
                        content_id=content_id,
                        user_id=user_id,
                        platform=platform,
                        language=language,
                        content_type=content_type,
                        content_text=content_text,
                        extracted_features=features.as_dict(),
                        feature_source=feature_source,
                        performance_score=score,
                        views=metrics.views,
                        likes=metrics.likes,
                        comments=metrics.comments,
                        shares=metrics.shares,
                        click_through_rate=metrics.click_through_rate,
                        conversion_rate=metrics.conversion_rate,
                    )
                )
                for pattern_type, pattern_data in patterns:
                    repo.upsert_pattern(
                        platform=platform,
                        language=language,
                        content_type=content_type,
                        pattern_type=pattern_type,
                        pattern_data=pattern_data,
                        score=score,
                        commit=False,
                    )
                session.commit()

        await asyncio.to_thread(_persist)
        logger.info(
            "learning.performance_recorded",
            extra={
                "content_id": content_id,
                "performance_score": score,
                "feature_source": feature_source,
                "patterns_updated": len(patterns),
            },
        )
        return PerformanceOutcome(
            content_id=content_id,
            performance_score=score,
            feature_source=feature_source,
            patterns_updated=[pattern_type.value for pattern_type, _ in patterns],
        )

    async def performance_analytics(self, user_id: str) -> dict[str, Any]:
        def _load() -> dict[str, Any]:
            with self._session_factory() as session:
                repo = LearningRepository(session)
                total, avg_score = repo.performance_summary(user_id)
                return {
                    "userId": user_id,
                    "totalContent": total,
                    "avgPerformanceScore": round(avg_score, 1),
                    "topPerformingPlatforms": [
                        {"platform": platform, "avgPerformanceScore": round(score, 1), "contentCount": count}
                        for platform, score, count in repo.top_platforms(user_id)
                    ],
                    "recentPerformance": [
                        {
                            "contentId": row.content_id,
                            "platform": row.platform,
                            "language": row.language,
                            "contentType": row.content_type,
                            "performanceScore": row.performance_score,
                            "createdAt": row.created_at,
                        }
                        for row in repo.recent_performance(user_id)
                    ],
                }

        return await asyncio.to_thread(_load)
