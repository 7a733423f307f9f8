from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.orm import sessionmaker

from adforge.config import settings
from adforge.db.base import SessionLocal
from adforge.db.enums import PatternTypeEnum
from adforge.db.models import LearningPattern
from adforge.db.repositories.learning import LearningRepository

PLATFORM_CONTEXT = {
    "tiktok": "15-60 second vertical videos, trending sounds, quick cuts, gen-z language",
    "instagram": "Stories, Reels, feed posts, aesthetic visuals, hashtag strategy",
    "facebook": "Longer form content, community engagement, share-worthy posts",
}

LANGUAGE_CONTEXT = {
    "tagalog": "Filipino audience, use Taglish (mix of Tagalog and English), local slang",
    "indonesian": "Indonesian audience, use Bahasa Indonesia with modern expressions",
    "thai": "Thai audience, use modern Thai language with trending phrases",
    "vietnamese": "Vietnamese audience, use contemporary Vietnamese",
    "malay": "Malaysian audience, use Bahasa Malaysia with local context",
    "english": "English-speaking SEA audience, modern conversational tone",
}

LENGTH_RANGES = {
    "short": "under 50 characters",
    "medium": "50-149 characters",
    "long": "150-299 characters",
    "very-long": "300+ characters",
}

OUTPUT_FORMAT = (
    "Format the answer as a JSON object with keys: hook (attention-grabbing opening line), "
    "caption (engaging, platform-optimized), hashtags (array mixing trending and niche tags), "
    "videoScript (array of short scene descriptions, empty if not applicable)."
)


@dataclass(frozen=True)
class PromptPair:
    system_prompt: str
    user_prompt: str


def _platform_context(platform: str) -> str:
    return PLATFORM_CONTEXT.get(platform.lower(), f"Native {platform} formats and audience expectations")


def _language_context(language: str) -> str:
    return LANGUAGE_CONTEXT.get(language.lower(), f"{language}-speaking audience, natural local phrasing")


def baseline_prompt(platform: str, language: str, content_type: str, brief: str) -> PromptPair:
    system_prompt = (
        f"You are an expert social media ad creative specialist focusing on {platform} content in {language}. "
        "Generate viral, localized content that resonates with the target audience."
    )
    user_prompt = (
        f"Create {content_type} content for {platform} in {language}.\n\n"
        f"Brief: {brief}\n\n"
        f"Platform Context: {_platform_context(platform)}\n"
        f"Language Context: {_language_context(language)}\n\n"
        f"Generate engaging, culturally relevant content optimized for {platform}'s algorithm "
        f"and {language}-speaking audience.\n\n"
        f"{OUTPUT_FORMAT}"
    )
    return PromptPair(system_prompt=system_prompt, user_prompt=user_prompt)


def pattern_insight(pattern: LearningPattern) -> Optional[str]:
    data = pattern.pattern_data or {}
    score = pattern.avg_performance_score
    pattern_type = PatternTypeEnum(pattern.pattern_type)
    if pattern_type == PatternTypeEnum.structure:
        return f"• Content using a {data.get('structure')} structure scores {score}/100 in this segment"
    if pattern_type == PatternTypeEnum.sentiment:
        return f"• {str(data.get('sentiment', '')).capitalize()} sentiment achieves {score}/100 performance"
    if pattern_type == PatternTypeEnum.length:
        bucket = str(data.get("lengthRange"))
        return f"• {bucket.capitalize()} content ({LENGTH_RANGES.get(bucket, bucket)}) scores {score}/100"
    if pattern_type == PatternTypeEnum.features:
        features = []
        if data.get("hasEmojis"):
            features.append("emojis")
        if data.get("hasHashtags"):
            features.append("hashtags")
        if data.get("hasQuestions"):
            features.append("questions")
        if data.get("hasCallToAction"):
            features.append("a call-to-action")
        if features:
            return f"• Content with {', '.join(features)} scores {score}/100"
    return None


def build_optimized_prompt(
    platform: str,
    language: str,
    content_type: str,
    brief: str,
    patterns: Sequence[LearningPattern],
) -> PromptPair:
    baseline = baseline_prompt(platform, language, content_type, brief)
    insights = [line for line in (pattern_insight(p) for p in patterns) if line]
    if not insights:
        return baseline

    findings = "\n".join(insights)
    system_prompt = (
        "Based on analysis of successful "
        f"{platform} content in {language}, these patterns perform exceptionally well:\n\n"
        f"{findings}\n\n"
        "Treat these findings as guidance rather than rules; stay authentic and relevant to the brief.\n\n"
        f"{baseline.system_prompt}"
    )
    user_prompt = (
        f"{baseline.user_prompt}\n\n"
        "Where it fits the brief, apply the successful patterns listed in the system prompt."
    )
    return PromptPair(system_prompt=system_prompt, user_prompt=user_prompt)


class PromptOptimizer:
    """Biases text-generation prompts with the best-scoring learning patterns of a segment."""

    def __init__(self, *, session_factory: sessionmaker = SessionLocal, pattern_limit: Optional[int] = None) -> None:
        self._session_factory = session_factory
        self._pattern_limit = pattern_limit or settings.PROMPT_PATTERN_LIMIT

    def _load_patterns(self, platform: str, language: str, content_type: str) -> list[LearningPattern]:
        with self._session_factory() as session:
            patterns = LearningRepository(session).top_patterns(
                platform=platform,
                language=language,
                content_type=content_type,
                limit=self._pattern_limit,
            )
            session.expunge_all()
            return patterns

    async def optimize_prompt(self, platform: str, language: str, content_type: str, brief: str) -> PromptPair:
        patterns = await asyncio.to_thread(self._load_patterns, platform, language, content_type)
        if not patterns:
            return baseline_prompt(platform, language, content_type, brief)
        return build_optimized_prompt(platform, language, content_type, brief, patterns)
