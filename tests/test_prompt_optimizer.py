import asyncio

from adforge.db.enums import PatternTypeEnum
from adforge.db.repositories.learning import LearningRepository
from adforge.services.prompt_optimizer import PromptOptimizer, baseline_prompt


def _seed(session, pattern_type, pattern_data, scores, *, platform="tiktok", language="tagalog"):
    repo = LearningRepository(session)
    for score in scores:
        repo.upsert_pattern(
            platform=platform,
            language=language,
            content_type="text",
            pattern_type=pattern_type,
            pattern_data=pattern_data,
            score=score,
        )


def test_baseline_prompt_without_patterns():
    prompts = asyncio.run(PromptOptimizer().optimize_prompt("tiktok", "tagalog", "text", "Glow serum launch"))

    assert prompts == baseline_prompt("tiktok", "tagalog", "text", "Glow serum launch")
    assert "Brief: Glow serum launch" in prompts.user_prompt
    assert "Taglish" in prompts.user_prompt


def test_unknown_platform_and_language_still_get_context():
    prompts = baseline_prompt("snapchat", "korean", "text", "Lip tint")

    assert "Native snapchat formats" in prompts.user_prompt
    assert "korean-speaking audience" in prompts.user_prompt


def test_patterns_are_listed_before_the_baseline(db_session):
    _seed(db_session, PatternTypeEnum.structure, {"structure": "question-answer"}, [90, 80])
    _seed(
        db_session,
        PatternTypeEnum.features,
        {"hasEmojis": True, "hasHashtags": True, "hasQuestions": False, "hasCallToAction": True},
        [95],
    )
    _seed(db_session, PatternTypeEnum.sentiment, {"sentiment": "negative"}, [99], platform="facebook")

    prompts = asyncio.run(PromptOptimizer().optimize_prompt("tiktok", "tagalog", "text", "Glow serum launch"))
    baseline = baseline_prompt("tiktok", "tagalog", "text", "Glow serum launch")

    assert prompts.system_prompt.endswith(baseline.system_prompt)
    features_line = "• Content with emojis, hashtags, a call-to-action scores 95/100"
    structure_line = "• Content using a question-answer structure scores 85/100 in this segment"
    assert features_line in prompts.system_prompt
    assert structure_line in prompts.system_prompt
    assert prompts.system_prompt.index(features_line) < prompts.system_prompt.index(structure_line)
    assert "Negative sentiment" not in prompts.system_prompt
    assert prompts.user_prompt.startswith(baseline.user_prompt)


def test_optimization_is_deterministic(db_session):
    _seed(db_session, PatternTypeEnum.length, {"lengthRange": "medium"}, [88])
    optimizer = PromptOptimizer()

    first = asyncio.run(optimizer.optimize_prompt("tiktok", "tagalog", "text", "Brief"))
    second = asyncio.run(optimizer.optimize_prompt("tiktok", "tagalog", "text", "Brief"))

    assert first == second
    assert "• Medium content (50-149 characters) scores 88/100" in first.system_prompt


def test_pattern_limit_caps_insights(db_session):
    for index in range(4):
        _seed(db_session, PatternTypeEnum.structure, {"structure": f"shape-{index}"}, [80 + index])

    prompts = asyncio.run(
        PromptOptimizer(pattern_limit=2).optimize_prompt("tiktok", "tagalog", "text", "Brief")
    )

    assert "shape-3" in prompts.system_prompt
    assert "shape-2" in prompts.system_prompt
    assert "shape-1" not in prompts.system_prompt
