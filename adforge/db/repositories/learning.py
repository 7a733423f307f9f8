from __future__ import annotations

import json
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from adforge.db.base import utcnow
from adforge.db.enums import PatternTypeEnum
from adforge.db.models import ContentPerformance, LearningPattern
from adforge.db.repositories.base import Repository


def pattern_key(pattern_data: dict[str, Any]) -> str:
    return json.dumps(pattern_data, sort_keys=True, separators=(",", ":"))


class LearningRepository(Repository):
    def __init__(self, session: Session) -> None:
        super().__init__(session)

    def add_performance(self, record: ContentPerformance) -> ContentPerformance:
        self.session.add(record)
        self.session.flush()
        return record

    def upsert_pattern(
        self,
        *,
        platform: str,
        language: str,
        content_type: str,
        pattern_type: PatternTypeEnum,
        pattern_data: dict[str, Any],
        score: int,
        commit: bool = True,
    ) -> None:
        """
        Fold one score into a pattern row in a single statement.

        score_total and usage_count are bumped by SQL expressions, so the average stays the exact mean
        of every contributing score no matter how concurrent writers interleave. Pass commit=False to
        fold several patterns into the caller's transaction.
        """
        now = utcnow()
        insert_stmt = self.upsert_statement(LearningPattern).values(
            platform=platform,
            language=language,
            content_type=content_type,
            pattern_type=pattern_type,
            pattern_key=pattern_key(pattern_data),
            pattern_data=pattern_data,
            avg_performance_score=score,
            score_total=score,
            usage_count=1,
            last_used_at=now,
            created_at=now,
        )
        new_total = LearningPattern.score_total + insert_stmt.excluded.score_total
        new_count = LearningPattern.usage_count + 1
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[
                LearningPattern.platform,
                LearningPattern.language,
                LearningPattern.content_type,
                LearningPattern.pattern_type,
                LearningPattern.pattern_key,
            ],
            set_={
                "usage_count": new_count,
                "score_total": new_total,
                "avg_performance_score": sa.cast(func.round(new_total * 1.0 / new_count), sa.Integer),
                "last_used_at": now,
            },
        )
        self.session.execute(stmt)
        if commit:
            self.session.commit()

    def top_patterns(
        self,
        *,
        platform: str,
        language: str,
        content_type: str,
        limit: int,
    ) -> list[LearningPattern]:
        stmt = (
            select(LearningPattern)
            .where(
                LearningPattern.platform == platform,
                LearningPattern.language == language,
                LearningPattern.content_type == content_type,
            )
            .order_by(
                LearningPattern.avg_performance_score.desc(),
                LearningPattern.usage_count.desc(),
                LearningPattern.id.asc(),
            )
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def get_pattern(
        self,
        *,
        platform: str,
        language: str,
        content_type: str,
        pattern_type: PatternTypeEnum,
        pattern_data: dict[str, Any],
    ) -> Optional[LearningPattern]:
        stmt = select(LearningPattern).where(
            LearningPattern.platform == platform,
            LearningPattern.language == language,
            LearningPattern.content_type == content_type,
            LearningPattern.pattern_type == pattern_type,
            LearningPattern.pattern_key == pattern_key(pattern_data),
        )
        return self.session.scalars(stmt).first()

    def performance_summary(self, user_id: str) -> tuple[int, float]:
        stmt = select(
            func.count(ContentPerformance.id),
            func.coalesce(func.avg(ContentPerformance.performance_score), 0),
        ).where(ContentPerformance.user_id == user_id)
        total, avg_score = self.session.execute(stmt).one()
        return int(total or 0), float(avg_score or 0)

    def top_platforms(self, user_id: str, *, limit: int = 3) -> list[tuple[str, float, int]]:
        avg_score = func.avg(ContentPerformance.performance_score)
        stmt = (
            select(ContentPerformance.platform, avg_score, func.count(ContentPerformance.id))
            .where(ContentPerformance.user_id == user_id)
            .group_by(ContentPerformance.platform)
            .order_by(avg_score.desc(), ContentPerformance.platform.asc())
            .limit(limit)
        )
        return [(platform, float(score), int(count)) for platform, score, count in self.session.execute(stmt)]

    def recent_performance(self, user_id: str, *, limit: int = 10) -> list[ContentPerformance]:
        stmt = (
            select(ContentPerformance)
            .where(ContentPerformance.user_id == user_id)
            .order_by(ContentPerformance.created_at.desc(), ContentPerformance.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())
