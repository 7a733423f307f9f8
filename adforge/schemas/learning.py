from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class ExtractedFeaturesPayload(BaseModel):
    """Shape expected back from the feature-extraction model call."""

    model_config = ConfigDict(extra="ignore")

    sentiment: Literal["positive", "negative", "neutral"]
    keywords: list[str] = Field(default_factory=list)
    hasEmojis: bool
    hasHashtags: bool
    hasNumbers: bool = False
    hasQuestions: bool
    hasCallToAction: bool
    structure: str = Field(..., min_length=1, max_length=64)


class PerformanceMetricsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    views: int = Field(0, ge=0)
    likes: int = Field(0, ge=0)
    comments: int = Field(0, ge=0)
    shares: int = Field(0, ge=0)
    clickThroughRate: float = Field(0.0, ge=0)
    conversionRate: float = Field(0.0, ge=0)


class RecordPerformanceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    contentId: str = Field(..., min_length=1, max_length=255)
    userId: str = Field(..., min_length=1, max_length=255)
    platform: str = Field(..., min_length=1, max_length=64)
    language: str = Field(..., min_length=1, max_length=64)
    contentType: str = Field(..., min_length=1, max_length=64)
    contentText: str = Field(..., min_length=1)
    metrics: PerformanceMetricsIn


class RecordPerformanceAck(BaseModel):
    accepted: bool
    contentId: str


class PlatformPerformance(BaseModel):
    platform: str
    avgPerformanceScore: float
    contentCount: int


class RecentPerformance(BaseModel):
    contentId: str
    platform: str
    language: str
    contentType: str
    performanceScore: int
    createdAt: datetime


class PerformanceAnalyticsResponse(BaseModel):
    userId: str
    totalContent: int
    avgPerformanceScore: float
    topPerformingPlatforms: list[PlatformPerformance]
    recentPerformance: list[RecentPerformance]

