from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field

from adaptive_tutor.utils.time import utcnow


class RecommendationType(str, Enum):
    NEXT_CONCEPT = "next_concept"
    STUDY_STRATEGY = "study_strategy"
    RESOURCE_RECOMMENDATION = "resource_recommendation"
    SKILL_DEVELOPMENT = "skill_development"
    MOTIVATION_BOOST = "motivation_boost"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


class RecommendationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class Recommendation(BaseModel):
    """Scored learning suggestion; at most one pending row per (learner, type, concept)."""

    recommendation_id: str
    learner_id: str
    type: RecommendationType
    concept_id: Optional[str] = None
    title: str
    description: str
    reasoning: str
    difficulty_level: int = Field(..., ge=1, le=10)
    estimated_minutes: int = Field(..., ge=1)
    priority: int = Field(..., ge=1, le=10)
    urgency: Urgency
    status: RecommendationStatus = RecommendationStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    @property
    def dedupe_key(self) -> Tuple[str, str, Optional[str]]:
        return (self.learner_id, self.type.value, self.concept_id)
