from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from adaptive_tutor.data_models.learner import Methodology
from adaptive_tutor.utils.time import utcnow


class MasteryRecord(BaseModel):
    """Live mastery estimate for one (learner, concept) pair."""

    learner_id: str
    concept_id: str
    mastery_score: float = Field(0.0, ge=0, le=1)
    interaction_count: int = Field(0, ge=0)
    last_updated_at: datetime = Field(default_factory=utcnow)
    subject: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.learner_id, self.concept_id)


class ScoringStatus(str, Enum):
    PENDING = "pending"
    SCORED = "scored"
    UNSCORED = "unscored"


class Interaction(BaseModel):
    """One tutoring exchange: a prompt issued to the learner and its eventual score."""

    interaction_id: str
    session_id: str
    learner_id: str
    concept_id: str
    subject: str
    sequence: int = Field(0, ge=0)
    previous_interaction_id: Optional[str] = None
    difficulty_level: int = Field(..., ge=1, le=10)
    methodology_used: Methodology
    question_text: str
    support_text: Optional[str] = None
    repeated_question: bool = False
    response_text: Optional[str] = None
    success_indicator: Optional[float] = Field(None, ge=0, le=1)
    scoring_status: ScoringStatus = ScoringStatus.PENDING
    response_latency_ms: Optional[int] = Field(None, ge=0)
    time_of_day: int = Field(..., ge=0, le=23)
    device_type: str = "web"
    created_at: datetime = Field(default_factory=utcnow)
    scored_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.scoring_status is not ScoringStatus.PENDING
