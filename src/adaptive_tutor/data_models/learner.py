from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from adaptive_tutor.utils.time import utcnow


class Role(str, Enum):
    """Role supplied by the identity source."""

    STUDENT = "student"
    INSTRUCTOR = "instructor"
    ADMIN = "admin"
    CONTENT_CREATOR = "content_creator"
    MENTOR = "mentor"


class Methodology(str, Enum):
    """Pedagogical style used to present material."""

    VISUAL_DEMO = "visual_demo"
    SCAFFOLDING = "scaffolding"
    DIRECT_INSTRUCTION = "direct_instruction"
    DISCOVERY = "discovery"
    SOCRATIC = "socratic"


class EducationLevel(str, Enum):
    UNKNOWN = "unknown"
    PRIMARY = "primary"
    SECONDARY = "secondary"
    STUDENT = "student"
    BACHELOR = "bachelor"
    MASTER = "master"
    DOCTORATE = "doctorate"


class LearningStyle(BaseModel):
    """Four independent affinity scores in [0, 100]; they need not sum to 100."""

    visual: float = Field(25.0, ge=0, le=100)
    auditory: float = Field(25.0, ge=0, le=100)
    kinesthetic: float = Field(25.0, ge=0, le=100)
    reading: float = Field(25.0, ge=0, le=100)

    def as_dict(self) -> dict[str, float]:
        return {
            "visual": self.visual,
            "auditory": self.auditory,
            "kinesthetic": self.kinesthetic,
            "reading": self.reading,
        }

    def is_default(self) -> bool:
        return self == LearningStyle()


class LearnerProfile(BaseModel):
    """Learner attributes keyed by an identifier owned by the identity source."""

    learner_id: str
    role: Role = Role.STUDENT
    learning_style: LearningStyle = Field(default_factory=LearningStyle)
    interests: List[str] = Field(default_factory=list)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    age: Optional[int] = Field(None, ge=0, le=130)
    education_level: EducationLevel = EducationLevel.UNKNOWN
    cultural_context: Optional[str] = None
    methodology_preference: Methodology = Methodology.VISUAL_DEMO
    profile_completeness: float = Field(0.0, ge=0, le=1)
    archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("interests", "strengths", "weaknesses")
    @classmethod
    def dedupe_tags(cls, value: List[str]) -> List[str]:
        """Tag fields behave as sets; keep first-seen order for stable output."""
        seen: List[str] = []
        for tag in value:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    def compute_completeness(self) -> float:
        """Fraction of optional fields that carry information."""
        populated = [
            not self.learning_style.is_default(),
            bool(self.interests),
            bool(self.strengths),
            bool(self.weaknesses),
            self.age is not None,
            self.education_level is not EducationLevel.UNKNOWN,
            bool(self.cultural_context),
        ]
        return round(sum(populated) / len(populated), 4)
