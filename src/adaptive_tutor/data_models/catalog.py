from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field, field_validator


class DifficultyTier(str, Enum):
    """Difficulty bucket derived from a mastery score."""

    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def lower(self) -> "DifficultyTier":
        """One tier easier, saturating at basic."""
        return _TIER_ORDER[max(0, self.rank - 1)]

    def higher(self) -> "DifficultyTier":
        """One tier harder, saturating at advanced."""
        return _TIER_ORDER[min(len(_TIER_ORDER) - 1, self.rank + 1)]


_TIER_ORDER = [DifficultyTier.BASIC, DifficultyTier.INTERMEDIATE, DifficultyTier.ADVANCED]


class ConceptCatalogEntry(BaseModel):
    """Pedagogical material for one concept at one difficulty tier."""

    concept_id: str
    subject: str
    difficulty_tier: DifficultyTier
    title: str = ""
    guiding_questions: List[str]
    analogies: List[str]
    real_world_examples: List[str]
    common_misconceptions: List[str]
    visual_aids: List[str]

    @field_validator(
        "guiding_questions",
        "analogies",
        "real_world_examples",
        "common_misconceptions",
        "visual_aids",
    )
    @classmethod
    def non_empty(cls, value: List[str]) -> List[str]:
        """An entry either carries material in every list or does not exist."""
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("catalog material lists must not be empty")
        return cleaned

    @property
    def is_fallback(self) -> bool:
        return False


class GenericFallback(BaseModel):
    """Templated guiding questions used when a concept has no catalog entry."""

    topic: str
    guiding_questions: List[str]
    analogies: List[str] = Field(default_factory=list)
    real_world_examples: List[str] = Field(default_factory=list)
    common_misconceptions: List[str] = Field(default_factory=list)
    visual_aids: List[str] = Field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return True


class MaterialPick(BaseModel):
    """One selected piece of material and whether it had to be repeated."""

    text: str
    repeated: bool = False
