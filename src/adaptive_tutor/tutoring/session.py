from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel

from adaptive_tutor.data_models import DifficultyTier, Methodology
from adaptive_tutor.errors import SessionDegraded
from adaptive_tutor.utils.time import utcnow

TIER_DIFFICULTY = {
    DifficultyTier.BASIC: 3,
    DifficultyTier.INTERMEDIATE: 6,
    DifficultyTier.ADVANCED: 9,
}


class SessionState(str, Enum):
    PROBING = "probing"
    EVALUATING = "evaluating"
    ADVANCING = "advancing"
    REMEDIATING = "remediating"
    SESSION_END = "session_end"


class EndReason(str, Enum):
    MAX_TURNS = "max_turns"
    LEARNER_EXIT = "learner_exit"
    REMEDIATION_CAP = "remediation_cap"
    CANCELLED = "cancelled"


class TurnStatus(str, Enum):
    QUESTION = "question"
    AWAITING_SCORE = "awaiting_score"
    SESSION_ENDED = "session_ended"


@dataclass
class TutoringSession:
    """Mutable state of one learner's tutoring session on one concept."""

    session_id: str
    learner_id: str
    concept_id: str
    subject: str
    methodology: Methodology
    tier: DifficultyTier
    device_type: str = "web"
    state: SessionState = SessionState.PROBING
    turns: int = 0
    consecutive_low: int = 0
    remediating: bool = False
    asked_questions: Set[str] = field(default_factory=set)
    used_analogies: Set[str] = field(default_factory=set)
    used_examples: Set[str] = field(default_factory=set)
    used_visual_aids: Set[str] = field(default_factory=set)
    current_visual_aid: Optional[str] = None
    reference: List[str] = field(default_factory=list)
    current_interaction_id: Optional[str] = None
    last_interaction_id: Optional[str] = None
    last_score: Optional[float] = None
    pending_task: Optional[asyncio.Task] = None
    deadline: Optional[datetime] = None
    degraded: bool = False
    degradation: Optional[SessionDegraded] = None
    end_reason: Optional[EndReason] = None
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    transitions: List[SessionState] = field(default_factory=list)

    @property
    def ended(self) -> bool:
        return self.state is SessionState.SESSION_END

    def move_to(self, state: SessionState) -> None:
        self.transitions.append(state)
        self.state = state

    def release_material(self) -> None:
        """Drop per-session material bookkeeping once the session is over."""
        self.asked_questions.clear()
        self.used_analogies.clear()
        self.used_examples.clear()
        self.used_visual_aids.clear()
        self.reference = []
        self.pending_task = None


class TurnResult(BaseModel):
    """What the caller sees after starting a session or answering a question."""

    session_id: str
    status: TurnStatus
    state: SessionState
    concept_id: str
    interaction_id: Optional[str] = None
    question_text: Optional[str] = None
    support_text: Optional[str] = None
    visual_aid: Optional[str] = None
    repeated_question: bool = False
    difficulty_level: Optional[int] = None
    methodology: Optional[Methodology] = None
    last_score: Optional[float] = None
    mastery_score: Optional[float] = None
    degraded: bool = False
    end_reason: Optional[EndReason] = None
