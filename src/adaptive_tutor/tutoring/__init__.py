from .manager import TutoringSessionManager
from .scoring import KeywordOverlapScorer, LLMResponseScorer, ResponseScorer, build_scorer, parse_score
from .session import TIER_DIFFICULTY, EndReason, SessionState, TurnResult, TurnStatus, TutoringSession

__all__ = [
    "EndReason",
    "KeywordOverlapScorer",
    "LLMResponseScorer",
    "ResponseScorer",
    "SessionState",
    "TIER_DIFFICULTY",
    "TurnResult",
    "TurnStatus",
    "TutoringSession",
    "TutoringSessionManager",
    "build_scorer",
    "parse_score",
]
