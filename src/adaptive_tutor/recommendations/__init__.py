from .engine import ESTIMATED_MINUTES, RecommendationEngine, compute_priority, recency_factor
from .scheduler import RecommendationScheduler

__all__ = [
    "ESTIMATED_MINUTES",
    "RecommendationEngine",
    "RecommendationScheduler",
    "compute_priority",
    "recency_factor",
]
