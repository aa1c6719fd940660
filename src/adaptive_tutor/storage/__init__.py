from .jsonl_store import ConceptSummary, InteractionLog, consistency, success_rate
from .recommendation_store import RecommendationStore

__all__ = ["ConceptSummary", "InteractionLog", "RecommendationStore", "consistency", "success_rate"]
