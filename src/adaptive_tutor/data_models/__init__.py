from .catalog import ConceptCatalogEntry, DifficultyTier, GenericFallback, MaterialPick
from .learner import EducationLevel, LearnerProfile, LearningStyle, Methodology, Role
from .recommendation import Recommendation, RecommendationStatus, RecommendationType, Urgency
from .tutoring import Interaction, MasteryRecord, ScoringStatus

__all__ = [
    "ConceptCatalogEntry",
    "DifficultyTier",
    "EducationLevel",
    "GenericFallback",
    "Interaction",
    "LearnerProfile",
    "LearningStyle",
    "MasteryRecord",
    "MaterialPick",
    "Methodology",
    "Recommendation",
    "RecommendationStatus",
    "RecommendationType",
    "Role",
    "ScoringStatus",
    "Urgency",
]
