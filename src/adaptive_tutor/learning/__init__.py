from .mastery import MasteryLedger, clamp, decay_rate, tier_for_score
from .methodology import ROLE_DEFAULT_METHODOLOGY, STYLE_METHODOLOGY, dominant_style, resolve_methodology
from .profiles import (
    IdentityDetails,
    IdentitySource,
    LearnerProfileStore,
    StaticIdentitySource,
    estimate_age,
    estimate_education_level,
    infer_learning_style,
    validate_learner_id,
)

__all__ = [
    "IdentityDetails",
    "IdentitySource",
    "LearnerProfileStore",
    "MasteryLedger",
    "ROLE_DEFAULT_METHODOLOGY",
    "STYLE_METHODOLOGY",
    "StaticIdentitySource",
    "clamp",
    "decay_rate",
    "dominant_style",
    "estimate_age",
    "estimate_education_level",
    "infer_learning_style",
    "resolve_methodology",
    "tier_for_score",
    "validate_learner_id",
]
