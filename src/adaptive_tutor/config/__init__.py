from .loader import load_settings
from .schema import (
    CatalogConfig,
    LoggingConfig,
    MasteryConfig,
    PathsConfig,
    RecommendationConfig,
    ScorerConfig,
    SessionConfig,
    Settings,
)

__all__ = [
    "CatalogConfig",
    "LoggingConfig",
    "MasteryConfig",
    "PathsConfig",
    "RecommendationConfig",
    "ScorerConfig",
    "SessionConfig",
    "Settings",
    "load_settings",
]
