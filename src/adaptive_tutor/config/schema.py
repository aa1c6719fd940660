from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class PathsConfig(BaseModel):
    """Filesystem layout for learner profiles, the mastery ledger, logs, and recommendations."""

    data_dir: Path = Field(Path("data"))
    profiles_dir: Path = Field(Path("data/profiles"))
    ledger_dir: Path = Field(Path("data/mastery"))
    interactions_log: Path = Field(Path("data/interactions.jsonl"))
    recommendations_dir: Path = Field(Path("data/recommendations"))
    logs_dir: Path = Field(Path("logs"))


class LoggingConfig(BaseModel):
    """Controls for engine logging output and format."""

    level: str = Field("INFO")
    use_json: bool = False


class CatalogConfig(BaseModel):
    """Where extra concept material lives and how selections are randomized."""

    catalog_path: Optional[Path] = Field(
        None, description="Optional YAML file merged over the built-in concept library."
    )
    random_seed: Optional[int] = Field(
        None, description="Seed for material selection; None draws from system entropy."
    )


class MasteryConfig(BaseModel):
    """Update and forgetting parameters for the mastery ledger."""

    initial_learning_rate: float = Field(0.4, gt=0, le=1)
    stable_learning_rate: float = Field(0.15, gt=0, le=1)
    calibration_interactions: int = Field(5, ge=0)
    half_life_days: float = Field(30.0, gt=0)
    basic_upper: float = Field(0.34, gt=0, lt=1)
    intermediate_upper: float = Field(0.67, gt=0, lt=1)

    @model_validator(mode="after")
    def tiers_are_ordered(self) -> "MasteryConfig":
        """Tier boundaries must split [0,1] into three non-empty buckets."""
        if self.basic_upper >= self.intermediate_upper:
            raise ValueError("basic_upper must be smaller than intermediate_upper")
        return self


class SessionConfig(BaseModel):
    """Per-session limits for the tutoring state machine."""

    max_turns: int = Field(10, ge=1)
    advance_threshold: float = Field(0.7, ge=0, le=1)
    remediation_cap: int = Field(3, ge=1)
    scorer_timeout_seconds: float = Field(120.0, gt=0)
    inline_score_wait_seconds: float = Field(2.0, ge=0)
    neutral_score: float = Field(0.5, ge=0, le=1)
    ledger_write_retries: int = Field(3, ge=1)
    ledger_retry_backoff_seconds: float = Field(0.1, ge=0)
    generate_on_session_end: bool = True
    finished_session_limit: int = Field(256, ge=1, description="Ended sessions kept for status lookups.")


class ScorerConfig(BaseModel):
    """External response scorer selection."""

    provider: str = Field("keyword", description="keyword or openai.")
    model: str = Field("gpt-4o-mini", description="Chat model used by the openai scorer.")
    temperature: float = Field(0.0, ge=0, le=2)

    @field_validator("provider")
    @classmethod
    def known_provider(cls, value: str) -> str:
        if value not in {"keyword", "openai"}:
            raise ValueError("scorer provider must be 'keyword' or 'openai'")
        return value


class RecommendationConfig(BaseModel):
    """Scoring weights and lifetimes for generated recommendations."""

    ttl_days: float = Field(14.0, gt=0)
    batch_interval_hours: float = Field(6.0, gt=0)
    stale_after_days: float = Field(30.0, gt=0)
    recent_window_days: float = Field(7.0, gt=0)
    max_results: int = Field(10, ge=1)
    high_urgency_below: float = Field(0.3, ge=0, le=1)
    medium_urgency_below: float = Field(0.6, ge=0, le=1)
    ready_threshold: float = Field(0.7, ge=0, le=1)
    role_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "student": 1.0,
            "mentor": 1.0,
            "instructor": 0.8,
            "admin": 0.6,
            "content_creator": 0.6,
        }
    )

    @field_validator("role_weights")
    @classmethod
    def weights_in_range(cls, value: Dict[str, float]) -> Dict[str, float]:
        for role, weight in value.items():
            if not 0 <= weight <= 1:
                raise ValueError(f"role weight for {role} must be within [0, 1]")
        return value


class Settings(BaseModel):
    """Top-level engine configuration aggregating all sub-settings."""

    project_name: str = Field("Adaptive Tutoring Engine")
    paths: PathsConfig = Field(default_factory=PathsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    mastery: MasteryConfig = Field(default_factory=MasteryConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    scorer: ScorerConfig = Field(default_factory=ScorerConfig)
    recommendations: RecommendationConfig = Field(default_factory=RecommendationConfig)

    def with_data_dir(self, data_dir: Path) -> "Settings":
        """Return a copy whose storage paths all live under `data_dir`."""
        paths = PathsConfig(
            data_dir=data_dir,
            profiles_dir=data_dir / "profiles",
            ledger_dir=data_dir / "mastery",
            interactions_log=data_dir / "interactions.jsonl",
            recommendations_dir=data_dir / "recommendations",
            logs_dir=data_dir / "logs",
        )
        return self.model_copy(update={"paths": paths})
