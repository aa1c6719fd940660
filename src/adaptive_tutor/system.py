from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from adaptive_tutor.catalog import ConceptCatalog
from adaptive_tutor.config import Settings, load_settings
from adaptive_tutor.learning import IdentitySource, LearnerProfileStore, MasteryLedger
from adaptive_tutor.recommendations import RecommendationEngine, RecommendationScheduler
from adaptive_tutor.storage import InteractionLog, RecommendationStore
from adaptive_tutor.tutoring import ResponseScorer, TutoringSessionManager, build_scorer
from adaptive_tutor.utils.logging import configure_logging
from adaptive_tutor.utils.time import Clock, utcnow

logger = logging.getLogger(__name__)


class TutoringSystem:
    """
    Facade wiring every engine component from one `Settings` object.

    The CLI and the HTTP app both go through this class; nothing else constructs
    stores directly.

    Attributes
    ----------
    settings : Settings
        Validated configuration.
    catalog : ConceptCatalog
        Built-in concept library merged with `catalog.catalog_path`, if set.
    profiles : LearnerProfileStore
        Learner profiles under `paths.profiles_dir`.
    ledger : MasteryLedger
        Mastery records under `paths.ledger_dir`.
    interactions : InteractionLog
        JSONL log at `paths.interactions_log`.
    recommendation_store : RecommendationStore
        Recommendation rows and remediation flags under `paths.recommendations_dir`.
    recommendations : RecommendationEngine
        Generation, listing and feedback.
    sessions : TutoringSessionManager
        Session state machine; ends trigger recommendation generation.
    scheduler : RecommendationScheduler
        Periodic batch runner.
    """

    def __init__(
        self,
        settings: Settings,
        scorer: Optional[ResponseScorer] = None,
        identity: Optional[IdentitySource] = None,
        clock: Clock = utcnow,
        api_key: Optional[str] = None,
    ):
        self.settings = settings
        configure_logging(settings.logging.level, settings.logging.use_json)
        paths = settings.paths

        self.catalog = ConceptCatalog.from_sources(settings.catalog.catalog_path, settings.catalog.random_seed)
        self.profiles = LearnerProfileStore(paths.profiles_dir, identity=identity)
        self.ledger = MasteryLedger(paths.ledger_dir, settings.mastery)
        self.interactions = InteractionLog(paths.interactions_log)
        self.recommendation_store = RecommendationStore(paths.recommendations_dir)
        self.recommendations = RecommendationEngine(
            profiles=self.profiles,
            ledger=self.ledger,
            interactions=self.interactions,
            store=self.recommendation_store,
            catalog=self.catalog,
            config=settings.recommendations,
            mastery_config=settings.mastery,
            clock=clock,
        )
        self.scorer = scorer or build_scorer(settings.scorer, api_key=api_key)
        self.sessions = TutoringSessionManager(
            catalog=self.catalog,
            profiles=self.profiles,
            ledger=self.ledger,
            interactions=self.interactions,
            scorer=self.scorer,
            config=settings.session,
            clock=clock,
            on_session_end=self.recommendations.on_session_end,
            on_remediation_cap=self.recommendations.flag_remediation_cap,
        )
        self.scheduler = RecommendationScheduler(
            self.recommendations,
            self.profiles,
            settings.recommendations.batch_interval_hours,
            sessions=self.sessions,
        )
        logger.info("Tutoring system ready with %s catalog concepts", len(self.catalog.concept_ids()))

    @classmethod
    def from_config(
        cls,
        config_path: str | Path | None = None,
        data_dir: str | Path | None = None,
        scorer: Optional[ResponseScorer] = None,
        api_key: Optional[str] = None,
    ) -> "TutoringSystem":
        """
        Build a system from a YAML configuration file.

        Parameters
        ----------
        config_path : str | Path | None, default=None
            YAML file to load. If None, `config/default.yaml` is used when present.
        data_dir : str | Path | None, default=None
            Overrides every storage path to live under this directory.
        scorer : ResponseScorer, optional
            Replaces the scorer named by `scorer.provider`.
        api_key : Optional[str], default=None
            OpenAI API key for the openai scorer; falls back to OPENAI_API_KEY.
        """
        settings = load_settings(Path(config_path) if config_path else None)
        if data_dir is not None:
            settings = settings.with_data_dir(Path(data_dir))
        return cls(settings, scorer=scorer, api_key=api_key)
