from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple
from uuid import uuid4

from adaptive_tutor.catalog import ConceptCatalog
from adaptive_tutor.config.schema import MasteryConfig, RecommendationConfig
from adaptive_tutor.data_models import (
    DifficultyTier,
    LearnerProfile,
    MasteryRecord,
    Recommendation,
    RecommendationStatus,
    RecommendationType,
    Role,
    Urgency,
)
from adaptive_tutor.errors import InvalidTransition
from adaptive_tutor.learning.mastery import MasteryLedger, tier_for_score
from adaptive_tutor.learning.profiles import LearnerProfileStore
from adaptive_tutor.storage.jsonl_store import InteractionLog
from adaptive_tutor.storage.recommendation_store import RecommendationStore
from adaptive_tutor.tutoring.session import TIER_DIFFICULTY, TutoringSession
from adaptive_tutor.utils.logging import get_logger
from adaptive_tutor.utils.time import Clock, days_between, ensure_utc, utcnow

logger = logging.getLogger(__name__)
log = get_logger(__name__)

ESTIMATED_MINUTES: Dict[RecommendationType, int] = {
    RecommendationType.NEXT_CONCEPT: 25,
    RecommendationType.STUDY_STRATEGY: 15,
    RecommendationType.RESOURCE_RECOMMENDATION: 20,
    RecommendationType.SKILL_DEVELOPMENT: 30,
    RecommendationType.MOTIVATION_BOOST: 10,
}

LEARNER_WIDE_DIFFICULTY = 5


@dataclass
class Candidate:
    type: RecommendationType
    concept_id: Optional[str]
    title: str
    description: str
    reasoning: str
    difficulty_level: int
    gap: float
    recency: float
    urgency: Urgency


def recency_factor(last_touched: Optional[datetime], now: datetime, stale_after_days: float) -> float:
    """1 for concepts touched within `stale_after_days`, shrinking (floor 0.25) the longer they sit idle."""
    if last_touched is None:
        return 1.0
    idle = days_between(last_touched, now)
    if idle <= stale_after_days:
        return 1.0
    return max(0.25, stale_after_days / idle)


def compute_priority(role_weight: float, gap: float, recency: float) -> int:
    """round(10 x role weight x mastery gap x recency), clamped into 1..10."""
    return max(1, min(10, round(10 * role_weight * gap * recency)))


def rank_key(recommendation: Recommendation) -> Tuple[int, int, datetime]:
    return (-recommendation.priority, -recommendation.urgency.rank, recommendation.created_at)


class RecommendationEngine:
    """
    Turn mastery, interaction history and profile into ranked learning suggestions.

    `generate_for` is idempotent: every candidate is upserted by its
    (learner, type, concept) key, so re-running with unchanged inputs refreshes the
    existing pending rows instead of adding new ones. Suggestions the learner
    accepted or dismissed within the last TTL are not raised again.
    """

    def __init__(
        self,
        profiles: LearnerProfileStore,
        ledger: MasteryLedger,
        interactions: InteractionLog,
        store: RecommendationStore,
        catalog: ConceptCatalog,
        config: Optional[RecommendationConfig] = None,
        mastery_config: Optional[MasteryConfig] = None,
        clock: Clock = utcnow,
    ):
        self.profiles = profiles
        self.ledger = ledger
        self.interactions = interactions
        self.store = store
        self.catalog = catalog
        self.config = config or RecommendationConfig()
        self.mastery_config = mastery_config or ledger.config
        self.clock = clock

    def _now(self, now: Optional[datetime]) -> datetime:
        return ensure_utc(now) if now is not None else ensure_utc(self.clock())

    def role_weight(self, role: Role) -> float:
        return self.config.role_weights.get(role.value, 1.0)

    # ------------------------------------------------------------------ signals

    def _active_flags(
        self, learner_id: str, records: Dict[str, MasteryRecord], now: datetime
    ) -> Set[str]:
        """Remediation-cap flags still in force; recovered or aged-out flags are cleared."""
        active: Set[str] = set()
        for concept_id, raised_at in self.store.flags_for(learner_id).items():
            record = records.get(concept_id)
            recovered = record is not None and record.mastery_score >= self.config.ready_threshold
            aged_out = days_between(raised_at, now) > self.config.recent_window_days
            if recovered or aged_out:
                self.store.clear_flag(learner_id, concept_id)
                continue
            active.add(concept_id)
        return active

    def _urgency(self, score: float, recent: bool, flagged: bool) -> Urgency:
        if flagged or (recent and score < self.config.high_urgency_below):
            return Urgency.HIGH
        if score < self.config.medium_urgency_below:
            return Urgency.MEDIUM
        return Urgency.LOW

    def _next_concept_for(
        self, record: MasteryRecord, records: Dict[str, MasteryRecord]
    ) -> Tuple[str, DifficultyTier]:
        """A harder, not yet mastered concept in the same subject; else the same concept one tier up."""
        subject = record.subject or self.catalog.subject_of(record.concept_id)
        current = self.catalog.lookup(record.concept_id, subject)
        current_rank = current.difficulty_tier.rank if current else 0
        if subject:
            for entry in self.catalog.concepts_in_subject(subject):
                if entry.concept_id == record.concept_id or entry.difficulty_tier.rank < current_rank:
                    continue
                known = records.get(entry.concept_id)
                if known is None or known.mastery_score < self.config.ready_threshold:
                    return entry.concept_id, entry.difficulty_tier
        return record.concept_id, tier_for_score(record.mastery_score, self.mastery_config).higher()

    # ------------------------------------------------------------------ candidates

    def _concept_candidate(
        self,
        record: MasteryRecord,
        records: Dict[str, MasteryRecord],
        flagged: bool,
        recent: bool,
        now: datetime,
    ) -> Candidate:
        score = record.mastery_score
        concept = record.concept_id
        recency = recency_factor(record.last_updated_at, now, self.config.stale_after_days)
        urgency = self._urgency(score, recent, flagged)
        tier = tier_for_score(score, self.mastery_config)
        percent = round(score * 100)

        if flagged:
            return Candidate(
                type=RecommendationType.MOTIVATION_BOOST,
                concept_id=concept,
                title=f"Take a fresh run at {concept.replace('_', ' ')}",
                description=(
                    "Step back to an easier angle with a short, low-pressure exercise before "
                    "trying the harder questions again."
                ),
                reasoning=(
                    f"Several answers in a row on {concept} scored low and the session stopped "
                    f"early; mastery is {percent}%."
                ),
                difficulty_level=TIER_DIFFICULTY[tier.lower()],
                gap=1 - score,
                recency=recency,
                urgency=Urgency.HIGH,
            )
        if score >= self.config.ready_threshold:
            target, target_tier = self._next_concept_for(record, records)
            target_score = records[target].mastery_score if target in records else 0.0
            if target == concept:
                target_score = 0.0
            return Candidate(
                type=RecommendationType.NEXT_CONCEPT,
                concept_id=target,
                title=f"Move on to {target.replace('_', ' ')}",
                description=f"You are ready for {target.replace('_', ' ')} at the {target_tier.value} level.",
                reasoning=f"Mastery of {concept} reached {percent}%, above the {round(self.config.ready_threshold * 100)}% bar.",
                difficulty_level=TIER_DIFFICULTY[target_tier],
                gap=1 - target_score,
                recency=recency,
                urgency=urgency,
            )
        entry = self.catalog.lookup(concept, record.subject, tier)
        resource = entry.real_world_examples[0] if entry else None
        description = f"Review {concept.replace('_', ' ')} with worked material"
        description = f"{description}: {resource}" if resource else f"{description}."
        return Candidate(
            type=RecommendationType.RESOURCE_RECOMMENDATION,
            concept_id=concept,
            title=f"Strengthen {concept.replace('_', ' ')}",
            description=description,
            reasoning=f"Mastery of {concept} is {percent}% after {record.interaction_count} interactions.",
            difficulty_level=TIER_DIFFICULTY[tier],
            gap=1 - score,
            recency=recency,
            urgency=urgency,
        )

    def _learner_wide_candidates(
        self, profile: LearnerProfile, records: List[MasteryRecord], urgencies: List[Urgency]
    ) -> List[Candidate]:
        weak = [r for r in records if r.mastery_score < self.mastery_config.basic_upper]
        mean_gap = 1 - (sum(r.mastery_score for r in records) / len(records)) if records else 1.0
        urgency = max(urgencies, key=lambda item: item.rank) if urgencies else Urgency.LOW
        candidates: List[Candidate] = []
        if profile.role is Role.INSTRUCTOR or len(weak) >= 2:
            weak_names = ", ".join(r.concept_id for r in weak) or "current topics"
            candidates.append(
                Candidate(
                    type=RecommendationType.STUDY_STRATEGY,
                    concept_id=None,
                    title="Plan short spaced review sessions",
                    description="Alternate between weak topics in short sessions spread over the week.",
                    reasoning=f"{len(weak)} concepts are in the basic tier ({weak_names}).",
                    difficulty_level=LEARNER_WIDE_DIFFICULTY,
                    gap=mean_gap,
                    recency=1.0,
                    urgency=urgency,
                )
            )
        if profile.role is Role.CONTENT_CREATOR:
            candidates.append(
                Candidate(
                    type=RecommendationType.SKILL_DEVELOPMENT,
                    concept_id=None,
                    title="Build explanation skills",
                    description="Turn a mastered concept into a short guided exercise for others.",
                    reasoning="Content creators improve fastest by explaining material they have practised.",
                    difficulty_level=LEARNER_WIDE_DIFFICULTY,
                    gap=mean_gap,
                    recency=1.0,
                    urgency=urgency,
                )
            )
        return candidates

    def _candidates(self, profile: LearnerProfile, now: datetime) -> List[Candidate]:
        learner_id = profile.learner_id
        records = {record.concept_id: record for record in self.ledger.records_for(learner_id, now)}
        flags = self._active_flags(learner_id, records, now)
        window_start = now - timedelta(days=self.config.recent_window_days)
        recent_concepts = {
            item.concept_id for item in self.interactions.for_learner(learner_id, since=window_start)
        }
        recent_concepts.update(
            concept_id
            for concept_id, record in records.items()
            if ensure_utc(record.last_updated_at) >= window_start
        )

        candidates = [
            self._concept_candidate(
                record,
                records,
                flagged=concept_id in flags,
                recent=concept_id in recent_concepts,
                now=now,
            )
            for concept_id, record in sorted(records.items())
        ]
        candidates.extend(
            self._learner_wide_candidates(
                profile, list(records.values()), [candidate.urgency for candidate in candidates]
            )
        )
        return candidates

    def _recently_answered(self, learner_id: str, now: datetime) -> Set[Tuple[str, str, Optional[str]]]:
        cutoff = now - timedelta(days=self.config.ttl_days)
        return {
            row.dedupe_key
            for row in self.store.list_for(learner_id, now=now)
            if row.status in (RecommendationStatus.ACCEPTED, RecommendationStatus.DISMISSED)
            and ensure_utc(row.updated_at) >= cutoff
        }

    # ------------------------------------------------------------------ operations

    def generate_for(self, learner_id: str, now: Optional[datetime] = None) -> List[Recommendation]:
        """
        Produce the learner's current recommendations.

        Parameters
        ----------
        learner_id : str
            Learner to analyse; unknown or archived learners raise `InvalidLearnerId`.
        now : datetime, optional
            Evaluation time for decay, recency and expiry. Defaults to the engine clock.

        Returns
        -------
        List[Recommendation]
            Stored rows touched by this run, highest priority first, at most
            `max_results` of them.
        """
        now = self._now(now)
        profile = self.profiles.get(learner_id)
        weight = self.role_weight(profile.role)
        answered = self._recently_answered(learner_id, now)
        stored: List[Recommendation] = []
        for candidate in self._candidates(profile, now):
            key = (learner_id, candidate.type.value, candidate.concept_id)
            if key in answered:
                continue
            recommendation = Recommendation(
                recommendation_id=uuid4().hex,
                learner_id=learner_id,
                type=candidate.type,
                concept_id=candidate.concept_id,
                title=candidate.title,
                description=candidate.description,
                reasoning=candidate.reasoning,
                difficulty_level=candidate.difficulty_level,
                estimated_minutes=ESTIMATED_MINUTES[candidate.type],
                priority=compute_priority(weight, candidate.gap, candidate.recency),
                urgency=candidate.urgency,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(days=self.config.ttl_days),
            )
            row, created = self.store.upsert(recommendation, now)
            log.info(
                "recommendation_created" if created else "recommendation_refreshed",
                learner_id=learner_id,
                recommendation_id=row.recommendation_id,
                type=row.type.value,
                concept_id=row.concept_id,
                priority=row.priority,
                urgency=row.urgency.value,
            )
            stored.append(row)
        return sorted(stored, key=rank_key)[: self.config.max_results]

    def get_recommendations(
        self,
        learner_id: str,
        status: Optional[RecommendationStatus] = None,
        now: Optional[datetime] = None,
    ) -> List[Recommendation]:
        """Stored recommendations for a learner, expiring overdue rows on the way."""
        self.profiles.get(learner_id)
        rows = self.store.list_for(learner_id, status=status, now=self._now(now))
        return sorted(rows, key=rank_key)

    def record_feedback(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        now: Optional[datetime] = None,
    ) -> Recommendation:
        """Accept or dismiss a pending recommendation."""
        if status not in (RecommendationStatus.ACCEPTED, RecommendationStatus.DISMISSED):
            raise InvalidTransition(f"Feedback must be accepted or dismissed, got {status.value}")
        row = self.store.set_status(recommendation_id, status, self._now(now))
        log.info("recommendation_feedback", recommendation_id=recommendation_id, status=status.value)
        return row

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        return self.store.expire_stale(self._now(now))

    def flag_remediation_cap(self, learner_id: str, concept_id: str, now: datetime) -> None:
        """Remember that a session hit the remediation cap on a concept."""
        self.store.raise_flag(learner_id, concept_id, now)
        log.info("remediation_cap_flagged", learner_id=learner_id, concept_id=concept_id)

    def on_session_end(self, session: TutoringSession) -> None:
        self.generate_for(session.learner_id, session.ended_at)
