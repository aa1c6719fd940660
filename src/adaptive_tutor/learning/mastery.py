from __future__ import annotations

import json
import logging
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote, unquote

from adaptive_tutor.config.schema import MasteryConfig
from adaptive_tutor.data_models import DifficultyTier, MasteryRecord
from adaptive_tutor.errors import LedgerWriteConflict
from adaptive_tutor.utils.time import days_between, ensure_utc

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def decay_rate(half_life_days: float) -> float:
    """λ such that an untouched score halves after `half_life_days`."""
    return math.log(2) / half_life_days


def tier_for_score(score: float, config: Optional[MasteryConfig] = None) -> DifficultyTier:
    """Map a mastery score onto basic / intermediate / advanced."""
    config = config or MasteryConfig()
    if score < config.basic_upper:
        return DifficultyTier.BASIC
    if score > config.intermediate_upper:
        return DifficultyTier.ADVANCED
    return DifficultyTier.INTERMEDIATE


class MasteryLedger:
    """
    Per (learner, concept) mastery scores with lazy exponential forgetting.

    Each pair lives in its own JSON file under `base_dir/<learner>/<concept>.json`,
    so writes for different pairs touch different files. Updates for the same pair are
    serialized by one of `LOCK_STRIPES` locks chosen by hashing the pair, so the
    lock table stays a fixed size however many pairs are touched. Decay is applied
    whenever a record is read or updated and is not written back on reads, so
    `last_updated_at` keeps meaning "last evidence".

    Scores are updated with an exponential moving average
    ``score' = score + α (s - score)`` where α is the initial learning rate while
    the pair has fewer than `calibration_interactions` updates, then the stable one.
    """

    def __init__(self, base_dir: Path, config: Optional[MasteryConfig] = None):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.config = config or MasteryConfig()
        # Fixed pool of locks; a pair always maps onto the same stripe.
        self._locks: List[threading.Lock] = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, key: Tuple[str, str]) -> threading.Lock:
        return self._locks[hash(key) % LOCK_STRIPES]

    def record_path(self, learner_id: str, concept_id: str) -> Path:
        return self.base_dir / quote(learner_id, safe="") / f"{quote(concept_id, safe='')}.json"

    def _load(self, learner_id: str, concept_id: str) -> Optional[MasteryRecord]:
        path = self.record_path(learner_id, concept_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return MasteryRecord.model_validate(json.load(handle))

    def _persist(self, record: MasteryRecord) -> None:
        path = self.record_path(record.learner_id, record.concept_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            with tmp.open("w", encoding="utf-8") as handle:
                handle.write(record.model_dump_json(indent=2))
            tmp.replace(path)
        except OSError as exc:
            raise LedgerWriteConflict(record.learner_id, record.concept_id, str(exc)) from exc

    def apply_decay(self, record: MasteryRecord, now: Optional[datetime] = None) -> MasteryRecord:
        """
        Return a copy of `record` with forgetting applied up to `now`.

        ``score' = score * exp(-λ * days)``; the factor is at most 1, so decay can only
        lower a score, and a longer gap always lowers it more.
        """
        days = days_between(record.last_updated_at, ensure_utc(now))
        factor = math.exp(-decay_rate(self.config.half_life_days) * days)
        return record.model_copy(update={"mastery_score": clamp(record.mastery_score * factor)})

    def learning_rate(self, interaction_count: int) -> float:
        if interaction_count < self.config.calibration_interactions:
            return self.config.initial_learning_rate
        return self.config.stable_learning_rate

    def get_record(
        self, learner_id: str, concept_id: str, now: Optional[datetime] = None
    ) -> Optional[MasteryRecord]:
        """Decayed view of the live record, or None if the pair was never attempted."""
        with self._lock_for((learner_id, concept_id)):
            record = self._load(learner_id, concept_id)
        if record is None:
            return None
        return self.apply_decay(record, now)

    def get_score(self, learner_id: str, concept_id: str, now: Optional[datetime] = None) -> float:
        """Current mastery in [0, 1]; 0 for concepts not yet attempted."""
        record = self.get_record(learner_id, concept_id, now)
        return record.mastery_score if record else 0.0

    def get_tier(self, learner_id: str, concept_id: str, now: Optional[datetime] = None) -> DifficultyTier:
        return tier_for_score(self.get_score(learner_id, concept_id, now), self.config)

    def update(
        self,
        learner_id: str,
        concept_id: str,
        success_indicator: float,
        now: Optional[datetime] = None,
        subject: Optional[str] = None,
    ) -> float:
        """
        Blend a new success signal into the pair's score and persist it.

        The stored record is replaced only after the write succeeds; a failed write
        raises `LedgerWriteConflict` and leaves the previous record live.
        """
        if not 0.0 <= success_indicator <= 1.0:
            raise ValueError(f"success_indicator must be within [0, 1], got {success_indicator}")
        now = ensure_utc(now)
        key = (learner_id, concept_id)
        with self._lock_for(key):
            current = self._load(learner_id, concept_id)
            if current is None:
                current = MasteryRecord(
                    learner_id=learner_id,
                    concept_id=concept_id,
                    last_updated_at=now,
                    subject=subject,
                )
            decayed = self.apply_decay(current, now)
            alpha = self.learning_rate(decayed.interaction_count)
            score = clamp(decayed.mastery_score + alpha * (success_indicator - decayed.mastery_score))
            updated = decayed.model_copy(
                update={
                    "mastery_score": score,
                    "interaction_count": decayed.interaction_count + 1,
                    "last_updated_at": now,
                    "subject": subject or decayed.subject,
                }
            )
            self._persist(updated)
        logger.debug(
            "Mastery %s/%s: %.3f -> %.3f (alpha=%.2f)",
            learner_id,
            concept_id,
            decayed.mastery_score,
            score,
            alpha,
        )
        return score

    def records_for(self, learner_id: str, now: Optional[datetime] = None) -> List[MasteryRecord]:
        """Every decayed record of a learner, ordered by concept id."""
        learner_dir = self.base_dir / quote(learner_id, safe="")
        concept_ids = set()
        if learner_dir.exists():
            for path in learner_dir.glob("*.json"):
                record = self._load_from_path(path)
                if record is not None:
                    concept_ids.add(record.concept_id)
        records = [self.get_record(learner_id, concept_id, now) for concept_id in sorted(concept_ids)]
        return [record for record in records if record is not None]

    def _load_from_path(self, path: Path) -> Optional[MasteryRecord]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                return MasteryRecord.model_validate(json.load(handle))
        except (OSError, ValueError) as exc:
            logger.warning("Skipping unreadable mastery record %s: %s", path, exc)
            return None

    def learner_ids(self) -> List[str]:
        return sorted(unquote(path.name) for path in self.base_dir.iterdir() if path.is_dir())
