from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote, unquote

from adaptive_tutor.data_models import Recommendation, RecommendationStatus
from adaptive_tutor.errors import InvalidTransition, RecommendationNotFound
from adaptive_tutor.utils.time import ensure_utc

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64
OWNER_INDEX_SIZE = 4096

# Fields refreshed on an existing pending row when the same recommendation is generated again.
REFRESHED_FIELDS = (
    "title",
    "description",
    "reasoning",
    "difficulty_level",
    "estimated_minutes",
    "priority",
    "urgency",
    "expires_at",
)


class RecommendationStore:
    """
    JSON file per learner holding recommendations and remediation flags.

    All reads and writes of one learner's file happen under the lock stripe that
    learner hashes to, which makes the expire-then-upsert sequence transactional:
    two concurrent generation runs can never leave two pending rows with the same
    (learner, type, concept) key. Rows are never deleted; expiry is a status change
    applied lazily whenever a learner's rows are read.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._locks: List[threading.RLock] = [threading.RLock() for _ in range(LOCK_STRIPES)]
        # recommendation id -> learner id, least recently used first
        self._owners: OrderedDict[str, str] = OrderedDict()
        self._owners_guard = threading.Lock()

    def _lock_for(self, learner_id: str) -> threading.RLock:
        return self._locks[hash(learner_id) % LOCK_STRIPES]

    def _remember_owner(self, recommendation_id: str, learner_id: str) -> None:
        with self._owners_guard:
            self._owners[recommendation_id] = learner_id
            self._owners.move_to_end(recommendation_id)
            while len(self._owners) > OWNER_INDEX_SIZE:
                self._owners.popitem(last=False)

    def learner_path(self, learner_id: str) -> Path:
        return self.base_dir / f"{quote(learner_id, safe='')}.json"

    def _read(self, learner_id: str) -> Tuple[List[Recommendation], Dict[str, datetime]]:
        path = self.learner_path(learner_id)
        if not path.exists():
            return [], {}
        with path.open("r", encoding="utf-8") as handle:
            payload: Dict[str, Any] = json.load(handle)
        rows = [Recommendation.model_validate(item) for item in payload.get("recommendations", [])]
        flags = {
            concept_id: ensure_utc(datetime.fromisoformat(raised_at))
            for concept_id, raised_at in payload.get("flags", {}).items()
        }
        for row in rows:
            self._remember_owner(row.recommendation_id, learner_id)
        return rows, flags

    def _write(self, learner_id: str, rows: List[Recommendation], flags: Dict[str, datetime]) -> None:
        path = self.learner_path(learner_id)
        payload = {
            "learner_id": learner_id,
            "recommendations": [row.model_dump(mode="json") for row in rows],
            "flags": {concept_id: raised_at.isoformat() for concept_id, raised_at in flags.items()},
        }
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        tmp.replace(path)

    @staticmethod
    def _expire(rows: List[Recommendation], now: datetime) -> Tuple[List[Recommendation], int]:
        expired = 0
        updated: List[Recommendation] = []
        for row in rows:
            if row.status is RecommendationStatus.PENDING and now > ensure_utc(row.expires_at):
                row = row.model_copy(update={"status": RecommendationStatus.EXPIRED, "updated_at": now})
                expired += 1
            updated.append(row)
        return updated, expired

    def list_for(
        self,
        learner_id: str,
        status: Optional[RecommendationStatus] = None,
        now: Optional[datetime] = None,
    ) -> List[Recommendation]:
        """A learner's recommendations after lazy expiry, optionally filtered by status."""
        now = ensure_utc(now)
        with self._lock_for(learner_id):
            rows, flags = self._read(learner_id)
            rows, expired = self._expire(rows, now)
            if expired:
                self._write(learner_id, rows, flags)
                logger.info("Expired %s recommendations for %s", expired, learner_id)
        if status is not None:
            rows = [row for row in rows if row.status is status]
        return rows

    def upsert(self, candidate: Recommendation, now: Optional[datetime] = None) -> Tuple[Recommendation, bool]:
        """
        Insert `candidate` or refresh the pending row that shares its key.

        Returns the stored row and whether it was newly created.
        """
        now = ensure_utc(now)
        learner_id = candidate.learner_id
        with self._lock_for(learner_id):
            rows, flags = self._read(learner_id)
            rows, _ = self._expire(rows, now)
            for index, row in enumerate(rows):
                if row.status is RecommendationStatus.PENDING and row.dedupe_key == candidate.dedupe_key:
                    refreshed = row.model_copy(
                        update={
                            **{name: getattr(candidate, name) for name in REFRESHED_FIELDS},
                            "updated_at": now,
                        }
                    )
                    rows[index] = refreshed
                    self._write(learner_id, rows, flags)
                    return refreshed, False
            rows.append(candidate)
            self._remember_owner(candidate.recommendation_id, learner_id)
            self._write(learner_id, rows, flags)
        return candidate, True

    def _owner_of(self, recommendation_id: str) -> str:
        with self._owners_guard:
            owner = self._owners.get(recommendation_id)
        if owner is not None:
            return owner
        for learner_id in self.learner_ids():
            rows, _ = self._read(learner_id)
            if any(row.recommendation_id == recommendation_id for row in rows):
                return learner_id
        raise RecommendationNotFound(f"Unknown recommendation {recommendation_id}")

    def get(self, recommendation_id: str, now: Optional[datetime] = None) -> Recommendation:
        learner_id = self._owner_of(recommendation_id)
        for row in self.list_for(learner_id, now=now):
            if row.recommendation_id == recommendation_id:
                return row
        raise RecommendationNotFound(f"Unknown recommendation {recommendation_id}")

    def set_status(
        self,
        recommendation_id: str,
        status: RecommendationStatus,
        now: Optional[datetime] = None,
    ) -> Recommendation:
        """Move a pending recommendation to `status`; any other starting state is rejected."""
        now = ensure_utc(now)
        learner_id = self._owner_of(recommendation_id)
        with self._lock_for(learner_id):
            rows, flags = self._read(learner_id)
            rows, _ = self._expire(rows, now)
            for index, row in enumerate(rows):
                if row.recommendation_id != recommendation_id:
                    continue
                if row.status is not RecommendationStatus.PENDING:
                    self._write(learner_id, rows, flags)
                    raise InvalidTransition(
                        f"Recommendation {recommendation_id} is {row.status.value}, not pending"
                    )
                rows[index] = row.model_copy(update={"status": status, "updated_at": now})
                self._write(learner_id, rows, flags)
                return rows[index]
        raise RecommendationNotFound(f"Unknown recommendation {recommendation_id}")

    def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Expire overdue pending rows for every learner; returns how many changed."""
        now = ensure_utc(now)
        total = 0
        for learner_id in self.learner_ids():
            with self._lock_for(learner_id):
                rows, flags = self._read(learner_id)
                rows, expired = self._expire(rows, now)
                if expired:
                    self._write(learner_id, rows, flags)
                    total += expired
        if total:
            logger.info("Expired %s stale recommendations", total)
        return total

    def flags_for(self, learner_id: str) -> Dict[str, datetime]:
        """Concepts whose remediation cap was hit, with the time it happened."""
        with self._lock_for(learner_id):
            _, flags = self._read(learner_id)
        return flags

    def raise_flag(self, learner_id: str, concept_id: str, now: Optional[datetime] = None) -> None:
        with self._lock_for(learner_id):
            rows, flags = self._read(learner_id)
            flags[concept_id] = ensure_utc(now)
            self._write(learner_id, rows, flags)

    def clear_flag(self, learner_id: str, concept_id: str) -> None:
        with self._lock_for(learner_id):
            rows, flags = self._read(learner_id)
            if flags.pop(concept_id, None) is not None:
                self._write(learner_id, rows, flags)

    def learner_ids(self) -> List[str]:
        return sorted(unquote(path.stem) for path in self.base_dir.glob("*.json"))
