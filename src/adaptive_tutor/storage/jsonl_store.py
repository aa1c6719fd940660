from __future__ import annotations

import json
import logging
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel

from adaptive_tutor.data_models import Interaction, ScoringStatus
from adaptive_tutor.errors import InteractionNotFound, InvalidTransition
from adaptive_tutor.utils.time import ensure_utc

logger = logging.getLogger(__name__)


def _scored_values(interactions: Iterable[Interaction]) -> List[float]:
    return [
        item.success_indicator
        for item in interactions
        if item.scoring_status is ScoringStatus.SCORED and item.success_indicator is not None
    ]


def success_rate(interactions: Iterable[Interaction]) -> float:
    """Mean success indicator over scored interactions; 0 when nothing was scored."""
    values = _scored_values(interactions)
    if not values:
        return 0.0
    return sum(values) / len(values)


def consistency(interactions: Iterable[Interaction]) -> float:
    """One minus the population standard deviation of scored success values (0 for fewer than two)."""
    values = _scored_values(interactions)
    if len(values) < 2:
        return 0.0
    mean = sum(values) / len(values)
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    return max(0.0, 1.0 - math.sqrt(variance))


class ConceptSummary(BaseModel):
    """Practice history of one learner on one concept."""

    learner_id: str
    concept_id: str
    attempts: int
    scored_attempts: int
    success_rate: float
    consistency: float
    last_practiced_at: Optional[datetime] = None


class InteractionLog:
    """
    Append-only JSONL record of tutoring exchanges.

    New interactions are appended as one line each. An interaction is mutable only
    while pending: the learner's response can be attached, then it is finalized
    exactly once as scored or unscored, which rewrites the file with the entry
    replaced. Finalized entries never change again and nothing is ever deleted.
    """

    def __init__(self, path: Path):
        """Ensure the backing directory exists and load any existing entries."""
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._entries: Dict[str, Interaction] = {}
        for interaction in self.load():
            self._entries[interaction.interaction_id] = interaction

    def load(self) -> List[Interaction]:
        """Read all stored interactions from disk and reconstruct them as models."""
        if not self.path.exists():
            return []
        interactions: List[Interaction] = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line in handle:
                if not line.strip():
                    continue
                interactions.append(Interaction.model_validate(json.loads(line)))
        return interactions

    def _rewrite(self) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            for interaction in self._entries.values():
                handle.write(interaction.model_dump_json())
                handle.write("\n")
        tmp.replace(self.path)

    def append(self, interaction: Interaction) -> Interaction:
        """Record a freshly issued prompt."""
        with self._lock:
            if interaction.interaction_id in self._entries:
                raise InvalidTransition(f"Interaction {interaction.interaction_id} already logged")
            self._entries[interaction.interaction_id] = interaction
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(interaction.model_dump_json())
                handle.write("\n")
        return interaction

    def get(self, interaction_id: str) -> Interaction:
        with self._lock:
            interaction = self._entries.get(interaction_id)
        if interaction is None:
            raise InteractionNotFound(f"Unknown interaction {interaction_id}")
        return interaction

    def record_response(
        self, interaction_id: str, response_text: str, latency_ms: Optional[int] = None
    ) -> Interaction:
        """Attach the learner's answer to a pending interaction."""
        with self._lock:
            interaction = self.get(interaction_id)
            if interaction.is_final:
                raise InvalidTransition(f"Interaction {interaction_id} is already final")
            if interaction.response_text is not None:
                raise InvalidTransition(f"Interaction {interaction_id} was already answered")
            updated = interaction.model_copy(
                update={"response_text": response_text, "response_latency_ms": latency_ms}
            )
            self._entries[interaction_id] = updated
            self._rewrite()
        return updated

    def finalize(
        self,
        interaction_id: str,
        success_indicator: float,
        status: ScoringStatus = ScoringStatus.SCORED,
        now: Optional[datetime] = None,
    ) -> Interaction:
        """
        Set the outcome of an interaction, exactly once.

        Raises `InvalidTransition` for an interaction that is already scored or
        unscored; rescoring is not supported.
        """
        if status is ScoringStatus.PENDING:
            raise ValueError("finalize requires a scored or unscored status")
        with self._lock:
            interaction = self.get(interaction_id)
            if interaction.is_final:
                raise InvalidTransition(
                    f"Interaction {interaction_id} already {interaction.scoring_status.value}"
                )
            updated = Interaction.model_validate(
                {
                    **interaction.model_dump(),
                    "success_indicator": success_indicator,
                    "scoring_status": status,
                    "scored_at": ensure_utc(now),
                }
            )
            self._entries[interaction_id] = updated
            self._rewrite()
        logger.debug("Interaction %s finalized as %s (%.2f)", interaction_id, status.value, success_indicator)
        return updated

    def for_session(self, session_id: str) -> List[Interaction]:
        """Interactions of a session in issue order."""
        with self._lock:
            found = [item for item in self._entries.values() if item.session_id == session_id]
        return sorted(found, key=lambda item: item.sequence)

    def for_learner(
        self,
        learner_id: str,
        concept_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[Interaction]:
        """A learner's interactions, oldest first, optionally narrowed by concept and start time."""
        since = ensure_utc(since) if since is not None else None
        with self._lock:
            found = [
                item
                for item in self._entries.values()
                if item.learner_id == learner_id
                and (concept_id is None or item.concept_id == concept_id)
                and (since is None or ensure_utc(item.created_at) >= since)
            ]
        return sorted(found, key=lambda item: item.created_at)

    def pending_reprocessing(self) -> List[Interaction]:
        """Interactions that timed out or failed scoring, kept for offline rescoring."""
        with self._lock:
            return [
                item for item in self._entries.values() if item.scoring_status is ScoringStatus.UNSCORED
            ]

    def summarize_concept(self, learner_id: str, concept_id: str) -> ConceptSummary:
        interactions = self.for_learner(learner_id, concept_id=concept_id)
        return ConceptSummary(
            learner_id=learner_id,
            concept_id=concept_id,
            attempts=len(interactions),
            scored_attempts=len(_scored_values(interactions)),
            success_rate=success_rate(interactions),
            consistency=consistency(interactions),
            last_practiced_at=interactions[-1].created_at if interactions else None,
        )

    def __len__(self) -> int:
        return len(self._entries)
