from __future__ import annotations

import json
import logging
import re
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol
from urllib.parse import quote, unquote

from pydantic import ValidationError

from adaptive_tutor.data_models import (
    EducationLevel,
    Interaction,
    LearnerProfile,
    LearningStyle,
    Role,
    ScoringStatus,
)
from adaptive_tutor.errors import InvalidLearnerId
from adaptive_tutor.learning.methodology import METHODOLOGY_STYLE, resolve_methodology
from adaptive_tutor.utils.time import utcnow

logger = logging.getLogger(__name__)

LEARNER_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.@:-]{0,127}$")

# Fields callers may change through `update`; everything else is derived or owned upstream.
EDITABLE_FIELDS = {
    "role",
    "learning_style",
    "interests",
    "strengths",
    "weaknesses",
    "age",
    "education_level",
    "cultural_context",
}

WEAKNESS_BELOW = 0.34
STRENGTH_AT_OR_ABOVE = 0.67
MIN_INTERACTIONS_FOR_INFERENCE = 3
# Styles that must have scored evidence before a style refresh replaces the stored scores.
MIN_STYLES_FOR_REFRESH = 2


def validate_learner_id(learner_id: object) -> str:
    """Return the id unchanged when it is a well-formed opaque identifier."""
    if not isinstance(learner_id, str) or not LEARNER_ID_PATTERN.match(learner_id):
        raise InvalidLearnerId(learner_id, "malformed identifier")
    return learner_id


@dataclass
class IdentityDetails:
    """Personal data the identity source may hold about a learner."""

    occupation: Optional[str] = None
    birth_date: Optional[date] = None


class IdentitySource(Protocol):
    """Upstream user-management collaborator that owns learner ids and roles."""

    def role_for(self, learner_id: str) -> Optional[Role]:
        """Role of a known learner, or None when the id is unknown."""

    def details_for(self, learner_id: str) -> Optional[IdentityDetails]:
        """Occupation and birth date used to seed a new profile, when known."""


class StaticIdentitySource:
    """
    In-process identity source backed by a role mapping.

    With `default_role` set, every well-formed id is accepted with that role unless it
    was explicitly removed; otherwise only mapped ids are known.
    """

    def __init__(
        self,
        roles: Optional[Mapping[str, Role]] = None,
        default_role: Optional[Role] = None,
        details: Optional[Mapping[str, IdentityDetails]] = None,
    ):
        self.roles: Dict[str, Role] = dict(roles or {})
        self.default_role = default_role
        self.details: Dict[str, IdentityDetails] = dict(details or {})
        self.removed: set[str] = set()

    def role_for(self, learner_id: str) -> Optional[Role]:
        if learner_id in self.removed:
            return None
        return self.roles.get(learner_id, self.default_role)

    def details_for(self, learner_id: str) -> Optional[IdentityDetails]:
        return self.details.get(learner_id)

    def register(
        self,
        learner_id: str,
        role: Role,
        occupation: Optional[str] = None,
        birth_date: Optional[date] = None,
    ) -> None:
        self.roles[learner_id] = role
        if occupation is not None or birth_date is not None:
            self.details[learner_id] = IdentityDetails(occupation=occupation, birth_date=birth_date)
        self.removed.discard(learner_id)

    def remove(self, learner_id: str) -> None:
        self.roles.pop(learner_id, None)
        self.removed.add(learner_id)


def estimate_education_level(occupation: Optional[str]) -> EducationLevel:
    """Rough education level from a free-text occupation."""
    if not occupation:
        return EducationLevel.UNKNOWN
    lowered = occupation.lower()
    if "student" in lowered or "pupil" in lowered:
        return EducationLevel.STUDENT
    if "doctor" in lowered or "phd" in lowered or "professor" in lowered:
        return EducationLevel.DOCTORATE
    if "engineer" in lowered or "developer" in lowered:
        return EducationLevel.BACHELOR
    return EducationLevel.UNKNOWN


def estimate_age(birth_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Whole years between `birth_date` and `today`."""
    if birth_date is None:
        return None
    today = today or utcnow().date()
    age = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        age -= 1
    return max(0, age)


def infer_learning_style(interactions: Iterable[Interaction]) -> LearningStyle:
    """
    Recompute style affinities from methodology outcomes.

    Each style's raw preference is 25 scaled by how its methodologies' success rate
    compares with the overall rate (25 when unobserved). The four values are then
    normalized to sum to 100.
    """
    scored = [
        item for item in interactions
        if item.scoring_status is ScoringStatus.SCORED and item.success_indicator is not None
    ]
    if not scored:
        return LearningStyle()
    overall = sum(item.success_indicator for item in scored) / len(scored)
    by_style: Dict[str, List[float]] = defaultdict(list)
    for item in scored:
        by_style[METHODOLOGY_STYLE[item.methodology_used]].append(item.success_indicator)

    raw: Dict[str, float] = {}
    for style in ("visual", "auditory", "kinesthetic", "reading"):
        values = by_style.get(style)
        if not values or overall <= 0:
            raw[style] = 25.0
        else:
            raw[style] = (sum(values) / len(values)) / overall * 25.0
    total = sum(raw.values())
    return LearningStyle(**{style: round(value / total * 100, 2) for style, value in raw.items()})


class LearnerProfileStore:
    """
    Persist learner profiles as one JSON file per learner.

    Profiles are created lazily on first tutoring contact with role-based defaults.
    Every mutation recomputes `profile_completeness` and the derived methodology
    preference before the profile is written back. Profiles are never deleted; an
    upstream removal archives them and later access raises `InvalidLearnerId`.
    """

    def __init__(self, base_dir: Path, identity: Optional[IdentitySource] = None):
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.identity = identity
        self._lock = threading.RLock()

    def profile_path(self, learner_id: str) -> Path:
        """Return the JSON file path for a given learner ID."""
        return self.base_dir / f"{quote(learner_id, safe='')}.json"

    def _read(self, learner_id: str) -> Optional[LearnerProfile]:
        path = self.profile_path(learner_id)
        if not path.exists():
            return None
        with path.open("r", encoding="utf-8") as handle:
            return LearnerProfile.model_validate(json.load(handle))

    def _write(self, profile: LearnerProfile) -> None:
        path = self.profile_path(profile.learner_id)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as handle:
            handle.write(profile.model_dump_json(indent=2))
        tmp.replace(path)

    @staticmethod
    def _refresh_derived(profile: LearnerProfile) -> LearnerProfile:
        profile.profile_completeness = profile.compute_completeness()
        profile.methodology_preference = resolve_methodology(profile.role, profile.learning_style)
        profile.updated_at = utcnow()
        return profile

    def _resolve_role(self, learner_id: str, role: Optional[Role]) -> Role:
        if self.identity is None:
            return role or Role.STUDENT
        known = self.identity.role_for(learner_id)
        if known is None:
            raise InvalidLearnerId(learner_id, "not known to the identity source")
        return known

    def get(self, learner_id: str) -> LearnerProfile:
        """Load an existing, non-archived profile."""
        validate_learner_id(learner_id)
        with self._lock:
            profile = self._read(learner_id)
        if profile is None:
            raise InvalidLearnerId(learner_id, "no profile")
        if profile.archived:
            raise InvalidLearnerId(learner_id, "archived")
        return profile

    def get_or_create(self, learner_id: str, role: Optional[Role] = None) -> LearnerProfile:
        """
        Return the learner's profile, creating one with role defaults if absent.

        The identity source, when configured, decides whether the id exists and which
        role it carries; an explicit `role` is only honoured without one.
        """
        validate_learner_id(learner_id)
        with self._lock:
            profile = self._read(learner_id)
            if profile is not None:
                if profile.archived:
                    raise InvalidLearnerId(learner_id, "archived")
                if self.identity is not None and self.identity.role_for(learner_id) is None:
                    raise InvalidLearnerId(learner_id, "removed upstream")
                return profile
            resolved_role = self._resolve_role(learner_id, role)
            profile = LearnerProfile(learner_id=learner_id, role=resolved_role)
            details = self.identity.details_for(learner_id) if self.identity is not None else None
            if details is not None:
                profile.age = estimate_age(details.birth_date)
                profile.education_level = estimate_education_level(details.occupation)
            profile = self._refresh_derived(profile)
            self._write(profile)
        logger.info("Created learner profile %s (role=%s)", learner_id, resolved_role.value)
        return profile

    def update(self, learner_id: str, fields: Mapping[str, Any]) -> LearnerProfile:
        """Merge editable fields into the profile and recompute derived values."""
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")
        with self._lock:
            profile = self.get(learner_id)
            payload = profile.model_dump()
            for key, value in fields.items():
                if key == "learning_style" and isinstance(value, Mapping):
                    merged = dict(payload["learning_style"])
                    merged.update(value)
                    payload[key] = merged
                elif key == "learning_style" and isinstance(value, LearningStyle):
                    payload[key] = value.model_dump()
                else:
                    payload[key] = value
            try:
                updated = LearnerProfile.model_validate(payload)
            except ValidationError as exc:
                raise ValueError(f"Invalid profile update for {learner_id}: {exc}") from exc
            updated = self._refresh_derived(updated)
            self._write(updated)
        return updated

    def archive(self, learner_id: str) -> None:
        """Logically archive a profile after the learner was removed upstream."""
        validate_learner_id(learner_id)
        with self._lock:
            profile = self._read(learner_id)
            if profile is None or profile.archived:
                return
            profile.archived = True
            profile.updated_at = utcnow()
            self._write(profile)
        logger.info("Archived learner profile %s", learner_id)

    def learner_ids(self, include_archived: bool = False) -> List[str]:
        ids: List[str] = []
        for path in sorted(self.base_dir.glob("*.json")):
            learner_id = unquote(path.stem)
            if include_archived:
                ids.append(learner_id)
                continue
            profile = self._read(learner_id)
            if profile is not None and not profile.archived:
                ids.append(learner_id)
        return ids

    def record_mastery_signal(
        self, learner_id: str, subject: str, mastery_score: float, interaction_count: int
    ) -> LearnerProfile:
        """
        Passively tag a subject as a strength or weakness from mastery evidence.

        Nothing changes before `MIN_INTERACTIONS_FOR_INFERENCE` interactions.
        """
        with self._lock:
            profile = self.get(learner_id)
            if interaction_count < MIN_INTERACTIONS_FOR_INFERENCE or not subject:
                return profile
            strengths = list(profile.strengths)
            weaknesses = list(profile.weaknesses)
            if mastery_score < WEAKNESS_BELOW and subject not in weaknesses:
                weaknesses.append(subject)
            elif mastery_score >= STRENGTH_AT_OR_ABOVE:
                if subject not in strengths:
                    strengths.append(subject)
                if subject in weaknesses:
                    weaknesses.remove(subject)
            if strengths == profile.strengths and weaknesses == profile.weaknesses:
                return profile
            logger.info(
                "Inferred profile tags for %s: strengths=%s weaknesses=%s",
                learner_id,
                strengths,
                weaknesses,
            )
            return self.update(learner_id, {"strengths": strengths, "weaknesses": weaknesses})

    def refresh_learning_style(self, learner_id: str, interactions: Iterable[Interaction]) -> LearnerProfile:
        """
        Replace the learner's style scores with ones inferred from their interactions.

        The stored scores are kept until scored interactions cover at least
        `MIN_STYLES_FOR_REFRESH` styles; a single methodology gives nothing to compare.
        """
        history = list(interactions)
        observed = {
            METHODOLOGY_STYLE[item.methodology_used]
            for item in history
            if item.scoring_status is ScoringStatus.SCORED and item.success_indicator is not None
        }
        if len(observed) < MIN_STYLES_FOR_REFRESH:
            return self.get(learner_id)
        style = infer_learning_style(history)
        logger.info("Refreshed learning style for %s from %s interactions", learner_id, len(history))
        return self.update(learner_id, {"learning_style": style})
