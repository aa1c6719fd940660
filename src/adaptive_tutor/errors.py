"""Exception taxonomy for the tutoring engine."""

from __future__ import annotations


class TutoringError(Exception):
    """Base class for every error raised by the engine."""


class CatalogMiss(TutoringError):
    """No catalog entry exists for a concept; resolved by the generic fallback."""

    def __init__(self, concept_id: str):
        super().__init__(f"No catalog entry for concept '{concept_id}'")
        self.concept_id = concept_id


class ScorerFailure(TutoringError):
    """The external response scorer failed to produce a usable score."""


class ScorerTimeout(ScorerFailure):
    """The external response scorer did not answer before the deadline."""


class LedgerWriteConflict(TutoringError):
    """A mastery ledger write could not be persisted."""

    def __init__(self, learner_id: str, concept_id: str, reason: str = ""):
        message = f"Mastery write failed for ({learner_id}, {concept_id})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.learner_id = learner_id
        self.concept_id = concept_id


class SessionDegraded(TutoringError):
    """Mastery writes were exhausted; the session continues without them."""


class InvalidLearnerId(TutoringError):
    """The learner is unknown, malformed, or archived. Never recovered internally."""

    def __init__(self, learner_id: object, reason: str = "unknown learner"):
        super().__init__(f"Invalid learner id {learner_id!r}: {reason}")
        self.learner_id = learner_id


class SessionNotFound(TutoringError):
    """No session is registered under the given id."""


class InteractionNotFound(TutoringError):
    """No interaction is registered under the given id."""


class RecommendationNotFound(TutoringError):
    """No recommendation is registered under the given id."""


class InvalidTransition(TutoringError):
    """The requested operation is not valid in the current state."""
