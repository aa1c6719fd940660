from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple
from uuid import uuid4

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from adaptive_tutor.catalog import ConceptCatalog, Material
from adaptive_tutor.config.schema import SessionConfig
from adaptive_tutor.data_models import DifficultyTier, Interaction, Methodology, Role, ScoringStatus
from adaptive_tutor.errors import (
    InvalidTransition,
    LedgerWriteConflict,
    SessionDegraded,
    SessionNotFound,
    TutoringError,
)
from adaptive_tutor.learning.mastery import MasteryLedger, tier_for_score
from adaptive_tutor.learning.methodology import resolve_methodology
from adaptive_tutor.learning.profiles import LearnerProfileStore
from adaptive_tutor.storage.jsonl_store import InteractionLog
from adaptive_tutor.tutoring.scoring import ResponseScorer
from adaptive_tutor.tutoring.session import (
    TIER_DIFFICULTY,
    EndReason,
    SessionState,
    TurnResult,
    TurnStatus,
    TutoringSession,
)
from adaptive_tutor.utils.logging import get_logger
from adaptive_tutor.utils.time import Clock, ensure_utc, utcnow

logger = logging.getLogger(__name__)
log = get_logger(__name__)

SessionEndHook = Callable[[TutoringSession], None]
RemediationCapHook = Callable[[str, str, datetime], None]


class TutoringSessionManager:
    """
    Drive tutoring sessions through Probing, Evaluating, Advancing/Remediating and SessionEnd.

    A session never blocks for the whole scorer timeout. `submit_response` starts the
    scorer as a task and waits at most `inline_score_wait_seconds`; a slower score is
    applied as soon as the task finishes, or pushed in through `deliver_score`. Once
    the deadline has passed, `poll` or the `expire_overdue` sweep abandons the scorer
    and continues with the neutral score marked `unscored`. Ended sessions leave the
    live table and only the last `finished_session_limit` of them stay resolvable.

    Parameters
    ----------
    catalog : ConceptCatalog
        Shared read-only material source.
    profiles : LearnerProfileStore
        Supplies role and methodology; unknown learners raise `InvalidLearnerId`.
    ledger : MasteryLedger
        Mastery state; writes are retried with exponential backoff.
    interactions : InteractionLog
        Receives one entry per issued question.
    scorer : ResponseScorer
        External grader; failures are tolerated.
    config : SessionConfig, optional
        Turn limits, thresholds and timeouts.
    clock : Callable[[], datetime], optional
        Time source, injectable for deadline tests.
    on_session_end : callable, optional
        Called with the finished session unless it was cancelled.
    on_remediation_cap : callable, optional
        Called with ``(learner_id, concept_id, now)`` when the remediation cap is hit.
    """

    def __init__(
        self,
        catalog: ConceptCatalog,
        profiles: LearnerProfileStore,
        ledger: MasteryLedger,
        interactions: InteractionLog,
        scorer: ResponseScorer,
        config: Optional[SessionConfig] = None,
        clock: Clock = utcnow,
        on_session_end: Optional[SessionEndHook] = None,
        on_remediation_cap: Optional[RemediationCapHook] = None,
    ):
        self.catalog = catalog
        self.profiles = profiles
        self.ledger = ledger
        self.interactions = interactions
        self.scorer = scorer
        self.config = config or SessionConfig()
        self.clock = clock
        self.on_session_end = on_session_end
        self.on_remediation_cap = on_remediation_cap
        self._sessions: Dict[str, TutoringSession] = {}
        # ended sessions, oldest first, kept so late status calls still resolve
        self._finished: OrderedDict[str, TutoringSession] = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._background: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------ lookup

    def get_session(self, session_id: str) -> TutoringSession:
        session = self._sessions.get(session_id) or self._finished.get(session_id)
        if session is None:
            raise SessionNotFound(f"Unknown session {session_id}")
        return session

    def active_sessions(self) -> List[TutoringSession]:
        return list(self._sessions.values())

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            # finished sessions are read-only; only live ones keep a lock entry
            if session_id in self._sessions:
                self._locks[session_id] = lock
        return lock

    def _now(self) -> datetime:
        return ensure_utc(self.clock())

    # ------------------------------------------------------------------ start

    def start_session(
        self,
        learner_id: str,
        concept_hint: Optional[str] = None,
        subject: Optional[str] = None,
        device_type: str = "web",
        role: Optional[Role] = None,
    ) -> TurnResult:
        """Open a session and issue its first guiding question."""
        now = self._now()
        profile = self.profiles.get_or_create(learner_id, role=role)
        concept_id, subject = self._choose_concept(learner_id, concept_hint, subject, now)
        score = self.ledger.get_score(learner_id, concept_id, now)
        session = TutoringSession(
            session_id=uuid4().hex,
            learner_id=learner_id,
            concept_id=concept_id,
            subject=subject,
            methodology=profile.methodology_preference,
            tier=tier_for_score(score, self.ledger.config),
            device_type=device_type,
            started_at=now,
        )
        self._sessions[session.session_id] = session
        log.info(
            "session_started",
            session_id=session.session_id,
            learner_id=learner_id,
            concept_id=concept_id,
            tier=session.tier.value,
            methodology=session.methodology.value,
        )
        return self._issue_probe(session, now, mastery_score=score)

    def _choose_concept(
        self,
        learner_id: str,
        concept_hint: Optional[str],
        subject: Optional[str],
        now: datetime,
    ) -> Tuple[str, str]:
        if concept_hint:
            return concept_hint, subject or self.catalog.subject_of(concept_hint) or "general"
        candidates = []
        for concept_id in self.catalog.concept_ids():
            entry = self.catalog.lookup(concept_id, subject)
            if entry is None or (subject and entry.subject != subject):
                continue
            score = self.ledger.get_score(learner_id, concept_id, now)
            ready = score >= self.config.advance_threshold
            candidates.append((ready, score, entry.difficulty_tier.rank, concept_id, entry.subject))
        if not candidates:
            raise InvalidTransition("No concept available to tutor; pass a concept hint")
        _, _, _, concept_id, chosen_subject = min(candidates)
        return concept_id, chosen_subject

    # ------------------------------------------------------------------ probing

    def _current_methodology(self, session: TutoringSession) -> Methodology:
        try:
            profile = self.profiles.get(session.learner_id)
        except (OSError, ValueError) as exc:
            logger.warning("Profile unavailable for %s, keeping %s: %s", session.learner_id, session.methodology.value, exc)
            return session.methodology
        return resolve_methodology(profile.role, profile.learning_style)

    def _resolve_material(self, session: TutoringSession, tier: DifficultyTier) -> Material:
        try:
            return self.catalog.resolve(session.concept_id, session.subject, tier)
        except (TutoringError, ValueError) as exc:
            logger.warning("Catalog lookup failed for %s: %s", session.concept_id, exc)
            return self.catalog.generic_fallback(session.concept_id)

    def _pick_support(self, session: TutoringSession, material: Material) -> Optional[str]:
        # Alternate analogies and real-world examples across consecutive remediation turns.
        prefer_analogy = session.consecutive_low % 2 == 1
        order = ("analogy", "example") if prefer_analogy else ("example", "analogy")
        for kind in order:
            if kind == "analogy":
                pick = self.catalog.pick_analogy(material, session.used_analogies)
                if pick is not None:
                    session.used_analogies.add(pick.text)
                    return pick.text
            else:
                pick = self.catalog.pick_real_world_example(material, session.used_examples)
                if pick is not None:
                    session.used_examples.add(pick.text)
                    return pick.text
        return None

    def _issue_probe(
        self, session: TutoringSession, now: datetime, mastery_score: Optional[float] = None
    ) -> TurnResult:
        tier = session.tier.lower() if session.remediating else session.tier
        session.methodology = self._current_methodology(session)
        material = self._resolve_material(session, tier)
        support = self._pick_support(session, material) if session.remediating else None
        session.current_visual_aid = None
        if session.methodology is Methodology.VISUAL_DEMO:
            session.current_visual_aid = self.catalog.visual_aid_for(material, session.used_visual_aids)
            if session.current_visual_aid is not None:
                session.used_visual_aids.add(session.current_visual_aid)
        pick = self.catalog.pick_guiding_question(material, session.asked_questions)
        session.asked_questions.add(pick.text)
        session.reference = [
            *material.analogies,
            *material.real_world_examples,
            *material.common_misconceptions,
        ]

        interaction = Interaction(
            interaction_id=uuid4().hex,
            session_id=session.session_id,
            learner_id=session.learner_id,
            concept_id=session.concept_id,
            subject=session.subject,
            sequence=session.turns,
            previous_interaction_id=session.last_interaction_id,
            difficulty_level=TIER_DIFFICULTY[tier],
            methodology_used=session.methodology,
            question_text=pick.text,
            support_text=support,
            repeated_question=pick.repeated,
            time_of_day=now.hour,
            device_type=session.device_type,
            created_at=now,
        )
        self.interactions.append(interaction)
        session.current_interaction_id = interaction.interaction_id
        session.turns += 1
        session.move_to(SessionState.PROBING)
        log.debug(
            "probe_issued",
            session_id=session.session_id,
            interaction_id=interaction.interaction_id,
            tier=tier.value,
            repeated=pick.repeated,
            fallback=material.is_fallback,
        )
        return self._prompt_result(session, interaction, mastery_score)

    def _prompt_result(
        self, session: TutoringSession, interaction: Interaction, mastery_score: Optional[float] = None
    ) -> TurnResult:
        return TurnResult(
            session_id=session.session_id,
            status=TurnStatus.QUESTION,
            state=session.state,
            concept_id=session.concept_id,
            interaction_id=interaction.interaction_id,
            question_text=interaction.question_text,
            support_text=interaction.support_text,
            visual_aid=session.current_visual_aid,
            repeated_question=interaction.repeated_question,
            difficulty_level=interaction.difficulty_level,
            methodology=interaction.methodology_used,
            last_score=session.last_score,
            mastery_score=mastery_score,
            degraded=session.degraded,
        )

    def _status_result(self, session: TutoringSession, status: TurnStatus) -> TurnResult:
        return TurnResult(
            session_id=session.session_id,
            status=status,
            state=session.state,
            concept_id=session.concept_id,
            interaction_id=session.current_interaction_id,
            last_score=session.last_score,
            degraded=session.degraded,
            end_reason=session.end_reason,
        )

    # ------------------------------------------------------------------ evaluating

    async def submit_response(
        self,
        session_id: str,
        interaction_id: str,
        response_text: str,
        latency_ms: Optional[int] = None,
    ) -> TurnResult:
        """
        Record the learner's answer and try to score it inline.

        Returns the next question when the score arrives within the inline wait,
        otherwise an ``awaiting_score`` result; the session then stays in Evaluating
        until `poll` or `deliver_score` resolves it.
        """
        session = self.get_session(session_id)
        async with self._lock_for(session_id):
            if session.ended:
                raise InvalidTransition(f"Session {session_id} has ended")
            if session.state is not SessionState.PROBING or interaction_id != session.current_interaction_id:
                raise InvalidTransition(
                    f"Interaction {interaction_id} is not the open question of session {session_id}"
                )
            now = self._now()
            interaction = self.interactions.get(interaction_id)
            if latency_ms is None:
                latency_ms = max(0, int((now - ensure_utc(interaction.created_at)).total_seconds() * 1000))
            interaction = self.interactions.record_response(interaction_id, response_text, latency_ms)

            session.move_to(SessionState.EVALUATING)
            session.deadline = now + timedelta(seconds=self.config.scorer_timeout_seconds)
            session.pending_task = asyncio.ensure_future(
                self.scorer.score(interaction.question_text, response_text, list(session.reference))
            )
            await asyncio.wait({session.pending_task}, timeout=self.config.inline_score_wait_seconds)
            if not session.pending_task.done():
                log.debug("score_deferred", session_id=session_id, interaction_id=interaction_id)
                session.pending_task.add_done_callback(
                    lambda done: self._on_deferred_outcome(session_id, interaction_id, done)
                )
                return self._status_result(session, TurnStatus.AWAITING_SCORE)
            score, status = self._outcome(session.pending_task, interaction_id)
            return await self._complete_evaluation(session, score, status, self._now())

    async def poll(self, session_id: str) -> TurnResult:
        """
        Resume a session on the learner's next contact.

        Resolves a finished scorer task, or applies the neutral score once the scorer
        deadline has passed. A session waiting on neither simply re-presents its state.
        """
        session = self.get_session(session_id)
        async with self._lock_for(session_id):
            if session.ended:
                return self._status_result(session, TurnStatus.SESSION_ENDED)
            if session.state is SessionState.PROBING:
                return self._prompt_result(session, self.interactions.get(session.current_interaction_id))
            now = self._now()
            task = session.pending_task
            if task is not None and task.done():
                score, status = self._outcome(task, session.current_interaction_id)
                return await self._complete_evaluation(session, score, status, now)
            if session.deadline is not None and now >= session.deadline:
                if task is not None:
                    task.cancel()
                log.warning(
                    "scorer_timeout",
                    session_id=session_id,
                    interaction_id=session.current_interaction_id,
                )
                return await self._complete_evaluation(
                    session, self.config.neutral_score, ScoringStatus.UNSCORED, now
                )
            return self._status_result(session, TurnStatus.AWAITING_SCORE)

    async def deliver_score(
        self, interaction_id: str, success_indicator: float, now: Optional[datetime] = None
    ) -> Optional[TurnResult]:
        """
        Push-style scorer callback.

        A score for the open evaluation of a live session advances it exactly like an
        inline score. A score arriving after the session ended only updates the
        mastery ledger; the session state is unaffected and None is returned.
        """
        if not 0.0 <= success_indicator <= 1.0:
            raise ValueError(f"success_indicator must be within [0, 1], got {success_indicator}")
        interaction = self.interactions.get(interaction_id)
        if interaction.is_final:
            raise InvalidTransition(f"Interaction {interaction_id} is already {interaction.scoring_status.value}")
        if interaction.response_text is None:
            raise InvalidTransition(f"Interaction {interaction_id} has not been answered")
        now = ensure_utc(now) if now is not None else self._now()
        session = self._sessions.get(interaction.session_id)
        if session is not None and not session.ended:
            async with self._lock_for(session.session_id):
                if session.state is SessionState.EVALUATING and session.current_interaction_id == interaction_id:
                    if session.pending_task is not None and not session.pending_task.done():
                        session.pending_task.cancel()
                    return await self._complete_evaluation(session, success_indicator, ScoringStatus.SCORED, now)
        await self._apply_late_score(interaction_id, success_indicator, ScoringStatus.SCORED, now)
        return None

    def _outcome(self, task: asyncio.Future, interaction_id: Optional[str]) -> Tuple[float, ScoringStatus]:
        if task.cancelled():
            return self.config.neutral_score, ScoringStatus.UNSCORED
        exc = task.exception()
        if exc is not None:
            log.warning("scorer_failure", interaction_id=interaction_id, error=str(exc))
            return self.config.neutral_score, ScoringStatus.UNSCORED
        try:
            value = float(task.result())
        except (TypeError, ValueError) as exc:
            log.warning("scorer_failure", interaction_id=interaction_id, error=f"unusable score: {exc}")
            return self.config.neutral_score, ScoringStatus.UNSCORED
        if not 0.0 <= value <= 1.0:
            log.warning("scorer_out_of_range", interaction_id=interaction_id, value=value)
            return self.config.neutral_score, ScoringStatus.UNSCORED
        return value, ScoringStatus.SCORED

    async def _complete_evaluation(
        self,
        session: TutoringSession,
        success_indicator: float,
        status: ScoringStatus,
        now: datetime,
    ) -> TurnResult:
        interaction_id = session.current_interaction_id
        session.pending_task = None
        session.deadline = None
        self.interactions.finalize(interaction_id, success_indicator, status, now)
        session.last_score = success_indicator
        session.last_interaction_id = interaction_id

        previous_tier = session.tier
        new_score = await self._write_mastery(session, success_indicator, now)
        if new_score is not None:
            session.tier = tier_for_score(new_score, self.ledger.config)
            self._infer_profile_tags(session, new_score, now)

        if success_indicator >= self.config.advance_threshold:
            session.move_to(SessionState.ADVANCING)
            session.consecutive_low = 0
            session.remediating = False
            if session.tier.rank > previous_tier.rank:
                log.info(
                    "tier_escalated",
                    session_id=session.session_id,
                    from_tier=previous_tier.value,
                    to_tier=session.tier.value,
                )
        else:
            session.move_to(SessionState.REMEDIATING)
            session.consecutive_low += 1
            session.remediating = True
            if session.consecutive_low > self.config.remediation_cap:
                if self.on_remediation_cap is not None:
                    self.on_remediation_cap(session.learner_id, session.concept_id, now)
                return self._finish(session, EndReason.REMEDIATION_CAP, now)

        log.debug(
            "evaluation_complete",
            session_id=session.session_id,
            state=session.state.value,
            score=success_indicator,
            status=status.value,
            mastery=new_score,
        )
        if session.turns >= self.config.max_turns:
            return self._finish(session, EndReason.MAX_TURNS, now)
        return self._issue_probe(session, now, mastery_score=new_score)

    # ------------------------------------------------------------------ ledger

    def _log_retry(self, retry_state: RetryCallState) -> None:
        log.warning(
            "ledger_write_retry",
            attempt=retry_state.attempt_number,
            error=str(retry_state.outcome.exception()) if retry_state.outcome else None,
        )

    async def _update_ledger(
        self, learner_id: str, concept_id: str, success_indicator: float, now: datetime, subject: str
    ) -> float:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.ledger_write_retries + 1),
            wait=wait_exponential(multiplier=self.config.ledger_retry_backoff_seconds, max=5),
            retry=retry_if_exception_type(LedgerWriteConflict),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return self.ledger.update(learner_id, concept_id, success_indicator, now=now, subject=subject)

    async def _write_mastery(
        self, session: TutoringSession, success_indicator: float, now: datetime
    ) -> Optional[float]:
        try:
            return await self._update_ledger(
                session.learner_id, session.concept_id, success_indicator, now, session.subject
            )
        except LedgerWriteConflict as exc:
            session.degraded = True
            session.degradation = SessionDegraded(f"Session {session.session_id} degraded: {exc}")
            log.error("session_degraded", session_id=session.session_id, error=str(exc))
            return None

    async def _apply_late_score(
        self, interaction_id: str, success_indicator: float, status: ScoringStatus, now: datetime
    ) -> None:
        interaction = self.interactions.get(interaction_id)
        if interaction.is_final:
            logger.debug("Ignoring late outcome for final interaction %s", interaction_id)
            return
        self.interactions.finalize(interaction_id, success_indicator, status, now)
        if status is not ScoringStatus.SCORED:
            return
        try:
            await self._update_ledger(
                interaction.learner_id, interaction.concept_id, success_indicator, now, interaction.subject
            )
        except LedgerWriteConflict as exc:
            log.error("late_score_dropped", interaction_id=interaction_id, error=str(exc))
            return
        log.info("late_score_applied", interaction_id=interaction_id, score=success_indicator)

    def _infer_profile_tags(self, session: TutoringSession, mastery_score: float, now: datetime) -> None:
        record = self.ledger.get_record(session.learner_id, session.concept_id, now)
        count = record.interaction_count if record else 0
        try:
            self.profiles.record_mastery_signal(session.learner_id, session.subject, mastery_score, count)
        except (OSError, ValueError) as exc:
            logger.warning("Could not update profile tags for %s: %s", session.learner_id, exc)

    # ------------------------------------------------------------------ ending

    def _finish(self, session: TutoringSession, reason: EndReason, now: datetime, notify: bool = True) -> TurnResult:
        session.move_to(SessionState.SESSION_END)
        session.end_reason = reason
        session.ended_at = now
        session.deadline = None
        log.info(
            "session_ended",
            session_id=session.session_id,
            learner_id=session.learner_id,
            reason=reason.value,
            turns=session.turns,
            degraded=session.degraded,
        )
        if reason is not EndReason.CANCELLED:
            self._refresh_learning_style(session)
        if notify and self.config.generate_on_session_end and self.on_session_end is not None:
            try:
                self.on_session_end(session)
            except (TutoringError, OSError) as exc:
                logger.error("Post-session hook failed for %s: %s", session.session_id, exc)
        result = self._status_result(session, TurnStatus.SESSION_ENDED)
        self._retire(session)
        return result

    def _refresh_learning_style(self, session: TutoringSession) -> None:
        try:
            history = self.interactions.for_learner(session.learner_id)
            self.profiles.refresh_learning_style(session.learner_id, history)
        except (TutoringError, OSError, ValueError) as exc:
            logger.warning("Could not refresh learning style for %s: %s", session.learner_id, exc)

    def _retire(self, session: TutoringSession) -> None:
        """Move an ended session out of the live table into the bounded finished index."""
        session.release_material()
        self._sessions.pop(session.session_id, None)
        self._locks.pop(session.session_id, None)
        self._finished[session.session_id] = session
        while len(self._finished) > self.config.finished_session_limit:
            self._finished.popitem(last=False)

    def _on_deferred_outcome(self, session_id: str, interaction_id: str, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        follow_up = asyncio.ensure_future(self._resolve_deferred(session_id, interaction_id, task))
        self._background.add(follow_up)
        follow_up.add_done_callback(self._background.discard)

    async def _resolve_deferred(self, session_id: str, interaction_id: str, task: asyncio.Future) -> None:
        """Apply a score that finished after `submit_response` returned, unless something else already did."""
        session = self._sessions.get(session_id)
        if session is None:
            return
        async with self._lock_for(session_id):
            if (
                session.ended
                or session.state is not SessionState.EVALUATING
                or session.current_interaction_id != interaction_id
                or session.pending_task is not task
            ):
                return
            score, status = self._outcome(task, interaction_id)
            log.info(
                "deferred_score_applied",
                session_id=session_id,
                interaction_id=interaction_id,
                status=status.value,
            )
            await self._complete_evaluation(session, score, status, self._now())

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Close every evaluation whose scorer deadline has passed with the neutral score.

        Covers sessions whose learner never came back to `poll`. Returns how many
        evaluations were closed.
        """
        now = ensure_utc(now) if now is not None else self._now()
        expired = 0
        for session in list(self._sessions.values()):
            if session.state is not SessionState.EVALUATING or session.deadline is None or now < session.deadline:
                continue
            async with self._lock_for(session.session_id):
                if session.ended or session.state is not SessionState.EVALUATING:
                    continue
                if session.deadline is None or now < session.deadline:
                    continue
                if session.pending_task is not None:
                    session.pending_task.cancel()
                log.warning(
                    "scorer_timeout",
                    session_id=session.session_id,
                    interaction_id=session.current_interaction_id,
                )
                await self._complete_evaluation(session, self.config.neutral_score, ScoringStatus.UNSCORED, now)
                expired += 1
        return expired

    def _on_late_outcome(self, interaction_id: str, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        score, status = self._outcome(task, interaction_id)
        follow_up = asyncio.ensure_future(self._apply_late_score(interaction_id, score, status, self._now()))
        self._background.add(follow_up)
        follow_up.add_done_callback(self._background.discard)

    async def end_session(self, session_id: str) -> TurnResult:
        """Explicit learner exit. A score still in flight is applied to the ledger when it lands."""
        session = self.get_session(session_id)
        async with self._lock_for(session_id):
            if session.ended:
                return self._status_result(session, TurnStatus.SESSION_ENDED)
            now = self._now()
            task = session.pending_task
            interaction_id = session.current_interaction_id
            if session.state is SessionState.EVALUATING and task is not None:
                session.pending_task = None
                if task.done():
                    score, status = self._outcome(task, interaction_id)
                    await self._apply_late_score(interaction_id, score, status, now)
                else:
                    task.add_done_callback(lambda done: self._on_late_outcome(interaction_id, done))
            return self._finish(session, EndReason.LEARNER_EXIT, now)

    async def cancel(self, session_id: str) -> TurnResult:
        """
        Stop a session in whatever state it is in.

        Logged interactions and ledger entries stay as written. An answered question
        whose score was still outstanding is closed as unscored without touching the
        ledger, so it remains available for offline rescoring.
        """
        session = self.get_session(session_id)
        async with self._lock_for(session_id):
            if session.ended:
                return self._status_result(session, TurnStatus.SESSION_ENDED)
            now = self._now()
            if session.state is SessionState.EVALUATING:
                if session.pending_task is not None:
                    session.pending_task.cancel()
                    session.pending_task = None
                self.interactions.finalize(
                    session.current_interaction_id, self.config.neutral_score, ScoringStatus.UNSCORED, now
                )
            return self._finish(session, EndReason.CANCELLED, now, notify=False)
