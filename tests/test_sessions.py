"""Tests for the tutoring session state machine."""

from __future__ import annotations

import asyncio

import pytest

from adaptive_tutor.catalog import CONCEPT_LIBRARY
from adaptive_tutor.data_models import (
    DifficultyTier,
    Interaction,
    Methodology,
    RecommendationType,
    ScoringStatus,
    Urgency,
)
from adaptive_tutor.errors import (
    InvalidLearnerId,
    InvalidTransition,
    LedgerWriteConflict,
    SessionDegraded,
    SessionNotFound,
)
from adaptive_tutor.learning import MasteryLedger
from adaptive_tutor.system import TutoringSystem
from adaptive_tutor.tutoring import EndReason, SessionState, TurnStatus, TutoringSessionManager
from conftest import FailingScorer, FakeClock, NeverScorer, ScriptedScorer


def build_system(settings, scorer, clock):
    return TutoringSystem(settings, scorer=scorer, clock=clock)


def with_session(settings, **updates):
    return settings.model_copy(update={"session": settings.session.model_copy(update=updates)})


async def answer_all(manager, first, answers):
    turn = first
    for answer in answers:
        turn = await manager.submit_response(turn.session_id, turn.interaction_id, answer)
    return turn


def test_fractions_scenario_escalates_to_harder_tier(settings, clock):
    system = build_system(settings, ScriptedScorer([0.9, 0.85, 0.95]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("new-learner", concept_hint="fractions")
        assert first.difficulty_level == 3
        turns = [first]
        for answer in ("half", "a quarter", "one of four"):
            previous = turns[-1]
            turns.append(await manager.submit_response(previous.session_id, previous.interaction_id, answer))
        return turns

    turns = asyncio.run(scenario())
    session = manager.get_session(turns[0].session_id)

    assert [turn.status for turn in turns[1:]] == [TurnStatus.QUESTION] * 3
    assert turns[1].difficulty_level == 6
    assert session.tier is not DifficultyTier.BASIC
    assert session.tier is DifficultyTier.ADVANCED
    assert system.ledger.get_score("new-learner", "fractions", clock()) == pytest.approx(0.7136, abs=1e-4)
    assert session.transitions.count(SessionState.ADVANCING) == 3


def test_interactions_form_a_causal_chain(settings, clock):
    system = build_system(settings, ScriptedScorer([0.9, 0.2]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("chain", concept_hint="loops")
        return await answer_all(manager, first, ["a loop repeats", "no idea"])

    last = asyncio.run(scenario())
    logged = system.interactions.for_session(last.session_id)
    assert [item.sequence for item in logged] == [0, 1, 2]
    assert logged[0].previous_interaction_id is None
    assert logged[1].previous_interaction_id == logged[0].interaction_id
    assert logged[2].previous_interaction_id == logged[1].interaction_id
    assert logged[0].time_of_day == clock().hour
    assert len({item.question_text for item in logged}) == 3


def test_four_low_scores_end_session_with_urgent_recommendation(settings, clock):
    system = build_system(settings, ScriptedScorer([0.2, 0.1, 0.3, 0.2]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("struggler", concept_hint="pythagoras")
        turns = []
        turn = first
        for answer in ("um", "not sure", "the long one", "pass"):
            turn = await manager.submit_response(turn.session_id, turn.interaction_id, answer)
            turns.append(turn)
        return first, turns

    first, turns = asyncio.run(scenario())

    assert [turn.status for turn in turns[:3]] == [TurnStatus.QUESTION] * 3
    assert turns[0].support_text is not None
    assert turns[-1].status is TurnStatus.SESSION_ENDED
    assert turns[-1].end_reason is EndReason.REMEDIATION_CAP
    session = manager.get_session(first.session_id)
    assert session.state is SessionState.SESSION_END

    pending = system.recommendations.get_recommendations("struggler", now=clock())
    urgent = [
        row
        for row in pending
        if row.type in (RecommendationType.MOTIVATION_BOOST, RecommendationType.RESOURCE_RECOMMENDATION)
        and row.urgency is Urgency.HIGH
    ]
    assert urgent
    assert urgent[0].concept_id == "pythagoras"


def test_remediation_lowers_difficulty(settings, clock):
    system = build_system(settings, ScriptedScorer([0.95, 0.95, 0.1]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("dip", concept_hint="variables")
        return await answer_all(manager, first, ["box", "label", "??"])

    turn = asyncio.run(scenario())
    session = manager.get_session(turn.session_id)
    assert session.remediating
    assert turn.difficulty_level == 3
    assert session.tier is DifficultyTier.INTERMEDIATE


def test_max_turns_ends_session(settings, clock):
    settings = with_session(settings, max_turns=2)
    system = build_system(settings, ScriptedScorer([0.9, 0.9]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("brief", concept_hint="gravity")
        return await answer_all(manager, first, ["things fall", "the moon"])

    last = asyncio.run(scenario())
    assert last.status is TurnStatus.SESSION_ENDED
    assert last.end_reason is EndReason.MAX_TURNS


def test_slow_scorer_times_out_to_neutral_unscored(settings):
    clock = FakeClock()
    settings = with_session(settings, inline_score_wait_seconds=0.01)
    system = build_system(settings, NeverScorer(), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("patient", concept_hint="ohms_law")
        waiting = await manager.submit_response(first.session_id, first.interaction_id, "voltage pushes")
        clock.advance(seconds=30)
        still_waiting = await manager.poll(first.session_id)
        clock.advance(seconds=91)
        resumed = await manager.poll(first.session_id)
        return first, waiting, still_waiting, resumed

    first, waiting, still_waiting, resumed = asyncio.run(scenario())

    assert waiting.status is TurnStatus.AWAITING_SCORE
    assert waiting.state is SessionState.EVALUATING
    assert still_waiting.status is TurnStatus.AWAITING_SCORE
    assert resumed.status is TurnStatus.QUESTION
    assert resumed.last_score == 0.5
    timed_out = system.interactions.get(first.interaction_id)
    assert timed_out.scoring_status is ScoringStatus.UNSCORED
    assert timed_out.success_indicator == 0.5
    assert [item.interaction_id for item in system.interactions.pending_reprocessing()] == [first.interaction_id]


def test_scorer_failure_uses_neutral_score(settings, clock):
    system = build_system(settings, FailingScorer(), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("unlucky", concept_hint="loops")
        return first, await manager.submit_response(first.session_id, first.interaction_id, "for each")

    first, turn = asyncio.run(scenario())
    assert turn.status is TurnStatus.QUESTION
    assert turn.last_score == 0.5
    assert system.interactions.get(first.interaction_id).scoring_status is ScoringStatus.UNSCORED


def test_pushed_score_resolves_waiting_session(settings, clock):
    settings = with_session(settings, inline_score_wait_seconds=0)
    system = build_system(settings, NeverScorer(), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("pushed", concept_hint="gravity")
        await manager.submit_response(first.session_id, first.interaction_id, "it pulls down")
        return first, await manager.deliver_score(first.interaction_id, 0.9)

    first, turn = asyncio.run(scenario())
    assert turn.status is TurnStatus.QUESTION
    assert system.interactions.get(first.interaction_id).success_indicator == 0.9
    assert system.ledger.get_score("pushed", "gravity", clock()) == pytest.approx(0.36)


def test_late_score_after_exit_updates_ledger_only(settings, clock):
    settings = with_session(settings, inline_score_wait_seconds=0)
    system = build_system(settings, NeverScorer(), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("leaver", concept_hint="fractions")
        await manager.submit_response(first.session_id, first.interaction_id, "half")
        ended = await manager.end_session(first.session_id)
        late = await manager.deliver_score(first.interaction_id, 0.9)
        return first, ended, late

    first, ended, late = asyncio.run(scenario())
    session = manager.get_session(first.session_id)

    assert ended.end_reason is EndReason.LEARNER_EXIT
    assert late is None
    assert session.state is SessionState.SESSION_END
    assert system.ledger.get_score("leaver", "fractions", clock()) == pytest.approx(0.36)
    assert system.interactions.get(first.interaction_id).scoring_status is ScoringStatus.SCORED


class BrokenLedger(MasteryLedger):
    attempts = 0

    def update(self, *args, **kwargs):
        BrokenLedger.attempts += 1
        raise LedgerWriteConflict("learner", "concept", "disk full")


def test_ledger_failures_degrade_but_continue(settings, clock, catalog, profiles, interactions):
    BrokenLedger.attempts = 0
    ledger = BrokenLedger(settings.paths.ledger_dir, settings.mastery)
    manager = TutoringSessionManager(
        catalog, profiles, ledger, interactions, ScriptedScorer([0.9]), config=settings.session, clock=clock
    )

    async def scenario():
        first = manager.start_session("degraded", concept_hint="fractions")
        return first, await manager.submit_response(first.session_id, first.interaction_id, "half")

    first, turn = asyncio.run(scenario())
    session = manager.get_session(first.session_id)

    assert BrokenLedger.attempts == settings.session.ledger_write_retries + 1
    assert session.degraded
    assert isinstance(session.degradation, SessionDegraded)
    assert "disk full" in str(session.degradation)
    assert turn.degraded
    assert turn.status is TurnStatus.QUESTION
    assert turn.question_text
    assert interactions.get(first.interaction_id).scoring_status is ScoringStatus.SCORED


def test_unknown_concept_uses_fallback_questions(settings, clock):
    system = build_system(settings, ScriptedScorer([]), clock)
    turn = system.sessions.start_session("curious", concept_hint="photosynthesis", subject="biology")
    assert "photosynthesis" in turn.question_text
    assert turn.support_text is None


def test_start_without_hint_picks_weakest_concept(settings, clock):
    system = build_system(settings, ScriptedScorer([]), clock)
    system.ledger.update("picker", "fractions", 1.0, now=clock())
    turn = system.sessions.start_session("picker", subject="mathematics")
    assert turn.concept_id == "pythagoras"


def test_invalid_learner_propagates(settings, clock):
    system = build_system(settings, ScriptedScorer([]), clock)
    with pytest.raises(InvalidLearnerId):
        system.sessions.start_session("bad id!")


def test_answering_wrong_interaction_is_rejected(settings, clock):
    system = build_system(settings, ScriptedScorer([0.9]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("strict", concept_hint="loops")
        with pytest.raises(InvalidTransition):
            await manager.submit_response(first.session_id, "not-the-question", "answer")
        with pytest.raises(SessionNotFound):
            await manager.poll("no-such-session")

    asyncio.run(scenario())


def test_cancel_keeps_written_entries(settings, clock):
    system = build_system(settings, ScriptedScorer([0.9]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("canceller", concept_hint="variables")
        second = await manager.submit_response(first.session_id, first.interaction_id, "a labelled box")
        cancelled = await manager.cancel(first.session_id)
        with pytest.raises(InvalidTransition):
            await manager.submit_response(first.session_id, second.interaction_id, "late answer")
        return first, cancelled

    first, cancelled = asyncio.run(scenario())
    assert cancelled.end_reason is EndReason.CANCELLED
    assert system.ledger.get_score("canceller", "variables", clock()) == pytest.approx(0.36)
    assert len(system.interactions.for_session(first.session_id)) == 2
    assert system.recommendations.get_recommendations("canceller") == []


class ValueScorer:
    """Returns a fixed value, whatever its type."""

    def __init__(self, value):
        self.value = value

    async def score(self, question_text, response_text, reference=()):
        return self.value


class SlowScorer:
    def __init__(self, value: float, delay: float):
        self.value = value
        self.delay = delay

    async def score(self, question_text, response_text, reference=()):
        await asyncio.sleep(self.delay)
        return self.value


@pytest.mark.parametrize("value", [None, "great", float("nan")])
def test_unusable_score_falls_back_to_neutral(settings, clock, value):
    system = build_system(settings, ValueScorer(value), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("odd-scores", concept_hint="fractions")
        turn = await manager.submit_response(first.session_id, first.interaction_id, "half")
        return first, turn, await manager.poll(first.session_id)

    first, turn, polled = asyncio.run(scenario())
    assert turn.status is TurnStatus.QUESTION
    assert turn.last_score == 0.5
    assert polled.status is TurnStatus.QUESTION
    assert polled.interaction_id == turn.interaction_id
    assert system.interactions.get(first.interaction_id).scoring_status is ScoringStatus.UNSCORED


def test_deferred_score_is_applied_without_polling(settings, clock):
    settings = with_session(settings, inline_score_wait_seconds=0)
    system = build_system(settings, SlowScorer(0.9, delay=0.05), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("unattended", concept_hint="gravity")
        waiting = await manager.submit_response(first.session_id, first.interaction_id, "it pulls down")
        await asyncio.sleep(0.3)
        return first, waiting, await manager.poll(first.session_id)

    first, waiting, resumed = asyncio.run(scenario())
    assert waiting.status is TurnStatus.AWAITING_SCORE
    assert system.interactions.get(first.interaction_id).scoring_status is ScoringStatus.SCORED
    assert system.ledger.get_score("unattended", "gravity", clock()) == pytest.approx(0.36)
    assert resumed.status is TurnStatus.QUESTION
    assert resumed.interaction_id != first.interaction_id
    assert resumed.last_score == 0.9


def test_scheduler_sweep_closes_overdue_evaluations(settings, clock):
    settings = with_session(settings, inline_score_wait_seconds=0)
    system = build_system(settings, NeverScorer(), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("abandoned", concept_hint="loops")
        await manager.submit_response(first.session_id, first.interaction_id, "repeat it")
        early = await system.scheduler.sweep_sessions()
        clock.advance(seconds=121)
        late = await system.scheduler.sweep_sessions()
        return first, early, late

    first, early, late = asyncio.run(scenario())
    session = manager.get_session(first.session_id)
    assert (early, late) == (0, 1)
    assert session.state is SessionState.PROBING
    assert session.current_interaction_id != first.interaction_id
    closed = system.interactions.get(first.interaction_id)
    assert closed.scoring_status is ScoringStatus.UNSCORED
    assert closed.success_indicator == 0.5
    assert system.scheduler.sweep_interval_seconds == settings.session.scorer_timeout_seconds


def test_ended_sessions_leave_the_live_table(settings, clock):
    settings = with_session(settings, finished_session_limit=1)
    system = build_system(settings, ScriptedScorer([]), clock)
    manager = system.sessions

    async def scenario():
        first = manager.start_session("short-1", concept_hint="fractions")
        second = manager.start_session("short-2", concept_hint="gravity")
        assert len(manager.active_sessions()) == 2
        await manager.end_session(first.session_id)
        await manager.end_session(second.session_id)
        return first, second

    first, second = asyncio.run(scenario())
    assert manager.active_sessions() == []
    assert not manager._locks
    assert manager.get_session(second.session_id).end_reason is EndReason.LEARNER_EXIT
    with pytest.raises(SessionNotFound):
        manager.get_session(first.session_id)


def test_student_questions_carry_distinct_visual_aids(settings, clock):
    system = build_system(settings, ScriptedScorer([0.2, 0.1, 0.3, 0.2]), clock)
    manager = system.sessions

    async def scenario():
        turn = manager.start_session("picture-me", concept_hint="fractions")
        turns = [turn]
        for answer in ["one", "two", "three", "four"]:
            turn = await manager.submit_response(turn.session_id, turn.interaction_id, answer)
            turns.append(turn)
        return turns

    turns = asyncio.run(scenario())
    questions = [turn for turn in turns if turn.status is TurnStatus.QUESTION]
    aids = CONCEPT_LIBRARY["mathematics"]["fractions"]["visual_aids"]

    assert len(questions) == 4
    assert all(turn.methodology is Methodology.VISUAL_DEMO for turn in questions)
    assert all(turn.visual_aid in aids for turn in questions)
    assert len({turn.visual_aid for turn in questions[:3]}) == 3

    supports = [turn.support_text for turn in questions[1:]]
    assert None not in supports
    assert len(set(supports)) == 3
    assert turns[-1].end_reason is EndReason.REMEDIATION_CAP


def test_fallback_concept_has_no_visual_aid(settings, clock):
    system = build_system(settings, ScriptedScorer([]), clock)
    turn = system.sessions.start_session("curious-eyes", concept_hint="photosynthesis", subject="biology")
    assert turn.methodology is Methodology.VISUAL_DEMO
    assert turn.visual_aid is None


def test_session_end_refreshes_learning_style(settings, clock):
    settings = with_session(settings, max_turns=1)
    system = build_system(settings, ScriptedScorer([0.2]), clock)
    system.profiles.get_or_create("tinkerer")
    for index in range(3):
        system.interactions.append(
            Interaction(
                interaction_id=f"earlier-{index}",
                session_id="earlier",
                learner_id="tinkerer",
                concept_id="loops",
                subject="programming",
                difficulty_level=5,
                methodology_used=Methodology.DISCOVERY,
                question_text="What would happen if the loop never stopped?",
                success_indicator=0.95,
                scoring_status=ScoringStatus.SCORED,
                time_of_day=10,
            )
        )
    manager = system.sessions

    async def scenario():
        first = manager.start_session("tinkerer", concept_hint="fractions")
        return await manager.submit_response(first.session_id, first.interaction_id, "no idea")

    last = asyncio.run(scenario())
    style = system.profiles.get("tinkerer").learning_style
    assert last.end_reason is EndReason.MAX_TURNS
    assert not style.is_default()
    assert style.kinesthetic > style.visual
