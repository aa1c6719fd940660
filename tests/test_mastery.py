"""Tests for the mastery ledger update rule, decay, and concurrency."""

from __future__ import annotations

import random
import threading
from datetime import timedelta

import pytest

from adaptive_tutor.data_models import DifficultyTier, MasteryRecord
from adaptive_tutor.learning import MasteryLedger, tier_for_score
from conftest import START


def test_unattempted_concept_scores_zero(ledger):
    assert ledger.get_score("learner", "fractions", START) == 0.0
    assert ledger.get_record("learner", "fractions", START) is None


def test_scores_stay_bounded_for_any_sequence(ledger):
    rng = random.Random(11)
    for step in range(200):
        score = ledger.update("learner", "loops", rng.choice([0.0, 1.0, rng.random()]), now=START)
        assert 0.0 <= score <= 1.0
    record = ledger.get_record("learner", "loops", START)
    assert record.interaction_count == 200


def test_out_of_range_success_is_rejected(ledger):
    with pytest.raises(ValueError):
        ledger.update("learner", "loops", 1.2, now=START)


def test_ema_converges_to_constant_signal(ledger):
    for _ in range(20):
        score = ledger.update("learner", "gravity", 0.8, now=START)
    assert score == pytest.approx(0.8, abs=0.01)


def test_learning_rate_switches_after_calibration(ledger):
    assert ledger.learning_rate(0) == 0.4
    assert ledger.learning_rate(4) == 0.4
    assert ledger.learning_rate(5) == 0.15


def test_fractions_scenario_escalates_tier(ledger):
    tiers = []
    for signal in (0.9, 0.85, 0.95):
        score = ledger.update("new-learner", "fractions", signal, now=START)
        tiers.append(tier_for_score(score))
    assert ledger.get_score("new-learner", "fractions", START) == pytest.approx(0.7136, abs=1e-4)
    assert tiers[0] is DifficultyTier.INTERMEDIATE
    assert tiers[-1] is not DifficultyTier.BASIC


def test_decay_halves_score_after_half_life(ledger):
    record = MasteryRecord(learner_id="l", concept_id="c", mastery_score=0.8, last_updated_at=START)
    decayed = ledger.apply_decay(record, START + timedelta(days=30))
    assert decayed.mastery_score == pytest.approx(0.4, abs=1e-6)
    assert record.mastery_score == 0.8


def test_decay_is_monotonic_in_elapsed_time(ledger):
    record = MasteryRecord(learner_id="l", concept_id="c", mastery_score=0.9, last_updated_at=START)
    previous = record.mastery_score
    for days in (0, 1, 5, 10, 30, 90, 365):
        current = ledger.apply_decay(record, START + timedelta(days=days)).mastery_score
        assert current <= previous
        previous = current


def test_decay_is_lazy_and_not_persisted(ledger):
    ledger.update("learner", "variables", 1.0, now=START)
    later = START + timedelta(days=60)
    assert ledger.get_score("learner", "variables", later) < ledger.get_score("learner", "variables", START)
    assert ledger.get_record("learner", "variables", later).last_updated_at == START


def test_update_applies_decay_before_blending(ledger):
    ledger.update("learner", "ohms_law", 1.0, now=START)
    fresh = ledger.get_score("learner", "ohms_law", START)
    later = START + timedelta(days=30)
    score = ledger.update("learner", "ohms_law", 0.0, now=later)
    assert score == pytest.approx(fresh / 2 * 0.6, abs=1e-6)


def test_records_persist_across_instances(settings, ledger):
    ledger.update("learner", "fractions", 0.5, now=START, subject="mathematics")
    reopened = MasteryLedger(settings.paths.ledger_dir, settings.mastery)
    record = reopened.get_record("learner", "fractions", START)
    assert record.mastery_score == pytest.approx(0.2)
    assert record.subject == "mathematics"
    assert [r.concept_id for r in reopened.records_for("learner", START)] == ["fractions"]


def test_concurrent_updates_to_one_pair_serialize(ledger):
    def worker():
        for _ in range(25):
            ledger.update("busy", "loops", 0.6, now=START)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    record = ledger.get_record("busy", "loops", START)
    assert record.interaction_count == 100
    assert len(list((ledger.base_dir / "busy").glob("*.json"))) == 1


def test_updates_to_different_concepts_are_independent(ledger):
    ledger.update("learner", "loops", 1.0, now=START)
    ledger.update("learner", "variables", 0.0, now=START)
    assert ledger.get_score("learner", "loops", START) == pytest.approx(0.4)
    assert ledger.get_score("learner", "variables", START) == 0.0
    assert len(ledger.records_for("learner", START)) == 2


def test_shorter_calibration_keeps_scenario_intermediate(settings):
    config = settings.mastery.model_copy(update={"calibration_interactions": 2})
    ledger = MasteryLedger(settings.paths.ledger_dir, config)
    for signal in (0.9, 0.85, 0.95):
        score = ledger.update("quick-calibration", "fractions", signal, now=START)
    assert score == pytest.approx(0.6151, abs=1e-4)
    assert tier_for_score(score, config) is DifficultyTier.INTERMEDIATE


def test_ledgers_sharing_a_directory_see_each_others_writes(settings, ledger):
    other = MasteryLedger(settings.paths.ledger_dir, settings.mastery)
    ledger.update("shared", "loops", 1.0, now=START)
    other.update("shared", "loops", 1.0, now=START)
    record = ledger.get_record("shared", "loops", START)
    assert record.interaction_count == 2
    assert record.mastery_score == pytest.approx(0.64)
