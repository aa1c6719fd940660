"""Tests for learner profiles, methodology resolution, and passive inference."""

from __future__ import annotations

from datetime import date

import pytest

from adaptive_tutor.data_models import (
    EducationLevel,
    Interaction,
    LearningStyle,
    Methodology,
    Role,
    ScoringStatus,
)
from adaptive_tutor.errors import InvalidLearnerId
from adaptive_tutor.learning import (
    LearnerProfileStore,
    StaticIdentitySource,
    dominant_style,
    estimate_age,
    estimate_education_level,
    infer_learning_style,
    resolve_methodology,
)


@pytest.mark.parametrize(
    "role, expected",
    [
        (Role.STUDENT, Methodology.VISUAL_DEMO),
        (Role.INSTRUCTOR, Methodology.SCAFFOLDING),
        (Role.ADMIN, Methodology.DIRECT_INSTRUCTION),
        (Role.CONTENT_CREATOR, Methodology.DISCOVERY),
        (Role.MENTOR, Methodology.SOCRATIC),
    ],
)
def test_role_default_when_no_style_dominates(role, expected):
    assert resolve_methodology(role, LearningStyle()) is expected


def test_dominant_style_overrides_role():
    style = LearningStyle(visual=20, auditory=20, kinesthetic=60, reading=30)
    assert dominant_style(style) == "kinesthetic"
    assert resolve_methodology(Role.MENTOR, style) is Methodology.DISCOVERY


def test_margin_must_be_strictly_exceeded():
    style = LearningStyle(visual=40, auditory=25, kinesthetic=25, reading=25)
    assert dominant_style(style) is None
    assert resolve_methodology(Role.ADMIN, style) is Methodology.DIRECT_INSTRUCTION


def test_get_or_create_applies_role_defaults(profiles):
    profile = profiles.get_or_create("learner-1", role=Role.MENTOR)
    assert profile.role is Role.MENTOR
    assert profile.methodology_preference is Methodology.SOCRATIC
    assert profile.learning_style.is_default()
    assert profile.profile_completeness == 0.0

    again = profiles.get_or_create("learner-1", role=Role.ADMIN)
    assert again.role is Role.MENTOR


def test_update_merges_fields_and_recomputes(profiles):
    profiles.get_or_create("learner-2")
    updated = profiles.update(
        "learner-2",
        {"interests": ["astronomy"], "age": 14, "learning_style": {"auditory": 70}},
    )
    assert updated.interests == ["astronomy"]
    assert updated.learning_style.auditory == 70
    assert updated.learning_style.visual == 25
    assert updated.methodology_preference is Methodology.SOCRATIC
    assert 0 < updated.profile_completeness <= 1

    reloaded = profiles.get("learner-2")
    assert reloaded.age == 14


def test_update_rejects_derived_fields(profiles):
    profiles.get_or_create("learner-3")
    with pytest.raises(ValueError):
        profiles.update("learner-3", {"profile_completeness": 1.0})


@pytest.mark.parametrize("bad_id", ["", "   ", "has space", None, "a/b"])
def test_malformed_ids_are_rejected(profiles, bad_id):
    with pytest.raises(InvalidLearnerId):
        profiles.get_or_create(bad_id)


def test_identity_source_decides_existence_and_role(data_dir):
    identity = StaticIdentitySource({"known": Role.INSTRUCTOR})
    store = LearnerProfileStore(data_dir / "profiles", identity=identity)

    assert store.get_or_create("known", role=Role.STUDENT).role is Role.INSTRUCTOR
    with pytest.raises(InvalidLearnerId):
        store.get_or_create("stranger")

    identity.remove("known")
    with pytest.raises(InvalidLearnerId):
        store.get_or_create("known")


def test_archived_profiles_are_inaccessible(profiles):
    profiles.get_or_create("leaver")
    profiles.archive("leaver")
    with pytest.raises(InvalidLearnerId):
        profiles.get("leaver")
    assert "leaver" not in profiles.learner_ids()
    assert "leaver" in profiles.learner_ids(include_archived=True)
    assert profiles.profile_path("leaver").exists()


def test_passive_inference_tags_weak_and_strong_subjects(profiles):
    profiles.get_or_create("tagged")
    untouched = profiles.record_mastery_signal("tagged", "physics", 0.1, interaction_count=2)
    assert untouched.weaknesses == []

    weak = profiles.record_mastery_signal("tagged", "physics", 0.1, interaction_count=3)
    assert weak.weaknesses == ["physics"]

    strong = profiles.record_mastery_signal("tagged", "physics", 0.8, interaction_count=6)
    assert strong.strengths == ["physics"]
    assert strong.weaknesses == []


def _interaction(index: int, methodology: Methodology, score: float) -> Interaction:
    return Interaction(
        interaction_id=f"i{index}",
        session_id="s",
        learner_id="l",
        concept_id="fractions",
        subject="mathematics",
        difficulty_level=3,
        methodology_used=methodology,
        question_text="q",
        success_indicator=score,
        scoring_status=ScoringStatus.SCORED,
        time_of_day=10,
    )


def test_infer_learning_style_normalizes_to_hundred():
    interactions = [
        _interaction(0, Methodology.VISUAL_DEMO, 0.9),
        _interaction(1, Methodology.VISUAL_DEMO, 0.8),
        _interaction(2, Methodology.SOCRATIC, 0.2),
    ]
    style = infer_learning_style(interactions)
    total = style.visual + style.auditory + style.kinesthetic + style.reading
    assert total == pytest.approx(100, abs=0.05)
    assert style.visual > style.kinesthetic > style.auditory


def test_infer_learning_style_without_evidence_is_default():
    assert infer_learning_style([]).is_default()


def test_estimates_from_identity_data():
    assert estimate_education_level("Software Engineer") is EducationLevel.BACHELOR
    assert estimate_education_level("university student") is EducationLevel.STUDENT
    assert estimate_education_level(None) is EducationLevel.UNKNOWN
    assert estimate_age(date(2000, 6, 15), today=date(2024, 6, 14)) == 23
    assert estimate_age(date(2000, 6, 15), today=date(2024, 6, 15)) == 24


def test_identity_details_seed_new_profiles(data_dir):
    identity = StaticIdentitySource()
    identity.register("engineer", Role.STUDENT, occupation="Software Engineer", birth_date=date(2000, 6, 15))
    identity.register("plain", Role.STUDENT)
    store = LearnerProfileStore(data_dir / "profiles", identity=identity)

    seeded = store.get_or_create("engineer")
    assert seeded.education_level is EducationLevel.BACHELOR
    assert seeded.age == estimate_age(date(2000, 6, 15))

    bare = store.get_or_create("plain")
    assert bare.education_level is EducationLevel.UNKNOWN
    assert bare.age is None


def test_style_refresh_needs_more_than_one_methodology(profiles):
    profiles.get_or_create("one-track", role=Role.MENTOR)
    unchanged = profiles.refresh_learning_style(
        "one-track",
        [_interaction(0, Methodology.VISUAL_DEMO, 0.9), _interaction(1, Methodology.VISUAL_DEMO, 0.4)],
    )
    assert unchanged.learning_style.is_default()
    assert unchanged.methodology_preference is Methodology.SOCRATIC

    refreshed = profiles.refresh_learning_style(
        "one-track",
        [
            _interaction(0, Methodology.VISUAL_DEMO, 0.9),
            _interaction(1, Methodology.SOCRATIC, 0.1),
            _interaction(2, Methodology.DISCOVERY, 0.1),
            _interaction(3, Methodology.DIRECT_INSTRUCTION, 0.1),
        ],
    )
    assert refreshed.learning_style.visual == pytest.approx(75, abs=0.05)
    assert refreshed.methodology_preference is Methodology.VISUAL_DEMO
    assert profiles.get("one-track").learning_style == refreshed.learning_style


def test_profile_files_use_quoted_ids(profiles):
    profiles.get_or_create("user@example.com")
    profiles.get_or_create("org:team-7")

    assert profiles.profile_path("user@example.com").name == "user%40example.com.json"
    assert profiles.profile_path("org:team-7").name == "org%3Ateam-7.json"
    assert profiles.profile_path("org:team-7").exists()
    assert set(profiles.learner_ids()) == {"user@example.com", "org:team-7"}
