"""Shared fixtures: temporary stores, a controllable clock, and scripted scorers."""

from __future__ import annotations

import asyncio
import random
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Sequence

import pytest

from adaptive_tutor.catalog import ConceptCatalog
from adaptive_tutor.config import Settings
from adaptive_tutor.errors import ScorerFailure
from adaptive_tutor.learning import LearnerProfileStore, MasteryLedger
from adaptive_tutor.storage import InteractionLog, RecommendationStore

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedScorer:
    """Returns the given scores in order."""

    def __init__(self, scores: Sequence[float]):
        self.scores: List[float] = list(scores)
        self.calls = 0

    async def score(self, question_text, response_text, reference=()):
        self.calls += 1
        return self.scores.pop(0)


class NeverScorer:
    """Scorer that never answers."""

    async def score(self, question_text, response_text, reference=()):
        await asyncio.Event().wait()


class FailingScorer:
    async def score(self, question_text, response_text, reference=()):
        raise ScorerFailure("grader unavailable")


@pytest.fixture
def data_dir():
    """Create a temporary directory for all on-disk stores."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(data_dir):
    base = Settings().with_data_dir(data_dir)
    session = base.session.model_copy(update={"ledger_retry_backoff_seconds": 0.0})
    return base.model_copy(update={"session": session})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def catalog():
    return ConceptCatalog.builtin(rng=random.Random(7))


@pytest.fixture
def profiles(settings):
    return LearnerProfileStore(settings.paths.profiles_dir)


@pytest.fixture
def ledger(settings):
    return MasteryLedger(settings.paths.ledger_dir, settings.mastery)


@pytest.fixture
def interactions(settings):
    return InteractionLog(settings.paths.interactions_log)


@pytest.fixture
def recommendation_store(settings):
    return RecommendationStore(settings.paths.recommendations_dir)
