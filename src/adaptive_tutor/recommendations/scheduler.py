from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from adaptive_tutor.errors import InvalidLearnerId
from adaptive_tutor.learning.profiles import LearnerProfileStore
from adaptive_tutor.recommendations.engine import RecommendationEngine
from adaptive_tutor.tutoring.manager import TutoringSessionManager

logger = logging.getLogger(__name__)


class RecommendationScheduler:
    """
    Periodic batch pass: close overdue evaluations, expire stale rows, then regenerate
    for every active learner.
    """

    def __init__(
        self,
        engine: RecommendationEngine,
        profiles: LearnerProfileStore,
        interval_hours: Optional[float] = None,
        sessions: Optional[TutoringSessionManager] = None,
        sweep_interval_seconds: Optional[float] = None,
    ):
        self.engine = engine
        self.profiles = profiles
        self.sessions = sessions
        self.interval_hours = interval_hours or engine.config.batch_interval_hours
        if sweep_interval_seconds is None and sessions is not None:
            sweep_interval_seconds = sessions.config.scorer_timeout_seconds
        self.sweep_interval_seconds = sweep_interval_seconds or self.interval_hours * 3600
        self._stop: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    def run_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Run one batch; returns the number of recommendations touched per learner."""
        expired = self.engine.expire_stale(now)
        results: Dict[str, int] = {}
        for learner_id in self.profiles.learner_ids():
            try:
                results[learner_id] = len(self.engine.generate_for(learner_id, now))
            except InvalidLearnerId as exc:
                logger.warning("Skipping learner %s in batch run: %s", learner_id, exc)
        logger.info(
            "Recommendation batch finished: %s learners, %s expired",
            len(results),
            expired,
        )
        return results

    async def sweep_sessions(self, now: Optional[datetime] = None) -> int:
        """Close evaluations whose scorer deadline passed without a poll."""
        if self.sessions is None:
            return 0
        closed = await self.sessions.expire_overdue(now)
        if closed:
            logger.info("Closed %s overdue evaluations", closed)
        return closed

    async def run_forever(self) -> None:
        """
        Sweep sessions every `sweep_interval_seconds` and repeat `run_once` every
        `interval_hours` until `stop` is called.
        """
        self._stop = asyncio.Event()
        interval = self.interval_hours * 3600
        tick = min(interval, self.sweep_interval_seconds)
        since_batch = interval
        while not self._stop.is_set():
            await self.sweep_sessions()
            if since_batch >= interval:
                self.run_once()
                since_batch = 0.0
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=tick)
            except asyncio.TimeoutError:
                since_batch += tick

    def start(self) -> asyncio.Task:
        """Schedule `run_forever` on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.ensure_future(self.run_forever())
        return self._task

    async def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
