"""Background warm-up of submission lists for the milestones of the active team."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from .cache.view_cache import ViewCache, cache_key
from .entities import Milestone, Submission
from .telemetry import emit_event

logger = logging.getLogger(__name__)

SubmissionFetch = Callable[[str, str], Awaitable[List[Submission]]]


class SubmissionPrefetcher:
    """Warms ``submissions:<team>:<milestone>`` keys in small delayed batches.

    Every :meth:`schedule` call takes a generation token. A newer schedule, or
    :meth:`cancel`, makes older generations stale; a stale run stops before its
    next batch.
    """

    def __init__(
        self,
        fetch: SubmissionFetch,
        cache: ViewCache,
        *,
        batch_size: int = 2,
        batch_delay: float = 0.5,
        initial_delay: float = 1.0,
        ttl: float = 60,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._fetch = fetch
        self._cache = cache
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.initial_delay = initial_delay
        self.ttl = ttl
        self._sleep = sleep
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    def next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def schedule(
        self,
        team_id: str,
        milestones: Sequence[Milestone],
        generation: Optional[int] = None,
    ) -> asyncio.Task:
        if generation is None:
            generation = self.next_generation()
        milestone_ids = [milestone.id for milestone in milestones]
        self._task = asyncio.get_running_loop().create_task(self.run(team_id, milestone_ids, generation))
        return self._task

    def cancel(self) -> None:
        self.next_generation()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _warm(self, team_id: str, milestone_id: str) -> None:
        key = cache_key("submissions", team_id, milestone_id)
        if self._cache.contains(key):
            return
        try:
            submissions = await self._fetch(team_id, milestone_id)
        except Exception as exc:  # noqa: BLE001
            logger.error("Error prefetching submissions for milestone %s: %s", milestone_id, exc)
            submissions = []
        self._cache.set(key, submissions, self.ttl)

    async def run(self, team_id: str, milestone_ids: List[str], generation: int) -> int:
        """Warm every milestone in batches; returns how many milestones were processed."""
        if not team_id or not milestone_ids:
            return 0
        await self._sleep(self.initial_delay)

        processed = 0
        for start in range(0, len(milestone_ids), self.batch_size):
            if not self.is_current(generation):
                logger.debug("Prefetch generation %s superseded; stopping", generation)
                break
            if start:
                await self._sleep(self.batch_delay)
                if not self.is_current(generation):
                    break
            batch = milestone_ids[start:start + self.batch_size]
            await asyncio.gather(*(self._warm(team_id, milestone_id) for milestone_id in batch))
            processed += len(batch)

        emit_event(
            "submissions_prefetched",
            team_id=team_id,
            milestones=processed,
            total=len(milestone_ids),
            generation=generation,
        )
        return processed


__all__ = ["SubmissionPrefetcher"]
