"""Results polling after submission.

Results are a pure pass-through of the scoring service response.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from attempt_engine.schemas.attempt import AttemptResult, ResultsState

logger = logging.getLogger(__name__)


class ResultSource(Protocol):
    async def fetch_results(self, attempt_id: str) -> AttemptResult | None:
        """Return the scored result, or None while scoring is still pending."""
        ...


class ResultsPoller:
    """Polls the scoring service until a result arrives or attempts run out."""

    def __init__(
        self,
        attempt_id: str,
        source: ResultSource,
        *,
        interval_s: float = 5.0,
        max_attempts: int = 60,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._attempt_id = attempt_id
        self._source = source
        self._interval_s = interval_s
        self._max_attempts = max_attempts

        self._state = ResultsState.NOT_REQUESTED
        self._result: AttemptResult | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> ResultsState:
        return self._state

    @property
    def result(self) -> AttemptResult | None:
        return self._result

    def start(self) -> None:
        if self._task is not None or self._state is ResultsState.AVAILABLE:
            return
        self._state = ResultsState.EVALUATING
        self._task = asyncio.get_running_loop().create_task(self.run(), name="results-poll")

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def run(self) -> None:
        self._state = ResultsState.EVALUATING
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = await self._source.fetch_results(self._attempt_id)
            except Exception as e:
                logger.info("Results fetch failed (attempt %d): %s", attempt, e)
                result = None
            if result is not None:
                self._result = result
                self._state = ResultsState.AVAILABLE
                return
            if attempt < self._max_attempts:
                await asyncio.sleep(self._interval_s)

        logger.info("No result for attempt %s after %d polls", self._attempt_id, self._max_attempts)
        self._state = ResultsState.UNAVAILABLE
