"""Tests for results polling."""

import asyncio

import pytest

from attempt_engine.core.app_exceptions import AttemptStoreError
from attempt_engine.schemas.attempt import AttemptResult, ResultsState
from attempt_engine.services.results import ResultsPoller
from tests.helpers.fakes import FakeAttemptStore


class TestResultsPoller:
    @pytest.mark.asyncio
    async def test_pending_then_available(self):
        store = FakeAttemptStore()
        result = AttemptResult(total_score=32, percentage=80, rank=4, percentile=91.5)
        store.results = [None, None, result]
        poller = ResultsPoller("att-1", store, interval_s=0, max_attempts=5)

        assert poller.state is ResultsState.NOT_REQUESTED
        poller.start()
        assert poller.state is ResultsState.EVALUATING
        await poller.wait()

        assert poller.state is ResultsState.AVAILABLE
        assert poller.result == result
        assert store.calls.count(("fetch_results", "att-1")) == 3

    @pytest.mark.asyncio
    async def test_unavailable_after_max_attempts(self):
        store = FakeAttemptStore()
        poller = ResultsPoller("att-1", store, interval_s=0, max_attempts=2)
        poller.start()
        await poller.wait()
        assert poller.state is ResultsState.UNAVAILABLE
        assert poller.result is None

    @pytest.mark.asyncio
    async def test_fetch_errors_are_treated_as_pending(self):
        class FlakySource:
            def __init__(self):
                self.calls = 0

            async def fetch_results(self, attempt_id):
                self.calls += 1
                if self.calls == 1:
                    raise AttemptStoreError("scoring down")
                return AttemptResult(total_score=1, percentage=10)

        poller = ResultsPoller("att-1", FlakySource(), interval_s=0, max_attempts=3)
        poller.start()
        await poller.wait()
        assert poller.state is ResultsState.AVAILABLE

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self):
        store = FakeAttemptStore()
        poller = ResultsPoller("att-1", store, interval_s=60, max_attempts=10)
        poller.start()
        await asyncio.sleep(0)
        poller.cancel()
        poller.cancel()
        assert store.calls.count(("fetch_results", "att-1")) <= 1

    def test_extra_result_fields_pass_through(self):
        result = AttemptResult.model_validate(
            {"totalScore": 10, "percentage": 50, "sectionScores": {"s1": 10}}
        )
        assert result.total_score == 10
        assert result.model_extra == {"sectionScores": {"s1": 10}}
