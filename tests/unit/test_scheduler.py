"""
Unit tests for the pipeline scheduler
"""

import asyncio
import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from etl.cache import InMemoryAnalyticsCache
from etl.extractors import SourceReader
from etl.retry import RetryPolicy
from etl.scheduler import EtlScheduler, build_trigger
from etl.pipelines import default_pipelines
from models.base import BatchStatus
from schemas.records import LoadResult
from core.exceptions import ExtractionError, PipelineTimeoutError


@asynccontextmanager
async def fake_session():
    yield AsyncMock()


def make_scheduler(runner, timeout=None):
    return EtlScheduler(
        session_factory=fake_session,
        runner_builder=lambda session: runner,
        retry_policy=RetryPolicy(max_attempts=3, backoff=(60, 300, 900)),
        timeout=timeout,
        scheduler=MagicMock()
    )


class TestTriggers:
    """Schedule strings to APScheduler triggers"""

    def test_interval_schedule(self):
        """every_N_minutes becomes an interval"""
        trigger = build_trigger("every_5_minutes")

        assert isinstance(trigger, IntervalTrigger)
        assert trigger.interval.total_seconds() == 300

    def test_crontab_schedule(self):
        """Anything else is a crontab line"""
        assert isinstance(build_trigger("0 2 * * *"), CronTrigger)

    def test_invalid_schedule(self):
        """Malformed schedules raise ValueError"""
        with pytest.raises(ValueError):
            build_trigger("every_tuesday")


class TestEtlScheduler:
    """Scheduled and re-queued attempts"""

    def test_scheduler_initialization(self):
        """Defaults come from settings"""
        scheduler = EtlScheduler(session_factory=fake_session)

        assert scheduler.scheduler is not None
        assert scheduler.timeout == 3600

    def test_register_default_pipelines(self):
        """Each scheduled pipeline gets one job"""
        scheduler = make_scheduler(AsyncMock())

        for name, config in default_pipelines().items():
            scheduler.register_pipeline(name, config)

        assert set(scheduler.pipelines) == {"shipments_realtime", "financial_transactions", "performance_metrics"}
        job_ids = [c.kwargs["id"] for c in scheduler.scheduler.add_job.call_args_list]
        assert job_ids == [
            "pipeline:shipments_realtime",
            "pipeline:financial_transactions",
            "pipeline:performance_metrics",
        ]

    def test_unscheduled_pipeline_has_no_job(self):
        """Pipelines without schedule are manual only"""
        scheduler = make_scheduler(AsyncMock())

        scheduler.register_pipeline("manual_import", {"sources": {}})

        scheduler.scheduler.add_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_submit_creates_batch_and_runs_first_attempt(self):
        """Submission creates a batch and runs attempt 1"""
        runner = MagicMock()
        runner.run = AsyncMock(return_value=None)
        scheduler = make_scheduler(runner)

        with patch("etl.scheduler.BatchLedger") as mock_ledger_cls:
            mock_ledger_cls.return_value.create_batch = AsyncMock(return_value=MagicMock(batch_id="B1"))

            batch_id = await scheduler.submit("shipments_realtime", {"sources": {}}, triggered_by="test")

        assert batch_id == "B1"
        mock_ledger_cls.return_value.create_batch.assert_awaited_once_with("shipments_realtime", "test")
        runner.run.assert_awaited_once_with("B1", "shipments_realtime", {"sources": {}}, 1)

    @pytest.mark.asyncio
    async def test_failed_attempt_is_requeued_with_backoff(self):
        """A failed attempt is re-queued with a DateTrigger"""
        runner = MagicMock()
        runner.run = AsyncMock(side_effect=ExtractionError("source down"))
        scheduler = make_scheduler(runner)

        await scheduler.run_attempt("B1", "shipments_realtime", {}, 2)

        call = scheduler.scheduler.add_job.call_args
        assert call.args[0] == scheduler.run_attempt
        assert isinstance(call.kwargs["trigger"], DateTrigger)
        assert call.kwargs["args"] == ["B1", "shipments_realtime", {}, 3]

    @pytest.mark.asyncio
    async def test_last_attempt_is_not_requeued(self):
        """No re-queue once attempts run out"""
        runner = MagicMock()
        runner.run = AsyncMock(side_effect=ExtractionError("source down"))
        scheduler = make_scheduler(runner)

        await scheduler.run_attempt("B1", "shipments_realtime", {}, 3)

        scheduler.scheduler.add_job.assert_not_called()

    @pytest.mark.asyncio
    async def test_timed_out_attempt_is_recorded(self):
        """A timeout is written to the ledger and re-queued"""
        async def slow_run(*args):
            await asyncio.sleep(5)

        runner = MagicMock()
        runner.run = slow_run
        runner.record_failure = AsyncMock()
        scheduler = make_scheduler(runner, timeout=0.01)

        result = await scheduler.run_attempt("B1", "shipments_realtime", {}, 1)

        assert result is None
        batch_id, attempt, error = runner.record_failure.await_args.args
        assert (batch_id, attempt) == ("B1", 1)
        assert isinstance(error, PipelineTimeoutError)
        scheduler.scheduler.add_job.assert_called_once()

    @pytest.mark.asyncio
    async def test_default_runner_shares_the_scheduler_cache(self):
        """Every attempt's aggregator invalidates through the one scheduler cache"""
        cache = InMemoryAnalyticsCache(prefix="analytics")
        scheduler = EtlScheduler(session_factory=fake_session, scheduler=MagicMock(), cache=cache)

        first = scheduler.runner_builder(AsyncMock())
        second = scheduler.runner_builder(AsyncMock())

        assert first.aggregator.cache is cache
        assert second.aggregator.cache is cache


class HangingReader(SourceReader):
    """Source whose read never finishes within the test timeout"""

    source_type = "hanging"

    async def read(self, source_name, descriptor, context):
        await asyncio.sleep(5)
        return []


class TestRunToCompletion:
    """Foreground runs used by the command line entry point"""

    @pytest.mark.asyncio
    async def test_timed_out_attempts_end_in_failed(self, make_runner, ledger):
        """Each timeout is recorded, so the batch walks RETRY to FAILED instead of staying RUNNING"""
        runner = make_runner(readers=[HangingReader()])
        sleep = AsyncMock()
        scheduler = make_scheduler(runner, timeout=0.01)

        with patch("etl.scheduler.BatchLedger", return_value=ledger):
            batch_id, result = await scheduler.run_to_completion(
                "shipments_realtime", {"sources": {"tms": {"type": "hanging"}}}, sleep=sleep
            )

        batch = ledger.batches[batch_id]
        assert result is None
        assert batch.status == BatchStatus.FAILED
        assert batch.attempts == 3
        assert batch.error_message == "Pipeline attempt exceeded 0.01s"
        assert [s for _, s, _ in ledger.status_history] == [
            BatchStatus.RUNNING, BatchStatus.RETRY,
            BatchStatus.RUNNING, BatchStatus.RETRY,
            BatchStatus.RUNNING, BatchStatus.FAILED,
        ]
        assert [c.args[0] for c in sleep.await_args_list] == [60, 300]

    @pytest.mark.asyncio
    async def test_returns_result_of_completed_attempt(self):
        """A failing first attempt is followed by a completed second one"""
        load_result = LoadResult(success=True)
        runner = MagicMock()
        runner.run = AsyncMock(side_effect=[ExtractionError("source down"), load_result])
        sleep = AsyncMock()
        scheduler = make_scheduler(runner)

        with patch("etl.scheduler.BatchLedger") as mock_ledger_cls:
            mock_ledger_cls.return_value.create_batch = AsyncMock(return_value=MagicMock(batch_id="B1"))

            batch_id, result = await scheduler.run_to_completion("shipments_realtime", {}, sleep=sleep)

        assert (batch_id, result) == ("B1", load_result)
        assert [c.args[3] for c in runner.run.await_args_list] == [1, 2]
        sleep.assert_awaited_once_with(60)
        scheduler.scheduler.add_job.assert_not_called()
