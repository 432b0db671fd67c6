"""
Worker-side scheduling: periodic submission, hard timeout and backoff re-queue
"""

from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Union
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession
from etl.cache import AnalyticsCache, build_analytics_cache
from etl.ledger import BatchLedger
from etl.pipelines import CACHE_INVALIDATION_PATTERNS
from etl.retry import RetryPolicy
from etl.runner import EtlRunner
from schemas.pipeline import PipelineConfig
from schemas.records import LoadResult
from core.config import settings
from core.database import registry
from core.exceptions import PipelineTimeoutError
import asyncio
import logging
import re

logger = logging.getLogger(__name__)

INTERVAL_SCHEDULE = re.compile(r"^every_(\d+)_minutes?$")


def build_trigger(schedule: str) -> BaseTrigger:
    """"every_N_minutes" -> interval trigger, anything else is a crontab line"""
    match = INTERVAL_SCHEDULE.match(schedule.strip())
    if match:
        return IntervalTrigger(minutes=int(match.group(1)))
    return CronTrigger.from_crontab(schedule)


class EtlScheduler:
    """
    Dispatch pipeline runs onto an AsyncIOScheduler.
    
    Each attempt gets its own session and runner, all sharing one analytics
    cache, and is bounded by ETL_JOB_TIMEOUT_SECONDS. A failed attempt is
    re-queued with a one-off DateTrigger after the policy's backoff delay
    until attempts run out.
    """
    
    def __init__(
        self,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        runner_builder: Optional[Callable[[AsyncSession], EtlRunner]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: Optional[float] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        cache: Optional[AnalyticsCache] = None
    ):
        self.scheduler = scheduler or AsyncIOScheduler()
        self.cache = cache if cache is not None else build_analytics_cache()
        self.session_factory = session_factory or registry.session_maker()
        self.retry_policy = retry_policy or RetryPolicy()
        self.runner_builder = runner_builder or self._default_runner
        self.timeout = timeout or settings.ETL_JOB_TIMEOUT_SECONDS
        self.pipelines: Dict[str, PipelineConfig] = {}
    
    def _default_runner(self, session: AsyncSession) -> EtlRunner:
        return EtlRunner.from_session(
            session,
            cache=self.cache,
            invalidation_patterns=CACHE_INVALIDATION_PATTERNS,
            retry_policy=self.retry_policy
        )
    
    def register_pipeline(
        self,
        name: str,
        config: Union[PipelineConfig, Mapping[str, Any]],
        schedule: Optional[str] = None
    ):
        """Register a pipeline and, when it has a schedule, its periodic job"""
        pipeline = config if isinstance(config, PipelineConfig) else PipelineConfig.model_validate(config)
        self.pipelines[name] = pipeline
        
        schedule = schedule or pipeline.schedule
        if not schedule:
            logger.info(f"Registered pipeline {name} (manual submission only)")
            return
        
        self.scheduler.add_job(
            self.submit,
            trigger=build_trigger(schedule),
            args=[name],
            kwargs={"triggered_by": "scheduler"},
            id=f"pipeline:{name}",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        logger.info(f"Registered pipeline {name} with schedule '{schedule}'")
    
    async def submit(
        self,
        name: str,
        config: Optional[Union[PipelineConfig, Mapping[str, Any]]] = None,
        triggered_by: Optional[str] = None
    ) -> str:
        """Create a batch for the pipeline and run its first attempt"""
        if config is None:
            config = self.pipelines[name]
        
        batch_id = await self._create_batch(name, triggered_by)
        await self.run_attempt(batch_id, name, config, 1)
        return batch_id
    
    async def run_attempt(
        self,
        batch_id: str,
        name: str,
        config: Union[PipelineConfig, Mapping[str, Any]],
        attempt: int
    ) -> Optional[LoadResult]:
        """Run one attempt under the hard timeout; re-queue it on failure"""
        result, error = await self._execute(batch_id, name, config, attempt)
        if error is not None:
            self._requeue(batch_id, name, config, attempt, error)
        return result
    
    async def run_to_completion(
        self,
        name: str,
        config: Optional[Union[PipelineConfig, Mapping[str, Any]]] = None,
        triggered_by: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ) -> Tuple[str, Optional[LoadResult]]:
        """
        Create a batch and run its attempts in the foreground, sleeping
        through the backoff schedule between them.
        
        Returns:
            (batch_id, LoadResult of the completed attempt or None when
            every attempt failed)
        """
        if config is None:
            config = self.pipelines[name]
        
        batch_id = await self._create_batch(name, triggered_by)
        for attempt in range(1, self.retry_policy.max_attempts + 1):
            result, error = await self._execute(batch_id, name, config, attempt)
            if error is None:
                return batch_id, result
            if not self.retry_policy.should_retry(attempt):
                break
            
            delay = self.retry_policy.backoff_delay(attempt)
            logger.warning(f"Batch {batch_id} attempt {attempt} failed, retrying in {delay}s")
            await sleep(delay)
        
        logger.error(f"Batch {batch_id} failed after {self.retry_policy.max_attempts} attempts")
        return batch_id, None
    
    async def _create_batch(self, name: str, triggered_by: Optional[str]) -> str:
        async with self.session_factory() as session:
            batch = await BatchLedger(session).create_batch(name, triggered_by)
            return batch.batch_id
    
    async def _execute(
        self,
        batch_id: str,
        name: str,
        config: Union[PipelineConfig, Mapping[str, Any]],
        attempt: int
    ) -> Tuple[Optional[LoadResult], Optional[Exception]]:
        """
        Run one attempt; returns (result, None) or (None, error).
        
        A timed-out attempt is cancelled before the runner can record it,
        so the timeout is written to the ledger here on a fresh session.
        """
        async with self.session_factory() as session:
            runner = self.runner_builder(session)
            try:
                result = await asyncio.wait_for(
                    runner.run(batch_id, name, config, attempt),
                    timeout=self.timeout
                )
            except asyncio.TimeoutError:
                error = PipelineTimeoutError(
                    f"Pipeline attempt exceeded {self.timeout}s",
                    context={"batch_id": batch_id, "pipeline_name": name, "attempt": attempt}
                )
            except Exception as e:
                logger.error(f"Attempt {attempt} of batch {batch_id} failed: {str(e)}")
                return None, e
            else:
                return result, None
        
        await self._record_timeout(batch_id, attempt, error)
        return None, error
    
    async def _record_timeout(self, batch_id: str, attempt: int, error: PipelineTimeoutError):
        async with self.session_factory() as session:
            await self.runner_builder(session).record_failure(batch_id, attempt, error)
    
    def _requeue(
        self,
        batch_id: str,
        name: str,
        config: Union[PipelineConfig, Mapping[str, Any]],
        attempt: int,
        error: Exception
    ):
        if not self.retry_policy.should_retry(attempt):
            logger.error(
                f"Scheduler: batch {batch_id} failed after {attempt} attempts - {error}"
            )
            return
        
        delay = self.retry_policy.backoff_delay(attempt)
        self.scheduler.add_job(
            self.run_attempt,
            trigger=DateTrigger(run_date=datetime.now() + timedelta(seconds=delay)),
            args=[batch_id, name, config, attempt + 1],
            id=f"retry:{batch_id}:{attempt + 1}",
            replace_existing=True
        )
        logger.warning(
            f"Scheduler: batch {batch_id} attempt {attempt} failed, "
            f"retrying in {delay}s"
        )
    
    def start(self):
        """Start the scheduler"""
        self.scheduler.start()
        logger.info("ETL Scheduler started")
    
    async def stop(self):
        self.scheduler.shutdown()
        await self.cache.close()
        logger.info("ETL Scheduler stopped")
