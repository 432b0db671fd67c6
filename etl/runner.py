"""
EtlRunner - one attempt of a pipeline batch.

Stages run strictly in order:
    Extract -> Stage -> Transform -> Validate -> Load -> Aggregate

Per-record failures stay inside Transform/Validate/Load; anything that
escapes a stage is fatal to the attempt, is recorded in the batch ledger
(RETRY while attempts remain, FAILED otherwise) and is re-raised so the
scheduler can re-queue the batch.
"""

from typing import Any, Callable, Mapping, Optional, Union
from datetime import date
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from etl.aggregation import Aggregator
from etl.cache import AnalyticsCache, build_analytics_cache
from etl.extractors import (
    APISourceReader,
    DatabaseSourceReader,
    Extractor,
    FactTableSourceReader,
)
from etl.ledger import BatchLedger
from etl.loaders import AppendWriter, Loader, UpsertWriter
from etl.reference import ReferenceCache, required_tables
from etl.retry import RetryPolicy
from etl.staging import Stager, StagingRepository
from etl.transformers import DataTransformer, Transformer
from etl.validators import DataValidator, Validator
from etl.warehouse import Warehouse
from models.base import BatchStatus
from schemas.pipeline import PipelineConfig
from schemas.records import LoadResult
from core.exceptions import ConfigurationError, ETLException
import httpx
import logging
import time

logger = logging.getLogger(__name__)


class EtlRunner:
    """
    Run one attempt of a batch with injected collaborators.
    
    The attempt number is passed in by the caller; the runner keeps no
    state between runs.
    """
    
    def __init__(
        self,
        ledger: BatchLedger,
        extractor: Extractor,
        stager: Stager,
        store: StagingRepository,
        loader: Loader,
        aggregator: Aggregator,
        warehouse: Optional[Warehouse] = None,
        retry_policy: Optional[RetryPolicy] = None,
        data_transformer_factory: Callable[[ReferenceCache], DataTransformer] = DataTransformer,
        data_validator_factory: Callable[[ReferenceCache], DataValidator] = DataValidator
    ):
        self.ledger = ledger
        self.extractor = extractor
        self.stager = stager
        self.store = store
        self.loader = loader
        self.aggregator = aggregator
        self.warehouse = warehouse
        self.retry_policy = retry_policy or RetryPolicy()
        self.data_transformer_factory = data_transformer_factory
        self.data_validator_factory = data_validator_factory
    
    @classmethod
    def from_session(
        cls,
        db_session: AsyncSession,
        warehouse: Optional[Warehouse] = None,
        cache: Optional[AnalyticsCache] = None,
        invalidation_patterns: Optional[Mapping[str, Any]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ) -> "EtlRunner":
        """Wire the standard readers, writers and stores around one session"""
        warehouse = warehouse or Warehouse()
        ledger = BatchLedger(db_session)
        store = StagingRepository(db_session)
        
        extractor = Extractor(ledger, {})
        for reader in (
            APISourceReader(transport=transport),
            DatabaseSourceReader(warehouse),
            FactTableSourceReader(warehouse),
        ):
            extractor.register(reader)
        
        return cls(
            ledger=ledger,
            extractor=extractor,
            stager=Stager(store),
            store=store,
            loader=Loader([AppendWriter(warehouse), UpsertWriter(warehouse)]),
            aggregator=Aggregator(
                warehouse,
                cache if cache is not None else build_analytics_cache(),
                invalidation_patterns
            ),
            warehouse=warehouse,
            retry_policy=retry_policy
        )
    
    async def run(
        self,
        batch_id: str,
        pipeline_name: str,
        config: Union[PipelineConfig, Mapping[str, Any]],
        attempt: int = 1,
        run_date: Optional[date] = None
    ) -> Optional[LoadResult]:
        """
        Execute the pipeline for an existing batch.
        
        Returns:
            The LoadResult, or None when the batch does not exist or is
            already COMPLETED/FAILED
        
        Raises:
            Any fatal error of the attempt, after the ledger is updated
        """
        batch = await self.ledger.find(batch_id)
        if batch is None:
            logger.error(f"ETL batch not found: {batch_id}")
            return None
        if batch.status.is_terminal:
            logger.warning(f"ETL batch {batch_id} already {batch.status.value}, skipping")
            return None
        
        start_time = time.monotonic()
        logger.info(f"Starting ETL pipeline: {pipeline_name} (batch {batch_id}, attempt {attempt})")
        await self.ledger.update_status(batch_id, BatchStatus.RUNNING)
        
        try:
            pipeline = self._pipeline_config(config)
            
            extracted = await self.extractor.extract(
                batch_id, pipeline_name, pipeline.sources, run_date
            )
            staged = await self.stager.stage(batch_id, extracted, pipeline.table, attempt)
            
            reference = await self._load_reference(pipeline)
            transformer = Transformer(self.store, self.data_transformer_factory(reference))
            validator = Validator(self.store, self.data_validator_factory(reference))
            
            transformed = await transformer.transform(staged, pipeline)
            validated = await validator.validate(transformed, pipeline.validations)
            load_result = await self.loader.load(validated, pipeline.destinations)
            
            if load_result.success:
                await self.aggregator.refresh(pipeline_name, batch_id)
            else:
                logger.warning(
                    f"Skipping aggregation for batch {batch_id}: "
                    f"{load_result.records_failed} records failed to load"
                )
            
            await self.ledger.update_status(
                batch_id,
                BatchStatus.COMPLETED,
                result=load_result.model_dump()
            )
        
        except Exception as e:
            await self.record_failure(batch_id, attempt, e)
            raise
        
        logger.info(
            f"ETL pipeline completed: {pipeline_name} (batch {batch_id}) "
            f"processed={load_result.records_processed} "
            f"failed={load_result.records_failed} "
            f"in {time.monotonic() - start_time:.2f}s"
        )
        return load_result
    
    async def record_failure(self, batch_id: str, attempt: int, error: Exception):
        """Move the batch to RETRY while attempts remain, else FAILED"""
        message = error.message if isinstance(error, ETLException) else str(error)
        error_context = error.to_dict() if isinstance(error, ETLException) else {"error": str(error)}
        
        if self.retry_policy.should_retry(attempt):
            status = BatchStatus.RETRY
            message = f"Attempt {attempt} failed: {message}"
        else:
            status = BatchStatus.FAILED
        
        logger.error(
            f"ETL pipeline failed for batch {batch_id}: {message}",
            extra={"error_context": error_context}
        )
        
        try:
            await self.ledger.rollback()
            await self.ledger.update_status(batch_id, status, message)
        except Exception as ledger_error:
            logger.error(
                f"Could not record failure of batch {batch_id}: {str(ledger_error)}",
                extra={"error_context": {"batch_id": batch_id, "status": status.value}}
            )
    
    def _pipeline_config(self, config: Union[PipelineConfig, Mapping[str, Any]]) -> PipelineConfig:
        if isinstance(config, PipelineConfig):
            return config
        try:
            return PipelineConfig.model_validate(config)
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid pipeline configuration",
                context={"errors": e.errors(include_url=False)},
                original_exception=e
            )
    
    async def _load_reference(self, pipeline: PipelineConfig) -> ReferenceCache:
        tables = required_tables(pipeline)
        if self.warehouse is None or not tables:
            return ReferenceCache()
        
        try:
            return await ReferenceCache.load(self.warehouse, tables)
        except Exception as e:
            raise ConfigurationError(
                "Failed to load reference tables",
                context={"tables": tables},
                original_exception=e
            )
