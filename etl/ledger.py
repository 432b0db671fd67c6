"""
Batch ledger: durable identity, status and outcome of each pipeline batch.
"""

from typing import Any, Dict, List, Mapping, Optional
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from models.base import BatchStatus
from models.etl_batch import EtlBatch
from core.exceptions import BatchNotFoundError, InvalidStatusTransitionError
import logging
import random

logger = logging.getLogger(__name__)


# Forward-only, except RUNNING -> RETRY -> RUNNING across attempts.
# RUNNING -> RUNNING keeps repeated writes of the current status idempotent.
ALLOWED_TRANSITIONS = {
    BatchStatus.PENDING: {BatchStatus.RUNNING, BatchStatus.FAILED},
    BatchStatus.RUNNING: {
        BatchStatus.RUNNING,
        BatchStatus.RETRY,
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
    },
    BatchStatus.RETRY: {BatchStatus.RUNNING, BatchStatus.FAILED},
    BatchStatus.COMPLETED: set(),
    BatchStatus.FAILED: set(),
}


def generate_batch_id(pipeline_name: str, now: Optional[datetime] = None) -> str:
    """PIPELINE[:10]_YYYYmmddHHMMSS_NNNN"""
    now = now or datetime.utcnow()
    suffix = f"{random.randint(0, 9999):04d}"
    return f"{pipeline_name[:10].upper()}_{now.strftime('%Y%m%d%H%M%S')}_{suffix}"


def check_transition(batch_id: str, current: BatchStatus, requested: BatchStatus):
    """Raise InvalidStatusTransitionError unless current -> requested is allowed"""
    if requested not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(
            f"Cannot move batch from {current.value} to {requested.value}",
            context={
                "batch_id": batch_id,
                "current_status": current.value,
                "requested_status": requested.value
            }
        )


def execution_metrics(batch: EtlBatch) -> Dict[str, Any]:
    """Execution time, throughput and success rate of a finished batch"""
    started = batch.started_at or batch.created_at
    completed = batch.completed_at or datetime.utcnow()
    elapsed = max((completed - started).total_seconds(), 0.0) if started else 0.0
    processed = batch.records_processed or 0
    successful = batch.records_successful or 0
    
    return {
        "execution_time_seconds": round(elapsed, 2),
        "throughput_records_per_second": round(processed / elapsed, 2) if elapsed > 0 else 0,
        "success_rate": round(successful / processed * 100, 2) if processed > 0 else 0,
    }


def execution_summary(batch: EtlBatch) -> Dict[str, Any]:
    """Monitoring view of one batch"""
    if batch.completed_at is None:
        return {
            "batch_id": batch.batch_id,
            "status": batch.status.value,
            "started_at": batch.started_at.isoformat() if batch.started_at else None,
            "records_processed": batch.records_processed or 0,
            "attempts": batch.attempts or 0,
            "is_running": True
        }
    
    summary = {
        "batch_id": batch.batch_id,
        "status": batch.status.value,
        "records_processed": batch.records_processed or 0,
        "records_successful": batch.records_successful or 0,
        "records_failed": batch.records_failed or 0,
        "attempts": batch.attempts or 0,
        "is_running": False
    }
    summary.update(execution_metrics(batch))
    return summary


class BatchLedger:
    """
    Reads and writes EtlBatch rows.
    
    Responsibilities:
    - Create batches for submitted runs
    - Enforce the status state machine
    - Provide the incremental watermark
    - Monitoring queries (history, per-pipeline performance)
    """
    
    def __init__(self, db_session: AsyncSession):
        self.db = db_session
    
    async def create_batch(
        self,
        pipeline_name: str,
        triggered_by: Optional[str] = None
    ) -> EtlBatch:
        """Create a PENDING batch for a new pipeline run"""
        batch = EtlBatch(
            batch_id=generate_batch_id(pipeline_name),
            pipeline_name=pipeline_name,
            status=BatchStatus.PENDING,
            triggered_by=triggered_by,
            attempts=0,
            records_processed=0,
            records_successful=0,
            records_failed=0,
            started_at=datetime.utcnow()
        )
        self.db.add(batch)
        await self.db.commit()
        
        logger.info(f"Created ETL batch {batch.batch_id} for pipeline {pipeline_name}")
        return batch
    
    async def find(self, batch_id: str) -> Optional[EtlBatch]:
        """Return the batch or None"""
        result = await self.db.execute(
            select(EtlBatch).where(EtlBatch.batch_id == batch_id)
        )
        return result.scalar_one_or_none()
    
    async def update_status(
        self,
        batch_id: str,
        status: BatchStatus,
        message: Optional[str] = None,
        result: Optional[Mapping[str, Any]] = None
    ) -> EtlBatch:
        """
        Write the batch's current status.
        
        The row is locked for the duration of the write. Entering RUNNING
        counts an attempt; entering COMPLETED or FAILED stamps completion
        and execution metrics.
        
        Raises:
            BatchNotFoundError: No row for batch_id
            InvalidStatusTransitionError: Transition not allowed (terminal row)
        """
        row = await self.db.execute(
            select(EtlBatch)
            .where(EtlBatch.batch_id == batch_id)
            .with_for_update()
        )
        batch = row.scalar_one_or_none()
        
        if batch is None:
            raise BatchNotFoundError(
                f"ETL batch not found: {batch_id}",
                context={"batch_id": batch_id, "requested_status": status.value}
            )
        
        try:
            check_transition(batch_id, batch.status, status)
        except InvalidStatusTransitionError:
            await self.db.rollback()
            raise
        
        if status == BatchStatus.RUNNING and batch.status != BatchStatus.RUNNING:
            batch.attempts = (batch.attempts or 0) + 1
        
        batch.status = status
        
        if result:
            batch.records_processed = result.get("records_processed", 0)
            batch.records_successful = result.get("records_successful", 0)
            batch.records_failed = result.get("records_failed", 0)
            batch.result_summary = dict(result)
        
        if message:
            batch.error_message = message
        
        if status.is_terminal:
            batch.completed_at = datetime.utcnow()
            batch.execution_metrics = {
                **(batch.execution_metrics or {}),
                **execution_metrics(batch)
            }
        
        batch.updated_at = datetime.utcnow()
        await self.db.commit()
        
        logger.info(
            f"Updated ETL batch {batch_id} to {status.value} "
            f"(records={batch.records_processed})"
        )
        return batch
    
    async def last_completed_started_at(self, pipeline_name: str) -> Optional[datetime]:
        """started_at of the most recent COMPLETED batch of the pipeline"""
        result = await self.db.execute(
            select(EtlBatch.started_at)
            .where(
                EtlBatch.pipeline_name == pipeline_name,
                EtlBatch.status == BatchStatus.COMPLETED
            )
            .order_by(EtlBatch.started_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()
    
    async def recent_history(self, hours: int = 24) -> List[EtlBatch]:
        """Batches started within the last `hours`, newest first"""
        since = datetime.utcnow() - timedelta(hours=hours)
        result = await self.db.execute(
            select(EtlBatch)
            .where(EtlBatch.started_at >= since)
            .order_by(EtlBatch.started_at.desc())
        )
        return list(result.scalars().all())
    
    async def pipeline_performance(self, pipeline_name: str, days: int = 7) -> Dict[str, Any]:
        """Aggregate performance of a pipeline's finished batches"""
        since = datetime.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            select(EtlBatch).where(
                EtlBatch.pipeline_name == pipeline_name,
                EtlBatch.started_at >= since,
                EtlBatch.status.in_([BatchStatus.COMPLETED, BatchStatus.FAILED])
            )
        )
        batches = list(result.scalars().all())
        completed = [b for b in batches if b.status == BatchStatus.COMPLETED]
        total_records = sum(b.records_processed or 0 for b in completed)
        durations = [
            (b.completed_at - b.started_at).total_seconds()
            for b in completed
            if b.completed_at and b.started_at
        ]
        
        return {
            "pipeline_name": pipeline_name,
            "total_batches": len(batches),
            "completed_batches": len(completed),
            "success_rate": round(len(completed) / len(batches) * 100, 2) if batches else 0,
            "avg_execution_time_seconds": round(sum(durations) / len(durations), 2) if durations else 0,
            "total_records_processed": total_records,
            "avg_records_per_batch": round(total_records / len(completed), 2) if completed else 0
        }
    
    async def rollback(self):
        """Discard a transaction left open by a failed stage"""
        await self.db.rollback()
