"""
Staging area: durable buffer of raw records between extraction and transform
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from datetime import datetime
from pydantic_core import to_json
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import insert, select, update
from models.base import ProcessingStatus
from models.staged_record import StagedRecord
from schemas.records import StagedEnvelope
from core.config import settings
import logging

logger = logging.getLogger(__name__)


# Statuses a staged row may be in before moving to the key status
ALLOWED_FROM = {
    ProcessingStatus.TRANSFORMED: [ProcessingStatus.PENDING],
    ProcessingStatus.FAILED: [ProcessingStatus.PENDING, ProcessingStatus.TRANSFORMED],
}


def encode_payload(record: Any) -> bytes:
    """Serialize a raw source record into the opaque staging payload"""
    return to_json(record)


class StagingRepository:
    """
    Reads and writes StagedRecord rows.
    
    Status writes are guarded so a row never moves back to PENDING or
    out of FAILED.
    """
    
    def __init__(self, db_session: AsyncSession):
        self.db = db_session
    
    async def insert_many(self, rows: Sequence[Mapping[str, Any]]):
        """Insert one chunk of staged rows and commit"""
        await self.db.execute(insert(StagedRecord), list(rows))
        await self.db.commit()
    
    async def fetch_batch(self, batch_id: str, attempt: Optional[int] = None) -> List[StagedEnvelope]:
        """Staged rows of the batch in staging order, limited to one attempt when given"""
        query = select(StagedRecord).where(StagedRecord.batch_id == batch_id)
        if attempt is not None:
            query = query.where(StagedRecord.attempt == attempt)
        result = await self.db.execute(query.order_by(StagedRecord.stg_id))
        return [StagedEnvelope.model_validate(row) for row in result.scalars().all()]
    
    async def _transition(self, stg_id: int, status: ProcessingStatus, **values):
        await self.db.execute(
            update(StagedRecord)
            .where(
                StagedRecord.stg_id == stg_id,
                StagedRecord.processing_status.in_(ALLOWED_FROM[status])
            )
            .values(processing_status=status, **values)
        )
        await self.db.commit()
    
    async def mark_transformed(self, stg_id: int):
        await self._transition(stg_id, ProcessingStatus.TRANSFORMED)
    
    async def mark_failed(self, stg_id: int, errors: str):
        await self._transition(stg_id, ProcessingStatus.FAILED, processing_errors=errors)
    
    async def record_quality_score(self, stg_id: int, score: float):
        """Attach the validation score of a record that passed its rules"""
        await self.db.execute(
            update(StagedRecord)
            .where(StagedRecord.stg_id == stg_id)
            .values(data_quality_score=score)
        )
        await self.db.commit()


class Stager:
    """
    Buffer every extracted record before transformation.
    
    Rows are written in fixed-size chunks, then the rows of this attempt
    are read back so the transformer always works from the durable copy.
    Rows left by an earlier attempt of the same batch are never re-read.
    """
    
    def __init__(self, store: StagingRepository, chunk_size: Optional[int] = None):
        self.store = store
        self.chunk_size = chunk_size or settings.ETL_STAGING_CHUNK_SIZE
    
    def _rows(
        self,
        batch_id: str,
        extracted: Mapping[str, Iterable[Any]],
        pipeline_table: Optional[str],
        attempt: int
    ) -> List[Dict[str, Any]]:
        extracted_at = datetime.utcnow()
        return [
            {
                "batch_id": batch_id,
                "attempt": attempt,
                "source_system": source_name,
                "pipeline_table": pipeline_table,
                "payload": encode_payload(record),
                "extracted_at": extracted_at,
                "processing_status": ProcessingStatus.PENDING,
            }
            for source_name, records in extracted.items()
            for record in records
        ]
    
    async def stage(
        self,
        batch_id: str,
        extracted: Mapping[str, Iterable[Any]],
        pipeline_table: Optional[str] = None,
        attempt: int = 1
    ) -> List[StagedEnvelope]:
        """
        Stage extracted records and return the batch's staged rows.
        
        Args:
            batch_id: Batch the rows belong to
            extracted: {source name: [raw records]}
            pipeline_table: The pipeline's canonical table, kept for audit
            attempt: Attempt of the batch writing these rows
        """
        rows = self._rows(batch_id, extracted, pipeline_table, attempt)
        
        for i in range(0, len(rows), self.chunk_size):
            chunk = rows[i:i + self.chunk_size]
            await self.store.insert_many(chunk)
            logger.debug(f"Staged chunk {i // self.chunk_size + 1}: {len(chunk)} records")
        
        staged = await self.store.fetch_batch(batch_id, attempt)
        logger.info(f"Staged {len(staged)} records for batch {batch_id} (attempt {attempt})")
        return staged
