"""
Transformer stage: decode staged payloads and map them into canonical records
"""

from typing import List, Optional, Sequence
from pydantic_core import from_json
from etl.staging import StagingRepository
from etl.transformers.data_transformer import DataTransformer
from models.base import ProcessingStatus
from schemas.pipeline import PipelineConfig
from schemas.records import StagedEnvelope, TransformedRecord
from core.exceptions import TransformationError
import logging

logger = logging.getLogger(__name__)


class Transformer:
    """
    Run the DataTransformer over every staged record of a batch.
    
    A record that fails is marked FAILED in staging with the error
    attached; the remaining records are still transformed. Envelopes that
    already left PENDING are skipped.
    """
    
    def __init__(self, store: StagingRepository, data_transformer: Optional[DataTransformer] = None):
        self.store = store
        self.data_transformer = data_transformer or DataTransformer()
    
    async def transform(
        self,
        staged: Sequence[StagedEnvelope],
        config: PipelineConfig
    ) -> List[TransformedRecord]:
        transformed: List[TransformedRecord] = []
        failed = 0
        skipped = 0
        
        for envelope in staged:
            if envelope.processing_status != ProcessingStatus.PENDING:
                skipped += 1
                continue
            
            try:
                raw = from_json(envelope.payload)
                fields = self.data_transformer.transform(raw, config)
            except Exception as e:
                failed += 1
                error = e if isinstance(e, TransformationError) else TransformationError(
                    f"Transformation failed: {str(e)}",
                    context={"stg_id": envelope.stg_id, "batch_id": envelope.batch_id},
                    original_exception=e
                )
                error.context.setdefault("stg_id", envelope.stg_id)
                error.context.setdefault("batch_id", envelope.batch_id)
                logger.error(
                    f"Record transformation failed: stg_id={envelope.stg_id}",
                    extra={"error_context": error.to_dict()}
                )
                await self.store.mark_failed(envelope.stg_id, error.message)
                continue
            
            await self.store.mark_transformed(envelope.stg_id)
            transformed.append(TransformedRecord(
                stg_id=envelope.stg_id,
                batch_id=envelope.batch_id,
                fields=fields
            ))
        
        logger.info(
            f"Data transformation completed: {len(transformed)} transformed, "
            f"{failed} failed, {skipped} already processed"
        )
        return transformed
