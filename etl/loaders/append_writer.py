"""
Append destination: insert every chunk as-is
"""

from typing import Any, Dict, Sequence
from etl.loaders.base import DestinationWriter, chunked
from schemas.pipeline import DestinationDescriptor
from schemas.records import DestinationLoadResult
from models.base import LoadType
from core.exceptions import DatabaseError
import logging

logger = logging.getLogger(__name__)


class AppendWriter(DestinationWriter):
    """
    Plain inserts. A failed chunk is counted and logged; later chunks
    are still attempted.
    
    Re-running a batch over an overlapping window inserts the same
    records again; append destinations carry no dedup step.
    """
    
    load_type = LoadType.APPEND.value
    
    async def write(
        self,
        table: str,
        rows: Sequence[Dict[str, Any]],
        descriptor: DestinationDescriptor,
        batch_size: int
    ) -> DestinationLoadResult:
        result = DestinationLoadResult(table=table)
        
        for chunk_number, chunk in enumerate(chunked(rows, batch_size), start=1):
            result.records_processed += len(chunk)
            try:
                await self.warehouse.insert_rows(table, chunk, descriptor.connection)
                result.records_successful += len(chunk)
            except Exception as e:
                result.records_failed += len(chunk)
                error = DatabaseError(
                    f"Append chunk {chunk_number} failed for {table}",
                    context={"table_name": table, "operation": "INSERT", "chunk_size": len(chunk)},
                    original_exception=e
                )
                logger.error(str(error), extra={"error_context": error.to_dict()})
        
        return result
