"""
Upsert destination: replace rows matching the incoming merge keys
"""

from typing import Any, Dict, Sequence
from etl.loaders.base import DestinationWriter, chunked
from schemas.pipeline import DestinationDescriptor
from schemas.records import DestinationLoadResult
from models.base import LoadType
from core.exceptions import ConfigurationError, DatabaseError
import logging

logger = logging.getLogger(__name__)


class UpsertWriter(DestinationWriter):
    """
    Delete-then-insert per chunk.
    
    Existing rows whose merge key is in the chunk's key set are deleted
    and the chunk is inserted, in one transaction. Loading the same
    records twice leaves the same row set as loading them once.
    """
    
    load_type = LoadType.UPSERT.value
    
    async def write(
        self,
        table: str,
        rows: Sequence[Dict[str, Any]],
        descriptor: DestinationDescriptor,
        batch_size: int
    ) -> DestinationLoadResult:
        merge_keys = descriptor.merge_keys
        if not merge_keys:
            raise ConfigurationError(
                f"Upsert destination {table} has no merge_key",
                context={"table_name": table, "load_type": self.load_type}
            )
        
        result = DestinationLoadResult(table=table)
        
        for chunk_number, chunk in enumerate(chunked(rows, batch_size), start=1):
            result.records_processed += len(chunk)
            try:
                await self.warehouse.replace_rows(table, merge_keys, chunk, descriptor.connection)
                result.records_successful += len(chunk)
            except Exception as e:
                result.records_failed += len(chunk)
                error = DatabaseError(
                    f"Upsert chunk {chunk_number} failed for {table}",
                    context={
                        "table_name": table,
                        "operation": "DELETE+INSERT",
                        "merge_key": descriptor.merge_key,
                        "chunk_size": len(chunk)
                    },
                    original_exception=e
                )
                logger.error(str(error), extra={"error_context": error.to_dict()})
        
        return result
