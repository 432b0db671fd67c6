"""
Relational table source reader with incremental filtering
"""

from typing import List, Dict, Any
from etl.extractors.base import ExtractionContext, SourceReader
from etl.warehouse import Warehouse
from schemas.pipeline import SourceDescriptor
from models.base import SourceType
from core.exceptions import DatabaseExtractionError
import logging

logger = logging.getLogger(__name__)


class DatabaseSourceReader(SourceReader):
    """
    Extract rows from a table on a named connection.
    
    Supports:
    - Incremental loading: `incremental_field > watermark`
    - Row cap via batch_size
    - Optional raw WHERE clause
    """
    
    source_type = SourceType.DATABASE.value
    
    def __init__(self, warehouse: Warehouse):
        self.warehouse = warehouse
    
    async def read(
        self,
        source_name: str,
        descriptor: SourceDescriptor,
        context: ExtractionContext
    ) -> List[Dict[str, Any]]:
        if not descriptor.table:
            raise DatabaseExtractionError(
                "Database source has no table configured",
                context={"source_name": source_name, "batch_id": context.batch_id}
            )
        
        since = context.watermark if descriptor.incremental_field else None
        logger.info(
            f"Reading {descriptor.table} for {source_name} "
            f"(since: {since.isoformat() if since else 'full'})"
        )
        
        return await self.warehouse.fetch_table(
            descriptor.table,
            connection=descriptor.connection,
            incremental_field=descriptor.incremental_field,
            since=since,
            where_clause=descriptor.where_clause,
            limit=descriptor.batch_size
        )
