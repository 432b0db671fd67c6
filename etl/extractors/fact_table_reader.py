"""
Fact-table source reader: runs a precomputed aggregate query
"""

from typing import List, Dict, Any, Tuple
from etl.extractors.base import ExtractionContext, SourceReader
from etl.warehouse import Warehouse
from schemas.pipeline import SourceDescriptor
from models.base import SourceType
from core.exceptions import DatabaseExtractionError, PlaceholderError
import logging

logger = logging.getLogger(__name__)

DATE_KEY_PARAM = "date_key"


def bind_date_key(query: str, date_key: int) -> Tuple[str, Dict[str, Any]]:
    """
    Bind yesterday's date key into the query.
    
    A single positional `?` becomes `:date_key`; a named `:date_key` is bound
    as-is; no placeholder means no parameters. `?` inside quoted literals
    is not distinguished from a placeholder.
    
    Raises:
        PlaceholderError: More than one positional placeholder
    """
    positional = query.count("?")
    if positional > 1:
        raise PlaceholderError(
            f"Fact query has {positional} positional placeholders, expected at most one",
            context={"query": query}
        )
    if positional == 1:
        query = query.replace("?", f":{DATE_KEY_PARAM}")
    
    if f":{DATE_KEY_PARAM}" in query:
        return query, {DATE_KEY_PARAM: date_key}
    return query, {}


class FactTableSourceReader(SourceReader):
    """Execute the configured query, e.g. a daily fact query for yesterday"""
    
    source_type = SourceType.FACT_TABLE.value
    
    def __init__(self, warehouse: Warehouse):
        self.warehouse = warehouse
    
    async def read(
        self,
        source_name: str,
        descriptor: SourceDescriptor,
        context: ExtractionContext
    ) -> List[Dict[str, Any]]:
        if not descriptor.query:
            raise DatabaseExtractionError(
                "Fact table source has no query configured",
                context={"source_name": source_name, "batch_id": context.batch_id}
            )
        
        query, params = bind_date_key(descriptor.query, context.previous_date_key)
        logger.info(f"Running fact query for {source_name} with params {params}")
        
        return await self.warehouse.select(query, params, connection=descriptor.connection)
