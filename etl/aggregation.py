"""
Post-load aggregation refresh and cache invalidation
"""

from typing import Dict, List, Mapping, Optional, Sequence
from etl.cache import AnalyticsCache
from etl.warehouse import Warehouse
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class Aggregator:
    """
    Refresh downstream aggregates and drop stale cache namespaces.
    
    invalidation_patterns maps pipeline name to glob patterns. A pipeline
    missing from the map invalidates nothing.
    """
    
    def __init__(
        self,
        warehouse: Warehouse,
        cache: AnalyticsCache,
        invalidation_patterns: Optional[Mapping[str, Sequence[str]]] = None,
        procedure: Optional[str] = None,
        connection: Optional[str] = None
    ):
        self.warehouse = warehouse
        self.cache = cache
        self.invalidation_patterns: Dict[str, List[str]] = {
            name: list(patterns) for name, patterns in (invalidation_patterns or {}).items()
        }
        self.procedure = procedure or settings.AGGREGATION_PROCEDURE
        self.connection = connection
    
    def patterns_for(self, pipeline_name: str) -> List[str]:
        return self.invalidation_patterns.get(pipeline_name, [])
    
    async def refresh(self, pipeline_name: str, batch_id: str) -> Dict[str, int]:
        """
        Call the aggregation procedure, then invalidate the pipeline's
        cache patterns.
        
        Returns:
            {pattern: number of keys removed}
        """
        await self.warehouse.call_procedure(self.procedure, self.connection)
        logger.info(f"Aggregations updated for batch {batch_id} ({self.procedure})")
        
        removed: Dict[str, int] = {}
        for pattern in self.patterns_for(pipeline_name):
            removed[pattern] = await self.cache.invalidate_pattern(pattern)
        
        if removed:
            logger.info(
                f"Cache invalidated for {pipeline_name}: "
                + ", ".join(f"{p} ({n} keys)" for p, n in removed.items())
            )
        return removed
