"""
Extractor stage: pull raw records from every configured source
"""

from typing import Dict, List, Any, Mapping, Optional
from datetime import date
from etl.extractors.base import ExtractionContext, SourceReader
from etl.ledger import BatchLedger
from schemas.pipeline import SourceDescriptor
from core.exceptions import ETLException, ExtractionError
import logging
import time

logger = logging.getLogger(__name__)


class Extractor:
    """
    Produce {source name: [raw records]} for one run.
    
    - Sources are read sequentially in configuration order
    - Unknown source types are logged and yield an empty list
    - Any reader failure aborts the whole run (fail fast on data access)
    """
    
    def __init__(self, ledger: BatchLedger, readers: Mapping[str, SourceReader]):
        self.ledger = ledger
        self.readers: Dict[str, SourceReader] = dict(readers)
    
    def register(self, reader: SourceReader):
        """Add or replace the reader for reader.source_type"""
        self.readers[reader.source_type] = reader
    
    async def extract(
        self,
        batch_id: str,
        pipeline_name: str,
        sources: Mapping[str, SourceDescriptor],
        run_date: Optional[date] = None
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Extract every source.
        
        Raises:
            ExtractionError: First source failure, wrapped with context
        """
        start_time = time.monotonic()
        watermark = await self.ledger.last_completed_started_at(pipeline_name)
        context = ExtractionContext(
            batch_id=batch_id,
            pipeline_name=pipeline_name,
            watermark=watermark,
            run_date=run_date or date.today()
        )
        
        data: Dict[str, List[Dict[str, Any]]] = {}
        
        for source_name, descriptor in sources.items():
            reader = self.readers.get(descriptor.type)
            if reader is None:
                logger.warning(
                    f"Unknown extraction type: {descriptor.type}",
                    extra={"source": source_name, "batch_id": batch_id}
                )
                data[source_name] = []
                continue
            
            try:
                data[source_name] = await reader.read(source_name, descriptor, context)
            except ETLException as e:
                logger.error(
                    f"Failed to extract from source: {source_name}",
                    extra={"error_context": e.to_dict(), "batch_id": batch_id}
                )
                raise
            except Exception as e:
                logger.error(
                    f"Failed to extract from source: {source_name}: {str(e)}",
                    extra={"batch_id": batch_id}
                )
                raise ExtractionError(
                    f"Extraction failed for source {source_name}",
                    context={
                        "source_name": source_name,
                        "source_type": descriptor.type,
                        "batch_id": batch_id
                    },
                    original_exception=e
                )
            
            logger.debug(f"Extracted {len(data[source_name])} records from {source_name}")
        
        logger.info(
            f"Data extraction completed for {pipeline_name}: "
            f"{len(data)} sources, {sum(len(r) for r in data.values())} records "
            f"in {time.monotonic() - start_time:.2f}s"
        )
        return data
