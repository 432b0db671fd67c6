"""
Loader stage: write validated records to every configured destination
"""

from typing import Dict, Iterable, Mapping, Optional, Sequence
from etl.loaders.base import DestinationWriter
from schemas.pipeline import DestinationDescriptor
from schemas.records import LoadResult, TransformedRecord
from core.config import settings
from core.exceptions import UnknownLoadTypeError
import logging

logger = logging.getLogger(__name__)


class Loader:
    """
    Dispatch each destination to the writer registered for its load_type.
    
    success is true iff no record failed at any destination. Exceptions
    raised by a writer (as opposed to counted chunk failures) abort the
    load.
    """
    
    def __init__(self, writers: Iterable[DestinationWriter], batch_size: Optional[int] = None):
        self.writers: Dict[str, DestinationWriter] = {w.load_type: w for w in writers}
        self.batch_size = batch_size or settings.ETL_LOAD_BATCH_SIZE
    
    def register(self, writer: DestinationWriter):
        self.writers[writer.load_type] = writer
    
    async def load(
        self,
        records: Sequence[TransformedRecord],
        destinations: Mapping[str, DestinationDescriptor]
    ) -> LoadResult:
        result = LoadResult()
        rows = [record.to_row() for record in records]
        
        for name, descriptor in destinations.items():
            writer = self.writers.get(descriptor.load_type)
            if writer is None:
                raise UnknownLoadTypeError(
                    f"Unknown load type: {descriptor.load_type}",
                    context={"destination": name, "load_type": descriptor.load_type}
                )
            
            table = descriptor.table or name
            projected = rows
            if descriptor.columns:
                projected = [{c: row.get(c) for c in descriptor.columns} for row in rows]
            
            destination_result = await writer.write(
                table,
                projected,
                descriptor,
                descriptor.batch_size or self.batch_size
            )
            result.add(name, destination_result)
            
            logger.info(
                f"Loaded {destination_result.records_successful}/"
                f"{destination_result.records_processed} records into {table} "
                f"({descriptor.load_type})"
            )
        
        result.success = result.records_failed == 0
        return result
