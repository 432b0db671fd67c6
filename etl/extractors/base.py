"""
Source reader interface and per-run extraction context
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional
from datetime import date, datetime, timedelta
from pydantic import BaseModel, ConfigDict, Field
from schemas.pipeline import SourceDescriptor


class ExtractionContext(BaseModel):
    """
    What a reader needs to know about the run it is extracting for.
    
    watermark is the started_at of the pipeline's latest COMPLETED batch;
    None means a full (non-incremental) extraction.
    """
    
    model_config = ConfigDict(frozen=True)
    
    batch_id: str
    pipeline_name: str
    watermark: Optional[datetime] = None
    run_date: date = Field(default_factory=date.today)
    
    @property
    def previous_date_key(self) -> int:
        """Yesterday's date key (YYYYMMDD)"""
        return int((self.run_date - timedelta(days=1)).strftime("%Y%m%d"))


class SourceReader(ABC):
    """
    Abstract base class for one kind of extraction source.
    
    Readers are stateless across runs; everything run-specific arrives
    through the ExtractionContext. Any exception raised by read() is
    fatal to the run.
    """
    
    source_type: str = ""
    
    @abstractmethod
    async def read(
        self,
        source_name: str,
        descriptor: SourceDescriptor,
        context: ExtractionContext
    ) -> List[Dict[str, Any]]:
        """
        Fetch raw records from the source.
        
        Args:
            source_name: Configured name of the source
            descriptor: Source configuration
            context: Batch id, pipeline name and incremental watermark
            
        Returns:
            List of raw record dictionaries
        """
        pass
