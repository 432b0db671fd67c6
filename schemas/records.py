"""
Pydantic schemas for values flowing between pipeline stages
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import ProcessingStatus


class StagedEnvelope(BaseModel):
    """
    Durable representation of one staged record as read back from staging.
    
    The payload is opaque bytes; only the transformer decodes it.
    """
    
    model_config = ConfigDict(from_attributes=True, frozen=True)
    
    stg_id: int
    batch_id: str
    attempt: int = 1
    source_system: str
    payload: bytes
    extracted_at: datetime
    processing_status: ProcessingStatus = ProcessingStatus.PENDING


class TransformedRecord(BaseModel):
    """Canonical record plus its back-references into staging"""
    
    stg_id: int
    batch_id: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    validation_score: Optional[float] = None
    
    def to_row(self) -> Dict[str, Any]:
        """Destination row: canonical fields plus lineage columns"""
        row = dict(self.fields)
        row["stg_id"] = self.stg_id
        row["batch_id"] = self.batch_id
        if self.validation_score is not None:
            row["validation_score"] = self.validation_score
        return row


class ValidationResult(BaseModel):
    """Outcome of applying a rule set to one record"""
    
    valid: bool
    score: float = Field(1.0, ge=0.0, le=1.0)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    
    @property
    def error_count(self) -> int:
        return len(self.errors)
    
    def errors_by_type(self, error_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.errors if e.get("type") == error_type]


class DestinationLoadResult(BaseModel):
    """Counters for one destination"""
    
    table: str
    records_processed: int = 0
    records_successful: int = 0
    records_failed: int = 0


class LoadResult(BaseModel):
    """
    Counters across every destination of a run.
    
    success is true iff records_failed == 0 summed over all destinations.
    """
    
    success: bool = False
    records_processed: int = 0
    records_successful: int = 0
    records_failed: int = 0
    destinations: Dict[str, DestinationLoadResult] = Field(default_factory=dict)
    
    def add(self, name: str, result: DestinationLoadResult):
        """Fold one destination's counters into the totals"""
        self.destinations[name] = result
        self.records_processed += result.records_processed
        self.records_successful += result.records_successful
        self.records_failed += result.records_failed
        self.success = self.records_failed == 0
