from sqlalchemy import Column, String, Enum, DateTime, Integer, Text, Index
from sqlalchemy.dialects.postgresql import JSONB
from datetime import datetime
from models.base import Base, BatchStatus


class EtlBatch(Base):
    """
    Ledger row for one pipeline batch.
    
    Purpose:
    - Identity and status of a batch across its attempts
    - Outcome counters folded in from the load result
    - Incremental watermark source (started_at of the latest COMPLETED batch)
    
    Design:
    - Mutated only by the batch's own in-flight attempt
    - COMPLETED and FAILED rows are immutable
    - Never deleted by the pipeline (retention is external)
    """
    __tablename__ = "etl_batches"
    
    batch_id = Column(String(50), primary_key=True)
    pipeline_name = Column(String(100), nullable=False)
    
    status = Column(Enum(BatchStatus), default=BatchStatus.PENDING, nullable=False)
    error_message = Column(Text, nullable=True)
    attempts = Column(Integer, default=0, nullable=False)
    
    # Timestamps
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    
    # Result summary
    records_processed = Column(Integer, default=0)
    records_successful = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    result_summary = Column(JSONB, nullable=True)
    execution_metrics = Column(JSONB, nullable=True)
    
    triggered_by = Column(String(100), nullable=True)
    
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    __table_args__ = (
        Index("idx_etl_batches_pipeline_status", "pipeline_name", "status"),
        Index("idx_etl_batches_started", "started_at"),
    )
