from sqlalchemy import Column, String, BigInteger, Integer, Enum, Text, Float, DateTime, LargeBinary, ForeignKey, Index
from sqlalchemy.orm import relationship
from models.base import Base, ProcessingStatus


class StagedRecord(Base):
    """
    Durable buffer of raw extracted records, one row per record.
    
    Purpose:
    - Decouple extraction from transform/load
    - Per-record outcome tracking (PENDING -> TRANSFORMED | FAILED)
    - Audit trail after the batch finishes
    
    Design Decisions:
    - payload is an opaque JSON blob; only the transformer decodes it,
      so source shape changes never touch this schema
    - rows are scoped by batch_id, concurrent batches never share rows
    - attempt records which run of the batch wrote the row; a retry only
      reads back its own rows
    """
    __tablename__ = "stg_records"
    
    stg_id = Column(BigInteger, primary_key=True, autoincrement=True)
    batch_id = Column(String(50), ForeignKey("etl_batches.batch_id"), nullable=False)
    attempt = Column(Integer, nullable=False, default=1)
    
    source_system = Column(String(100), nullable=False)
    pipeline_table = Column(String(100), nullable=True)
    payload = Column(LargeBinary, nullable=False)
    extracted_at = Column(DateTime, nullable=False)
    
    processing_status = Column(Enum(ProcessingStatus), default=ProcessingStatus.PENDING, nullable=False)
    processing_errors = Column(Text, nullable=True)
    data_quality_score = Column(Float, nullable=True)
    
    batch = relationship("EtlBatch")
    
    __table_args__ = (
        Index("idx_stg_records_batch", "batch_id", "attempt"),
        Index("idx_stg_records_status", "processing_status"),
    )
