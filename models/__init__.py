"""
SQLAlchemy ORM models for the pipeline's own tables.

Models:
    base: Declarative base and shared enums (BatchStatus, ProcessingStatus,
          SourceType, LoadType)
    etl_batch: Batch ledger, one row per pipeline batch
    staged_record: Staging area, one row per extracted record

Destination (warehouse) tables are not modelled here; the loader writes to
them by name.

Relationships:
    - EtlBatch -> StagedRecord (one-to-many by batch_id)
"""

__all__ = [
    "Base",
    "BatchStatus",
    "ProcessingStatus",
    "SourceType",
    "LoadType",
    "EtlBatch",
    "StagedRecord",
]
