"""
Pydantic schemas for pipeline configuration and stage values.

Schemas:
    pipeline: PipelineConfig, SourceDescriptor, DestinationDescriptor
    records: StagedEnvelope, TransformedRecord, ValidationResult,
             DestinationLoadResult, LoadResult

Usage:
    from schemas.pipeline import PipelineConfig
    from schemas.records import LoadResult

Example:
    config = PipelineConfig.model_validate({
        "table": "shipments",
        "sources": {"tms_api": {"type": "api", "endpoint": "https://..."}},
        "destinations": {"fact_shipments": {"load_type": "upsert", "merge_key": "shipment_id"}},
    })
"""

__all__ = [
    "PipelineConfig",
    "SourceDescriptor",
    "DestinationDescriptor",
    "StagedEnvelope",
    "TransformedRecord",
    "ValidationResult",
    "DestinationLoadResult",
    "LoadResult",
]
