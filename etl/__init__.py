"""
ETL batch pipeline.

Stages:
    extractors: api / database / fact_table sources -> raw records
    staging: durable buffer of raw records per batch
    transformers: canonical mapping with per-record isolation
    validators: rule sets and quality scores
    loaders: append / upsert destinations
    aggregation: aggregate refresh and cache invalidation

Orchestration:
    runner.EtlRunner: one attempt of a batch
    scheduler.EtlScheduler: periodic submission, timeout and retries
    ledger.BatchLedger: batch status and history
"""
