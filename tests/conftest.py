"""
Pytest configuration and fixtures

The ledger, staging store and warehouse are replaced by in-memory fakes
with the same async interface, so pipeline runs can be exercised end to
end without a database.
"""

import pytest
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from datetime import datetime
from etl.aggregation import Aggregator
from etl.cache import InMemoryAnalyticsCache
from etl.extractors import DatabaseSourceReader, Extractor, FactTableSourceReader
from etl.ledger import check_transition, execution_metrics, generate_batch_id
from etl.loaders import AppendWriter, Loader, UpsertWriter
from etl.retry import RetryPolicy
from etl.runner import EtlRunner
from etl.staging import ALLOWED_FROM, Stager
from etl.pipelines import CACHE_INVALIDATION_PATTERNS
from models.base import BatchStatus, ProcessingStatus
from models.etl_batch import EtlBatch
from core.exceptions import BatchNotFoundError
from schemas.records import StagedEnvelope


class FakeBatchLedger:
    """BatchLedger backed by a dict of EtlBatch objects"""

    def __init__(self):
        self.batches: Dict[str, EtlBatch] = {}
        self.status_history: List[tuple] = []
        self.rollbacks = 0

    def add(
        self,
        pipeline_name: str,
        status: BatchStatus = BatchStatus.PENDING,
        started_at: Optional[datetime] = None,
        batch_id: Optional[str] = None
    ) -> EtlBatch:
        batch = EtlBatch(
            batch_id=batch_id or generate_batch_id(pipeline_name),
            pipeline_name=pipeline_name,
            status=status,
            attempts=0,
            records_processed=0,
            records_successful=0,
            records_failed=0,
            started_at=started_at or datetime.utcnow(),
            created_at=started_at or datetime.utcnow()
        )
        self.batches[batch.batch_id] = batch
        return batch

    async def create_batch(self, pipeline_name: str, triggered_by: Optional[str] = None) -> EtlBatch:
        batch = self.add(pipeline_name)
        batch.triggered_by = triggered_by
        return batch

    async def find(self, batch_id: str) -> Optional[EtlBatch]:
        return self.batches.get(batch_id)

    async def update_status(self, batch_id, status, message=None, result=None) -> EtlBatch:
        batch = self.batches.get(batch_id)
        if batch is None:
            raise BatchNotFoundError(f"ETL batch not found: {batch_id}", context={"batch_id": batch_id})

        check_transition(batch_id, batch.status, status)
        if status == BatchStatus.RUNNING and batch.status != BatchStatus.RUNNING:
            batch.attempts += 1
        batch.status = status
        if result:
            batch.records_processed = result.get("records_processed", 0)
            batch.records_successful = result.get("records_successful", 0)
            batch.records_failed = result.get("records_failed", 0)
            batch.result_summary = dict(result)
        if message:
            batch.error_message = message
        if status.is_terminal:
            batch.completed_at = datetime.utcnow()
            batch.execution_metrics = execution_metrics(batch)

        self.status_history.append((batch_id, status, message))
        return batch

    async def last_completed_started_at(self, pipeline_name: str) -> Optional[datetime]:
        completed = [
            b.started_at for b in self.batches.values()
            if b.pipeline_name == pipeline_name and b.status == BatchStatus.COMPLETED
        ]
        return max(completed) if completed else None

    async def rollback(self):
        self.rollbacks += 1


class FakeStagingStore:
    """StagingRepository backed by a dict keyed by stg_id"""

    def __init__(self):
        self.rows: Dict[int, Dict[str, Any]] = {}
        self.insert_calls: List[int] = []
        self._next_id = 1

    async def insert_many(self, rows: Sequence[Mapping[str, Any]]):
        self.insert_calls.append(len(rows))
        for row in rows:
            self.rows[self._next_id] = {
                **row,
                "stg_id": self._next_id,
                "processing_errors": None,
                "data_quality_score": None,
            }
            self._next_id += 1

    async def fetch_batch(self, batch_id: str, attempt: Optional[int] = None) -> List[StagedEnvelope]:
        return [
            StagedEnvelope.model_validate(row)
            for stg_id, row in sorted(self.rows.items())
            if row["batch_id"] == batch_id and (attempt is None or row.get("attempt", 1) == attempt)
        ]

    def _transition(self, stg_id: int, status: ProcessingStatus, **values):
        row = self.rows[stg_id]
        if row["processing_status"] in ALLOWED_FROM[status]:
            row["processing_status"] = status
            row.update(values)

    async def mark_transformed(self, stg_id: int):
        self._transition(stg_id, ProcessingStatus.TRANSFORMED)

    async def mark_failed(self, stg_id: int, errors: str):
        self._transition(stg_id, ProcessingStatus.FAILED, processing_errors=errors)

    async def record_quality_score(self, stg_id: int, score: float):
        self.rows[stg_id]["data_quality_score"] = score

    def by_status(self, status: ProcessingStatus) -> List[Dict[str, Any]]:
        return [r for r in self.rows.values() if r["processing_status"] == status]


class FakeWarehouse:
    """
    Warehouse keeping tables as lists of dicts and recording every call.

    fail_insert(table, rows) -> bool makes matching inserts raise.
    """

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self.insert_calls: List[tuple] = []
        self.delete_calls: List[tuple] = []
        self.fetch_calls: List[Dict[str, Any]] = []
        self.select_calls: List[tuple] = []
        self.procedure_calls: List[str] = []
        self.query_results: List[Dict[str, Any]] = []
        self.fail_insert: Optional[Callable[[str, Sequence[Mapping[str, Any]]], bool]] = None

    def _insert(self, table, rows):
        if self.fail_insert and self.fail_insert(table, rows):
            raise RuntimeError(f"insert into {table} failed")
        self.insert_calls.append((table, [dict(r) for r in rows]))
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)

    async def insert_rows(self, table_name, rows, connection=None) -> int:
        self._insert(table_name, rows)
        return len(rows)

    async def replace_rows(self, table_name, key_columns, rows, connection=None) -> int:
        keys = {tuple(r.get(k) for k in key_columns) for r in rows}
        self.delete_calls.append((table_name, keys))
        existing = self.tables.get(table_name, [])
        kept = [r for r in existing if tuple(r.get(k) for k in key_columns) not in keys]

        self._insert(table_name, rows)
        self.tables[table_name] = kept + [dict(r) for r in rows]
        return len(rows)

    async def fetch_table(
        self,
        table_name,
        connection=None,
        incremental_field=None,
        since=None,
        where_clause=None,
        limit=None
    ):
        self.fetch_calls.append({
            "table": table_name,
            "connection": connection,
            "incremental_field": incremental_field,
            "since": since,
            "where_clause": where_clause,
            "limit": limit,
        })
        rows = list(self.tables.get(table_name, []))
        if incremental_field and since is not None:
            rows = [r for r in rows if r[incremental_field] > since]
        return rows[:limit] if limit else rows

    async def select(self, query, params=None, connection=None):
        self.select_calls.append((query, dict(params or {})))
        return list(self.query_results)

    async def call_procedure(self, name, connection=None):
        self.procedure_calls.append(name)


@pytest.fixture
def ledger():
    return FakeBatchLedger()


@pytest.fixture
def staging_store():
    return FakeStagingStore()


@pytest.fixture
def warehouse():
    return FakeWarehouse()


@pytest.fixture
def cache():
    return InMemoryAnalyticsCache(prefix="analytics")


@pytest.fixture
def make_runner(ledger, staging_store, warehouse, cache):
    """Build an EtlRunner over the fakes; extra readers may be passed in"""
    def _make(readers=(), retry_policy=None, load_batch_size=None):
        extractor = Extractor(ledger, {})
        for reader in (DatabaseSourceReader(warehouse), FactTableSourceReader(warehouse), *readers):
            extractor.register(reader)

        return EtlRunner(
            ledger=ledger,
            extractor=extractor,
            stager=Stager(staging_store, chunk_size=1000),
            store=staging_store,
            loader=Loader(
                [AppendWriter(warehouse), UpsertWriter(warehouse)],
                batch_size=load_batch_size or 1000
            ),
            aggregator=Aggregator(
                warehouse,
                cache,
                CACHE_INVALIDATION_PATTERNS,
                procedure="sp_update_daily_aggregations"
            ),
            warehouse=warehouse,
            retry_policy=retry_policy or RetryPolicy(max_attempts=3, backoff=(60, 300, 900))
        )

    return _make


@pytest.fixture
def shipment_records():
    """Raw shipment rows as they arrive from the operational database"""
    return [
        {
            "shipment_id": 1,
            "tracking_number": " TRK000001 ",
            "status": "in transit",
            "client_id": 10,
            "origin_branch_id": 1,
            "dest_branch_id": 2,
            "customer_id": 100,
            "weight_kg": 2.5,
            "declared_value": 150.0,
            "created_at": "2024-01-15T08:00:00",
            "updated_at": "2024-01-15T09:00:00",
        },
        {
            "shipment_id": 2,
            "tracking_number": "TRK000002",
            "status": "delivered",
            "client_id": 11,
            "origin_branch_id": 2,
            "dest_branch_id": 1,
            "customer_id": 101,
            "weight_kg": None,
            "declared_value": 80.0,
            "created_at": "2024-01-15T10:00:00",
            "updated_at": "2024-01-15T11:00:00",
        },
    ]
