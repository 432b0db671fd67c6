"""
Unit tests for warehouse statements (engine mocked)
"""

import pytest
from contextlib import asynccontextmanager
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock
from etl.warehouse import Warehouse, _columns, _table
from core.database import ConnectionRegistry


def mocked_warehouse():
    conn = AsyncMock()
    conn.execute.return_value = MagicMock(rowcount=1)

    @asynccontextmanager
    async def open_connection():
        yield conn

    engine = MagicMock()
    engine.begin = open_connection
    engine.connect = open_connection
    connections = MagicMock()
    connections.get_engine.return_value = engine
    return Warehouse(connections), connections, conn


def sql(statement):
    return str(statement.compile(compile_kwargs={"literal_binds": True}))


class TestHelpers:
    """Table and column helpers"""

    def test_columns_union_in_first_seen_order(self):
        """Columns are the union of row keys in order"""
        assert _columns([{"a": 1, "b": 2}, {"c": 3, "a": 4}]) == ["a", "b", "c"]

    def test_schema_qualified_table(self):
        """schema.table names keep their schema"""
        table = _table("analytics.fact_shipments", ["shipment_id"])

        assert table.schema == "analytics"
        assert table.name == "fact_shipments"


class TestWarehouse:
    """Warehouse statements through the registry"""

    @pytest.mark.asyncio
    async def test_insert_rows_fills_missing_columns(self):
        """Rows missing a column insert NULL"""
        warehouse, connections, conn = mocked_warehouse()

        count = await warehouse.insert_rows("fact_shipments", [{"a": 1}, {"b": 2}], connection="dw")

        assert count == 2
        connections.get_engine.assert_called_with("dw")
        statement, params = conn.execute.await_args.args
        assert params == [{"a": 1, "b": None}, {"a": None, "b": 2}]
        assert "INSERT INTO fact_shipments" in str(statement)

    @pytest.mark.asyncio
    async def test_insert_nothing(self):
        """Empty inserts touch no connection"""
        warehouse, connections, conn = mocked_warehouse()

        assert await warehouse.insert_rows("fact_shipments", []) == 0
        conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_replace_rows_deletes_incoming_keys_then_inserts(self):
        """Delete of incoming keys precedes the insert"""
        warehouse, _, conn = mocked_warehouse()

        await warehouse.replace_rows(
            "dim_customer",
            ["customer_id"],
            [{"customer_id": 1}, {"customer_id": 2}, {"customer_id": 2}]
        )

        delete_statement = conn.execute.await_args_list[0].args[0]
        insert_statement = conn.execute.await_args_list[1].args[0]
        assert "DELETE FROM dim_customer WHERE dim_customer.customer_id IN (1, 2)" in sql(delete_statement)
        assert "INSERT INTO dim_customer" in str(insert_statement)

    @pytest.mark.asyncio
    async def test_replace_rows_with_composite_key(self):
        """Composite keys delete by tuple"""
        warehouse, _, conn = mocked_warehouse()

        await warehouse.replace_rows(
            "fact_performance_metrics",
            ["branch_key", "date_key"],
            [{"branch_key": 1, "date_key": 20240115, "shipments": 4}]
        )

        delete_sql = sql(conn.execute.await_args_list[0].args[0])
        assert "(fact_performance_metrics.branch_key, fact_performance_metrics.date_key) IN" in delete_sql

    @pytest.mark.asyncio
    async def test_fetch_table_incremental_filter(self):
        """The watermark filter is combined with the where clause and limit"""
        warehouse, _, conn = mocked_warehouse()
        conn.execute.return_value = []

        await warehouse.fetch_table(
            "shipments",
            incremental_field="updated_at",
            since=datetime(2024, 1, 15, 9),
            where_clause="current_status != 'DELIVERED'",
            limit=1000
        )

        statement = str(conn.execute.await_args.args[0])
        assert "shipments.updated_at >" in statement
        assert "current_status != 'DELIVERED'" in statement
        assert "LIMIT" in statement

    @pytest.mark.asyncio
    async def test_fetch_table_without_watermark(self):
        """No watermark means no filter"""
        warehouse, _, conn = mocked_warehouse()
        conn.execute.return_value = []

        await warehouse.fetch_table("shipments", incremental_field="updated_at", since=None)

        assert "updated_at >" not in str(conn.execute.await_args.args[0])

    @pytest.mark.asyncio
    async def test_call_procedure(self):
        """Procedures are CALLed on the connection"""
        warehouse, _, conn = mocked_warehouse()

        await warehouse.call_procedure("sp_update_daily_aggregations")

        assert str(conn.execute.await_args.args[0]) == "CALL sp_update_daily_aggregations()"


class TestConnectionRegistry:
    """Named connections"""

    def test_unknown_connection(self):
        """Undeclared names raise KeyError"""
        with pytest.raises(KeyError):
            ConnectionRegistry().get_engine("nowhere")

    @pytest.mark.asyncio
    async def test_engines_are_created_once_per_name(self):
        """Engines are cached per connection name"""
        registry = ConnectionRegistry(urls={"accounting_db": "postgresql+asyncpg://etl:pw@localhost:5432/accounting"})

        engine = registry.get_engine("accounting_db")

        assert registry.get_engine("accounting_db") is engine
        assert engine.url.database == "accounting"
        await registry.dispose()
