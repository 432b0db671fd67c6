"""
Warehouse persistence boundary: named connections, chunked inserts,
delete-by-key-set and raw parameterized SELECT.

Destination and source tables are addressed by name with lightweight
`sqlalchemy.table()` constructs; nothing here depends on ORM models.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence
from datetime import datetime
from sqlalchemy import column, delete, insert, select, table, text, tuple_
from sqlalchemy.sql import TableClause
from core.database import ConnectionRegistry, registry as default_registry
import logging

logger = logging.getLogger(__name__)


def _table(name: str, columns: Sequence[str]) -> TableClause:
    """Lightweight table construct, schema-qualified when name has a dot"""
    schema = None
    if "." in name:
        schema, name = name.split(".", 1)
    return table(name, *[column(c) for c in columns], schema=schema)


def _columns(rows: Sequence[Mapping[str, Any]]) -> List[str]:
    """Union of row keys in first-seen order"""
    seen: Dict[str, None] = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)


class Warehouse:
    """
    Relational store reachable via named connections.
    
    Every write runs in its own transaction (engine.begin()), so a
    replace_rows() call either deletes and inserts together or not at all.
    """
    
    def __init__(self, connections: Optional[ConnectionRegistry] = None):
        self.connections = connections or default_registry
    
    async def insert_rows(
        self,
        table_name: str,
        rows: Sequence[Mapping[str, Any]],
        connection: Optional[str] = None
    ) -> int:
        """Insert rows as one statement; returns the row count"""
        if not rows:
            return 0
        
        columns = _columns(rows)
        params = [{c: row.get(c) for c in columns} for row in rows]
        stmt = insert(_table(table_name, columns))
        
        async with self.connections.get_engine(connection).begin() as conn:
            await conn.execute(stmt, params)
        return len(params)
    
    async def replace_rows(
        self,
        table_name: str,
        key_columns: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
        connection: Optional[str] = None
    ) -> int:
        """
        Delete rows whose key is in the incoming key set, then insert rows.
        
        Both statements share a transaction.
        """
        if not rows:
            return 0
        
        columns = _columns(rows)
        params = [{c: row.get(c) for c in columns} for row in rows]
        target = _table(table_name, list(dict.fromkeys([*columns, *key_columns])))
        
        if len(key_columns) == 1:
            key = key_columns[0]
            keys = list(dict.fromkeys(row.get(key) for row in rows))
            delete_stmt = delete(target).where(target.c[key].in_(keys))
        else:
            keys = list(dict.fromkeys(tuple(row.get(k) for k in key_columns) for row in rows))
            delete_stmt = delete(target).where(
                tuple_(*[target.c[k] for k in key_columns]).in_(keys)
            )
        
        async with self.connections.get_engine(connection).begin() as conn:
            deleted = await conn.execute(delete_stmt)
            await conn.execute(insert(target), params)
        
        logger.debug(
            f"Replaced {len(params)} rows in {table_name} "
            f"({deleted.rowcount} existing rows deleted)"
        )
        return len(params)
    
    async def fetch_table(
        self,
        table_name: str,
        connection: Optional[str] = None,
        incremental_field: Optional[str] = None,
        since: Optional[datetime] = None,
        where_clause: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        SELECT * from a table.
        
        Filters `incremental_field > since` only when both are given;
        where_clause is appended verbatim.
        """
        source = _table(table_name, [incremental_field] if incremental_field else [])
        stmt = select(text("*")).select_from(source)
        
        if incremental_field and since is not None:
            stmt = stmt.where(source.c[incremental_field] > since)
        if where_clause:
            stmt = stmt.where(text(where_clause))
        if limit:
            stmt = stmt.limit(limit)
        
        async with self.connections.get_engine(connection).connect() as conn:
            result = await conn.execute(stmt)
            return [dict(row._mapping) for row in result]
    
    async def select(
        self,
        query: str,
        params: Optional[Mapping[str, Any]] = None,
        connection: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Run a raw parameterized SELECT (`:name` binds)"""
        async with self.connections.get_engine(connection).connect() as conn:
            result = await conn.execute(text(query), dict(params or {}))
            return [dict(row._mapping) for row in result]
    
    async def call_procedure(self, name: str, connection: Optional[str] = None):
        """CALL a stored procedure with no arguments"""
        async with self.connections.get_engine(connection).begin() as conn:
            await conn.execute(text(f"CALL {name}()"))
