"""
Dimension rows preloaded once per run for enrichment and referential checks
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional
from etl.warehouse import Warehouse
from schemas.pipeline import PipelineConfig
import logging
import re

logger = logging.getLogger(__name__)

REFERENCE_RULE = re.compile(r"^(\w+)\.(\w+)\s+IN\s+\(SELECT\s+(\w+)\s+FROM\s+(\w+)\)", re.IGNORECASE)


def required_tables(config: PipelineConfig) -> List[str]:
    """
    Tables the configured rules look up, plus config.dimensions.
    
    Surrogate dimension keys are only filled for dimensions that end up
    loaded, so pipelines that want them list the tables in `dimensions`.
    """
    tables: Dict[str, None] = {}
    transformations = config.transformations
    business_rules = transformations.get("business_rules") or {}
    geo = transformations.get("geographical_enrichment") or {}
    
    if "enrich_with_branch_data" in business_rules or "determine_service_area" in geo:
        tables.setdefault("dim_branch", None)
    if "apply_client_pricing" in business_rules:
        tables.setdefault("dim_client", None)
    
    for rule in (config.validations.get("referential_integrity") or {}).values():
        match = REFERENCE_RULE.match(str(rule))
        if match:
            tables.setdefault(match.group(4), None)
    
    for name in config.dimensions:
        tables.setdefault(name, None)
    
    return list(tables)


class ReferenceCache:
    """
    In-memory copy of small dimension tables.
    
    Usage:
        cache = await ReferenceCache.load(warehouse, ["dim_branch"])
        branch = cache.find("dim_branch", "branch_id", 7)
    """
    
    def __init__(self, tables: Optional[Mapping[str, Iterable[Mapping[str, Any]]]] = None):
        self._rows: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(r) for r in rows] for name, rows in (tables or {}).items()
        }
        self._indexes: Dict[tuple, Dict[Any, Dict[str, Any]]] = {}
    
    @classmethod
    async def load(cls, warehouse: Warehouse, tables: Iterable[str]) -> "ReferenceCache":
        loaded = {}
        for name in tables:
            loaded[name] = await warehouse.fetch_table(name)
            logger.debug(f"Loaded {len(loaded[name])} reference rows from {name}")
        return cls(loaded)
    
    def has_table(self, name: str) -> bool:
        return name in self._rows
    
    def _index(self, name: str, key_field: str) -> Dict[Any, Dict[str, Any]]:
        index_key = (name, key_field)
        if index_key not in self._indexes:
            self._indexes[index_key] = {
                str(row.get(key_field)): row for row in self._rows.get(name, [])
            }
        return self._indexes[index_key]
    
    def find(self, name: str, key_field: str, value: Any) -> Optional[Dict[str, Any]]:
        """Row of `name` whose key_field equals value (compared as strings)"""
        if value is None:
            return None
        return self._index(name, key_field).get(str(value))
    
    def contains(self, name: str, key_field: str, value: Any) -> bool:
        return self.find(name, key_field, value) is not None
    
