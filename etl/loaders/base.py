"""
Destination writer interface
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Mapping, Sequence
from etl.warehouse import Warehouse
from schemas.pipeline import DestinationDescriptor
from schemas.records import DestinationLoadResult


def chunked(rows: Sequence[Mapping[str, Any]], size: int) -> Iterator[List[Mapping[str, Any]]]:
    for i in range(0, len(rows), size):
        yield list(rows[i:i + size])


class DestinationWriter(ABC):
    """
    Writes a record set into one destination table, chunk by chunk.
    
    Chunk-level write failures are counted in the result; configuration
    problems raise.
    """
    
    load_type: str
    
    def __init__(self, warehouse: Warehouse):
        self.warehouse = warehouse
    
    @abstractmethod
    async def write(
        self,
        table: str,
        rows: Sequence[Dict[str, Any]],
        descriptor: DestinationDescriptor,
        batch_size: int
    ) -> DestinationLoadResult:
        pass
