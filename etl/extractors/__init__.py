"""
Extraction sources.

Readers:
    APISourceReader: paginated REST endpoint ("api")
    DatabaseSourceReader: table on a named connection ("database")
    FactTableSourceReader: precomputed aggregate query ("fact_table")

New source kinds register a SourceReader with the Extractor instead of
editing the extraction loop.
"""

from etl.extractors.base import ExtractionContext, SourceReader
from etl.extractors.api_reader import APISourceReader
from etl.extractors.database_reader import DatabaseSourceReader
from etl.extractors.fact_table_reader import FactTableSourceReader
from etl.extractors.extractor import Extractor

__all__ = [
    "ExtractionContext",
    "SourceReader",
    "APISourceReader",
    "DatabaseSourceReader",
    "FactTableSourceReader",
    "Extractor",
]
