"""
Load destinations.

Writers:
    AppendWriter: plain chunked inserts ("append")
    UpsertWriter: delete-by-merge-key then insert ("upsert")
"""

from etl.loaders.base import DestinationWriter
from etl.loaders.append_writer import AppendWriter
from etl.loaders.upsert_writer import UpsertWriter
from etl.loaders.loader import Loader

__all__ = ["DestinationWriter", "AppendWriter", "UpsertWriter", "Loader"]
