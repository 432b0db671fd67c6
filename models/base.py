from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class BatchStatus(str, enum.Enum):
    """Batch ledger status"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    RETRY = "RETRY"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    
    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


class ProcessingStatus(str, enum.Enum):
    """Staged record processing status"""
    PENDING = "PENDING"
    TRANSFORMED = "TRANSFORMED"
    FAILED = "FAILED"


class SourceType(str, enum.Enum):
    """Built-in extraction source types"""
    API = "api"
    DATABASE = "database"
    FACT_TABLE = "fact_table"


class LoadType(str, enum.Enum):
    """Built-in destination load types"""
    APPEND = "append"
    UPSERT = "upsert"
