"""
Pydantic schemas for pipeline configuration
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any


class SourceDescriptor(BaseModel):
    """
    One configured extraction source.
    
    `type` stays a free string: unknown types are skipped at extraction
    time rather than rejected here.
    """
    
    model_config = ConfigDict(extra="allow")
    
    type: str
    
    # api
    endpoint: Optional[str] = None
    auth: str = "none"
    token: Optional[str] = None
    api_key: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    timeout: Optional[float] = None
    max_pages: int = Field(10, gt=0)
    max_retries: Optional[int] = Field(None, ge=1)
    retry_delay: Optional[float] = Field(None, ge=0)
    
    # database / fact_table
    connection: Optional[str] = None
    table: Optional[str] = None
    where_clause: Optional[str] = None
    query: Optional[str] = None
    
    # shared
    incremental_field: Optional[str] = None
    batch_size: int = Field(1000, gt=0)


class DestinationDescriptor(BaseModel):
    """One configured load destination"""
    
    model_config = ConfigDict(extra="allow")
    
    load_type: str
    table: Optional[str] = None
    merge_key: Optional[str] = None
    batch_size: Optional[int] = Field(None, gt=0)
    connection: Optional[str] = None
    columns: Optional[List[str]] = None
    
    @property
    def merge_keys(self) -> List[str]:
        """Merge key columns; "branch_key,date_key" names a composite key"""
        if not self.merge_key:
            return []
        return [k.strip() for k in self.merge_key.split(",") if k.strip()]


class PipelineConfig(BaseModel):
    """
    Full configuration of a named pipeline.
    
    Immutable for the duration of a run.
    """
    
    model_config = ConfigDict(extra="allow", frozen=True)
    
    name: Optional[str] = None
    schedule: Optional[str] = None
    table: str = "shipments"
    sources: Dict[str, SourceDescriptor] = Field(default_factory=dict)
    destinations: Dict[str, DestinationDescriptor] = Field(default_factory=dict)
    transformations: Dict[str, Any] = Field(default_factory=dict)
    validations: Dict[str, Any] = Field(default_factory=dict)
    dimensions: List[str] = Field(default_factory=list)
    
    @field_validator("transformations", "validations", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        """Treat a null rule block as an empty one"""
        return v or {}
