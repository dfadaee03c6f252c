"""
Query Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict


class ValidateRequest(BaseModel):
    """SQL validation request."""
    sql: str = Field(..., min_length=1)
    connection_id: Optional[int] = None
    db_type: Optional[str] = Field(default=None, description="Target engine when no connection is given")
    allowed_tables: Optional[List[str]] = None
    known_tables: Optional[List[str]] = None


class ValidateResponse(BaseModel):
    """Gatekeeper decision."""
    valid: bool
    error: Optional[str] = None
    sanitized_sql: Optional[str] = None
    max_rows: int = 0


class ExecuteRequest(BaseModel):
    """SQL execution request."""
    connection_id: int
    sql: str = Field(..., min_length=1)
    allowed_tables: Optional[List[str]] = None
    timeout_seconds: Optional[float] = Field(default=None, gt=0, le=3600)


class ExecuteResponse(BaseModel):
    """Normalized query result."""
    sql: str
    sanitized_sql: str
    columns: List[str] = []
    rows: List[Dict[str, Any]] = []
    row_count: int = 0
    rows_affected: int = 0
    execution_time_ms: int
    truncated: bool = False


class ColumnResponse(BaseModel):
    name: str
    type: str
    description: str = ""


class TableSchemaResponse(BaseModel):
    table_name: str
    columns: List[ColumnResponse] = []
    description: str = ""


class RolePermissionsResponse(BaseModel):
    """Operations the caller's role may run."""
    role: str
    allowed_operations: List[str]
    max_rows: int
