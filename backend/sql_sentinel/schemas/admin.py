"""
Administration Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional


class PermissionUpdate(BaseModel):
    """Change one role permission."""
    role: str
    operation: str
    is_allowed: bool
    max_rows: Optional[int] = Field(default=None, ge=0)


class ConnectionCreate(BaseModel):
    """Schema for registering a target database."""
    name: str = Field(..., min_length=1, max_length=255)
    db_type: str
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, gt=0, lt=65536)
    database_name: str = Field(..., min_length=1)
    username: Optional[str] = None
    password: Optional[str] = None
    is_active: bool = True


class ConnectionUpdate(BaseModel):
    """Schema for updating a target database. Omitted fields keep their value."""
    name: Optional[str] = None
    db_type: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, gt=0, lt=65536)
    database_name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    is_active: Optional[bool] = None


class ConnectionResponse(BaseModel):
    id: int
    name: str
    db_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database_name: str
    username: Optional[str] = None
    is_active: bool


class ConnectionTestRequest(BaseModel):
    """Unsaved connection details to probe."""
    db_type: str
    host: Optional[str] = None
    port: Optional[int] = None
    database_name: str
    username: Optional[str] = None
    password: Optional[str] = None


class ConnectionTestResponse(BaseModel):
    connected: bool
    message: str
    latency_ms: int = 0
