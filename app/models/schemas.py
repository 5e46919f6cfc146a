"""Data schemas for the product database admin service."""

from enum import Enum
from typing import List, Optional, Dict, Any, TypeVar, Generic
from pydantic import BaseModel, Field
from datetime import datetime


class DatabaseKind(str, Enum):
    """Kinds of product database a config can point at."""

    SUPABASE = "supabase"
    POSTGRES = "postgres"


class HealthStatus(str, Enum):
    """Connection health recorded on a product database config."""

    HEALTHY = "healthy"
    DOWN = "down"
    UNKNOWN = "unknown"


# Product Database Config Models
class ProductDatabaseBase(BaseModel):
    """Base model for product database configuration.

    Secrets are never part of this model; they travel in the create/update
    payloads and are stored encrypted.
    """

    product_name: Optional[str] = None
    db_type: DatabaseKind = DatabaseKind.SUPABASE
    supabase_url: Optional[str] = Field(None, max_length=500)
    postgres_host: Optional[str] = Field(None, max_length=255)
    postgres_port: Optional[int] = 5432
    postgres_database: Optional[str] = Field(None, max_length=100)
    schema_name: str = Field("public", max_length=100)
    is_active: bool = True


class ProductDatabaseCreate(ProductDatabaseBase):
    """Model for creating a product database configuration."""

    product_id: str
    supabase_service_key: Optional[str] = None
    postgres_user: Optional[str] = Field(None, max_length=100)
    postgres_password: Optional[str] = None


class ProductDatabaseUpdate(ProductDatabaseBase):
    """Model for updating a product database configuration.

    Secret fields left empty or set to the masked placeholder keep the stored value.
    """

    supabase_service_key: Optional[str] = None
    postgres_user: Optional[str] = Field(None, max_length=100)
    postgres_password: Optional[str] = None


class ProductDatabase(ProductDatabaseBase):
    """Product database configuration as returned to admins (secrets masked)."""

    id: str
    product_id: str
    supabase_service_key_encrypted: Optional[str] = None
    postgres_user_encrypted: Optional[str] = None
    postgres_password_encrypted: Optional[str] = None
    health_status: Optional[str] = None
    last_health_check: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        """Pydantic configuration for the model."""

        from_attributes = True


class CredentialTestRequest(BaseModel):
    """Unsaved credentials to validate.

    db_type is a plain string so unknown kinds reach the validator.
    """

    db_type: str = DatabaseKind.SUPABASE.value
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    postgres_host: Optional[str] = None
    postgres_port: int = 5432
    postgres_database: Optional[str] = None
    postgres_user: Optional[str] = None
    postgres_password: Optional[str] = None


# Manager Result Models
class ValidationResult(BaseModel):
    """Outcome of a credential test. Nothing is persisted."""

    ok: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # incomplete_config, not_implemented, unsupported_kind, probe_failure
    timestamp: datetime


class HealthResult(BaseModel):
    """Outcome of a health check. The same status is written to the config row."""

    status: HealthStatus
    error: Optional[str] = None
    timestamp: datetime


class ColumnProfile(BaseModel):
    """Column guessed from a single sample value."""

    name: str
    type: str
    nullable: bool  # True only when the sampled value was null
    sample_value: Any = None
    position: int


class DiscoveredTable(BaseModel):
    """Table found in a product database. Columns are filled in only by inspection."""

    name: str
    row_count: int = 0
    columns: List[ColumnProfile] = Field(default_factory=list)
    last_checked: datetime


class TableDetails(BaseModel):
    """Row count, sample rows and inferred columns of one table."""

    name: str
    exists: bool
    row_count: Optional[int] = None
    columns: Optional[List[ColumnProfile]] = None
    sample_data: Optional[List[Dict[str, Any]]] = None
    last_checked: Optional[datetime] = None
    error: Optional[str] = None


# Response Models
class ApiResponse(BaseModel):
    """Standard API response model."""

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None


# Generic type for pagination
T = TypeVar("T")


# Pagination Models
class PaginationMetadata(BaseModel):
    """Metadata for paginated responses."""

    total: int
    page: int
    page_size: int
    total_pages: int


# Pagination Response Model
class PaginatedResponse(BaseModel, Generic[T]):
    """Paginated response model."""

    items: List[T]
    metadata: PaginationMetadata

    class Config:
        """Pydantic configuration for the model."""

        from_attributes = True
