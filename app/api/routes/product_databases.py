"""API routes for product database configurations and product database browsing."""

import os
import uuid
import asyncio
from math import ceil
from typing import Any, Dict, List, Optional, Set, Union

from fastapi import APIRouter, Depends, HTTPException, status, Query
from loguru import logger

from app.api.deps import get_product_db_manager
from app.core.auth import get_current_admin_from_api_key
from app.core.exceptions import ProductDatabaseError
from app.db.client import Database
from app.models.schemas import (
    ApiResponse,
    CredentialTestRequest,
    DatabaseKind,
    DiscoveredTable,
    PaginatedResponse,
    ProductDatabase,
    ProductDatabaseCreate,
    ProductDatabaseUpdate,
    TableDetails,
)
from app.services.product_db_manager import ProductDatabaseManager

router = APIRouter(
    prefix="/admin/product-databases",
    tags=["product-databases"],
    dependencies=[Depends(get_current_admin_from_api_key)],
)

MASKED_SECRET = "***encrypted***"
SECRET_COLUMNS = (
    "supabase_service_key_encrypted",
    "postgres_user_encrypted",
    "postgres_password_encrypted",
)

CREDENTIAL_TEST_TIMEOUT_SECONDS = float(os.getenv("CREDENTIAL_TEST_TIMEOUT_SECONDS", "10"))

# Health checks that outlived their request
_pending_health_checks: Set["asyncio.Future[Any]"] = set()


def _validate_product_id(product_id: Optional[str]) -> str:
    try:
        return str(uuid.UUID(str(product_id)))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid product ID format",
        )


def _mask(row: Dict[str, Any]) -> Dict[str, Any]:
    """Replace stored secrets with a placeholder."""
    masked = dict(row)
    for column in SECRET_COLUMNS:
        masked[column] = MASKED_SECRET if row.get(column) else None
    return masked


def _is_new_secret(value: Optional[str]) -> bool:
    return bool(value) and value != MASKED_SECRET


def _require_fields(
    payload: Union[ProductDatabaseCreate, ProductDatabaseUpdate],
    existing: Optional[Dict[str, Any]],
) -> None:
    """Check the fields each database kind needs. Stored secrets count when updating."""
    if payload.db_type == DatabaseKind.SUPABASE:
        if not payload.supabase_url:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Supabase URL is required for Supabase databases",
            )
        has_key = _is_new_secret(payload.supabase_service_key) or (
            existing is not None and existing.get("supabase_service_key_encrypted")
        )
        if not has_key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Supabase service key is required",
            )
    else:
        if not payload.postgres_host or not payload.postgres_database:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="PostgreSQL host and database name are required",
            )
        has_user = _is_new_secret(payload.postgres_user) or (
            existing is not None and existing.get("postgres_user_encrypted")
        )
        has_password = _is_new_secret(payload.postgres_password) or (
            existing is not None and existing.get("postgres_password_encrypted")
        )
        if not has_user or not has_password:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="PostgreSQL username and password are required",
            )


async def _verify_new_credentials(
    manager: ProductDatabaseManager,
    payload: Union[ProductDatabaseCreate, ProductDatabaseUpdate],
) -> None:
    """Test a newly supplied Supabase key before it is saved."""
    if payload.db_type != DatabaseKind.SUPABASE or not _is_new_secret(payload.supabase_service_key):
        return

    try:
        result = await asyncio.wait_for(
            manager.test_credentials(
                CredentialTestRequest(
                    db_type=DatabaseKind.SUPABASE.value,
                    supabase_url=payload.supabase_url,
                    supabase_service_key=payload.supabase_service_key,
                )
            ),
            timeout=CREDENTIAL_TEST_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Connection Test Failed: timed out",
        )

    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Connection Test Failed: {result.error or 'Invalid credentials. Please check your Supabase URL and service key.'}",
        )


def _build_record(
    manager: ProductDatabaseManager,
    payload: Union[ProductDatabaseCreate, ProductDatabaseUpdate],
    product_name: Optional[str],
) -> Dict[str, Any]:
    """Build the row to store, encrypting only secrets that were actually supplied."""
    record: Dict[str, Any] = {
        "product_name": payload.product_name or product_name,
        "db_type": payload.db_type.value,
        "schema_name": payload.schema_name or "public",
        "is_active": payload.is_active,
    }

    if payload.db_type == DatabaseKind.SUPABASE:
        record["supabase_url"] = payload.supabase_url
        if _is_new_secret(payload.supabase_service_key):
            record["supabase_service_key_encrypted"] = manager.encrypt(payload.supabase_service_key)
    else:
        record["postgres_host"] = payload.postgres_host
        record["postgres_port"] = payload.postgres_port or 5432
        record["postgres_database"] = payload.postgres_database
        if _is_new_secret(payload.postgres_user):
            record["postgres_user_encrypted"] = manager.encrypt(payload.postgres_user)
        if _is_new_secret(payload.postgres_password):
            record["postgres_password_encrypted"] = manager.encrypt(payload.postgres_password)

    return record


@router.get("/", response_model=PaginatedResponse[ProductDatabase])
async def list_product_databases(
    page: int = Query(1, description="Page number", ge=1),
    size: int = Query(20, description="Page size", ge=1, le=100),
):
    """List product database configurations with secrets masked."""
    try:
        offset = (page - 1) * size

        total_count = await Database.count_product_databases()
        rows = await Database.list_product_databases(limit=size, offset=offset)

        return {
            "items": [_mask(row) for row in rows],
            "metadata": {
                "total": total_count,
                "page": page,
                "page_size": size,
                "total_pages": ceil(total_count / size),
            },
        }
    except Exception as e:
        logger.error(f"❌ Error fetching product databases: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch product databases. Please try again.",
        )


@router.post("/test-credentials", response_model=ApiResponse)
async def check_credentials_before_save(
    payload: CredentialTestRequest,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """Test credentials without saving them."""
    if payload.db_type not in (DatabaseKind.SUPABASE.value, DatabaseKind.POSTGRES.value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Invalid db_type. Must be "supabase" or "postgres"',
        )

    if payload.db_type == DatabaseKind.SUPABASE.value:
        if not payload.supabase_url or not payload.supabase_service_key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Supabase URL and service key are required",
            )
    elif not all(
        [payload.postgres_host, payload.postgres_database, payload.postgres_user, payload.postgres_password]
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="All PostgreSQL connection details are required",
        )

    try:
        result = await asyncio.wait_for(
            manager.test_credentials(payload), timeout=CREDENTIAL_TEST_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        return ApiResponse(success=False, message="Connection test timed out")
    except Exception as e:
        logger.error(f"❌ Error testing credentials: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"An error occurred while testing credentials: {str(e)}",
        )

    return ApiResponse(
        success=result.ok,
        message=result.message if result.ok else result.error,
        data=result.model_dump(mode="json"),
    )


@router.get("/{product_id}", response_model=ProductDatabase)
async def get_product_database(product_id: str):
    """Get the database configuration of a product with secrets masked."""
    product_id = _validate_product_id(product_id)
    try:
        row = await Database.get_product_database(product_id)
    except Exception as e:
        logger.error(f"❌ Error fetching product database: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch product database. Please try again.",
        )

    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product database configuration not found",
        )

    return _mask(row)


@router.post("/", response_model=ProductDatabase, status_code=status.HTTP_201_CREATED)
async def create_product_database(
    payload: ProductDatabaseCreate,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """
    Create the database configuration of a product.

    Each product can have only one configuration. A new Supabase service key
    is tested before it is saved.
    """
    product_id = _validate_product_id(payload.product_id)
    try:
        product = await Database.get_product(product_id)
        if not product:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

        existing = await Database.get_product_database(product_id)
        if existing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=(
                    "This product already has a database configuration. Each product can only "
                    "have one database. Please update the existing configuration instead."
                ),
            )

        _require_fields(payload, existing=None)
        await _verify_new_credentials(manager, payload)

        record = _build_record(manager, payload, product.get("name"))
        record["product_id"] = product_id

        created = await Database.create_product_database(record)
        logger.info(f"✅ Product database configuration created for product {product_id}")

        return _mask(created)
    except (HTTPException, ProductDatabaseError):
        raise
    except Exception as e:
        logger.error(f"❌ Error creating product database: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create product database configuration. Please try again.",
        )


@router.put("/{product_id}", response_model=ProductDatabase)
async def update_product_database(
    product_id: str,
    payload: ProductDatabaseUpdate,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """
    Update the database configuration of a product.

    Masked or empty secrets keep their stored values. The cached connection of
    the product is dropped after the update.
    """
    product_id = _validate_product_id(product_id)
    try:
        existing = await Database.get_product_database(product_id)
        if not existing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Product database configuration not found. Cannot update a non-existent configuration.",
            )

        _require_fields(payload, existing=existing)
        await _verify_new_credentials(manager, payload)

        product = await Database.get_product(product_id)
        product_name = (product or {}).get("name") or existing.get("product_name")
        record = _build_record(manager, payload, product_name)

        updated = await Database.update_product_database(product_id, record)
        if not updated:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Failed to update product database configuration. Please try again.",
            )

        manager.invalidate_connection(product_id)
        logger.info(f"✅ Product database configuration updated for product {product_id}")

        return _mask(updated)
    except (HTTPException, ProductDatabaseError):
        raise
    except Exception as e:
        logger.error(f"❌ Error updating product database: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update product database configuration. Please try again.",
        )


@router.delete("/{product_id}", response_model=ApiResponse)
async def delete_product_database(
    product_id: str,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """Delete the database configuration of a product and drop its cached connection."""
    product_id = _validate_product_id(product_id)
    try:
        existing = await Database.get_product_database(product_id)
        if not existing:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Product database configuration not found",
            )

        await Database.delete_product_database(product_id)
        manager.invalidate_connection(product_id)
        logger.info(f"✅ Product database configuration deleted for product {product_id}")

        return ApiResponse(
            success=True, message="Product database configuration deleted successfully"
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"❌ Error deleting product database: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete product database configuration. Please try again.",
        )


@router.post("/{product_id}/test", response_model=ApiResponse)
async def run_health_check(
    product_id: str,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """Run a health check against the stored credentials of a product."""
    product_id = _validate_product_id(product_id)
    try:
        existing = await Database.get_product_database(product_id)
    except Exception as e:
        logger.error(f"❌ Error fetching database config: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch product database. Please try again.",
        )

    if not existing:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Product database configuration not found",
        )

    # The check keeps running past the timeout so its status still gets written
    health_check = asyncio.ensure_future(manager.check_health(product_id))
    _pending_health_checks.add(health_check)
    health_check.add_done_callback(_pending_health_checks.discard)
    try:
        health = await asyncio.wait_for(
            asyncio.shield(health_check), timeout=CREDENTIAL_TEST_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError:
        logger.warning(f"⚠️ Health check for product {product_id} still running after timeout")
        return ApiResponse(success=False, message="Connection test failed: timed out")

    is_healthy = health.status.value == "healthy"
    return ApiResponse(
        success=is_healthy,
        message=(
            "Connection test successful"
            if is_healthy
            else f"Connection test failed: {health.error or 'Unknown error'}"
        ),
        data=health.model_dump(mode="json"),
    )


@router.get("/{product_id}/tables", response_model=List[DiscoveredTable])
async def list_product_tables(
    product_id: str,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """List the tables of a product database with row counts."""
    product_id = _validate_product_id(product_id)
    try:
        return await manager.list_tables(product_id)
    except ProductDatabaseError:
        raise
    except Exception as e:
        logger.error(f"❌ Error getting product tables: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list tables: {str(e)}",
        )


@router.get("/{product_id}/tables/{table_name}", response_model=TableDetails)
async def get_product_table(
    product_id: str,
    table_name: str,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """Row count, sample rows and inferred columns of one table."""
    product_id = _validate_product_id(product_id)
    return await manager.inspect_table(product_id, table_name)


@router.get("/{product_id}/users", response_model=List[Dict[str, Any]])
async def list_product_users(
    product_id: str,
    email: Optional[str] = Query(None, description="Filter by email"),
    user_status: Optional[str] = Query(None, alias="status", description="Filter by status"),
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """List users stored in a product database."""
    product_id = _validate_product_id(product_id)
    try:
        return await manager.get_product_users(product_id, email=email, status=user_status)
    except ProductDatabaseError:
        raise
    except Exception as e:
        logger.error(f"❌ Error getting product users: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch product users: {str(e)}",
        )


@router.get("/{product_id}/stats", response_model=Dict[str, int])
async def get_product_stats(
    product_id: str,
    manager: ProductDatabaseManager = Depends(get_product_db_manager),
):
    """Row counts of common tables in a product database."""
    product_id = _validate_product_id(product_id)
    try:
        return await manager.get_product_stats(product_id)
    except ProductDatabaseError:
        raise
    except Exception as e:
        logger.error(f"❌ Error getting product stats: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to fetch product stats: {str(e)}",
        )
