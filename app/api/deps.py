"""Shared FastAPI dependencies."""

from functools import lru_cache

from app.services.product_db_manager import ProductDatabaseManager


@lru_cache
def get_product_db_manager() -> ProductDatabaseManager:
    """One manager, and so one connection cache, per process."""
    return ProductDatabaseManager()
