"""
Database client for the admin Supabase database.
This module stores and reads product database configurations, products and API keys.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from dotenv import load_dotenv

from app.core.exceptions import ConfigNotFound
from app.utils.supabase_utils import (
    SupabaseClient,
    PRODUCTS_TABLE,
    PROFILES_TABLE,
    API_KEYS_TABLE,
    PRODUCT_DATABASES_TABLE,
)

# Load environment variables
load_dotenv()

# Get Supabase client
supabase = SupabaseClient.get_client()


def _require_client():
    if supabase is None:
        raise RuntimeError(
            "Admin database is not configured. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
        )
    return supabase


class Database:
    """Database client for accessing and managing admin data in Supabase."""

    # ===== Product Database Config Methods =====

    @staticmethod
    async def list_product_databases(limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """
        List product database configurations, newest first.

        Args:
            limit: Maximum number of items to return
            offset: Number of items to skip (for pagination)

        Returns:
            List of product database rows
        """
        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .range(offset, offset + limit - 1)
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error fetching product databases: {response.error.message}")

        return response.data or []

    @staticmethod
    async def count_product_databases() -> int:
        """Count all product database configurations."""
        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .select("id", count="exact")
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error counting product databases: {response.error.message}")

        return response.count or 0

    @staticmethod
    async def get_product_database(product_id: str) -> Optional[Dict[str, Any]]:
        """
        Get the database configuration of a product, active or not.

        Args:
            product_id: UUID of the product

        Returns:
            Product database row or None if not found
        """
        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .select("*")
            .eq("product_id", product_id)
            .limit(1)
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error fetching product database: {response.error.message}")

        if not response.data:
            return None

        return response.data[0]

    @staticmethod
    async def find_active_config(product_id: str) -> Dict[str, Any]:
        """
        Get the active database configuration of a product.

        Args:
            product_id: UUID of the product

        Returns:
            Product database row

        Raises:
            ConfigNotFound: If the product has no active configuration
        """
        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .select("*")
            .eq("product_id", product_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )

        if (hasattr(response, "error") and response.error) or not response.data:
            raise ConfigNotFound(product_id)

        return response.data[0]

    @staticmethod
    async def create_product_database(config_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a product database configuration.

        Args:
            config_data: Row data with secrets already encrypted

        Returns:
            Created product database row
        """
        now = datetime.now(timezone.utc).isoformat()
        record = {"created_at": now, "updated_at": now, **config_data}

        response = _require_client().table(PRODUCT_DATABASES_TABLE).insert(record).execute()

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error creating product database: {response.error.message}")

        return response.data[0] if response.data else record

    @staticmethod
    async def update_product_database(
        product_id: str, update_data: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Update the database configuration of a product.

        Args:
            product_id: UUID of the product
            update_data: Fields to update, secrets already encrypted

        Returns:
            Updated product database row or None if nothing matched
        """
        update_data_copy = update_data.copy()
        update_data_copy["updated_at"] = datetime.now(timezone.utc).isoformat()

        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .update(update_data_copy)
            .eq("product_id", product_id)
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error updating product database: {response.error.message}")

        return response.data[0] if response.data else None

    @staticmethod
    async def delete_product_database(product_id: str) -> bool:
        """
        Delete the database configuration of a product.

        Args:
            product_id: UUID of the product

        Returns:
            True if a row was deleted
        """
        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .delete()
            .eq("product_id", product_id)
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error deleting product database: {response.error.message}")

        return bool(response.data)

    @staticmethod
    async def update_health(product_id: str, status: str, timestamp: datetime) -> None:
        """
        Record the result of a health check on a product database configuration.

        Args:
            product_id: UUID of the product
            status: 'healthy' or 'down'
            timestamp: When the check ran
        """
        response = (
            _require_client()
            .table(PRODUCT_DATABASES_TABLE)
            .update({"health_status": status, "last_health_check": timestamp.isoformat()})
            .eq("product_id", product_id)
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error updating health status: {response.error.message}")

    # ===== Product Methods =====

    @staticmethod
    async def get_product(product_id: str) -> Optional[Dict[str, Any]]:
        """Get a product by ID, or None if it does not exist."""
        response = (
            _require_client()
            .table(PRODUCTS_TABLE)
            .select("id, name")
            .eq("id", product_id)
            .execute()
        )

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error fetching product: {response.error.message}")

        if not response.data:
            return None

        return response.data[0]

    # ===== API Key Methods =====

    @staticmethod
    async def validate_api_key(api_key: str) -> Optional[Dict[str, Any]]:
        """
        Validate an API key and return associated profile data.

        Args:
            api_key: Key sent by the client

        Returns:
            Dict with 'api_key' and 'user', or None if the key is unknown or expired
        """
        client = _require_client()
        response = client.table(API_KEYS_TABLE).select("*").eq("key", api_key).execute()

        if hasattr(response, "error") and response.error:
            raise Exception(f"Error validating API key: {response.error.message}")

        if not response.data:
            return None

        key_data = response.data[0]

        # Check if the key is expired
        expires_at = key_data.get("expires_at")
        if expires_at:
            expiry = datetime.fromisoformat(expires_at.replace("Z", "+00:00"))
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            if expiry < datetime.now(timezone.utc):
                return None

        user_response = (
            client.table(PROFILES_TABLE).select("*").eq("id", key_data["user_id"]).execute()
        )

        if hasattr(user_response, "error") and user_response.error:
            raise Exception(f"Error fetching user: {user_response.error.message}")

        if not user_response.data:
            return None

        return {
            "api_key": key_data,
            "user": user_response.data[0],
        }
