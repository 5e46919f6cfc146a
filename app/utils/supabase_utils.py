"""
Supabase utilities for the admin database and for product databases.

The admin database (products, profiles, api_keys, product_databases) is reached
through one synchronous client. Each product database gets its own async client
built from the credentials stored in product_databases.
"""
import os
from typing import Any, List, Optional

from dotenv import load_dotenv
from loguru import logger
from supabase import AsyncClient, AsyncClientOptions, Client, acreate_client, create_client

# Load environment variables
load_dotenv()

# Table names
PRODUCTS_TABLE = "products"
PROFILES_TABLE = "profiles"
API_KEYS_TABLE = "api_keys"
PRODUCT_DATABASES_TABLE = "product_databases"

# PostgREST/Postgres error codes meaning the relation does not exist
TABLE_NOT_FOUND_CODES = {"PGRST116", "PGRST205", "42P01"}

DEFAULT_DISCOVERY_CANDIDATE_TABLES = [
    "profiles", "users", "jobs", "Applicant", "Client", "clients",
    "scheduled_meetings", "Shortlisted_candidates", "Qualified_For_Final_Interview",
    "invites", "gmail_connections", "linkedin_connections", "upload_links",
    "user_roles", "orders", "products", "categories", "transactions",
    "applicants", "candidates", "interviews", "meetings", "companies",
    "organizations", "departments", "teams", "projects", "tasks",
]


def parse_table_list(value: Optional[str], default: List[str]) -> List[str]:
    """
    Parse a comma-separated list of table names.

    Args:
        value: Raw environment value
        default: List returned when the value is unset or blank

    Returns:
        List of stripped, non-empty table names
    """
    if not value:
        return list(default)
    names = [name.strip() for name in value.split(",") if name.strip()]
    return names or list(default)


# Tables probed to prove a product database is reachable, in order
PROBE_TABLES = parse_table_list(os.getenv("PROBE_TABLES"), ["profiles", "users"])

# Guesses used when the product schema cannot be listed
DISCOVERY_CANDIDATE_TABLES = parse_table_list(
    os.getenv("DISCOVERY_CANDIDATE_TABLES"), DEFAULT_DISCOVERY_CANDIDATE_TABLES
)

TABLE_SAMPLE_SIZE = int(os.getenv("TABLE_SAMPLE_SIZE", "10"))


class SupabaseClient:
    """Lazily created client for the admin Supabase database."""

    _client: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Optional[Client]:
        """
        Get the admin Supabase client, creating it on first use.

        Returns:
            The Supabase client, or None when SUPABASE_URL and a key are not configured
        """
        if cls._client is not None:
            return cls._client

        supabase_url = os.getenv("SUPABASE_URL")
        supabase_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", os.getenv("SUPABASE_KEY"))

        if not supabase_url or not supabase_key:
            logger.warning(
                "⚠️ SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY not set. Admin database is unavailable."
            )
            return None

        cls._client = create_client(supabase_url, supabase_key)
        return cls._client


async def create_tenant_client(supabase_url: str, service_key: str) -> AsyncClient:
    """
    Create an async client bound to a product's Supabase project.

    Sessions are not persisted and tokens are not refreshed: every request is
    authorized by the service key alone.

    Args:
        supabase_url: The product's Supabase URL
        service_key: The decrypted service role key

    Returns:
        An async Supabase client
    """
    return await acreate_client(
        supabase_url,
        service_key,
        options=AsyncClientOptions(auto_refresh_token=False, persist_session=False),
    )


async def close_tenant_client(client: Any) -> None:
    """
    Close the HTTP session a tenant client opened for table queries.

    The REST client is created on first query, so a client that never ran a
    query has nothing to close.
    """
    postgrest = getattr(client, "_postgrest", None)
    if postgrest is not None:
        await postgrest.aclose()


def is_table_not_found(error: BaseException) -> bool:
    """Check whether a query error means the table does not exist."""
    return getattr(error, "code", None) in TABLE_NOT_FOUND_CODES


def error_message(error: BaseException) -> str:
    """Extract a display message from a PostgREST or transport error."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or error.__class__.__name__


async def probe_table(client: Any, table_name: str) -> None:
    """
    Run a head-only count query with limit 1 against a table.

    Raises whatever the query raises when the table is missing or unreadable.
    """
    await client.table(table_name).select("*", count="exact", head=True).limit(1).execute()


async def count_rows(client: Any, table_name: str) -> int:
    """
    Count the rows of a table without fetching them.

    Args:
        client: Async Supabase client
        table_name: Table to count

    Returns:
        Exact row count, 0 when the server reports none
    """
    response = await client.table(table_name).select("*", count="exact", head=True).execute()
    return response.count or 0
