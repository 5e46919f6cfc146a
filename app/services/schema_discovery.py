"""
Table discovery for product databases.

Three strategies run in order until one finds tables:
    1. Direct SQL against information_schema over the project's Postgres host
    2. The information_schema.tables view through the PostgREST endpoint
    3. Probing a configured list of common table names

Each strategy returns None when it cannot tell, so the next one is tried.
"""

import re
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

import asyncpg
import httpx
from loguru import logger

from app.models.schemas import DiscoveredTable
from app.utils.supabase_utils import DISCOVERY_CANDIDATE_TABLES, count_rows, error_message

PROJECT_REF_PATTERN = re.compile(r"https?://([^.]+)\.supabase\.co")

DIRECT_SQL_PORT = 5432
DIRECT_SQL_DATABASE = "postgres"

LIST_TABLES_SQL = (
    "SELECT table_name FROM information_schema.tables "
    "WHERE table_schema = $1 AND table_type = 'BASE TABLE' ORDER BY table_name;"
)


@dataclass
class DiscoveryContext:
    """Everything a strategy needs to look at one product database."""

    client: Any
    supabase_url: str
    service_key: str
    schema_name: str = "public"
    postgres_password: Optional[str] = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def attach_row_counts(client: Any, table_names: Sequence[str]) -> List[DiscoveredTable]:
    """
    Count rows of known tables concurrently.

    A table whose count fails is still returned, with row_count 0.
    """

    async def count_one(table_name: str) -> DiscoveredTable:
        try:
            row_count = await count_rows(client, table_name)
        except Exception as e:
            logger.debug(f"Row count failed for {table_name}: {error_message(e)}")
            row_count = 0
        return DiscoveredTable(name=table_name, row_count=row_count, last_checked=_now())

    return list(await asyncio.gather(*(count_one(name) for name in table_names)))


def project_ref_from_url(supabase_url: str) -> Optional[str]:
    """Extract the project ref from https://<ref>.supabase.co, or None."""
    match = PROJECT_REF_PATTERN.match(supabase_url or "")
    return match.group(1) if match else None


class DirectSqlStrategy:
    """List base tables over a direct Postgres connection to the project."""

    name = "direct_sql"

    def __init__(self, connect=asyncpg.connect):
        self._connect = connect

    async def discover(self, context: DiscoveryContext) -> Optional[List[DiscoveredTable]]:
        project_ref = project_ref_from_url(context.supabase_url)
        if not project_ref:
            logger.info(f"Not a Supabase project URL, skipping direct SQL: {context.supabase_url}")
            return None

        conn = None
        try:
            conn = await self._connect(
                host=f"db.{project_ref}.supabase.co",
                port=DIRECT_SQL_PORT,
                database=DIRECT_SQL_DATABASE,
                user=f"postgres.{project_ref}",
                password=context.postgres_password or context.service_key,
                ssl="require",
            )
            rows = await conn.fetch(LIST_TABLES_SQL, context.schema_name)
        except Exception as e:
            logger.info(f"Direct PostgreSQL connection failed, trying REST API: {error_message(e)}")
            return None
        finally:
            if conn is not None:
                try:
                    await conn.close()
                except Exception as e:
                    logger.debug(f"Error closing direct PostgreSQL connection: {error_message(e)}")

        table_names = [row["table_name"] for row in rows]
        if not table_names:
            return None

        return await attach_row_counts(context.client, table_names)


class RestSchemaStrategy:
    """List base tables through the information_schema view on the REST endpoint."""

    name = "rest_information_schema"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def discover(self, context: DiscoveryContext) -> Optional[List[DiscoveredTable]]:
        url = f"{context.supabase_url.rstrip('/')}/rest/v1/information_schema.tables"
        params = {
            "table_schema": f"eq.{context.schema_name}",
            "table_type": "eq.BASE TABLE",
            "select": "table_name",
            "order": "table_name",
        }
        headers = {
            "apikey": context.service_key,
            "Authorization": f"Bearer {context.service_key}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(transport=self._transport) as http:
                response = await http.get(url, params=params, headers=headers)
            if not response.is_success:
                logger.info(f"REST API schema query returned {response.status_code}")
                return None
            tables_data = response.json()
        except Exception as e:
            logger.info(f"REST API query also failed: {error_message(e)}")
            return None

        if not isinstance(tables_data, list):
            return None

        table_names = [
            table["table_name"]
            for table in tables_data
            if isinstance(table, dict) and table.get("table_name")
        ]
        if not table_names:
            return None

        return await attach_row_counts(context.client, table_names)


class HeuristicProbeStrategy:
    """Probe a list of common table names and keep the ones that answer."""

    name = "heuristic_probe"

    def __init__(self, candidate_tables: Optional[Sequence[str]] = None):
        self.candidate_tables = list(
            candidate_tables if candidate_tables is not None else DISCOVERY_CANDIDATE_TABLES
        )

    async def discover(self, context: DiscoveryContext) -> Optional[List[DiscoveredTable]]:

        async def probe(table_name: str) -> Optional[DiscoveredTable]:
            try:
                row_count = await count_rows(context.client, table_name)
            except Exception:
                return None
            return DiscoveredTable(name=table_name, row_count=row_count, last_checked=_now())

        results = await asyncio.gather(*(probe(name) for name in self.candidate_tables))
        tables = [table for table in results if table is not None]
        return tables or None


def default_strategies() -> list:
    return [DirectSqlStrategy(), RestSchemaStrategy(), HeuristicProbeStrategy()]


async def first_match(strategies: Sequence[Any], context: DiscoveryContext) -> Optional[List[DiscoveredTable]]:
    """
    Run strategies in order and return the first non-empty result.

    Returns:
        Tables from the first conclusive strategy, or None if none found any
    """
    for strategy in strategies:
        try:
            tables = await strategy.discover(context)
        except Exception as e:
            logger.warning(f"Discovery strategy {strategy.name} failed: {error_message(e)}")
            continue
        if tables:
            logger.info(f"✅ Discovered {len(tables)} tables using {strategy.name}")
            return tables
    return None
