"""
Product database manager.

Keeps one client per product database, validates and health-checks stored
credentials, and lists and inspects the tables of product databases.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from loguru import logger
from pydantic import ValidationError

from app.core.exceptions import IncompleteConfig, ProbeFailure, UnsupportedKind
from app.db.client import Database
from app.models.schemas import (
    CredentialTestRequest,
    DatabaseKind,
    DiscoveredTable,
    HealthResult,
    HealthStatus,
    TableDetails,
    ValidationResult,
)
from app.services.connection_cache import ConnectionCache
from app.services.schema_discovery import DiscoveryContext, default_strategies, first_match
from app.services.table_inspector import inspect_table
from app.utils.key_encryption import CredentialCipher
from app.utils.supabase_utils import (
    PROBE_TABLES,
    PROFILES_TABLE,
    close_tenant_client,
    create_tenant_client,
    error_message,
    is_table_not_found,
    probe_table,
)

ClientFactory = Callable[[str, str], Awaitable[Any]]

POSTGRES_NOT_IMPLEMENTED = (
    "PostgreSQL connection testing is not yet implemented. Please verify credentials manually."
)

# Tables counted for the product dashboard
STATS_TABLES = ["profiles", "users", "jobs", "Applicant", "Client", "clients"]

SUPPORTED_KINDS = {kind.value for kind in DatabaseKind}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ProductDatabaseManager:
    """Entry point for everything that touches a product's own database."""

    def __init__(
        self,
        store: Any = Database,
        cipher: Optional[CredentialCipher] = None,
        connections: Optional[ConnectionCache] = None,
        client_factory: ClientFactory = create_tenant_client,
        discovery_strategies: Optional[Sequence[Any]] = None,
        probe_tables: Optional[Sequence[str]] = None,
    ):
        """
        Args:
            store: Config store exposing find_active_config() and update_health()
            cipher: Cipher for stored secrets
            connections: Client cache, one per manager unless shared explicitly
            client_factory: Coroutine building a client from (url, service_key)
            discovery_strategies: Ordered table discovery strategies
            probe_tables: Tables tried, in order, to prove a database is reachable
        """
        self.store = store
        self.cipher = cipher or CredentialCipher()
        self.connections = connections if connections is not None else ConnectionCache()
        self.client_factory = client_factory
        self.discovery_strategies = (
            list(discovery_strategies) if discovery_strategies is not None else default_strategies()
        )
        self.probe_tables = list(probe_tables) if probe_tables is not None else list(PROBE_TABLES)
        self._closing: Set["asyncio.Task[None]"] = set()

    # ===== Secrets =====

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        return self.cipher.encrypt(plaintext)

    def decrypt(self, encrypted: Optional[str]) -> Optional[str]:
        return self.cipher.decrypt(encrypted)

    def _service_key(self, config: Dict[str, Any]) -> Optional[str]:
        stored = config.get("supabase_service_key_encrypted")
        return self.decrypt(stored) or stored

    # ===== Connections =====

    async def get_connection(self, product_id: str) -> Any:
        """
        Get the client of a product database, building and caching it on first use.

        A cached client is returned as is; call invalidate_connection() after
        changing or deleting the product's config.

        Raises:
            ConfigNotFound: No active config for the product
            UnsupportedKind: The config is not a Supabase database
            IncompleteConfig: The URL or service key is missing
        """
        cached = self.connections.get(product_id)
        if cached is not None:
            return cached

        config = await self.store.find_active_config(product_id)

        if config.get("db_type") != DatabaseKind.SUPABASE.value:
            raise UnsupportedKind(
                f"Product {product_id} is not a Supabase database", db_type=config.get("db_type")
            )

        if not config.get("supabase_url"):
            raise IncompleteConfig(
                f"Product {product_id} missing database connection details: supabase_url",
                field="supabase_url",
            )
        if not config.get("supabase_service_key_encrypted"):
            raise IncompleteConfig(
                f"Product {product_id} missing database connection details: supabase_service_key",
                field="supabase_service_key",
            )

        client = await self.client_factory(config["supabase_url"], self._service_key(config))
        self.connections.set(product_id, client)
        logger.debug(f"Created database client for product {product_id}")

        return client

    def invalidate_connection(self, product_id: str) -> bool:
        """
        Forget the cached client of a product. Safe to call repeatedly.

        Inside an event loop the dropped client is closed in the background;
        outside one it is only dropped.
        """
        client = self.connections.invalidate(product_id)
        if client is None:
            return False

        logger.debug(f"Invalidated database client for product {product_id}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return True

        task = loop.create_task(self._close_client(product_id, client))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)
        return True

    async def _close_client(self, product_id: str, client: Any) -> None:
        try:
            await close_tenant_client(client)
        except Exception as e:
            logger.warning(f"⚠️ Error closing database client for product {product_id}: {error_message(e)}")

    async def close_all(self) -> int:
        """Drop and close every cached client. Returns how many were dropped."""
        clients = self.connections.clear()
        for client in clients:
            await self._close_client("(shutdown)", client)
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)
        return len(clients)

    async def _probe(self, client: Any) -> None:
        """
        Prove the database answers by counting one of the probe tables.

        Schemas differ between products, so every probe table is tried before
        giving up.

        Raises:
            ProbeFailure: With the message of the last failed probe
        """
        last_error: Optional[BaseException] = None
        for table_name in self.probe_tables:
            try:
                await probe_table(client, table_name)
                return
            except Exception as e:
                last_error = e
        raise ProbeFailure(
            error_message(last_error)
            if last_error
            else "Failed to connect to database. Please check your credentials."
        )

    # ===== Validation & Health =====

    async def test_credentials(
        self, candidate: Union[CredentialTestRequest, Dict[str, Any]]
    ) -> ValidationResult:
        """
        Check unsaved credentials against the database they point at.

        Nothing is cached or written.

        Args:
            candidate: Raw (unencrypted) credentials

        Returns:
            ValidationResult with ok=True, or ok=False and an error_kind
        """
        if isinstance(candidate, dict):
            db_type = candidate.get("db_type")
            if not isinstance(db_type, str) or db_type not in SUPPORTED_KINDS:
                return ValidationResult(
                    ok=False,
                    error="Invalid database type",
                    error_kind="unsupported_kind",
                    timestamp=_now(),
                )
            try:
                candidate = CredentialTestRequest(**candidate)
            except ValidationError as e:
                return ValidationResult(
                    ok=False,
                    error=f"Invalid connection details: {e.errors()[0].get('msg', str(e))}",
                    error_kind="incomplete_config",
                    timestamp=_now(),
                )

        if candidate.db_type == DatabaseKind.SUPABASE.value:
            if not candidate.supabase_url or not candidate.supabase_service_key:
                return ValidationResult(
                    ok=False,
                    error="Supabase URL and service key are required",
                    error_kind="incomplete_config",
                    timestamp=_now(),
                )

            try:
                client = await self.client_factory(
                    candidate.supabase_url, candidate.supabase_service_key
                )
                await self._probe(client)
            except Exception as e:
                return ValidationResult(
                    ok=False,
                    error=error_message(e)
                    or "Failed to test connection. Please verify your credentials.",
                    error_kind="probe_failure",
                    timestamp=_now(),
                )

            return ValidationResult(
                ok=True, message="Connection test successful", timestamp=_now()
            )

        if candidate.db_type == DatabaseKind.POSTGRES.value:
            return ValidationResult(
                ok=False,
                error=POSTGRES_NOT_IMPLEMENTED,
                error_kind="not_implemented",
                timestamp=_now(),
            )

        return ValidationResult(
            ok=False, error="Invalid database type", error_kind="unsupported_kind", timestamp=_now()
        )

    async def check_health(self, product_id: str) -> HealthResult:
        """
        Probe a product's stored credentials and record the result on its config.

        Always writes health_status and last_health_check, whatever the outcome.

        Returns:
            HealthResult with status healthy, or down and the error message
        """
        try:
            config = await self.store.find_active_config(product_id)
            if config.get("db_type") != DatabaseKind.SUPABASE.value:
                raise UnsupportedKind(
                    f"Health checks are not supported for {config.get('db_type')} databases",
                    db_type=config.get("db_type"),
                )

            client = await self.get_connection(product_id)
            await self._probe(client)

            timestamp = _now()
            await self.store.update_health(product_id, HealthStatus.HEALTHY.value, timestamp)
            return HealthResult(status=HealthStatus.HEALTHY, timestamp=timestamp)
        except Exception as e:
            message = error_message(e)
            logger.warning(f"⚠️ Health check failed for product {product_id}: {message}")

            timestamp = _now()
            await self.store.update_health(product_id, HealthStatus.DOWN.value, timestamp)
            return HealthResult(status=HealthStatus.DOWN, error=message, timestamp=timestamp)

    # ===== Schema =====

    async def list_tables(self, product_id: str) -> List[DiscoveredTable]:
        """
        List the tables of a product database with row counts.

        Returns an empty list when no strategy finds anything. Config and
        connection errors are raised.
        """
        client = await self.get_connection(product_id)
        config = await self.store.find_active_config(product_id)

        postgres_password = config.get("postgres_password_encrypted")
        context = DiscoveryContext(
            client=client,
            supabase_url=config.get("supabase_url") or "",
            service_key=self._service_key(config) or "",
            schema_name=config.get("schema_name") or "public",
            postgres_password=self.decrypt(postgres_password) if postgres_password else None,
        )

        tables = await first_match(self.discovery_strategies, context)
        if tables is None:
            logger.warning(f"⚠️ No tables discovered for product {product_id}")
            return []
        return tables

    async def inspect_table(self, product_id: str, table_name: str) -> TableDetails:
        """Row count, sample rows and inferred columns of one table. Never raises."""
        try:
            client = await self.get_connection(product_id)
        except Exception as e:
            logger.error(f"Error getting table details for {table_name}: {error_message(e)}")
            return TableDetails(name=table_name, exists=False, error=error_message(e))

        return await inspect_table(client, table_name)

    # ===== Product data =====

    async def get_product_users(
        self, product_id: str, email: Optional[str] = None, status: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        Get users of a product from its profiles table, or its users table if
        profiles does not exist.
        """
        client = await self.get_connection(product_id)

        async def fetch(table_name: str) -> List[Dict[str, Any]]:
            query = client.table(table_name).select("*")
            if email:
                query = query.eq("email", email)
            if status:
                query = query.eq("status", status)
            response = await query.execute()
            return response.data or []

        try:
            return await fetch(PROFILES_TABLE)
        except Exception as e:
            if not is_table_not_found(e):
                raise
            return await fetch("users")

    async def get_product_stats(self, product_id: str) -> Dict[str, int]:
        """
        Count rows of common tables in a product database.

        Keys look like totalProfiles or totalApplicant. Missing tables, and
        tables whose count comes back null, are skipped. activeJobs is always
        present.
        """
        client = await self.get_connection(product_id)

        stats: Dict[str, int] = {}
        for table_name in STATS_TABLES:
            try:
                response = await (
                    client.table(table_name).select("*", count="exact", head=True).execute()
                )
            except Exception:
                continue
            if response.count is None:
                continue
            stats[f"total{table_name[0].upper()}{table_name[1:]}"] = response.count

        try:
            response = await (
                client.table("jobs")
                .select("*", count="exact", head=True)
                .eq("status", "active")
                .execute()
            )
            stats["activeJobs"] = response.count or 0
        except Exception:
            stats["activeJobs"] = 0

        return stats
