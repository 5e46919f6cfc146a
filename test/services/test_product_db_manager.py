import asyncio

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock

from postgrest.exceptions import APIError

from app.core.exceptions import ConfigNotFound, IncompleteConfig, UnsupportedKind
from app.models.schemas import HealthStatus
from app.services.product_db_manager import POSTGRES_NOT_IMPLEMENTED, ProductDatabaseManager
from app.services.schema_discovery import (
    DirectSqlStrategy,
    HeuristicProbeStrategy,
    RestSchemaStrategy,
)


ACME_URL = "https://acme.supabase.co"


@pytest.fixture
def build_manager(fake_store, cipher, make_client_factory):
    def _build(client=None, **kwargs):
        factory = make_client_factory(client)
        manager = ProductDatabaseManager(
            store=fake_store,
            cipher=cipher,
            client_factory=factory,
            **kwargs,
        )
        return manager, factory

    return _build


@pytest.fixture
def acme_config(fake_store, cipher, product_id):
    return fake_store.add(
        product_id,
        product_name="Acme",
        supabase_url=ACME_URL,
        supabase_service_key_encrypted=cipher.encrypt("acme-service-key"),
    )


class TestGetConnection:
    @pytest.mark.asyncio
    async def test_builds_once_and_caches(self, build_manager, fake_store, acme_config, product_id):
        manager, factory = build_manager()

        first = await manager.get_connection(product_id)
        second = await manager.get_connection(product_id)

        assert first is second
        assert factory.calls == [(ACME_URL, "acme-service-key")]
        assert fake_store.find_calls == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_rebuild(self, build_manager, acme_config, product_id):
        manager, factory = build_manager()

        await manager.get_connection(product_id)
        assert manager.invalidate_connection(product_id) is True
        assert manager.invalidate_connection(product_id) is False
        await manager.get_connection(product_id)

        assert len(factory.calls) == 2

    @pytest.mark.asyncio
    async def test_invalidate_closes_dropped_client(self, build_manager, acme_config, product_id):
        client = MagicMock()
        client._postgrest = MagicMock(aclose=AsyncMock())
        manager, _ = build_manager(client)

        await manager.get_connection(product_id)
        manager.invalidate_connection(product_id)
        await asyncio.sleep(0)

        client._postgrest.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_all_closes_every_client(self, build_manager, fake_store, cipher, acme_config, product_id):
        client = MagicMock()
        client._postgrest = MagicMock(aclose=AsyncMock(side_effect=[None, RuntimeError("already closed")]))
        other_product = "7d1c3c1e-1111-4d6f-9d0e-2a5f3f1c0b42"
        fake_store.add(
            other_product,
            supabase_url="https://other.supabase.co",
            supabase_service_key_encrypted=cipher.encrypt("other-key"),
        )
        manager, _ = build_manager(client)

        await manager.get_connection(product_id)
        await manager.get_connection(other_product)

        assert await manager.close_all() == 2
        assert client._postgrest.aclose.await_count == 2
        assert len(manager.connections) == 0

    @pytest.mark.asyncio
    async def test_close_skips_client_that_never_queried(self, build_manager, acme_config, product_id):
        manager, _ = build_manager(object())

        await manager.get_connection(product_id)

        assert await manager.close_all() == 1

    @pytest.mark.asyncio
    async def test_managers_do_not_share_caches(self, build_manager, acme_config, product_id):
        first, first_factory = build_manager()
        second, second_factory = build_manager()

        await first.get_connection(product_id)
        await second.get_connection(product_id)

        assert len(first_factory.calls) == 1
        assert len(second_factory.calls) == 1

    @pytest.mark.asyncio
    async def test_legacy_plaintext_key(self, build_manager, fake_store, product_id):
        token = "eyJhbGciOiJIUzI1NiJ9.payload.sig"
        fake_store.add(product_id, supabase_url=ACME_URL, supabase_service_key_encrypted=token)
        manager, factory = build_manager()

        await manager.get_connection(product_id)

        assert factory.calls == [(ACME_URL, token)]

    @pytest.mark.asyncio
    async def test_missing_config(self, build_manager, product_id):
        manager, factory = build_manager()

        with pytest.raises(ConfigNotFound):
            await manager.get_connection(product_id)
        assert factory.calls == []

    @pytest.mark.asyncio
    async def test_inactive_config(self, build_manager, fake_store, product_id):
        fake_store.add(product_id, supabase_url=ACME_URL, is_active=False)
        manager, _ = build_manager()

        with pytest.raises(ConfigNotFound):
            await manager.get_connection(product_id)

    @pytest.mark.asyncio
    async def test_postgres_config_is_unsupported(self, build_manager, fake_store, product_id):
        fake_store.add(product_id, db_type="postgres", postgres_host="db.internal")
        manager, _ = build_manager()

        with pytest.raises(UnsupportedKind):
            await manager.get_connection(product_id)

    @pytest.mark.asyncio
    async def test_missing_url(self, build_manager, fake_store, cipher, product_id):
        fake_store.add(product_id, supabase_service_key_encrypted=cipher.encrypt("key"))
        manager, _ = build_manager()

        with pytest.raises(IncompleteConfig) as excinfo:
            await manager.get_connection(product_id)
        assert excinfo.value.field == "supabase_url"

    @pytest.mark.asyncio
    async def test_missing_service_key(self, build_manager, fake_store, product_id):
        fake_store.add(product_id, supabase_url=ACME_URL)
        manager, _ = build_manager()

        with pytest.raises(IncompleteConfig) as excinfo:
            await manager.get_connection(product_id)
        assert excinfo.value.field == "supabase_service_key"


class TestTestCredentials:
    @pytest.mark.asyncio
    async def test_valid_credentials(self, build_manager, make_tenant_client):
        manager, factory = build_manager(make_tenant_client({"profiles": [{"id": 1}]}))

        result = await manager.test_credentials(
            {"db_type": "supabase", "supabase_url": ACME_URL, "supabase_service_key": "k"}
        )

        assert result.ok is True
        assert result.message == "Connection test successful"
        assert factory.calls == [(ACME_URL, "k")]
        assert len(manager.connections) == 0

    @pytest.mark.asyncio
    async def test_falls_back_to_users_table(self, build_manager, make_tenant_client):
        client = make_tenant_client({"users": []})
        manager, _ = build_manager(client)

        result = await manager.test_credentials(
            {"db_type": "supabase", "supabase_url": ACME_URL, "supabase_service_key": "k"}
        )

        assert result.ok is True
        assert [call[0] for call in client.calls] == ["profiles", "users"]

    @pytest.mark.asyncio
    async def test_no_probe_table_answers(self, build_manager, make_tenant_client):
        manager, _ = build_manager(make_tenant_client({}))

        result = await manager.test_credentials(
            {"db_type": "supabase", "supabase_url": ACME_URL, "supabase_service_key": "k"}
        )

        assert result.ok is False
        assert result.error_kind == "probe_failure"
        assert "users" in result.error

    @pytest.mark.asyncio
    async def test_client_construction_failure(self, build_manager):
        manager, _ = build_manager(ValueError("Invalid URL"))

        result = await manager.test_credentials(
            {"db_type": "supabase", "supabase_url": "not a url", "supabase_service_key": "k"}
        )

        assert result.ok is False
        assert result.error == "Invalid URL"

    @pytest.mark.asyncio
    async def test_missing_key(self, build_manager):
        manager, factory = build_manager()

        result = await manager.test_credentials({"db_type": "supabase", "supabase_url": ACME_URL})

        assert result.ok is False
        assert result.error_kind == "incomplete_config"
        assert factory.calls == []

    @pytest.mark.asyncio
    async def test_postgres_not_implemented(self, build_manager):
        manager, _ = build_manager()

        result = await manager.test_credentials(
            {
                "db_type": "postgres",
                "postgres_host": "db.internal",
                "postgres_database": "app",
                "postgres_user": "app",
                "postgres_password": "secret",
            }
        )

        assert result.ok is False
        assert result.error_kind == "not_implemented"
        assert result.error == POSTGRES_NOT_IMPLEMENTED

    @pytest.mark.asyncio
    async def test_unknown_kind(self, build_manager):
        manager, _ = build_manager()

        result = await manager.test_credentials({"db_type": "mysql"})

        assert result.ok is False
        assert result.error_kind == "unsupported_kind"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("db_type", [None, 42, "", ["supabase"]])
    async def test_malformed_kind_is_unsupported(self, build_manager, db_type):
        manager, factory = build_manager()

        result = await manager.test_credentials({"db_type": db_type, "supabase_url": ACME_URL})

        assert result.ok is False
        assert result.error_kind == "unsupported_kind"
        assert factory.calls == []

    @pytest.mark.asyncio
    async def test_malformed_fields_are_incomplete(self, build_manager):
        manager, factory = build_manager()

        result = await manager.test_credentials(
            {"db_type": "supabase", "supabase_url": ACME_URL, "supabase_service_key": ["k"]}
        )

        assert result.ok is False
        assert result.error_kind == "incomplete_config"
        assert factory.calls == []


class TestCheckHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, build_manager, fake_store, acme_config, product_id, make_tenant_client):
        manager, _ = build_manager(make_tenant_client({"profiles": []}))

        health = await manager.check_health(product_id)

        assert health.status == HealthStatus.HEALTHY
        assert health.error is None
        assert fake_store.health_updates == [(product_id, "healthy", health.timestamp)]

    @pytest.mark.asyncio
    async def test_probe_failure_is_down(self, build_manager, fake_store, acme_config, product_id, make_tenant_client):
        manager, _ = build_manager(make_tenant_client({}))

        health = await manager.check_health(product_id)

        assert health.status == HealthStatus.DOWN
        assert health.error
        assert fake_store.health_updates[0][1] == "down"
        assert fake_store.health_updates[0][2] is not None
        assert health.timestamp == fake_store.health_updates[0][2]

    @pytest.mark.asyncio
    async def test_wrong_key_connects_then_reports_down(
        self, build_manager, fake_store, cipher, product_id, make_tenant_client
    ):
        fake_store.add(
            product_id,
            product_name="Acme",
            supabase_url=ACME_URL,
            supabase_service_key_encrypted=cipher.encrypt("wrong-key"),
        )
        invalid_key = APIError({"message": "Invalid API key", "code": "401"})
        client = make_tenant_client({"profiles": invalid_key, "users": invalid_key})
        manager, factory = build_manager(client)

        assert await manager.get_connection(product_id) is client
        assert factory.calls == [(ACME_URL, "wrong-key")]

        health = await manager.check_health(product_id)

        assert health.status == HealthStatus.DOWN
        assert health.error == "Invalid API key"
        assert fake_store.health_updates == [(product_id, "down", health.timestamp)]
        assert len(factory.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_config_is_down(self, build_manager, fake_store, product_id):
        manager, _ = build_manager()

        health = await manager.check_health(product_id)

        assert health.status == HealthStatus.DOWN
        assert "not found" in health.error
        assert fake_store.health_updates[0][:2] == (product_id, "down")

    @pytest.mark.asyncio
    async def test_postgres_config_is_down(self, build_manager, fake_store, product_id):
        fake_store.add(product_id, db_type="postgres", postgres_host="db.internal")
        manager, factory = build_manager()

        health = await manager.check_health(product_id)

        assert health.status == HealthStatus.DOWN
        assert factory.calls == []


class TestListTables:
    @pytest.mark.asyncio
    async def test_acme_orders_via_heuristic(self, build_manager, acme_config, product_id, make_tenant_client):
        client = make_tenant_client({"orders": [{"id": i} for i in range(3)]})
        strategies = [
            DirectSqlStrategy(connect=AsyncMock(side_effect=OSError("refused"))),
            RestSchemaStrategy(
                transport=httpx.MockTransport(lambda request: httpx.Response(404, json={}))
            ),
            HeuristicProbeStrategy(candidate_tables=["orders", "widgets"]),
        ]
        manager, _ = build_manager(client, discovery_strategies=strategies)

        tables = await manager.list_tables(product_id)

        assert [(t.name, t.row_count) for t in tables] == [("orders", 3)]

    @pytest.mark.asyncio
    async def test_context_carries_decrypted_secrets(self, build_manager, fake_store, cipher, product_id):
        fake_store.add(
            product_id,
            supabase_url=ACME_URL,
            supabase_service_key_encrypted=cipher.encrypt("acme-service-key"),
            postgres_password_encrypted=cipher.encrypt("db-password"),
            schema_name="app",
        )
        strategy = MagicMock()
        strategy.name = "recording"
        strategy.discover = AsyncMock(return_value=None)
        manager, _ = build_manager(discovery_strategies=[strategy])

        assert await manager.list_tables(product_id) == []

        context = strategy.discover.call_args.args[0]
        assert context.service_key == "acme-service-key"
        assert context.postgres_password == "db-password"
        assert context.schema_name == "app"
        assert context.supabase_url == ACME_URL

    @pytest.mark.asyncio
    async def test_missing_config_raises(self, build_manager, product_id):
        manager, _ = build_manager(discovery_strategies=[])

        with pytest.raises(ConfigNotFound):
            await manager.list_tables(product_id)


class TestInspectTable:
    @pytest.mark.asyncio
    async def test_inspects_through_cached_client(self, build_manager, acme_config, product_id, make_tenant_client):
        manager, factory = build_manager(make_tenant_client({"orders": [{"id": 1}]}))

        details = await manager.inspect_table(product_id, "orders")
        await manager.inspect_table(product_id, "orders")

        assert details.exists is True
        assert details.row_count == 1
        assert len(factory.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_config_does_not_raise(self, build_manager, product_id):
        manager, _ = build_manager()

        details = await manager.inspect_table(product_id, "orders")

        assert details.exists is False
        assert "not found" in details.error


class TestProductData:
    @pytest.mark.asyncio
    async def test_users_from_profiles(self, build_manager, acme_config, product_id, make_tenant_client):
        profiles = [
            {"id": 1, "email": "a@example.com", "status": "active"},
            {"id": 2, "email": "b@example.com", "status": "invited"},
        ]
        manager, _ = build_manager(make_tenant_client({"profiles": profiles}))

        assert await manager.get_product_users(product_id) == profiles
        assert await manager.get_product_users(product_id, status="invited") == [profiles[1]]

    @pytest.mark.asyncio
    async def test_users_fallback_to_users_table(self, build_manager, acme_config, product_id, make_tenant_client):
        users = [{"id": 1, "email": "a@example.com"}]
        manager, _ = build_manager(make_tenant_client({"users": users}))

        assert await manager.get_product_users(product_id, email="a@example.com") == users

    @pytest.mark.asyncio
    async def test_users_other_errors_propagate(self, build_manager, acme_config, product_id, make_tenant_client):
        manager, _ = build_manager(make_tenant_client({"profiles": RuntimeError("timeout")}))

        with pytest.raises(RuntimeError):
            await manager.get_product_users(product_id)

    @pytest.mark.asyncio
    async def test_stats(self, build_manager, acme_config, product_id, make_tenant_client):
        client = make_tenant_client(
            {
                "profiles": [{"id": 1}, {"id": 2}],
                "jobs": [{"status": "active"}, {"status": "closed"}, {"status": "active"}],
                "Applicant": [{"id": 1}],
            }
        )
        manager, _ = build_manager(client)

        stats = await manager.get_product_stats(product_id)

        assert stats == {
            "totalProfiles": 2,
            "totalJobs": 3,
            "totalApplicant": 1,
            "activeJobs": 2,
        }

    @pytest.mark.asyncio
    async def test_stats_without_jobs(self, build_manager, acme_config, product_id, make_tenant_client):
        manager, _ = build_manager(make_tenant_client({"users": []}))

        assert await manager.get_product_stats(product_id) == {"totalUsers": 0, "activeJobs": 0}

    @pytest.mark.asyncio
    async def test_stats_skip_null_counts(self, build_manager, acme_config, product_id, make_tenant_client):
        client = make_tenant_client(
            {"profiles": [{"id": 1}], "users": [{"id": 1}, {"id": 2}]},
            null_counts=["profiles"],
        )
        manager, _ = build_manager(client)

        stats = await manager.get_product_stats(product_id)

        assert "totalProfiles" not in stats
        assert stats == {"totalUsers": 2, "activeJobs": 0}
