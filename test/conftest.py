import pytest
import uuid
from datetime import datetime, timezone

from postgrest.exceptions import APIError

from app.core.exceptions import ConfigNotFound
from app.utils.key_encryption import CredentialCipher

TEST_SECRET = "0123456789abcdef0123456789abcdef"


def table_missing_error(table_name):
    return APIError(
        {
            "code": "PGRST205",
            "message": f"Could not find the table 'public.{table_name}' in the schema cache",
        }
    )


class FakeResponse:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count
        self.error = None


class FakeQuery:
    """Chainable stand-in for an async PostgREST query builder."""

    def __init__(self, client, table_name):
        self.client = client
        self.table_name = table_name
        self.head = False
        self.limit_n = None
        self.filters = []

    def select(self, *columns, count=None, head=False):
        self.head = head
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    async def execute(self):
        self.client.calls.append((self.table_name, self.head, tuple(self.filters)))

        if self.head and self.table_name in self.client.fail_counts:
            raise Exception(f"count failed for {self.table_name}")

        rows = self.client.tables.get(self.table_name)
        if isinstance(rows, Exception):
            raise rows
        if rows is None:
            raise table_missing_error(self.table_name)

        matched = [row for row in rows if all(row.get(c) == v for c, v in self.filters)]
        if self.head:
            count = None if self.table_name in self.client.null_counts else len(matched)
            return FakeResponse(data=[], count=count)
        if self.limit_n is not None:
            matched = matched[: self.limit_n]
        return FakeResponse(data=matched, count=len(matched))


class FakeTenantClient:
    """Product database client holding tables as lists of rows."""

    def __init__(self, tables=None, fail_counts=(), null_counts=()):
        self.tables = tables or {}
        self.fail_counts = set(fail_counts)
        self.null_counts = set(null_counts)
        self.calls = []

    def table(self, table_name):
        return FakeQuery(self, table_name)


class RecordingClientFactory:
    """Async client factory that counts how often it is called."""

    def __init__(self, client=None):
        self.client = client if client is not None else FakeTenantClient()
        self.calls = []

    async def __call__(self, supabase_url, service_key):
        self.calls.append((supabase_url, service_key))
        if isinstance(self.client, Exception):
            raise self.client
        return self.client


class FakeStore:
    """In-memory config store with the find_active_config/update_health surface."""

    def __init__(self):
        self.configs = {}
        self.find_calls = 0
        self.health_updates = []

    def add(self, product_id, **fields):
        config = {
            "id": str(uuid.uuid4()),
            "product_id": product_id,
            "db_type": "supabase",
            "schema_name": "public",
            "is_active": True,
            **fields,
        }
        self.configs[product_id] = config
        return config

    async def find_active_config(self, product_id):
        self.find_calls += 1
        config = self.configs.get(product_id)
        if not config or not config.get("is_active"):
            raise ConfigNotFound(product_id)
        return config

    async def update_health(self, product_id, status, timestamp):
        self.health_updates.append((product_id, status, timestamp))


@pytest.fixture
def cipher():
    return CredentialCipher(secret=TEST_SECRET)


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def make_tenant_client():
    def _make(tables=None, fail_counts=(), null_counts=()):
        return FakeTenantClient(tables, fail_counts, null_counts)

    return _make


@pytest.fixture
def make_client_factory():
    def _make(client=None):
        return RecordingClientFactory(client)

    return _make


@pytest.fixture
def product_id():
    return str(uuid.uuid4())


@pytest.fixture
def admin_user():
    return {
        "id": str(uuid.uuid4()),
        "email": "admin@example.com",
        "full_name": "Admin User",
        "role": ["admin"],
        "created_at": datetime.now(timezone.utc).isoformat(),
    }
