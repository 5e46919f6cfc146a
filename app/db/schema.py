# Admin Database Schema Definition
SUPABASE_SCHEMA = {
    "tables": [
        {
            "name": "products",
            "columns": [
                {"name": "id", "type": "uuid", "primaryKey": True, "default": "gen_random_uuid()"},
                {"name": "name", "type": "varchar(255)", "notNull": True},
                {"name": "slug", "type": "varchar(255)", "unique": True},
                {"name": "description", "type": "text"},
                {"name": "created_at", "type": "timestamp with time zone", "notNull": True, "default": "now()"},
                {"name": "updated_at", "type": "timestamp with time zone", "notNull": True, "default": "now()"},
            ]
        },
        {
            "name": "profiles",
            "columns": [
                {"name": "id", "type": "uuid", "primaryKey": True, "default": "gen_random_uuid()"},
                {"name": "email", "type": "text", "notNull": True, "unique": True},
                {"name": "full_name", "type": "text"},
                {"name": "role", "type": "text[]", "notNull": True, "default": "'{user}'"},
                {"name": "created_at", "type": "timestamp with time zone", "notNull": True, "default": "now()"},
                {"name": "updated_at", "type": "timestamp with time zone"},
            ]
        },
        {
            "name": "api_keys",
            "columns": [
                {"name": "id", "type": "uuid", "primaryKey": True, "default": "gen_random_uuid()"},
                {"name": "user_id", "type": "uuid", "notNull": True, "references": {"table": "profiles", "column": "id"}},
                {"name": "key", "type": "text", "notNull": True, "unique": True},
                {"name": "name", "type": "text", "notNull": True},
                {"name": "created_at", "type": "timestamp with time zone", "notNull": True, "default": "now()"},
                {"name": "last_used_at", "type": "timestamp with time zone"},
                {"name": "expires_at", "type": "timestamp with time zone"},
            ]
        },
        {
            "name": "product_databases",
            "columns": [
                {"name": "id", "type": "uuid", "primaryKey": True, "default": "gen_random_uuid()"},
                {
                    "name": "product_id",
                    "type": "uuid",
                    "unique": True,
                    "references": {"table": "products", "column": "id", "onDelete": "CASCADE"},
                },
                {"name": "product_name", "type": "varchar(255)", "notNull": True},
                {"name": "db_type", "type": "varchar(50)", "notNull": True, "default": "supabase"},
                {"name": "supabase_url", "type": "text"},
                {"name": "supabase_service_key_encrypted", "type": "text"},
                {"name": "postgres_host", "type": "text"},
                {"name": "postgres_port", "type": "integer", "default": 5432},
                {"name": "postgres_database", "type": "text"},
                {"name": "postgres_user_encrypted", "type": "text"},
                {"name": "postgres_password_encrypted", "type": "text"},
                {"name": "schema_name", "type": "varchar(100)", "default": "public"},
                {"name": "is_active", "type": "boolean", "default": True},
                {"name": "health_status", "type": "varchar(20)", "default": "unknown"},
                {"name": "last_health_check", "type": "timestamp with time zone"},
                {"name": "created_at", "type": "timestamp with time zone", "default": "now()"},
                {"name": "updated_at", "type": "timestamp with time zone", "default": "now()"},
            ]
        },
    ],
    "indexes": [
        {"table": "api_keys", "columns": ["user_id"], "method": "btree"},
        {"table": "product_databases", "columns": ["product_id"], "method": "btree"},
        {"table": "product_databases", "columns": ["health_status"], "method": "btree"},
        {
            "table": "product_databases",
            "columns": ["is_active"],
            "method": "btree",
            "name": "idx_product_databases_active",
            "where": "is_active = true",
        },
        {
            "table": "product_databases",
            "columns": ["product_id"],
            "method": "btree",
            "name": "idx_product_databases_unique_product",
            "unique": True,
            "where": "is_active = true",
        },
    ],
}

# Defaults emitted without quoting
SQL_FUNCTION_DEFAULTS = ("now()", "gen_random_uuid()")


def _default_sql(default_value) -> str:
    if isinstance(default_value, bool):
        return "true" if default_value else "false"
    if isinstance(default_value, (int, float)):
        return str(default_value)
    if default_value in SQL_FUNCTION_DEFAULTS or default_value.startswith("'"):
        return default_value
    return f"'{default_value}'"


def build_column_sql(column: dict) -> str:
    """Render one column definition of a CREATE TABLE statement."""
    column_def = f"{column['name']} {column['type']}"

    if column.get("primaryKey"):
        column_def += " PRIMARY KEY"
    if column.get("notNull"):
        column_def += " NOT NULL"
    if column.get("unique"):
        column_def += " UNIQUE"
    if column.get("default") is not None:
        column_def += f" DEFAULT {_default_sql(column['default'])}"
    if column.get("references"):
        ref = column["references"]
        column_def += f" REFERENCES {ref['table']}({ref['column']})"
        if ref.get("onDelete"):
            column_def += f" ON DELETE {ref['onDelete']}"

    return column_def


def build_create_table_sql(table: dict) -> str:
    columns = ", ".join(build_column_sql(column) for column in table["columns"])
    return f"CREATE TABLE IF NOT EXISTS {table['name']} ({columns});"


def index_name(index: dict) -> str:
    return index.get("name") or f"idx_{index['table']}_{'_'.join(index['columns'])}"


def build_index_sql(index: dict) -> str:
    """Render a CREATE INDEX statement, optionally unique and partial."""
    unique = "UNIQUE " if index.get("unique") else ""
    sql = (
        f"CREATE {unique}INDEX IF NOT EXISTS {index_name(index)} ON {index['table']} "
        f"USING {index['method']} ({', '.join(index['columns'])})"
    )
    if index.get("where"):
        sql += f" WHERE {index['where']}"
    return sql + ";"
