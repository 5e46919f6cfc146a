"""Row count, sample rows and column guesses for a single product table."""

import re
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List

from loguru import logger

from app.models.schemas import ColumnProfile, TableDetails
from app.utils.supabase_utils import TABLE_SAMPLE_SIZE, count_rows, error_message, is_table_not_found

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
DATE_PREFIX_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}")


def infer_column_type(value: Any) -> str:
    """
    Guess a column type from one sample value.

    The uuid and timestamp checks on strings are independent overwrites: the
    timestamp check runs after the uuid check and wins if both match.
    """
    if value is None:
        return "null"

    if isinstance(value, str):
        column_type = "text"
        if UUID_PATTERN.match(value):
            column_type = "uuid"
        if DATE_PREFIX_PATTERN.match(value) and "T" in value:
            column_type = "timestamp"
        return column_type

    # bool is a subclass of int, so it has to be checked first
    if isinstance(value, bool):
        return "boolean"

    if isinstance(value, int):
        return "integer"

    if isinstance(value, float):
        return "integer" if value.is_integer() else "numeric"

    if isinstance(value, list):
        return "array"

    if isinstance(value, dict):
        return "jsonb"

    return "unknown"


def profile_columns(row: Dict[str, Any]) -> List[ColumnProfile]:
    """
    Build column profiles from a single row, in key order.

    `nullable` only says whether this one value was null; a single row cannot
    show that a column never holds nulls.
    """
    return [
        ColumnProfile(
            name=key,
            type=infer_column_type(value),
            nullable=value is None,
            sample_value=value,
            position=index + 1,
        )
        for index, (key, value) in enumerate(row.items())
    ]


async def fetch_sample(client: Any, table_name: str, sample_size: int) -> List[Dict[str, Any]]:
    response = await client.table(table_name).select("*").limit(sample_size).execute()
    return response.data or []


async def inspect_table(
    client: Any, table_name: str, sample_size: int = TABLE_SAMPLE_SIZE
) -> TableDetails:
    """
    Fetch the row count and a sample of a table, and profile its columns.

    Never raises. A missing table gives exists=False with "Table not found";
    any other failure gives exists=False with the error message.

    Args:
        client: Async Supabase client of the product database
        table_name: Table to inspect
        sample_size: Number of rows to sample

    Returns:
        TableDetails for the table
    """
    try:
        count_result, sample_result = await asyncio.gather(
            count_rows(client, table_name),
            fetch_sample(client, table_name, sample_size),
            return_exceptions=True,
        )

        if isinstance(sample_result, BaseException):
            if is_table_not_found(sample_result):
                return TableDetails(name=table_name, exists=False, error="Table not found")
            raise sample_result

        if isinstance(count_result, BaseException):
            logger.warning(f"Row count failed for table {table_name}: {error_message(count_result)}")
            count_result = 0

        columns = profile_columns(sample_result[0]) if sample_result else []

        return TableDetails(
            name=table_name,
            exists=True,
            row_count=count_result or 0,
            columns=columns,
            sample_data=sample_result,
            last_checked=datetime.now(timezone.utc),
        )
    except Exception as e:
        logger.error(f"Error getting table details for {table_name}: {error_message(e)}")
        return TableDetails(name=table_name, exists=False, error=error_message(e))
