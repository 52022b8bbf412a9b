# row_marshaler.py
# Turns an executed DB-API cursor into ProductRow values ready for JSON.
import logging
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, List, Sequence

import psycopg

from errors import CursorError, QueryError, ScanError
from models import Field, ProductRow, ValueKind

LOG = logging.getLogger(__name__)


def format_rfc3339(value: datetime) -> str:
    """RFC 3339 with second precision; naive datetimes are read as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.replace(microsecond=0)
    offset = value.utcoffset()
    if not offset:
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value.isoformat()


def coerce_value(value: Any) -> Field:
    """Map a driver value onto the closed ValueKind set. Returns an unnamed Field."""
    # bool before int: bool is a subclass of int
    if value is None:
        return Field("", ValueKind.NULL, None)
    if isinstance(value, bool):
        return Field("", ValueKind.BOOLEAN, value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return Field("", ValueKind.TEXT, bytes(value).decode("utf-8", errors="replace"))
    if isinstance(value, datetime):
        return Field("", ValueKind.TIMESTAMP, format_rfc3339(value))
    if isinstance(value, date):
        midnight = datetime.combine(value, time(0, 0), tzinfo=timezone.utc)
        return Field("", ValueKind.TIMESTAMP, format_rfc3339(midnight))
    if isinstance(value, Decimal):
        # numeric columns keep their exact digits, e.g. "99.00"
        return Field("", ValueKind.TEXT, str(value))
    if isinstance(value, (int, float)):
        return Field("", ValueKind.NUMBER, value)
    if isinstance(value, str):
        return Field("", ValueKind.TEXT, value)
    return Field("", ValueKind.TEXT, str(value))


def column_names(cursor) -> List[str]:
    try:
        description = cursor.description
    except psycopg.Error as e:
        raise QueryError(f"Failed to get columns: {e}") from e
    if description is None:
        raise QueryError("Failed to get columns: query returned no result set")
    return [col[0] for col in description]


def scan_row(columns: Sequence[str], row: Sequence[Any]) -> ProductRow:
    if len(row) != len(columns):
        raise ScanError(
            f"Failed to scan row: expected {len(columns)} columns, got {len(row)}"
        )
    fields = []
    for name, value in zip(columns, row):
        try:
            coerced = coerce_value(value)
        except (ValueError, TypeError, UnicodeError) as e:
            raise ScanError(f"Failed to scan row: column {name!r}: {e}") from e
        fields.append(Field(name, coerced.kind, coerced.value))
    return ProductRow(tuple(fields))


def marshal_rows(cursor) -> List[ProductRow]:
    """Read every remaining row of `cursor`.

    Returns the complete list or raises QueryError / ScanError / CursorError;
    rows read before a failure are discarded.
    """
    columns = column_names(cursor)
    rows: List[ProductRow] = []
    try:
        for raw in cursor:
            rows.append(scan_row(columns, raw))
    except psycopg.DataError as e:
        # the driver decodes values while fetching, so a bad value surfaces here
        raise ScanError(f"Failed to scan row: {e}") from e
    except psycopg.Error as e:
        raise CursorError(f"Error iterating rows: {e}") from e
    LOG.debug("marshaled %d rows with columns %s", len(rows), columns)
    return rows
