"""SQLite database client wrapper with CRUD operations.

Every write runs inside a `BEGIN IMMEDIATE` transaction. Callers that need several
writes to land together open `transaction()` themselves; the plain helpers then
join the open transaction instead of starting their own.
"""

import asyncio
import json
import logging
import re
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite

from wastewise.core.config import settings


logger = logging.getLogger(__name__)


class DuplicateRecordError(RuntimeError):
    """A write violated a UNIQUE constraint."""


class StaleRecordError(RuntimeError):
    """A versioned update found the record at a different version than expected."""


def _validate_collection_name(collection: str) -> None:
    """Validate that a collection name contains only alphanumeric characters and underscores."""
    if not re.match(r"^[a-zA-Z_][a-zA-Z0-9_]*$", collection):
        msg = f"Invalid collection name: {collection}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def sanitize_param(value: str | int | float | bool | None) -> str:
    """Escape a value for safe embedding in filter queries via json.dumps."""
    return json.dumps(str(value))[1:-1]


def _convert_record_ids(record: dict[str, Any]) -> dict[str, Any]:
    """Convert integer ID and reference fields to strings for Pydantic compatibility."""
    converted = record.copy()
    for key, value in converted.items():
        if isinstance(value, int) and (key == "id" or key.endswith("_id")):
            converted[key] = str(value)
    return converted


def _to_db_value(value: Any) -> Any:
    """Convert a Python value to something SQLite can bind."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value, default=str, ensure_ascii=False)
    return value


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


def _parse_value(value: str, *, is_like: bool = False) -> str:
    """Turn a filter value into its bound parameter.

    Values stay strings: TEXT columns compare them verbatim ("007" is not 7) and
    INTEGER columns convert them through SQLite's numeric affinity.
    """
    if is_like:
        escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return f"%{escaped}%"
    return value


def _get_sql_operator(op: str) -> str:
    """Map filter operator to SQL operator."""
    op_map = {
        "=": "=",
        "!=": "!=",
        ">": ">",
        "<": "<",
        ">=": ">=",
        "<=": "<=",
        "~": "LIKE",
    }
    sql_op = op_map.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)
    return sql_op


def _parse_single_comparison(comparison: str) -> tuple[str, str]:
    """Parse a single comparison expression into a SQL condition and parameter."""
    match = re.fullmatch(
        r"""(\w+)\s*(=|!=|>=|<=|>|<|~)\s*"((?:[^"\\]|\\.)*)\"""",
        comparison.strip(),
    )
    if not match:
        msg = f"Invalid filter syntax: {comparison}"
        raise ValueError(msg)

    field = match.group(1)
    op = match.group(2)
    # Values are embedded with sanitize_param, i.e. JSON string escaping
    raw_value = json.loads(f'"{match.group(3)}"')

    sql_op = _get_sql_operator(op)
    if sql_op == "LIKE":
        return f"{field} LIKE ? ESCAPE '\\'", _parse_value(raw_value, is_like=True)

    return f"{field} {sql_op} ?", _parse_value(raw_value)


def _parse_or_group(or_group: str) -> tuple[str, list[str]]:
    """Parse a parenthesized OR group into a SQL condition and parameters."""
    inner = or_group[1:-1]
    or_parts = [p.strip() for p in _split_top_level(inner, "||")]
    or_conditions = []
    or_params = []

    for part in or_parts:
        cond, value = _parse_single_comparison(part)
        or_conditions.append(cond)
        or_params.append(value)

    return f"({' OR '.join(or_conditions)})", or_params


def _split_top_level(text: str, separator: str) -> list[str]:
    """Split on a separator that sits outside quoted values and parenthesized groups."""
    parts = []
    current = ""
    paren_depth = 0
    in_quotes = False
    escaped = False

    for char in text:
        current += char

        if in_quotes:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_quotes = False
            continue

        if char == '"':
            in_quotes = True
        elif char == "(":
            paren_depth += 1
        elif char == ")":
            paren_depth -= 1
        elif paren_depth == 0 and current.endswith(separator):
            parts.append(current[: -len(separator)].strip())
            current = ""

    if current.strip():
        parts.append(current.strip())

    return parts


def parse_filter(filter_query: str) -> tuple[str, list[str]]:
    """Parse filter syntax into a SQL WHERE clause and parameter list.

    Syntax: `field = "value" && (a ~ "x" || b ~ "x")`. `~` is a case-insensitive
    substring match.
    """
    if not filter_query:
        return "", []

    parts = _split_top_level(filter_query, "&&")
    conditions = []
    params = []

    for raw_part in parts:
        part = raw_part.strip()

        if part.startswith("(") and part.endswith(")"):
            cond, cond_params = _parse_or_group(part)
            conditions.append(cond)
            params.extend(cond_params)
        else:
            cond, value = _parse_single_comparison(part)
            conditions.append(cond)
            params.append(value)

    return " AND ".join(conditions), params


def parse_sort(sort: str) -> str:
    """Translate `field`, `-field`, `+field` or `field DESC` into a safe ORDER BY clause."""
    if not sort:
        return "id ASC"

    candidate = sort.strip()
    if candidate.startswith("-"):
        candidate = f"{candidate[1:]} DESC"
    elif candidate.startswith("+"):
        candidate = f"{candidate[1:]} ASC"

    if re.match(r"^[A-Za-z_][A-Za-z0-9_]*\s*(ASC|DESC)?$", candidate, re.IGNORECASE):
        if candidate.split()[0].lower() == "id":
            return candidate
        # Ties break on id in the same direction
        direction = "DESC" if candidate.upper().endswith("DESC") else "ASC"
        return f"{candidate}, id {direction}"

    logger.warning("Invalid sort parameter, using default", extra={"sort": sort})
    return "id ASC"


def _where(filter_query: str) -> tuple[str, list[Any]]:
    if not filter_query:
        return "", []
    where_clause, params = parse_filter(filter_query)
    return f"WHERE {where_clause}", params


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_read_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}
_write_locks: dict[tuple[int, int, str], asyncio.Lock] = {}
_db_lock = asyncio.Lock()
_active_transaction: ContextVar[aiosqlite.Connection | None] = ContextVar("_active_transaction", default=None)


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    thread_id = threading.get_ident()
    loop_id = id(asyncio.get_running_loop())
    return (thread_id, loop_id, str(get_db_path(db_path)))


async def _read_connection() -> aiosqlite.Connection:
    """Return the connection of the open transaction, or the read-only connection.

    Reads outside a transaction never go through the write connection, so they only
    see committed rows while another coroutine holds a transaction open.
    """
    active = _active_transaction.get()
    if active is not None:
        return active
    return await get_read_connection()


async def get_read_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create the cached read-only connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key in _read_connections:
        return _read_connections[cache_key]

    # The write connection creates the file and switches it to WAL first
    await get_connection(db_path=db_path)

    async with _db_lock:
        if cache_key in _read_connections:
            return _read_connections[cache_key]

        conn = await aiosqlite.connect(str(get_db_path(db_path)))
        await conn.execute("PRAGMA query_only = ON")

        _read_connections[cache_key] = conn
        logger.info("Created read-only SQLite connection", extra={"db_path": cache_key[2]})
        return conn


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key in _db_connections:
        return _db_connections[cache_key]

    async with _db_lock:
        if cache_key in _db_connections:
            return _db_connections[cache_key]

        path = get_db_path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = await aiosqlite.connect(str(path))
        await conn.execute("PRAGMA foreign_keys = ON")
        await conn.execute("PRAGMA journal_mode = WAL")

        _db_connections[cache_key] = conn
        _write_locks[cache_key] = asyncio.Lock()

        logger.info(
            "Created new SQLite connection",
            extra={"db_path": str(path), "thread_id": cache_key[0], "loop_id": cache_key[1]},
        )
        return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    if cache_key not in _db_connections and cache_key not in _read_connections:
        return

    try:
        async with _db_lock:
            reader = _read_connections.pop(cache_key, None)
            if reader is not None:
                await reader.close()
            conn = _db_connections.pop(cache_key, None)
            _write_locks.pop(cache_key, None)
            if conn is not None:
                await conn.close()
                logger.info("Closed SQLite connection", extra={"db_path": cache_key[2]})
    except Exception as e:
        logger.warning("Error closing SQLite connection", extra={"error": str(e), "db_path": cache_key[2]})


async def init_db(*, db_path: str | None = None) -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from wastewise.core import schema

    await schema.init_db(db_path=db_path)


@asynccontextmanager
async def transaction(*, db_path: str | None = None) -> AsyncIterator[aiosqlite.Connection]:
    """Run the enclosed writes as one atomic unit.

    Nested use joins the outer transaction. Writes on the connection are serialized
    by a per-connection lock, so only one transaction is open at a time.
    """
    active = _active_transaction.get()
    if active is not None:
        yield active
        return

    conn = await get_connection(db_path=db_path)
    lock = _write_locks[_cache_key(db_path)]

    async with lock:
        await conn.execute("BEGIN IMMEDIATE")
        token = _active_transaction.set(conn)
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        else:
            await conn.commit()
        finally:
            _active_transaction.reset(token)


def _rows_to_records(cursor: aiosqlite.Cursor, rows: list[Any]) -> list[dict[str, Any]]:
    columns = [description[0] for description in cursor.description]
    return [_convert_record_ids(dict(zip(columns, row, strict=True))) for row in rows]


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    try:
        _validate_collection_name(collection)

        columns = list(data.keys())
        columns_str = ", ".join(columns)
        placeholders_str = ", ".join("?" for _ in columns)
        values = [_to_db_value(data[key]) for key in columns]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - collection is validated
        async with transaction() as conn:
            cursor = await conn.execute(query, values)
            record_id = cursor.lastrowid
            result = await get_record(collection=collection, record_id=str(record_id))

        logger.info("Created record", extra={"collection": collection, "record_id": record_id})
        return result
    except aiosqlite.IntegrityError as e:
        if "UNIQUE" in str(e):
            logger.warning("Duplicate record rejected", extra={"collection": collection, "error": str(e)})
            raise DuplicateRecordError(f"Duplicate record in {collection}: {e}") from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        raise RuntimeError(f"Failed to create record in {collection}: {e}") from e
    except aiosqlite.OperationalError as e:
        if "no such table" in str(e):
            logger.error("Table not found", extra={"collection": collection})
            raise RuntimeError(f"Table '{collection}' does not exist. Call init_db() first.") from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        raise RuntimeError(f"Failed to create record in {collection}: {e}") from e


async def get_record(*, collection: str, record_id: str) -> dict[str, Any]:
    """Fetch a single record by ID, raising KeyError if not found."""
    _validate_collection_name(collection)
    if not str(record_id).isdigit():
        raise KeyError(f"Record not found in {collection}: {record_id}")

    try:
        conn = await _read_connection()

        query = f"SELECT * FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, (int(record_id),))
        rows = await cursor.fetchall()
    except aiosqlite.Error as e:
        logger.error("get_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise RuntimeError(f"Failed to get record from {collection}: {e}") from e

    if not rows:
        raise KeyError(f"Record not found in {collection}: {record_id}")

    logger.debug("Retrieved record", extra={"collection": collection, "record_id": record_id})
    return _rows_to_records(cursor, list(rows))[0]


async def update_record(
    *,
    collection: str,
    record_id: str,
    data: dict[str, Any],
    expected_version: int | None = None,
) -> dict[str, Any]:
    """Update a record by ID and return the updated record.

    With `expected_version`, the row must still be at that version; the version column
    is incremented and StaleRecordError is raised if another write got there first.
    """
    if not data:
        msg = "Empty update payload"
        raise ValueError(msg)

    _validate_collection_name(collection)
    if not str(record_id).isdigit():
        raise KeyError(f"Record not found in {collection}: {record_id}")

    set_clause = ", ".join(f"{key} = ?" for key in data)
    values = [_to_db_value(val) for val in data.values()]
    where_clause = "id = ?"
    values.append(int(record_id))

    if expected_version is not None:
        set_clause += ", version = version + 1"
        where_clause += " AND version = ?"
        values.append(expected_version)

    query = f"UPDATE {collection} SET {set_clause} WHERE {where_clause}"  # noqa: S608 - collection is validated

    try:
        async with transaction() as conn:
            cursor = await conn.execute(query, values)
            if cursor.rowcount == 0:
                # Distinguish a missing row from a version mismatch
                await get_record(collection=collection, record_id=record_id)
                raise StaleRecordError(
                    f"Record {record_id} in {collection} is no longer at version {expected_version}"
                )
            result = await get_record(collection=collection, record_id=record_id)
    except (KeyError, StaleRecordError):
        raise
    except aiosqlite.IntegrityError as e:
        if "UNIQUE" in str(e):
            raise DuplicateRecordError(f"Duplicate record in {collection}: {e}") from e
        raise RuntimeError(f"Failed to update record in {collection}: {e}") from e
    except aiosqlite.Error as e:
        logger.error("update_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise RuntimeError(f"Failed to update record in {collection}: {e}") from e

    logger.info("Updated record", extra={"collection": collection, "record_id": record_id})
    return result


async def delete_record(*, collection: str, record_id: str) -> None:
    """Delete a record by ID, raising KeyError if not found."""
    _validate_collection_name(collection)
    if not str(record_id).isdigit():
        raise KeyError(f"Record not found in {collection}: {record_id}")

    try:
        query = f"DELETE FROM {collection} WHERE id = ?"  # noqa: S608 - collection is validated
        async with transaction() as conn:
            cursor = await conn.execute(query, (int(record_id),))
            deleted = cursor.rowcount
    except aiosqlite.Error as e:
        logger.error("delete_record_failed", extra={"collection": collection, "record_id": record_id, "error": str(e)})
        raise RuntimeError(f"Failed to delete record from {collection}: {e}") from e

    if deleted == 0:
        raise KeyError(f"Record not found in {collection}: {record_id}")

    logger.info("Deleted record", extra={"collection": collection, "record_id": record_id})


async def list_records(
    *,
    collection: str,
    page: int = 1,
    per_page: int = 50,
    filter_query: str = "",
    sort: str = "",
) -> list[dict[str, Any]]:
    """List records with optional filtering, sorting, and pagination."""
    try:
        _validate_collection_name(collection)
        conn = await _read_connection()

        where_clause, params = _where(filter_query)
        order_by = parse_sort(sort)
        offset = (max(page, 1) - 1) * per_page

        query = f"SELECT * FROM {collection} {where_clause} ORDER BY {order_by} LIMIT ? OFFSET ?"  # noqa: S608 - collection is validated
        params.extend([per_page, offset])

        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        records = _rows_to_records(cursor, list(rows))

        logger.debug("Listed records", extra={"collection": collection, "count": len(records)})
        return records
    except ValueError:
        raise
    except aiosqlite.Error as e:
        logger.error("list_records_failed", extra={"collection": collection, "error": str(e)})
        raise RuntimeError(f"Failed to list records from {collection}: {e}") from e


async def get_first_record(*, collection: str, filter_query: str) -> dict[str, Any] | None:
    """Return the first record matching the filter, or None."""
    records = await list_records(collection=collection, filter_query=filter_query, per_page=1)
    return records[0] if records else None


async def count_records(*, collection: str, filter_query: str = "") -> int:
    """Count records matching the filter."""
    try:
        _validate_collection_name(collection)
        conn = await _read_connection()

        where_clause, params = _where(filter_query)
        query = f"SELECT COUNT(*) FROM {collection} {where_clause}"  # noqa: S608 - collection is validated
        cursor = await conn.execute(query, params)
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row else 0
    except aiosqlite.Error as e:
        logger.error("count_records_failed", extra={"collection": collection, "error": str(e)})
        raise RuntimeError(f"Failed to count records in {collection}: {e}") from e


async def count_by(*, collection: str, field: str, filter_query: str = "") -> dict[str, int]:
    """Count records matching the filter, grouped by one column."""
    _validate_collection_name(collection)
    _validate_collection_name(field)

    try:
        conn = await _read_connection()

        where_clause, params = _where(filter_query)
        query = f"SELECT {field}, COUNT(*) FROM {collection} {where_clause} GROUP BY {field}"  # noqa: S608 - names are validated
        cursor = await conn.execute(query, params)
        rows = await cursor.fetchall()
        return {str(key): int(count) for key, count in rows}
    except aiosqlite.Error as e:
        logger.error("count_by_failed", extra={"collection": collection, "field": field, "error": str(e)})
        raise RuntimeError(f"Failed to group records in {collection}: {e}") from e


async def sum_field(*, collection: str, field: str, filter_query: str = "") -> int:
    """Sum an integer column over the records matching the filter (0 when none match)."""
    _validate_collection_name(collection)
    _validate_collection_name(field)

    try:
        conn = await _read_connection()

        where_clause, params = _where(filter_query)
        query = f"SELECT COALESCE(SUM({field}), 0) FROM {collection} {where_clause}"  # noqa: S608 - names are validated
        cursor = await conn.execute(query, params)
        row = await cursor.fetchone()
        await cursor.close()
        return int(row[0]) if row else 0
    except aiosqlite.Error as e:
        logger.error("sum_field_failed", extra={"collection": collection, "field": field, "error": str(e)})
        raise RuntimeError(f"Failed to sum {field} in {collection}: {e}") from e
