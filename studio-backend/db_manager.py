"""
SQL Studio - Table Manager
==========================

Execution layer behind the REST API. Every public method runs the
relevant guard before any SQL reaches the engine:

- Names (table/column)  -> validate_identifier + quote_identifier
- Row payloads          -> validate_row_data, values bound as '?' params
- Raw statements        -> validate_sql_statement / validate_create_table_statement

Engine errors (e.g. "no such table") are NOT caught here; they propagate to
the dispatcher unchanged.

Author: SQL Studio Team
"""

import logging
import time
from typing import Any, Dict, List, Optional, Sequence

import sqlparse
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from sql_guard import (
    RejectionReason,
    quote_identifier,
    quote_identifiers,
    reject,
    validate_column_constraints,
    validate_column_type,
    validate_identifier,
    validate_pagination,
    validate_row_data,
)
from statement_policy import validate_create_table_statement, validate_sql_statement
from ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# Tables the studio itself owns; never listed to the UI
INTERNAL_TABLES = ("studio_api_keys",)


class MissingPrimaryKey(Exception):
    pass


class RowNotFound(Exception):
    pass


# =============================================================================
# SQL builders (arguments must already be validated)
# =============================================================================

def build_insert_sql(table_name: str, columns: Sequence[str]) -> str:
    placeholders = ", ".join("?" for _ in columns)
    return f"INSERT INTO {quote_identifier(table_name)} ({quote_identifiers(columns)}) VALUES ({placeholders})"


def build_update_sql(table_name: str, columns: Sequence[str], pk_column: str) -> str:
    set_clause = ", ".join(f"{quote_identifier(column)} = ?" for column in columns)
    return (
        f"UPDATE {quote_identifier(table_name)} SET {set_clause} "
        f"WHERE {quote_identifier(pk_column)} = ?"
    )


def build_select_by_pk_sql(table_name: str, pk_column: str) -> str:
    return f"SELECT * FROM {quote_identifier(table_name)} WHERE {quote_identifier(pk_column)} = ?"


def build_delete_sql(table_name: str, pk_column: str) -> str:
    return f"DELETE FROM {quote_identifier(table_name)} WHERE {quote_identifier(pk_column)} = ?"


def _json_safe(value: Any) -> Any:
    # BLOBs go out as arrays of byte values
    if isinstance(value, (bytes, bytearray, memoryview)):
        return list(bytes(value))
    return value


def _row_to_dict(row) -> Dict[str, Any]:
    return {key: _json_safe(value) for key, value in row._mapping.items()}


class TableManager:
    """Manages the administered database and its cached table schemas"""

    def __init__(self, database_url: str, schema_cache_ttl: float = 60, engine: Optional[Engine] = None):
        self.database_url = database_url
        self.engine = engine or create_engine(database_url)
        self.schema_cache = TTLCache("table_schema", max_size=500, default_ttl=schema_cache_ttl)
        logger.info(f"Database engine ready ({self.engine.dialect.name})")

    def _run(self, sql: str, params: Sequence[Any] = ()) -> Dict[str, Any]:
        """Execute a write statement and report affected rows"""
        with self.engine.begin() as conn:
            result = conn.exec_driver_sql(sql, tuple(params)) if params else conn.exec_driver_sql(sql)
            return {"changes": max(result.rowcount, 0), "last_row_id": result.lastrowid}

    def _fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            result = conn.exec_driver_sql(sql, tuple(params)) if params else conn.exec_driver_sql(sql)
            return [_row_to_dict(row) for row in result]

    def _schema_changed(self):
        self.schema_cache.clear()

    # -------------------------------------------------------------------------
    # Tables & schema
    # -------------------------------------------------------------------------

    def list_tables(self) -> List[Dict[str, Any]]:
        tables = self._fetch_all(
            "SELECT name, type FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [table for table in tables if table["name"] not in INTERNAL_TABLES]

    def get_table_schema(self, table_name: str) -> List[Dict[str, Any]]:
        """PRAGMA table_info rows, cached per table"""
        validate_identifier(table_name, "table name")

        cached = self.schema_cache.get(table_name)
        if cached is not None:
            return cached

        schema = self._fetch_all(f"PRAGMA table_info({quote_identifier(table_name)})")
        self.schema_cache.set(table_name, schema)
        return schema

    def _primary_key(self, table_name: str) -> str:
        for column in self.get_table_schema(table_name):
            if column["pk"] == 1:
                return column["name"]
        raise MissingPrimaryKey(f"No primary key found for table '{table_name}'")

    def create_table(self, sql: str) -> Dict[str, Any]:
        validate_create_table_statement(sql)
        result = self._run(sql)
        self._schema_changed()
        logger.info("Table created")
        return result

    def drop_table(self, table_name: str) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        result = self._run(f"DROP TABLE {quote_identifier(table_name)}")
        self._schema_changed()
        logger.info(f"Dropped table {table_name}")
        return result

    def rename_table(self, table_name: str, new_table_name: str) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        validate_identifier(new_table_name, "new table name")
        result = self._run(
            f"ALTER TABLE {quote_identifier(table_name)} RENAME TO {quote_identifier(new_table_name)}"
        )
        self._schema_changed()
        logger.info(f"Renamed table {table_name} -> {new_table_name}")
        return result

    def add_column(
        self,
        table_name: str,
        column_name: str,
        column_type: str,
        constraints: Optional[str] = None,
    ) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        validate_identifier(column_name, "column name")
        type_sql = validate_column_type(column_type)
        constraint_sql = validate_column_constraints(constraints)

        sql = f"ALTER TABLE {quote_identifier(table_name)} ADD COLUMN {quote_identifier(column_name)} {type_sql}"
        if constraint_sql:
            sql += f" {constraint_sql}"

        result = self._run(sql)
        self._schema_changed()
        logger.info(f"Added column {table_name}.{column_name} ({type_sql})")
        return result

    def drop_column(self, table_name: str, column_name: str) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        validate_identifier(column_name, "column name")
        result = self._run(
            f"ALTER TABLE {quote_identifier(table_name)} DROP COLUMN {quote_identifier(column_name)}"
        )
        self._schema_changed()
        logger.info(f"Dropped column {table_name}.{column_name}")
        return result

    def rename_column(self, table_name: str, column_name: str, new_column_name: str) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        validate_identifier(column_name, "column name")
        validate_identifier(new_column_name, "new column name")
        result = self._run(
            f"ALTER TABLE {quote_identifier(table_name)} "
            f"RENAME COLUMN {quote_identifier(column_name)} TO {quote_identifier(new_column_name)}"
        )
        self._schema_changed()
        logger.info(f"Renamed column {table_name}.{column_name} -> {new_column_name}")
        return result

    # -------------------------------------------------------------------------
    # Rows
    # -------------------------------------------------------------------------

    def get_table_data(self, table_name: str, page: Any = 1, limit: Any = 50) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        page, limit = validate_pagination(page, limit)
        offset = (page - 1) * limit
        quoted = quote_identifier(table_name)

        with self.engine.connect() as conn:
            total = conn.exec_driver_sql(f"SELECT COUNT(*) AS count FROM {quoted}").scalar() or 0
            result = conn.exec_driver_sql(f"SELECT * FROM {quoted} LIMIT ? OFFSET ?", (limit, offset))
            rows = [_row_to_dict(row) for row in result]

        return {"data": rows, "total": total, "page": page, "limit": limit}

    def get_row(self, table_name: str, row_id: Any) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        pk_column = self._primary_key(table_name)

        rows = self._fetch_all(build_select_by_pk_sql(table_name, pk_column), (row_id,))
        if not rows:
            raise RowNotFound(f"Row not found: {table_name}.{pk_column} = {row_id}")
        return rows[0]

    def insert_row(self, table_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        validate_row_data(data)

        columns = list(data.keys())
        return self._run(build_insert_sql(table_name, columns), [data[column] for column in columns])

    def update_row(self, table_name: str, row_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        validate_row_data(data)
        pk_column = self._primary_key(table_name)

        columns = list(data.keys())
        values = [data[column] for column in columns] + [row_id]
        return self._run(build_update_sql(table_name, columns, pk_column), values)

    def delete_row(self, table_name: str, row_id: Any) -> Dict[str, Any]:
        validate_identifier(table_name, "table name")
        pk_column = self._primary_key(table_name)
        return self._run(build_delete_sql(table_name, pk_column), (row_id,))

    # -------------------------------------------------------------------------
    # Raw statements
    # -------------------------------------------------------------------------

    def execute_query(self, sql: str, params: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
        """
        Execute a single user-supplied statement.

        Returns:
            Dict with verb, statement_type, columns, results and meta
        """
        verb = validate_sql_statement(sql)

        if params is None:
            params = []
        if not isinstance(params, (list, tuple)):
            raise reject("Invalid params: must be an array", RejectionReason.INVALID_TYPE)

        # sqlite3 refuses trailing empty statements ("SELECT 1 ; ;")
        sql = sql.rstrip("; \t\r\n")

        parsed = sqlparse.parse(sql)
        statement_type = parsed[0].get_type() if parsed else "UNKNOWN"

        started = time.perf_counter()
        with self.engine.begin() as conn:
            result = conn.exec_driver_sql(sql, tuple(params)) if params else conn.exec_driver_sql(sql)

            if result.returns_rows:
                columns = list(result.keys())
                rows = [_row_to_dict(row) for row in result]
                meta = {"rows_read": len(rows)}
            else:
                columns = []
                rows = []
                meta = {"changes": max(result.rowcount, 0), "last_row_id": result.lastrowid}

        meta["duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
        logger.info(f"Query executed ({verb.value}): {meta}")

        return {
            "verb": verb.value,
            "statement_type": statement_type,
            "columns": columns,
            "results": rows,
            "meta": meta,
        }
