"""Read-only catalog queries against INFORMATION_SCHEMA and sys views.

Schema and table names are always bound parameters.
"""

from typing import Dict, List, Optional

import structlog
from sqlalchemy.dialects.mssql import NVARCHAR

from .errors import DiscoveryFailure, ExecutionFailure
from .models import Column, ConnectionTarget, DiscoveredObject, MutationStrategy, ObjectKind
from .sql import Statement

logger = structlog.stdlib.get_logger("mssql_bridge.catalog")

OBJECTS_SQL = """
    SELECT TABLE_SCHEMA, TABLE_NAME, TABLE_TYPE
    FROM INFORMATION_SCHEMA.TABLES
    WHERE TABLE_NAME LIKE :filter
      AND TABLE_TYPE IN ('BASE TABLE', 'VIEW')
    ORDER BY TABLE_SCHEMA, TABLE_NAME
"""

COLUMNS_SQL = """
    SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, CHARACTER_MAXIMUM_LENGTH
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = :schema AND TABLE_NAME = :table
    ORDER BY ORDINAL_POSITION
"""

PRIMARY_KEY_SQL = """
    SELECT k.COLUMN_NAME
    FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS t
    JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE k
      ON t.CONSTRAINT_NAME = k.CONSTRAINT_NAME
     AND t.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA
    WHERE t.TABLE_SCHEMA = :schema AND t.TABLE_NAME = :table
      AND t.CONSTRAINT_TYPE = 'PRIMARY KEY'
    ORDER BY k.ORDINAL_POSITION
"""

IDENTITY_SQL = """
    SELECT c.name AS COLUMN_NAME
    FROM sys.identity_columns c
    JOIN sys.tables t ON c.object_id = t.object_id
    JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema AND t.name = :table
"""

TRIGGERS_SQL = """
    SELECT COUNT(*) AS TRIGGER_COUNT
    FROM sys.triggers tr
    JOIN sys.tables t ON tr.parent_id = t.object_id
    JOIN sys.schemas s ON t.schema_id = s.schema_id
    WHERE s.name = :schema AND t.name = :table
      AND tr.is_disabled = 0
      AND EXISTS (
          SELECT 1 FROM sys.trigger_events te
          WHERE te.object_id = tr.object_id
            AND te.type_desc IN ('INSERT', 'UPDATE', 'DELETE')
      )
"""


def to_like_pattern(filter_pattern: Optional[str]) -> str:
    """
    Turn a regex-like filter into a LIKE prefix pattern.

    ``^MI`` becomes ``MI%``. Only a leading ``^`` and a trailing ``$`` are
    stripped; nothing else in the pattern is interpreted.
    """
    pattern = filter_pattern or ""
    if pattern.startswith("^"):
        pattern = pattern[1:]
    if pattern.endswith("$"):
        pattern = pattern[:-1]
    return pattern + "%"


def _object_statement(sql: str, schema: str, table: str) -> Statement:
    stmt = Statement(sql)
    stmt.bind("schema", schema, NVARCHAR(128))
    stmt.bind("table", table, NVARCHAR(128))
    return stmt


def discover_objects(connection, like_pattern: str) -> List[Dict[str, str]]:
    stmt = Statement(OBJECTS_SQL)
    stmt.bind("filter", like_pattern, NVARCHAR(256))
    return [
        {
            "schema": row["TABLE_SCHEMA"],
            "name": row["TABLE_NAME"],
            "kind": ObjectKind.VIEW if row["TABLE_TYPE"] == "VIEW" else ObjectKind.TABLE,
        }
        for row in connection.execute(stmt)
    ]


def get_columns(connection, schema: str, table: str) -> List[Column]:
    rows = connection.execute(_object_statement(COLUMNS_SQL, schema, table))
    return [
        Column(
            name=row["COLUMN_NAME"],
            data_type=row["DATA_TYPE"],
            nullable=row["IS_NULLABLE"] != "NO",
            max_length=row["CHARACTER_MAXIMUM_LENGTH"],
        )
        for row in rows
    ]


def get_primary_key(connection, schema: str, table: str) -> List[str]:
    rows = connection.execute(_object_statement(PRIMARY_KEY_SQL, schema, table))
    return [row["COLUMN_NAME"] for row in rows]


def get_identity_column(connection, schema: str, table: str) -> Optional[str]:
    rows = connection.execute(_object_statement(IDENTITY_SQL, schema, table))
    return rows[0]["COLUMN_NAME"] if rows else None


def has_enabled_triggers(connection, schema: str, table: str) -> bool:
    rows = connection.execute(_object_statement(TRIGGERS_SQL, schema, table))
    return bool(rows and rows[0]["TRIGGER_COUNT"])


def resolve_strategy(
    has_trigger: bool, identity_column: Optional[str], primary_key: List[str]
) -> MutationStrategy:
    if not has_trigger:
        return MutationStrategy.DIRECT
    if identity_column:
        return MutationStrategy.IDENTITY_RESELECT
    if len(primary_key) == 1:
        return MutationStrategy.KEY_RESELECT
    return MutationStrategy.STAGING


def inspect_object(connection, target_name: str, schema: str, name: str, kind: ObjectKind) -> DiscoveredObject:
    columns = get_columns(connection, schema, name)

    # Views are read-only; no key, identity or trigger lookups
    if kind is ObjectKind.VIEW:
        return DiscoveredObject(
            target=target_name, schema_name=schema, name=name, kind=kind, columns=tuple(columns)
        )

    primary_key = get_primary_key(connection, schema, name)
    identity_column = get_identity_column(connection, schema, name)
    has_trigger = has_enabled_triggers(connection, schema, name)
    return DiscoveredObject(
        target=target_name,
        schema_name=schema,
        name=name,
        kind=kind,
        columns=tuple(columns),
        primary_key=tuple(primary_key),
        identity_column=identity_column,
        has_enabled_trigger=has_trigger,
        strategy=resolve_strategy(has_trigger, identity_column, primary_key),
    )


def inspect_target(connection, target: ConnectionTarget) -> List[DiscoveredObject]:
    """
    Discover every table and view of a target matching its filter.

    Raises:
        DiscoveryFailure: when any catalog query fails
    """
    like_pattern = to_like_pattern(target.filter)
    logger.info("discovery_started", target=target.name, filter=target.filter, like=like_pattern)
    try:
        found = []
        for entry in discover_objects(connection, like_pattern):
            obj = inspect_object(connection, target.name, entry["schema"], entry["name"], entry["kind"])
            if not obj.columns:
                logger.warning("object_skipped_no_columns", target=target.name, object=obj.name)
                continue
            logger.debug(
                "object_discovered",
                target=target.name,
                schema=obj.schema_name,
                object=obj.name,
                kind=obj.kind.value,
                key=list(obj.primary_key),
                strategy=obj.strategy.value,
            )
            found.append(obj)
    except ExecutionFailure as e:
        raise DiscoveryFailure(f"Catalog query failed for '{target.name}': {e}") from e
    logger.info("discovery_finished", target=target.name, objects=len(found))
    return found
