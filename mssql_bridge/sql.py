"""Parameterized T-SQL synthesis for discovered objects.

Identifiers interpolated into statement text come only from catalog metadata
and are always bracket-quoted. Values come from requests and are always bound
parameters with generated names, so neither column names nor payload keys
ever reach the SQL text unescaped.
"""

import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.types import Integer, TypeEngine

from .errors import ValidationFailure
from .models import Column, DiscoveredObject, ListRequest, MutationStrategy
from .type_mapper import binding_type, coerce_value

RESERVED_QUERY_PARAMS = ("order", "limit", "offset")


@dataclass
class Statement:
    """SQL text plus the values and bind types it references."""

    sql: str
    params: Dict[str, Any] = field(default_factory=dict)
    types: Dict[str, TypeEngine] = field(default_factory=dict)

    def bind(self, name: str, value: Any, type_: TypeEngine) -> str:
        self.params[name] = value
        self.types[name] = type_
        return f":{name}"

    def clause(self) -> TextClause:
        clause = text(self.sql)
        if self.params:
            clause = clause.bindparams(
                *[
                    bindparam(name, value, type_=self.types.get(name))
                    for name, value in self.params.items()
                ]
            )
        return clause


def quote_ident(name: str) -> str:
    """Bracket-quote an identifier; ``:`` is escaped for SQLAlchemy text()."""
    return "[" + name.replace("]", "]]").replace(":", "\\:") + "]"


def qualified_name(obj: DiscoveredObject) -> str:
    return f"{quote_ident(obj.schema_name)}.{quote_ident(obj.name)}"


_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def _parse_int(raw: Any, default: int) -> int:
    """Read the leading integer of ``raw`` (``"2.5"`` is 2); ``default`` when there is none."""
    if raw is None:
        return default
    match = _LEADING_INT.match(str(raw))
    return int(match.group(1)) if match else default


def parse_list_request(obj: DiscoveredObject, query: Mapping[str, Any]) -> ListRequest:
    """Normalize raw query parameters for a list call.

    Filters are kept only for known columns; anything else is dropped.
    """
    known = set(obj.column_names())
    filters = {}
    for name, value in query.items():
        if name not in known or name in RESERVED_QUERY_PARAMS:
            continue
        try:
            filters[name] = coerce_value(obj.column(name), value)
        except ValueError as e:
            raise ValidationFailure(f"Invalid value for {name}: {e}") from e

    order_column = None
    descending = False
    order = query.get("order")
    if order:
        column, _, direction = str(order).partition(".")
        if column in known:
            order_column = column
            descending = direction.strip().lower() == "desc"

    limit = _parse_int(query.get("limit"), -1)
    offset = _parse_int(query.get("offset"), 0)

    return ListRequest(
        filters=filters,
        order_column=order_column,
        descending=descending,
        limit=limit,
        offset=max(offset, 0),
    )


def default_order_column(obj: DiscoveredObject) -> str:
    if obj.primary_key:
        return obj.primary_key[0]
    return obj.columns[0].name


def build_list(obj: DiscoveredObject, request: ListRequest) -> Statement:
    stmt = Statement("")
    predicates = []
    for index, (name, value) in enumerate(request.filters.items()):
        column = obj.column(name)
        if column is None:
            continue
        placeholder = stmt.bind(f"f{index}", value, binding_type(column))
        predicates.append(f"{quote_ident(name)} = {placeholder}")

    if request.order_column and obj.column(request.order_column) is not None:
        order_column, direction = request.order_column, "DESC" if request.descending else "ASC"
    else:
        order_column, direction = default_order_column(obj), "ASC"

    parts = [f"SELECT * FROM {qualified_name(obj)}"]
    if predicates:
        parts.append("WHERE " + " AND ".join(predicates))
    parts.append(f"ORDER BY {quote_ident(order_column)} {direction}")

    limit, offset = request.limit, max(request.offset, 0)
    if limit >= 0 or offset > 0:
        parts.append(f"OFFSET {stmt.bind('offset', offset, Integer())} ROWS")
        if limit >= 0:
            parts.append(f"FETCH NEXT {stmt.bind('limit', limit, Integer())} ROWS ONLY")

    stmt.sql = " ".join(parts)
    return stmt


def _require_key(obj: DiscoveredObject) -> Column:
    key = obj.key_column
    column = obj.column(key) if key else None
    if column is None:
        raise ValidationFailure(f"{obj.name} has no single-column primary key")
    return column


def build_get(obj: DiscoveredObject, key_value: Any) -> Statement:
    key = _require_key(obj)
    stmt = Statement("")
    placeholder = stmt.bind("key", key_value, binding_type(key))
    stmt.sql = f"SELECT * FROM {qualified_name(obj)} WHERE {quote_ident(key.name)} = {placeholder}"
    return stmt


def _payload_fields(
    obj: DiscoveredObject, payload: Mapping[str, Any], skip: Tuple[Optional[str], ...]
) -> List[Tuple[Column, Any]]:
    return [
        (column, payload[column.name])
        for column in obj.columns
        if column.name in payload and column.name not in skip
    ]


def _staging_name() -> str:
    return f"#stage_{uuid.uuid4().hex}"


def _staged(obj: DiscoveredObject, head: str, tail: str, source: str, holder: str) -> str:
    """Wrap a write so its affected row lands in a per-execution temp table.

    The ``OUTPUT ... INTO`` clause is placed between ``head`` and ``tail``.
    """
    select_list = []
    for column in obj.columns:
        quoted = quote_ident(column.name)
        if column.name == obj.identity_column:
            # an expression keeps SELECT INTO from copying the IDENTITY property
            select_list.append(f"{quoted} + 0 AS {quoted}")
        else:
            select_list.append(quoted)
    columns = ", ".join(quote_ident(c.name) for c in obj.columns)
    outputs = ", ".join(f"{source}.{quote_ident(c.name)}" for c in obj.columns)
    output = f"OUTPUT {outputs} INTO {holder} ({columns})"
    return (
        "SET NOCOUNT ON; "
        f"SELECT TOP 0 {', '.join(select_list)} INTO {holder} FROM {qualified_name(obj)}; "
        f"{head} {output} {tail}; "
        f"SELECT * FROM {holder}; "
        f"DROP TABLE {holder};"
    )


def insert_strategy(obj: DiscoveredObject, payload: Mapping[str, Any]) -> MutationStrategy:
    """The strategy used for one insert; KEY_RESELECT needs the key in the payload."""
    if obj.strategy is MutationStrategy.KEY_RESELECT:
        key = obj.key_column
        if key is None or payload.get(key) is None:
            return MutationStrategy.STAGING
    return obj.strategy


def build_insert(obj: DiscoveredObject, payload: Mapping[str, Any]) -> Statement:
    stmt = Statement("")
    target = qualified_name(obj)
    fields = _payload_fields(obj, payload, (obj.identity_column,))

    placeholders = {}
    for index, (column, value) in enumerate(fields):
        placeholders[column.name] = stmt.bind(f"v{index}", value, binding_type(column))

    if fields:
        columns = ", ".join(quote_ident(column.name) for column, _ in fields)
        values = ", ".join(placeholders[column.name] for column, _ in fields)
        head, tail = f"INSERT INTO {target} ({columns})", f"VALUES ({values})"
    else:
        head, tail = f"INSERT INTO {target}", "DEFAULT VALUES"

    strategy = insert_strategy(obj, payload)
    if strategy is MutationStrategy.DIRECT:
        stmt.sql = f"{head} OUTPUT inserted.* {tail}"
    elif strategy is MutationStrategy.IDENTITY_RESELECT:
        stmt.sql = (
            f"SET NOCOUNT ON; {head} {tail}; "
            f"SELECT * FROM {target} WHERE {quote_ident(obj.identity_column)} = SCOPE_IDENTITY();"
        )
    elif strategy is MutationStrategy.KEY_RESELECT:
        key = obj.key_column
        stmt.sql = (
            f"SET NOCOUNT ON; {head} {tail}; "
            f"SELECT * FROM {target} WHERE {quote_ident(key)} = {placeholders[key]};"
        )
    else:
        stmt.sql = _staged(obj, head, tail, "inserted", _staging_name())
    return stmt


def build_update(obj: DiscoveredObject, key_value: Any, payload: Mapping[str, Any]) -> Statement:
    key = _require_key(obj)
    fields = _payload_fields(obj, payload, (key.name, obj.identity_column))
    if not fields:
        raise ValidationFailure("No updatable fields provided")

    stmt = Statement("")
    target = qualified_name(obj)
    assignments = ", ".join(
        f"{quote_ident(column.name)} = {stmt.bind(f'v{index}', value, binding_type(column))}"
        for index, (column, value) in enumerate(fields)
    )
    where = f"WHERE {quote_ident(key.name)} = {stmt.bind('key', key_value, binding_type(key))}"

    if obj.strategy is MutationStrategy.DIRECT:
        stmt.sql = f"UPDATE {target} SET {assignments} OUTPUT inserted.* {where}"
    else:
        stmt.sql = (
            f"SET NOCOUNT ON; UPDATE {target} SET {assignments} {where}; "
            f"SELECT * FROM {target} {where};"
        )
    return stmt


def build_delete(obj: DiscoveredObject, key_value: Any) -> Statement:
    key = _require_key(obj)
    stmt = Statement("")
    target = qualified_name(obj)
    where = f"WHERE {quote_ident(key.name)} = {stmt.bind('key', key_value, binding_type(key))}"

    if obj.strategy is MutationStrategy.DIRECT:
        stmt.sql = f"DELETE FROM {target} OUTPUT deleted.* {where}"
    else:
        # a deleted row cannot be re-read, so any trigger-bearing table stages
        stmt.sql = _staged(obj, f"DELETE FROM {target}", where, "deleted", _staging_name())
    return stmt
