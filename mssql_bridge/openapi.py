"""OpenAPI document derived from the set of registered objects."""

import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from .models import DiscoveredObject
from .router import object_base_path
from .type_mapper import document_type

logger = structlog.stdlib.get_logger("mssql_bridge.openapi")

TAGS = [
    {"name": "Tables", "description": "Tables (CRUD where applicable)"},
    {"name": "Views", "description": "Read-only SQL views"},
]


def schema_name(obj: DiscoveredObject) -> str:
    return f"{obj.target}_{obj.name}"


def object_schema(obj: DiscoveredObject) -> Dict[str, Any]:
    schema: Dict[str, Any] = {
        "type": "object",
        "properties": {column.name: document_type(column) for column in obj.columns},
        "x-bridge-kind": obj.kind.value,
        "x-bridge-key": obj.key_column,
    }
    required = [column.name for column in obj.columns if not column.nullable]
    if required:
        schema["required"] = required
    return schema


def _list_parameters(obj: DiscoveredObject) -> List[Dict[str, Any]]:
    parameters = [
        {
            "in": "query",
            "name": "order",
            "description": 'Sort as "column.asc" or "column.desc".',
            "schema": {"type": "string", "example": f"{obj.columns[0].name}.asc"},
        },
        {
            "in": "query",
            "name": "limit",
            "description": "Rows to return (-1 returns all). Default -1.",
            "schema": {"type": "integer", "default": -1},
        },
        {
            "in": "query",
            "name": "offset",
            "description": "Rows to skip before starting the result set. Default 0.",
            "schema": {"type": "integer", "default": 0},
        },
    ]
    for column in obj.columns:
        if column.name in ("order", "limit", "offset"):
            continue
        parameters.append(
            {
                "in": "query",
                "name": column.name,
                "description": f"Return rows where {column.name} equals this value.",
                "schema": document_type(column),
            }
        )
    return parameters


def object_paths(obj: DiscoveredObject) -> Dict[str, Dict[str, Any]]:
    tag = "Views" if obj.is_view else "Tables"
    ref = {"$ref": f"#/components/schemas/{schema_name(obj)}"}
    row = {"application/json": {"schema": ref}}
    rows = {"application/json": {"schema": {"type": "array", "items": ref}}}
    base = object_base_path(obj)

    paths = {
        base: {
            "get": {
                "tags": [tag],
                "summary": f"List {obj.name}",
                "parameters": _list_parameters(obj),
                "responses": {"200": {"description": "OK", "content": rows}},
            }
        }
    }
    if not obj.is_mutable:
        return paths

    key_column = obj.column(obj.key_column)
    paths[base]["post"] = {
        "tags": [tag],
        "summary": f"Create {obj.name}",
        "requestBody": {"required": True, "content": row},
        "responses": {"201": {"description": "Created", "content": row}},
    }
    paths[f"{base}/{{key}}"] = {
        "parameters": [
            {
                "name": "key",
                "in": "path",
                "required": True,
                "description": f"Value of {key_column.name}",
                "schema": document_type(key_column),
            }
        ],
        "get": {
            "tags": [tag],
            "summary": f"Get {obj.name} by {key_column.name}",
            "responses": {
                "200": {"description": "OK", "content": row},
                "404": {"description": "Not Found"},
            },
        },
        "put": {
            "tags": [tag],
            "summary": f"Update {obj.name}",
            "requestBody": {"required": True, "content": row},
            "responses": {
                "200": {"description": "Updated", "content": row},
                "400": {"description": "No updatable fields provided"},
                "404": {"description": "Not Found"},
            },
        },
        "delete": {
            "tags": [tag],
            "summary": f"Delete {obj.name}",
            "responses": {
                "200": {"description": "Deleted", "content": row},
                "404": {"description": "Not Found"},
            },
        },
    }
    return paths


def build_document(
    objects: Iterable[DiscoveredObject],
    title: str = "SQL Server API bridge",
    version: str = "0.1.0",
    server_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an OpenAPI 3.0 document from scratch for the given objects."""
    document: Dict[str, Any] = {
        "openapi": "3.0.3",
        "info": {"title": title, "version": version},
        "tags": TAGS,
        "paths": {},
        "components": {"schemas": {}},
    }
    if server_url:
        document["servers"] = [{"url": server_url}]

    for obj in sorted(objects, key=lambda o: o.identity):
        document["components"]["schemas"][schema_name(obj)] = object_schema(obj)
        document["paths"].update(object_paths(obj))
    return document


class ApiRegistry:
    """
    Process-wide set of registered objects and the document derived from it.

    Merges are additive and keyed by (target, object name); a merge never
    drops another target's objects. The document is rebuilt synchronously on
    every merge and served from the cached copy.
    """

    def __init__(self, title: str = "SQL Server API bridge", version: str = "0.1.0", server_url: Optional[str] = None):
        self.title = title
        self.version = version
        self.server_url = server_url
        self._objects: Dict[Tuple[str, str], DiscoveredObject] = {}
        self._lock = threading.Lock()
        self._document = self._build()

    def _build(self) -> Dict[str, Any]:
        return build_document(self._objects.values(), self.title, self.version, self.server_url)

    def merge(self, target_name: str, objects: Iterable[DiscoveredObject]) -> Dict[str, Any]:
        with self._lock:
            added = 0
            for obj in objects:
                if obj.target != target_name:
                    raise ValueError(f"{obj.name} belongs to '{obj.target}', not '{target_name}'")
                self._objects[obj.identity] = obj
                added += 1
            self._document = self._build()
            logger.info(
                "document_rebuilt",
                target=target_name,
                merged=added,
                objects=len(self._objects),
                paths=len(self._document["paths"]),
            )
            return self._document

    def objects(self) -> List[DiscoveredObject]:
        with self._lock:
            return sorted(self._objects.values(), key=lambda o: o.identity)

    def document(self) -> Dict[str, Any]:
        return self._document
