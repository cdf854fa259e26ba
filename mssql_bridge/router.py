from typing import Any, Callable, Dict, List, Tuple

import structlog
from fastapi import Body, FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from .errors import BridgeError, ExecutionFailure, NotFound, ValidationFailure
from .models import DiscoveredObject
from .sql import Statement, build_delete, build_get, build_insert, build_list, build_update, parse_list_request
from .type_mapper import coerce_value

logger = structlog.stdlib.get_logger("mssql_bridge.router")


def object_base_path(obj: DiscoveredObject) -> str:
    return f"/{obj.target}/{obj.name}"


def object_key_path(obj: DiscoveredObject) -> str:
    return f"{object_base_path(obj)}/{{key}}"


class RouteRegistrar:
    """
    Installs the CRUD handlers of discovered objects on a FastAPI app.

    Registering the same object again replaces its handlers instead of
    stacking a second copy in front of or behind the first.
    """

    def __init__(self, app: FastAPI):
        """
        Args:
            app (FastAPI): Application the routes are added to
        """
        self.app = app
        app.add_exception_handler(ValidationFailure, _error_response(400))
        app.add_exception_handler(NotFound, _error_response(404))
        app.add_exception_handler(ExecutionFailure, _error_response(500))

    def register(self, obj: DiscoveredObject, connection) -> List[Tuple[str, str]]:
        """
        Register the routes for one object.

        Args:
            obj (DiscoveredObject): Object to expose
            connection: Target connection the handlers execute on

        Returns:
            list: (method, path) pairs that were installed
        """
        handlers = ObjectHandlers(obj, connection)
        base, key_path = object_base_path(obj), object_key_path(obj)

        routes: List[Tuple[str, str, Callable, int]] = [("GET", base, handlers.list_records, 200)]
        if obj.is_mutable:
            routes += [
                ("GET", key_path, handlers.get_record, 200),
                ("POST", base, handlers.create_record, 201),
                ("PUT", key_path, handlers.update_record, 200),
                ("DELETE", key_path, handlers.delete_record, 200),
            ]

        for method, path, endpoint, status_code in routes:
            self._remove(method, path)
            self.app.router.add_api_route(
                path,
                endpoint,
                methods=[method],
                status_code=status_code,
                name=f"{method.lower()}_{obj.target}_{obj.name}",
                include_in_schema=False,
            )

        logger.info(
            "routes_registered",
            target=obj.target,
            object=obj.name,
            base=base,
            view=obj.is_view,
            key=obj.key_column,
            strategy=obj.strategy.value,
        )
        return [(method, path) for method, path, _, _ in routes]

    def _remove(self, method: str, path: str):
        self.app.router.routes[:] = [
            route
            for route in self.app.router.routes
            if not (isinstance(route, APIRoute) and route.path == path and method in route.methods)
        ]


class ObjectHandlers:
    """Request handlers bound to one discovered object and its connection."""

    def __init__(self, obj: DiscoveredObject, connection):
        self.obj = obj
        self.connection = connection

    def _execute(self, statement: Statement) -> List[Dict[str, Any]]:
        try:
            return self.connection.execute(statement)
        except ExecutionFailure as e:
            logger.error("statement_failed", target=self.obj.target, object=self.obj.name, error=str(e))
            raise

    def _key_value(self, key: str) -> Any:
        try:
            return coerce_value(self.obj.column(self.obj.key_column), key)
        except ValueError as e:
            raise ValidationFailure(f"Invalid key: {e}") from e

    def _first(self, rows: List[Dict[str, Any]], key: str) -> Dict[str, Any]:
        if not rows:
            raise NotFound(f"Record {key} not found in {self.obj.name}")
        return rows[0]

    def list_records(self, request: Request):
        """List rows with column filters, ``order=col.asc|desc``, ``limit`` and ``offset``."""
        list_request = parse_list_request(self.obj, request.query_params)
        if list_request.limit == 0:
            return []
        return self._execute(build_list(self.obj, list_request))

    def get_record(self, key: str):
        """Fetch one row by primary key."""
        return self._first(self._execute(build_get(self.obj, self._key_value(key))), key)

    def create_record(self, record: Dict[str, Any] = Body(...)):
        """Insert a row and return it as stored, including generated values."""
        rows = self._execute(build_insert(self.obj, record))
        if not rows:
            raise ExecutionFailure(f"Insert into {self.obj.name} returned no row")
        return rows[0]

    def update_record(self, key: str, record: Dict[str, Any] = Body(...)):
        """Update the supplied fields of a row and return the updated row."""
        statement = build_update(self.obj, self._key_value(key), record)
        return self._first(self._execute(statement), key)

    def delete_record(self, key: str):
        """Delete a row and return it as it was before deletion."""
        return self._first(self._execute(build_delete(self.obj, self._key_value(key))), key)


def _error_response(status_code: int) -> Callable:
    async def handler(request: Request, exc: BridgeError) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler
