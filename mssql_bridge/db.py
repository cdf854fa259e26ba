from typing import Any, Dict, List
from urllib.parse import quote_plus

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from .errors import ConnectFailure, ExecutionFailure
from .models import ConnectionTarget
from .sql import Statement

logger = structlog.stdlib.get_logger("mssql_bridge.db")

URL_TEMPLATE = "mssql+pymssql://{user}:{password}@{host}:{port}/{database}"


def build_url(target: ConnectionTarget) -> str:
    """
    Build the SQLAlchemy URL for a target.

    The user name and password are URL-encoded so characters like ``@``
    survive.
    """
    return URL_TEMPLATE.format(
        user=quote_plus(target.user),
        password=quote_plus(target.password),
        host=target.host,
        port=target.port,
        database=target.database,
    )


def _driver_message(exc: SQLAlchemyError) -> str:
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


class TargetConnection:
    """
    The pooled connection owned by one target.

    Every call to ``execute`` checks a connection out of the engine's pool and
    runs the statement in its own transaction, so handlers can run
    concurrently without sharing session state.
    """

    def __init__(self, target: ConnectionTarget, engine: Engine):
        self.target = target
        self.engine = engine

    def execute(self, statement: Statement) -> List[Dict[str, Any]]:
        """
        Run one statement or batch and return the first row set as dicts.

        Raises:
            ExecutionFailure: carrying the driver's message
        """
        logger.debug("sql_execute", target=self.target.name, sql=statement.sql, params=statement.params)
        try:
            with self.engine.begin() as connection:
                result = connection.execute(statement.clause())
                if not result.returns_rows:
                    return []
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise ExecutionFailure(_driver_message(e)) from e

    def dispose(self):
        self.engine.dispose()


def get_db_connection(target: ConnectionTarget) -> TargetConnection:
    """
    Create an engine for the target and prove it is reachable.

    Args:
        target (ConnectionTarget): Database to connect to

    Returns:
        TargetConnection

    Raises:
        ConnectFailure: If the probe query fails
    """
    engine = create_engine(build_url(target), pool_pre_ping=True)
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        engine.dispose()
        raise ConnectFailure(f"Database connection failed: {_driver_message(e)}") from e
    return TargetConnection(target, engine)
