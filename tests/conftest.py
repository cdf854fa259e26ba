"""Shared test fixtures.

The database is replaced by FakeConnection, which records every statement
and answers from a queue of canned row sets. Tests never need SQL Server.
"""

from typing import Any, Callable, Dict, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mssql_bridge.models import Column, DiscoveredObject, MutationStrategy, ObjectKind
from mssql_bridge.router import RouteRegistrar


class FakeConnection:
    """Stand-in for TargetConnection."""

    def __init__(self, responder: Optional[Callable] = None):
        self.statements = []
        self.results: List[Any] = []
        self.responder = responder
        self.disposed = False

    def queue(self, *row_sets):
        self.results.extend(row_sets)

    def execute(self, statement) -> List[Dict[str, Any]]:
        self.statements.append(statement)
        if self.responder is not None:
            return self.responder(statement)
        if not self.results:
            return []
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def dispose(self):
        self.disposed = True

    @property
    def last(self):
        return self.statements[-1]


def make_object(
    name="Employees",
    kind=ObjectKind.TABLE,
    columns=None,
    primary_key=("Id",),
    identity_column="Id",
    has_enabled_trigger=False,
    strategy=MutationStrategy.DIRECT,
    target="hr",
) -> DiscoveredObject:
    if columns is None:
        columns = (
            Column(name="Id", data_type="int", nullable=False),
            Column(name="Name", data_type="nvarchar", nullable=False, max_length=100),
            Column(name="Active", data_type="bit", nullable=True),
        )
    return DiscoveredObject(
        target=target,
        schema_name="dbo",
        name=name,
        kind=kind,
        columns=tuple(columns),
        primary_key=tuple(primary_key),
        identity_column=identity_column,
        has_enabled_trigger=has_enabled_trigger,
        strategy=strategy,
    )


@pytest.fixture
def employees() -> DiscoveredObject:
    return make_object()


@pytest.fixture
def audit_log() -> DiscoveredObject:
    """Trigger-bearing table, no identity, key defaulted by the server."""
    return make_object(
        name="AuditLog",
        columns=(
            Column(name="EntryId", data_type="uniqueidentifier", nullable=False),
            Column(name="Message", data_type="nvarchar", nullable=False, max_length=-1),
            Column(name="CreatedAt", data_type="datetime2", nullable=False),
        ),
        primary_key=("EntryId",),
        identity_column=None,
        has_enabled_trigger=True,
        strategy=MutationStrategy.KEY_RESELECT,
    )


@pytest.fixture
def active_view() -> DiscoveredObject:
    return make_object(
        name="ActiveEmployees",
        kind=ObjectKind.VIEW,
        primary_key=(),
        identity_column=None,
    )


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def app() -> FastAPI:
    return FastAPI()


@pytest.fixture
def registrar(app) -> RouteRegistrar:
    return RouteRegistrar(app)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
