import asyncio
from enum import Enum
from typing import Callable, List, Optional

import structlog

from .catalog import inspect_target
from .db import get_db_connection
from .models import ConnectionTarget, DiscoveredObject
from .openapi import ApiRegistry
from .router import RouteRegistrar

logger = structlog.stdlib.get_logger("mssql_bridge.supervisor")

DEFAULT_RETRY_DELAY = 30.0


def _dispose(connection):
    dispose = getattr(connection, "dispose", None)
    if dispose is not None:
        dispose()


class SupervisorState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectionSupervisor:
    """
    Drives one target from DISCONNECTED to CONNECTED.

    Each attempt connects and inspects the catalog in a worker thread so a
    slow or unreachable server never blocks the event loop. On success the
    target's objects are registered and merged into the shared registry; on
    any failure the supervisor sleeps ``retry_delay`` seconds and tries again,
    forever. Once connected there is no further health checking.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        registrar: RouteRegistrar,
        registry: ApiRegistry,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        connect: Callable = get_db_connection,
        inspect: Callable = inspect_target,
    ):
        self.target = target
        self.registrar = registrar
        self.registry = registry
        self.retry_delay = retry_delay
        self._connect = connect
        self._inspect = inspect
        self.state = SupervisorState.DISCONNECTED
        self.attempts = 0
        self.connection = None
        self.objects: List[DiscoveredObject] = []

    def _connect_and_inspect(self):
        connection = self._connect(self.target)
        try:
            objects = self._inspect(connection, self.target)
        except Exception:
            _dispose(connection)
            raise
        return connection, objects

    def publish(self, connection, objects: List[DiscoveredObject]):
        """Register routes for every object and merge them into the registry."""
        for obj in objects:
            self.registrar.register(obj, connection)
        self.registry.merge(self.target.name, objects)

    async def attempt(self) -> bool:
        """Run one connect + discovery attempt. Returns True on success."""
        self.attempts += 1
        self.state = SupervisorState.CONNECTING
        logger.info(
            "connecting",
            target=self.target.name,
            server=f"{self.target.host}:{self.target.port}/{self.target.database}",
            user=self.target.user,
            attempt=self.attempts,
        )
        try:
            connection, objects = await asyncio.to_thread(self._connect_and_inspect)
        except Exception as e:
            # DiscoveryFailure is retried exactly like ConnectFailure
            self.state = SupervisorState.DISCONNECTED
            logger.error("connection_failed", target=self.target.name, attempt=self.attempts, error=str(e))
            return False

        try:
            self.publish(connection, objects)
        except Exception as e:
            self.state = SupervisorState.DISCONNECTED
            _dispose(connection)
            logger.error("publish_failed", target=self.target.name, attempt=self.attempts, error=str(e))
            return False

        self.connection = connection
        self.objects = objects
        self.state = SupervisorState.CONNECTED
        logger.info("connected", target=self.target.name, attempt=self.attempts, objects=len(objects))
        return True

    async def run(self):
        while not await self.attempt():
            logger.warning(
                "retry_scheduled",
                target=self.target.name,
                delay_seconds=self.retry_delay,
                next_attempt=self.attempts + 1,
            )
            await asyncio.sleep(self.retry_delay)


class SupervisorGroup:
    """One independent supervisor task per target."""

    def __init__(self, supervisors: List[ConnectionSupervisor]):
        self.supervisors = supervisors
        self._tasks: List[asyncio.Task] = []

    def start(self):
        for supervisor in self.supervisors:
            task = asyncio.create_task(supervisor.run(), name=f"supervisor:{supervisor.target.name}")
            self._tasks.append(task)

    async def stop(self):
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        for supervisor in self.supervisors:
            if supervisor.connection is not None:
                supervisor.connection.dispose()

    def get(self, name: str) -> Optional[ConnectionSupervisor]:
        for supervisor in self.supervisors:
            if supervisor.target.name == name:
                return supervisor
        return None
