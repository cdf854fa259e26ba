from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .middleware import RequestLoggingMiddleware
from .models import ConnectionTarget
from .openapi import ApiRegistry
from .router import RouteRegistrar
from .supervisor import ConnectionSupervisor, SupervisorGroup

logger = structlog.stdlib.get_logger("mssql_bridge.core")


class APIBridge:
    """
    Exposes every matching table and view of the configured databases.

    Routes and the OpenAPI document appear as each target connects; targets
    that are down are retried in the background without holding up the
    others or the server.
    """

    def __init__(
        self,
        app: FastAPI,
        targets: List[ConnectionTarget],
        retry_delay: float = 30.0,
        title: str = "SQL Server API bridge",
        version: str = "0.1.0",
        server_url: Optional[str] = None,
        **supervisor_options: Any,
    ):
        self.app = app
        self.targets = targets
        self.registry = ApiRegistry(title=title, version=version, server_url=server_url)
        self.registrar = RouteRegistrar(app)
        self.supervisors = SupervisorGroup(
            [
                ConnectionSupervisor(target, self.registrar, self.registry, retry_delay, **supervisor_options)
                for target in targets
            ]
        )
        self._setup_routes()

    def _setup_routes(self):
        self.app.add_api_route("/health", self.health, methods=["GET"], include_in_schema=False)
        self.app.add_api_route("/swagger.json", self.swagger, methods=["GET"], include_in_schema=False)
        self.app.openapi = self.registry.document

    def health(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "targets": {s.target.name: s.state.value for s in self.supervisors.supervisors},
        }

    def swagger(self) -> Dict[str, Any]:
        return self.registry.document()

    async def start(self):
        for target in self.targets:
            logger.info(
                "target_configured",
                target=target.name,
                server=f"{target.host}:{target.port}/{target.database}",
                user=target.user,
                filter=target.filter,
            )
        self.supervisors.start()

    async def stop(self):
        await self.supervisors.stop()


def create_app(settings: Settings, targets: List[ConnectionTarget], **supervisor_options: Any) -> FastAPI:
    """Build the FastAPI app; supervisors start with the app's lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await bridge.start()
        logger.info("server_ready", docs=settings.docs_path, port=settings.port)
        yield
        await bridge.stop()

    app = FastAPI(
        title=settings.title,
        version=settings.api_version,
        docs_url=settings.docs_path,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    bridge = APIBridge(
        app,
        targets,
        retry_delay=settings.retry_delay,
        title=settings.title,
        version=settings.api_version,
        server_url=f"http://localhost:{settings.port}",
        **supervisor_options,
    )
    app.state.bridge = bridge
    return app
