from .core import APIBridge, create_app
from .db import get_db_connection
from .openapi import ApiRegistry
from .router import RouteRegistrar

__version__ = "0.1.0"

__all__ = ["APIBridge", "create_app", "get_db_connection", "ApiRegistry", "RouteRegistrar"]
