"""Process settings via pydantic-settings and the YAML connection file.

Settings come from environment variables (or ``.env``); the list of
databases to expose comes from the file named by ``CONFIG_PATH``. The file may
also carry ``port`` and ``swaggerPath``, used when ``PORT`` and ``DOCS_PATH``
are not set in the environment.

Example ``config.yaml``::

    port: 3000
    swaggerPath: /api-docs
    connections:
      - endpoint: hr
        server: sql01.internal
        port: 1433
        database: HR
        username: api_reader
        password: secret
        filter: ^Emp
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError
from .models import ConnectionTarget


class Settings(BaseSettings):
    """Bridge settings. Environment variables are the single source of truth."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    config_path: str = "config.yaml"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_format: str = "console"
    docs_path: str = "/api-docs"
    retry_delay: float = 30.0
    title: str = "SQL Server API bridge"
    api_version: str = "0.1.0"
    cors_origins: List[str] = ["*"]

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("console", "json"):
            raise ValueError("LOG_FORMAT must be 'console' or 'json'")
        return v

    @field_validator("retry_delay")
    @classmethod
    def validate_retry_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("RETRY_DELAY must be positive")
        return v

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str):
            return json.loads(v)
        return v

    def with_file_defaults(self, raw: Dict[str, Any]) -> "Settings":
        """Fill ``port`` and ``docs_path`` from the connection file
        (``port``, ``swaggerPath``) unless the environment set them."""
        update = {}
        if "port" not in self.model_fields_set and raw.get("port") is not None:
            update["port"] = raw["port"]
        if "docs_path" not in self.model_fields_set and raw.get("swaggerPath"):
            update["docs_path"] = raw["swaggerPath"]
        if not update:
            return self
        try:
            return self.model_validate({**self.model_dump(exclude_unset=True), **update})
        except ValidationError as e:
            raise ConfigError(f"Invalid server options in connection file: {e}") from e


def parse_targets(raw: dict) -> List[ConnectionTarget]:
    """Turn the parsed ``connections`` section into targets."""
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")

    entries = raw.get("connections") or []
    if not isinstance(entries, list):
        raise ConfigError("'connections' must be a list")

    targets = []
    seen = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"connections[{index}] must be a mapping")
        try:
            target = ConnectionTarget(
                name=entry.get("endpoint") or "api",
                host=entry.get("server"),
                port=entry.get("port") or 1433,
                database=entry.get("database"),
                user=entry.get("username"),
                password=entry.get("password") or "",
                filter=entry.get("filter") or "%",
            )
        except ValidationError as e:
            raise ConfigError(f"connections[{index}] is invalid: {e}") from e
        if target.name in seen:
            raise ConfigError(f"Duplicate endpoint '{target.name}'")
        seen.add(target.name)
        targets.append(target)
    return targets


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read the YAML connection file.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Failed to read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return raw


def load_targets(path: Union[str, Path]) -> List[ConnectionTarget]:
    """Read connection targets from a YAML file."""
    return parse_targets(load_config(path))
