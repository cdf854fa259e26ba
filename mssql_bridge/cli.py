import sys

import structlog
import uvicorn

from .config import Settings, load_config, parse_targets
from .core import create_app
from .errors import ConfigError
from .logging_config import configure_logging

logger = structlog.stdlib.get_logger("mssql_bridge.cli")


def main():
    settings = Settings()
    configure_logging(settings.log_level, settings.log_format)

    try:
        raw = load_config(settings.config_path)
        settings = settings.with_file_defaults(raw)
        targets = parse_targets(raw)
    except ConfigError as e:
        logger.error("config_load_failed", path=settings.config_path, error=str(e))
        sys.exit(1)
    logger.info("config_loaded", path=settings.config_path, targets=len(targets))

    app = create_app(settings, targets)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
