from __future__ import annotations

import logging
import os

import uvicorn

from ferry.config_manager import ConfigManager

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def main() -> None:
    config = ConfigManager(os.getenv("FERRY_CONFIG_PATH", "config.yaml")).load()
    configure_logging(os.getenv("FERRY_LOG_LEVEL", config.logging.level))
    host = os.getenv("FERRY_HOST", "0.0.0.0")
    port = int(os.getenv("FERRY_PORT", "8080"))
    uvicorn.run("ferry.web_admin:create_app", factory=True, host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
