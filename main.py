from __future__ import annotations

import logging

import uvicorn

from phasetrace.app.api.app import create_app
from phasetrace.core.config import load_app_config

app = create_app()


def run() -> None:
    config = load_app_config()
    logging.basicConfig(level=config.log_level.upper())
    logging.getLogger(__name__).info(
        "Server running on http://localhost:%s", config.port
    )
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level)


if __name__ == "__main__":
    run()
