#!/usr/bin/env python3
"""
Payment Core Entry Point

Starts the FastAPI server with settings from PAYCORE_* environment variables.
"""

import sys

from payment_core.api import run_server
from payment_core.config import get_config
from payment_core.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format)
    logger.info("Starting Payment Core API on %s:%s (storage: %s)",
                config.api_host, config.api_port, config.storage_backend)

    try:
        run_server(
            host=config.api_host,
            port=config.api_port,
            workers=config.api_workers,
            debug=False
        )
    except KeyboardInterrupt:
        logger.info("Shutting down Payment Core API")
    except Exception as e:
        logger.error("Error starting server: %s", e)
        sys.exit(1)
