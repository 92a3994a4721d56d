#!/usr/bin/env python3
"""
Bank Ledger Entry Point

Starts the FastAPI server with the configured storage backend.
Pass --seed to create the demo administrator and customer first.
"""

import sys

from bank_ledger.api import run_server
from bank_ledger.api.dependencies import get_ledger_system
from bank_ledger.config import get_config
from bank_ledger.logging_config import setup_logging
from bank_ledger.seed import seed_demo_data


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, config.log_format)

    if "--seed" in sys.argv[1:]:
        seeded = seed_demo_data(get_ledger_system())
        if seeded:
            logger.info("Seeded demo data: %s", seeded)
        else:
            logger.info("Directory already has users, skipping seed")

    logger.info("Starting Bank Ledger on http://%s:%s", config.api_host, config.api_port)
    logger.info("Storage backend: %s", config.storage_backend)
    logger.info("Documentation at: http://%s:%s/docs", config.api_host, config.api_port)

    try:
        run_server(host=config.api_host, port=config.api_port, log_level=config.log_level.lower())
    except KeyboardInterrupt:
        logger.info("Shutting down Bank Ledger...")
