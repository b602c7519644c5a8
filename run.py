#!/usr/bin/env python3
"""
Ledger Bank Entry Point

Starts the FastAPI server on the host and port from BANK_API_HOST / BANK_API_PORT.
"""

import sys

import uvicorn

from ledger_bank.config import get_config


if __name__ == "__main__":
    config = get_config()
    print(f"Starting Ledger Bank API at http://{config.api_host}:{config.api_port}")
    print(f"Storage: {config.database_url.split('://', 1)[0]}")
    print(f"Documentation at: http://{config.api_host}:{config.api_port}/docs")

    try:
        uvicorn.run(
            "ledger_bank.api:app",
            host=config.api_host,
            port=config.api_port,
            log_level=config.log_level.lower()
        )
    except KeyboardInterrupt:
        print("\nShutting down Ledger Bank API...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
