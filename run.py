#!/usr/bin/env python3
"""
Token Vesting Ledger Entry Point

Starts the FastAPI server with the vesting ledger configured from VESTING_*
environment variables.
"""

import sys

from token_vesting.api import run_server
from token_vesting.config import get_config
from token_vesting.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("⏳ Starting Token Vesting Ledger...")
    print(f"🗄️  Storage: {config.database_url}")
    print(f"🔒 Audit trail {'active' if config.enable_audit_logging else 'disabled'}")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Token Vesting Ledger...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
