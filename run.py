"""
Uvicorn server runner with configurable logging.

Usage:
    python run.py

Environment variables (set in .env file):
    DEBUG=true - Enable debug logging
    PORT=8000 - Set server port (default: 8000)
    HOST=127.0.0.1 - Set server host (default: 127.0.0.1)
    FLOWS_FILE=flows.yaml - Flow configuration to load at startup
"""

import uvicorn
from threadrouter.config import get_settings

if __name__ == "__main__":
    import os

    settings = get_settings()

    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "8000"))

    log_level = "debug" if settings.debug else "info"

    print(f"Starting {settings.app_name} server...")
    print(f"Host: {host}")
    print(f"Port: {port}")
    print(f"Log Level: {log_level}")
    print(f"Flows file: {settings.flows_file or '(none)'}")
    print(f"Webhooks available at: http://{host}:{port}/api/webhooks/{{platform}}")

    # Single worker: jobs run in-process on the event loop
    uvicorn.run(
        "threadrouter.main:app",
        host=host,
        port=port,
        log_level=log_level,
        access_log=True,
    )
