#!/usr/bin/env python3
"""
Run the Bill Tracker API server.

Usage:
    bill-tracker-server

Environment variables:
    HOST - Server host (default: 0.0.0.0)
    PORT - Server port (default: 8000)
    DEBUG - Enable auto-reload (default: false)
    DATABASE_URL - Hosted store connection URL
    OFFLINE_MODE - Use the local fallback store only (default: false)
    LOCAL_STORE_PATH - JSON file for the local fallback store
    STRICT_TRANSITIONS - Forward-only invoice stages (default: false)
    OPTIMISTIC_CONCURRENCY - Reject stale record writes (default: false)
"""

import uvicorn

from server.config import get_settings


def main() -> None:
    """Run the server."""
    settings = get_settings()

    print(f"""
╔══════════════════════════════════════════════════════════════╗
║                   Bill Tracker - API Server                  ║
╠══════════════════════════════════════════════════════════════╣
║  Host: {settings.host:<54}║
║  Port: {settings.port:<54}║
║  Debug: {str(settings.debug):<53}║
║  Offline Mode: {str(settings.offline_mode):<46}║
║  Strict Transitions: {str(settings.strict_transitions):<40}║
╚══════════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "server.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
