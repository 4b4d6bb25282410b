"""Entry point for the WashAssist session service.

Serves the Session Manager HTTP API (aiohttp):
- POST /session        synchronous login, returns the cookie jar
- POST /session-async  queued login, result POSTed to the caller's webhook
- POST /refresh        not implemented
- GET  /health         liveness probe
"""

from __future__ import annotations

import logging
import sys

from aiohttp import web

from .config import get_settings
from .session_manager.manager import AccessLogger, create_app

logger = logging.getLogger("washassist-session")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=level.upper(),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    # httpx logs every request line at INFO, including solver polls.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main():
    """Run the HTTP service until interrupted."""
    settings = get_settings()
    configure_logging(settings.server.log_level)
    logger.info("Starting WashAssist session service...")
    web.run_app(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        access_log_class=AccessLogger,
        print=None,
    )


if __name__ == "__main__":
    main()
