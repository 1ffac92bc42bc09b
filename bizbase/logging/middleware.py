# bizbase/logging/middleware.py
"""Request logging with slow-request warnings."""

import getpass
import logging
import os
import platform
import socket
import time
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


def _current_username() -> str:
    try:
        return os.environ.get("USER") or os.environ.get("USERNAME") or getpass.getuser() or "unknown_user"
    except (KeyError, OSError):
        return "unknown_user"


def _current_hostname() -> str:
    try:
        return socket.gethostname() or platform.node() or "unknown_host"
    except OSError:
        return "unknown_host"


class LoggingMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        slow_request_ms: int = 3000,
        application_id: str = "Unknown",
        excluded_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms
        self.application_id = application_id
        self.excluded_paths = excluded_paths if excluded_paths is not None else ["/api/docs", "/api/openapi.json"]
        self.username = _current_username()
        self.hostname = _current_hostname()

        logger.info(
            "Logging middleware initialized with username: %s on host: %s, App ID: %s",
            self.username,
            self.hostname,
            self.application_id,
        )

    async def dispatch(self, request: Request, call_next: Callable):
        if any(request.url.path.startswith(path) for path in self.excluded_paths):
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000

        user = getattr(request.state, "user", None)
        user_id = user.get("id") if isinstance(user, dict) else getattr(user, "user_id", None)

        message = "%s %s -> %s in %.0f ms (user %s, app %s)"
        args = (request.method, request.url.path, response.status_code, duration_ms, user_id, self.application_id)
        if duration_ms > self.slow_request_ms:
            logger.warning("Slow request: " + message, *args)
        else:
            logger.info(message, *args)
        return response
