"""
Request Logging Middleware

Logs every API request to the "audit" logger.
Records: user, org, method, path, status, IP, latency, request id.

This is the operational access log. Business and security events go to
the hash-chained audit ledger (audit_trail/ledger.py).
"""

import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from audit_trail.ledger import client_context

logger = logging.getLogger("audit")

# Paths to skip (health checks, static assets)
SKIP_PATHS = {"/health", "/health/ready", "/favicon.ico"}

REQUEST_ID_HEADER = "X-Request-ID"


class AuditLogMiddleware(BaseHTTPMiddleware):
    """
    Logs every API request with timing, caller context, and response status.

    Log records carry their fields in `extra` for structured ingestion.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        if path in SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        start = time.monotonic()
        response: Response | None = None
        error: str | None = None

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        except Exception as exc:
            error = str(exc)
            raise
        finally:
            latency_ms = (time.monotonic() - start) * 1000
            status_code = response.status_code if response else 500

            # Set by get_current_user once the caller is resolved
            user_id = getattr(request.state, "user_id", None)
            org_id = getattr(request.state, "org_id", None)
            user_email = getattr(request.state, "user_email", None)
            client_ip, user_agent = client_context(request)

            log_data = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": status_code,
                "latency_ms": round(latency_ms, 2),
                "client_ip": client_ip or "unknown",
                "user_id": str(user_id) if user_id else None,
                "org_id": str(org_id) if org_id else None,
                "user_email": user_email,
                "user_agent": user_agent or "",
            }

            if error:
                log_data["error"] = error

            if status_code >= 500:
                logger.error("api_request", extra=log_data)
            elif status_code >= 400:
                logger.warning("api_request", extra=log_data)
            else:
                logger.info("api_request", extra=log_data)
