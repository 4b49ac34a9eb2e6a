"""
DocVault HTTP middleware — rate limiting and response hardening headers.

Both run for every request. The rate limiter runs first so a limited
caller never reaches identity resolution or the database.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from docvault.engine.logging import log, log_security_event
from docvault.security.rate_limit import RateLimiter, client_address

logger = logging.getLogger("docvault.api.middleware")

RATE_LIMITED_MESSAGE = "Too many requests. Please try again later."

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}


def install_middleware(app: FastAPI, rate_limiter: Optional[RateLimiter]) -> None:
    """Register the security-header and rate-limit middleware on `app`."""

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if rate_limiter is not None:
            ip = client_address(request.headers, request.client.host if request.client else None)
            # Limiters may block on Redis; keep them off the event loop.
            if await run_in_threadpool(rate_limiter.is_limited, ip):
                logger.warning(f"Rate limited {ip} on {request.url.path}")
                log(log_security_event(
                    event="rate_limited",
                    object_ref=request.url.path,
                    action=request.method,
                    reason="RATE_LIMITED",
                    client_ip=ip,
                ))
                return JSONResponse({"error": RATE_LIMITED_MESSAGE}, status_code=429)
        return await call_next(request)

    # Last registered is outermost, so 429 responses get the headers too.
    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response
