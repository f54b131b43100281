from __future__ import annotations

import json
import logging
from typing import Callable

from fastapi import HTTPException, Request, Response, status

from titan_billing.services.rate_limiter import (
    RATE_LIMIT_POLICIES,
    RateLimiter,
    RateLimitResult,
    build_rate_limiter,
)

logger = logging.getLogger(__name__)

_IDENTIFIER_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        limiter = build_rate_limiter()
        request.app.state.rate_limiter = limiter
    return limiter


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.window_reset_epoch),
    }


def require_rate_limit(policy: str = "api") -> Callable:
    """Build a dependency enforcing one of the named policies in RATE_LIMIT_POLICIES."""
    if policy not in RATE_LIMIT_POLICIES:
        raise ValueError(f"Rate limiter '{policy}' not available")
    config = RATE_LIMIT_POLICIES[policy]

    async def dependency(request: Request, response: Response) -> None:
        identifier = resolve_identifier(request)
        try:
            limiter = get_rate_limiter(request)
            result = limiter.check(
                identifier=identifier,
                route_key=policy,
                limit=config.limit,
                window_seconds=config.window_seconds,
            )
        except Exception:
            # Fail open: a limiter bug must not take the endpoint down.
            logger.exception("Rate limiting error for policy %s; allowing request", policy)
            return

        _log_decision(request=request, result=result, route_key=policy, identifier=identifier)
        headers = rate_limit_headers(result)
        # Error responses are rebuilt by the app exception handlers, which merge these back in.
        request.state.rate_limit_headers = headers
        if not result.allowed:
            retry_after = max(1, result.retry_after_seconds)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail={
                    "message": "Too many requests",
                    "details": {
                        "retry_after_seconds": retry_after,
                        "limit": result.limit,
                        "remaining": result.remaining,
                    },
                },
                headers={**headers, "Retry-After": str(retry_after)},
            )
        response.headers.update(headers)

    return dependency


def resolve_identifier(request: Request) -> str:
    for header in _IDENTIFIER_HEADERS:
        value = request.headers.get(header)
        if value and value.strip():
            # x-forwarded-for may be a list; the first hop is the client.
            return value.split(",")[0].strip()
    return "anonymous"


def _log_decision(*, request: Request, result: RateLimitResult, route_key: str, identifier: str) -> None:
    payload = {
        "identifier": identifier,
        "route": request.url.path,
        "http_method": request.method,
        "route_key": route_key,
        "limiter_key": result.limiter_key,
        "window_seconds": result.window_seconds,
        "limit": result.limit,
        "current_count": result.count,
        "remaining": result.remaining,
        "reset_epoch": result.window_reset_epoch,
        "decision": "allow" if result.allowed else "block",
    }
    logger.info(json.dumps(payload, separators=(",", ":")))
