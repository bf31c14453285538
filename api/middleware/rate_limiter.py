"""
Rate Limiting Middleware
========================

Rate limiting setup using slowapi. LLM-backed endpoints share the
`analysis_rate_limit` budget per client IP.
"""

from fastapi import FastAPI
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from config import get_settings


# Create limiter instance with IP-based rate limiting
limiter = Limiter(key_func=get_remote_address)


def analysis_limit() -> str:
    """Limit string for LLM-backed routes, read from settings at request time."""
    return get_settings().analysis_rate_limit


def setup_rate_limiting(app: FastAPI) -> None:
    """
    Set up rate limiting for the FastAPI application.

    Attaches the limiter to the app state and registers
    the exception handler for rate limit exceeded errors.

    Usage in routes:
        from api.middleware.rate_limiter import limiter, analysis_limit

        @router.post("/analyze")
        @limiter.limit(analysis_limit)
        async def analyze(request: Request, ...):
            ...
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
