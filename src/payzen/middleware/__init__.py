"""HTTP middleware stack.

Outermost first: CORS, request id, rate limiter, then the routes. Starlette
wraps in reverse-add order, so ``setup_middleware`` adds them inside-out.
"""

from fastapi import FastAPI

from payzen.config import Settings
from payzen.middleware.cors import setup_cors
from payzen.middleware.error_handler import setup_error_handlers
from payzen.middleware.logging import setup_logging
from payzen.middleware.rate_limit import RateLimitMiddleware
from payzen.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Configure logging and error rendering, then install the middleware stack.

    A non-positive ``rate_limit_requests`` disables the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app, settings)
    if settings.rate_limit_requests > 0:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_window=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
