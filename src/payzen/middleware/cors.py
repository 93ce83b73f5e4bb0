"""CORS middleware configuration."""

from urllib.parse import urlsplit

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payzen.config import Settings


def allowed_origins(settings: Settings) -> list[str]:
    """Configured origins plus the origin hosting the public payment-link page."""
    origins = list(settings.cors_origins)
    parts = urlsplit(settings.payment_link_base_url)
    if parts.scheme and parts.netloc:
        pay_origin = f"{parts.scheme}://{parts.netloc}"
        if pay_origin not in origins:
            origins.append(pay_origin)
    return origins


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Let the wallet frontend call the API with bearer tokens."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"],
    )
