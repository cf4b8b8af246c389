"""Application factory for FastAPI app.

Centralizes app construction (metadata, middleware, handlers, routers) to
improve testability and separation of concerns compared to a monolithic main.
"""

from __future__ import annotations

from fastapi import FastAPI

from app.api.routes import health_router, limits_router, root_router
from app.core.config import settings
from app.core.exception_handlers import setup_exception_handlers
from app.core.logging import configure_logging
from app.core.middleware import request_id_middleware
from app.core.openapi import apply_openapi_customizations
from app.core.rate_limit import rate_limit_middleware


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers, routers and docs.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Rate Limiter API",
        description=(
            "Fixed-window rate limiter keyed by client IP or by an API token "
            "(API_KEY header). Identifiers over their budget are blocked for a "
            "configurable cooldown and receive HTTP 429. State lives in memory "
            "or in Redis."
        ),
        version="0.1.0",
        license_info={
            "name": "MIT License",
            "url": "https://opensource.org/licenses/MIT",
        },
    )

    # Middleware: the last registered runs first, so request ids wrap the limiter
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(root_router)
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    # OpenAPI customizations (security scheme, tags, token header)
    apply_openapi_customizations(app)

    return app
