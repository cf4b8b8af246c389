"""Rate limiting middleware for FastAPI.

This module wires the decision service into the HTTP layer.

Design goals:
- Minimal coupling: the app registers one middleware function.
- Swap-friendly: the storage backend is chosen by configuration behind an
  abstract repository.
- Fail closed: any error while deciding turns into a denial, never an admit.

Identification strategy:
- If the request carries an API token header (API_KEY by default), the
  token budget applies.
- Otherwise the client IP budget applies (X-Forwarded-For / X-Real-IP are
  honored when trusted, else the socket peer address).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.adapters.rate_limit.factory import build_limiter_repository
from app.core.config import settings
from app.core.errors import AppError, InvalidIdentifierError
from app.core.logging import fingerprint, get_request_id
from app.services.rate_limiter_service import RateLimiterService

logger = logging.getLogger(__name__)

RATE_LIMIT_EXCEEDED_MESSAGE = (
    "you have reached the maximum number of requests or actions allowed within a certain time frame"
)

_service: RateLimiterService | None = None
_service_config: dict[str, Any] | None = None


# Fields that shape limiter state; changing any other setting keeps the
# service (and its in-memory records).
_SERVICE_FIELDS = frozenset(
    {
        "rate_limit_ip",
        "rate_limit_token",
        "block_duration_ip",
        "block_duration_token",
        "enable_ip_limiter",
        "enable_token_limiter",
        "rate_limit_backend",
        "rate_limit_default_ttl_seconds",
    }
)


def _current_config() -> dict[str, Any]:
    return settings.rate_limit.model_dump(include=set(_SERVICE_FIELDS))


def get_rate_limiter_service() -> RateLimiterService:
    """Return the process-wide decision service.

    The instance is cached in-module so limiter state survives across
    requests. If a budget, cooldown, enable flag, backend or TTL setting
    changes (primarily in tests), the service and its repository are rebuilt.

    Raises:
        InvalidBackendTypeError: If RATE_LIMIT_BACKEND is unknown.
        StorageUnavailableError: If the networked backend cannot connect.
    """

    global _service, _service_config

    config = _current_config()
    if _service is None or _service_config != config:
        repository = build_limiter_repository(settings)
        _service = RateLimiterService.from_settings(repository, settings.rate_limit)
        _service_config = config
        logger.info(
            "rate_limit.configured",
            extra={
                "backend": repository.backend_type.value,
                "limit_ip": settings.rate_limit.rate_limit_ip,
                "limit_token": settings.rate_limit.rate_limit_token,
                "block_ip_s": settings.rate_limit.block_duration_ip,
                "block_token_s": settings.rate_limit.block_duration_token,
                "ip_enabled": settings.rate_limit.enable_ip_limiter,
                "token_enabled": settings.rate_limit.enable_token_limiter,
            },
        )

    return _service


def set_rate_limiter_service(service: RateLimiterService | None) -> None:
    """Install a pre-built service (or clear the cache with None)."""

    global _service, _service_config

    _service = service
    _service_config = _current_config() if service is not None else None


def parse_exempt_paths(paths: str | None) -> set[str]:
    """Parse the comma-separated exempt path list."""
    if not paths:
        return set()
    return {path.strip() for path in paths.split(",") if path.strip()}


def is_exempt_path(path: str) -> bool:
    """Whether requests to ``path`` skip the admission filter.

    Exact matches come from RATE_LIMIT_EXEMPT_PATHS; RATE_LIMIT_EXEMPT_PATH_PREFIXES
    covers whole subtrees such as the operator endpoints, so an operator can
    reset a block on their own address.
    """
    config = settings.rate_limit
    if path in parse_exempt_paths(config.rate_limit_exempt_paths):
        return True
    return any(
        path.startswith(prefix)
        for prefix in parse_exempt_paths(config.rate_limit_exempt_path_prefixes)
    )


def resolve_client_ip(request: Request) -> str:
    """Best-effort client IP for the request.

    Forwarding headers are only consulted when
    RATE_LIMIT_TRUST_FORWARDED_HEADERS is enabled, i.e. the service runs
    behind a proxy that sets them.
    """

    if settings.rate_limit.rate_limit_trust_forwarded_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first_hop = forwarded_for.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("X-Real-IP")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    return request.client.host if request.client else ""


def resolve_identifier(request: Request) -> tuple[str, bool]:
    """Pick the limiter identifier: the API token if present, else the IP."""
    token = request.headers.get(settings.rate_limit.rate_limit_token_header)
    if token and token.strip():
        return token.strip(), True
    return resolve_client_ip(request), False


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": get_request_id(),
            }
        },
    )


async def rate_limit_middleware(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the per-IP and per-token budgets.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The downstream response when admitted, 429 when the
            identifier is over its budget or blocked, 400 for an unusable
            identifier and 500 when the decision itself failed.
    """

    if is_exempt_path(request.url.path):
        return await call_next(request)

    identifier, is_token = resolve_identifier(request)
    key_type = "token" if is_token else "ip"
    key_hash = fingerprint(identifier)

    try:
        service = get_rate_limiter_service()
        deadline = service.clock() + settings.rate_limit.rate_limit_decision_timeout_seconds
        allowed = await run_in_threadpool(
            service.is_allowed, identifier, is_token, deadline=deadline
        )
    except InvalidIdentifierError as exc:
        logger.warning(
            "rate_limit.invalid_identifier",
            extra={"key_type": key_type, "error_code": exc.code},
        )
        return _error_response(status.HTTP_400_BAD_REQUEST, exc.code, exc.message)
    except AppError as exc:
        logger.error(
            "rate_limit.decision_failed",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "error_code": exc.code,
                "error_type": type(exc).__name__,
            },
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    if not allowed:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_type": key_type,
                "key_hash": key_hash,
                "path": request.url.path,
            },
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": RATE_LIMIT_EXCEEDED_MESSAGE},
        )

    return await call_next(request)
