"""Admin API key authentication.

The limiter's operator endpoints (inspect / reset) are protected by an
X-API-Key header validated against a comma-separated list from the
environment. This is separate from the API_KEY header used as a rate
limiting identity: holding a rate-limit token grants no admin access.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header

from app.core.config import settings
from app.core.errors import AuthenticationAppError
from app.core.logging import fingerprint

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ")
        {'key1', 'key2', 'key3'}
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_admin_key(provided_key: str | None) -> None:
    """Validate that the provided key is one of the configured admin keys.

    Args:
        provided_key: Value of the X-API-Key header, if any.

    Raises:
        AuthenticationAppError: If the key is missing or invalid, or if
            authentication is required but no keys are configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)

    if not valid_keys:
        logger.error(
            "auth.failed",
            extra={"reason": "api_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="Admin authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if not provided_key:
        logger.warning("auth.failed", extra={"reason": "missing_api_key"})
        raise AuthenticationAppError(
            code="missing_api_key",
            message="Missing API key. Provide X-API-Key header.",
        )

    if provided_key not in valid_keys:
        logger.warning(
            "auth.failed",
            extra={"reason": "invalid_api_key", "api_key_hash": fingerprint(provided_key)},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


async def verify_admin_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding the admin endpoints.

    Usage:
        @router.delete("/limits/...", dependencies=[Depends(verify_admin_key)])

    Raises:
        AuthenticationAppError: Rendered as 403 by the global exception handler.
    """
    validate_admin_key(x_api_key)
