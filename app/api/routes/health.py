from __future__ import annotations

from fastapi import APIRouter

from app.core.rate_limit import get_rate_limiter_service

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Health check endpoint.

    Reports whether the limiter storage backend answers. Used by load
    balancers and monitoring systems; exempt from rate limiting by default.

    Returns:
        dict: ``status`` ("ok" or "degraded"), ``backend`` and ``backend_ok``.
    """

    repository = get_rate_limiter_service().repository
    backend_ok = repository.ping()
    return {
        "status": "ok" if backend_ok else "degraded",
        "backend": repository.backend_type.value,
        "backend_ok": backend_ok,
    }
