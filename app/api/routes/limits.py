"""Operator endpoints for inspecting and resetting limiter records."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from app.adapters.rate_limit.record import LimiterKind
from app.core.auth import verify_admin_key
from app.core.rate_limit import get_rate_limiter_service
from app.schemas.limiter import LimiterStatusResponse

router = APIRouter(tags=["Limits"], dependencies=[Depends(verify_admin_key)])


@router.get("/limits/{kind}/{identifier}", response_model=LimiterStatusResponse)
def get_limit_status(kind: LimiterKind, identifier: str) -> LimiterStatusResponse:
    """Return the current counter and block state of one identifier.

    An identifier that was never seen (or whose record expired) is reported
    as a fresh record with a zero counter.
    """

    service = get_rate_limiter_service()
    is_token = kind is LimiterKind.TOKEN
    record = service.get_status(identifier, is_token)
    now = service.clock()
    limit = service.limit_for(kind)
    blocked = record.is_blocked(now)

    return LimiterStatusResponse(
        kind=kind,
        key=record.storage_key,
        request_count=record.request_count,
        limit=limit,
        remaining=0 if blocked else max(0, limit - record.request_count),
        blocked=blocked,
        blocked_until=record.blocked_until if blocked else None,
        retry_after_seconds=record.seconds_until_unblocked(now) if blocked else 0,
        enabled=service.is_enabled(kind),
    )


@router.delete(
    "/limits/{kind}/{identifier}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
def reset_limit(kind: LimiterKind, identifier: str) -> Response:
    """Delete the stored record, unblocking the identifier immediately."""

    get_rate_limiter_service().reset(identifier, kind is LimiterKind.TOKEN)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
