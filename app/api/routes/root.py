from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["Root"])


@router.get("/")
def read_root() -> dict:
    """Sample resource guarded by the rate limiter."""

    return {"message": "Hello, World!"}
