"""Pydantic schemas for limiter records (storage payload and admin API)."""

from __future__ import annotations

from pydantic import BaseModel, Field, FiniteFloat

from app.adapters.rate_limit.record import LimiterKind, LimiterRecord


class LimiterRecordPayload(BaseModel):
    """JSON document stored by the networked backend.

    Field names mirror ``LimiterRecord``. There is no version field; changing
    the shape requires migrating or flushing stored keys.
    """

    identifier: str = Field(..., min_length=1)
    kind: LimiterKind
    request_count: int = Field(0, ge=0)
    last_request_time: FiniteFloat | None = None
    blocked: bool = False
    blocked_until: FiniteFloat | None = None

    @classmethod
    def from_record(cls, record: LimiterRecord) -> "LimiterRecordPayload":
        return cls(
            identifier=record.identifier,
            kind=record.kind,
            request_count=record.request_count,
            last_request_time=record.last_request_time,
            blocked=record.blocked,
            blocked_until=record.blocked_until,
        )

    def to_record(self) -> LimiterRecord:
        """Rebuild the entity, re-validating the identifier for its kind."""
        record = LimiterRecord.create(self.identifier, self.kind)
        record.request_count = self.request_count
        record.last_request_time = self.last_request_time
        record.blocked = self.blocked
        record.blocked_until = self.blocked_until
        return record


class LimiterStatusResponse(BaseModel):
    """Current limiter state for one identifier, as exposed to operators."""

    kind: LimiterKind = Field(..., description="ip or token.")
    key: str = Field(..., description="Namespaced storage key.")
    request_count: int = Field(..., description="Requests counted in the current window.")
    limit: int = Field(..., description="Configured budget for this kind.")
    remaining: int = Field(..., description="Requests left before the next one triggers a block.")
    blocked: bool = Field(..., description="Whether the identifier is in its cooldown.")
    blocked_until: float | None = Field(
        None, description="UNIX seconds when the cooldown ends."
    )
    retry_after_seconds: int = Field(
        0, description="Seconds until requests are admitted again (0 when not blocked)."
    )
    enabled: bool = Field(..., description="Whether this limiter class is enforced.")
