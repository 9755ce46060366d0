"""Fixed-window rate limit counters shared across service instances."""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class RateLimitCounter(SQLModel, table=True):
    __tablename__ = "rate_limit_counters"

    key: str = Field(primary_key=True, max_length=255, nullable=False)
    window_start: datetime = Field(  # type: ignore[call-overload]
        primary_key=True, nullable=False, sa_type=DateTime(timezone=True)
    )
    count: int = Field(default=0, nullable=False)
