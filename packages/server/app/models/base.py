"""Base mixins and column types for SQLModel tables."""

from datetime import datetime, timezone
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


class UTCDateTime(sa.types.TypeDecorator):
    """
    Timezone-aware datetime that always round-trips as UTC.

    Backends without native tz support (SQLite) hand back naive values; those
    are re-tagged as UTC so expiry comparisons never mix naive and aware.
    """
    impl = sa.DateTime
    cache_ok = True

    def __init__(self):
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


# JSONB on Postgres, plain JSON elsewhere.
JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


class IDMixin(SQLModel):
    id: Optional[int] = Field(default=None, primary_key=True)


class UUIDMixin(SQLModel):
    """Externally visible identifier; internal joins use the integer id."""
    uuid: str = Field(default_factory=new_uuid, unique=True, index=True, nullable=False)


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=UTCDateTime,
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now(), "onupdate": utcnow},
        sa_type=UTCDateTime,
    )
