"""ADPILOT - API Key & Usage Models.

The key store is consulted on every request; the usage log is append-only
and doubles as the sliding-window source for rate limiting.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ApiKey(SQLModel, table=True):
    """Issued API key. Only the SHA-256 digest of the plaintext is stored.

    Keys are never deleted; revocation stamps ``revoked_at``.
    """

    __tablename__ = "api_keys"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True, description="Owning account")
    key_prefix: str = Field(default="", description="First 16 chars, for display")
    key_hash: str = Field(unique=True, index=True, description="SHA-256 hex digest")
    name: str = Field(default="Default")
    tier: str = Field(default="free", description="free | pro | enterprise")
    is_live: bool = Field(default=True, description="False for sandbox keys")
    rate_limit_per_min: Optional[int] = Field(
        default=None, description="Override; falls back to tier default"
    )
    rate_limit_per_day: Optional[int] = Field(
        default=None, description="Override; falls back to tier default"
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    last_used_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    revoked_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )


class ApiUsage(SQLModel, table=True):
    """One row per completed authenticated request."""

    __tablename__ = "api_usage"

    id: Optional[int] = Field(default=None, primary_key=True)
    api_key_id: str = Field(index=True)
    endpoint: str = Field(description="e.g. /v1/campaigns/:id/launch")
    method: str
    status_code: int = Field(default=0)
    response_time_ms: Optional[int] = None
    created_at: datetime = Field(
        default_factory=utcnow, index=True, sa_type=DateTime(timezone=True)
    )
