"""ADPILOT - API Key Authentication & Rate Limiting.

Every /api/v1 call passes through ``AuthGateway.authenticate``:

  bearer token -> SHA-256 -> key lookup -> revocation -> sliding window

The per-minute window is recomputed from the ``api_usage`` log on every
request. There is no counter state and no lock: two concurrent requests for
the same key can both observe a count under the limit and both be admitted,
so the limit is best-effort rather than a hard cap. Usage rows are written
after the response (see ``adpilot.gateway.usage``), so a request is not
guaranteed to see the row of the one just before it.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Tuple

from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy import func
from sqlmodel import Session, select

from adpilot.config import TierLimit
from adpilot.core.errors import AuthRejected, RateLimitExceeded
from adpilot.core.logging import get_logger
from adpilot.database import get_session
from adpilot.gateway.usage import UsageRecorder
from adpilot.models.keys import ApiKey, ApiUsage, utcnow

logger = get_logger("gateway.auth")

BEARER_PREFIX = "Bearer "
RETRY_AFTER_SECONDS = 60


def hash_key(raw_key: str) -> str:
    """SHA-256 hex digest of a plaintext API key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token of a ``Bearer <token>`` header, or None if malformed.

    An empty token is returned as "" so callers can tell the two apart.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):].strip()


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one sliding-window check. Never persisted."""

    limit: int
    remaining: int
    reset: int
    allowed: bool

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


@dataclass(frozen=True)
class Principal:
    """An authenticated caller."""

    key_id: str
    user_id: str
    tier: str
    is_live: bool
    name: str
    rate_limit_per_min: int
    rate_limit_per_day: int
    decision: RateDecision

    @property
    def headers(self) -> Dict[str, str]:
        return self.decision.headers


class AuthGateway:
    """Validates API keys and applies per-tier sliding-window limits."""

    def __init__(
        self,
        tier_limits: Mapping[str, TierLimit],
        window_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        if "free" not in tier_limits:
            raise ValueError("tier limits must define the 'free' tier")
        self.tier_limits: Mapping[str, TierLimit] = MappingProxyType(dict(tier_limits))
        self.window_seconds = window_seconds
        self.clock = clock

    # ── Limits ──

    def resolve_limits(self, key: ApiKey) -> Tuple[str, int, int]:
        """Return (tier, per_minute, per_day); overrides win over tier defaults."""
        tier = key.tier if key.tier in self.tier_limits else "free"
        defaults = self.tier_limits[tier]
        per_min = key.rate_limit_per_min or defaults.per_minute
        per_day = key.rate_limit_per_day or defaults.per_day
        return tier, per_min, per_day

    def count_recent(self, session: Session, key_id: str, now: datetime) -> int:
        """Usage rows for this key inside the trailing window."""
        window_start = now - timedelta(seconds=self.window_seconds)
        statement = select(func.count(ApiUsage.id)).where(
            ApiUsage.api_key_id == key_id,
            ApiUsage.created_at >= window_start,
        )
        return session.exec(statement).one()

    def decide(self, limit: int, used: int, now: datetime) -> RateDecision:
        reset = int(now.timestamp()) + self.window_seconds
        return RateDecision(
            limit=limit,
            remaining=max(0, limit - used),
            reset=reset,
            allowed=used < limit,
        )

    # ── Main entry point ──

    def authenticate(self, session: Session, authorization: Optional[str]) -> Principal:
        """Resolve a bearer header into a principal or raise a typed rejection."""
        raw_key = extract_bearer(authorization)
        if raw_key is None:
            raise AuthRejected(
                "missing_api_key", "Authorization header must be: Bearer <api_key>"
            )
        if not raw_key:
            raise AuthRejected("missing_api_key", "API key is empty")

        key = session.exec(
            select(ApiKey).where(ApiKey.key_hash == hash_key(raw_key))
        ).first()
        if key is None:
            logger.warning("Rejected unknown API key")
            raise AuthRejected("invalid_api_key", "The provided API key is not valid")

        if key.revoked_at is not None:
            logger.warning("Rejected revoked API key", extra={"api_key_id": key.id})
            raise AuthRejected("revoked_api_key", "This API key has been revoked")

        tier, per_min, per_day = self.resolve_limits(key)
        now = self.clock()
        used = self.count_recent(session, key.id, now)
        decision = self.decide(per_min, used, now)

        if not decision.allowed:
            logger.warning(
                f"Rate limit exceeded ({used}/{per_min} per minute)",
                extra={"api_key_id": key.id, "status_code": 429},
            )
            raise RateLimitExceeded(
                f"Rate limit exceeded. You may make {per_min} requests per minute "
                f"on the {tier} tier.",
                retry_after=RETRY_AFTER_SECONDS,
                headers=decision.headers,
            )

        return Principal(
            key_id=key.id,
            user_id=key.user_id,
            tier=tier,
            is_live=key.is_live,
            name=key.name,
            rate_limit_per_min=per_min,
            rate_limit_per_day=per_day,
            decision=decision,
        )


# ── FastAPI dependency ──


async def require_api_key(
    request: Request,
    background_tasks: BackgroundTasks,
    session: Session = Depends(get_session),
) -> Principal:
    """Authenticate the request and remember its rate-limit headers.

    The headers are stored on ``request.state`` so the usage middleware can
    attach them to every response for this request, errors included.
    """
    gateway: AuthGateway = request.app.state.auth_gateway
    principal = gateway.authenticate(session, request.headers.get("authorization"))

    request.state.rate_limit_headers = principal.headers
    request.state.api_key_id = principal.key_id
    recorder: UsageRecorder = request.app.state.usage_recorder
    background_tasks.add_task(recorder.stamp_last_used, principal.key_id)
    return principal
