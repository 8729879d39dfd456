"""ADPILOT - API Key Issuance Route.

Authenticated with an identity-provider session token, never an API key.
"""

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlmodel import Session

from adpilot.core.errors import ApiError, InternalError
from adpilot.core.logging import get_logger
from adpilot.database import get_session
from adpilot.gateway.auth import extract_bearer, hash_key
from adpilot.gateway.identity import IdentityClient, looks_like_api_key
from adpilot.models.keys import ApiKey

logger = get_logger("api.keys")

router = APIRouter(prefix="/api/v1/keys", tags=["Keys"])

KEY_PREFIX_LENGTH = 16


class CreateKeyRequest(BaseModel):
    name: str = "Default"
    is_live: bool = True
    tier: Optional[str] = "free"


def generate_key(is_live: bool) -> str:
    """``ap_live_`` / ``ap_test_`` followed by 32 hex characters."""
    prefix = "ap_live_" if is_live else "ap_test_"
    return f"{prefix}{secrets.token_hex(16)}"


async def _session_user(request: Request) -> str:
    token = extract_bearer(request.headers.get("authorization"))
    if token is None:
        raise ApiError(
            401, "unauthorized", "Authorization header with a user session token required"
        )

    invalid = ApiError(401, "invalid_jwt", "Invalid or expired session token")
    if not token or looks_like_api_key(token):
        raise invalid

    identity: IdentityClient = request.app.state.identity_client
    user_id = await identity.get_user_id(token)
    if not user_id:
        raise invalid
    return user_id


@router.post("/create", status_code=201)
async def create_key(
    request: Request,
    body: Optional[CreateKeyRequest] = None,
    session: Session = Depends(get_session),
):
    """Issue a new API key. The plaintext is returned exactly once."""
    user_id = await _session_user(request)
    body = body or CreateKeyRequest()

    tier_limits = request.app.state.auth_gateway.tier_limits
    tier = body.tier if body.tier in tier_limits else "free"
    limits = tier_limits[tier]

    full_key = generate_key(body.is_live)
    record = ApiKey(
        user_id=user_id,
        key_prefix=full_key[:KEY_PREFIX_LENGTH],
        key_hash=hash_key(full_key),
        name=body.name,
        tier=tier,
        is_live=body.is_live,
        rate_limit_per_min=limits.per_minute,
        rate_limit_per_day=limits.per_day,
    )
    try:
        session.add(record)
        session.commit()
        session.refresh(record)
    except Exception as e:
        session.rollback()
        logger.error(f"Failed to create API key: {e}", exc_info=True)
        raise InternalError("Failed to create API key", str(e))

    logger.info(f"Issued {tier} key", extra={"api_key_id": record.id})
    return {
        "key": full_key,
        "key_prefix": record.key_prefix,
        "id": record.id,
        "name": record.name,
        "tier": record.tier,
        "is_live": record.is_live,
        "rate_limit_per_min": record.rate_limit_per_min,
        "rate_limit_per_day": record.rate_limit_per_day,
        "created_at": record.created_at.isoformat(),
        "_warning": "Store this key securely. It will not be shown again.",
    }
