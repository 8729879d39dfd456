"""ADPILOT - Campaign Routes (launch, pause/resume, performance, conversions)."""

import re
from typing import Literal, Optional

import httpx
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlmodel import Session, select

from adpilot.analyzer.pipeline import resolve_access_token, sync_performance
from adpilot.config import settings
from adpilot.connectors.meta import endpoints
from adpilot.connectors.meta.client import MetaClient, MetaErr, MetaTransportError
from adpilot.core.errors import (
    ApiError,
    ConversionsApiError,
    InternalError,
    MetaApiError,
    MissingToken,
    NotFound,
    ValidationFailed,
)
from adpilot.core.logging import get_logger
from adpilot.database import get_session
from adpilot.gateway.auth import Principal, require_api_key
from adpilot.models.campaigns import ApiCampaign
from adpilot.models.keys import utcnow
from adpilot.saga.launch import build_plan, launch_campaign

logger = get_logger("api.campaigns")

router = APIRouter(prefix="/api/v1/campaigns", tags=["Campaigns"])

NOT_LAUNCHED = "Campaign not found or has not been launched on Meta yet"

GRAPH_ID = re.compile(r"^[0-9]+\Z")


# ── Request Models ──


class LaunchRequest(BaseModel):
    meta_access_token: Optional[str] = None
    meta_ad_account_id: Optional[str] = None
    meta_page_id: Optional[str] = None
    variant_index: int = 0
    daily_budget_cents: Optional[int] = None
    radius_km: Optional[float] = None


class PauseRequest(BaseModel):
    action: Literal["pause", "resume"] = "pause"
    meta_access_token: Optional[str] = None


class LeadUserData(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ConversionRequest(BaseModel):
    lead_id: Optional[str] = None
    quality: Optional[str] = None
    meta_access_token: Optional[str] = None
    meta_lead_id: Optional[str] = Field(
        default=None, description="Meta leadgen id, used as the event id for dedup"
    )
    user_data: Optional[LeadUserData] = None


# ── Helpers ──


def meta_client_for(request: Request, access_token: str) -> MetaClient:
    """Build a Graph client; tests swap the transport via app.state."""
    transport: Optional[httpx.AsyncBaseTransport] = getattr(
        request.app.state, "meta_transport", None
    )
    return MetaClient(access_token, transport=transport)


def _owned_draft(session: Session, campaign_id: str, principal: Principal) -> Optional[ApiCampaign]:
    return session.exec(
        select(ApiCampaign).where(
            ApiCampaign.id == campaign_id,
            ApiCampaign.api_key_id == principal.key_id,
        )
    ).first()


def _validate_launch(body: LaunchRequest) -> None:
    if not body.meta_access_token:
        raise ValidationFailed("`meta_access_token` is required")
    if not body.meta_ad_account_id:
        raise ValidationFailed(
            '`meta_ad_account_id` is required (e.g. "act_123456789")'
        )
    if not body.meta_page_id:
        raise ValidationFailed(
            "`meta_page_id` is required (Facebook Page ID for lead form)"
        )
    # Both ids end up in Graph paths; reject anything that is not numeric
    if not GRAPH_ID.match(endpoints.normalize_ad_account_id(body.meta_ad_account_id)):
        raise ValidationFailed(
            '`meta_ad_account_id` must be a numeric ad account id (e.g. "act_123456789")'
        )
    if not GRAPH_ID.match(body.meta_page_id):
        raise ValidationFailed("`meta_page_id` must be a numeric Facebook Page ID")


def _validate_conversion(body: ConversionRequest) -> None:
    if not body.lead_id:
        raise ValidationFailed("`lead_id` is required")
    if body.quality not in ("good", "bad"):
        raise ValidationFailed('`quality` must be "good" or "bad"')


# ── Routes ──


@router.post("/{campaign_id}/launch")
async def launch(
    campaign_id: str,
    body: LaunchRequest,
    request: Request,
    principal: Principal = Depends(require_api_key),
    session: Session = Depends(get_session),
):
    """Push a draft live on Meta: campaign, ad set, lead form, creative, ad.

    Either the whole chain goes live or the campaign is deleted again and the
    failing step is reported.
    """
    _validate_launch(body)

    draft = _owned_draft(session, campaign_id, principal)
    if draft is None:
        raise NotFound(f"Campaign draft '{campaign_id}' not found")

    try:
        plan = build_plan(
            draft,
            body.meta_ad_account_id,
            body.meta_page_id,
            variant_index=body.variant_index,
            daily_budget_cents=body.daily_budget_cents,
            radius_km=body.radius_km,
        )
        async with meta_client_for(request, body.meta_access_token) as client:
            result = await launch_campaign(
                session,
                draft,
                client,
                plan,
                cascade_delete=settings.meta_rollback_cascades,
            )
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Launch failed unexpectedly: {e}", exc_info=True, extra={"campaign_id": campaign_id})
        raise InternalError(
            "An unexpected error occurred while launching the campaign", str(e)
        )

    return {
        "id": campaign_id,
        "status": "active",
        "meta_campaign_id": result.meta_campaign_id,
        "meta_adset_id": result.meta_adset_id,
        "meta_ad_id": result.meta_ad_id,
        "meta_leadform_id": result.meta_leadform_id,
        "meta_creative_id": result.meta_creative_id,
        "daily_budget_cents": result.daily_budget_cents,
        "launched_at": result.launched_at.isoformat(),
    }


@router.post("/{campaign_id}/pause")
async def pause(
    campaign_id: str,
    body: PauseRequest,
    request: Request,
    principal: Principal = Depends(require_api_key),
    session: Session = Depends(get_session),
):
    """Pause or resume a launched campaign on Meta."""
    draft = _owned_draft(session, campaign_id, principal)
    if draft is None or not draft.meta_campaign_id:
        raise NotFound(NOT_LAUNCHED)

    token = resolve_access_token(body.meta_access_token, draft)
    if not token:
        raise MissingToken(
            "`meta_access_token` is required, either in the request body "
            "or stored with the campaign"
        )

    meta_status = endpoints.PAUSED if body.action == "pause" else endpoints.ACTIVE
    new_status = "paused" if body.action == "pause" else "active"

    try:
        async with meta_client_for(request, token) as client:
            resp = await client.set_status(draft.meta_campaign_id, meta_status)

        outcome = resp.outcome(f"Meta API returned {resp.status_code}", require_id=False)
        if isinstance(outcome, MetaErr):
            logger.error(
                f"Meta status update failed: {resp.raw_body[:1000]}",
                extra={"campaign_id": campaign_id},
            )
            raise MetaApiError(outcome.message, meta_error=outcome.raw)

        draft.status = new_status
        session.add(draft)
        session.commit()
    except ApiError:
        raise
    except MetaTransportError as e:
        raise MetaApiError(
            f"Could not reach Meta: {e}",
            meta_error={"message": str(e), "type": "TransportError", "code": -1},
        )
    except Exception as e:
        logger.error(f"Status update failed unexpectedly: {e}", exc_info=True, extra={"campaign_id": campaign_id})
        raise InternalError("An unexpected error occurred", str(e))

    logger.info(f"Campaign {body.action}d", extra={"campaign_id": campaign_id})

    return {
        "campaign_id": campaign_id,
        "status": new_status,
        "meta_campaign_id": draft.meta_campaign_id,
    }


@router.get("/{campaign_id}/performance")
async def performance(
    campaign_id: str,
    request: Request,
    meta_access_token: Optional[str] = None,
    principal: Principal = Depends(require_api_key),
    session: Session = Depends(get_session),
):
    """Fresh lifetime metrics from Meta plus a coarse health state."""
    draft = _owned_draft(session, campaign_id, principal)
    if draft is None or not draft.meta_campaign_id:
        raise NotFound(NOT_LAUNCHED)

    token = resolve_access_token(meta_access_token, draft)
    if not token:
        raise MissingToken(
            "A Meta access token is required. Pass `meta_access_token` as a query parameter."
        )

    try:
        async with meta_client_for(request, token) as client:
            report = await sync_performance(session, draft, client)
    except ApiError:
        raise
    except Exception as e:
        logger.error(f"Performance read failed: {e}", exc_info=True, extra={"campaign_id": campaign_id})
        raise InternalError("An unexpected error occurred", str(e))

    return {
        "campaign_id": campaign_id,
        "status": draft.status,
        "performance_status": report.performance_status.value,
        "metrics": report.metrics.to_dict(),
        "hours_since_launch": report.hours_since_launch,
        "last_synced_at": report.synced_at.isoformat(),
    }


@router.post("/{campaign_id}/conversions")
async def conversions(
    campaign_id: str,
    body: ConversionRequest,
    request: Request,
    principal: Principal = Depends(require_api_key),
    session: Session = Depends(get_session),
):
    """Report a lead as good or bad to Meta's Conversions API.

    Good leads go up as ``Lead`` events with value, bad ones as zero-value
    ``Other`` events, so delivery drifts toward people like the good leads.
    Without a token or a pixel the quality is acknowledged but not sent.
    """
    _validate_conversion(body)

    draft = _owned_draft(session, campaign_id, principal)
    if draft is None:
        raise NotFound(f"Campaign draft '{campaign_id}' not found")

    token = resolve_access_token(body.meta_access_token, draft)
    pixel_id = settings.meta_pixel_id
    if not token or not pixel_id:
        logger.info(
            "No Meta token or pixel configured; conversion not sent",
            extra={"campaign_id": campaign_id},
        )
        return {
            "success": True,
            "capi_sent": False,
            "message": "Conversion quality recorded but Meta CAPI not configured "
            "(missing access token or pixel ID)",
            "quality": body.quality,
            "lead_id": body.lead_id,
        }

    lead = body.user_data or LeadUserData()
    event = endpoints.lead_quality_event(
        body.quality,
        body.lead_id,
        campaign_id,
        endpoints.conversion_user_data(
            email=lead.email,
            phone=lead.phone,
            first_name=lead.first_name,
            last_name=lead.last_name,
            local_phone_prefix=settings.conversions_local_phone_prefix,
        ),
        utcnow(),
        event_id=body.meta_lead_id,
    )

    try:
        async with meta_client_for(request, token) as client:
            resp = await client.send_events(pixel_id, [event])
    except MetaTransportError as e:
        raise ConversionsApiError({"message": str(e), "type": "TransportError", "code": -1})
    except Exception as e:
        logger.error(f"Conversion upload failed unexpectedly: {e}", exc_info=True, extra={"campaign_id": campaign_id})
        raise InternalError("An unexpected error occurred", str(e))

    if not resp.ok:
        logger.error(
            f"Conversions API error: {resp.raw_body[:1000]}",
            extra={"campaign_id": campaign_id},
        )
        raise ConversionsApiError(resp.data)

    logger.info(
        f"Sent {body.quality} lead signal for lead {body.lead_id}",
        extra={"campaign_id": campaign_id},
    )
    return {
        "success": True,
        "capi_sent": True,
        "events_received": resp.data.get("events_received") or 1,
        "quality": body.quality,
        "lead_id": body.lead_id,
    }
