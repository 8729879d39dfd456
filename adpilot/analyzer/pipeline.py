"""ADPILOT - Performance Sync Pipeline.

Runs the data flow for one launched draft:
  resolve token → fetch lifetime insights → transform → classify → store snapshot

Shared by the performance endpoint and the scheduled sync job.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Session

from adpilot.analyzer.performance import PerformanceStatus, classify, hours_since
from adpilot.config import settings
from adpilot.connectors.meta import endpoints
from adpilot.connectors.meta.client import MetaClient, MetaErr, MetaTransportError
from adpilot.connectors.meta.transformer import PerformanceMetrics, transform_insights
from adpilot.core.errors import MetaApiError, TokenExpired
from adpilot.core.logging import get_logger
from adpilot.models.campaigns import ApiCampaign
from adpilot.models.keys import utcnow

logger = get_logger("analyzer.pipeline")

EXPIRED_TOKEN_CODE = 190


@dataclass(frozen=True)
class PerformanceReport:
    metrics: PerformanceMetrics
    performance_status: PerformanceStatus
    hours_since_launch: float
    synced_at: datetime


def resolve_access_token(
    explicit: Optional[str], draft: Optional[ApiCampaign] = None
) -> Optional[str]:
    """Request token, then the draft's stored token, then the system user token."""
    stored = draft.meta_access_token if draft is not None else None
    return explicit or stored or settings.meta_system_user_token


async def fetch_metrics(client: MetaClient, meta_campaign_id: str) -> PerformanceMetrics:
    """Read lifetime insights; raise TokenExpired or MetaApiError on failure."""
    try:
        resp = await client.get(
            endpoints.insights_path(meta_campaign_id), endpoints.insights_params()
        )
    except MetaTransportError as e:
        raise MetaApiError(
            f"Could not reach Meta: {e}",
            meta_error={"message": str(e), "type": "TransportError", "code": -1},
        ) from e

    outcome = resp.outcome(f"Meta API returned {resp.status_code}", require_id=False)
    if isinstance(outcome, MetaErr):
        logger.error(f"Meta Insights error: {resp.raw_body[:1000]}")
        if resp.status_code == 401 or outcome.code == EXPIRED_TOKEN_CODE:
            raise TokenExpired()
        raise MetaApiError(outcome.message, meta_error=outcome.raw)

    return transform_insights(resp.data)


def store_snapshot(
    session: Session,
    draft: ApiCampaign,
    metrics: PerformanceMetrics,
    status: PerformanceStatus,
    synced_at: datetime,
) -> None:
    """Persist the latest numbers on the draft. Failures are logged, not raised."""
    try:
        draft.impressions = metrics.impressions
        draft.clicks = metrics.clicks
        draft.spend_cents = metrics.spend_cents
        draft.leads_count = metrics.leads_count
        draft.cpl_cents = metrics.cpl_cents
        draft.performance_status = status.value
        draft.last_synced_at = synced_at
        session.add(draft)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.warning(
            f"Performance snapshot not saved: {e}", extra={"campaign_id": draft.id}
        )


async def sync_performance(
    session: Session,
    draft: ApiCampaign,
    client: MetaClient,
    now: Optional[datetime] = None,
) -> PerformanceReport:
    now = now or utcnow()
    metrics = await fetch_metrics(client, draft.meta_campaign_id)

    status = classify(
        draft.status,
        draft.launched_at,
        draft.created_at,
        metrics.impressions,
        metrics.spend_cents,
        metrics.leads_count,
        metrics.cpl_cents,
        now=now,
    )
    store_snapshot(session, draft, metrics, status, now)

    return PerformanceReport(
        metrics=metrics,
        performance_status=status,
        hours_since_launch=round(hours_since(draft.launched_at, draft.created_at, now), 1),
        synced_at=now,
    )
