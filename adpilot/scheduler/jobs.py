"""ADPILOT - Scheduler Jobs.

APScheduler interval job that re-syncs performance for every live campaign.
"""

from typing import Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlmodel import Session, select

from adpilot.analyzer.pipeline import resolve_access_token, sync_performance
from adpilot.config import settings
from adpilot.connectors.meta.client import MetaClient
from adpilot.core.errors import ApiError
from adpilot.core.logging import get_logger
from adpilot.database import engine
from adpilot.models.campaigns import ApiCampaign

logger = get_logger("scheduler")

scheduler = AsyncIOScheduler()


async def sync_active_campaigns(
    session: Session, transport: Optional[httpx.AsyncBaseTransport] = None
) -> int:
    """Sync every active launched draft; return how many were refreshed."""
    drafts = session.exec(
        select(ApiCampaign).where(
            ApiCampaign.status == "active",
            ApiCampaign.meta_campaign_id.is_not(None),
        )
    ).all()

    synced = 0
    for draft in drafts:
        token = resolve_access_token(None, draft)
        if not token:
            logger.warning("No Meta token for scheduled sync", extra={"campaign_id": draft.id})
            continue
        try:
            async with MetaClient(token, transport=transport) as client:
                report = await sync_performance(session, draft, client)
        except ApiError as e:
            logger.warning(
                f"Scheduled sync skipped: {e.code}: {e.message}",
                extra={"campaign_id": draft.id},
            )
            continue
        synced += 1
        logger.info(
            f"Synced performance: {report.performance_status.value}",
            extra={"campaign_id": draft.id},
        )
    return synced


async def performance_sync_job():
    """Scheduled entry point."""
    logger.info("Scheduled performance sync starting...")
    try:
        with Session(engine) as session:
            count = await sync_active_campaigns(session)
        logger.info(f"Scheduled performance sync complete. Campaigns synced: {count}")
    except Exception as e:
        logger.error(f"Scheduled performance sync failed: {e}")


def start_scheduler():
    """Configure and start the scheduler."""
    if not settings.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return

    scheduler.add_job(
        performance_sync_job,
        "interval",
        minutes=settings.performance_sync_minutes,
        id="performance_sync",
        replace_existing=True,
        misfire_grace_time=600,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started. Performance sync every {settings.performance_sync_minutes} min"
    )


def stop_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
