"""ADPILOT - Performance Classifier.

Maps synced campaign metrics to a coarse health state. Rules are evaluated
in order; the first match wins:

  paused -> learning floor -> CPL ceiling -> spend without leads -> healthy
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from adpilot.models.keys import as_utc, utcnow

LEARNING_HOURS = 48
LEARNING_IMPRESSIONS = 500
CPL_CEILING_CENTS = 3000
SPEND_WITHOUT_LEADS_CENTS = 5000


class PerformanceStatus(str, Enum):
    LEARNING = "learning"
    HEALTHY = "healthy"
    UNDERPERFORMING = "underperforming"
    PAUSED = "paused"


def hours_since(
    launched_at: Optional[datetime],
    created_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> float:
    """Hours since launch (or creation when never launched); 0 when unknown."""
    reference = as_utc(launched_at or created_at)
    if reference is None:
        return 0.0
    now = now or utcnow()
    return (now - reference).total_seconds() / 3600


def classify(
    status: str,
    launched_at: Optional[datetime],
    created_at: Optional[datetime],
    impressions: int,
    spend_cents: int,
    leads_count: int,
    cpl_cents: Optional[int],
    now: Optional[datetime] = None,
) -> PerformanceStatus:
    if status == "paused":
        return PerformanceStatus.PAUSED

    hours = hours_since(launched_at, created_at, now)
    if hours < LEARNING_HOURS or impressions < LEARNING_IMPRESSIONS:
        return PerformanceStatus.LEARNING
    if cpl_cents is not None and cpl_cents >= CPL_CEILING_CENTS:
        return PerformanceStatus.UNDERPERFORMING
    if spend_cents > SPEND_WITHOUT_LEADS_CENTS and leads_count == 0:
        return PerformanceStatus.UNDERPERFORMING
    if cpl_cents is not None and cpl_cents < CPL_CEILING_CENTS and leads_count >= 1:
        return PerformanceStatus.HEALTHY

    return PerformanceStatus.LEARNING
