"""ADPILOT - Meta Insights -> Performance Metrics Transformer."""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PerformanceMetrics:
    impressions: int = 0
    clicks: int = 0
    spend_cents: int = 0
    leads_count: int = 0
    cpl_cents: Optional[int] = None
    ctr_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _safe_float(value: Any) -> float:
    """Safely convert a value to float."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _safe_int(value: Any) -> int:
    return int(_safe_float(value))


def _lead_count(row: Dict[str, Any]) -> int:
    for action in row.get("actions") or []:
        if action.get("action_type") == "lead":
            return _safe_int(action.get("value"))
    return 0


def transform_insights(payload: Dict[str, Any]) -> PerformanceMetrics:
    """Reduce a lifetime insights response to the campaign's headline numbers.

    Meta returns numbers as strings and omits the row entirely for campaigns
    with no delivery yet; both cases come out as zeros.
    """
    rows = payload.get("data") or []
    row = rows[0] if rows else {}

    impressions = _safe_int(row.get("impressions"))
    clicks = _safe_int(row.get("clicks"))
    spend_cents = round(_safe_float(row.get("spend")) * 100)
    leads_count = _lead_count(row)

    cpl_cents = round(spend_cents / leads_count) if leads_count > 0 else None
    ctr_pct = round(clicks / impressions * 100, 2) if impressions > 0 else 0.0

    return PerformanceMetrics(
        impressions=impressions,
        clicks=clicks,
        spend_cents=spend_cents,
        leads_count=leads_count,
        cpl_cents=cpl_cents,
        ctr_pct=ctr_pct,
    )
