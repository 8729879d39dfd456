"""ADPILOT - Campaign Draft Model.

A draft is created upstream (copy generation, research) and launched on
Meta at most once per call to the launch endpoint. The five ``meta_*_id``
columns are written together, only after the whole resource chain is live.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import SQLModel, Field

from adpilot.models.keys import utcnow


@dataclass(frozen=True)
class CreativeVariant:
    """One ad copy variant stored on the draft."""

    headline: Optional[str] = None
    copy: Optional[str] = None
    cta: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CreativeVariant":
        return cls(
            headline=raw.get("headline"),
            copy=raw.get("copy"),
            cta=raw.get("cta"),
            image_url=raw.get("image_url"),
        )


class ApiCampaign(SQLModel, table=True):
    """Campaign draft owned by an API key."""

    __tablename__ = "api_campaigns"

    id: str = Field(primary_key=True, description='e.g. "camp_m4k7x2abc123"')
    api_key_id: str = Field(index=True)
    user_id: str = Field(default="")
    status: str = Field(default="draft", description="draft | active | paused")
    url: Optional[str] = None
    business_name: Optional[str] = None
    business_type: Optional[str] = None
    targeting: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    variants: List[Dict[str, Any]] = Field(
        default_factory=list, sa_column=Column(JSON)
    )
    objective: str = Field(default="leads")
    daily_budget_cents: Optional[int] = Field(default=2000)
    radius_km: Optional[float] = Field(default=None, description="Radius used at launch")
    meta_access_token: Optional[str] = Field(
        default=None, description="Optional stored Meta token"
    )

    # ── Resource chain (all set, or all unset) ──
    meta_campaign_id: Optional[str] = Field(default=None, index=True)
    meta_adset_id: Optional[str] = None
    meta_leadform_id: Optional[str] = None
    meta_creative_id: Optional[str] = None
    meta_ad_id: Optional[str] = None
    launched_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    # ── Last performance sync ──
    impressions: int = Field(default=0)
    clicks: int = Field(default=0)
    spend_cents: int = Field(default=0)
    leads_count: int = Field(default=0)
    cpl_cents: Optional[int] = None
    performance_status: Optional[str] = None
    last_synced_at: Optional[datetime] = Field(
        default=None, sa_type=DateTime(timezone=True)
    )

    def variant(self, index: int) -> CreativeVariant:
        """Selected variant, falling back to the first, then to an empty one."""
        variants = self.variants or []
        if 0 <= index < len(variants):
            return CreativeVariant.from_dict(variants[index])
        if variants:
            return CreativeVariant.from_dict(variants[0])
        return CreativeVariant()
