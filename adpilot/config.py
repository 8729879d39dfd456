"""ADPILOT - Central Configuration via Pydantic Settings."""

import os
from typing import Dict, Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class TierLimit(BaseModel):
    """Default request limits for one key tier."""

    per_minute: int
    per_day: int


def _default_tier_limits() -> Dict[str, TierLimit]:
    return {
        "free": TierLimit(per_minute=10, per_day=100),
        "pro": TierLimit(per_minute=60, per_day=5_000),
        "enterprise": TierLimit(per_minute=300, per_day=50_000),
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # ── Meta API ──
    meta_api_version: str = "v21.0"
    meta_base_url: str = "https://graph.facebook.com"
    meta_system_user_token: Optional[str] = None
    meta_request_timeout_seconds: float = 20.0
    meta_privacy_policy_url: str = "https://adpilot.app/privacy"
    meta_default_link_url: str = "https://adpilot.app/"
    # False when Meta must be asked to delete every child explicitly on rollback
    meta_rollback_cascades: bool = True
    # Conversions API: pixel receiving lead-quality events, and the prefix
    # replacing a leading 0 on local phone numbers before hashing
    meta_pixel_id: Optional[str] = None
    conversions_local_phone_prefix: str = "+61"

    # ── Database ──
    database_url: str = ""

    # ── Identity provider (key issuance) ──
    identity_url: str = ""
    identity_anon_key: str = ""

    # ── Gateway ──
    rate_limit_window_seconds: int = 60
    tier_limits: Dict[str, TierLimit] = _default_tier_limits()

    # ── Launch defaults ──
    default_daily_budget_cents: int = 2000
    default_radius_km: float = 25
    default_country: str = "US"
    default_age_min: int = 25
    default_age_max: int = 65

    # ── App ──
    log_level: str = "INFO"
    scheduler_enabled: bool = True
    performance_sync_minutes: int = 60

    @property
    def effective_database_url(self) -> str:
        """Return PostgreSQL URL if set, otherwise fall back to SQLite."""
        if self.database_url:
            return self.database_url
        # Vercel has a read-only filesystem; use /tmp for SQLite
        if os.environ.get("VERCEL"):
            return "sqlite:////tmp/adpilot.db"
        return "sqlite:///./adpilot.db"

    @property
    def meta_graph_base(self) -> str:
        return f"{self.meta_base_url}/{self.meta_api_version}"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
