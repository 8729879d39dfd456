"""ADPILOT - Meta API Endpoints.

Graph paths and form bodies for each resource the launch saga creates, the
insights read used for performance sync, and Conversions API lead-quality
events. Everything here is pure: no I/O, just the shapes Meta expects.
"""

import hashlib
import json
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from adpilot.models.campaigns import CreativeVariant

CAMPAIGN_OBJECTIVE = "OUTCOME_LEADS"
PAUSED = "PAUSED"
ACTIVE = "ACTIVE"

INSIGHT_FIELDS = "impressions,clicks,spend,actions"

CTA_TYPES: Dict[str, str] = {
    "Get Quote": "GET_QUOTE",
    "Call Now": "CALL_NOW",
    "Learn More": "LEARN_MORE",
    "Sign Up": "SIGN_UP",
    "Book Now": "BOOK_NOW",
    "Contact Us": "CONTACT_US",
}
DEFAULT_CTA = "LEARN_MORE"

LEAD_FORM_QUESTIONS: List[Dict[str, str]] = [
    {"type": "FULL_NAME"},
    {"type": "PHONE"},
    {"type": "EMAIL"},
    {"type": "CUSTOM", "key": "location", "label": "What area are you in?"},
]

PUBLISHER_PLATFORMS = ["facebook", "instagram"]
FACEBOOK_POSITIONS = ["feed"]
INSTAGRAM_POSITIONS = ["stream"]


def normalize_ad_account_id(raw: str) -> str:
    """Strip the optional ``act_`` prefix."""
    return raw[4:] if raw.startswith("act_") else raw


def map_cta(label: Optional[str]) -> str:
    """Human CTA label -> Graph enum; unknown labels become LEARN_MORE."""
    return CTA_TYPES.get(label or "", DEFAULT_CTA)


def campaign_name(business_name: str, now: datetime) -> str:
    return f"{business_name} - API - {now.date().isoformat()}"


# ── Campaign ──


def campaign_path(ad_account_id: str) -> str:
    return f"/act_{ad_account_id}/campaigns"


def campaign_params(name: str) -> Dict[str, str]:
    return {
        "name": name,
        "objective": CAMPAIGN_OBJECTIVE,
        "status": PAUSED,
        "special_ad_categories": json.dumps([]),
    }


# ── Ad Set ──


def adset_path(ad_account_id: str) -> str:
    return f"/act_{ad_account_id}/adsets"


def build_targeting(
    targeting: Dict[str, Any],
    default_country: str,
    default_age_min: int,
    default_age_max: int,
) -> Dict[str, Any]:
    """Ad set targeting: custom locations when the draft has them, else a country."""
    geo = targeting.get("geo_locations") or {}
    custom_locations = geo.get("custom_locations") or []
    if custom_locations:
        geo_locations: Dict[str, Any] = {"custom_locations": custom_locations}
    else:
        geo_locations = {"countries": [default_country]}

    return {
        "age_min": targeting.get("age_min") or default_age_min,
        "age_max": targeting.get("age_max") or default_age_max,
        "geo_locations": geo_locations,
        "publisher_platforms": PUBLISHER_PLATFORMS,
        "facebook_positions": FACEBOOK_POSITIONS,
        "instagram_positions": INSTAGRAM_POSITIONS,
    }


def adset_params(
    name: str,
    campaign_id: str,
    daily_budget_cents: int,
    targeting: Dict[str, Any],
    page_id: str,
    start_time: datetime,
) -> Dict[str, str]:
    return {
        "name": f"{name} - Ad Set",
        "campaign_id": campaign_id,
        "daily_budget": str(daily_budget_cents),
        "billing_event": "IMPRESSIONS",
        "optimization_goal": "LEAD_GENERATION",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
        "targeting": json.dumps(targeting),
        "promoted_object": json.dumps({"page_id": page_id}),
        "destination_type": "ON_AD",
        "status": PAUSED,
        "start_time": start_time.isoformat(),
    }


# ── Lead Form ──


def leadform_path(page_id: str) -> str:
    return f"/{page_id}/leadgen_forms"


def leadform_params(
    business_name: str, privacy_policy_url: str, now: datetime
) -> Dict[str, str]:
    return {
        "name": f"{business_name} Lead Form - {int(now.timestamp() * 1000)}",
        "questions": json.dumps(LEAD_FORM_QUESTIONS),
        "privacy_policy": json.dumps(
            {"url": privacy_policy_url, "link_text": "Privacy Policy"}
        ),
        "thank_you_page": json.dumps(
            {
                "title": "Thanks for your enquiry!",
                "body": f"{business_name} will be in touch shortly.",
                "button_type": "NONE",
            }
        ),
    }


# ── Creative ──


def creative_path(ad_account_id: str) -> str:
    return f"/act_{ad_account_id}/adcreatives"


def creative_params(
    name: str,
    page_id: str,
    leadform_id: str,
    headline: str,
    body: str,
    variant: CreativeVariant,
    link_url: str,
) -> Dict[str, str]:
    link_data: Dict[str, Any] = {
        "message": body,
        "name": headline,
        "link": link_url,
        "call_to_action": {
            "type": map_cta(variant.cta),
            "value": {"lead_gen_form_id": leadform_id},
        },
    }
    if variant.image_url:
        link_data["picture"] = variant.image_url

    return {
        "name": f"{name} - Creative",
        "object_story_spec": json.dumps({"page_id": page_id, "link_data": link_data}),
    }


# ── Ad ──


def ad_path(ad_account_id: str) -> str:
    return f"/act_{ad_account_id}/ads"


def ad_params(name: str, adset_id: str, creative_id: str) -> Dict[str, str]:
    return {
        "name": f"{name} - Ad",
        "adset_id": adset_id,
        "creative": json.dumps({"creative_id": creative_id}),
        "status": PAUSED,
    }


# ── Insights ──


def insights_path(meta_campaign_id: str) -> str:
    return f"/{meta_campaign_id}/insights"


def insights_params() -> Dict[str, str]:
    return {"fields": INSIGHT_FIELDS, "date_preset": "lifetime"}


# ── Conversions API ──

GOOD_LEAD_VALUE = 100


def _normalize_phone(raw: str, local_prefix: str) -> str:
    phone = re.sub(r"\s+", "", raw)
    if phone.startswith("0") and local_prefix:
        phone = local_prefix + phone[1:]
    return phone


def _hashed(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


def conversion_user_data(
    email: Optional[str] = None,
    phone: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    local_phone_prefix: str = "",
) -> Dict[str, str]:
    """Matching keys for a lead, normalized then SHA-256 hashed as Meta requires."""
    fields = {
        "em": email.strip().lower() if email else None,
        "ph": _normalize_phone(phone, local_phone_prefix) if phone else None,
        "fn": first_name.strip().lower() if first_name else None,
        "ln": last_name.strip().lower() if last_name else None,
    }
    return {key: _hashed(value) for key, value in fields.items() if value}


def lead_quality_event(
    quality: str,
    lead_id: str,
    campaign_id: str,
    user_data: Dict[str, str],
    now: datetime,
    event_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Good leads are reported as ``Lead`` with value, bad ones as a zero-value ``Other``."""
    good = quality == "good"
    event: Dict[str, Any] = {
        "event_name": "Lead" if good else "Other",
        "event_time": int(now.timestamp()),
        "action_source": "system",
        "user_data": user_data,
        "custom_data": {
            "lead_quality": quality,
            "lead_id": lead_id,
            "campaign_id": campaign_id,
            "value": GOOD_LEAD_VALUE if good else 0,
            "currency": "USD",
        },
    }
    if event_id:
        event["event_id"] = event_id
    return event
