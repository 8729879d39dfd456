"""AuthGateway: header parsing, key lookup, revocation and the sliding window."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from adpilot.config import TierLimit, settings
from adpilot.core.errors import AuthRejected, RateLimitExceeded
from adpilot.database import engine
from adpilot.gateway.auth import AuthGateway, extract_bearer, hash_key

from conftest import add_usage, make_key

RAW = "ap_live_aaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"


@pytest.fixture
def gateway():
    return AuthGateway(settings.tier_limits, window_seconds=60)


def _authenticate(gateway, header):
    with Session(engine) as session:
        return gateway.authenticate(session, header)


def test_hash_is_sha256_hex():
    digest = hash_key("ap_live_abc")
    assert len(digest) == 64
    assert digest == hash_key("ap_live_abc")
    assert digest != hash_key("ap_live_abd")


@pytest.mark.parametrize(
    "header,expected",
    [
        (None, None),
        ("", None),
        ("Basic abc", None),
        ("bearer abc", None),
        ("Bearer ", ""),
        ("Bearer   ", ""),
        ("Bearer abc", "abc"),
    ],
)
def test_extract_bearer(header, expected):
    assert extract_bearer(header) == expected


@pytest.mark.parametrize("header", [None, "Token abc", "Bearer "])
def test_missing_or_empty_key_rejected(gateway, header):
    with pytest.raises(AuthRejected) as exc:
        _authenticate(gateway, header)
    assert exc.value.status_code == 401
    assert exc.value.code == "missing_api_key"


def test_unknown_key_rejected(gateway):
    make_key(RAW)
    with pytest.raises(AuthRejected) as exc:
        _authenticate(gateway, "Bearer ap_live_somethingelse")
    assert exc.value.code == "invalid_api_key"


def test_revocation_wins_over_rate_limit(gateway):
    key = make_key(RAW, rate_limit_per_min=1, revoked_at=datetime.now(timezone.utc))
    add_usage(key.id, 5)

    with pytest.raises(AuthRejected) as exc:
        _authenticate(gateway, f"Bearer {RAW}")
    assert exc.value.code == "revoked_api_key"


def test_sliding_window_rejects_third_request(gateway):
    key = make_key(RAW, rate_limit_per_min=2)
    add_usage(key.id, 2, age_seconds=10)

    with pytest.raises(RateLimitExceeded) as exc:
        _authenticate(gateway, f"Bearer {RAW}")

    err = exc.value
    assert err.status_code == 429
    assert err.to_body()["error"]["code"] == "rate_limit_exceeded"
    assert err.to_body()["error"]["retry_after"] == 60
    assert err.headers["X-RateLimit-Limit"] == "2"
    assert err.headers["X-RateLimit-Remaining"] == "0"


def test_usage_outside_window_is_ignored(gateway):
    key = make_key(RAW, rate_limit_per_min=2)
    add_usage(key.id, 5, age_seconds=120)
    add_usage(key.id, 1, age_seconds=10)

    principal = _authenticate(gateway, f"Bearer {RAW}")
    assert principal.decision.allowed
    assert principal.headers["X-RateLimit-Remaining"] == "1"


def test_reset_is_now_plus_window():
    fixed = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    gateway = AuthGateway(settings.tier_limits, window_seconds=60, clock=lambda: fixed)
    make_key(RAW)

    principal = _authenticate(gateway, f"Bearer {RAW}")
    assert principal.headers["X-RateLimit-Reset"] == str(int(fixed.timestamp()) + 60)


def test_tier_defaults_and_overrides(gateway):
    make_key(RAW, tier="enterprise")
    principal = _authenticate(gateway, f"Bearer {RAW}")
    assert principal.tier == "enterprise"
    assert principal.rate_limit_per_min == 300
    assert principal.rate_limit_per_day == 50_000

    other = "ap_test_bbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
    make_key(other, tier="pro", rate_limit_per_min=7)
    principal = _authenticate(gateway, f"Bearer {other}")
    assert principal.rate_limit_per_min == 7
    assert principal.rate_limit_per_day == 5_000


def test_unknown_tier_falls_back_to_free(gateway):
    make_key(RAW, tier="platinum")
    principal = _authenticate(gateway, f"Bearer {RAW}")
    assert principal.tier == "free"
    assert principal.rate_limit_per_min == 10


def test_tier_table_is_read_only(gateway):
    with pytest.raises(TypeError):
        gateway.tier_limits["free"] = TierLimit(per_minute=1, per_day=1)


def test_tier_table_requires_free():
    with pytest.raises(ValueError):
        AuthGateway({"pro": TierLimit(per_minute=1, per_day=1)})


def test_window_counts_from_injected_clock():
    key = make_key(RAW, rate_limit_per_min=1)
    add_usage(key.id, 1, age_seconds=10)
    later = datetime.now(timezone.utc) + timedelta(seconds=120)
    gateway = AuthGateway(settings.tier_limits, window_seconds=60, clock=lambda: later)

    principal = _authenticate(gateway, f"Bearer {RAW}")
    assert principal.decision.allowed
