"""Pytest configuration and fixtures for the ADPILOT test-suite."""

import json
import os
from datetime import timedelta
from urllib.parse import parse_qsl

# Settings and the engine are built at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ.pop("META_SYSTEM_USER_TOKEN", None)
os.environ.pop("META_PIXEL_ID", None)

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlmodel import SQLModel, Session

from adpilot.database import engine, init_db
from adpilot.gateway.auth import hash_key
from adpilot.gateway.identity import IdentityClient
from adpilot.main import create_app
from adpilot.models.campaigns import ApiCampaign
from adpilot.models.keys import ApiKey, ApiUsage, utcnow

GRAPH_PREFIX = "/v21.0"

CREATED_IDS = {
    "campaign": "cmp_1",
    "adset": "adset_1",
    "leadform": "lf_1",
    "creative": "cr_1",
    "ad": "ad_1",
}


class FakeGraph:
    """In-memory stand-in for the Graph API behind an httpx.MockTransport.

    Each request is classified into a step name (``campaign``, ``adset``,
    ``leadform``, ``creative``, ``ad``, ``status:<id>``, ``delete:<id>``,
    ``insights``, ``events``). ``fail`` maps a step to ``(status, body)``;
    ``unreachable`` holds steps that raise a connect error instead of
    answering, and ``explode`` maps a step to an arbitrary exception to raise.
    """

    def __init__(self):
        self.calls = []
        self.fail = {}
        self.unreachable = set()
        self.explode = {}
        self.insights = {"data": []}
        self.transport = httpx.MockTransport(self.handle)

    @staticmethod
    def classify(request: httpx.Request) -> str:
        path = request.url.path
        if path.startswith(GRAPH_PREFIX):
            path = path[len(GRAPH_PREFIX):]
        if path.endswith("/insights"):
            return "insights"
        if path.endswith("/events"):
            return "events"
        if request.method == "DELETE":
            return f"delete:{path.strip('/')}"
        for suffix, step in (
            ("/campaigns", "campaign"),
            ("/adsets", "adset"),
            ("/leadgen_forms", "leadform"),
            ("/adcreatives", "creative"),
            ("/ads", "ad"),
        ):
            if path.endswith(suffix):
                return step
        return f"status:{path.strip('/')}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        step = self.classify(request)
        body = request.content.decode() if request.content else ""
        if request.headers.get("content-type", "").startswith("application/json"):
            form, payload = {}, json.loads(body)
        else:
            form, payload = dict(parse_qsl(body)), None
        self.calls.append(
            {
                "step": step,
                "method": request.method,
                "path": request.url.path,
                "form": form,
                "json": payload,
                "query": dict(request.url.params),
            }
        )

        if step in self.explode:
            raise self.explode[step]
        if step in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if step in self.fail:
            status, body = self.fail[step]
            if isinstance(body, str):
                return httpx.Response(status, text=body)
            return httpx.Response(status, json=body)
        if step in CREATED_IDS:
            return httpx.Response(200, json={"id": CREATED_IDS[step]})
        if step == "insights":
            return httpx.Response(200, json=self.insights)
        if step == "events":
            return httpx.Response(200, json={"events_received": len(payload["data"])})
        return httpx.Response(200, json={"success": True})

    # ── Query helpers ──

    def steps(self):
        return [c["step"] for c in self.calls]

    def deletes(self):
        return [s.split(":", 1)[1] for s in self.steps() if s.startswith("delete:")]

    def form_for(self, step: str) -> dict:
        for call in self.calls:
            if call["step"] == step:
                return call["form"]
        raise AssertionError(f"no call for step {step!r}")


# ── Database ──


@pytest.fixture(autouse=True)
def reset_db():
    """Fresh tables for every test on the shared in-memory engine."""
    init_db()
    yield
    SQLModel.metadata.drop_all(engine)


def load(model, pk):
    """Read a row through a fresh session."""
    with Session(engine) as session:
        return session.get(model, pk)


def usage_rows(key_id: str):
    from sqlmodel import select

    with Session(engine) as session:
        return session.exec(select(ApiUsage).where(ApiUsage.api_key_id == key_id)).all()


def add_usage(key_id: str, count: int, age_seconds: int = 5):
    with Session(engine) as session:
        for _ in range(count):
            session.add(
                ApiUsage(
                    api_key_id=key_id,
                    endpoint="/api/v1/campaigns/{campaign_id}/performance",
                    method="GET",
                    status_code=200,
                    response_time_ms=12,
                    created_at=utcnow() - timedelta(seconds=age_seconds),
                )
            )
        session.commit()


def make_key(raw: str = "ap_live_testkey0000000000000000000000", **fields) -> ApiKey:
    fields.setdefault("user_id", "user_1")
    fields.setdefault("tier", "pro")
    record = ApiKey(key_hash=hash_key(raw), key_prefix=raw[:16], **fields)
    with Session(engine) as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    return record


# ── Application ──


@pytest.fixture
def graph():
    return FakeGraph()


@pytest.fixture
def app(graph):
    application = create_app()
    application.state.meta_transport = graph.transport
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def raw_key():
    return "ap_live_0123456789abcdef0123456789abcdef"


@pytest.fixture
def api_key(raw_key):
    return make_key(raw_key)


@pytest.fixture
def auth_headers(raw_key, api_key):
    return {"Authorization": f"Bearer {raw_key}"}


@pytest.fixture
def draft(api_key):
    record = ApiCampaign(
        id="camp_test123",
        api_key_id=api_key.id,
        user_id=api_key.user_id,
        url="https://acmeplumbing.example",
        business_name="Acme Plumbing",
        business_type="plumber",
        targeting={
            "age_min": 30,
            "geo_locations": {
                "custom_locations": [
                    {"latitude": 40.7, "longitude": -74.0, "radius": 10, "distance_unit": "mile"}
                ]
            },
        },
        variants=[
            {
                "headline": "Burst pipe? We're on it.",
                "copy": "Licensed plumbers, 24/7.",
                "cta": "Get Quote",
                "image_url": "https://cdn.example/pipe.png",
            },
            {"headline": None, "copy": None, "cta": "Whatever"},
        ],
        daily_budget_cents=3500,
    )
    with Session(engine) as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    return record


@pytest.fixture
def launched_draft(api_key):
    record = ApiCampaign(
        id="camp_live1",
        api_key_id=api_key.id,
        user_id=api_key.user_id,
        business_name="Acme Plumbing",
        status="active",
        meta_campaign_id="cmp_9",
        meta_adset_id="adset_9",
        meta_leadform_id="lf_9",
        meta_creative_id="cr_9",
        meta_ad_id="ad_9",
        meta_access_token="stored_tok",
        launched_at=utcnow() - timedelta(hours=72),
    )
    with Session(engine) as session:
        session.add(record)
        session.commit()
        session.refresh(record)
    return record


@pytest.fixture
def launch_body():
    return {
        "meta_access_token": "user_tok",
        "meta_ad_account_id": "act_123",
        "meta_page_id": "555111",
    }


@pytest.fixture
def identity_calls():
    return []


@pytest.fixture
def identity(app, identity_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        identity_calls.append(request)
        if request.headers.get("authorization") == "Bearer good-session":
            return httpx.Response(200, json={"id": "user_42", "email": "owner@example.com"})
        return httpx.Response(401, json={"msg": "invalid JWT"})

    app.state.identity_client = IdentityClient(
        base_url="https://identity.test",
        anon_key="anon",
        transport=httpx.MockTransport(handler),
    )
    return app.state.identity_client


def form_json(form: dict, field: str):
    return json.loads(form[field])
