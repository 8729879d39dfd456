"""Lead-quality feedback to Meta's Conversions API."""

import hashlib

import pytest

from adpilot.config import settings
from adpilot.connectors.meta import endpoints


def _convert(client, draft_id, headers, **body):
    return client.post(f"/api/v1/campaigns/{draft_id}/conversions", json=body, headers=headers)


def _sha(value):
    return hashlib.sha256(value.encode()).hexdigest()


@pytest.fixture
def pixel(monkeypatch):
    monkeypatch.setattr(settings, "meta_pixel_id", "777000")
    return "777000"


def test_good_lead_is_sent_as_lead_event(client, graph, launched_draft, auth_headers, pixel):
    resp = _convert(
        client,
        launched_draft.id,
        auth_headers,
        lead_id="lead_1",
        quality="good",
        meta_lead_id="mlead_9",
        user_data={"email": " Jo@Example.com ", "phone": "0412 345 678", "first_name": "Jo"},
    )

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "capi_sent": True,
        "events_received": 1,
        "quality": "good",
        "lead_id": "lead_1",
    }

    call = graph.calls[0]
    assert call["step"] == "events"
    assert call["path"] == "/v21.0/777000/events"
    assert call["json"]["access_token"] == "stored_tok"
    event = call["json"]["data"][0]
    assert event["event_name"] == "Lead"
    assert event["action_source"] == "system"
    assert event["event_id"] == "mlead_9"
    assert event["custom_data"] == {
        "lead_quality": "good",
        "lead_id": "lead_1",
        "campaign_id": launched_draft.id,
        "value": 100,
        "currency": "USD",
    }
    assert event["user_data"] == {
        "em": _sha("jo@example.com"),
        "ph": _sha("+61412345678"),
        "fn": _sha("jo"),
    }


def test_bad_lead_is_a_zero_value_other_event(client, graph, launched_draft, auth_headers, pixel):
    _convert(client, launched_draft.id, auth_headers, lead_id="lead_2", quality="bad")

    event = graph.calls[0]["json"]["data"][0]
    assert event["event_name"] == "Other"
    assert event["custom_data"]["value"] == 0
    assert event["user_data"] == {}
    assert "event_id" not in event


def test_request_token_wins_over_stored(client, graph, launched_draft, auth_headers, pixel):
    _convert(
        client, launched_draft.id, auth_headers, lead_id="l", quality="good", meta_access_token="fresh"
    )
    assert graph.calls[0]["json"]["access_token"] == "fresh"


def test_without_pixel_quality_is_acknowledged_only(client, graph, launched_draft, auth_headers):
    resp = _convert(client, launched_draft.id, auth_headers, lead_id="lead_1", quality="good")

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["capi_sent"] is False
    assert graph.calls == []


def test_without_token_quality_is_acknowledged_only(client, graph, draft, auth_headers, pixel):
    resp = _convert(client, draft.id, auth_headers, lead_id="lead_1", quality="bad")

    assert resp.json()["capi_sent"] is False
    assert graph.calls == []


def test_upstream_rejection_is_capi_error(client, graph, launched_draft, auth_headers, pixel):
    upstream = {"error": {"message": "Invalid parameter", "code": 100}}
    graph.fail["events"] = (400, upstream)

    resp = _convert(client, launched_draft.id, auth_headers, lead_id="lead_1", quality="good")

    assert resp.status_code == 502
    assert resp.json()["error"] == {
        "code": "capi_error",
        "message": "Meta Conversion API returned an error",
        "details": upstream,
    }


def test_upstream_unreachable_is_capi_error(client, graph, launched_draft, auth_headers, pixel):
    graph.unreachable.add("events")

    resp = _convert(client, launched_draft.id, auth_headers, lead_id="lead_1", quality="good")

    assert resp.status_code == 502
    assert resp.json()["error"]["details"]["type"] == "TransportError"


@pytest.mark.parametrize(
    "body,message",
    [
        ({"quality": "good"}, "`lead_id` is required"),
        ({"lead_id": "lead_1"}, '`quality` must be "good" or "bad"'),
        ({"lead_id": "lead_1", "quality": "meh"}, '`quality` must be "good" or "bad"'),
    ],
)
def test_validation(client, graph, launched_draft, auth_headers, pixel, body, message):
    resp = _convert(client, launched_draft.id, auth_headers, **body)

    assert resp.status_code == 400
    assert resp.json()["error"] == {"code": "validation_error", "message": message}
    assert graph.calls == []


def test_unknown_campaign_is_not_found(client, graph, api_key, auth_headers, pixel):
    resp = _convert(client, "camp_nope", auth_headers, lead_id="lead_1", quality="good")

    assert resp.status_code == 404
    assert graph.calls == []


def test_user_data_normalization():
    user_data = endpoints.conversion_user_data(
        email="A@B.co", phone="020 7946 0000", last_name=" Smith ", local_phone_prefix="+44"
    )
    assert user_data == {
        "em": _sha("a@b.co"),
        "ph": _sha("+442079460000"),
        "ln": _sha("smith"),
    }
