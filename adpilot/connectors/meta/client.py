"""ADPILOT - Meta Graph API Client.

One method call = one HTTP request against one Graph resource. No retries:
the launch saga decides what a failure means, and a retried create could
leave a duplicate behind.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from adpilot.config import settings
from adpilot.core.logging import get_logger

logger = get_logger("meta.client")


class MetaTransportError(Exception):
    """Raised when Meta could not be reached or did not answer in time."""


@dataclass(frozen=True)
class MetaOk:
    resource_id: Optional[str]


@dataclass(frozen=True)
class MetaErr:
    code: int
    message: str
    raw: Any


MetaOutcome = Union[MetaOk, MetaErr]


@dataclass(frozen=True)
class MetaResponse:
    """Parsed Graph response. ``data`` is always a dict, even for bad bodies."""

    ok: bool
    status_code: int
    data: Dict[str, Any]
    raw_body: str

    @property
    def error(self) -> Optional[Dict[str, Any]]:
        err = self.data.get("error")
        return err if isinstance(err, dict) else None

    def outcome(self, failure_message: str, require_id: bool = True) -> MetaOutcome:
        """Collapse the response into MetaOk or MetaErr.

        Create calls need an ``id`` in the body; status updates only need a 2xx.
        """
        resource_id = self.data.get("id")
        if self.ok and self.error is None and (resource_id or not require_id):
            return MetaOk(resource_id=str(resource_id) if resource_id else None)
        err = self.error or {}
        return MetaErr(
            code=_error_code(err.get("code")),
            message=err.get("message") or failure_message,
            raw=self.error,
        )


def _error_code(value: Any) -> int:
    """Graph error codes are ints; anything else reads as 0."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _parse_body(raw_body: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw_body)
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data
    return {
        "error": {
            "message": f"Non-JSON response: {raw_body[:500]}",
            "type": "ParseError",
            "code": -1,
        }
    }


class MetaClient:
    """Async HTTP client for the Meta Marketing API."""

    def __init__(
        self,
        access_token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.access_token = access_token
        self.base_url = base_url or settings.meta_graph_base
        self.timeout = timeout or settings.meta_request_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "MetaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ── Core Request Method ──

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        form: Dict[str, str] | None = None,
        json_body: Dict[str, Any] | None = None,
    ) -> MetaResponse:
        url = f"{self.base_url}{path}"
        client = await self._get_client()
        try:
            resp = await client.request(
                method, url, params=params, data=form, json=json_body
            )
        except httpx.RequestError as e:
            logger.error(f"{method} {path} failed: {e!r}")
            raise MetaTransportError(f"{type(e).__name__}: {e}") from e

        raw_body = resp.text
        return MetaResponse(
            ok=resp.is_success,
            status_code=resp.status_code,
            data=_parse_body(raw_body),
            raw_body=raw_body,
        )

    # ── Resource operations ──

    async def post(self, path: str, params: Dict[str, str]) -> MetaResponse:
        """Create or update a resource with a form-encoded body."""
        form = dict(params)
        form["access_token"] = self.access_token
        return await self._request("POST", path, form=form)

    async def set_status(self, resource_id: str, status: str) -> MetaResponse:
        return await self.post(f"/{resource_id}", {"status": status})

    async def delete(self, resource_id: str) -> MetaResponse:
        return await self._request(
            "DELETE", f"/{resource_id}", params={"access_token": self.access_token}
        )

    async def get(self, path: str, params: Dict[str, Any] | None = None) -> MetaResponse:
        query = dict(params or {})
        query["access_token"] = self.access_token
        return await self._request("GET", path, params=query)

    async def send_events(self, pixel_id: str, events: List[Dict[str, Any]]) -> MetaResponse:
        """Upload server-side events to a pixel (Conversions API, JSON body)."""
        return await self._request(
            "POST",
            f"/{pixel_id}/events",
            json_body={"data": events, "access_token": self.access_token},
        )
