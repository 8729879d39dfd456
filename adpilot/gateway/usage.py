"""ADPILOT - Usage Recording.

One ``api_usage`` row per completed, authenticated request. Writes run as a
background task after the response has been sent: delivery is at-most-once
and best-effort, failures are logged and dropped, and nothing on the
request path waits for them.
"""

import time
from dataclasses import dataclass
from typing import Callable

from fastapi import Request
from sqlmodel import Session
from starlette.background import BackgroundTask
from starlette.middleware.base import BaseHTTPMiddleware

from adpilot.core.logging import get_logger
from adpilot.models.keys import ApiKey, ApiUsage, utcnow

logger = get_logger("gateway.usage")


@dataclass(frozen=True)
class UsageEvent:
    api_key_id: str
    endpoint: str
    method: str
    status_code: int
    response_time_ms: int


class UsageRecorder:
    """Writes usage rows and last-used stamps against the key store."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def record(self, event: UsageEvent) -> None:
        try:
            with self.session_factory() as session:
                session.add(
                    ApiUsage(
                        api_key_id=event.api_key_id,
                        endpoint=event.endpoint,
                        method=event.method,
                        status_code=event.status_code,
                        response_time_ms=event.response_time_ms,
                    )
                )
                session.commit()
        except Exception as e:
            logger.warning(
                f"Usage write dropped: {e}",
                extra={"api_key_id": event.api_key_id, "endpoint": event.endpoint},
            )

    def stamp_last_used(self, key_id: str) -> None:
        try:
            with self.session_factory() as session:
                key = session.get(ApiKey, key_id)
                if key is None:
                    return
                key.last_used_at = utcnow()
                session.add(key)
                session.commit()
        except Exception as e:
            logger.warning(f"last_used_at stamp dropped: {e}", extra={"api_key_id": key_id})


def _endpoint_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class UsageMiddleware(BaseHTTPMiddleware):
    """Attaches rate-limit headers and schedules the usage write.

    Both only apply once ``require_api_key`` has accepted the request; the
    headers are the ones computed during authentication, never recomputed.
    """

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)

        for name, value in (getattr(request.state, "rate_limit_headers", None) or {}).items():
            response.headers.setdefault(name, value)

        key_id = getattr(request.state, "api_key_id", None)
        if key_id:
            recorder: UsageRecorder = request.app.state.usage_recorder
            event = UsageEvent(
                api_key_id=key_id,
                endpoint=_endpoint_label(request),
                method=request.method,
                status_code=response.status_code,
                response_time_ms=int((time.perf_counter() - started) * 1000),
            )
            response.background = BackgroundTask(recorder.record, event)
        return response
