"""
Request-level audit capture

ASGI middleware that classifies every non-exempt request/response pair and
hands the draft to the audit writer. The hook point is the final response
body message: the response is fully computed, and the draft is queued just
before that message goes out. Queuing never waits on persistence.
"""

import json
import time
from datetime import datetime, timezone
from typing import Any, Optional, Sequence
from urllib.parse import parse_qs

import structlog

from phi_guard.models.audit import EventType, Severity, raise_severity
from phi_guard.rules.audit_classifier import classify, extract_error_message, redact_secrets
from phi_guard.services.audit_writer import AuditWriter

logger = structlog.get_logger()


MAX_CAPTURED_BODY = 1024 * 1024
MAX_CAPTURED_ERROR = 64 * 1024
_MUTATING_METHODS = {"POST", "PUT", "PATCH"}


class AuditMiddleware:
    """Classify and queue an audit entry for each HTTP request"""

    def __init__(self, app, audit_writer: AuditWriter, exempt_paths: Sequence[str] = ()):
        self.app = app
        self.audit_writer = audit_writer
        self.exempt_paths = tuple(exempt_paths)

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http" or self._exempt(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        started = time.perf_counter()
        timestamp = datetime.now(timezone.utc)
        state = scope.setdefault("state", {})
        request_body = bytearray()
        error_body = bytearray()
        response = {"status": 500, "recorded": False}

        async def receive_wrapper():
            message = await receive()
            if message["type"] == "http.request":
                chunk = message.get("body", b"")
                if len(request_body) + len(chunk) <= MAX_CAPTURED_BODY:
                    request_body.extend(chunk)
            return message

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                response["status"] = message["status"]
            elif message["type"] == "http.response.body":
                if response["status"] >= 400 and len(error_body) < MAX_CAPTURED_ERROR:
                    error_body.extend(message.get("body", b""))
                if not message.get("more_body", False) and not response["recorded"]:
                    response["recorded"] = True
                    self._record(scope, state, response["status"], bytes(request_body),
                                 bytes(error_body), timestamp, started)
            await send(message)

        try:
            await self.app(scope, receive_wrapper, send_wrapper)
        except Exception:
            if not response["recorded"]:
                response["recorded"] = True
                self._record(scope, state, 500, bytes(request_body), b"", timestamp,
                             started, unhandled=True)
            raise

    def _exempt(self, path: str) -> bool:
        return any(path == p or path.startswith(p.rstrip("/") + "/") for p in self.exempt_paths)

    def _record(
        self,
        scope,
        state: dict,
        status: int,
        request_body: bytes,
        error_body: bytes,
        timestamp: datetime,
        started: float,
        unhandled: bool = False,
    ) -> None:
        try:
            method = scope.get("method", "")
            headers = _headers(scope)
            body = _parse_body(request_body, headers.get("content-type", ""))
            query = parse_qs(scope.get("query_string", b"").decode("latin-1"))
            duration_ms = int((time.perf_counter() - started) * 1000)

            draft = classify(method, scope.get("path", ""), status, body, query)

            actor = state.get("actor")
            client = scope.get("client")
            ip_address = client[0] if client else None
            update = {
                "actor_id": actor.actor_id if actor is not None else None,
                "ip_address": ip_address,
                "user_agent": headers.get("user-agent"),
                "location": headers.get("x-forwarded-for") or ip_address,
                "context": headers.get("x-request-context") or "API Request",
                "timestamp": timestamp,
                "duration_ms": duration_ms,
                "details": {
                    **draft.details,
                    "duration_ms": duration_ms,
                    "referer": headers.get("referer"),
                },
            }
            if status >= 400:
                update["error_message"] = (
                    "Unhandled server error" if unhandled else extract_error_message(error_body)
                )
            if unhandled:
                update["event_type"] = EventType.SYSTEM_ERROR
                update["severity"] = raise_severity(draft.severity, Severity.HIGH)
            if method in _MUTATING_METHODS and isinstance(body, dict):
                update["new_values"] = redact_secrets(body)

            self.audit_writer.submit(draft.model_copy(update=update))
        except Exception as e:
            logger.error(
                "audit_capture_failed",
                error=str(e),
                error_type=type(e).__name__,
                path=scope.get("path"),
            )


def _headers(scope) -> dict:
    return {
        key.decode("latin-1").lower(): value.decode("latin-1")
        for key, value in scope.get("headers", [])
    }


def _parse_body(raw: bytes, content_type: str) -> Optional[Any]:
    if not raw:
        return None
    if "application/json" in content_type:
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
    if "application/x-www-form-urlencoded" in content_type:
        return parse_qs(raw.decode("latin-1"))
    return None
