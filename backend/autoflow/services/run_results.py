"""Turning a trigger response into a uniform run record.

The run endpoint may answer with a structured ``{automation, execution,
cascade}`` document, with a bare run record, or with anything at all (a
webhook's raw body, an HTML error page, nothing). ``read_trigger_response``
always produces an ``AutomationRunResult`` so callers never have to care.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from autoflow.client.errors import error_message
from autoflow.models import (
    AutomationNode,
    AutomationRunResponse,
    AutomationRunResult,
    CascadeEntry,
)
from autoflow.services.adapters import adapt_run_record, adapt_run_response


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


@dataclass
class TriggerReading:
    """What a trigger response means for the coordinator."""

    ok: bool
    result: AutomationRunResult
    automation: AutomationNode | None = None
    cascade: list[CascadeEntry] = field(default_factory=list)
    message: str | None = None


def _parse_body(response: httpx.Response) -> tuple[Any, bool]:
    """Return ``(body, parsed_as_json)``; falls back to the raw text."""
    if not response.content:
        return None, False
    try:
        return response.json(), True
    except ValueError:
        return response.text, False


def failure_message(response: httpx.Response, body: Any) -> str:
    fallback = f"HTTP {response.status_code} {response.reason_phrase}".strip()
    return error_message(body, fallback)


def read_trigger_response(
    code: str,
    response: httpx.Response,
    started_at: datetime,
    request_payload: Any = None,
    webhook_url: str | None = None,
) -> TriggerReading:
    """Interpret the response of ``POST /automations/run/{code}``.

    Never raises: unknown shapes are synthesized from status, headers and
    text, and the body is kept verbatim on the result.
    """
    finished_at = utc_now()
    body, is_json = _parse_body(response)
    headers = dict(response.headers)
    duration_ms = (finished_at - started_at).total_seconds() * 1000

    structured: AutomationRunResponse | None = adapt_run_response(body) if is_json else None
    if structured is not None:
        execution = structured.execution
        ok = response.is_success and execution.status.lower() != "error"
        message = None
        if not ok:
            message = error_message(
                execution.result if execution.result is not None else execution.logs,
                failure_message(response, body),
            )
        result = AutomationRunResult(
            code=code,
            ok=ok,
            http_status=response.status_code,
            status_text=response.reason_phrase,
            webhook_url=structured.automation.webhook_url or webhook_url,
            started_at=execution.started_at or isoformat(started_at),
            finished_at=execution.finished_at or isoformat(finished_at),
            duration_ms=duration_ms,
            request_payload=request_payload,
            response_body=body,
            response_headers=headers,
            error=message,
        )
        return TriggerReading(
            ok=ok,
            result=result,
            automation=structured.automation,
            cascade=structured.cascade,
            message=message,
        )

    record = adapt_run_record(body) if is_json else None
    if record is not None:
        ok = response.is_success and record.ok
        message = None
        if not ok:
            message = record.error or failure_message(response, record.response_body)
        result = record.model_copy(
            update={
                "code": record.code or code,
                "ok": ok,
                "http_status": record.http_status or response.status_code,
                "status_text": record.status_text or response.reason_phrase,
                "webhook_url": record.webhook_url or webhook_url,
                "request_payload": (
                    record.request_payload
                    if record.request_payload is not None
                    else request_payload
                ),
                "response_headers": record.response_headers or headers,
                "error": message,
            }
        )
        return TriggerReading(ok=ok, result=result, message=message)

    ok = response.is_success
    if ok and isinstance(body, dict) and body.get("ok") is False:
        ok = False
    message = None if ok else failure_message(response, body)
    result = AutomationRunResult(
        code=code,
        ok=ok,
        http_status=response.status_code,
        status_text=response.reason_phrase,
        webhook_url=webhook_url,
        started_at=isoformat(started_at),
        finished_at=isoformat(finished_at),
        duration_ms=duration_ms,
        request_payload=request_payload,
        response_body=body,
        response_headers=headers,
        error=message,
    )
    return TriggerReading(ok=ok, result=result, message=message)
