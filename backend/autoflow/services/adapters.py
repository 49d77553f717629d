"""Boundary adapters for loosely-shaped backend payloads.

The backend has shipped several payload shapes over time. Each adapter here
is total: it never raises, and falls back to a default (usually ``None`` or
an empty list) when the input is unusable. Everything past this module only
sees the canonical models.
"""

import logging
import math
from typing import Any

from pydantic import ValidationError

from autoflow.models import (
    AutomationKind,
    AutomationNode,
    AutomationRunResponse,
    AutomationRunResult,
    AutomationStatus,
    NodePosition,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

# Wrapper keys under which list payloads have been observed
STATUS_LIST_KEYS = ("nodes", "statuses", "automations", "items", "data")


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _point(value: Any) -> NodePosition | None:
    if not isinstance(value, dict):
        return None
    x = _as_number(value.get("x"))
    y = _as_number(value.get("y"))
    if x is None or y is None:
        return None
    return NodePosition(x=x, y=y)


def normalize_position(raw: Any) -> NodePosition | None:
    """Extract a manual position from a raw node payload.

    Accepts ``position: {x, y}``, flat ``positionX``/``positionY`` and
    ``layout: {x, y}``, in that order of preference.
    """
    if not isinstance(raw, dict):
        return None

    position = _point(raw.get("position"))
    if position is not None:
        return position

    x = _as_number(raw.get("positionX"))
    y = _as_number(raw.get("positionY"))
    if x is not None and y is not None:
        return NodePosition(x=x, y=y)

    return _point(raw.get("layout"))


def normalize_status(raw: Any) -> AutomationStatus:
    """Map any free-text status onto the four durable statuses."""
    if isinstance(raw, AutomationStatus):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return AutomationStatus.OPERATIONAL

    text = raw.lower()
    if "monitor" in text:
        return AutomationStatus.MONITORING
    if "warn" in text or "watch" in text:
        return AutomationStatus.WARNING
    if "error" in text or "down" in text or "offline" in text:
        return AutomationStatus.ERROR
    return AutomationStatus.OPERATIONAL


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    seen: list[str] = []
    for item in value:
        if isinstance(item, str) and item.strip() and item not in seen:
            seen.append(item)
    return seen


def adapt_node(raw: Any) -> AutomationNode | None:
    """Build an ``AutomationNode`` from one raw snapshot entry."""
    if not isinstance(raw, dict):
        return None
    code = _as_text(raw.get("code"))
    if code is None:
        return None

    kind = (
        AutomationKind.MEDIA_FETCHER
        if raw.get("kind") == AutomationKind.MEDIA_FETCHER.value
        else AutomationKind.WEBHOOK
    )
    webhook_url = _as_text(raw.get("webhookUrl"))
    connected = raw.get("connected")
    if not isinstance(connected, bool):
        connected = bool(webhook_url) or kind == AutomationKind.MEDIA_FETCHER

    sequence = _as_number(raw.get("sequence"))

    # Only reported durable fields are set, so model_fields_set tells them apart.
    durable: dict[str, Any] = {}
    if raw.get("status") is not None:
        durable["status"] = normalize_status(raw["status"])
    if isinstance(raw.get("statusLabel"), str):
        durable["status_label"] = raw["statusLabel"]
    last_run = _as_text(raw.get("lastRun"))
    if last_run is not None:
        durable["last_run"] = last_run

    try:
        return AutomationNode(
            code=code,
            name=_as_text(raw.get("name")) or _as_text(raw.get("title")) or code,
            headline=_as_text(raw.get("headline")) or _as_text(raw.get("step")) or "",
            description=raw.get("description") if isinstance(raw.get("description"), str) else "",
            function=raw.get("function") if isinstance(raw.get("function"), str) else "",
            ai_assist=raw.get("aiAssist") if isinstance(raw.get("aiAssist"), str) else "",
            deliverables=_string_list(raw.get("deliverables")),
            dependencies=_string_list(raw.get("dependencies")),
            sequence=int(sequence) if sequence is not None else 0,
            kind=kind,
            webhook_path=_as_text(raw.get("webhookPath")),
            webhook_url=webhook_url,
            connected=connected,
            position=normalize_position(raw),
            **durable,
        )
    except ValidationError as e:
        logger.warning(f"Skipping malformed automation node {code!r}: {e}")
        return None


def adapt_nodes_payload(payload: Any) -> list[AutomationNode]:
    """Adapt a ``GET /automations`` snapshot into nodes, first code wins."""
    entries = payload.get("nodes") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        return []

    nodes: list[AutomationNode] = []
    seen: set[str] = set()
    for entry in entries:
        node = adapt_node(entry)
        if node is None:
            logger.warning(f"Ignoring unusable automation entry: {entry!r:.120}")
            continue
        if node.code in seen:
            logger.warning(f"Duplicate automation code {node.code!r} in snapshot")
            continue
        seen.add(node.code)
        nodes.append(node)
    return nodes


def adapt_status_entry(raw: Any, code: str | None = None) -> StatusUpdate | None:
    """Adapt one status entry; ``code`` is supplied for code-keyed maps."""
    if isinstance(raw, str) and code:
        return StatusUpdate(code=code, status=normalize_status(raw))
    if not isinstance(raw, dict):
        return None

    entry_code = _as_text(raw.get("code")) or code
    if entry_code is None:
        return None

    status = raw.get("status")
    label = raw.get("statusLabel")
    connected = raw.get("connected")
    return StatusUpdate(
        code=entry_code,
        status=normalize_status(status) if status is not None else None,
        status_label=label if isinstance(label, str) else None,
        connected=connected if isinstance(connected, bool) else None,
        last_run=_as_text(raw.get("lastRun")),
    )


def adapt_status_payload(payload: Any) -> list[StatusUpdate]:
    """Adapt a ``GET /automations/status`` payload.

    Accepts a bare list, a wrapper object holding a list, or an object keyed
    by node code.
    """
    entries: list[tuple[Any, str | None]] = []

    if isinstance(payload, list):
        entries = [(item, None) for item in payload]
    elif isinstance(payload, dict):
        wrapped = next(
            (payload[key] for key in STATUS_LIST_KEYS if isinstance(payload.get(key), list)),
            None,
        )
        if wrapped is not None:
            entries = [(item, None) for item in wrapped]
        elif "code" in payload:
            entries = [(payload, None)]
        else:
            entries = [(value, key) for key, value in payload.items()]

    updates: list[StatusUpdate] = []
    for raw, code in entries:
        update = adapt_status_entry(raw, code)
        if update is not None:
            updates.append(update)
    return updates


def adapt_run_record(raw: Any) -> AutomationRunResult | None:
    """Validate one run-like object; ``finishedAt`` must be a string."""
    if not isinstance(raw, dict) or not isinstance(raw.get("finishedAt"), str):
        return None
    try:
        return AutomationRunResult.model_validate(raw)
    except ValidationError as e:
        logger.debug(f"Discarding malformed run record: {e}")
        return None


def adapt_run_response(raw: Any) -> AutomationRunResponse | None:
    """Recognise a structured ``{automation, execution, cascade}`` response."""
    if not isinstance(raw, dict):
        return None
    if not isinstance(raw.get("automation"), dict) or not isinstance(raw.get("execution"), dict):
        return None

    primary = adapt_node(raw["automation"])
    if primary is None:
        return None

    cascade = []
    for entry in raw.get("cascade") or []:
        if not isinstance(entry, dict):
            continue
        node = adapt_node(entry.get("automation"))
        execution = entry.get("execution")
        if node is None or not isinstance(execution, dict):
            continue
        cascade.append({"automation": node, "execution": execution})

    try:
        return AutomationRunResponse.model_validate(
            {"automation": primary, "execution": raw["execution"], "cascade": cascade}
        )
    except ValidationError as e:
        logger.warning(f"Unrecognised run response shape: {e}")
        return None
