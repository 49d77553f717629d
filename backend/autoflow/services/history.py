"""Run-history normalization and merging.

The runs endpoint has answered with bare arrays, wrapped arrays, a lone
``lastRun`` object and a single run record. ``normalize_run_history``
flattens all of them into one sorted list of ``AutomationRunResult``.
"""

import json
import math
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from pydantic import Field as PydanticField

from autoflow.models import AutomationRunResult
from autoflow.services.adapters import adapt_run_record

FULL_HISTORY_LIMIT = 25
COMPACT_HISTORY_LIMIT = 5

RUN_LIST_KEYS = ("runs", "history", "items", "data")
PREVIEW_LIMIT = 220


class NormalizedRunHistory(BaseModel):
    """Sorted runs plus the most recent one."""

    last_run: AutomationRunResult | None = PydanticField(default=None, alias="lastRun")
    runs: list[AutomationRunResult] = PydanticField(default_factory=list)

    model_config = {"populate_by_name": True}


def _records(candidates: Iterable[Any]) -> list[AutomationRunResult]:
    records = []
    for candidate in candidates:
        record = adapt_run_record(candidate)
        if record is not None:
            records.append(record)
    return records


def coerce_runs(payload: Any) -> list[AutomationRunResult]:
    """Extract run records from any known payload shape."""
    if not payload:
        return []
    if isinstance(payload, list):
        return _records(payload)
    if not isinstance(payload, dict):
        return []

    for key in RUN_LIST_KEYS:
        if isinstance(payload.get(key), list):
            return _records(payload[key])

    if isinstance(payload.get("lastRun"), dict) and payload["lastRun"]:
        return _records([payload["lastRun"]])

    if "code" in payload and "finishedAt" in payload:
        return _records([payload])

    return []


def _finished_timestamp(run: AutomationRunResult) -> float | None:
    try:
        finished = datetime.fromisoformat(run.finished_at)
    except ValueError:
        return None
    if finished.tzinfo is None:
        finished = finished.replace(tzinfo=timezone.utc)
    return finished.timestamp()


def sort_runs(runs: Iterable[AutomationRunResult]) -> list[AutomationRunResult]:
    """Most recent first; unparseable timestamps sink to the end."""
    stamped = [(run, _finished_timestamp(run)) for run in runs]
    dated = sorted(
        (item for item in stamped if item[1] is not None),
        key=lambda item: item[1],
        reverse=True,
    )
    undated = [item for item in stamped if item[1] is None]
    return [run for run, _ in dated + undated]


def normalize_run_history(payload: Any) -> NormalizedRunHistory:
    """Flatten, validate and sort a run-history payload.

    ``last_run`` is the payload's explicit ``lastRun`` when it validates,
    otherwise the newest run.
    """
    runs = sort_runs(coerce_runs(payload))

    last_run = None
    if isinstance(payload, dict) and isinstance(payload.get("lastRun"), dict):
        last_run = adapt_run_record(payload["lastRun"])
    if last_run is None and runs:
        last_run = runs[0]

    return NormalizedRunHistory(last_run=last_run, runs=runs)


def merge_run(
    runs: Iterable[AutomationRunResult],
    run: AutomationRunResult,
    limit: int = FULL_HISTORY_LIMIT,
) -> list[AutomationRunResult]:
    """Add ``run`` to a history, deduplicated by ``(code, finished_at)``.

    The newcomer replaces an existing record with the same identity. The
    result is sorted newest first and capped at ``limit``.
    """
    merged = [existing for existing in runs if existing.identity != run.identity]
    merged.append(run)
    return sort_runs(merged)[:limit]


def merge_runs(
    runs: Iterable[AutomationRunResult],
    incoming: Iterable[AutomationRunResult],
    limit: int = FULL_HISTORY_LIMIT,
) -> list[AutomationRunResult]:
    by_identity = {run.identity: run for run in runs}
    for run in incoming:
        by_identity[run.identity] = run
    return sort_runs(by_identity.values())[:limit]


def format_duration(ms: float | None) -> str:
    if ms is None or isinstance(ms, bool) or not isinstance(ms, (int, float)):
        return "—"
    if not math.isfinite(ms):
        return "—"
    if ms < 1000:
        return f"{math.floor(ms + 0.5)}ms"
    if ms < 60_000:
        return f"{ms / 1000:.1f}s"
    return f"{ms / 60_000:.1f}m"


def response_preview(body: Any) -> str:
    """Short printable rendering of a webhook response body."""
    if body is None:
        return "No response payload received."

    if isinstance(body, str):
        if not body.strip():
            return "Empty string received from webhook."
        text = body
    else:
        try:
            text = json.dumps(body, indent=2, ensure_ascii=False)
        except (TypeError, ValueError):
            return "Unable to display response payload."

    if len(text) > PREVIEW_LIMIT:
        return f"{text[:PREVIEW_LIMIT - 3]}…"
    return text
