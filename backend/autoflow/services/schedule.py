"""Per-node schedule normalization.

Schedule payloads have used several key spellings over time. Each field of
``AutomationScheduleSettings`` is read from the first alias that is present
and falls back to its default independently of the others.
"""

import re
from typing import Any

from autoflow.config import settings
from autoflow.models import AutomationScheduleSettings, ScheduleFrequency

DEFAULT_TIME_OF_DAY = "09:00"
DEFAULT_DAY_OF_WEEK = "monday"

_TIME_PATTERN = re.compile(r"([0-9]{1,2})(?::([0-9]{2}))?")

ENABLED_KEYS = ("enabled", "active", "auto", "automatic")
FREQUENCY_KEYS = ("frequency", "interval", "cadence")
TIME_KEYS = ("timeOfDay", "time", "at")
DAY_KEYS = ("dayOfWeek", "weekday", "day")
TIMEZONE_KEYS = ("timezone", "tz")

FREQUENCIES = {frequency.value for frequency in ScheduleFrequency}


def default_schedule(timezone: str | None = None) -> AutomationScheduleSettings:
    return AutomationScheduleSettings(timezone=timezone or settings.timezone)


def sanitize_time(value: str) -> str:
    """Normalize ``H``, ``HH``, ``H:MM`` or ``HH:MM`` to zero-padded ``HH:MM``.

    Out-of-range components are clamped (``"25:99"`` becomes ``"23:59"``);
    anything else falls back to ``09:00``.
    """
    match = _TIME_PATTERN.fullmatch(value)
    if match is None:
        return DEFAULT_TIME_OF_DAY

    hours = min(23, max(0, int(match.group(1))))
    minutes = min(59, max(0, int(match.group(2) or 0)))
    return f"{hours:02d}:{minutes:02d}"


def _first_present(source: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = source.get(key)
        if value is not None:
            return value
    return None


def normalize_schedule(
    payload: Any, default_timezone: str | None = None
) -> AutomationScheduleSettings:
    """Turn any schedule payload into fully-defaulted settings. Never raises."""
    defaults = default_schedule(default_timezone)
    if not isinstance(payload, dict) or not payload:
        return defaults

    enabled = _first_present(payload, ENABLED_KEYS)
    if not isinstance(enabled, bool):
        enabled = defaults.enabled

    frequency = defaults.frequency
    raw_frequency = _first_present(payload, FREQUENCY_KEYS)
    if isinstance(raw_frequency, str) and raw_frequency.lower() in FREQUENCIES:
        frequency = ScheduleFrequency(raw_frequency.lower())

    raw_time = _first_present(payload, TIME_KEYS)
    time_of_day = sanitize_time(raw_time) if isinstance(raw_time, str) else defaults.time_of_day

    raw_day = _first_present(payload, DAY_KEYS)
    day_of_week = raw_day.lower() if isinstance(raw_day, str) else defaults.day_of_week

    raw_timezone = _first_present(payload, TIMEZONE_KEYS)
    timezone = (
        raw_timezone
        if isinstance(raw_timezone, str) and raw_timezone.strip()
        else defaults.timezone
    )

    return AutomationScheduleSettings(
        enabled=enabled,
        frequency=frequency,
        time_of_day=time_of_day,
        day_of_week=day_of_week,
        timezone=timezone,
    )


def to_wire_payload(schedule: AutomationScheduleSettings) -> dict[str, Any]:
    """camelCase body accepted by ``PUT /automations/{code}/schedule``."""
    return schedule.model_dump(mode="json", by_alias=True)


def disable_payload() -> dict[str, Any]:
    return {"enabled": False}
