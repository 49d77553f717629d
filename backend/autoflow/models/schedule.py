"""Pydantic models for per-node recurring schedules."""

from enum import Enum

from pydantic import BaseModel
from pydantic import Field as PydanticField


class ScheduleFrequency(str, Enum):
    """How often a scheduled automation fires."""

    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class AutomationScheduleSettings(BaseModel):
    """Fully-defaulted, strictly-typed schedule of one node.

    Built by ``autoflow.services.schedule.normalize_schedule``; ``time_of_day``
    is always zero-padded ``HH:MM`` and ``day_of_week`` always lower-case.
    """

    enabled: bool = False
    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    time_of_day: str = PydanticField(default="09:00", alias="timeOfDay")
    day_of_week: str = PydanticField(default="monday", alias="dayOfWeek")
    timezone: str = "UTC"

    model_config = {"populate_by_name": True}
