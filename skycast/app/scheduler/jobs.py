"""
Forecast job definitions.

The persisted representation uses camelCase keys (``includeDaily``,
``notify.onRun``); snake_case is accepted on input as well. Field defaults
are part of the stored format, so a record missing a key loads with the same
value it was created with.

Example (config file or POST body):

    {
        "id": "morning-chicago",
        "name": "Morning Chicago",
        "city": "Chicago",
        "cron": "0 30 6 * * *",
        "timezone": "America/Chicago",
        "notify": {"onRun": false, "onPrecipitation": true, "coldThreshold": 0}
    }
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class NotifyConfig(_CamelModel):
    """When does a tick send a notification? Any true predicate wins."""

    on_run: bool = Field(True, description="Notify on every run")
    on_alert: bool = Field(True, description="Notify when the forecast carries weather alerts")
    on_precipitation: bool = Field(
        False, description="Notify when any day's precipitation probability exceeds 50%",
    )
    cold_threshold: Optional[float] = Field(
        None, description="Notify when the current temperature is below this",
    )
    heat_threshold: Optional[float] = Field(
        None, description="Notify when the current temperature is above this",
    )


class ForecastJob(_CamelModel):
    """A persisted, cron-scheduled forecast fetch for one city."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), min_length=1)
    name: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1, description="City name or zip code")
    units: str = Field("metric", description="metric | imperial | standard")
    cron: str = Field(..., description='e.g. "0 30 5 * * *" for 05:30 daily')
    timezone: str = Field("UTC", description="IANA timezone for the cron schedule")
    include_daily: bool = True
    include_hourly: bool = False
    enabled: bool = True
    notify: NotifyConfig = Field(default_factory=NotifyConfig)


class JobConfig(_CamelModel):
    """Jobs declared in the scheduler config file."""

    enabled: bool = True
    jobs: List[ForecastJob] = Field(default_factory=list)
