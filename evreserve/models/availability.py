"""Availability value objects."""

from datetime import datetime

from pydantic import BaseModel


class TimeWindow(BaseModel):
    """A half-open [start_time, end_time) window."""

    start_time: datetime
    end_time: datetime


class Slot(TimeWindow):
    """Grid-aligned slot in the availability listing."""

    available: bool
