"""Pydantic models shared by the reminder engine, the workers and the API.

These classes are intentionally framework-agnostic so they can be reused by
workers, API responses, and tests without pulling in FastAPI or database
layers.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DeliveryStatus = Literal["pending", "sent", "failed"]
DeliveryKind = Literal["reminder", "test", "broadcast"]

UNTITLED_COURSE = "Untitled course"


# ──────────────────────────────
# Clock
# ──────────────────────────────


class ClockReading(BaseModel):
    """A single instant resolved onto the campus (UTC+8) weekly calendar."""

    local: datetime
    weekday: int = Field(ge=1, le=7)
    minute_of_day: int = Field(ge=0, lt=1440)

    @property
    def minute_of_week(self) -> int:
        return (self.weekday - 1) * 1440 + self.minute_of_day

    @property
    def weekday_name(self) -> str:
        from app.utils.clock import WEEKDAY_NAMES

        return WEEKDAY_NAMES[self.weekday - 1]

    @property
    def utc(self) -> datetime:
        return self.local.astimezone(timezone.utc)


# ──────────────────────────────
# Slots
# ──────────────────────────────


class RecurringSlot(BaseModel):
    """A weekly course meeting that may receive a quiz reminder."""

    id: int
    owner_id: int
    owner_email: str
    display_name: str = UNTITLED_COURSE
    weekday: int
    start_minute_of_day: int = Field(ge=0, lt=1440)
    reminder_enabled: bool = False

    @field_validator("weekday", mode="before")
    def _parse_weekday(cls, v):  # noqa: N805
        from app.utils.clock import parse_weekday

        return parse_weekday(v)

    @field_validator("start_minute_of_day", mode="before")
    def _parse_start(cls, v):  # noqa: N805
        if isinstance(v, str):
            from app.utils.clock import parse_hhmm

            return parse_hhmm(v)
        return v

    @field_validator("display_name", mode="before")
    def _default_name(cls, v):  # noqa: N805
        text = str(v).strip() if v is not None else ""
        return text or UNTITLED_COURSE

    @property
    def minute_of_week(self) -> int:
        return (self.weekday - 1) * 1440 + self.start_minute_of_day

    @property
    def log_label(self) -> str:
        return f"{self.display_name} reminder"


class FiringWindow(BaseModel):
    """Everything one sweep needs to decide which slots are due."""

    reading: ClockReading
    lead_minutes: int = Field(ge=0)
    catchup_minutes: int = Field(ge=0, lt=1440)
    lookback_minutes: int = Field(ge=0)

    @model_validator(mode="after")
    def _lookback_covers_window(self):  # noqa: N805
        if self.lookback_minutes < self.catchup_minutes:
            raise ValueError("lookback_minutes must be >= catchup_minutes")
        return self


class DueSlot(BaseModel):
    slot: RecurringSlot
    reminder_minute_of_week: int
    minutes_late: int
    window_start: datetime  # UTC instant the reminder was scheduled for


# ──────────────────────────────
# Delivery log
# ──────────────────────────────


class DeliveryRecord(BaseModel):
    id: int
    user_id: Optional[int] = None
    course_id: Optional[int] = None
    course_name: str
    kind: DeliveryKind = "reminder"
    sent_at: datetime
    status: DeliveryStatus
    last_error: Optional[str] = None

    model_config = {"from_attributes": True}


class SweepReport(BaseModel):
    checked: int = 0
    due: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class BroadcastResult(BaseModel):
    sent: int = 0
    failed: int = 0
    sent_emails: List[str] = Field(default_factory=list)


class BroadcastRequest(BaseModel):
    subject: str
    body: str

    @field_validator("subject", "body")
    def _non_blank(cls, v):  # noqa: N805
        if not isinstance(v, str) or not v.strip():
            raise ValueError("subject and body must be non-empty")
        return v.strip()


class CourseView(BaseModel):
    """Course row as shown to its owner, with this week's reminder state."""

    id: int
    user_id: int
    name: str
    day: str
    start_time: str
    end_time: str
    quiz_reminder: bool
    reminded_this_week: bool = False
