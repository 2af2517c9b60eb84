"""
Service Desk Value Objects
==========================

Immutable value objects for the ticket SLA domain.

Working time accrues only inside a fixed daily window (07:00-18:00 by
default) in one business time zone. Every calendar day has the same
window: weekends and holidays are not treated specially.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from src.core import DomainException


@dataclass(frozen=True)
class WorkingHoursClock:
    """
    Pure time arithmetic over the daily working window [start_hour, end_hour).

    Naive datetimes are read as wall-clock time in the business time zone;
    aware datetimes are converted into it. Results are aware datetimes in
    the business time zone.
    """

    start_hour: int = 7
    end_hour: int = 18
    tz: tzinfo = ZoneInfo("UTC")

    def __post_init__(self):
        if not 0 <= self.start_hour < self.end_hour <= 24:
            raise ValueError("working window must satisfy 0 <= start_hour < end_hour <= 24")

    def localize(self, t: datetime) -> datetime:
        """Express an instant in the business time zone."""
        if t.tzinfo is None:
            return t.replace(tzinfo=self.tz)
        return t.astimezone(self.tz)

    def _at_hour(self, day: date, hour: int) -> datetime:
        # end_hour may be 24, which is midnight of the following day
        return datetime.combine(day, time(0), tzinfo=self.tz) + timedelta(hours=hour)

    def day_window_start(self, t: datetime) -> datetime:
        """Start of the working window on t's calendar day."""
        return self._at_hour(self.localize(t).date(), self.start_hour)

    def day_window_end(self, t: datetime) -> datetime:
        """End of the working window on t's calendar day."""
        return self._at_hour(self.localize(t).date(), self.end_hour)

    def next_working_day_start(self, t: datetime) -> datetime:
        """Start of the working window on the calendar day after t."""
        return self._at_hour(self.localize(t).date() + timedelta(days=1), self.start_hour)

    def is_working_instant(self, t: datetime) -> bool:
        """Whether t's time of day falls inside [start_hour, end_hour)."""
        local = self.localize(t)
        return self.day_window_start(local) <= local < self.day_window_end(local)

    def advance_by_working_duration(self, t: datetime, duration: timedelta) -> datetime:
        """
        Move t forward until `duration` of working time has elapsed,
        skipping everything outside the daily window.
        """
        if duration < timedelta(0):
            raise ValueError("duration must not be negative")

        current = self.localize(t)
        remaining = duration

        while remaining > timedelta(0):
            day_end = self.day_window_end(current)
            if current >= day_end:
                current = self.next_working_day_start(current)
                continue

            day_start = self.day_window_start(current)
            if current < day_start:
                current = day_start
                continue

            available = day_end - current
            if remaining <= available:
                current = current + remaining
                remaining = timedelta(0)
            else:
                remaining -= available
                current = self.next_working_day_start(current)

        return current


class EscalationPolicy(BaseModel):
    """
    Working window and per-level SLA budget.

    Loaded from settings and optionally overridden by the escalation
    YAML file. A level without an explicit budget gets the default.
    """

    timezone: str = Field(default="Asia/Kolkata", description="IANA time zone of the working window")
    work_start_hour: int = Field(default=7, ge=0, le=23)
    work_end_hour: int = Field(default=18, ge=1, le=24)
    default_budget_minutes: int = Field(default=120, ge=1, description="Working minutes per level")
    level_budget_minutes: Dict[int, int] = Field(
        default_factory=dict,
        description="Per-level overrides of the working-minute budget"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown time zone: {v}") from e
        return v

    @field_validator("level_budget_minutes")
    @classmethod
    def validate_level_budgets(cls, v: Dict[int, int]) -> Dict[int, int]:
        for level, minutes in v.items():
            if level < 1 or minutes < 1:
                raise ValueError("level budgets need a level >= 1 and at least one minute")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "EscalationPolicy":
        if self.work_start_hour >= self.work_end_hour:
            raise ValueError("work_start_hour must be before work_end_hour")
        return self

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def budget_for_level(self, level: int) -> timedelta:
        """Working-time budget a ticket gets at an escalation level."""
        return timedelta(minutes=self.level_budget_minutes.get(level, self.default_budget_minutes))

    def working_hours(self) -> WorkingHoursClock:
        return WorkingHoursClock(
            start_hour=self.work_start_hour,
            end_hour=self.work_end_hour,
            tz=self.tz,
        )


@dataclass(frozen=True)
class SLAWindow:
    """When a ticket's SLA timer started and when it runs out."""

    timer_started_at: datetime
    deadline: datetime

    def __post_init__(self):
        if self.deadline < self.timer_started_at:
            raise ValueError("SLA deadline cannot be before the timer start")

    def is_breached(self, now: datetime) -> bool:
        return self.deadline <= now


class SLACalculator:
    """
    Computes SLA windows inside working hours.

    Every level gets a fresh window anchored to the reference instant
    (ticket creation or the moment of escalation).
    """

    def __init__(self, policy: EscalationPolicy):
        self._policy = policy
        self._clock = policy.working_hours()

    @property
    def working_hours(self) -> WorkingHoursClock:
        return self._clock

    def compute_sla(self, reference: datetime, level: int = 1) -> SLAWindow:
        """
        Timer starts at the reference instant when it is inside the working
        window, otherwise at the start of the next day's window.
        """
        if self._clock.is_working_instant(reference):
            timer_started_at = self._clock.localize(reference)
        else:
            timer_started_at = self._clock.next_working_day_start(reference)

        deadline = self._clock.advance_by_working_duration(
            timer_started_at, self._policy.budget_for_level(level)
        )
        return SLAWindow(timer_started_at=timer_started_at, deadline=deadline)


_TICKET_NUMBER_RE = re.compile(r"^SRN-(\d{4})-(\d{6})$")


@dataclass(frozen=True, order=True)
class TicketNumber:
    """
    Service Request Number, e.g. SRN-2025-000145.

    The sequence restarts at 1 every calendar year.
    """

    year: int
    sequence: int

    PREFIX = "SRN"
    MAX_SEQUENCE = 999_999

    def __post_init__(self):
        if not 1 <= self.sequence <= self.MAX_SEQUENCE:
            raise DomainException(
                f"Ticket sequence {self.sequence} out of range for year {self.year}"
            )

    def __str__(self) -> str:
        return f"{self.PREFIX}-{self.year:04d}-{self.sequence:06d}"

    @classmethod
    def prefix_for(cls, year: int) -> str:
        return f"{cls.PREFIX}-{year:04d}-"

    @classmethod
    def parse(cls, value: str) -> "TicketNumber":
        match = _TICKET_NUMBER_RE.match(value)
        if not match:
            raise ValueError(f"not a service request number: {value!r}")
        return cls(year=int(match.group(1)), sequence=int(match.group(2)))

    @classmethod
    def next_for_year(cls, year: int, latest: Optional["TicketNumber"]) -> "TicketNumber":
        """Number following the highest one issued this year."""
        if latest is None or latest.year != year:
            return cls(year=year, sequence=1)
        return cls(year=year, sequence=latest.sequence + 1)
