"""Schedule-related Pydantic schemas."""

from datetime import date, time

from pydantic import BaseModel, Field, field_validator

from .common import PaginatedResponse

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class RecurrenceRuleIn(BaseModel):
    """One weekly start time. ``weekday`` accepts 0-6 (Monday=0) or an English day name."""

    weekday: int = Field(..., ge=0, le=6, description="Day of week, Monday=0")
    start_time: time = Field(..., description="Local start time (HH:MM)")

    @field_validator("weekday", mode="before")
    @classmethod
    def parse_weekday(cls, v):
        if isinstance(v, str) and not v.strip().isdigit():
            name = v.strip().lower()
            if name not in WEEKDAYS:
                raise ValueError(f"Unknown weekday '{v}'")
            return WEEKDAYS.index(name)
        return v

    @field_validator("start_time")
    @classmethod
    def drop_sub_minute(cls, v: time) -> time:
        return v.replace(second=0, microsecond=0, tzinfo=None)


class SaveScheduleRequest(BaseModel):
    """Replace a tour's weekly schedule."""

    rules: list[RecurrenceRuleIn] = Field(..., max_length=7 * 24, description="Weekly start times")

    @field_validator("rules")
    @classmethod
    def no_duplicates(cls, v: list[RecurrenceRuleIn]) -> list[RecurrenceRuleIn]:
        keys = [(rule.weekday, rule.start_time) for rule in v]
        if len(keys) != len(set(keys)):
            raise ValueError("Duplicate weekday/start time pair")
        return v


class RecurrenceRule(BaseModel):
    """Recurrence rule response schema."""

    id: str
    weekday: int = Field(..., description="Day of week, Monday=0")
    weekday_name: str
    start_time: time


class SaveScheduleResponse(BaseModel):
    """Result of replacing a tour's schedule."""

    tour_id: str
    rules: list[RecurrenceRule]
    generated_count: int = Field(..., description="Occurrences created by this call")
    pruned_count: int = Field(..., description="Unbooked future occurrences removed")


class GenerateOccurrencesRequest(BaseModel):
    """Expand a tour's rules into dated occurrences."""

    start_date: date | None = Field(None, description="First date to consider, defaults to today")
    weeks: int | None = Field(None, ge=1, le=104, description="Horizon in weeks, defaults to the configured horizon")


class GenerateOccurrencesResponse(BaseModel):
    tour_id: str
    generated_count: int


class Occurrence(BaseModel):
    """Scheduled occurrence response schema."""

    id: str
    tour_id: str
    date: date
    start_time: time
    max_slots: int
    booked_slots: int
    remaining_slots: int


class ListOccurrencesResponse(PaginatedResponse):
    """Response schema for schedule listing."""

    items: list[Occurrence]
