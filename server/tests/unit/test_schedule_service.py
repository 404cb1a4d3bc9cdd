"""Tests for recurrence rule expansion and occurrence generation."""

from datetime import date, time, timedelta

import pytest
from sqlalchemy import func, select

from tourdesk.core.clock import utctoday
from tourdesk.core.exceptions import NotFoundError, ValidationError
from tourdesk.models.schedule import ScheduledOccurrence
from tourdesk.schemas.schedule import RecurrenceRuleIn, SaveScheduleRequest
from tourdesk.services.schedule_service import ScheduleService, expand_rules, first_weekday_on_or_after


def test_first_weekday_on_or_after():
    """A start date already on the weekday is kept."""
    wednesday = date(2025, 1, 1)
    assert first_weekday_on_or_after(wednesday, 2) == wednesday
    assert first_weekday_on_or_after(wednesday, 0) == date(2025, 1, 6)
    assert first_weekday_on_or_after(wednesday, 1) == date(2025, 1, 7)


def test_expand_monday_rule_for_a_year():
    """A single Monday rule yields 52 consecutive Mondays."""
    planned = expand_rules([(0, time(9, 0))], start=date(2025, 1, 1), weeks=52, capacity=8)

    assert len(planned) == 52
    assert planned[0].date == date(2025, 1, 6)
    assert all(occ.date.weekday() == 0 for occ in planned)
    assert all((b.date - a.date).days == 7 for a, b in zip(planned, planned[1:]))
    assert {occ.max_slots for occ in planned} == {8}


def test_expand_orders_by_date_then_time():
    planned = expand_rules(
        [(2, time(14, 0)), (0, time(9, 0)), (2, time(8, 30))],
        start=date(2025, 1, 6),
        weeks=1,
    )

    assert [(occ.date, occ.start_time) for occ in planned] == [
        (date(2025, 1, 6), time(9, 0)),
        (date(2025, 1, 8), time(8, 30)),
        (date(2025, 1, 8), time(14, 0)),
    ]


def test_expand_collapses_duplicate_rules():
    planned = expand_rules([(4, time(10, 0)), (4, time(10, 0))], start=date(2025, 1, 1), weeks=3)
    assert len(planned) == 3


def test_expand_rejects_bad_weekday():
    with pytest.raises(ValueError):
        expand_rules([(7, time(10, 0))], start=date(2025, 1, 1))


def test_weekday_accepts_names():
    rule = RecurrenceRuleIn(weekday="Saturday", start_time="07:30")
    assert rule.weekday == 5
    assert rule.start_time == time(7, 30)


def test_schedule_rejects_duplicate_pairs():
    with pytest.raises(ValueError):
        SaveScheduleRequest(rules=[
            {"weekday": 0, "start_time": "09:00"},
            {"weekday": "monday", "start_time": "09:00"},
        ])


async def _occurrence_count(session, tour_id) -> int:
    stmt = select(func.count()).select_from(ScheduledOccurrence).where(ScheduledOccurrence.tour_id == tour_id)
    return (await session.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_save_rules_generates_a_year_of_occurrences(test_session, make_tour):
    """Saving a Monday rule materialises 52 occurrences at the tour capacity."""
    tour = await make_tour(capacity=12)

    assert await _occurrence_count(test_session, tour.id) == 52

    occurrences, _ = await ScheduleService(test_session).list_occurrences(tour_id=tour.id, limit=100)
    assert len(occurrences) == 52
    assert all(occ.max_slots == 12 and occ.booked_slots == 0 for occ in occurrences)
    assert all(occ.date.weekday() == 0 for occ in occurrences)


@pytest.mark.asyncio
async def test_generate_is_idempotent(test_session, make_tour):
    tour = await make_tour()
    schedule_service = ScheduleService(test_session)

    assert await schedule_service.generate_occurrences(tour.id) == 0
    assert await _occurrence_count(test_session, tour.id) == 52


@pytest.mark.asyncio
async def test_generate_extends_horizon(test_session, make_tour):
    tour = await make_tour()
    schedule_service = ScheduleService(test_session)

    created = await schedule_service.generate_occurrences(tour.id, weeks=60)

    assert created == 8
    assert await _occurrence_count(test_session, tour.id) == 60


@pytest.mark.asyncio
async def test_replacing_rules_prunes_unbooked_occurrences(test_session, make_tour):
    """Moving the tour from Monday to Friday removes the unbooked Mondays."""
    tour = await make_tour()
    schedule_service = ScheduleService(test_session)

    rules, generated, pruned = await schedule_service.save_recurrence_rules(
        tour.id, [RecurrenceRuleIn(weekday=4, start_time=time(10, 0))]
    )

    assert [(rule.weekday, rule.start_time) for rule in rules] == [(4, time(10, 0))]
    assert generated == 52
    assert pruned == 52

    occurrences, _ = await schedule_service.list_occurrences(tour_id=tour.id, limit=200)
    assert {occ.date.weekday() for occ in occurrences} == {4}


@pytest.mark.asyncio
async def test_get_or_create_occurrence_beyond_horizon(test_session, make_tour):
    """A matching date past the generated horizon is created on demand."""
    tour = await make_tour(capacity=6)
    schedule_service = ScheduleService(test_session)
    far_monday = first_weekday_on_or_after(utctoday() + timedelta(weeks=80), 0)

    occurrence = await schedule_service.get_or_create_occurrence(tour, far_monday, time(9, 0))

    assert occurrence.date == far_monday
    assert occurrence.max_slots == 6
    again = await schedule_service.get_or_create_occurrence(tour, far_monday, time(9, 0))
    assert again.id == occurrence.id


@pytest.mark.asyncio
async def test_get_or_create_occurrence_requires_matching_rule(test_session, make_tour, next_monday):
    tour = await make_tour()

    with pytest.raises(NotFoundError):
        await ScheduleService(test_session).get_or_create_occurrence(
            tour, next_monday + timedelta(days=1), time(9, 0)
        )


@pytest.mark.asyncio
async def test_get_or_create_occurrence_rejects_past_dates(test_session, make_tour):
    tour = await make_tour()
    last_monday = first_weekday_on_or_after(utctoday() - timedelta(days=14), 0)

    with pytest.raises(ValidationError):
        await ScheduleService(test_session).get_or_create_occurrence(tour, last_monday, time(10, 15))


@pytest.mark.asyncio
async def test_list_occurrences_paginates(test_session, make_tour):
    tour = await make_tour()
    schedule_service = ScheduleService(test_session)

    first_page, cursor = await schedule_service.list_occurrences(tour_id=tour.id, limit=30)
    second_page, last_cursor = await schedule_service.list_occurrences(tour_id=tour.id, cursor=cursor, limit=30)

    assert len(first_page) == 30
    assert len(second_page) == 22
    assert last_cursor is None
    assert first_page[-1].date < second_page[0].date


@pytest.mark.asyncio
async def test_extend_all_horizons_with_nothing_missing(test_session, make_tour):
    await make_tour()
    assert await ScheduleService(test_session).extend_all_horizons() == 0
