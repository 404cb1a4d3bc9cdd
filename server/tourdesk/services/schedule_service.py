"""Schedule service: weekly recurrence rules and their dated occurrences."""

import logging
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Iterable, Optional
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, exists, insert, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow, utctoday
from ..core.config import settings
from ..core.exceptions import NotFoundError, ValidationError
from ..core.observability import metrics_collector
from ..models.booking import Booking
from ..models.schedule import RecurrenceRule, ScheduledOccurrence
from ..models.tour import Tour
from ..schemas.schedule import RecurrenceRuleIn
from .tour_service import TourService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedOccurrence:
    """An occurrence produced by rule expansion, not yet persisted."""

    date: date
    start_time: time
    max_slots: int


def first_weekday_on_or_after(start: date, weekday: int) -> date:
    """Return the first date ``>= start`` falling on ``weekday`` (Monday=0)."""
    return start + timedelta(days=(weekday - start.weekday()) % 7)


def expand_rules(
    rules: Iterable[tuple[int, time]],
    start: date,
    weeks: int = 52,
    capacity: int = 0,
) -> list[PlannedOccurrence]:
    """
    Expand weekly rules into dated occurrences.

    Each ``(weekday, start_time)`` rule yields ``weeks`` dates: the first date
    on or after ``start`` with that weekday, then every seventh day after it.
    Duplicate rules collapse to one occurrence per date and time.

    Args:
        rules: Pairs of weekday (0=Monday) and start time
        start: First date to consider
        weeks: Number of dates generated per rule
        capacity: Slots given to every occurrence

    Returns:
        Occurrences ordered by date then start time
    """
    planned = set()
    for weekday, start_time in rules:
        if not 0 <= weekday <= 6:
            raise ValueError(f"weekday must be between 0 and 6, got {weekday}")
        first = first_weekday_on_or_after(start, weekday)
        for week in range(weeks):
            planned.add(PlannedOccurrence(first + timedelta(weeks=week), start_time, capacity))

    return sorted(planned, key=lambda occ: (occ.date, occ.start_time))


class ScheduleService:
    """Service for recurrence rules and occurrence generation."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.tour_service = TourService(db)

    async def get_recurrence_rules(self, tour_id: UUID) -> list[RecurrenceRule]:
        """Return a tour's rules ordered by weekday and start time."""
        stmt = (
            select(RecurrenceRule)
            .where(RecurrenceRule.tour_id == tour_id)
            .order_by(RecurrenceRule.weekday, RecurrenceRule.start_time)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def save_recurrence_rules(
        self,
        tour_id: UUID,
        rules: list[RecurrenceRuleIn],
    ) -> tuple[list[RecurrenceRule], int, int]:
        """
        Replace a tour's weekly rules and bring its occurrences in line.

        Runs in a single transaction: old rules are removed, the new ones
        inserted, future occurrences that no longer match any rule and have
        never been booked are pruned, and the new rules are expanded. Any
        database error rolls everything back.

        Args:
            tour_id: Tour whose schedule is replaced
            rules: New weekday/start time pairs

        Returns:
            Tuple of (saved rules, occurrences generated, occurrences pruned)

        Raises:
            NotFoundError: If tour not found
        """
        tour = await self.tour_service.get_tour_by_id_or_raise(tour_id)
        rule_keys = {(rule.weekday, rule.start_time) for rule in rules}

        try:
            await self.db.execute(delete(RecurrenceRule).where(RecurrenceRule.tour_id == tour_id))
            for weekday, start_time in sorted(rule_keys):
                self.db.add(RecurrenceRule(tour_id=tour_id, weekday=weekday, start_time=start_time))
            await self.db.flush()

            pruned = await self._prune_unmatched(tour_id, rule_keys)
            generated = await self._insert_missing(
                tour.id, tour.capacity, rule_keys, utctoday(), settings.schedule_weeks_ahead
            )

            await self.db.commit()

        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Saving recurrence rules failed",
                extra={
                    "tour_id": str(tour_id),
                    "rule_count": len(rule_keys),
                    "error": str(e)
                }
            )
            raise

        metrics_collector.record_occurrences_generated(generated)
        logger.info(
            "Recurrence rules saved",
            extra={
                "tour_id": str(tour_id),
                "rule_count": len(rule_keys),
                "generated_count": generated,
                "pruned_count": pruned
            }
        )

        return await self.get_recurrence_rules(tour_id), generated, pruned

    async def generate_occurrences(
        self,
        tour_id: UUID,
        start: Optional[date] = None,
        weeks: Optional[int] = None,
    ) -> int:
        """
        Expand a tour's rules into occurrences, skipping ones that already exist.

        Re-running with the same arguments creates nothing.

        Returns:
            Number of occurrences created
        """
        tour = await self.tour_service.get_tour_by_id_or_raise(tour_id)
        capacity = tour.capacity
        rules = await self.get_recurrence_rules(tour_id)
        rule_keys = {(rule.weekday, rule.start_time) for rule in rules}

        start = max(start or utctoday(), utctoday())
        weeks = weeks or settings.schedule_weeks_ahead

        try:
            created = await self._insert_missing(tour_id, capacity, rule_keys, start, weeks)
            await self.db.commit()
        except IntegrityError:
            # A concurrent generator inserted some of the same keys
            await self.db.rollback()
            logger.warning(
                "Occurrence generation raced with another writer, retrying once",
                extra={"tour_id": str(tour_id)}
            )
            created = await self._insert_missing(tour_id, capacity, rule_keys, start, weeks)
            await self.db.commit()

        if created:
            metrics_collector.record_occurrences_generated(created)
            logger.info(
                "Occurrences generated",
                extra={
                    "tour_id": str(tour_id),
                    "start": start.isoformat(),
                    "weeks": weeks,
                    "created_count": created
                }
            )

        return created

    async def _insert_missing(
        self,
        tour_id: UUID,
        capacity: int,
        rule_keys: set[tuple[int, time]],
        start: date,
        weeks: int,
    ) -> int:
        planned = expand_rules(rule_keys, start, weeks, capacity)
        if not planned:
            return 0

        stmt = select(ScheduledOccurrence.date, ScheduledOccurrence.start_time).where(
            ScheduledOccurrence.tour_id == tour_id,
            ScheduledOccurrence.date >= planned[0].date,
            ScheduledOccurrence.date <= planned[-1].date,
        )
        result = await self.db.execute(stmt)
        existing = {(row.date, row.start_time) for row in result}

        now = utcnow()
        rows = [
            {
                "id": uuid4(),
                "tour_id": tour_id,
                "date": occ.date,
                "start_time": occ.start_time,
                "max_slots": occ.max_slots,
                "booked_slots": 0,
                "created_at": now,
                "updated_at": now,
            }
            for occ in planned
            if (occ.date, occ.start_time) not in existing
        ]

        if rows:
            await self.db.execute(insert(ScheduledOccurrence), rows)

        return len(rows)

    async def _prune_unmatched(self, tour_id: UUID, rule_keys: set[tuple[int, time]]) -> int:
        """Delete future occurrences that match no rule and no booking has ever referenced."""
        stmt = select(ScheduledOccurrence).where(
            ScheduledOccurrence.tour_id == tour_id,
            ScheduledOccurrence.date >= utctoday(),
            ScheduledOccurrence.booked_slots == 0,
            ~exists().where(Booking.occurrence_id == ScheduledOccurrence.id),
        )
        result = await self.db.execute(stmt)
        stale_ids = [
            occ.id for occ in result.scalars()
            if (occ.date.weekday(), occ.start_time) not in rule_keys
        ]

        if stale_ids:
            await self.db.execute(
                delete(ScheduledOccurrence)
                .where(ScheduledOccurrence.id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )

        return len(stale_ids)

    async def get_occurrence(self, tour_id: UUID, on: date, start_time: time) -> Optional[ScheduledOccurrence]:
        """Get the occurrence of a tour at a date and time, re-reading it from the database."""
        stmt = (
            select(ScheduledOccurrence)
            .where(
                ScheduledOccurrence.tour_id == tour_id,
                ScheduledOccurrence.date == on,
                ScheduledOccurrence.start_time == start_time,
            )
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create_occurrence(self, tour: Tour, on: date, start_time: time) -> ScheduledOccurrence:
        """
        Return the occurrence for a date and time, materialising it when a rule matches.

        Past dates are rejected even when a generated row still exists.

        Dates beyond the generated horizon are created on demand. If another
        request creates the same occurrence first, its row is returned.

        Raises:
            ValidationError: If the date is in the past
            NotFoundError: If no occurrence exists and no rule matches
        """
        if on < utctoday():
            raise ValidationError(f"Cannot book {tour.title} on a past date ({on.isoformat()})")

        occurrence = await self.get_occurrence(tour.id, on, start_time)
        if occurrence:
            return occurrence

        rules = await self.get_recurrence_rules(tour.id)
        if (on.weekday(), start_time) not in {(rule.weekday, rule.start_time) for rule in rules}:
            logger.warning(
                "No occurrence or matching rule for requested time",
                extra={
                    "tour_id": str(tour.id),
                    "date": on.isoformat(),
                    "start_time": start_time.isoformat()
                }
            )
            raise NotFoundError(
                resource_type="occurrence",
                detail=f"Tour '{tour.slug}' does not run on {on.isoformat()} at {start_time.strftime('%H:%M')}"
            )

        occurrence = ScheduledOccurrence(
            tour_id=tour.id,
            date=on,
            start_time=start_time,
            max_slots=tour.capacity,
            booked_slots=0,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(occurrence)
        except IntegrityError:
            logger.info(
                "Occurrence created concurrently, using existing row",
                extra={"tour_id": str(tour.id), "date": on.isoformat()}
            )
            occurrence = await self.get_occurrence(tour.id, on, start_time)
            if occurrence is None:
                raise

        return occurrence

    async def list_occurrences(
        self,
        tour_id: Optional[UUID] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        available_only: bool = False,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> tuple[list[ScheduledOccurrence], Optional[str]]:
        """
        List occurrences in date order with cursor-based pagination.

        The cursor is the ID of the last occurrence of the previous page.

        Returns:
            Tuple of (occurrences, next_cursor)
        """
        if date_from and date_to and date_to < date_from:
            raise ValidationError("date_to must not be before date_from")

        stmt = select(ScheduledOccurrence)

        conditions = [ScheduledOccurrence.date >= (date_from or utctoday())]
        if tour_id:
            conditions.append(ScheduledOccurrence.tour_id == tour_id)
        if date_to:
            conditions.append(ScheduledOccurrence.date <= date_to)
        if available_only:
            conditions.append(ScheduledOccurrence.booked_slots < ScheduledOccurrence.max_slots)

        if cursor:
            anchor = None
            try:
                anchor = await self.db.get(ScheduledOccurrence, UUID(cursor))
            except ValueError:
                pass
            if anchor is None:
                logger.warning("Invalid cursor provided in schedule listing", extra={"cursor": cursor})
            else:
                conditions.append(or_(
                    ScheduledOccurrence.date > anchor.date,
                    and_(ScheduledOccurrence.date == anchor.date, ScheduledOccurrence.start_time > anchor.start_time),
                    and_(
                        ScheduledOccurrence.date == anchor.date,
                        ScheduledOccurrence.start_time == anchor.start_time,
                        ScheduledOccurrence.id > anchor.id,
                    ),
                ))

        stmt = (
            stmt.where(and_(*conditions))
            .order_by(ScheduledOccurrence.date, ScheduledOccurrence.start_time, ScheduledOccurrence.id)
            .limit(limit + 1)
        )

        result = await self.db.execute(stmt)
        occurrences = list(result.scalars())

        next_cursor = None
        if len(occurrences) > limit:
            occurrences = occurrences[:limit]
            next_cursor = str(occurrences[-1].id)

        return occurrences, next_cursor

    async def extend_all_horizons(self) -> int:
        """Roll every active tour's generated horizon forward to the configured number of weeks."""
        stmt = (
            select(Tour.id)
            .where(Tour.is_active.is_(True))
            .where(exists().where(RecurrenceRule.tour_id == Tour.id))
        )
        result = await self.db.execute(stmt)
        tour_ids = list(result.scalars())

        total = 0
        for tour_id in tour_ids:
            total += await self.generate_occurrences(tour_id)

        return total
