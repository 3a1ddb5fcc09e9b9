# backend/lessonbook/services/availability_service.py
"""
Availability Service

Projects an instructor's calendar into the bookable window shown to the
booking funnel: open, available slots only, no earlier than the minimum
notice and no later than the caller's horizon.
"""

from dataclasses import dataclass, field
from datetime import date, time
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.config import settings
from ..core.exceptions import LookupNotFoundError, ValidationException
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotWindow:
    id: str
    start_time: time
    end_time: time


@dataclass
class DayAvailability:
    date: date
    slots: List[SlotWindow] = field(default_factory=list)

    @property
    def has_availability(self) -> bool:
        return bool(self.slots)


@dataclass
class AvailabilityWindow:
    instructor_id: str
    from_date: date
    to_date: date
    days: List[DayAvailability]

    @property
    def default_selected_index(self) -> Optional[int]:
        """
        Day the funnel preselects: two past the first day with slots,
        clamped to the last day shown. None when nothing is bookable.
        """
        first = next((i for i, day in enumerate(self.days) if day.has_availability), None)
        if first is None:
            return None
        return min(first + 2, len(self.days) - 1)


class AvailabilityService(BaseService):
    """Read-only projection of bookable slots."""

    def __init__(self, db: Session, clock: Optional[SystemClock] = None):
        super().__init__(db, clock)
        self.calendar_repository = RepositoryFactory.create_calendar_repository(db)
        self.instructor_repository = RepositoryFactory.create_instructor_repository(db)

    @BaseService.measure_operation("get_availability")
    def get_availability(
        self,
        instructor_id: str,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        horizon_days: Optional[int] = None,
    ) -> AvailabilityWindow:
        """
        Open slots per day for an instructor.

        The requested window is clamped to [today + minimum notice,
        today + horizon]. Every calendar day the instructor has in that
        window is listed in date order; days whose slots are all taken are
        kept with an empty slot list.
        """
        if not self.instructor_repository.exists(id=instructor_id):
            raise LookupNotFoundError("Instructor", instructor_id)

        horizon = horizon_days if horizon_days is not None else settings.availability_horizon_days
        if horizon < settings.minimum_notice_days:
            raise ValidationException(
                "Horizon must be at least the minimum notice period",
                code="INVALID_HORIZON",
                details={"horizon_days": horizon, "minimum_notice_days": settings.minimum_notice_days},
            )
        if horizon > settings.extended_availability_horizon_days:
            raise ValidationException(
                "Horizon is longer than the booking calendar allows",
                code="INVALID_HORIZON",
                details={
                    "horizon_days": horizon,
                    "max_horizon_days": settings.extended_availability_horizon_days,
                },
            )

        earliest = self.clock.days_from_today(settings.minimum_notice_days)
        latest = self.clock.days_from_today(horizon)
        start = max(from_date, earliest) if from_date else earliest
        end = min(to_date, latest) if to_date else latest

        if start > end:
            return AvailabilityWindow(instructor_id, start, end, [])

        by_day: Dict[date, DayAvailability] = {
            day.day_date: DayAvailability(date=day.day_date)
            for day in self.calendar_repository.list_days(instructor_id, start, end)
        }
        slots = self.calendar_repository.get_bookable_slots(instructor_id, start, end)
        for slot in slots:
            day = by_day.setdefault(slot.slot_date, DayAvailability(date=slot.slot_date))
            day.slots.append(SlotWindow(id=slot.id, start_time=slot.start_time, end_time=slot.end_time))

        days = [by_day[d] for d in sorted(by_day)]
        self.logger.debug(
            f"Availability for {instructor_id}: {len(days)} days between {start} and {end}",
            extra={"instructor_id": instructor_id, "slot_count": len(slots)},
        )
        return AvailabilityWindow(instructor_id, start, end, days)

