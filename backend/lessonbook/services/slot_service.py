# backend/lessonbook/services/slot_service.py
"""
Slot Service

Owns an instructor's published time slots. Slots are grouped into calendar
days that are created on first insert and removed with their last slot.

Every write locks the owning day row first, so overlap checks and inserts
for the same (instructor, date) are serialised.
"""

from datetime import date, time
import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.exceptions import (
    HasLessonsError,
    InvalidTimeRangeError,
    LookupNotFoundError,
    OverlapError,
    RepositoryException,
    SlotUnavailableError,
)
from ..models.calendar import CalendarDay, TimeSlot
from ..models.enums import SlotStatus
from ..repositories.base_repository import is_integrity_violation
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)


def _fmt(value: time) -> str:
    return value.strftime("%H:%M")


class SlotService(BaseService):
    """Create, delete and move instructor time slots."""

    def __init__(self, db: Session, clock: Optional[SystemClock] = None):
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_calendar_repository(db)

    @BaseService.measure_operation("create_slot")
    def create_slot(self, instructor_id: str, day_date: date, start_time: time, end_time: time) -> TimeSlot:
        """
        Publish a new open slot.

        Raises:
            InvalidTimeRangeError: end is not after start
            OverlapError: the interval overlaps any slot already on that day
        """
        self._validate_range(start_time, end_time)

        # A concurrent first insert for the same day can lose the unique
        # race on calendar_days; re-driving the whole insert is safe.
        attempts = 1 if self.in_transaction else 2
        for attempt in range(1, attempts + 1):
            try:
                with self.transaction():
                    slot = self.insert_slot(instructor_id, day_date, start_time, end_time)
                break
            except RepositoryException as exc:
                if attempt == attempts or not is_integrity_violation(exc):
                    raise
                self.logger.info(
                    "Retrying slot creation after concurrent day creation",
                    extra={"instructor_id": instructor_id, "day_date": day_date.isoformat()},
                )

        self.logger.info(
            f"Created slot {slot.id} on {day_date} {_fmt(start_time)}-{_fmt(end_time)}",
            extra={"instructor_id": instructor_id, "slot_id": slot.id},
        )
        return slot

    def insert_slot(
        self,
        instructor_id: str,
        day_date: date,
        start_time: time,
        end_time: time,
        *,
        status: SlotStatus = SlotStatus.OPEN,
    ) -> TimeSlot:
        """
        Overlap-checked insert inside the caller's transaction.

        Open slots are published available; draft slots are born held.
        """
        if status not in (SlotStatus.OPEN, SlotStatus.DRAFT):
            raise ValueError(f"Slots cannot be created in status {status.value}")
        self._validate_range(start_time, end_time)

        day = self.repository.get_or_create_day(instructor_id, day_date)
        self._ensure_no_overlap(day, start_time, end_time)

        slot = TimeSlot(
            day=day,
            start_time=start_time,
            end_time=end_time,
            status=status,
            is_available=status == SlotStatus.OPEN,
            created_at=self.clock.now(),
        )
        self.db.add(slot)
        self.db.flush()
        return slot

    @BaseService.measure_operation("delete_slot")
    def delete_slot(self, slot_id: str) -> bool:
        """
        Delete an open slot nobody has booked, and its day if it is now empty.

        Returns:
            True if the owning calendar day was removed as well

        Raises:
            LookupNotFoundError: no such slot
            HasLessonsError: a lesson references the slot
            SlotUnavailableError: the slot is held or booked
        """
        with self.transaction():
            slot = self._get_slot_or_raise(slot_id)
            self.repository.get_day(slot.instructor_id, slot.slot_date, for_update=True)

            lesson_count = self.repository.count_lessons_for_slot(slot.id)
            if lesson_count:
                raise HasLessonsError(slot.id, lesson_count)
            if slot.status != SlotStatus.OPEN:
                raise SlotUnavailableError(slot.id, slot.status.value)

            day_id = slot.calendar_day_id
            self.db.delete(slot)
            self.db.flush()
            day_removed = self.repository.delete_day_if_empty(day_id)

        self.logger.info(
            f"Deleted slot {slot_id}",
            extra={"slot_id": slot_id, "day_removed": day_removed},
        )
        return day_removed

    @BaseService.measure_operation("move_slot")
    def move_slot(
        self,
        slot_id: str,
        new_date: date,
        new_start: time,
        new_end: time,
        is_available: Optional[bool] = None,
    ) -> TimeSlot:
        """
        Reschedule a slot, possibly onto another day.

        The destination day is found or created, the overlap rule is checked
        there (ignoring the slot itself) and an emptied origin day is removed.
        """
        self._validate_range(new_start, new_end)

        with self.transaction():
            slot = self._get_slot_or_raise(slot_id)
            origin = slot.day
            moving_days = new_date != origin.day_date

            if moving_days:
                destination = self.repository.get_or_create_day(origin.instructor_id, new_date)
            else:
                destination = self.repository.get_day(origin.instructor_id, new_date, for_update=True)

            self._ensure_no_overlap(destination, new_start, new_end, exclude_slot_id=slot.id)

            slot.day = destination
            slot.start_time = new_start
            slot.end_time = new_end
            if is_available is not None:
                slot.is_available = is_available
            self.db.flush()

            if moving_days:
                self.repository.delete_day_if_empty(origin.id)

        self.logger.info(
            f"Moved slot {slot_id} to {new_date} {_fmt(new_start)}-{_fmt(new_end)}",
            extra={"slot_id": slot_id, "moved_days": moving_days},
        )
        return slot

    # Helpers

    def _get_slot_or_raise(self, slot_id: str) -> TimeSlot:
        slot = self.repository.get_slot(slot_id, for_update=True)
        if slot is None:
            raise LookupNotFoundError("Time slot", slot_id)
        return slot

    def _ensure_no_overlap(
        self,
        day: CalendarDay,
        start_time: time,
        end_time: time,
        exclude_slot_id: Optional[str] = None,
    ) -> None:
        conflict = self.repository.find_overlapping_slot(day.id, start_time, end_time, exclude_slot_id)
        if conflict is not None:
            raise OverlapError(
                day=day.day_date.isoformat(),
                new_range=f"{_fmt(start_time)}-{_fmt(end_time)}",
                conflicting_range=conflict.describe_range(),
            )

    @staticmethod
    def _validate_range(start_time: time, end_time: time) -> None:
        if end_time <= start_time:
            raise InvalidTimeRangeError(_fmt(start_time), _fmt(end_time))
