# backend/lessonbook/repositories/calendar_repository.py
"""
Calendar Repository

Data access for CalendarDay and TimeSlot rows: day find-or-create under a row
lock, overlap lookups, conditional status transitions and the queries behind
availability and the draft sweep.
"""

from datetime import date, datetime, time
import logging
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.calendar import CalendarDay, TimeSlot
from ..models.enums import SlotStatus
from ..models.order import Lesson
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class CalendarRepository(BaseRepository[TimeSlot]):
    """Repository for instructor calendar days and their time slots."""

    def __init__(self, db: Session):
        super().__init__(db, TimeSlot)

    # Days

    def get_day(self, instructor_id: str, day_date: date, for_update: bool = False) -> Optional[CalendarDay]:
        query = self.db.query(CalendarDay).filter(
            CalendarDay.instructor_id == instructor_id,
            CalendarDay.day_date == day_date,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_or_create_day(self, instructor_id: str, day_date: date) -> CalendarDay:
        """
        Find the (instructor, date) day row and lock it, creating it if absent.

        The lock serialises slot writers for that day. A concurrent creator
        loses on the unique constraint and surfaces as RepositoryException.
        """
        day = self.get_day(instructor_id, day_date, for_update=True)
        if day is not None:
            return day
        day = CalendarDay(instructor_id=instructor_id, day_date=day_date)
        try:
            self.db.add(day)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.logger.warning(
                "Calendar day creation lost a race",
                extra={"instructor_id": instructor_id, "day_date": day_date.isoformat()},
            )
            self.db.rollback()
            raise RepositoryException(f"Failed to create calendar day: {exc}") from exc
        return day

    def count_slots_on_day(self, day_id: str) -> int:
        query = self.db.query(func.count(TimeSlot.id)).filter(TimeSlot.calendar_day_id == day_id)
        return int(self._execute_scalar(query) or 0)

    def delete_day_if_empty(self, day_id: str) -> bool:
        """Remove a day row once its last slot is gone."""
        if self.count_slots_on_day(day_id) > 0:
            return False
        day = self.db.get(CalendarDay, day_id)
        if day is None:
            return False
        # the in-memory collection may still hold slots deleted earlier in this flush
        self.db.expire(day, ["slots"])
        self.db.delete(day)
        self.db.flush()
        return True

    # Slots

    def get_slot(self, slot_id: str, for_update: bool = False) -> Optional[TimeSlot]:
        query = self.db.query(TimeSlot).options(joinedload(TimeSlot.day)).filter(TimeSlot.id == slot_id)
        if for_update:
            query = query.with_for_update(of=TimeSlot).populate_existing()
        return query.first()

    def get_slots(self, slot_ids: Sequence[str], for_update: bool = False) -> List[TimeSlot]:
        if not slot_ids:
            return []
        query = self.db.query(TimeSlot).options(joinedload(TimeSlot.day)).filter(TimeSlot.id.in_(list(slot_ids)))
        if for_update:
            query = query.with_for_update(of=TimeSlot).populate_existing()
        return self._execute_query(query)

    def find_overlapping_slot(
        self,
        day_id: str,
        start: time,
        end: time,
        exclude_slot_id: Optional[str] = None,
    ) -> Optional[TimeSlot]:
        """
        First slot on the day whose interval overlaps [start, end).

        Every status counts, drafts and booked slots included.
        """
        query = self.db.query(TimeSlot).filter(
            TimeSlot.calendar_day_id == day_id,
            TimeSlot.start_time < end,
            TimeSlot.end_time > start,
        )
        if exclude_slot_id:
            query = query.filter(TimeSlot.id != exclude_slot_id)
        return query.order_by(TimeSlot.start_time).first()

    def find_slot_with_interval(
        self, instructor_id: str, day_date: date, start: time, end: time
    ) -> Optional[TimeSlot]:
        return (
            self.db.query(TimeSlot)
            .join(CalendarDay, TimeSlot.calendar_day_id == CalendarDay.id)
            .filter(
                CalendarDay.instructor_id == instructor_id,
                CalendarDay.day_date == day_date,
                TimeSlot.start_time == start,
                TimeSlot.end_time == end,
            )
            .first()
        )

    def count_lessons_for_slot(self, slot_id: str) -> int:
        query = self.db.query(func.count(Lesson.id)).filter(Lesson.time_slot_id == slot_id)
        return int(self._execute_scalar(query) or 0)

    def claim_open_slot(self, slot_id: str) -> bool:
        """
        Compare-and-set an open, available slot into the draft state.

        Returns False when another writer got there first.
        """
        try:
            result = self.db.execute(
                update(TimeSlot)
                .where(
                    TimeSlot.id == slot_id,
                    TimeSlot.status == SlotStatus.OPEN,
                    TimeSlot.is_available.is_(True),
                )
                .values(status=SlotStatus.DRAFT, is_available=False)
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error claiming slot {slot_id}: {str(e)}")
            raise RepositoryException(f"Failed to claim slot: {str(e)}")
        return result.rowcount == 1

    def transition_slots(
        self, slot_ids: Iterable[str], from_status: SlotStatus, to_status: SlotStatus
    ) -> int:
        """Move every listed slot currently in ``from_status`` to ``to_status``."""
        ids = list(slot_ids)
        if not ids:
            return 0
        try:
            result = self.db.execute(
                update(TimeSlot)
                .where(TimeSlot.id.in_(ids), TimeSlot.status == from_status)
                .values(status=to_status, is_available=False)
                .execution_options(synchronize_session="fetch")
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error transitioning slots: {str(e)}")
            raise RepositoryException(f"Failed to transition slots: {str(e)}")
        return result.rowcount

    def get_bookable_slots(self, instructor_id: str, from_date: date, to_date: date) -> List[TimeSlot]:
        """Open, available slots between two dates inclusive, in calendar order."""
        query = (
            self.db.query(TimeSlot)
            .join(CalendarDay, TimeSlot.calendar_day_id == CalendarDay.id)
            .options(joinedload(TimeSlot.day))
            .filter(
                CalendarDay.instructor_id == instructor_id,
                CalendarDay.day_date >= from_date,
                CalendarDay.day_date <= to_date,
                TimeSlot.status == SlotStatus.OPEN,
                TimeSlot.is_available.is_(True),
            )
            .order_by(CalendarDay.day_date, TimeSlot.start_time)
        )
        return self._execute_query(query)

    def find_stale_drafts(self, cutoff: datetime) -> List[TimeSlot]:
        """Draft slots created before ``cutoff`` that no lesson references."""
        referenced = select(Lesson.time_slot_id).where(Lesson.time_slot_id.isnot(None))
        query = (
            self.db.query(TimeSlot)
            .filter(
                TimeSlot.status == SlotStatus.DRAFT,
                TimeSlot.created_at < cutoff,
                TimeSlot.id.notin_(referenced),
            )
            .order_by(TimeSlot.created_at)
        )
        return self._execute_query(query)

    def list_days(self, instructor_id: str, from_date: date, to_date: date) -> List[CalendarDay]:
        """Calendar days that exist for the instructor between two dates inclusive."""
        query = (
            self.db.query(CalendarDay)
            .filter(
                CalendarDay.instructor_id == instructor_id,
                CalendarDay.day_date >= from_date,
                CalendarDay.day_date <= to_date,
            )
            .order_by(CalendarDay.day_date)
        )
        return self._execute_query(query)
