# backend/lessonbook/services/booking_state_service.py
"""
Booking State Service

Drives time slots through their booking lifecycle:

    open -> draft -> reserved | booked -> completed

A booking funnel holds a slot (and the matching slots in following weeks)
as draft before payment. Order finalization confirms the whole series in
one step, landing each slot in ``booked`` for upfront orders or
``reserved`` for weekly ones. A slot only completes together with its
lesson. Drafts abandoned before the start of today are swept away.
"""

from dataclasses import dataclass
from datetime import date, timedelta
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.config import settings
from ..core.exceptions import (
    InvalidSeriesError,
    InvalidTransitionError,
    LookupNotFoundError,
    SlotUnavailableError,
)
from ..models.calendar import TimeSlot
from ..models.enums import LessonStatus, PaymentMode, SlotStatus, can_transition
from ..models.order import Lesson
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .slot_service import SlotService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingSeries:
    """
    Candidate schedule for one purchase: one slot per week from the anchor.

    Lives only between slot selection and order finalization.
    """

    instructor_id: str
    anchor_date: date
    slot_ids: Tuple[str, ...]

    @property
    def lessons_count(self) -> int:
        return len(self.slot_ids)

    def date_for(self, index: int) -> date:
        return self.anchor_date + timedelta(days=settings.series_interval_days * index)

    @property
    def dates(self) -> List[date]:
        return [self.date_for(i) for i in range(self.lessons_count)]


class BookingStateService(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[SystemClock] = None,
        slot_service: Optional[SlotService] = None,
    ):
        super().__init__(db, clock)
        self.repository = RepositoryFactory.create_calendar_repository(db)
        self.slot_service = slot_service or SlotService(db, self.clock)

    @BaseService.measure_operation("hold_as_draft")
    def hold_as_draft(self, slot_id: str) -> TimeSlot:
        """
        Claim an open slot for an in-progress purchase.

        Raises:
            LookupNotFoundError: no such slot
            SlotUnavailableError: someone else holds or booked it
        """
        with self.transaction():
            slot = self._claim(slot_id)
        self.logger.info(f"Held slot {slot_id} as draft", extra={"slot_id": slot_id})
        return slot

    @BaseService.measure_operation("reserve_series")
    def reserve_series(self, slot_id: str, lessons_count: int) -> BookingSeries:
        """
        Hold a weekly series anchored on the chosen slot.

        The chosen slot is held, then each following week gets a draft slot
        with the same times: an identical open slot is claimed when one
        exists, otherwise a synthetic draft is created under the usual
        overlap rule. Any conflicting week fails the whole hold.
        """
        if lessons_count < 1:
            raise InvalidSeriesError(
                "A series needs at least one lesson", details={"lessons_count": lessons_count}
            )

        with self.transaction():
            anchor = self._claim(slot_id)
            instructor_id = anchor.instructor_id
            series = BookingSeries(instructor_id, anchor.slot_date, (anchor.id,))
            slot_ids = [anchor.id]

            for week in range(1, lessons_count):
                week_date = series.date_for(week)
                existing = self.repository.find_slot_with_interval(
                    instructor_id, week_date, anchor.start_time, anchor.end_time
                )
                if existing is not None and existing.is_bookable:
                    slot_ids.append(self._claim(existing.id).id)
                    continue
                draft = self.slot_service.insert_slot(
                    instructor_id,
                    week_date,
                    anchor.start_time,
                    anchor.end_time,
                    status=SlotStatus.DRAFT,
                )
                slot_ids.append(draft.id)

        series = BookingSeries(instructor_id, anchor.slot_date, tuple(slot_ids))
        self.logger.info(
            f"Reserved {lessons_count}-week series from {series.anchor_date}",
            extra={"instructor_id": instructor_id, "slot_ids": list(series.slot_ids)},
        )
        return series

    @BaseService.measure_operation("confirm_series")
    def confirm_series(self, series: BookingSeries, payment_mode: PaymentMode) -> List[TimeSlot]:
        """
        Confirm every draft slot in the series for a payment mode.

        All or nothing: if any slot is missing, not in draft, belongs to
        another instructor or falls off the weekly cadence, no slot changes.

        Returns:
            The series' slots in series order
        """
        slot_ids = list(series.slot_ids)
        if not slot_ids:
            raise InvalidSeriesError("A series needs at least one slot")
        if len(set(slot_ids)) != len(slot_ids):
            raise InvalidSeriesError("A series cannot repeat a slot", details={"slot_ids": slot_ids})

        target = payment_mode.confirmed_slot_status()
        with self.transaction():
            found = {slot.id: slot for slot in self.repository.get_slots(slot_ids, for_update=True)}
            missing = [slot_id for slot_id in slot_ids if slot_id not in found]
            if missing:
                raise InvalidSeriesError("Series slots not found", details={"missing_slot_ids": missing})

            ordered = [found[slot_id] for slot_id in slot_ids]
            for index, slot in enumerate(ordered):
                self._check_series_member(series, index, slot)

            updated = self.repository.transition_slots(slot_ids, SlotStatus.DRAFT, target)
            if updated != len(slot_ids):
                raise InvalidSeriesError(
                    "Series changed while it was being confirmed",
                    details={"expected": len(slot_ids), "updated": updated},
                )

        self.logger.info(
            f"Confirmed {len(ordered)} slots as {target.value}",
            extra={"instructor_id": series.instructor_id, "payment_mode": payment_mode.value},
        )
        return ordered

    def complete_slot_for(self, lesson: Lesson) -> Optional[TimeSlot]:
        """
        Mark the lesson's slot completed inside the caller's transaction.

        Only valid while the lesson itself is being completed; a lesson
        whose slot has been removed is a no-op.
        """
        if lesson.status != LessonStatus.COMPLETED:
            raise InvalidTransitionError("lesson", lesson.status.value, LessonStatus.COMPLETED.value)

        slot = lesson.time_slot
        if slot is None:
            return None
        if not can_transition(slot.status, SlotStatus.COMPLETED):
            raise InvalidTransitionError("time slot", slot.status.value, SlotStatus.COMPLETED.value)
        slot.status = SlotStatus.COMPLETED
        slot.is_available = False
        self.db.flush()
        return slot

    @BaseService.measure_operation("cleanup_abandoned_drafts")
    def cleanup_abandoned_drafts(self, dry_run: bool = False) -> int:
        """
        Delete draft slots created before the start of today.

        Drafts a lesson points at are left alone. Calendar days emptied by
        the sweep are removed.

        Returns:
            Number of drafts deleted (or that would be, on a dry run)
        """
        cutoff = self.clock.start_of_today()
        with self.transaction():
            stale = self.repository.find_stale_drafts(cutoff)
            if not dry_run:
                day_ids = {slot.calendar_day_id for slot in stale}
                for slot in stale:
                    self.db.delete(slot)
                self.db.flush()
                for day_id in day_ids:
                    self.repository.delete_day_if_empty(day_id)

        self.logger.info(
            f"{'Would delete' if dry_run else 'Deleted'} {len(stale)} abandoned draft slots",
            extra={"deleted_count": len(stale), "cutoff": cutoff.isoformat(), "dry_run": dry_run},
        )
        return len(stale)

    # Helpers

    def _claim(self, slot_id: str) -> TimeSlot:
        if not self.repository.claim_open_slot(slot_id):
            slot = self.repository.get_slot(slot_id)
            if slot is None:
                raise LookupNotFoundError("Time slot", slot_id)
            raise SlotUnavailableError(slot_id, slot.status.value)
        slot = self.repository.get_slot(slot_id)
        return slot

    def _check_series_member(self, series: BookingSeries, index: int, slot: TimeSlot) -> None:
        if slot.status != SlotStatus.DRAFT:
            raise InvalidSeriesError(
                "Series slot is not held as draft",
                details={"slot_id": slot.id, "status": slot.status.value},
            )
        if slot.instructor_id != series.instructor_id:
            raise InvalidSeriesError(
                "Series slots must belong to one instructor",
                details={"slot_id": slot.id, "instructor_id": slot.instructor_id},
            )
        expected = series.date_for(index)
        if slot.slot_date != expected:
            raise InvalidSeriesError(
                "Series slots must fall one week apart from the anchor date",
                details={
                    "slot_id": slot.id,
                    "expected_date": expected.isoformat(),
                    "actual_date": slot.slot_date.isoformat(),
                },
            )
