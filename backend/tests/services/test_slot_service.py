"""
Slot store tests: overlap rule, calendar day lifecycle and slot moves.
"""

from datetime import date, time

import pytest

from lessonbook.core.exceptions import (
    HasLessonsError,
    InvalidTimeRangeError,
    LookupNotFoundError,
    OverlapError,
    SlotUnavailableError,
)
from lessonbook.models import CalendarDay, SlotStatus, TimeSlot

LESSON_DAY = date(2025, 6, 10)


def _day_count(db, instructor_id: str, day_date: date) -> int:
    return db.query(CalendarDay).filter_by(instructor_id=instructor_id, day_date=day_date).count()


class TestCreateSlot:
    def test_creates_open_slot_and_day(self, db, slot_service, instructor):
        slot = slot_service.create_slot(instructor.id, LESSON_DAY, time(9, 0), time(10, 0))

        assert slot.status == SlotStatus.OPEN
        assert slot.is_available is True
        assert slot.instructor_id == instructor.id
        assert slot.slot_date == LESSON_DAY
        assert _day_count(db, instructor.id, LESSON_DAY) == 1

    def test_second_slot_reuses_day(self, db, make_slot, instructor):
        first = make_slot(LESSON_DAY, time(9, 0), time(10, 0))
        second = make_slot(LESSON_DAY, time(11, 0), time(12, 0))

        assert first.calendar_day_id == second.calendar_day_id
        assert _day_count(db, instructor.id, LESSON_DAY) == 1

    def test_overlap_rejected(self, db, make_slot):
        make_slot(LESSON_DAY, time(9, 0), time(10, 0))

        with pytest.raises(OverlapError) as exc_info:
            make_slot(LESSON_DAY, time(9, 30), time(10, 30))

        assert exc_info.value.details["conflicting_slot"] == "09:00-10:00"
        assert db.query(TimeSlot).count() == 1

    def test_enclosing_interval_rejected(self, make_slot):
        make_slot(LESSON_DAY, time(10, 0), time(11, 0))
        with pytest.raises(OverlapError):
            make_slot(LESSON_DAY, time(9, 0), time(12, 0))

    def test_touching_boundaries_allowed(self, db, make_slot):
        make_slot(LESSON_DAY, time(9, 0), time(10, 0))
        make_slot(LESSON_DAY, time(10, 0), time(11, 0))
        make_slot(LESSON_DAY, time(8, 0), time(9, 0))

        assert db.query(TimeSlot).count() == 3

    def test_overlap_checked_against_held_slots(self, make_slot, booking_service):
        held = make_slot(LESSON_DAY, time(9, 0), time(10, 0))
        booking_service.hold_as_draft(held.id)

        with pytest.raises(OverlapError):
            make_slot(LESSON_DAY, time(9, 0), time(10, 0))

    def test_other_instructors_do_not_conflict(self, make_slot, other_instructor):
        make_slot(LESSON_DAY, time(9, 0), time(10, 0))
        slot = make_slot(LESSON_DAY, time(9, 0), time(10, 0), instructor_id=other_instructor.id)

        assert slot.instructor_id == other_instructor.id

    @pytest.mark.parametrize("start,end", [(time(10, 0), time(10, 0)), (time(10, 0), time(9, 0))])
    def test_end_must_follow_start(self, db, slot_service, instructor, start, end):
        with pytest.raises(InvalidTimeRangeError):
            slot_service.create_slot(instructor.id, LESSON_DAY, start, end)

        assert _day_count(db, instructor.id, LESSON_DAY) == 0


class TestDeleteSlot:
    def test_deleting_last_slot_removes_day(self, db, slot_service, make_slot, instructor):
        slot = make_slot(LESSON_DAY)

        assert slot_service.delete_slot(slot.id) is True
        assert db.query(TimeSlot).count() == 0
        assert _day_count(db, instructor.id, LESSON_DAY) == 0

    def test_day_kept_while_other_slots_remain(self, db, slot_service, make_slot, instructor):
        slot = make_slot(LESSON_DAY, time(9, 0), time(10, 0))
        make_slot(LESSON_DAY, time(11, 0), time(12, 0))

        assert slot_service.delete_slot(slot.id) is False
        assert _day_count(db, instructor.id, LESSON_DAY) == 1

    def test_slot_with_lessons_cannot_be_deleted(self, db, slot_service, make_order):
        finalized = make_order()
        slot_id = finalized.lessons[0].time_slot_id

        with pytest.raises(HasLessonsError) as exc_info:
            slot_service.delete_slot(slot_id)

        assert exc_info.value.details["lesson_count"] == 1
        assert db.get(TimeSlot, slot_id) is not None

    def test_held_slot_cannot_be_deleted(self, slot_service, booking_service, make_slot):
        slot = make_slot(LESSON_DAY)
        booking_service.hold_as_draft(slot.id)

        with pytest.raises(SlotUnavailableError):
            slot_service.delete_slot(slot.id)

    def test_unknown_slot(self, slot_service):
        with pytest.raises(LookupNotFoundError):
            slot_service.delete_slot("01J0000000000000000000NONE")


class TestMoveSlot:
    def test_move_within_day(self, slot_service, make_slot):
        slot = make_slot(LESSON_DAY, time(9, 0), time(10, 0))

        moved = slot_service.move_slot(slot.id, LESSON_DAY, time(9, 30), time(10, 30))

        assert moved.start_time == time(9, 30)
        assert moved.end_time == time(10, 30)

    def test_move_to_new_day_removes_empty_origin(self, db, slot_service, make_slot, instructor):
        slot = make_slot(LESSON_DAY)
        new_day = date(2025, 6, 12)

        moved = slot_service.move_slot(slot.id, new_day, time(14, 0), time(15, 0))

        assert moved.slot_date == new_day
        assert _day_count(db, instructor.id, LESSON_DAY) == 0
        assert _day_count(db, instructor.id, new_day) == 1

    def test_move_into_overlap_rejected(self, slot_service, make_slot):
        make_slot(date(2025, 6, 12), time(14, 0), time(15, 0))
        slot = make_slot(LESSON_DAY)

        with pytest.raises(OverlapError):
            slot_service.move_slot(slot.id, date(2025, 6, 12), time(14, 30), time(15, 30))

    def test_move_can_toggle_availability(self, slot_service, make_slot):
        slot = make_slot(LESSON_DAY)

        moved = slot_service.move_slot(slot.id, LESSON_DAY, time(9, 0), time(10, 0), is_available=False)

        assert moved.is_available is False
        assert moved.is_bookable is False

    def test_move_validates_range(self, slot_service, make_slot):
        slot = make_slot(LESSON_DAY)
        with pytest.raises(InvalidTimeRangeError):
            slot_service.move_slot(slot.id, LESSON_DAY, time(11, 0), time(10, 0))
