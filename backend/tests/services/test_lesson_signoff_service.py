"""
Lesson sign-off pipeline: guards, completion, payout transfer and the
best-effort side effects that follow.
"""

from datetime import timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy import insert

from lessonbook.core.exceptions import (
    AlreadyCompletedError,
    AlreadyProcessedError,
    ForbiddenException,
    LookupNotFoundError,
    NotOnboardedError,
    PaymentNotReceivedError,
    ServiceException,
    TransferFailedError,
)
from lessonbook.core.ulid_helper import generate_ulid
from lessonbook.models import (
    ActivityLog,
    LessonStatus,
    OrderStatus,
    PaymentMode,
    Payout,
    PayoutStatus,
    SlotStatus,
    SubjectKind,
    TimeSlot,
)
from lessonbook.services.activity_log_service import ActivityLogService, ActivitySubject
from lessonbook.services.lesson_signoff_service import LessonSignOffService
from lessonbook.services.stripe_service import ProcessorResult


@pytest.fixture
def signoff_service(db, clock, payment_processor, booking_service, email_service) -> LessonSignOffService:
    return LessonSignOffService(
        db,
        clock,
        payment_processor=payment_processor,
        booking_service=booking_service,
        email_service=email_service,
    )


class TestSignOffUpfront:
    def test_completes_lesson_and_pays_instructor(
        self, db, signoff_service, payment_processor, email_service, make_order, instructor
    ):
        finalized = make_order(PaymentMode.UPFRONT, lessons_count=1, total_price_pence=4000)
        lesson = finalized.lessons[0]

        result = signoff_service.sign_off_lesson(lesson.id, instructor.id)

        assert result.lesson.status == LessonStatus.COMPLETED
        assert result.lesson.completed_at is not None
        assert db.get(TimeSlot, lesson.time_slot_id).status == SlotStatus.COMPLETED

        assert result.payout.status == PayoutStatus.PAID
        assert result.payout.amount_pence == 4000
        assert result.payout.transfer_reference == "tr_test_1"
        assert result.payout.paid_at is not None

        assert result.order_completed is True
        assert finalized.order.status == OrderStatus.COMPLETED

        payment_processor.create_transfer.assert_called_once_with(
            amount_pence=4000,
            destination="acct_test_123",
            metadata={
                "lesson_id": lesson.id,
                "order_id": finalized.order.id,
                "instructor_id": instructor.id,
                "payout_id": result.payout.id,
            },
            idempotency_key=f"payout:{lesson.id}",
        )
        email_service.send_lesson_feedback_request.assert_called_once()

    def test_second_sign_off_rejected(self, db, signoff_service, payment_processor, make_order, instructor):
        lesson = make_order().lessons[0]
        signoff_service.sign_off_lesson(lesson.id, instructor.id)

        with pytest.raises(AlreadyCompletedError):
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

        assert db.query(Payout).filter_by(lesson_id=lesson.id).count() == 1
        assert payment_processor.create_transfer.call_count == 1

    def test_order_completes_with_its_last_lesson(self, signoff_service, make_order, instructor):
        finalized = make_order(PaymentMode.UPFRONT, lessons_count=2, total_price_pence=8000)
        first, second = finalized.lessons

        assert signoff_service.sign_off_lesson(first.id, instructor.id).order_completed is False
        assert finalized.order.status == OrderStatus.PENDING

        assert signoff_service.sign_off_lesson(second.id, instructor.id).order_completed is True
        assert finalized.order.status == OrderStatus.COMPLETED

    def test_remainder_paid_out_on_last_lesson(self, signoff_service, make_order, instructor):
        lessons = make_order(PaymentMode.UPFRONT, lessons_count=3, total_price_pence=10000).lessons

        payouts = [signoff_service.sign_off_lesson(lesson.id, instructor.id).payout for lesson in lessons]

        assert [p.amount_pence for p in payouts] == [3333, 3333, 3334]


class TestSignOffGuards:
    def test_unknown_lesson(self, signoff_service, instructor):
        with pytest.raises(LookupNotFoundError):
            signoff_service.sign_off_lesson("01J0000000000000000000NONE", instructor.id)

    def test_other_instructors_lesson(self, signoff_service, make_order, other_instructor):
        lesson = make_order().lessons[0]

        with pytest.raises(ForbiddenException) as exc_info:
            signoff_service.sign_off_lesson(lesson.id, other_instructor.id)

        assert exc_info.value.code == "LESSON_NOT_OWNED"
        assert lesson.status == LessonStatus.PENDING

    def test_instructor_must_be_onboarded(self, db, signoff_service, payment_processor, make_order, instructor):
        lesson = make_order().lessons[0]
        instructor.payouts_enabled = False
        db.commit()

        with pytest.raises(NotOnboardedError):
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

        assert lesson.status == LessonStatus.PENDING
        assert db.query(Payout).count() == 0
        payment_processor.create_transfer.assert_not_called()

    def test_weekly_lesson_must_be_paid(self, db, signoff_service, make_order, instructor):
        lesson = make_order(PaymentMode.WEEKLY, lessons_count=1, total_price_pence=4000).lessons[0]

        with pytest.raises(PaymentNotReceivedError) as exc_info:
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

        assert "09 Jun 2025" in exc_info.value.message
        assert exc_info.value.due_date is not None
        assert db.query(Payout).count() == 0

    def test_weekly_lesson_paid_can_be_signed_off(self, signoff_service, order_service, make_order, instructor):
        lesson = make_order(PaymentMode.WEEKLY, lessons_count=1, total_price_pence=4000).lessons[0]
        order_service.apply_invoice_paid("in_paid", lesson_id=lesson.id)

        result = signoff_service.sign_off_lesson(lesson.id, instructor.id)

        assert result.payout.status == PayoutStatus.PAID
        assert result.lesson.status == LessonStatus.COMPLETED

    def test_existing_payout_rejected(self, db, signoff_service, make_order, instructor):
        lesson = make_order().lessons[0]
        db.add(Payout(lesson_id=lesson.id, instructor_id=instructor.id, amount_pence=4000))
        db.commit()
        db.expire(lesson)

        with pytest.raises(AlreadyProcessedError):
            signoff_service.sign_off_lesson(lesson.id, instructor.id)


class TestPayoutRace:
    def test_concurrent_payout_rolls_back_completion(self, db, signoff_service, make_order, instructor):
        lesson = make_order().lessons[0]
        # A concurrent sign-off committed its payout after our guards ran
        db.execute(
            insert(Payout.__table__).values(
                id=generate_ulid(),
                lesson_id=lesson.id,
                instructor_id=instructor.id,
                amount_pence=lesson.amount_pence,
                status=PayoutStatus.PENDING,
            )
        )
        db.commit()

        with pytest.raises(AlreadyProcessedError):
            signoff_service._complete_lesson(lesson, instructor)

        assert db.query(Payout).filter_by(lesson_id=lesson.id).count() == 1
        assert lesson.status == LessonStatus.PENDING
        assert db.get(TimeSlot, lesson.time_slot_id).status == SlotStatus.BOOKED


class TestTransferFailure:
    def test_payout_marked_failed_and_lesson_stays_completed(
        self, db, signoff_service, payment_processor, email_service, make_order, instructor
    ):
        payment_processor.create_transfer.return_value = ProcessorResult.failed("insufficient funds")
        lesson = make_order().lessons[0]

        with pytest.raises(TransferFailedError) as exc_info:
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

        payout = db.query(Payout).filter_by(lesson_id=lesson.id).one()
        assert exc_info.value.payout_id == payout.id
        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "insufficient funds"
        assert payout.transfer_reference is None
        assert lesson.status == LessonStatus.COMPLETED
        email_service.send_lesson_feedback_request.assert_not_called()

    def test_failed_payout_blocks_a_retry(self, signoff_service, payment_processor, make_order, instructor):
        payment_processor.create_transfer.return_value = ProcessorResult.failed("insufficient funds")
        lesson = make_order().lessons[0]
        with pytest.raises(TransferFailedError):
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

        with pytest.raises(AlreadyCompletedError):
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

    def test_processor_exception_marks_payout_failed(
        self, db, signoff_service, payment_processor, email_service, make_order, instructor
    ):
        payment_processor.create_transfer.side_effect = RuntimeError("connection reset")
        lesson = make_order().lessons[0]

        with pytest.raises(TransferFailedError) as exc_info:
            signoff_service.sign_off_lesson(lesson.id, instructor.id)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        payout = db.query(Payout).filter_by(lesson_id=lesson.id).one()
        assert exc_info.value.payout_id == payout.id
        assert payout.status == PayoutStatus.FAILED
        assert payout.failure_reason == "connection reset"
        assert lesson.status == LessonStatus.COMPLETED
        email_service.send_lesson_feedback_request.assert_not_called()

        with pytest.raises(AlreadyCompletedError):
            signoff_service.sign_off_lesson(lesson.id, instructor.id)
        db.refresh(payout)
        assert payout.status == PayoutStatus.FAILED


class TestSideEffects:
    def test_activity_logged_for_both_parties(self, db, clock, signoff_service, make_order, instructor, student):
        lesson = make_order().lessons[0]

        signoff_service.sign_off_lesson(lesson.id, instructor.id)

        activity = ActivityLogService(db, clock)
        (student_entry,) = activity.list_for(ActivitySubject.of(student))
        (instructor_entry,) = activity.list_for(ActivitySubject.of(instructor))

        assert student_entry.message == "Lesson on 10 Jun 2025 signed off by Sarah Collins"
        assert student_entry.category == "lesson"
        assert student_entry.details == {
            "lesson_id": lesson.id,
            "instructor_id": instructor.id,
            "payout_amount_pence": 4000,
        }
        assert instructor_entry.subject_kind == SubjectKind.INSTRUCTOR
        assert instructor_entry.message == "Signed off lesson on 10 Jun 2025 for Jamie Reid"
        assert instructor_entry.details["student_id"] == student.id

    def test_side_effect_failures_do_not_fail_sign_off(
        self, db, clock, payment_processor, booking_service, email_service, make_order, instructor
    ):
        activity_log_service = MagicMock(spec=ActivityLogService)
        activity_log_service.log_activity.side_effect = ServiceException("log store down")
        email_service.send_lesson_feedback_request.side_effect = ServiceException("resend down")
        service = LessonSignOffService(
            db,
            clock,
            payment_processor=payment_processor,
            booking_service=booking_service,
            activity_log_service=activity_log_service,
            email_service=email_service,
        )
        lesson = make_order().lessons[0]

        result = service.sign_off_lesson(lesson.id, instructor.id)

        assert result.payout.status == PayoutStatus.PAID
        assert activity_log_service.log_activity.call_count == 2
        assert db.query(ActivityLog).count() == 0

    def test_no_email_without_address(self, db, signoff_service, email_service, make_order, instructor, student):
        student.email = None
        db.commit()
        lesson = make_order().lessons[0]

        signoff_service.sign_off_lesson(lesson.id, instructor.id)

        email_service.send_lesson_feedback_request.assert_not_called()

    def test_completion_time_from_clock(self, signoff_service, make_order, instructor, clock):
        lesson = make_order().lessons[0]

        result = signoff_service.sign_off_lesson(lesson.id, instructor.id)

        completed_at = result.lesson.completed_at
        if completed_at.tzinfo is not None:
            completed_at = completed_at.astimezone(timezone.utc).replace(tzinfo=None)
        assert completed_at == clock.now().replace(tzinfo=None)
