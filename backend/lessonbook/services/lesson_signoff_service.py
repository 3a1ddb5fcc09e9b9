# backend/lessonbook/services/lesson_signoff_service.py
"""
Lesson Sign-Off Service

Completes a delivered lesson and pays its instructor.

The pipeline runs in three stages:

1. One short transaction marks the lesson and its slot completed, writes a
   pending payout and closes the order once its last lesson completes.
2. The processor transfer is requested with no transaction open.
3. A second short transaction records the transfer outcome on the payout.

A rejected transfer leaves the completed lesson in place and the payout
marked failed, for manual reconciliation. Activity entries and the feedback
email are sent afterwards and never fail the sign-off.
"""

from dataclasses import dataclass
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.exceptions import (
    AlreadyCompletedError,
    AlreadyProcessedError,
    ForbiddenException,
    LookupNotFoundError,
    NotOnboardedError,
    PaymentNotReceivedError,
    RepositoryException,
    TransferFailedError,
)
from ..models.enums import LessonStatus, OrderStatus, PayoutStatus
from ..models.instructor import Instructor
from ..models.order import Lesson, Payout
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.base_repository import is_integrity_violation
from ..repositories.factory import RepositoryFactory
from .activity_log_service import ActivityLogService, ActivitySubject
from .base import BaseService
from .booking_state_service import BookingStateService
from .email import EmailService
from .stripe_service import StripeService

logger = logging.getLogger(__name__)

ACTIVITY_CATEGORY = "lesson"


@dataclass
class SignOffResult:
    lesson: Lesson
    payout: Payout
    order_completed: bool


class LessonSignOffService(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[SystemClock] = None,
        payment_processor: Optional[StripeService] = None,
        booking_service: Optional[BookingStateService] = None,
        activity_log_service: Optional[ActivityLogService] = None,
        email_service: Optional[EmailService] = None,
    ):
        super().__init__(db, clock)
        self._payment_processor = payment_processor
        self._email_service = email_service
        self.booking_service = booking_service or BookingStateService(db, self.clock)
        self.activity_log_service = activity_log_service or ActivityLogService(db, self.clock)
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)
        self.order_repository = RepositoryFactory.create_order_repository(db)
        self.payout_repository = RepositoryFactory.create_payout_repository(db)
        self.instructor_repository = RepositoryFactory.create_instructor_repository(db)

    @property
    def payment_processor(self) -> StripeService:
        if self._payment_processor is None:
            self._payment_processor = StripeService()
        return self._payment_processor

    @property
    def email_service(self) -> EmailService:
        if self._email_service is None:
            self._email_service = EmailService()
        return self._email_service

    @BaseService.measure_operation("sign_off_lesson")
    def sign_off_lesson(self, lesson_id: str, instructor_id: str) -> SignOffResult:
        """
        Sign off a lesson: complete it, pay the instructor, notify the student.

        Raises:
            LookupNotFoundError: unknown lesson or instructor
            ForbiddenException: the lesson belongs to another instructor
            AlreadyCompletedError: the lesson was already signed off
            NotOnboardedError: the instructor cannot receive payouts yet
            PaymentNotReceivedError: weekly lesson whose payment is outstanding
            AlreadyProcessedError: a payout already exists for the lesson
            TransferFailedError: the processor rejected the transfer; the
                lesson stays completed and the payout is marked failed
        """
        lesson = self.lesson_repository.get_with_relations(lesson_id)
        if lesson is None:
            raise LookupNotFoundError("Lesson", lesson_id)
        instructor = self.instructor_repository.get_by_id(instructor_id)
        if instructor is None:
            raise LookupNotFoundError("Instructor", instructor_id)
        if lesson.instructor_id != instructor.id:
            raise ForbiddenException(
                "You can only sign off your own lessons",
                code="LESSON_NOT_OWNED",
                details={"lesson_id": lesson_id, "instructor_id": instructor_id},
            )

        self._check_preconditions(lesson, instructor)

        payout, order_completed = self._complete_lesson(lesson, instructor)
        payout = self._transfer(payout, lesson, instructor)

        self.logger.info(
            f"Lesson {lesson.id} signed off",
            extra={
                "lesson_id": lesson.id,
                "instructor_id": instructor.id,
                "payout_id": payout.id,
                "order_completed": order_completed,
            },
        )

        self._log_sign_off_activity(lesson, instructor, payout)
        self._send_feedback_request(lesson, instructor)

        return SignOffResult(lesson=lesson, payout=payout, order_completed=order_completed)

    # Stages

    def _check_preconditions(self, lesson: Lesson, instructor: Instructor) -> None:
        if lesson.status != LessonStatus.PENDING:
            raise AlreadyCompletedError(lesson.id)

        if not instructor.can_receive_payouts:
            raise NotOnboardedError(instructor.id)

        if lesson.order.is_weekly:
            payment = lesson.payment
            if payment is None:
                raise PaymentNotReceivedError(lesson.id)
            if not payment.is_paid:
                raise PaymentNotReceivedError(lesson.id, payment.due_date)

        if lesson.payout is not None:
            raise AlreadyProcessedError(lesson.id)

    def _complete_lesson(self, lesson: Lesson, instructor: Instructor) -> Tuple[Payout, bool]:
        with self.transaction():
            locked = self.lesson_repository.get_by_id(lesson.id, for_update=True)
            if locked is None or locked.status != LessonStatus.PENDING:
                raise AlreadyCompletedError(lesson.id)

            locked.status = LessonStatus.COMPLETED
            locked.completed_at = self.clock.now()
            self.booking_service.complete_slot_for(locked)

            try:
                payout = self.payout_repository.create(
                    lesson_id=locked.id,
                    instructor_id=instructor.id,
                    amount_pence=locked.amount_pence,
                    status=PayoutStatus.PENDING,
                )
            except RepositoryException as exc:
                if is_integrity_violation(exc):
                    raise AlreadyProcessedError(lesson.id) from exc
                raise

            order_completed = False
            if self.lesson_repository.count_unfinished_for_order(locked.order_id) == 0:
                order = self.order_repository.get_by_id(locked.order_id, for_update=True)
                if order.status != OrderStatus.COMPLETED:
                    order.status = OrderStatus.COMPLETED
                    order_completed = True
                    self.db.flush()

        return payout, order_completed

    def _transfer(self, payout: Payout, lesson: Lesson, instructor: Instructor) -> Payout:
        try:
            result = self.payment_processor.create_transfer(
                amount_pence=payout.amount_pence,
                destination=instructor.stripe_account_id,
                metadata={
                    "lesson_id": lesson.id,
                    "order_id": lesson.order_id,
                    "instructor_id": instructor.id,
                    "payout_id": payout.id,
                },
                idempotency_key=f"payout:{lesson.id}",
            )
        except Exception as exc:
            # The payout row must never be left pending once the lesson is completed
            self._record_transfer_failure(payout, str(exc))
            self.logger.error(
                f"Payout {payout.id} transfer raised; lesson {lesson.id} stays completed: {str(exc)}",
                extra={"payout_id": payout.id, "lesson_id": lesson.id},
            )
            raise TransferFailedError(payout.id, str(exc)) from exc

        with self.transaction():
            if result.success:
                payout.status = PayoutStatus.PAID
                payout.transfer_reference = result.id
                payout.paid_at = self.clock.now()
            else:
                payout.status = PayoutStatus.FAILED
                payout.failure_reason = result.error
            self.db.flush()

        prometheus_metrics.record_payout(payout.status.value)
        if not result.success:
            self.logger.error(
                f"Payout {payout.id} failed; lesson {lesson.id} stays completed",
                extra={"payout_id": payout.id, "lesson_id": lesson.id, "error": result.error},
            )
            raise TransferFailedError(payout.id, result.error or "unknown error")
        return payout

    def _record_transfer_failure(self, payout: Payout, reason: str) -> None:
        with self.transaction():
            payout.status = PayoutStatus.FAILED
            payout.failure_reason = reason
            self.db.flush()
        prometheus_metrics.record_payout(payout.status.value)

    # Best-effort side effects

    def _log_sign_off_activity(self, lesson: Lesson, instructor: Instructor, payout: Payout) -> None:
        student = lesson.order.student
        lesson_date = lesson.lesson_date.strftime("%d %b %Y")

        entries = (
            (
                ActivitySubject.of(student),
                f"Lesson on {lesson_date} signed off by {instructor.name}",
                {"lesson_id": lesson.id, "instructor_id": instructor.id},
            ),
            (
                ActivitySubject.of(instructor),
                f"Signed off lesson on {lesson_date} for {student.full_name}",
                {"lesson_id": lesson.id, "student_id": student.id},
            ),
        )
        for subject, message, metadata in entries:
            try:
                self.activity_log_service.log_activity(
                    subject,
                    message,
                    ACTIVITY_CATEGORY,
                    {**metadata, "payout_amount_pence": payout.amount_pence},
                )
            except Exception as e:
                self.logger.error(
                    f"Failed to log sign-off activity for {subject.kind.value} {subject.id}: {str(e)}",
                    extra={"lesson_id": lesson.id},
                )

    def _send_feedback_request(self, lesson: Lesson, instructor: Instructor) -> None:
        student = lesson.order.student
        if not student.email:
            return
        try:
            self.email_service.send_lesson_feedback_request(lesson, student, instructor)
        except Exception as e:
            self.logger.error(
                f"Failed to send feedback request for lesson {lesson.id}: {str(e)}",
                extra={"lesson_id": lesson.id, "student_id": student.id},
            )
