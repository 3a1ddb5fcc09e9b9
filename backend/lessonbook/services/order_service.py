# backend/lessonbook/services/order_service.py
"""
Order Service

Turns a held slot series into a purchase and follows the purchase through
its payment events.

Finalization is one unit of work: the order, the slot confirmation, the
lessons and (weekly mode) the per-lesson dues commit together or not at all.
Pricing is copied from the catalog package at that moment and never read
back from it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import SystemClock
from ..core.config import settings
from ..core.exceptions import (
    BusinessRuleException,
    InvalidSeriesError,
    LookupNotFoundError,
    ServiceException,
)
from ..models.enums import LessonPaymentStatus, LessonStatus, OrderStatus, PaymentMode
from ..models.order import Lesson, LessonPayment, Order
from ..models.package import Package, per_lesson_price
from ..models.student import Student
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .booking_state_service import BookingSeries, BookingStateService
from .email import EmailService
from .stripe_service import ProcessorResult, StripeService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageSnapshot:
    """Immutable copy of a package's pricing taken at purchase time."""

    name: str
    total_price_pence: int
    lessons_count: int
    package_id: Optional[str] = None

    @classmethod
    def from_package(cls, package: Package) -> "PackageSnapshot":
        return cls(
            name=package.name,
            total_price_pence=package.total_price_pence,
            lessons_count=package.lessons_count,
            package_id=package.id,
        )

    @property
    def lesson_price_pence(self) -> int:
        return per_lesson_price(self.total_price_pence, self.lessons_count)

    @property
    def remainder_pence(self) -> int:
        return self.total_price_pence - self.lesson_price_pence * self.lessons_count

    def lesson_amounts(self) -> List[int]:
        """Per-lesson charges; the final lesson carries the division remainder."""
        amounts = [self.lesson_price_pence] * self.lessons_count
        if amounts:
            amounts[-1] += self.remainder_pence
        return amounts


@dataclass
class FinalizedOrder:
    order: Order
    lessons: List[Lesson]


class OrderService(BaseService):
    def __init__(
        self,
        db: Session,
        clock: Optional[SystemClock] = None,
        booking_service: Optional[BookingStateService] = None,
        payment_processor: Optional[StripeService] = None,
        email_service: Optional[EmailService] = None,
    ):
        super().__init__(db, clock)
        self.booking_service = booking_service or BookingStateService(db, self.clock)
        self._payment_processor = payment_processor
        self._email_service = email_service
        self.order_repository = RepositoryFactory.create_order_repository(db)
        self.lesson_repository = RepositoryFactory.create_lesson_repository(db)
        self.lesson_payment_repository = RepositoryFactory.create_lesson_payment_repository(db)
        self.student_repository = RepositoryFactory.create_student_repository(db)
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

    @BaseService.measure_operation("finalize_order")
    def finalize_order(
        self,
        student_id: str,
        instructor_id: str,
        snapshot: PackageSnapshot,
        payment_mode: PaymentMode,
        series: BookingSeries,
    ) -> FinalizedOrder:
        """
        Create the order, confirm its series and schedule its lessons.

        Safe to re-drive from scratch after any failure: nothing is kept
        unless every step succeeds.

        Raises:
            InvalidSeriesError: the series does not match the package or
                its slots are no longer held as draft
            LookupNotFoundError: unknown student or instructor
        """
        if series.lessons_count != snapshot.lessons_count:
            raise InvalidSeriesError(
                "Series length does not match the package",
                details={"series": series.lessons_count, "package": snapshot.lessons_count},
            )
        if series.instructor_id != instructor_id:
            raise InvalidSeriesError(
                "Series belongs to a different instructor",
                details={"series_instructor_id": series.instructor_id, "instructor_id": instructor_id},
            )

        with self.transaction():
            if not self.student_repository.exists(id=student_id):
                raise LookupNotFoundError("Student", student_id)
            if not self.instructor_repository.exists(id=instructor_id):
                raise LookupNotFoundError("Instructor", instructor_id)

            order = self.order_repository.create(
                student_id=student_id,
                instructor_id=instructor_id,
                package_id=snapshot.package_id,
                package_name=snapshot.name,
                package_total_price_pence=snapshot.total_price_pence,
                package_lesson_price_pence=snapshot.lesson_price_pence,
                package_lessons_count=snapshot.lessons_count,
                payment_mode=payment_mode,
                status=OrderStatus.PENDING,
            )

            slots = self.booking_service.confirm_series(series, payment_mode)

            lessons: List[Lesson] = []
            for index, (slot, amount) in enumerate(zip(slots, snapshot.lesson_amounts())):
                lesson = Lesson(
                    order=order,
                    instructor_id=instructor_id,
                    time_slot_id=slot.id,
                    lesson_date=series.date_for(index),
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    amount_pence=amount,
                    status=LessonStatus.PENDING,
                )
                self.db.add(lesson)
                if payment_mode == PaymentMode.WEEKLY:
                    self.db.add(
                        LessonPayment(
                            lesson=lesson,
                            amount_pence=amount,
                            status=LessonPaymentStatus.DUE,
                            due_date=self._due_date_for(lesson),
                        )
                    )
                lessons.append(lesson)
            self.db.flush()

        self.logger.info(
            f"Finalized order {order.id} with {len(lessons)} lessons",
            extra={
                "order_id": order.id,
                "student_id": student_id,
                "instructor_id": instructor_id,
                "payment_mode": payment_mode.value,
            },
        )
        return FinalizedOrder(order=order, lessons=lessons)

    @BaseService.measure_operation("apply_payment_confirmed")
    def apply_payment_confirmed(self, order_id: str) -> Order:
        """Activate a pending order. Repeat calls on an active order do nothing."""
        with self.transaction():
            order = self.order_repository.get_by_id(order_id, for_update=True)
            if order is None:
                raise LookupNotFoundError("Order", order_id)
            activated = self._activate(order)
        if activated:
            self._send_order_confirmation(order)
        return order

    @BaseService.measure_operation("activate_weekly_order")
    def activate_weekly_order(self, order_id: str) -> Order:
        """Weekly orders go live straight away; their lessons are invoiced later."""
        with self.transaction():
            order = self.order_repository.get_by_id(order_id, for_update=True)
            if order is None:
                raise LookupNotFoundError("Order", order_id)
            if not order.is_weekly:
                raise BusinessRuleException(
                    "Only weekly orders are activated without payment",
                    code="ORDER_NOT_WEEKLY",
                    details={"order_id": order_id},
                )
            activated = self._activate(order)
        if activated:
            self._send_order_confirmation(order)
        return order

    @BaseService.measure_operation("start_checkout")
    def start_checkout(self, order_id: str, success_url: str, cancel_url: str) -> ProcessorResult:
        """
        Open a processor checkout session for an upfront order.

        The price is built from the order's snapshot, never the live package.
        """
        order = self.order_repository.get_by_id(order_id)
        if order is None:
            raise LookupNotFoundError("Order", order_id)
        if not order.is_upfront:
            raise BusinessRuleException(
                "Checkout is only used for upfront orders",
                code="ORDER_NOT_UPFRONT",
                details={"order_id": order_id},
            )
        if order.status != OrderStatus.PENDING:
            raise BusinessRuleException(
                "Order is no longer awaiting payment",
                code="ORDER_NOT_PENDING",
                details={"order_id": order_id, "status": order.status.value},
            )

        metadata = {"order_id": order.id, "student_id": order.student_id}
        if order.package_id:
            metadata["package_id"] = order.package_id
        customer_id = self.ensure_customer(order.student)

        price = self.payment_processor.create_price(order.package_name, order.package_total_price_pence, metadata)
        if not price.success:
            raise ServiceException(f"Failed to create checkout session: {price.error}")
        session = self.payment_processor.create_checkout_session(
            customer_id=customer_id,
            price_id=price.id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        if not session.success:
            raise ServiceException(f"Failed to create checkout session: {session.error}")

        with self.transaction():
            order.checkout_session_reference = session.id
        self.logger.info(
            f"Checkout session created for order {order.id}",
            extra={"order_id": order.id, "checkout_session_reference": session.id},
        )
        return session

    def ensure_customer(self, student: Student) -> str:
        """Processor customer id for the student, created on first use."""
        if student.stripe_customer_id:
            return student.stripe_customer_id
        result = self.payment_processor.create_customer(
            email=student.email,
            name=student.full_name,
            metadata={"student_id": student.id},
        )
        if not result.success:
            raise ServiceException(f"Failed to create Stripe customer: {result.error}")
        with self.transaction():
            student.stripe_customer_id = result.id
        return result.id

    @BaseService.measure_operation("apply_invoice_paid")
    def apply_invoice_paid(
        self, invoice_reference: str, lesson_id: Optional[str] = None
    ) -> Optional[LessonPayment]:
        """
        Mark a weekly lesson payment as paid.

        Matched by the processor's invoice reference, falling back to the
        lesson id carried in the invoice metadata. A miss is logged and
        returns None.
        """
        with self.transaction():
            payment = self.lesson_payment_repository.get_by_invoice_reference(invoice_reference, for_update=True)
            if payment is None and lesson_id:
                payment = self.lesson_payment_repository.get_by_lesson_id(lesson_id, for_update=True)
            if payment is None:
                self.logger.warning(
                    "No lesson payment matches paid invoice",
                    extra={"invoice_reference": invoice_reference, "lesson_id": lesson_id},
                )
                return None

            if payment.status != LessonPaymentStatus.PAID:
                payment.status = LessonPaymentStatus.PAID
                payment.paid_at = self.clock.now()
            if not payment.invoice_reference:
                payment.invoice_reference = invoice_reference

        self.logger.info(
            f"Lesson payment {payment.id} paid",
            extra={"lesson_id": payment.lesson_id, "invoice_reference": invoice_reference},
        )
        return payment

    @BaseService.measure_operation("send_due_invoices")
    def send_due_invoices(self) -> Dict[str, int]:
        """
        Invoice weekly payments falling due within the lookahead window.

        Each invoice is stored as soon as the processor accepts it, so a
        failure part way through only leaves the remaining payments for the
        next run.
        """
        cutoff = self.clock.now() + timedelta(hours=settings.invoice_lookahead_hours)
        payments = self.lesson_payment_repository.find_uninvoiced_due_before(cutoff)
        sent = failed = 0

        for payment in payments:
            lesson = payment.lesson
            order = lesson.order
            try:
                customer_id = self.ensure_customer(order.student)
            except ServiceException as exc:
                failed += 1
                self.logger.error(
                    f"Could not invoice lesson {lesson.id}: {exc.message}",
                    extra={"lesson_id": lesson.id, "order_id": order.id},
                )
                continue

            result = self.payment_processor.create_invoice(
                customer_id=customer_id,
                amount_pence=payment.amount_pence,
                description=(
                    f"Lesson payment for {order.package_name} - "
                    f"{lesson.lesson_date.strftime('%d %b %Y')} {lesson.start_time.strftime('%H:%M')}"
                ),
                metadata={
                    "lesson_id": lesson.id,
                    "lesson_payment_id": payment.id,
                    "order_id": order.id,
                    "payment_mode": PaymentMode.WEEKLY.value,
                },
                due_date=lesson.lesson_date,
            )
            if not result.success:
                failed += 1
                self.logger.error(
                    f"Failed to create invoice for lesson {lesson.id}: {result.error}",
                    extra={"lesson_id": lesson.id, "order_id": order.id},
                )
                continue

            with self.transaction():
                payment.invoice_reference = result.id
            sent += 1

        self.logger.info(
            f"Lesson invoices sent: {sent}, failed: {failed}",
            extra={"sent": sent, "failed": failed, "cutoff": cutoff.isoformat()},
        )
        return {"sent": sent, "failed": failed}

    # Helpers

    def _activate(self, order: Order) -> bool:
        if order.status != OrderStatus.PENDING:
            self.logger.debug(
                f"Order {order.id} already {order.status.value}; activation skipped",
                extra={"order_id": order.id},
            )
            return False
        order.status = OrderStatus.ACTIVE
        self.db.flush()
        self.logger.info(f"Order {order.id} activated", extra={"order_id": order.id})
        return True

    def _send_order_confirmation(self, order: Order) -> None:
        student = order.student
        if not student.email:
            return
        try:
            self.email_service.send_order_confirmation(order, student)
        except Exception as e:
            self.logger.error(
                f"Failed to send order confirmation for order {order.id}: {str(e)}",
                extra={"order_id": order.id, "student_id": student.id},
            )

    def _due_date_for(self, lesson: Lesson) -> datetime:
        starts_at = self.clock.to_utc(lesson.lesson_date, lesson.start_time)
        return starts_at - timedelta(hours=settings.payment_due_offset_hours)
