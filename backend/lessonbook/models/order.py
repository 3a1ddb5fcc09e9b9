"""
Order, lesson and money-movement models.

An Order owns its Lessons. Each Lesson owns at most one Payout and, for
weekly orders, exactly one LessonPayment. Lessons only weakly reference the
TimeSlot they were booked into.
"""

from datetime import date, datetime, time, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lessonbook.core.ulid_helper import generate_ulid
from lessonbook.database import Base
from lessonbook.models.base_enum import create_safe_enum
from lessonbook.models.enums import (
    LessonPaymentStatus,
    LessonStatus,
    OrderStatus,
    PaymentMode,
    PayoutStatus,
)

if TYPE_CHECKING:
    from lessonbook.models.calendar import TimeSlot
    from lessonbook.models.instructor import Instructor
    from lessonbook.models.student import Student


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Order(Base):
    """One purchase of a lesson package, with its pricing frozen at purchase time."""

    __tablename__ = "orders"

    __table_args__ = (
        Index("ix_orders_checkout_session_reference", "checkout_session_reference"),
        Index("ix_orders_payment_intent_reference", "payment_intent_reference"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    student_id: Mapped[str] = mapped_column(String(26), ForeignKey("students.id"), nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(26), ForeignKey("instructors.id"), nullable=False)
    package_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("packages.id", ondelete="SET NULL"), nullable=True
    )

    # Snapshot of the catalog package at purchase time
    package_name: Mapped[str] = mapped_column(String(255), nullable=False)
    package_total_price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    package_lesson_price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    package_lessons_count: Mapped[int] = mapped_column(Integer, nullable=False)

    payment_mode: Mapped[PaymentMode] = mapped_column(create_safe_enum(PaymentMode, "payment_mode"), nullable=False)
    status: Mapped[OrderStatus] = mapped_column(
        create_safe_enum(OrderStatus, "order_status"), nullable=False, default=OrderStatus.PENDING
    )
    checkout_session_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_intent_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    instructor: Mapped["Instructor"] = relationship("Instructor")
    lessons: Mapped[List["Lesson"]] = relationship(
        "Lesson",
        back_populates="order",
        order_by="Lesson.lesson_date",
        cascade="all, delete-orphan",
    )

    @property
    def is_weekly(self) -> bool:
        return self.payment_mode == PaymentMode.WEEKLY

    @property
    def is_upfront(self) -> bool:
        return self.payment_mode == PaymentMode.UPFRONT

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, mode={self.payment_mode}, status={self.status})>"


class Lesson(Base):
    """One scheduled session; date and times are a copy of the slot's schedule."""

    __tablename__ = "lessons"

    __table_args__ = (
        CheckConstraint("amount_pence >= 0", name="ck_lessons_amount_non_negative"),
        Index("ix_lessons_order_status", "order_id", "status"),
        Index("ix_lessons_time_slot_id", "time_slot_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    order_id: Mapped[str] = mapped_column(String(26), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    instructor_id: Mapped[str] = mapped_column(String(26), ForeignKey("instructors.id"), nullable=False)
    time_slot_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("time_slots.id", ondelete="SET NULL"), nullable=True
    )
    lesson_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    amount_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[LessonStatus] = mapped_column(
        create_safe_enum(LessonStatus, "lesson_status"), nullable=False, default=LessonStatus.PENDING
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now(), nullable=False
    )

    # Relationships
    order: Mapped[Order] = relationship("Order", back_populates="lessons")
    instructor: Mapped["Instructor"] = relationship("Instructor")
    time_slot: Mapped[Optional["TimeSlot"]] = relationship("TimeSlot", back_populates="lessons")
    payment: Mapped[Optional["LessonPayment"]] = relationship(
        "LessonPayment", back_populates="lesson", uselist=False, cascade="all, delete-orphan"
    )
    payout: Mapped[Optional["Payout"]] = relationship(
        "Payout", back_populates="lesson", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Lesson(id={self.id}, date={self.lesson_date}, status={self.status})>"


class LessonPayment(Base):
    """Weekly-mode amount due for a single lesson."""

    __tablename__ = "lesson_payments"

    __table_args__ = (Index("ix_lesson_payments_status_due_date", "status", "due_date"),)

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    lesson_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("lessons.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    amount_pence: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in pence")
    status: Mapped[LessonPaymentStatus] = mapped_column(
        create_safe_enum(LessonPaymentStatus, "lesson_payment_status"),
        nullable=False,
        default=LessonPaymentStatus.DUE,
    )
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    invoice_reference: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now(), nullable=False
    )

    lesson: Mapped[Lesson] = relationship("Lesson", back_populates="payment")

    @property
    def is_paid(self) -> bool:
        return self.status == LessonPaymentStatus.PAID

    def __repr__(self) -> str:
        return f"<LessonPayment(lesson_id={self.lesson_id}, status={self.status})>"


class Payout(Base):
    """Transfer of one lesson's earnings to its instructor."""

    __tablename__ = "payouts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    lesson_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("lessons.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    instructor_id: Mapped[str] = mapped_column(String(26), ForeignKey("instructors.id"), nullable=False)
    amount_pence: Mapped[int] = mapped_column(Integer, nullable=False, comment="Amount in pence")
    status: Mapped[PayoutStatus] = mapped_column(
        create_safe_enum(PayoutStatus, "payout_status"), nullable=False, default=PayoutStatus.PENDING
    )
    transfer_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now(), nullable=False
    )

    lesson: Mapped[Lesson] = relationship("Lesson", back_populates="payout")

    def __repr__(self) -> str:
        return f"<Payout(lesson_id={self.lesson_id}, amount={self.amount_pence}, status={self.status})>"
