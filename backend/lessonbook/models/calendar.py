"""
Calendar models: instructor days and the time slots published on them.

A CalendarDay groups TimeSlots for one (instructor, date). Days are created
on demand when a slot is added and removed when their last slot goes.
"""

from datetime import date, datetime, time, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lessonbook.core.ulid_helper import generate_ulid
from lessonbook.database import Base
from lessonbook.models.base_enum import create_safe_enum
from lessonbook.models.enums import SlotStatus

if TYPE_CHECKING:
    from lessonbook.models.instructor import Instructor
    from lessonbook.models.order import Lesson


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class CalendarDay(Base):
    __tablename__ = "calendar_days"

    __table_args__ = (
        UniqueConstraint("instructor_id", "day_date", name="uq_calendar_days_instructor_date"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    instructor_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("instructors.id", ondelete="CASCADE"), nullable=False
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now(), nullable=False
    )

    instructor: Mapped["Instructor"] = relationship("Instructor", back_populates="calendar_days")
    slots: Mapped[List["TimeSlot"]] = relationship(
        "TimeSlot",
        back_populates="day",
        order_by="TimeSlot.start_time",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CalendarDay(instructor_id={self.instructor_id}, date={self.day_date})>"


class TimeSlot(Base):
    """A single bookable interval on an instructor's calendar."""

    __tablename__ = "time_slots"

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_time_slots_end_after_start"),
        Index("ix_time_slots_day_start", "calendar_day_id", "start_time"),
        Index("ix_time_slots_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    calendar_day_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("calendar_days.id", ondelete="CASCADE"), nullable=False
    )
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        create_safe_enum(SlotStatus, "slot_status"),
        nullable=False,
        default=SlotStatus.OPEN,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now_utc, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    day: Mapped[CalendarDay] = relationship("CalendarDay", back_populates="slots")
    lessons: Mapped[List["Lesson"]] = relationship("Lesson", back_populates="time_slot", passive_deletes=True)

    @property
    def instructor_id(self) -> str:
        return self.day.instructor_id

    @property
    def slot_date(self) -> date:
        return self.day.day_date

    @property
    def is_bookable(self) -> bool:
        return self.status == SlotStatus.OPEN and self.is_available

    def describe_range(self) -> str:
        return f"{self.start_time.strftime('%H:%M')}-{self.end_time.strftime('%H:%M')}"

    def __repr__(self) -> str:
        return f"<TimeSlot(id={self.id}, {self.describe_range()}, status={self.status})>"
