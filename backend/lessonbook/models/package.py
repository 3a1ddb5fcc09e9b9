"""
Lesson package catalog.

Packages are live catalog rows that instructors may edit at any time. Orders
never read pricing back from here; they copy a snapshot at purchase time.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from lessonbook.core.ulid_helper import generate_ulid
from lessonbook.database import Base

BOOKING_FEE_PENCE = 999
DIGITAL_FEE_PER_LESSON_PENCE = 399


def per_lesson_price(total_price_pence: int, lessons_count: int) -> int:
    """Floor-divided price of one lesson in a package."""
    if lessons_count <= 0:
        return 0
    return total_price_pence // lessons_count


class Package(Base):
    __tablename__ = "packages"

    __table_args__ = (
        CheckConstraint("lessons_count > 0", name="ck_packages_lessons_count_positive"),
        CheckConstraint("total_price_pence >= 0", name="ck_packages_total_price_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    instructor_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("instructors.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    total_price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    lessons_count: Mapped[int] = mapped_column(Integer, nullable=False)
    lesson_price_pence: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.reprice(self.total_price_pence, self.lessons_count)

    def reprice(self, total_price_pence: int, lessons_count: int) -> None:
        """Set the package totals and re-derive the per-lesson price."""
        self.total_price_pence = total_price_pence
        self.lessons_count = lessons_count
        self.lesson_price_pence = per_lesson_price(total_price_pence, lessons_count)

    @property
    def booking_fee_pence(self) -> int:
        return BOOKING_FEE_PENCE

    @property
    def digital_fee_pence(self) -> int:
        return DIGITAL_FEE_PER_LESSON_PENCE * self.lessons_count

    @property
    def display_total_pence(self) -> int:
        """Price shown in the funnel, fees included. Never charged from here."""
        return self.total_price_pence + self.booking_fee_pence + self.digital_fee_pence

    def __repr__(self) -> str:
        return f"<Package(id={self.id}, name={self.name}, lessons={self.lessons_count})>"
