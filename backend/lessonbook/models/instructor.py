"""
Instructor model.

Only the fields the booking engine consults are modelled here: contact
details for notifications and the payment-processor account flags that gate
lesson sign-off.
"""

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lessonbook.core.ulid_helper import generate_ulid
from lessonbook.database import Base

if TYPE_CHECKING:
    from lessonbook.models.calendar import CalendarDay


class Instructor(Base):
    __tablename__ = "instructors"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    stripe_account_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    onboarding_complete: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    calendar_days: Mapped[List["CalendarDay"]] = relationship("CalendarDay", back_populates="instructor")

    @property
    def can_receive_payouts(self) -> bool:
        """Onboarding finished and the connected account accepts transfers."""
        return bool(self.onboarding_complete and self.payouts_enabled and self.stripe_account_id)

    def __repr__(self) -> str:
        return f"<Instructor(id={self.id}, name={self.name}, payouts_enabled={self.payouts_enabled})>"
