# backend/lessonbook/models/enums.py
"""
Closed status types for every stateful entity.

Each enum inherits from ``(str, Enum)`` and is persisted by value through
``create_safe_enum``.
"""

from enum import Enum
from typing import Dict, FrozenSet


class SlotStatus(str, Enum):
    OPEN = "open"
    DRAFT = "draft"
    RESERVED = "reserved"
    BOOKED = "booked"
    COMPLETED = "completed"


# open -> draft -> reserved|booked -> completed
SLOT_TRANSITIONS: Dict[SlotStatus, FrozenSet[SlotStatus]] = {
    SlotStatus.OPEN: frozenset({SlotStatus.DRAFT}),
    SlotStatus.DRAFT: frozenset({SlotStatus.RESERVED, SlotStatus.BOOKED}),
    SlotStatus.RESERVED: frozenset({SlotStatus.COMPLETED}),
    SlotStatus.BOOKED: frozenset({SlotStatus.COMPLETED}),
    SlotStatus.COMPLETED: frozenset(),
}


def can_transition(current: SlotStatus, target: SlotStatus) -> bool:
    return target in SLOT_TRANSITIONS.get(current, frozenset())


class PaymentMode(str, Enum):
    UPFRONT = "upfront"
    WEEKLY = "weekly"

    def confirmed_slot_status(self) -> SlotStatus:
        """Slot status a confirmed series lands in for this payment mode."""
        return SlotStatus.BOOKED if self is PaymentMode.UPFRONT else SlotStatus.RESERVED


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LessonStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class LessonPaymentStatus(str, Enum):
    DUE = "due"
    PAID = "paid"
    REFUNDED = "refunded"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class SubjectKind(str, Enum):
    """Entity kinds an activity log entry can be attached to."""

    INSTRUCTOR = "instructor"
    STUDENT = "student"
