"""
Model exports.

Importing this package registers every table on ``Base.metadata``.
"""

from .activity_log import ActivityLog
from .calendar import CalendarDay, TimeSlot
from .enums import (
    LessonPaymentStatus,
    LessonStatus,
    OrderStatus,
    PaymentMode,
    PayoutStatus,
    SlotStatus,
    SubjectKind,
)
from .instructor import Instructor
from .order import Lesson, LessonPayment, Order, Payout
from .package import Package
from .processed_event import ProcessedEvent
from .student import Student

__all__ = [
    "ActivityLog",
    "CalendarDay",
    "Instructor",
    "Lesson",
    "LessonPayment",
    "LessonPaymentStatus",
    "LessonStatus",
    "Order",
    "OrderStatus",
    "Package",
    "PaymentMode",
    "PayoutStatus",
    "ProcessedEvent",
    "SlotStatus",
    "Student",
    "SubjectKind",
    "TimeSlot",
]
