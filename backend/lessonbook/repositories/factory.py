# backend/lessonbook/repositories/factory.py
"""
Repository Factory

Provides centralized creation of repository instances so services share one
session and one construction path.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

if TYPE_CHECKING:
    from .activity_log_repository import ActivityLogRepository
    from .calendar_repository import CalendarRepository
    from .instructor_repository import InstructorRepository, StudentRepository
    from .order_repository import LessonRepository, OrderRepository
    from .payment_repository import LessonPaymentRepository, PayoutRepository
    from .processed_event_repository import ProcessedEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_calendar_repository(db: Session) -> "CalendarRepository":
        """Create repository for calendar days and time slots."""
        from .calendar_repository import CalendarRepository

        return CalendarRepository(db)

    @staticmethod
    def create_order_repository(db: Session) -> "OrderRepository":
        from .order_repository import OrderRepository

        return OrderRepository(db)

    @staticmethod
    def create_lesson_repository(db: Session) -> "LessonRepository":
        from .order_repository import LessonRepository

        return LessonRepository(db)

    @staticmethod
    def create_lesson_payment_repository(db: Session) -> "LessonPaymentRepository":
        from .payment_repository import LessonPaymentRepository

        return LessonPaymentRepository(db)

    @staticmethod
    def create_payout_repository(db: Session) -> "PayoutRepository":
        from .payment_repository import PayoutRepository

        return PayoutRepository(db)

    @staticmethod
    def create_processed_event_repository(db: Session) -> "ProcessedEventRepository":
        """Create repository for the inbound event ledger."""
        from .processed_event_repository import ProcessedEventRepository

        return ProcessedEventRepository(db)

    @staticmethod
    def create_activity_log_repository(db: Session) -> "ActivityLogRepository":
        from .activity_log_repository import ActivityLogRepository

        return ActivityLogRepository(db)

    @staticmethod
    def create_instructor_repository(db: Session) -> "InstructorRepository":
        from .instructor_repository import InstructorRepository

        return InstructorRepository(db)

    @staticmethod
    def create_student_repository(db: Session) -> "StudentRepository":
        from .instructor_repository import StudentRepository

        return StudentRepository(db)
