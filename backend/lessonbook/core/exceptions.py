# backend/lessonbook/core/exceptions.py
"""
Domain-specific exceptions for the lesson booking engine.

These exceptions carry business-focused messages and a stable error code,
and can be converted to HTTP errors at the API layer.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class ForbiddenException(DomainException):
    """Raised when the caller may not act on a resource."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


# Slot store


class OverlapError(ConflictException):
    """Raised when a slot interval overlaps another slot on the same day."""

    def __init__(self, day: str, new_range: str, conflicting_range: str):
        super().__init__(
            message=f"Overlapping slot on {day}: {new_range} conflicts with {conflicting_range}",
            code="SLOT_OVERLAP",
            details={
                "date": day,
                "fields": {
                    "start_time": f"{new_range} overlaps {conflicting_range}",
                    "end_time": f"{new_range} overlaps {conflicting_range}",
                },
                "conflicting_slot": conflicting_range,
            },
        )


class InvalidTimeRangeError(ValidationException):
    def __init__(self, start: str, end: str):
        super().__init__(
            message="End time must be after start time",
            code="INVALID_TIME_RANGE",
            details={"fields": {"end_time": f"{end} is not after {start}"}},
        )


class HasLessonsError(ConflictException):
    """Raised when deleting a slot that lessons still reference."""

    def __init__(self, slot_id: str, lesson_count: int):
        super().__init__(
            message="Cannot delete a time slot that has lessons booked",
            code="SLOT_HAS_LESSONS",
            details={"slot_id": slot_id, "lesson_count": lesson_count},
        )


class SlotUnavailableError(ConflictException):
    """Raised when a slot is no longer open for the requested action."""

    def __init__(self, slot_id: str, current_status: Optional[str] = None):
        super().__init__(
            message="This time slot is no longer available",
            code="SLOT_UNAVAILABLE",
            details={"slot_id": slot_id, "status": current_status},
        )


# Booking state machine


class InvalidSeriesError(BusinessRuleException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_SERIES", details=details)


class InvalidTransitionError(BusinessRuleException):
    def __init__(self, entity: str, current: Optional[str], target: str):
        super().__init__(
            message=f"Cannot move {entity} from {current} to {target}",
            code="INVALID_TRANSITION",
            details={"entity": entity, "from": current, "to": target},
        )


# Completion and payout pipeline


class AlreadyCompletedError(BusinessRuleException):
    def __init__(self, lesson_id: str):
        super().__init__(
            message="This lesson has already been signed off",
            code="LESSON_ALREADY_COMPLETED",
            details={"lesson_id": lesson_id},
        )


class NotOnboardedError(BusinessRuleException):
    def __init__(self, instructor_id: str):
        super().__init__(
            message="Please complete payment onboarding before signing off lessons",
            code="INSTRUCTOR_NOT_ONBOARDED",
            details={"instructor_id": instructor_id},
        )


class PaymentNotReceivedError(BusinessRuleException):
    """Raised when a weekly-mode lesson has not been paid for yet."""

    def __init__(self, lesson_id: str, due_date: Optional[datetime] = None):
        self.due_date = due_date
        if due_date is not None:
            message = (
                "Payment has not been received for this lesson. "
                f"Payment was due on {due_date.strftime('%d %b %Y')}."
            )
        else:
            message = "Payment has not been received for this lesson."
        super().__init__(
            message=message,
            code="PAYMENT_NOT_RECEIVED",
            details={
                "lesson_id": lesson_id,
                "due_date": due_date.isoformat() if due_date else None,
            },
        )


class AlreadyProcessedError(ConflictException):
    def __init__(self, lesson_id: str):
        super().__init__(
            message="A payout has already been processed for this lesson",
            code="PAYOUT_ALREADY_PROCESSED",
            details={"lesson_id": lesson_id},
        )


class TransferFailedError(ServiceException):
    """Raised after a payout transfer is rejected; the payout row is kept as failed."""

    def __init__(self, payout_id: str, error: str):
        self.payout_id = payout_id
        super().__init__(
            message=f"Stripe transfer failed: {error}",
            code="TRANSFER_FAILED",
            details={"payout_id": payout_id, "error": error},
        )


# Event intake


class EventAlreadyProcessedError(DomainException):
    """Marker for a replayed inbound event. Callers treat it as success."""

    status_code = status.HTTP_200_OK

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(
            message="Event already processed",
            code="EVENT_ALREADY_PROCESSED",
            details={"event_id": event_id},
        )


class LookupNotFoundError(NotFoundException):
    def __init__(self, entity: str, identifier: Any):
        super().__init__(
            message=f"{entity} not found",
            code=f"{entity.upper().replace(' ', '_')}_NOT_FOUND",
            details={"entity": entity, "id": identifier},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Integrity violations are chained (``raise ... from exc``) so services can
    recognise a lost unique-constraint race through ``__cause__``.
    """
