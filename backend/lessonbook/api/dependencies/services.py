# backend/lessonbook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each provider builds a service around the request's session.
"""

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.availability_service import AvailabilityService
from ...services.payment_event_service import PaymentEventService
from ...services.stripe_service import StripeService
from .database import get_db


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Processor client; holds no per-request state."""
    return StripeService()


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_payment_event_service(db: Session = Depends(get_db)) -> PaymentEventService:
    return PaymentEventService(db)
