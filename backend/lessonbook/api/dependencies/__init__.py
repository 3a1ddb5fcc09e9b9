"""Dependency injection providers for routes."""

from .database import get_db
from .services import get_availability_service, get_payment_event_service, get_stripe_service

__all__ = [
    "get_availability_service",
    "get_db",
    "get_payment_event_service",
    "get_stripe_service",
]
