# backend/lessonbook/routes/v1/availability.py
"""
Availability routes - API v1

Endpoints:
    GET /instructors/{instructor_id}/availability → Bookable slots per day
"""

import asyncio
from datetime import date
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...api.dependencies import get_availability_service
from ...core.exceptions import DomainException, LookupNotFoundError
from ...core.ulid_helper import is_valid_ulid
from ...schemas.availability import InstructorAvailabilityResponse
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["availability-v1"])


@router.get("/{instructor_id}/availability", response_model=InstructorAvailabilityResponse)
async def get_instructor_availability(
    instructor_id: str,
    from_date: Optional[date] = Query(None, description="First date to show (clamped to minimum notice)"),
    to_date: Optional[date] = Query(None, description="Last date to show (clamped to the horizon)"),
    horizon_days: Optional[int] = Query(None, ge=0, le=90, description="How many days ahead to look"),
    availability_service: AvailabilityService = Depends(get_availability_service),
) -> InstructorAvailabilityResponse:
    """Open slots for an instructor, grouped by day."""
    if not is_valid_ulid(instructor_id):
        raise LookupNotFoundError("Instructor", instructor_id).to_http_exception()
    try:
        window = await asyncio.to_thread(
            availability_service.get_availability,
            instructor_id,
            from_date,
            to_date,
            horizon_days,
        )
    except DomainException as e:
        raise e.to_http_exception()
    return InstructorAvailabilityResponse.from_window(window)
