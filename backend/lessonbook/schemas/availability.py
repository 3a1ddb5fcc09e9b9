# backend/lessonbook/schemas/availability.py
"""
Availability schemas for the booking funnel.

Slot ids are exposed: the funnel holds a slot by id.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..services.availability_service import AvailabilityWindow


class AvailableSlot(BaseModel):
    id: str
    start_time: str = Field(description="Start time in HH:MM format")
    end_time: str = Field(description="End time in HH:MM format")

    model_config = ConfigDict(
        json_schema_extra={"example": {"id": "01J0000000000000000000000A", "start_time": "09:00", "end_time": "10:00"}}
    )


class DayAvailabilityResponse(BaseModel):
    """Availability for a single day."""

    date: str = Field(description="Date in YYYY-MM-DD format")
    slots: List[AvailableSlot] = Field(default_factory=list)
    has_availability: bool = Field(description="Whether any slot on this day can still be booked")


class InstructorAvailabilityResponse(BaseModel):
    """
    Bookable window for one instructor.

    ``default_selected_index`` is the day the funnel should preselect, or
    null when nothing in the window can be booked.
    """

    instructor_id: str
    from_date: date
    to_date: date
    days: List[DayAvailabilityResponse] = Field(default_factory=list)
    default_selected_index: Optional[int] = None

    @classmethod
    def from_window(cls, window: AvailabilityWindow) -> "InstructorAvailabilityResponse":
        return cls(
            instructor_id=window.instructor_id,
            from_date=window.from_date,
            to_date=window.to_date,
            days=[
                DayAvailabilityResponse(
                    date=day.date.isoformat(),
                    slots=[
                        AvailableSlot(
                            id=slot.id,
                            start_time=slot.start_time.strftime("%H:%M"),
                            end_time=slot.end_time.strftime("%H:%M"),
                        )
                        for slot in day.slots
                    ],
                    has_availability=day.has_availability,
                )
                for day in window.days
            ],
            default_selected_index=window.default_selected_index,
        )
