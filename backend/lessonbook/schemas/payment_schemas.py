# backend/lessonbook/schemas/payment_schemas.py
"""Payment webhook schemas."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookResponse(BaseModel):
    """Response for webhook processing."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    status: Literal["success", "already_processed"] = Field(..., description="Processing status")
    event_type: Optional[str] = Field(None, description="Stripe event type")
