"""API models for the payment webhook endpoint."""

from pydantic import BaseModel, Field

from commerce_core.models.enums import WebhookProcessingResult


class WebhookResponse(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = Field(default=True, description="Event durably handled")
    event_id: str = Field(..., description="Provider event ID")
    event_type: str = Field(..., description="Provider event type")
    result: WebhookProcessingResult
    order_id: str | None = None
    message: str | None = None
