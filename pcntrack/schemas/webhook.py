"""Webhook acknowledgement schema."""
from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    event_id: int | None = None
    status: str
    event_type: str | None = None
