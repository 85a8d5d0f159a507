"""PayOS webhook schemas."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from ._strict_base import StrictModel


class PayOSWebhookPayload(BaseModel):
    """
    Webhook body as delivered by PayOS.

    ``data`` is kept as a plain dict: the signature covers its exact keys,
    including ones this service does not use.
    """

    model_config = ConfigDict(extra="allow")

    code: Optional[str] = None
    desc: Optional[str] = None
    success: Optional[bool] = None
    data: Dict[str, Any]
    signature: str

    @property
    def order_code(self) -> Optional[int]:
        try:
            return int(self.data.get("orderCode"))
        except (TypeError, ValueError):
            return None

    @property
    def event_id(self) -> str:
        return f"{self.data.get('orderCode')}:{self.data.get('code', '00')}"


class WebhookAckResponse(StrictModel):
    outcome: str
    order_code: Optional[int] = None
    booking_id: Optional[str] = None
    reason: Optional[str] = None
