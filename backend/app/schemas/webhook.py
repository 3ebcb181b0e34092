"""
Webhook acknowledgement shape. Always 200 unless the signature is bad.
"""

from typing import Optional
from pydantic import BaseModel


class WebhookResponse(BaseModel):
    ok: bool
    event_type: Optional[str] = None
    duplicate: bool = False
    error: Optional[str] = None
