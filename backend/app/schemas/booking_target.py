"""
Pydantic schemas for booking targets and routing configuration.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.services.allocation import RoutingMode


class BookingTargetCreate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    destination_url: str = Field(..., min_length=1, max_length=2048)
    weight: int = Field(default=1, ge=0, le=1000)
    active: bool = True


class BookingTargetUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    destination_url: Optional[str] = Field(None, min_length=1, max_length=2048)
    weight: Optional[int] = Field(None, ge=0, le=1000)
    active: Optional[bool] = None


class BookingTargetResponse(BaseModel):
    id: str
    creator_id: str
    name: Optional[str]
    destination_url: str
    weight: int
    active: bool
    uses_count: int
    last_used_at: Optional[datetime]

    model_config = {"from_attributes": True}


class RoutingConfigUpdate(BaseModel):
    mode: RoutingMode
    default_target_id: Optional[str] = None


class RoutingConfigResponse(BaseModel):
    creator_id: str
    mode: RoutingMode
    default_target_id: Optional[str]

    model_config = {"from_attributes": True}


class TestPickResponse(BaseModel):
    target_id: str
    url: str
    mode: RoutingMode
