"""Pydantic schemas for event perk allocation"""
from datetime import datetime
from typing import Dict, List, Literal, Optional
from pydantic import Field
from app.schemas.checkout import CamelModel


class PerkAllocationResult(CamelModel):
    """Outcome of allocating one perk to one booking"""
    perk_type: str
    perk_title: str
    allocated: bool
    reason: Literal["priority_plan", "available", "cap_reached", "already_allocated"]
    status: str


class PerkAllocationOut(CamelModel):
    id: int
    booking_id: int
    event_id: str
    user_id: int
    perk_type: str
    perk_title: str
    perk_index: int
    status: str
    asset_url: Optional[str] = None
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[int] = None


class BookingPerks(CamelModel):
    booking_id: int
    event_id: str
    allocations: List[PerkAllocationOut]


class PerkTypeStats(CamelModel):
    total: int = 0
    delivered: int = 0
    pending: int = 0
    unavailable: int = 0


class EventPerkStats(CamelModel):
    event_id: str
    by_type: Dict[str, PerkTypeStats]


class DeliverPerkRequest(CamelModel):
    asset_url: str = Field(..., min_length=1, max_length=1024)


class BulkDeliverRequest(CamelModel):
    perk_type: str = Field(..., min_length=1)
    asset_url: str = Field(..., min_length=1, max_length=1024)


class BulkDeliverResponse(CamelModel):
    delivered: int
