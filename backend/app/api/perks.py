"""Admin API routes for event perks and replay statistics"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.errors import OrchestrationError, to_http_exception
from app.core.security import require_admin
from app.db.session import get_db
from app.schemas.access import ReplayStats
from app.schemas.perks import BulkDeliverRequest, BulkDeliverResponse, DeliverPerkRequest, EventPerkStats
from app.services.access_service import get_event_replay_stats
from app.services.perk_service import (
    bulk_deliver_perks, deliver_perk, get_event_allocations, get_event_perk_stats
)

router = APIRouter(prefix="/api/admin/events", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/{event_id}/perks")
def list_event_perks(
    event_id: str,
    perk_type: Optional[str] = Query(None, alias="perkType"),
    status: Optional[str] = Query(None, pattern="^(PENDING|DELIVERED|UNAVAILABLE)$"),
    admin_id: int = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Perk allocations of an event (admin only)"""
    allocations = get_event_allocations(event_id, db, perk_type=perk_type, status=status)
    return {"allocations": [a.model_dump(mode="json", by_alias=True) for a in allocations]}


@router.get("/{event_id}/perks/stats", response_model=EventPerkStats, response_model_by_alias=True)
def event_perk_stats(event_id: str, admin_id: int = Depends(require_admin), db: Session = Depends(get_db)):
    return get_event_perk_stats(event_id, db)


@router.post("/{event_id}/perks/bulk-deliver", response_model=BulkDeliverResponse, response_model_by_alias=True)
def bulk_deliver(
    event_id: str,
    request_data: BulkDeliverRequest,
    admin_id: int = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Deliver every pending allocation of one perk type"""
    delivered = bulk_deliver_perks(event_id, request_data.perk_type, request_data.asset_url, admin_id, db)
    return BulkDeliverResponse(delivered=delivered)


@router.post("/{event_id}/perks/{allocation_id}/deliver")
def deliver_single(
    event_id: str,
    allocation_id: int,
    request_data: DeliverPerkRequest,
    admin_id: int = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        allocation = deliver_perk(allocation_id, request_data.asset_url, admin_id, db, event_id=event_id)
    except OrchestrationError as e:
        raise to_http_exception(e)
    return {"id": allocation.id, "status": allocation.status, "deliveredAt": allocation.delivered_at}


@router.get("/{event_id}/replay-stats", response_model=ReplayStats, response_model_by_alias=True)
def replay_stats(event_id: str, admin_id: int = Depends(require_admin), db: Session = Depends(get_db)):
    return get_event_replay_stats(event_id, db)
