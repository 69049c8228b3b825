"""Perk service - capacity-bounded event perks with membership priority"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import CapacityExhaustedError, NotFoundError
from app.core.metrics import perk_allocations_counter
from app.models.booking import Booking, BookingType
from app.models.perk_allocation import PerkAllocation, PerkStatus
from app.schemas.content import PerkDefinition
from app.schemas.perks import (
    PerkAllocationResult, PerkAllocationOut, BookingPerks, PerkTypeStats, EventPerkStats
)
from app.services.content import get_content_repository
from app.services.subscription_service import get_active_tier_ids

logger = logging.getLogger(__name__)


def _priority_plan_id(perk: PerkDefinition, tier_ids: List[str]) -> Optional[str]:
    """First of the buyer's active tiers that the perk prioritises"""
    priority_ids = {plan.id for plan in perk.priority_plans}
    for tier_id in tier_ids:
        if tier_id in priority_ids:
            return tier_id
    return None


def count_allocated(event_id: str, perk_type: str, db: Session) -> int:
    """Allocations that consume capacity (everything but UNAVAILABLE)"""
    return db.query(PerkAllocation).filter(
        PerkAllocation.event_id == event_id,
        PerkAllocation.perk_type == perk_type,
        PerkAllocation.status != PerkStatus.UNAVAILABLE
    ).count()


def allocate_perks(booking_id: int, db: Session) -> List[PerkAllocationResult]:
    """Allocate every perk of the booking's event, in definition order

    Safe to repeat: an existing (booking, perk type) row is reported as
    already_allocated. Runs inside the caller's transaction.
    """
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")
    if booking.booking_type != BookingType.EVENT:
        return []

    event = get_content_repository().get_event(booking.resource_id)
    if not event or not event.perks:
        return []

    tier_ids = get_active_tier_ids(booking.user_id, db)
    results = []

    for index, perk in enumerate(event.perks):
        existing = db.query(PerkAllocation).filter(
            PerkAllocation.booking_id == booking.id,
            PerkAllocation.perk_type == perk.type
        ).first()
        if existing:
            results.append(PerkAllocationResult(
                perk_type=perk.type,
                perk_title=perk.title,
                allocated=existing.status != PerkStatus.UNAVAILABLE,
                reason="already_allocated",
                status=existing.status
            ))
            continue

        priority_plan_id = _priority_plan_id(perk, tier_ids)
        if priority_plan_id:
            reason = "priority_plan"
        # A missing or zero cap means unlimited
        elif perk.cap and count_allocated(event.id, perk.type, db) >= perk.cap:
            reason = "cap_reached"
        else:
            reason = "available"

        now = datetime.now(timezone.utc)
        if reason == "cap_reached":
            status = PerkStatus.UNAVAILABLE
        elif perk.delivery_mode == "automatic" and perk.asset_url:
            status = PerkStatus.DELIVERED
        else:
            status = PerkStatus.PENDING

        allocation = PerkAllocation(
            event_id=event.id,
            booking_id=booking.id,
            user_id=booking.user_id,
            perk_type=perk.type,
            perk_title=perk.title,
            perk_index=index,
            status=status,
            asset_url=perk.asset_url if status == PerkStatus.DELIVERED else None,
            delivered_at=now if status == PerkStatus.DELIVERED else None,
            extra_data={
                "hasPriorityPlan": priority_plan_id is not None,
                "priorityPlanId": priority_plan_id,
                "deliveryMode": perk.delivery_mode,
                "reason": reason,
            }
        )
        db.add(allocation)
        db.flush()
        perk_allocations_counter.labels(status=status).inc()

        if reason == "cap_reached":
            logger.info(f"Perk {perk.type} cap ({perk.cap}) reached for event {event.id}, booking {booking.id}")
        results.append(PerkAllocationResult(
            perk_type=perk.type,
            perk_title=perk.title,
            allocated=status != PerkStatus.UNAVAILABLE,
            reason=reason,
            status=status
        ))

    logger.info(f"Allocated {len(results)} perk(s) for booking {booking.id} ({event.id})")
    return results


def get_allocation(allocation_id: int, db: Session) -> PerkAllocation:
    allocation = db.query(PerkAllocation).filter(PerkAllocation.id == allocation_id).first()
    if not allocation:
        raise NotFoundError("Perk allocation not found")
    return allocation


def deliver_perk(allocation_id: int, asset_url: str, delivered_by: int, db: Session,
                event_id: Optional[str] = None) -> PerkAllocation:
    """Operator delivery of a single allocation

    Raises:
        NotFoundError: Unknown allocation
        CapacityExhaustedError: The allocation was recorded as UNAVAILABLE
    """
    allocation = get_allocation(allocation_id, db)
    if event_id and allocation.event_id != event_id:
        raise NotFoundError("Perk allocation not found")
    if allocation.status == PerkStatus.UNAVAILABLE:
        raise CapacityExhaustedError("This perk was not allocated because its capacity was reached")

    allocation.status = PerkStatus.DELIVERED
    allocation.asset_url = asset_url
    allocation.delivered_at = datetime.now(timezone.utc)
    allocation.delivered_by = delivered_by
    db.commit()
    db.refresh(allocation)
    logger.info(f"Perk allocation {allocation.id} delivered by admin {delivered_by}")
    return allocation


def bulk_deliver_perks(event_id: str, perk_type: str, asset_url: str, delivered_by: int, db: Session) -> int:
    """Mark every PENDING allocation of (event, perk type) DELIVERED in one UPDATE"""
    delivered = db.query(PerkAllocation).filter(
        PerkAllocation.event_id == event_id,
        PerkAllocation.perk_type == perk_type,
        PerkAllocation.status == PerkStatus.PENDING
    ).update({
        PerkAllocation.status: PerkStatus.DELIVERED,
        PerkAllocation.asset_url: asset_url,
        PerkAllocation.delivered_at: datetime.now(timezone.utc),
        PerkAllocation.delivered_by: delivered_by
    }, synchronize_session=False)
    db.commit()
    logger.info(f"Bulk delivered {delivered} {perk_type} perk(s) for event {event_id} by admin {delivered_by}")
    return delivered


def _to_out(allocation: PerkAllocation) -> PerkAllocationOut:
    return PerkAllocationOut(
        id=allocation.id,
        booking_id=allocation.booking_id,
        event_id=allocation.event_id,
        user_id=allocation.user_id,
        perk_type=allocation.perk_type,
        perk_title=allocation.perk_title,
        perk_index=allocation.perk_index,
        status=allocation.status,
        asset_url=allocation.asset_url,
        delivered_at=allocation.delivered_at,
        delivered_by=allocation.delivered_by
    )


def get_booking_perks(booking_id: int, db: Session) -> List[PerkAllocationOut]:
    allocations = db.query(PerkAllocation).filter(
        PerkAllocation.booking_id == booking_id
    ).order_by(PerkAllocation.perk_index).all()
    return [_to_out(a) for a in allocations]


def get_perks_for_bookings(booking_ids: Iterable[int], db: Session) -> List[BookingPerks]:
    """Allocations grouped per booking, for listing a user's event bookings"""
    ids = list(booking_ids)
    if not ids:
        return []
    allocations = db.query(PerkAllocation).filter(
        PerkAllocation.booking_id.in_(ids)
    ).order_by(PerkAllocation.booking_id, PerkAllocation.perk_index).all()

    grouped: Dict[int, BookingPerks] = {}
    for allocation in allocations:
        entry = grouped.setdefault(allocation.booking_id, BookingPerks(
            booking_id=allocation.booking_id,
            event_id=allocation.event_id,
            allocations=[]
        ))
        entry.allocations.append(_to_out(allocation))
    return [grouped[i] for i in ids if i in grouped]


def get_event_perk_stats(event_id: str, db: Session) -> EventPerkStats:
    rows = db.query(
        PerkAllocation.perk_type, PerkAllocation.status, func.count(PerkAllocation.id)
    ).filter(
        PerkAllocation.event_id == event_id
    ).group_by(PerkAllocation.perk_type, PerkAllocation.status).all()

    by_type: Dict[str, PerkTypeStats] = {}
    for perk_type, status, count in rows:
        stats = by_type.setdefault(perk_type, PerkTypeStats())
        stats.total += count
        if status == PerkStatus.DELIVERED:
            stats.delivered += count
        elif status == PerkStatus.PENDING:
            stats.pending += count
        elif status == PerkStatus.UNAVAILABLE:
            stats.unavailable += count
    return EventPerkStats(event_id=event_id, by_type=by_type)


def get_event_allocations(event_id: str, db: Session, perk_type: Optional[str] = None,
                          status: Optional[str] = None) -> List[PerkAllocationOut]:
    query = db.query(PerkAllocation).filter(PerkAllocation.event_id == event_id)
    if perk_type:
        query = query.filter(PerkAllocation.perk_type == perk_type)
    if status:
        query = query.filter(PerkAllocation.status == status)
    allocations = query.order_by(PerkAllocation.created_at, PerkAllocation.id).all()
    return [_to_out(a) for a in allocations]
