"""Entitlement service - the durable access-grant ledger"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.metrics import entitlements_issued_counter
from app.models.entitlement import Entitlement

logger = logging.getLogger(__name__)


def get_active_entitlement(user_id: int, entitlement_type: str, resource_id: str, db: Session) -> Optional[Entitlement]:
    """Non-revoked, non-expired grant for (owner, type, resource), if any"""
    now = datetime.now(timezone.utc)
    return db.query(Entitlement).filter(
        Entitlement.user_id == user_id,
        Entitlement.type == entitlement_type,
        Entitlement.resource_id == resource_id,
        Entitlement.revoked == False,  # noqa: E712
        or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now)
    ).first()


def grant_entitlement(
    user_id: int,
    entitlement_type: str,
    resource_id: str,
    resource_name: Optional[str],
    db: Session,
    order_id: Optional[int] = None,
    subscription_id: Optional[int] = None,
    expires_at: Optional[datetime] = None
) -> Entitlement:
    """Create a grant unless an active one already covers the resource

    Does not commit; runs inside the caller's transaction.
    """
    existing = get_active_entitlement(user_id, entitlement_type, resource_id, db)
    if existing:
        # Keep the longest window when a second purchase overlaps an existing grant
        if existing.expires_at is not None and (expires_at is None or expires_at > existing.expires_at):
            existing.expires_at = expires_at
        if subscription_id and not existing.subscription_id:
            existing.subscription_id = subscription_id
        logger.info(
            f"User {user_id} already holds {entitlement_type} {resource_id} (entitlement {existing.id})"
        )
        return existing

    entitlement = Entitlement(
        user_id=user_id,
        type=entitlement_type,
        resource_id=resource_id,
        resource_name=resource_name,
        expires_at=expires_at,
        order_id=order_id,
        subscription_id=subscription_id
    )
    db.add(entitlement)
    db.flush()
    entitlements_issued_counter.labels(type=entitlement_type).inc()
    logger.info(f"Granted {entitlement_type} {resource_id} to user {user_id} (entitlement {entitlement.id})")
    return entitlement


def get_subscription_entitlements(subscription_id: int, db: Session, include_revoked: bool = False) -> List[Entitlement]:
    query = db.query(Entitlement).filter(Entitlement.subscription_id == subscription_id)
    if not include_revoked:
        query = query.filter(Entitlement.revoked == False)  # noqa: E712
    return query.all()


def extend_subscription_entitlements(subscription_id: int, expires_at: datetime, db: Session) -> int:
    """Align every live grant of a subscription with its new period end"""
    entitlements = get_subscription_entitlements(subscription_id, db)
    for entitlement in entitlements:
        entitlement.expires_at = expires_at
    return len(entitlements)


def revoke_subscription_entitlements(subscription_id: int, reason: str, db: Session) -> int:
    """Revoke (never delete) all grants tied to a subscription"""
    now = datetime.now(timezone.utc)
    entitlements = get_subscription_entitlements(subscription_id, db)
    for entitlement in entitlements:
        entitlement.revoked = True
        entitlement.revoked_at = now
        entitlement.revoked_reason = reason
    if entitlements:
        logger.info(f"Revoked {len(entitlements)} entitlement(s) of subscription {subscription_id}: {reason}")
    return len(entitlements)


def restore_subscription_entitlements(subscription_id: int, expires_at: datetime, db: Session) -> int:
    """Undo revocation after an explicit reactivation"""
    entitlements = get_subscription_entitlements(subscription_id, db, include_revoked=True)
    for entitlement in entitlements:
        entitlement.revoked = False
        entitlement.revoked_at = None
        entitlement.revoked_reason = None
        entitlement.expires_at = expires_at
    return len(entitlements)


def get_user_entitlements(user_id: int, db: Session, entitlement_type: Optional[str] = None) -> List[Entitlement]:
    """Active grants of a user, optionally filtered by type"""
    now = datetime.now(timezone.utc)
    query = db.query(Entitlement).filter(
        Entitlement.user_id == user_id,
        Entitlement.revoked == False,  # noqa: E712
        or_(Entitlement.expires_at.is_(None), Entitlement.expires_at > now)
    )
    if entitlement_type:
        query = query.filter(Entitlement.type == entitlement_type)
    return query.order_by(Entitlement.created_at.desc()).all()


def revoke_order_entitlements(order_id: int, reason: str, db: Session) -> int:
    """Revoke the grants an order produced (refunds, chargebacks)"""
    now = datetime.now(timezone.utc)
    entitlements = db.query(Entitlement).filter(
        Entitlement.order_id == order_id,
        Entitlement.revoked == False  # noqa: E712
    ).all()
    for entitlement in entitlements:
        entitlement.revoked = True
        entitlement.revoked_at = now
        entitlement.revoked_reason = reason
    if entitlements:
        logger.info(f"Revoked {len(entitlements)} entitlement(s) of order {order_id}: {reason}")
    return len(entitlements)
