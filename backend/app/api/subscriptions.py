"""Subscriptions API routes"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.errors import OrchestrationError, to_http_exception
from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.subscriptions import CancelSubscriptionRequest, SubscriptionStatusResponse
from app.services.subscription_service import (
    cancel_subscription, get_live_subscriptions, get_subscription_status, get_user_subscription,
    reactivate_subscription
)

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.get("")
def list_subscriptions(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Live subscriptions of the current user"""
    subscriptions = get_live_subscriptions(user_id, db)
    return {
        "subscriptions": [
            get_subscription_status(s.id, user_id, db).model_dump(mode="json", by_alias=True)
            for s in subscriptions
        ]
    }


@router.get("/{subscription_id}/status", response_model=SubscriptionStatusResponse, response_model_by_alias=True)
def subscription_status(subscription_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Subscription state; polled while a Nequi subscription waits for approval"""
    try:
        return get_subscription_status(subscription_id, user_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionStatusResponse, response_model_by_alias=True)
def cancel(
    subscription_id: int,
    request_data: Optional[CancelSubscriptionRequest] = None,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Cancel a subscription; its membership access is revoked"""
    try:
        subscription = get_user_subscription(subscription_id, user_id, db)
        reason = (request_data.reason if request_data else None) or "Cancelled by user"
        cancel_subscription(subscription, reason, db)
        db.commit()
        return get_subscription_status(subscription_id, user_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.post("/{subscription_id}/reactivate", response_model=SubscriptionStatusResponse, response_model_by_alias=True)
def reactivate(subscription_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Reactivate a cancelled subscription while its paid period is still running"""
    try:
        subscription = get_user_subscription(subscription_id, user_id, db)
        reactivate_subscription(subscription, db)
        db.commit()
        return get_subscription_status(subscription_id, user_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)
