"""Order status API routes"""
import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.errors import OrchestrationError, to_http_exception
from app.db.session import get_db
from app.schemas.orders import OrderStatusResponse
from app.services.order_service import get_order_by_reference, get_order_status
from app.services.webhook_service import refresh_order_from_gateway

router = APIRouter(prefix="/api/orders", tags=["orders"])
logger = logging.getLogger(__name__)


def _get_order_or_404(reference: str, db: Session):
    order = get_order_by_reference(reference, db)
    if not order:
        raise HTTPException(404, {"error": "Order not found", "errorCode": "NOT_FOUND"})
    return order


@router.get("/{reference}/status", response_model=OrderStatusResponse, response_model_by_alias=True)
def order_status(reference: str, db: Session = Depends(get_db)):
    """Current known state of an order; polled by the confirmation page"""
    return get_order_status(_get_order_or_404(reference, db))


@router.post("/{reference}/refresh", response_model=OrderStatusResponse, response_model_by_alias=True)
def refresh_order(reference: str, db: Session = Depends(get_db)):
    """Ask the gateway for the status of a still-pending order ("check again")"""
    order = _get_order_or_404(reference, db)
    try:
        return refresh_order_from_gateway(order, db)
    except OrchestrationError as e:
        raise to_http_exception(e)
