"""Admin API routes for orders paid outside a gateway"""
import logging
from typing import Optional
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, OrchestrationError, to_http_exception
from app.core.security import require_admin
from app.db.session import get_db
from app.schemas.orders import ManualConfirmationRequest, OrderStatusResponse
from app.services.order_service import confirm_payment_manually, get_order_by_reference

router = APIRouter(prefix="/api/admin/orders", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/{reference}/confirm-payment", response_model=OrderStatusResponse, response_model_by_alias=True)
def confirm_payment(
    reference: str,
    request_data: Optional[ManualConfirmationRequest] = Body(None),
    admin_id: int = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Mark a PENDING order paid and issue what it bought (admin only)"""
    request_data = request_data or ManualConfirmationRequest()
    try:
        order = get_order_by_reference(reference, db)
        if not order:
            raise NotFoundError("Order not found")
        return confirm_payment_manually(
            order, admin_id, db,
            transaction_reference=request_data.transaction_reference,
            notes=request_data.notes
        )
    except OrchestrationError as e:
        raise to_http_exception(e)
