"""Session pack API routes"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.errors import OrchestrationError, to_http_exception
from app.core.security import require_auth
from app.db.session import get_db
from app.schemas.sessions import PackCodeRequest, PackCodeStatus, PackRedemptionResponse, RedeemPackRequest
from app.services.pack_service import redeem_pack_code, validate_pack_code

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


@router.post("/validate-pack-code", response_model=PackCodeStatus, response_model_by_alias=True)
def validate_pack(request_data: PackCodeRequest, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Remaining sessions of a pack; an unusable pack answers valid=false with a reason"""
    try:
        return validate_pack_code(request_data.code, user_id, db)
    except OrchestrationError as e:
        raise to_http_exception(e)


@router.post("/redeem-pack", response_model=PackRedemptionResponse, response_model_by_alias=True)
def redeem_pack(request_data: RedeemPackRequest, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Book one session from a pack"""
    try:
        return redeem_pack_code(request_data.code, user_id, request_data.scheduled_at, db)
    except OrchestrationError as e:
        raise to_http_exception(e)
