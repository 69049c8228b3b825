"""Payment provider webhook routes"""
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.errors import OrchestrationError, to_http_exception
from app.db.session import get_db
from app.services.webhook_service import handle_webhook

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/webhooks/{provider}")
async def provider_webhook(provider: str, request: Request, db: Session = Depends(get_db)):
    """Receive a provider notification

    The body is read as raw bytes: signatures are computed over the exact
    bytes the provider sent. Once the signature passes the answer is always
    200, so providers only redeliver on transport failures or 401s.
    """
    payload = await request.body()
    try:
        # Database work and PayPal verify/capture calls are blocking
        return await run_in_threadpool(handle_webhook, provider, request.headers, payload, db)
    except OrchestrationError as e:
        raise to_http_exception(e)
