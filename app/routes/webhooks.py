import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_db
from app.services.registry import ServiceRegistry, get_registry
from app.services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADERS = ("X-Webhook-Signature", "X-WC-Webhook-Signature")
TOPIC_HEADERS = ("X-Webhook-Topic", "X-WC-Webhook-Topic")


def _first_header(request: Request, names) -> Optional[str]:
    for name in names:
        value = request.headers.get(name)
        if value:
            return value
    return None


@router.post("/webhook/{company_id}")
async def receive_order_webhook(
    company_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """
    Endpoint the remote store delivers order webhooks to.

    The signature is checked against the raw body, so the body is read as
    bytes and parsed only after verification.
    """
    raw_body = await request.body()
    signature = _first_header(request, SIGNATURE_HEADERS)
    topic = _first_header(request, TOPIC_HEADERS)

    try:
        result = await WebhookProcessor(db, registry.settings).process(company_id, topic, raw_body, signature)
    except Exception as e:
        # Never hand the store a failure status; it would retry indefinitely
        logger.exception(f"Unhandled error processing webhook for {company_id}: {e}")
        return JSONResponse(status_code=200, content={"success": False, "message": "Webhook received but not processed"})

    return JSONResponse(status_code=result.status_code, content=result.body)
