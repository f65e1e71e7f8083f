import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from grill_backoffice.core.metrics import webhook_metrics
from grill_backoffice.deps import get_webhook_processor
from grill_backoffice.services.webhook_processor import SquareWebhookProcessor
from grill_backoffice.square.webhooks import (
    SIGNATURE_HEADER,
    InvalidWebhookPayload,
    WebhookSignatureError,
    ensure_valid_signature,
    parse_envelope,
)

router = APIRouter(tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/webhooks/square")
async def square_webhook(
    request: Request,
    processor: SquareWebhookProcessor = Depends(get_webhook_processor),
):
    raw_body = await request.body()

    try:
        ensure_valid_signature(raw_body, request.headers.get(SIGNATURE_HEADER))
    except WebhookSignatureError:
        logger.warning("Rejected Square webhook with invalid signature")
        webhook_metrics.observe("rejected")
        return JSONResponse(status_code=400, content={"error": "Invalid webhook signature"})

    try:
        envelope = parse_envelope(raw_body)
    except InvalidWebhookPayload as exc:
        logger.warning("Rejected invalid Square webhook payload: %s", exc)
        webhook_metrics.observe("rejected")
        return JSONResponse(status_code=400, content={"error": str(exc) or "Invalid webhook payload"})

    try:
        result = await run_in_threadpool(processor.process, envelope)
    except Exception:
        return JSONResponse(status_code=500, content={"error": "Failed to process webhook"})

    return result.to_response()
