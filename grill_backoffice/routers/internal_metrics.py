from __future__ import annotations

from fastapi import APIRouter

from grill_backoffice.core.metrics import request_metrics, webhook_metrics

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def metrics():
    return {
        "requests": request_metrics.snapshot(),
        "webhooks": webhook_metrics.snapshot(),
    }
