from __future__ import annotations

from typing import Callable, Iterator

from fastapi import Depends
from sqlalchemy.orm import Session

from grill_backoffice.core.database import SessionLocal
from grill_backoffice.services.webhook_processor import SquareWebhookProcessor
from grill_backoffice.square.base import OrderSource
from grill_backoffice.square.client import SquareClient


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


def get_order_source() -> Iterator[OrderSource]:
    client = SquareClient()
    try:
        yield client
    finally:
        client.close()


def get_webhook_processor(
    order_source: OrderSource = Depends(get_order_source),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> SquareWebhookProcessor:
    return SquareWebhookProcessor(order_source=order_source, session_factory=session_factory)
