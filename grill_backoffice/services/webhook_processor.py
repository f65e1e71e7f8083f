from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from grill_backoffice.core.metrics import webhook_metrics
from grill_backoffice.core.request_context import set_request_context
from grill_backoffice.models.inventory import REASON_REFUND, REASON_SALE
from grill_backoffice.models.webhook_event import (
    STATUS_ERROR,
    STATUS_PROCESSED,
    STATUS_RECEIVED,
    STATUS_SKIPPED,
    TERMINAL_STATUSES,
    WebhookEvent,
)
from grill_backoffice.services.ledger import LedgerContext, apply_usage, utcnow
from grill_backoffice.services.usage import calculate_usage_for_order
from grill_backoffice.square.base import OrderSource, SquareOrder, SquarePayment, SquareRefund
from grill_backoffice.square.webhooks import InlineObject, ObjectRef, WebhookEnvelope

logger = logging.getLogger(__name__)

PAYMENT_UPDATED = "payment.updated"
REFUND_UPDATED = "refund.updated"


class WebhookProcessingError(Exception):
    pass


@dataclass(frozen=True)
class WebhookResult:
    status: str
    duplicate: bool = False
    entries_written: int = 0

    @property
    def skipped(self) -> bool:
        return self.status == STATUS_SKIPPED

    def to_response(self) -> dict:
        body: dict = {"ok": True}
        if self.duplicate:
            body["duplicate"] = True
        elif self.skipped:
            body["skipped"] = True
        return body


def _first_timestamp(*values: datetime | None) -> datetime:
    for value in values:
        if value is not None:
            return value
    return utcnow()


class SquareWebhookProcessor:
    """Applies Square payment/refund notifications to the inventory ledger.

    Square lookups happen before any local write so no transaction stays open
    across network calls.
    """

    def __init__(self, order_source: OrderSource, session_factory: Callable[[], Session]) -> None:
        self.order_source = order_source
        self.session_factory = session_factory

    def process(self, envelope: WebhookEnvelope) -> WebhookResult:
        set_request_context(event_id=envelope.event_id)
        db = self.session_factory()
        try:
            status = self._get_or_create_event(db, envelope)
            if status in TERMINAL_STATUSES:
                logger.info("Duplicate Square webhook acknowledged status=%s", status)
                webhook_metrics.observe("duplicate")
                return WebhookResult(status=status, duplicate=True)

            try:
                result = self._dispatch(db, envelope)
            except Exception as exc:
                db.rollback()
                logger.exception(
                    "Failed to process Square webhook type=%s",
                    envelope.event_type,
                )
                self._mark(db, envelope.event_id, STATUS_ERROR, error=str(exc) or exc.__class__.__name__)
                webhook_metrics.observe("error")
                raise

            self._mark(db, envelope.event_id, result.status)
            webhook_metrics.observe("processed" if result.status == STATUS_PROCESSED else "skipped")
            return result
        finally:
            db.close()

    def _dispatch(self, db: Session, envelope: WebhookEnvelope) -> WebhookResult:
        if envelope.event_type == PAYMENT_UPDATED:
            return self._handle_payment_updated(db, envelope)
        if envelope.event_type == REFUND_UPDATED:
            return self._handle_refund_updated(db, envelope)
        logger.info("Ignoring Square webhook type=%s", envelope.event_type)
        return WebhookResult(status=STATUS_SKIPPED)

    def _handle_payment_updated(self, db: Session, envelope: WebhookEnvelope) -> WebhookResult:
        payment = self._resolve_payment(envelope.payment)
        if payment is None:
            raise WebhookProcessingError("Webhook payload missing payment data")
        if not payment.is_completed:
            logger.info("Payment %s not completed (status=%s); skipping", payment.id, payment.status or "-")
            return WebhookResult(status=STATUS_SKIPPED)

        if not payment.order_id:
            raise WebhookProcessingError("Unable to resolve Square order id from payment")
        order = self.order_source.get_order(payment.order_id)

        context = LedgerContext(
            reason=REASON_SALE,
            occurred_at=_first_timestamp(order.closed_at, payment.updated_at, payment.created_at),
            square_event_id=envelope.event_id,
            square_payment_id=payment.id,
            square_order_id=order.id,
        )
        written = self._apply(db, order, context, sign=-1)
        return WebhookResult(status=STATUS_PROCESSED, entries_written=written)

    def _handle_refund_updated(self, db: Session, envelope: WebhookEnvelope) -> WebhookResult:
        refund = self._resolve_refund(envelope.refund)
        if refund is None:
            raise WebhookProcessingError("Webhook payload missing refund data")
        if not refund.is_completed:
            logger.info("Refund %s not completed (status=%s); skipping", refund.id, refund.status or "-")
            return WebhookResult(status=STATUS_SKIPPED)

        payment: SquarePayment | None = None
        if refund.payment_id:
            payment = self.order_source.get_payment(refund.payment_id)
        elif envelope.payment is not None:
            payment = self._resolve_payment(envelope.payment)

        order_id = refund.order_id or (payment.order_id if payment else None)
        if not order_id:
            raise WebhookProcessingError("Unable to load order for refund event")
        order = self.order_source.get_order(order_id)

        context = LedgerContext(
            reason=REASON_REFUND,
            occurred_at=_first_timestamp(
                refund.processed_at,
                refund.updated_at,
                payment.updated_at if payment else None,
            ),
            square_event_id=envelope.event_id,
            square_payment_id=payment.id if payment else refund.payment_id,
            square_refund_id=refund.id,
            square_order_id=order.id,
        )
        written = self._apply(db, order, context, sign=1)
        return WebhookResult(status=STATUS_PROCESSED, entries_written=written)

    def _apply(self, db: Session, order: SquareOrder, context: LedgerContext, sign: int) -> int:
        usage = calculate_usage_for_order(db, order)
        # Recipe lookup opened a read transaction; the writes commit per item.
        db.commit()
        written = apply_usage(db, usage, context, sign)
        logger.info(
            "Applied %s usage items=%s written=%s",
            context.reason,
            len(usage),
            written,
            extra={"order_id": order.id},
        )
        return written

    def _resolve_payment(self, ref: ObjectRef | None) -> SquarePayment | None:
        if ref is None:
            return None
        if isinstance(ref, InlineObject):
            return SquarePayment.from_api(ref.data)
        return self.order_source.get_payment(ref.object_id)

    def _resolve_refund(self, ref: ObjectRef | None) -> SquareRefund | None:
        if ref is None:
            return None
        if isinstance(ref, InlineObject):
            return SquareRefund.from_api(ref.data)
        return self.order_source.get_refund(ref.object_id)

    def _get_or_create_event(self, db: Session, envelope: WebhookEnvelope) -> str:
        """Returns the current status of the dedup record, creating it on first sight.

        Leaves no transaction open, so the Square calls that follow hold no locks.
        """
        event = db.query(WebhookEvent).filter(WebhookEvent.event_id == envelope.event_id).first()
        if event:
            status = event.status
            db.commit()
            return status

        db.add(WebhookEvent(event_id=envelope.event_id, type=envelope.event_type, status=STATUS_RECEIVED))
        try:
            db.commit()
            return STATUS_RECEIVED
        except IntegrityError:
            # Lost the race against a concurrent delivery of the same event.
            db.rollback()
            status = (
                db.query(WebhookEvent.status)
                .filter(WebhookEvent.event_id == envelope.event_id)
                .scalar()
            )
            db.commit()
            return status

    def _mark(self, db: Session, event_id: str, status: str, error: str | None = None) -> None:
        event = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).one()
        if event.status in TERMINAL_STATUSES and status not in TERMINAL_STATUSES:
            # Another delivery already finished this event; keep its terminal status.
            db.rollback()
            return
        event.status = status
        event.processed_at = utcnow()
        event.error = error
        db.commit()
