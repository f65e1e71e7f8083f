from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from grill_backoffice.core import config

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Square-Hmacsha256-Signature"


class WebhookSignatureError(Exception):
    pass


class InvalidWebhookPayload(Exception):
    pass


@dataclass(frozen=True)
class InlineObject:
    data: dict[str, Any]


@dataclass(frozen=True)
class ObjectReference:
    object_id: str


ObjectRef = Union[InlineObject, ObjectReference]


@dataclass(frozen=True)
class WebhookEnvelope:
    event_id: str
    event_type: str
    payment: ObjectRef | None = None
    refund: ObjectRef | None = None


def compute_signature(raw_body: bytes, signature_key: str) -> str:
    digest = hmac.new(signature_key.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(
    raw_body: bytes,
    signature_header: str | None,
    signature_key: str | None = None,
    *,
    allow_unverified: bool | None = None,
) -> bool:
    if allow_unverified is None:
        allow_unverified = config.ALLOW_UNVERIFIED_WEBHOOKS
    if allow_unverified:
        logger.warning("ALLOW_UNVERIFIED_WEBHOOKS enabled; skipping Square signature validation")
        return True

    if signature_key is None:
        signature_key = config.SQUARE_WEBHOOK_SIGNATURE_KEY
    if not signature_key:
        logger.error("SQUARE_WEBHOOK_SIGNATURE_KEY is not configured; rejecting webhook")
        return False

    if not signature_header:
        logger.warning("Missing Square webhook signature header")
        return False

    expected = compute_signature(raw_body, signature_key)
    return hmac.compare_digest(signature_header.strip().encode("utf-8"), expected.encode("utf-8"))


def ensure_valid_signature(raw_body: bytes, signature_header: str | None, **kwargs: Any) -> None:
    if not verify_signature(raw_body, signature_header, **kwargs):
        raise WebhookSignatureError("Invalid webhook signature")


def _object_ref(container: dict[str, Any], name: str) -> ObjectRef | None:
    inline = container.get(name)
    if isinstance(inline, dict) and inline:
        return InlineObject(inline)

    for key in (f"{name}_id", f"{name}Id"):
        reference = container.get(key)
        if isinstance(reference, str) and reference.strip():
            return ObjectReference(reference.strip())
    return None


def parse_envelope(raw_body: bytes | str | dict[str, Any]) -> WebhookEnvelope:
    """Classifies a Square notification into a ``WebhookEnvelope``.

    The payment/refund object arrives either inline under ``data.object`` or as
    an id that needs a follow-up fetch; which one is decided here once.
    """
    if isinstance(raw_body, dict):
        payload = raw_body
    else:
        try:
            payload = json.loads(raw_body)
        except (TypeError, ValueError) as exc:
            raise InvalidWebhookPayload("Webhook body is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise InvalidWebhookPayload("Webhook body must be a JSON object")

    event_id = payload.get("event_id") or payload.get("id") or payload.get("eventId")
    event_type = payload.get("type")
    if not isinstance(event_id, str) or not event_id.strip():
        raise InvalidWebhookPayload("Invalid webhook payload: missing event id")
    if not isinstance(event_type, str) or not event_type.strip():
        raise InvalidWebhookPayload("Invalid webhook payload: missing event type")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    obj = data.get("object") if isinstance(data.get("object"), dict) else {}

    payment = _object_ref(obj, "payment")
    refund = _object_ref(obj, "refund")

    # Envelopes that only carry data.type/data.id reference the object by id.
    data_type = data.get("type")
    data_id = data.get("id")
    if isinstance(data_id, str) and data_id:
        if data_type == "payment" and payment is None:
            payment = ObjectReference(data_id)
        elif data_type == "refund" and refund is None:
            refund = ObjectReference(data_id)

    return WebhookEnvelope(
        event_id=event_id.strip(),
        event_type=event_type.strip(),
        payment=payment,
        refund=refund,
    )
