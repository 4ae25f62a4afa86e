"""
Stripe webhook events: signature verification and typed parsing.

Only the variants the reconciler acts on get their own type; everything else
becomes UnhandledEvent and is acknowledged without side effects.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import stripe

from core.config import STRIPE_WEBHOOK_SECRET, STRIPE_WEBHOOK_TOLERANCE_SEC, logger

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

# Metadata keys that may carry our order id on a payment intent
ORDER_ID_METADATA_KEYS = ("commandeId", "orderId", "order_id")


class WebhookSignatureError(Exception):
    message = "Signature webhook invalide"


class MissingSignatureError(WebhookSignatureError):
    message = "Signature Stripe manquante"


class InvalidSignatureError(WebhookSignatureError):
    message = "Signature webhook invalide"


@dataclass(frozen=True)
class CheckoutSessionCompleted:
    event_id: str
    event_type: str
    session_id: str
    amount_total: Optional[int] = None
    payment_status: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentIntentFailed:
    event_id: str
    event_type: str
    payment_intent_id: str
    order_id: Optional[str] = None
    failure_message: Optional[str] = None


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    event_id: str
    event_type: str
    invoice_id: str
    amount_paid: Optional[int] = None


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    event_type: str
    invoice_id: str
    amount_due: Optional[int] = None


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


StripeEvent = Union[
    CheckoutSessionCompleted,
    PaymentIntentFailed,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    UnhandledEvent,
]


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _metadata_order_id(metadata: dict) -> Optional[str]:
    for key in ORDER_ID_METADATA_KEYS:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


def parse_event(payload: dict) -> StripeEvent:
    """Turn a decoded webhook body into one of the StripeEvent variants."""
    event_id = str(payload.get("id") or "")
    event_type = str(payload.get("type") or "")
    obj = (payload.get("data") or {}).get("object") or {}
    if not isinstance(obj, dict):
        obj = {}
    metadata = obj.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}

    if event_type == CHECKOUT_SESSION_COMPLETED:
        details = obj.get("customer_details") or {}
        return CheckoutSessionCompleted(
            event_id=event_id,
            event_type=event_type,
            session_id=str(obj.get("id") or ""),
            amount_total=_as_int(obj.get("amount_total")),
            payment_status=obj.get("payment_status"),
            customer_email=obj.get("customer_email") or (details.get("email") if isinstance(details, dict) else None),
            metadata=dict(metadata),
        )
    if event_type == PAYMENT_INTENT_FAILED:
        last_error = obj.get("last_payment_error") or {}
        return PaymentIntentFailed(
            event_id=event_id,
            event_type=event_type,
            payment_intent_id=str(obj.get("id") or ""),
            order_id=_metadata_order_id(metadata),
            failure_message=last_error.get("message") if isinstance(last_error, dict) else None,
        )
    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        return InvoicePaymentSucceeded(
            event_id=event_id,
            event_type=event_type,
            invoice_id=str(obj.get("id") or ""),
            amount_paid=_as_int(obj.get("amount_paid")),
        )
    if event_type == INVOICE_PAYMENT_FAILED:
        return InvoicePaymentFailed(
            event_id=event_id,
            event_type=event_type,
            invoice_id=str(obj.get("id") or ""),
            amount_due=_as_int(obj.get("amount_due")),
        )
    return UnhandledEvent(event_id=event_id, event_type=event_type)


def verify_and_parse(
    raw_body: bytes,
    signature: Optional[str],
    secret: Optional[str] = None,
    tolerance: int = STRIPE_WEBHOOK_TOLERANCE_SEC,
) -> StripeEvent:
    """Check the stripe-signature header against the exact bytes received, then parse.

    Raises MissingSignatureError or InvalidSignatureError; nothing in the body
    is looked at before the signature checks out.
    """
    if not signature:
        raise MissingSignatureError()

    secret = STRIPE_WEBHOOK_SECRET if secret is None else secret
    if not secret:
        logger.error("[payments.webhook] STRIPE_WEBHOOK_SECRET is not configured; rejecting event")
        raise InvalidSignatureError()

    try:
        payload_text = raw_body.decode("utf-8")
        stripe.WebhookSignature.verify_header(payload_text, signature, secret, tolerance)
    except (stripe.SignatureVerificationError, ValueError) as ex:
        raise InvalidSignatureError() from ex

    try:
        payload = json.loads(payload_text)
    except ValueError as ex:
        raise InvalidSignatureError() from ex
    if not isinstance(payload, dict):
        raise InvalidSignatureError()
    return parse_event(payload)
