"""Signature verification and typed parsing of Stripe webhook events."""

import json
import time

import pytest

from conftest import WEBHOOK_SECRET, checkout_completed, stripe_signature
from utils.stripe_events import (
    CheckoutSessionCompleted,
    InvalidSignatureError,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    MissingSignatureError,
    PaymentIntentFailed,
    UnhandledEvent,
    WebhookSignatureError,
    parse_event,
    verify_and_parse,
)


class TestVerifyAndParse:

    def _body(self, payload=None) -> bytes:
        return json.dumps(payload or checkout_completed()).encode()

    def test_valid_signature_returns_typed_event(self):
        body = self._body()
        event = verify_and_parse(body, stripe_signature(body), secret=WEBHOOK_SECRET)
        assert isinstance(event, CheckoutSessionCompleted)
        assert event.session_id == "cs_123"
        assert event.amount_total == 48000
        assert event.event_id == "evt_1"

    def test_missing_signature(self):
        with pytest.raises(MissingSignatureError) as exc:
            verify_and_parse(self._body(), None, secret=WEBHOOK_SECRET)
        assert exc.value.message == "Signature Stripe manquante"

    def test_empty_signature_counts_as_missing(self):
        with pytest.raises(MissingSignatureError):
            verify_and_parse(self._body(), "", secret=WEBHOOK_SECRET)

    def test_wrong_secret(self):
        body = self._body()
        with pytest.raises(InvalidSignatureError) as exc:
            verify_and_parse(body, stripe_signature(body, secret="whsec_other"), secret=WEBHOOK_SECRET)
        assert exc.value.message == "Signature webhook invalide"

    def test_tampered_body(self):
        body = self._body()
        header = stripe_signature(body)
        tampered = self._body(checkout_completed(amount_total=1))
        with pytest.raises(InvalidSignatureError):
            verify_and_parse(tampered, header, secret=WEBHOOK_SECRET)

    def test_reserialized_body_is_rejected(self):
        """The signature covers the exact bytes, not an equivalent JSON document."""
        body = json.dumps(checkout_completed(), indent=2).encode()
        header = stripe_signature(body)
        compact = json.dumps(json.loads(body)).encode()
        with pytest.raises(InvalidSignatureError):
            verify_and_parse(compact, header, secret=WEBHOOK_SECRET)

    def test_expired_timestamp(self):
        body = self._body()
        header = stripe_signature(body, timestamp=int(time.time()) - 3600)
        with pytest.raises(InvalidSignatureError):
            verify_and_parse(body, header, secret=WEBHOOK_SECRET, tolerance=300)

    def test_garbage_header(self):
        with pytest.raises(InvalidSignatureError):
            verify_and_parse(self._body(), "not-a-stripe-header", secret=WEBHOOK_SECRET)

    def test_unconfigured_secret_fails_closed(self):
        body = self._body()
        with pytest.raises(InvalidSignatureError):
            verify_and_parse(body, stripe_signature(body), secret="")

    def test_signed_non_json_body_is_invalid(self):
        body = b"definitely not json"
        with pytest.raises(InvalidSignatureError):
            verify_and_parse(body, stripe_signature(body), secret=WEBHOOK_SECRET)

    def test_errors_share_a_base_class(self):
        assert issubclass(MissingSignatureError, WebhookSignatureError)
        assert issubclass(InvalidSignatureError, WebhookSignatureError)


class TestParseEvent:

    def test_payment_intent_failed_reads_order_id_from_metadata(self):
        event = parse_event({
            "id": "evt_pi",
            "type": "payment_intent.payment_failed",
            "data": {"object": {
                "id": "pi_1",
                "metadata": {"commandeId": "order-42"},
                "last_payment_error": {"message": "Your card was declined."},
            }},
        })
        assert isinstance(event, PaymentIntentFailed)
        assert event.order_id == "order-42"
        assert event.failure_message == "Your card was declined."

    @pytest.mark.parametrize("key", ["orderId", "order_id"])
    def test_payment_intent_failed_alternate_metadata_keys(self, key):
        event = parse_event({
            "id": "evt_pi",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_1", "metadata": {key: "order-7"}}},
        })
        assert event.order_id == "order-7"

    def test_payment_intent_failed_without_metadata(self):
        event = parse_event({"id": "evt", "type": "payment_intent.payment_failed", "data": {"object": {"id": "pi_1"}}})
        assert isinstance(event, PaymentIntentFailed)
        assert event.order_id is None

    def test_invoice_events(self):
        ok = parse_event({"id": "e1", "type": "invoice.payment_succeeded", "data": {"object": {"id": "in_1", "amount_paid": 900}}})
        ko = parse_event({"id": "e2", "type": "invoice.payment_failed", "data": {"object": {"id": "in_2", "amount_due": 900}}})
        assert isinstance(ok, InvoicePaymentSucceeded) and ok.amount_paid == 900
        assert isinstance(ko, InvoicePaymentFailed) and ko.amount_due == 900

    def test_unknown_type_is_unhandled(self):
        event = parse_event({"id": "evt_x", "type": "customer.created", "data": {"object": {"id": "cus_1"}}})
        assert isinstance(event, UnhandledEvent)
        assert event.event_type == "customer.created"

    def test_checkout_session_customer_email_fallback(self):
        event = parse_event({
            "id": "evt",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_9", "customer_details": {"email": "x@y.fr"}}},
        })
        assert event.customer_email == "x@y.fr"
        assert event.amount_total is None

    def test_events_are_immutable(self):
        event = parse_event(checkout_completed())
        with pytest.raises(Exception):
            event.session_id = "cs_other"
