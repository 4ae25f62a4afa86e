"""
Payment reconciliation: turns verified Stripe events into order state.

Two starting points for checkout.session.completed:
  - an Order created before checkout already carries the session id
  - a guest PendingOrder carries it, and the user and order get created here

Idempotency relies on conditional updates (paid orders are not updated again,
pending orders are claimed once) plus the unique index on
orders.stripe_session_id. Side effects go through the outbox.
"""
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import logger
from models.order import Order, OrderStatus, PaymentStatus
from models.pending_order import PendingOrder
from utils.provisioning import provision_user, materialize_order
from utils.stripe_events import (
    StripeEvent,
    CheckoutSessionCompleted,
    PaymentIntentFailed,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    UnhandledEvent,
)

AMOUNT_MISMATCH_FLAG = "amount_mismatch"


class Outcome:
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    IGNORED = "ignored"


@dataclass
class ReconciliationResult:
    outcome: str
    event_type: str
    order_id: Optional[str] = None
    user_id: Optional[str] = None
    user_created: bool = False
    detail: Optional[str] = None
    side_effects: dict = field(default_factory=dict)


@dataclass
class Resolution:
    order: Optional[Order] = None
    pending: Optional[PendingOrder] = None


class PaymentReconciler:
    def __init__(self, db: Session, side_effects):
        self.db = db
        self.side_effects = side_effects

    def handle(self, event: StripeEvent) -> ReconciliationResult:
        if isinstance(event, CheckoutSessionCompleted):
            return self.handle_checkout_completed(event)
        if isinstance(event, PaymentIntentFailed):
            return self.handle_payment_failed(event)
        if isinstance(event, InvoicePaymentSucceeded):
            logger.info(f"[reconcile] invoice {event.invoice_id} paid ({event.amount_paid}); nothing to do")
            return ReconciliationResult(Outcome.IGNORED, event.event_type)
        if isinstance(event, InvoicePaymentFailed):
            logger.info(f"[reconcile] invoice {event.invoice_id} payment failed ({event.amount_due}); nothing to do")
            return ReconciliationResult(Outcome.IGNORED, event.event_type)
        if isinstance(event, UnhandledEvent):
            logger.info(f"[reconcile] unhandled event type {event.event_type} ({event.event_id})")
            return ReconciliationResult(Outcome.IGNORED, event.event_type)
        raise TypeError(f"unsupported event {event!r}")

    def resolve(self, session_id: str) -> Resolution:
        if not session_id:
            return Resolution()
        order = self.db.query(Order).filter(Order.stripe_session_id == session_id).first()
        if order:
            return Resolution(order=order)
        pending = self.db.query(PendingOrder).filter(PendingOrder.stripe_session_id == session_id).first()
        return Resolution(pending=pending)

    def handle_checkout_completed(self, event: CheckoutSessionCompleted) -> ReconciliationResult:
        logger.info(
            f"[reconcile] checkout session {event.session_id} completed "
            f"(payment_status={event.payment_status}, amount_total={event.amount_total}, event={event.event_id})"
        )
        resolution = self.resolve(event.session_id)
        if resolution.order:
            return self._settle_existing_order(resolution.order, event)
        if resolution.pending:
            if resolution.pending.is_processed:
                logger.info(f"[reconcile] pending order {resolution.pending.id} already processed; duplicate delivery {event.event_id}")
                return ReconciliationResult(
                    Outcome.DUPLICATE, event.event_type,
                    order_id=resolution.pending.order_id, user_id=resolution.pending.user_id,
                )
            return self._settle_guest_order(resolution.pending, event)

        logger.warning(f"[reconcile] no order or pending order for session {event.session_id} (event {event.event_id})")
        return ReconciliationResult(Outcome.NOT_FOUND, event.event_type, detail=event.session_id)

    def _settle_existing_order(self, order: Order, event: CheckoutSessionCompleted) -> ReconciliationResult:
        db = self.db
        values = {
            Order.payment_status: PaymentStatus.PAID,
            Order.status: OrderStatus.IN_PROGRESS,
            Order.updated_at: func.now(),
        }
        if event.amount_total is not None:
            if order.amount is None:
                values[Order.amount] = event.amount_total
            elif order.amount != event.amount_total:
                logger.warning(
                    f"[reconcile] amount mismatch on order {order.id}: expected {order.amount}, "
                    f"received {event.amount_total} (session {event.session_id}); flagged for review"
                )
                values[Order.reconciliation_flag] = AMOUNT_MISMATCH_FLAG

        try:
            updated = (
                db.query(Order)
                .filter(Order.id == order.id, Order.payment_status != PaymentStatus.PAID)
                .update(values, synchronize_session=False)
            )
            if not updated:
                db.rollback()
                logger.info(f"[reconcile] order {order.id} already paid; duplicate delivery {event.event_id}")
                return ReconciliationResult(Outcome.DUPLICATE, event.event_type, order_id=order.id, user_id=order.user_id)

            db.expire(order)
            self.side_effects.enqueue_for_existing_order(db, order, order.user, amount_total=event.amount_total)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"[reconcile] order {order.id} marked paid/in progress")
        summary = self.side_effects.drain_for_order(db, order.id)
        return ReconciliationResult(
            Outcome.PROCESSED, event.event_type,
            order_id=order.id, user_id=order.user_id, side_effects=summary,
        )

    def _settle_guest_order(self, pending: PendingOrder, event: CheckoutSessionCompleted) -> ReconciliationResult:
        db = self.db
        try:
            claimed = (
                db.query(PendingOrder)
                .filter(PendingOrder.id == pending.id, PendingOrder.is_processed.is_(False))
                .update({PendingOrder.is_processed: True}, synchronize_session=False)
            )
            if not claimed:
                db.rollback()
                logger.info(f"[reconcile] pending order {pending.id} claimed by another delivery ({event.event_id})")
                return ReconciliationResult(Outcome.DUPLICATE, event.event_type)
            db.expire(pending)

            user, created = provision_user(db, pending)
            order = materialize_order(db, pending, user, event.session_id, event.amount_total)
            pending.user_id = user.id
            pending.order_id = order.id
            self.side_effects.enqueue_for_guest(db, order, user, pending, created)
            db.commit()
        except IntegrityError as ex:
            db.rollback()
            existing = db.query(Order).filter(Order.stripe_session_id == event.session_id).first()
            if not existing:
                # e.g. the same email registered concurrently; a redelivery will reuse that account
                raise
            logger.warning(f"[reconcile] session {event.session_id} already materialized by a concurrent delivery: {ex.orig}")
            return ReconciliationResult(Outcome.DUPLICATE, event.event_type, order_id=existing.id, user_id=existing.user_id)
        except Exception:
            db.rollback()
            raise

        order_id, user_id = order.id, user.id
        logger.info(f"[reconcile] guest order {order_id} created for user {user_id} (new account: {created})")
        summary = self.side_effects.drain_for_order(db, order_id)
        return ReconciliationResult(
            Outcome.PROCESSED, event.event_type,
            order_id=order_id, user_id=user_id, user_created=created, side_effects=summary,
        )

    def handle_payment_failed(self, event: PaymentIntentFailed) -> ReconciliationResult:
        if not event.order_id:
            logger.info(f"[reconcile] payment intent {event.payment_intent_id} failed without an order id in metadata")
            return ReconciliationResult(Outcome.IGNORED, event.event_type)

        db = self.db
        order = db.query(Order).filter(Order.id == event.order_id).first()
        if not order:
            logger.info(f"[reconcile] payment failure for unknown order {event.order_id} (event {event.event_id})")
            return ReconciliationResult(Outcome.IGNORED, event.event_type, order_id=event.order_id)

        try:
            # A late failure from an earlier attempt must not downgrade a paid order
            updated = (
                db.query(Order)
                .filter(Order.id == order.id, Order.payment_status != PaymentStatus.PAID)
                .update({Order.payment_status: PaymentStatus.FAILED, Order.updated_at: func.now()}, synchronize_session=False)
            )
            db.commit()
        except Exception:
            db.rollback()
            raise

        if not updated:
            logger.info(f"[reconcile] order {order.id} already paid; ignoring late failure event {event.event_id} ({event.payment_intent_id})")
            return ReconciliationResult(Outcome.IGNORED, event.event_type, order_id=order.id)
        logger.info(f"[reconcile] order {order.id} payment failed: {event.failure_message or 'no reason given'}")
        return ReconciliationResult(Outcome.PROCESSED, event.event_type, order_id=order.id, user_id=order.user_id)
