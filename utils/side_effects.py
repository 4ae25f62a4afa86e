"""
Side effects of a reconciled payment, run through the outbox.

The reconciler enqueues intents in the same transaction as the order write.
Each intent is then run in its own transaction: a failure is recorded on the
intent (attempts, last_error) and never touches its siblings or the order.
A claimed intent is leased (status running, claimed_at) so the inline drain
and scripts/drain_outbox.py never run it concurrently.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from core.config import OUTBOX_MAX_ATTEMPTS, OUTBOX_LEASE_SECONDS, logger
from models.order import Order
from models.outbox import OutboxIntent, IntentKind, IntentStatus
from models.pending_order import PendingOrder
from models.user import User
from utils.activation import send_activation_email
from utils.file_migration import migrate_temp_files
from utils.invoicing import process_invoice_for_order
from utils.notifications import notify_admin_new_payment, notify_client_order_created
from utils.welcome_conversation import create_welcome_conversation

# Run order within one order's batch
KIND_ORDER = [
    IntentKind.INVOICE,
    IntentKind.FILE_MIGRATION,
    IntentKind.ACTIVATION_EMAIL,
    IntentKind.WELCOME_CONVERSATION,
    IntentKind.STAFF_NOTIFICATION,
    IntentKind.CLIENT_NOTIFICATION,
]


class IntentSkipped(Exception):
    """The intent's rows no longer exist; nothing left to do."""


class SideEffects:
    def __init__(self, storage, mailer, max_attempts: int = OUTBOX_MAX_ATTEMPTS, lease_seconds: int = OUTBOX_LEASE_SECONDS):
        self.storage = storage
        self.mailer = mailer
        self.max_attempts = max_attempts
        self.lease_seconds = lease_seconds
        self._handlers = {
            IntentKind.INVOICE: self._run_invoice,
            IntentKind.ACTIVATION_EMAIL: self._run_activation_email,
            IntentKind.WELCOME_CONVERSATION: self._run_welcome_conversation,
            IntentKind.STAFF_NOTIFICATION: self._run_staff_notification,
            IntentKind.CLIENT_NOTIFICATION: self._run_client_notification,
            IntentKind.FILE_MIGRATION: self._run_file_migration,
        }

    # -- enqueue (inside the caller's transaction) --

    def enqueue(
        self,
        db: Session,
        kind: str,
        order: Order,
        user: User,
        pending: Optional[PendingOrder] = None,
        payload: Optional[dict] = None,
    ) -> OutboxIntent:
        intent = OutboxIntent(
            kind=kind,
            order_id=order.id,
            user_id=user.id,
            pending_order_id=pending.id if pending else None,
            payload=payload or {},
            status=IntentStatus.PENDING,
            attempts=0,
        )
        db.add(intent)
        return intent

    def enqueue_for_existing_order(
        self, db: Session, order: Order, user: User, amount_total: Optional[int] = None
    ) -> list[OutboxIntent]:
        # The invoice bills what Stripe charged, even when it differs from the stored amount
        invoice_payload = {"amountTotal": amount_total} if amount_total is not None else None
        return [
            self.enqueue(db, IntentKind.INVOICE, order, user, payload=invoice_payload),
            self.enqueue(db, IntentKind.STAFF_NOTIFICATION, order, user, payload=invoice_payload),
            self.enqueue(db, IntentKind.CLIENT_NOTIFICATION, order, user, payload={"packType": order.pack_type}),
        ]

    def enqueue_for_guest(
        self, db: Session, order: Order, user: User, pending: PendingOrder, user_created: bool
    ) -> list[OutboxIntent]:
        intents = [self.enqueue(db, IntentKind.INVOICE, order, user, pending)]
        if user_created:
            intents.append(self.enqueue(db, IntentKind.ACTIVATION_EMAIL, order, user, pending))
            intents.append(self.enqueue(db, IntentKind.WELCOME_CONVERSATION, order, user, pending))
        intents.append(self.enqueue(db, IntentKind.STAFF_NOTIFICATION, order, user, pending))
        if not user_created:
            intents.append(self.enqueue(db, IntentKind.CLIENT_NOTIFICATION, order, user, pending, payload={"packType": order.pack_type}))
        intents.append(self.enqueue(db, IntentKind.FILE_MIGRATION, order, user, pending))
        return intents

    # -- drain (after the order transaction committed) --

    def drain_for_order(self, db: Session, order_id: str) -> dict:
        intents = (
            db.query(OutboxIntent)
            .filter(OutboxIntent.order_id == order_id, OutboxIntent.status == IntentStatus.PENDING)
            .all()
        )
        return self._drain(db, intents)

    def drain_pending(self, db: Session, limit: int = 100) -> dict:
        intents = (
            db.query(OutboxIntent)
            .filter(self._claimable(datetime.now(timezone.utc)))
            .order_by(OutboxIntent.created_at.asc())
            .limit(limit)
            .all()
        )
        return self._drain(db, intents)

    def _claimable(self, now: datetime):
        """Pending intents, plus running ones whose lease ran out (the drain holding them died)."""
        stale_before = now - timedelta(seconds=self.lease_seconds)
        return or_(
            OutboxIntent.status == IntentStatus.PENDING,
            and_(OutboxIntent.status == IntentStatus.RUNNING, OutboxIntent.claimed_at < stale_before),
        )

    def _lease_expired(self, intent: OutboxIntent, now: datetime) -> bool:
        claimed_at = intent.claimed_at
        if claimed_at is None:
            return True
        # SQLite hands back naive datetimes even for timezone=True columns
        if claimed_at.tzinfo is None:
            claimed_at = claimed_at.replace(tzinfo=timezone.utc)
        return claimed_at < now - timedelta(seconds=self.lease_seconds)

    def _drain(self, db: Session, intents: list[OutboxIntent]) -> dict:
        rank = {kind: i for i, kind in enumerate(KIND_ORDER)}
        ordered = sorted(intents, key=lambda it: rank.get(it.kind, len(rank)))
        summary = {"done": 0, "retry": 0, "failed": 0, "skipped": 0}
        for intent_id in [it.id for it in ordered]:
            result = self.run_intent(db, intent_id)
            summary[result] = summary.get(result, 0) + 1
        return summary

    def run_intent(self, db: Session, intent_id: str) -> str:
        """Run one intent. Returns done, retry, failed or skipped; never raises."""
        now = datetime.now(timezone.utc)
        intent = db.query(OutboxIntent).filter(OutboxIntent.id == intent_id).first()
        if not intent or intent.status not in (IntentStatus.PENDING, IntentStatus.RUNNING):
            return "skipped"
        if intent.status == IntentStatus.RUNNING and not self._lease_expired(intent, now):
            return "skipped"

        # Lease: while the intent is running, the inline drain and the worker leave it alone
        seen_attempts = intent.attempts
        claimed = (
            db.query(OutboxIntent)
            .filter(
                OutboxIntent.id == intent_id,
                OutboxIntent.attempts == seen_attempts,
                self._claimable(now),
            )
            .update(
                {
                    OutboxIntent.status: IntentStatus.RUNNING,
                    OutboxIntent.claimed_at: now,
                    OutboxIntent.attempts: seen_attempts + 1,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if not claimed:
            return "skipped"

        intent = db.query(OutboxIntent).filter(OutboxIntent.id == intent_id).first()
        order_id = intent.order_id
        handler = self._handlers.get(intent.kind)
        try:
            if handler is None:
                raise ValueError(f"unknown outbox intent kind {intent.kind}")
            handler(db, intent)
            intent.status = IntentStatus.DONE
            intent.last_error = None
            intent.processed_at = datetime.now(timezone.utc)
            db.commit()
            logger.info(f"[outbox] {intent.kind} done for order {intent.order_id}")
            return "done"
        except IntentSkipped as ex:
            db.rollback()
            return self._finish(db, intent_id, IntentStatus.DONE, f"skipped: {ex}", "skipped")
        except Exception as ex:
            db.rollback()
            logger.exception(f"[outbox] {intent_id} failed for order {order_id}: {ex}")
            exhausted = seen_attempts + 1 >= self.max_attempts
            status = IntentStatus.FAILED if exhausted else IntentStatus.PENDING
            return self._finish(db, intent_id, status, str(ex)[:2000] or ex.__class__.__name__, "failed" if exhausted else "retry")

    def _finish(self, db: Session, intent_id: str, status: str, error: str, result: str) -> str:
        try:
            intent = db.query(OutboxIntent).filter(OutboxIntent.id == intent_id).first()
            if intent:
                intent.status = status
                intent.last_error = error
                if status != IntentStatus.PENDING:
                    intent.processed_at = datetime.now(timezone.utc)
                db.commit()
        except Exception as ex:
            db.rollback()
            logger.error(f"[outbox] could not record outcome of {intent_id}: {ex}")
        return result

    # -- handlers --

    def _load(self, db: Session, intent: OutboxIntent) -> tuple[Order, User]:
        order = db.query(Order).filter(Order.id == intent.order_id).first()
        user = db.query(User).filter(User.id == intent.user_id).first()
        if not order or not user:
            raise IntentSkipped(f"order {intent.order_id} or user {intent.user_id} no longer exists")
        return order, user

    def _load_pending(self, db: Session, intent: OutboxIntent) -> PendingOrder:
        pending = db.query(PendingOrder).filter(PendingOrder.id == intent.pending_order_id).first() if intent.pending_order_id else None
        if not pending:
            raise IntentSkipped(f"pending order {intent.pending_order_id} no longer exists")
        return pending

    def _run_invoice(self, db: Session, intent: OutboxIntent) -> None:
        order, user = self._load(db, intent)
        amount = (intent.payload or {}).get("amountTotal")
        process_invoice_for_order(db, order, user, self.storage, self.mailer, amount=amount)

    def _run_activation_email(self, db: Session, intent: OutboxIntent) -> None:
        order, user = self._load(db, intent)
        if user.is_active:
            logger.info(f"[activation] {user.email} already active; no email")
            return
        send_activation_email(db, self._load_pending(db, intent), order, self.mailer)

    def _run_welcome_conversation(self, db: Session, intent: OutboxIntent) -> None:
        order, user = self._load(db, intent)
        create_welcome_conversation(db, user, order)

    def _run_staff_notification(self, db: Session, intent: OutboxIntent) -> None:
        order, user = self._load(db, intent)
        amount = (intent.payload or {}).get("amountTotal")
        if amount is None:
            amount = order.amount or 0
        notify_admin_new_payment(db, user.full_name or user.email, amount, order.title, order.id)

    def _run_client_notification(self, db: Session, intent: OutboxIntent) -> None:
        order, user = self._load(db, intent)
        pack_type = (intent.payload or {}).get("packType") or order.pack_type
        notify_client_order_created(db, user, order.title, order.id, pack_type, self.mailer)

    def _run_file_migration(self, db: Session, intent: OutboxIntent) -> None:
        order, user = self._load(db, intent)
        migrate_temp_files(db, intent.pending_order_id, user.id, order.id)
