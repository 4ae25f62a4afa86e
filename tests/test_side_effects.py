"""Outbox draining, retries and the individual side-effect helpers."""

import re
from datetime import datetime, timedelta, timezone

from conftest import RecordingMailer, checkout_completed
from models.invoice import Invoice
from models.message import Message
from models.notification import Notification
from models.order import Order
from models.outbox import OutboxIntent, IntentKind, IntentStatus
from models.pending_order import PendingOrder
from models.project_file import ProjectFile
from models.user import User
from utils.file_migration import migrate_temp_files, temp_pending_marker
from utils.invoicing import generate_invoice_pdf, invoice_pdf_number, new_invoice_number
from utils.side_effects import SideEffects
from utils.welcome_conversation import create_welcome_conversation


class ReenteringMailer(RecordingMailer):
    """Calls on_first_send (once) from inside the first send, then records the mail."""

    def __init__(self):
        super().__init__()
        self.on_first_send = None
        self.nested_results = []

    def send(self, to_addr, subject, html, text=None, attachments=None):
        callback, self.on_first_send = self.on_first_send, None
        if callback:
            self.nested_results.append(callback())
        super().send(to_addr, subject, html, text=text, attachments=attachments)


class TestOutboxRetry:

    def test_failed_intents_are_retried_by_the_worker(self, post_event, make_pending_order, db_session, mailer, storage):
        mailer.fail_on.update({"Activez", "facture"})
        make_pending_order()
        post_event(checkout_completed())

        pending_kinds = {i.kind for i in db_session.query(OutboxIntent).filter(OutboxIntent.status == IntentStatus.PENDING)}
        assert pending_kinds == {IntentKind.INVOICE, IntentKind.ACTIVATION_EMAIL}

        mailer.fail_on.clear()
        summary = SideEffects(storage, mailer).drain_pending(db_session)

        assert summary["done"] == 2
        assert db_session.query(OutboxIntent).filter(OutboxIntent.status != IntentStatus.DONE).count() == 0
        assert db_session.query(Invoice).count() == 1
        assert db_session.query(PendingOrder).one().activation_token

    def test_intent_gives_up_after_max_attempts(self, make_pending_order, make_user, make_order, db_session, mailer, storage):
        order = make_order(make_user())
        effects = SideEffects(storage, mailer, max_attempts=2)
        effects.enqueue(db_session, IntentKind.INVOICE, order, order.user)
        db_session.commit()
        mailer.fail_on.add("facture")

        assert effects.drain_for_order(db_session, order.id) == {"done": 0, "retry": 1, "failed": 0, "skipped": 0}
        assert effects.drain_for_order(db_session, order.id)["failed"] == 1

        intent = db_session.query(OutboxIntent).one()
        assert intent.status == IntentStatus.FAILED
        assert intent.attempts == 2
        # Given-up intents are no longer picked up
        assert effects.drain_pending(db_session) == {"done": 0, "retry": 0, "failed": 0, "skipped": 0}

    def test_intent_for_deleted_order_is_skipped(self, make_user, make_order, db_session, side_effects):
        order = make_order(make_user())
        side_effects.enqueue(db_session, IntentKind.STAFF_NOTIFICATION, order, order.user)
        db_session.commit()
        db_session.delete(order)
        db_session.commit()

        summary = side_effects.drain_pending(db_session)

        assert summary["skipped"] == 1
        intent = db_session.query(OutboxIntent).one()
        assert intent.status == IntentStatus.DONE
        assert intent.last_error.startswith("skipped")

    def test_claimed_intent_is_not_run_twice(self, make_user, make_order, db_session, side_effects, mailer):
        order = make_order(make_user())
        intent = side_effects.enqueue(db_session, IntentKind.INVOICE, order, order.user)
        db_session.commit()
        intent_id = intent.id

        assert side_effects.run_intent(db_session, intent_id) == "done"
        assert side_effects.run_intent(db_session, intent_id) == "skipped"
        assert len([m for m in mailer.sent if "facture" in m["subject"]]) == 1

    def test_running_intent_is_left_alone_by_a_second_drain(self, make_user, make_order, db_session, storage):
        order = make_order(make_user())
        mailer = ReenteringMailer()
        effects = SideEffects(storage, mailer)
        intent = effects.enqueue(db_session, IntentKind.CLIENT_NOTIFICATION, order, order.user, payload={"packType": order.pack_type})
        db_session.commit()
        intent_id = intent.id
        # The worker polls the same intent while the first run is still sending its email
        mailer.on_first_send = lambda: effects.run_intent(db_session, intent_id)

        assert effects.run_intent(db_session, intent_id) == "done"

        assert mailer.nested_results == ["skipped"]
        assert mailer.subjects() == ["Projet créé avec succès - Staka Livres"]
        assert db_session.query(Notification).filter(Notification.user_id == order.user_id).count() == 1
        stored = db_session.query(OutboxIntent).one()
        assert stored.status == IntentStatus.DONE
        assert stored.attempts == 1

    def test_worker_skips_fresh_lease_and_takes_over_abandoned_one(self, make_user, make_order, db_session, side_effects, mailer):
        order = make_order(make_user())
        fresh = side_effects.enqueue(db_session, IntentKind.STAFF_NOTIFICATION, order, order.user)
        abandoned = side_effects.enqueue(db_session, IntentKind.CLIENT_NOTIFICATION, order, order.user)
        now = datetime.now(timezone.utc)
        fresh.status, fresh.attempts, fresh.claimed_at = IntentStatus.RUNNING, 1, now
        abandoned.status, abandoned.attempts, abandoned.claimed_at = IntentStatus.RUNNING, 1, now - timedelta(hours=1)
        db_session.commit()
        fresh_id, abandoned_id = fresh.id, abandoned.id

        summary = side_effects.drain_pending(db_session)

        assert summary == {"done": 1, "retry": 0, "failed": 0, "skipped": 0}
        assert db_session.get(OutboxIntent, abandoned_id).status == IntentStatus.DONE
        assert db_session.get(OutboxIntent, abandoned_id).attempts == 2
        assert db_session.get(OutboxIntent, fresh_id).status == IntentStatus.RUNNING
        assert mailer.subjects() == ["Projet créé avec succès - Staka Livres"]


class TestFileMigration:

    def test_files_are_reparented(self, post_event, make_pending_order, db_session):
        pending = make_pending_order()
        marker = temp_pending_marker(pending.id)
        db_session.add_all([
            ProjectFile(filename="manuscrit.docx", description=f"{marker}Chapitres 1 à 3"),
            ProjectFile(filename="notes.pdf", description=marker),
            ProjectFile(filename="autre.pdf", description="TEMP_PENDING:someone-else|x"),
        ])
        db_session.commit()

        post_event(checkout_completed())

        user = db_session.query(User).one()
        order = db_session.query(Order).one()
        manuscript = db_session.query(ProjectFile).filter(ProjectFile.filename == "manuscrit.docx").one()
        notes = db_session.query(ProjectFile).filter(ProjectFile.filename == "notes.pdf").one()
        other = db_session.query(ProjectFile).filter(ProjectFile.filename == "autre.pdf").one()

        assert manuscript.order_id == order.id
        assert manuscript.uploaded_by_id == user.id
        assert manuscript.description == "Chapitres 1 à 3"
        assert notes.order_id == order.id
        assert notes.description is None
        assert other.order_id is None
        assert other.description.startswith("TEMP_PENDING:")

    def test_files_already_attached_are_left_alone(self, make_user, make_order, db_session):
        user = make_user()
        order = make_order(user)
        attached = ProjectFile(filename="a.docx", description="TEMP_PENDING:p1|keep", order_id=order.id)
        db_session.add(attached)
        db_session.commit()

        assert migrate_temp_files(db_session, "p1", user.id, "new-order") == 0
        db_session.refresh(attached)
        assert attached.order_id == order.id


class TestWelcomeConversation:

    def test_created_once_per_order(self, make_user, make_order, db_session):
        user = make_user()
        order = make_order(user)

        conversation_id = create_welcome_conversation(db_session, user, order)
        again = create_welcome_conversation(db_session, user, order)
        db_session.commit()

        assert conversation_id
        assert again is None
        messages = db_session.query(Message).order_by(Message.subject).all()
        assert len(messages) == 2
        assert {m.subject for m in messages} == {"🎉 Bienvenue chez Staka Livres !", "📋 Prochaines étapes de votre projet"}
        assert all(m.display_role == "Support" for m in messages)


class TestInvoicing:

    def test_pdf_is_rendered(self, make_user, make_order):
        user = make_user()
        order = make_order(user)
        pdf = generate_invoice_pdf(order, user)
        assert pdf.startswith(b"%PDF")

    def test_numbers(self):
        assert invoice_pdf_number("0123456789abcdef") == "INV-89ABCDEF"
        assert re.fullmatch(r"FACT-\d{4}-\d{6}", new_invoice_number())

    def test_invoice_number_follows_given_time(self):
        issued = datetime(2024, 12, 31, 23, 59, 59, 987000, tzinfo=timezone.utc)
        suffix = str(int(issued.timestamp() * 1000))[-6:]
        assert new_invoice_number(issued) == f"FACT-2024-{suffix}"
        assert new_invoice_number(issued) == new_invoice_number(issued)

    def test_invoice_is_stored_and_mailed(self, make_user, make_order, db_session, side_effects, mailer, storage):
        user = make_user()
        order = make_order(user)
        side_effects.enqueue(db_session, IntentKind.INVOICE, order, user)
        db_session.commit()

        side_effects.drain_for_order(db_session, order.id)

        invoice = db_session.query(Invoice).one()
        assert invoice.amount == 48000
        assert invoice.status == "GENERATED"
        assert invoice.pdf_url.startswith("/static/invoices/INV-")
        key = invoice.pdf_url[len("/static/"):]
        assert storage.read_bytes_key(key).startswith(b"%PDF")

        mail = next(m for m in mailer.sent if "facture" in m["subject"])
        assert mail["to"] == user.email
        assert mail["attachments"][0]["mime_type"] == "application/pdf"
