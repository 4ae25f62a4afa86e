"""
Side-effect outbox
Intents are written in the same transaction as the order they belong to and
drained afterwards, inline by the webhook and again by scripts/drain_outbox.py.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, JSON
from sqlalchemy.sql import func
from core.database import Base


class IntentKind:
    INVOICE = "invoice"
    ACTIVATION_EMAIL = "activation_email"
    WELCOME_CONVERSATION = "welcome_conversation"
    STAFF_NOTIFICATION = "staff_notification"
    CLIENT_NOTIFICATION = "client_notification"
    FILE_MIGRATION = "file_migration"


class IntentStatus:
    PENDING = "pending"
    RUNNING = "running"  # leased by one drain until claimed_at + OUTBOX_LEASE_SECONDS
    DONE = "done"
    FAILED = "failed"  # gave up after OUTBOX_MAX_ATTEMPTS


class OutboxIntent(Base):
    __tablename__ = "outbox_intents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    kind = Column(String(32), nullable=False)
    order_id = Column(String(36), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    pending_order_id = Column(String(36), nullable=True)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(String(16), nullable=False, default=IntentStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
