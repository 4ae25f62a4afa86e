"""
Order (commande) model
One row per correction project; created by a logged-in customer before
checkout or materialized from a pending guest order once payment clears.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base


class OrderStatus:
    AWAITING = "awaiting"
    AWAITING_VERIFICATION = "awaiting_verification"
    IN_PROGRESS = "in_progress"
    PAID = "paid"
    DONE = "done"
    CANCELLED = "cancelled"


class PaymentStatus:
    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    status = Column(String(32), nullable=False, default=OrderStatus.AWAITING)
    payment_status = Column(String(16), nullable=False, default=PaymentStatus.UNPAID)

    # One order per checkout session; the unique index is the last line of
    # defence against two deliveries of the same event racing each other
    stripe_session_id = Column(String(255), unique=True, index=True, nullable=True)

    amount = Column(Integer, nullable=True)  # minor units (cents)
    pages = Column(Integer, nullable=True)
    pack_type = Column(String(128), nullable=True)  # service/pack reference

    # Set when the provider's total disagrees with the stored amount
    reconciliation_flag = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")
    invoice = relationship("Invoice", back_populates="order", uselist=False)

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "stripeSessionId": self.stripe_session_id,
            "amount": self.amount,
            "pages": self.pages,
            "packType": self.pack_type,
            "reconciliationFlag": self.reconciliation_flag,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
