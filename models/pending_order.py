"""
Pending guest order
Holds a guest purchase between checkout creation and payment confirmation.
Consumed exactly once by the payment webhook (is_processed flips to True).
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base

# Stored instead of a hash when the guest did not choose a password at checkout
PENDING_ACTIVATION_SENTINEL = "PENDING_ACTIVATION"


class PendingOrder(Base):
    __tablename__ = "pending_orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Prospective account
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    password_hash = Column(String(255), nullable=False, default=PENDING_ACTIVATION_SENTINEL)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    gdpr_consent = Column(Boolean, nullable=False, default=False)

    # Purchase
    service_id = Column(String(128), nullable=False)
    stripe_session_id = Column(String(255), unique=True, index=True, nullable=True)
    description = Column(Text, nullable=True)
    pages = Column(Integer, nullable=True)

    # Activation
    activation_token = Column(String(64), unique=True, index=True, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Resolution
    is_processed = Column(Boolean, nullable=False, default=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User")
    order = relationship("Order")

    @property
    def has_placeholder_password(self) -> bool:
        return not self.password_hash or self.password_hash == PENDING_ACTIVATION_SENTINEL

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "serviceId": self.service_id,
            "stripeSessionId": self.stripe_session_id,
            "isProcessed": self.is_processed,
            "userId": self.user_id,
            "orderId": self.order_id,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
