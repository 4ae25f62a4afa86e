import uuid
from sqlalchemy import Column, String, Text, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.sql import func
from core.database import Base


class MessageType:
    USER_MESSAGE = "USER_MESSAGE"
    SYSTEM_MESSAGE = "SYSTEM_MESSAGE"
    SUPPORT_MESSAGE = "SUPPORT_MESSAGE"


class Message(Base):
    """Messaging thread entry; sender_id is null for system-authored messages."""
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(String(36), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    receiver_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)

    subject = Column(String(255), nullable=True)
    content = Column(Text, nullable=False)
    type = Column(String(32), nullable=False, default=MessageType.USER_MESSAGE)
    is_read = Column(Boolean, nullable=False, default=False)

    # Display identity for system messages
    display_name = Column(String(255), nullable=True)
    display_role = Column(String(64), nullable=True)

    message_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
