"""
Uploaded project attachment
Files uploaded during guest checkout have no order yet; their description
carries a TEMP_PENDING:<pending order id>| prefix until the order exists.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey
from sqlalchemy.sql import func
from core.database import Base


class ProjectFile(Base):
    __tablename__ = "files"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    filename = Column(String(255), nullable=False)
    stored_name = Column(String(255), nullable=True)
    mime_type = Column(String(128), nullable=True)
    size = Column(Integer, nullable=True)
    url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)

    uploaded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
