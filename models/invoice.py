"""
Invoice issued for a paid order.
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    number = Column(String(64), nullable=False, index=True)
    amount = Column(Integer, nullable=False, default=0)  # minor units (cents)
    pdf_url = Column(Text, nullable=True)
    status = Column(String(32), nullable=False, default="GENERATED")
    issued_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    order = relationship("Order", back_populates="invoice")

    def to_dict(self):
        return {
            "id": self.id,
            "orderId": self.order_id,
            "number": self.number,
            "amount": self.amount,
            "pdfUrl": self.pdf_url,
            "status": self.status,
            "issuedAt": self.issued_at.isoformat() if self.issued_at else None,
        }
