"""
Audit trail for payment and security events
"""
from sqlalchemy import Column, String, Integer, DateTime, JSON
from sqlalchemy.sql import func
from core.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor = Column(String(255), nullable=False)  # user email or system source (stripe-webhook)
    action = Column(String(100), nullable=False, index=True)
    target_type = Column(String(50), nullable=True)  # order, pending_order, invoice, webhook, user
    target_id = Column(String(255), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    severity = Column(String(16), nullable=False, default="LOW")  # LOW, MEDIUM, HIGH, CRITICAL

    # Request metadata
    ip_address = Column(String(45), nullable=True)  # IPv6 max length
    user_agent = Column(String(512), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
