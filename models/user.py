"""
User account model
Customers, correctors and staff share this table; role tells them apart
"""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Boolean
from sqlalchemy.sql import func
from core.database import Base


class UserRole:
    USER = "USER"
    ADMIN = "ADMIN"
    CORRECTOR = "CORRECTOR"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Basic info
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)  # bcrypt hash
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)

    # Account status
    role = Column(String(20), nullable=False, default=UserRole.USER)  # USER, ADMIN, CORRECTOR
    is_active = Column(Boolean, nullable=False, default=True)  # guest checkouts start inactive

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    def to_dict(self):
        """Convert to dict for API responses"""
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "isActive": self.is_active,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
