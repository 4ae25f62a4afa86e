from models.user import User
from models.service import Service
from models.order import Order
from models.pending_order import PendingOrder
from models.invoice import Invoice
from models.project_file import ProjectFile
from models.message import Message
from models.notification import Notification
from models.outbox import OutboxIntent
from models.audit import AuditLog

__all__ = [
    "User",
    "Service",
    "Order",
    "PendingOrder",
    "Invoice",
    "ProjectFile",
    "Message",
    "Notification",
    "OutboxIntent",
    "AuditLog",
]
