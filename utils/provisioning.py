"""
Guest checkout provisioning: account lookup/creation and order materialization.
Both helpers only add/flush; the reconciler owns the transaction.
"""
from typing import Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.config import logger
from models.order import Order, OrderStatus, PaymentStatus
from models.pending_order import PendingOrder
from models.service import Service
from models.user import User, UserRole
from utils.activation import unusable_password_hash

DEFAULT_ORDER_TITLE = "Service de correction"
DEFAULT_ORDER_DESCRIPTION = "Correction professionnelle de manuscrit"


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def find_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == normalize_email(email)).first()


def provision_user(db: Session, pending: PendingOrder) -> Tuple[User, bool]:
    """Find the account for a guest purchase or create an inactive one.

    Returns (user, created). An existing account is returned untouched.
    """
    existing = find_user_by_email(db, pending.email)
    if existing:
        logger.info(f"[reconcile] reusing account {existing.email} for pending order {pending.id}")
        return existing, False

    if pending.has_placeholder_password:
        password_hash = unusable_password_hash()
    else:
        password_hash = pending.password_hash

    user = User(
        first_name=pending.first_name,
        last_name=pending.last_name,
        email=normalize_email(pending.email),
        password_hash=password_hash,
        phone=pending.phone,
        address=pending.address,
        role=UserRole.USER,
        is_active=False,
    )
    db.add(user)
    db.flush()
    logger.info(f"[reconcile] created inactive account {user.email} for pending order {pending.id}")
    return user, True


def build_order_description(service: Optional[Service], guest_description: Optional[str]) -> str:
    base = (service.description if service and service.description else DEFAULT_ORDER_DESCRIPTION)
    extra = (guest_description or "").strip()
    if extra:
        return f"{base}\n\n{extra}"
    return base


def materialize_order(
    db: Session,
    pending: PendingOrder,
    user: User,
    session_id: str,
    amount_total: Optional[int],
) -> Order:
    service = db.query(Service).filter(Service.id == pending.service_id).first()
    if not service:
        logger.warning(f"[reconcile] service {pending.service_id} not found; using default title")

    amount = amount_total
    if amount is None and service:
        logger.warning(f"[reconcile] session {session_id} has no amount_total; using catalogue price {service.price_cents}")
        amount = service.price_cents

    order = Order(
        user_id=user.id,
        title=service.name if service and service.name else DEFAULT_ORDER_TITLE,
        description=build_order_description(service, pending.description),
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.PAID,
        stripe_session_id=session_id,
        amount=amount,
        pages=pending.pages,
        pack_type=pending.service_id,
    )
    db.add(order)
    db.flush()
    logger.info(f"[reconcile] order {order.id} materialized from pending order {pending.id}")
    return order
