"""
Account activation for users provisioned from a guest checkout.
"""
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from sqlalchemy.orm import Session

from core.config import ACTIVATION_TOKEN_TTL_HOURS, FRONTEND_URL, APP_NAME, logger
from models.order import Order
from models.pending_order import PendingOrder
from models.user import User
from utils.emailing import render_email

MIN_PASSWORD_LENGTH = 8


class ActivationError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_password(raw: str) -> str:
    return bcrypt.hashpw(raw.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def unusable_password_hash() -> str:
    """bcrypt hash of a random secret nobody knows; stands in until activation."""
    return hash_password(secrets.token_urlsafe(32))


def activation_url(token: str) -> str:
    return f"{FRONTEND_URL}/activation/{token}"


def ensure_activation_token(db: Session, pending: PendingOrder, now: Optional[datetime] = None) -> str:
    """Reuse the pending order's token while it is valid, otherwise issue a new one."""
    now = now or _utcnow()
    expires_at = _as_aware(pending.token_expires_at)
    if pending.activation_token and expires_at and expires_at > now:
        return pending.activation_token

    pending.activation_token = str(uuid.uuid4())
    pending.token_expires_at = now + timedelta(hours=ACTIVATION_TOKEN_TTL_HOURS)
    db.flush()
    logger.info(f"[activation] token issued for pending order {pending.id} (expires {pending.token_expires_at.isoformat()})")
    return pending.activation_token


def send_activation_email(db: Session, pending: PendingOrder, order: Order, mailer) -> str:
    token = ensure_activation_token(db, pending)
    url = activation_url(token)
    html = render_email(
        "activation.html",
        first_name=pending.first_name,
        customer_name=f"{pending.first_name} {pending.last_name}".strip(),
        email=pending.email,
        activation_url=url,
        order_title=order.title,
        token_expiry=f"{ACTIVATION_TOKEN_TTL_HOURS} heures",
    )
    mailer.send(
        pending.email,
        f"🎉 Activez votre compte {APP_NAME} - Paiement confirmé !",
        html,
        text=f"Bonjour {pending.first_name}, activez votre compte: {url}",
    )
    logger.info(f"[activation] email sent to {pending.email} for order {order.id}")
    return token


def activate_account(db: Session, token: str, password: Optional[str] = None) -> User:
    """Activate the user behind a valid activation token.

    Raises ActivationError; the caller commits.
    """
    now = _utcnow()
    pending = (
        db.query(PendingOrder)
        .filter(PendingOrder.activation_token == token, PendingOrder.is_processed.is_(True))
        .first()
    )
    expires_at = _as_aware(pending.token_expires_at) if pending else None
    if not pending or not expires_at or expires_at <= now:
        raise ActivationError("Token d'activation invalide ou expiré", 400)

    user = db.query(User).filter(User.id == pending.user_id).first() if pending.user_id else None
    if not user:
        raise ActivationError("Utilisateur introuvable", 404)
    if user.is_active:
        raise ActivationError("Ce compte est déjà activé", 400)

    if password:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ActivationError(f"Le mot de passe doit contenir au moins {MIN_PASSWORD_LENGTH} caractères", 400)
        user.password_hash = hash_password(password)
    elif pending.has_placeholder_password:
        raise ActivationError("Un mot de passe est requis pour activer ce compte", 400)

    user.is_active = True
    pending.activation_token = None
    pending.token_expires_at = None
    db.flush()
    logger.info(f"[activation] account {user.email} activated")
    return user
