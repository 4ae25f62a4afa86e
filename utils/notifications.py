"""
In-app notifications for customers and staff
"""
from typing import Optional

from sqlalchemy.orm import Session

from core.config import APP_NAME, logger
from models.notification import Notification, NotificationType, NotificationPriority
from models.user import User, UserRole
from utils.emailing import render_email

PACK_NEEDS_VERIFICATION = "pack-integral-default"


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str = NotificationType.INFO,
    priority: str = NotificationPriority.NORMAL,
    action_url: Optional[str] = None,
    data: Optional[dict] = None,
) -> Notification:
    notif = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type,
        priority=priority,
        action_url=action_url,
        data=data,
    )
    db.add(notif)
    return notif


def create_admin_notification(db: Session, title: str, message: str, **kwargs) -> int:
    """Fan out one notification per active admin. Returns how many were created."""
    admins = (
        db.query(User)
        .filter(User.role == UserRole.ADMIN, User.is_active.is_(True))
        .all()
    )
    for admin in admins:
        create_notification(db, admin.id, title, message, **kwargs)
    if not admins:
        logger.warning(f"[notify] no active admin to receive '{title}'")
    return len(admins)


def notify_admin_new_payment(db: Session, customer_name: str, amount: int, order_title: str, order_id: str) -> int:
    count = create_admin_notification(
        db,
        "Nouveau paiement reçu",
        f"{customer_name} a effectué un paiement de {(amount or 0) / 100:.2f}€ pour \"{order_title}\".",
        type=NotificationType.PAYMENT,
        priority=NotificationPriority.HIGH,
        action_url="/admin/factures",
        data={"orderId": order_id, "amount": amount},
    )
    db.flush()
    logger.info(f"[notify] staff notified of payment for order {order_id} ({count} admins)")
    return count


def notify_admin_new_registration(db: Session, user: User) -> int:
    return create_admin_notification(
        db,
        "Nouvelle inscription",
        f"{user.full_name or user.email} ({user.email}) s'est inscrit sur la plateforme.",
        type=NotificationType.INFO,
        priority=NotificationPriority.NORMAL,
        action_url="/admin/users",
    )


def notify_client_order_created(db: Session, user: User, order_title: str, order_id: str, pack_type: Optional[str], mailer) -> Notification:
    """Tell the customer their project exists, in-app and by email."""
    needs_verification = pack_type == PACK_NEEDS_VERIFICATION
    if needs_verification:
        message = (
            f"Votre projet \"{order_title}\" a été créé et est en attente de vérification. "
            "Notre équipe vous contactera sous 24h pour valider le nombre de pages."
        )
    else:
        message = f"Votre projet \"{order_title}\" a été créé avec succès et est en cours de traitement."

    action_url = f"/app/projects/{order_id}"
    notif = create_notification(
        db,
        user.id,
        "Projet créé avec succès",
        message,
        type=NotificationType.SUCCESS,
        priority=NotificationPriority.HIGH,
        action_url=action_url,
        data={"orderTitle": order_title, "orderId": order_id, "packType": pack_type, "needsVerification": needs_verification},
    )
    db.flush()

    html = render_email(
        "project_created.html",
        first_name=user.first_name,
        order_title=order_title,
        message=message,
        action_url=action_url,
    )
    mailer.send(user.email, f"Projet créé avec succès - {APP_NAME}", html, text=message)
    logger.info(f"[notify] client {user.email} notified of order {order_id}")
    return notif
