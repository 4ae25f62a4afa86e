import uuid
from typing import Optional

from sqlalchemy.orm import Session

from core.config import logger
from models.message import Message, MessageType
from models.order import Order
from models.user import User

WELCOME_SUBJECT = "🎉 Bienvenue chez Staka Livres !"
NEXT_STEPS_SUBJECT = "📋 Prochaines étapes de votre projet"


def welcome_message(first_name: str, order_title: str) -> str:
    return f"""Bonjour {first_name},

🎉 **Félicitations !** Votre paiement a été confirmé avec succès et votre projet de correction "{order_title}" est maintenant en cours de traitement.

## ✅ Ce qui vient d'être fait :
- ✅ Votre paiement a été validé
- ✅ Votre compte client a été créé
- ✅ Votre projet a été assigné à notre équipe de correcteurs professionnels
- ✅ Votre facture a été générée et envoyée par email

## 🚀 Prochaines étapes :
1. **Analyser votre document** et définir la stratégie de correction
2. **Assigner un correcteur spécialisé** dans votre domaine
3. **Commencer la correction** selon nos standards de qualité
4. **Vous tenir informé** de l'avancement via cette messagerie

N'hésitez pas à nous écrire directement dans cette conversation.

**Merci de nous faire confiance pour votre projet !**
L'équipe Staka Livres 📚"""


def next_steps_message(first_name: str) -> str:
    return f"""{first_name}, voici ce qu'il faut savoir sur votre projet :

## ⏱️ Délais indicatifs :
- **Analyse initiale** : 24-48h après validation du paiement
- **Début de correction** : 2-5 jours ouvrés
- **Livraison finale** : Selon la complexité de votre document

## 📧 Notifications automatiques :
Vous recevrez un email à chaque étape importante de la correction.

**À bientôt dans votre espace client !** 👋"""


def _system_message(conversation_id: str, user: User, order: Order, subject: str, content: str, metadata: dict) -> Message:
    return Message(
        conversation_id=conversation_id,
        sender_id=None,
        receiver_id=user.id,
        order_id=order.id,
        subject=subject,
        content=content,
        type=MessageType.SYSTEM_MESSAGE,
        is_read=False,
        display_name="Équipe Staka Livres",
        display_role="Support",
        message_metadata={**metadata, "orderId": order.id, "createdBySystem": True},
    )


def create_welcome_conversation(db: Session, user: User, order: Order) -> Optional[str]:
    """Seed the welcome and next-steps messages for a new customer.

    Returns the conversation id, or None if the order already has one.
    """
    existing = (
        db.query(Message)
        .filter(
            Message.order_id == order.id,
            Message.receiver_id == user.id,
            Message.type == MessageType.SYSTEM_MESSAGE,
            Message.subject == WELCOME_SUBJECT,
        )
        .first()
    )
    if existing:
        logger.info(f"[welcome] conversation already exists for order {order.id}")
        return None

    conversation_id = str(uuid.uuid4())
    first_name = user.first_name or user.email
    db.add(_system_message(
        conversation_id, user, order, WELCOME_SUBJECT,
        welcome_message(first_name, order.title),
        {"isWelcomeMessage": True, "welcomeType": "post_payment"},
    ))
    db.add(_system_message(
        conversation_id, user, order, NEXT_STEPS_SUBJECT,
        next_steps_message(first_name),
        {"isFollowUpMessage": True, "messageType": "next_steps"},
    ))
    db.flush()
    logger.info(f"[welcome] conversation {conversation_id} created for {user.email}")
    return conversation_id
