from fastapi import APIRouter, Request, Body, Depends
from fastapi.responses import JSONResponse
from typing import Optional
import uuid

from sqlalchemy.orm import Session

from core.config import logger, IS_PRODUCTION, ENABLE_DEV_WEBHOOK_SIMULATION
from core.database import get_db
from models.pending_order import PendingOrder
from utils.audit import record_audit
from utils.emailing import get_mailer
from utils.reconciliation import PaymentReconciler, Outcome
from utils.side_effects import SideEffects
from utils.storage import get_storage
from utils.stripe_events import (
    verify_and_parse,
    MissingSignatureError,
    InvalidSignatureError,
    CheckoutSessionCompleted,
    CHECKOUT_SESSION_COMPLETED,
)

router = APIRouter(prefix="/payments", tags=["payments"])

INTERNAL_ERROR = "Erreur interne lors du traitement du webhook"
ORDER_NOT_FOUND = "Commande non trouvée"
DEFAULT_SIMULATED_AMOUNT = 48000


def get_reconciler(
    db: Session = Depends(get_db),
    mailer=Depends(get_mailer),
    storage=Depends(get_storage),
) -> PaymentReconciler:
    return PaymentReconciler(db, SideEffects(storage, mailer))


def dev_simulation_enabled() -> bool:
    return ENABLE_DEV_WEBHOOK_SIMULATION and not IS_PRODUCTION


@router.post("/webhook")
async def payments_webhook(
    request: Request,
    db: Session = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """
    Stripe webhook. The body is read raw so the signature is checked over the
    exact bytes Stripe signed.
    Responses:
      200 {received: true, eventType}  handled or deliberately ignored
      400 {error, received: false}     missing or invalid signature
      404 {error, received: false}     session matches no order nor pending order
      500 {error, received: false}     processing failed; Stripe retries
    """
    raw_body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = verify_and_parse(raw_body, signature)
    except MissingSignatureError as ex:
        logger.warning("[payments.webhook] request without stripe-signature header")
        record_audit(db, "WEBHOOK_SIGNATURE_MISSING", target_type="webhook", severity="HIGH", request=request)
        return JSONResponse({"error": ex.message, "received": False}, status_code=400)
    except InvalidSignatureError as ex:
        logger.warning(f"[payments.webhook] invalid signature: {ex.__cause__ or 'verification failed'}")
        record_audit(db, "WEBHOOK_SIGNATURE_INVALID", target_type="webhook", severity="CRITICAL", request=request)
        return JSONResponse({"error": ex.message, "received": False}, status_code=400)

    logger.info(f"[payments.webhook] event {event.event_id} ({event.event_type})")
    record_audit(
        db, "WEBHOOK_RECEIVED", target_type="webhook", target_id=event.event_id,
        details={"type": event.event_type}, request=request,
    )

    try:
        result = reconciler.handle(event)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[payments.webhook] processing failed for event {event.event_id} ({event.event_type}): {ex}")
        record_audit(
            db, "WEBHOOK_PROCESSING_ERROR", target_type="webhook", target_id=event.event_id,
            details={"type": event.event_type, "error": str(ex)[:500]}, severity="HIGH", request=request,
        )
        return JSONResponse({"error": INTERNAL_ERROR, "received": False}, status_code=500)

    if result.outcome == Outcome.NOT_FOUND:
        logger.error(f"[payments.webhook] no order for session {result.detail}; event {event.event_id} needs manual review")
        record_audit(
            db, "WEBHOOK_ORDER_NOT_FOUND", target_type="checkout_session", target_id=result.detail,
            details={"eventId": event.event_id, "type": event.event_type}, severity="MEDIUM", request=request,
        )
        return JSONResponse({"error": ORDER_NOT_FOUND, "received": False}, status_code=404)

    logger.info(f"[payments.webhook] event {event.event_id} -> {result.outcome} (order={result.order_id})")
    return JSONResponse({"received": True, "eventType": event.event_type}, status_code=200)


@router.post("/dev-webhook-simulate")
async def dev_webhook_simulate(
    body: Optional[dict] = Body(None),
    db: Session = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Replay checkout.session.completed for a pending guest order without Stripe.
    Local development only; 404 everywhere else.
    """
    if not dev_simulation_enabled():
        return JSONResponse({"error": "Not found"}, status_code=404)

    body = body or {}
    session_id = str(body.get("sessionId") or "").strip()
    if not session_id:
        return JSONResponse({"error": "sessionId requis"}, status_code=400)
    try:
        amount_total = int(body.get("amountTotal") or DEFAULT_SIMULATED_AMOUNT)
    except (TypeError, ValueError):
        return JSONResponse({"error": "amountTotal invalide"}, status_code=400)

    pending = db.query(PendingOrder).filter(PendingOrder.stripe_session_id == session_id).first()
    if not pending:
        return JSONResponse({"error": "Commande en attente non trouvée"}, status_code=404)
    if pending.is_processed:
        return {
            "success": True,
            "message": "Commande déjà traitée",
            "data": {"pendingOrderId": pending.id, "orderId": pending.order_id, "userId": pending.user_id},
        }

    logger.warning(f"[payments.webhook] DEV simulation of checkout.session.completed for {session_id}")
    event = CheckoutSessionCompleted(
        event_id=f"evt_dev_{uuid.uuid4().hex}",
        event_type=CHECKOUT_SESSION_COMPLETED,
        session_id=session_id,
        amount_total=amount_total,
        payment_status="paid",
    )
    try:
        result = reconciler.handle(event)
    except Exception as ex:
        db.rollback()
        logger.exception(f"[payments.webhook] DEV simulation failed for {session_id}: {ex}")
        return JSONResponse({"error": INTERNAL_ERROR}, status_code=500)

    return {
        "success": True,
        "message": "Simulation webhook réussie",
        "data": {
            "outcome": result.outcome,
            "orderId": result.order_id,
            "userId": result.user_id,
            "userCreated": result.user_created,
            "sideEffects": result.side_effects,
        },
    }
