from fastapi import APIRouter, Request, Body, Depends
from fastapi.responses import JSONResponse
from typing import Optional

from sqlalchemy.orm import Session

from core.config import logger
from core.database import get_db
from utils.activation import activate_account, ActivationError
from utils.audit import record_audit
from utils.notifications import notify_admin_new_registration

router = APIRouter(prefix="/api/public", tags=["activation"])


@router.post("/activate/{token}")
async def activate(
    token: str,
    request: Request,
    body: Optional[dict] = Body(None),
    db: Session = Depends(get_db),
):
    """Activate an account created from a guest checkout.
    Body (optional): { password }; required when no password was chosen at checkout.
    """
    password = str((body or {}).get("password") or "") or None
    try:
        user = activate_account(db, token, password)
        db.commit()
    except ActivationError as ex:
        db.rollback()
        logger.info(f"[activation] rejected: {ex.message}")
        return JSONResponse({"error": ex.message}, status_code=ex.status_code)

    payload = user.to_dict()

    try:
        notify_admin_new_registration(db, user)
        db.commit()
    except Exception as ex:
        db.rollback()
        logger.warning(f"[activation] admin notification failed for {payload['email']}: {ex}")

    record_audit(
        db, "ACCOUNT_ACTIVATED", actor=payload["email"], target_type="user",
        target_id=payload["id"], request=request,
    )
    return {"success": True, "message": "Compte activé avec succès", "user": payload}
