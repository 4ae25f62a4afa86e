"""
Audit trail helpers - payment webhook and account security events
Writes go through the caller's session and never raise.
"""
from typing import Optional
from fastapi import Request
from sqlalchemy.orm import Session

from core.config import logger
from models.audit import AuditLog


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "")[:512]


def record_audit(
    db: Session,
    action: str,
    actor: str = "stripe-webhook",
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    details: Optional[dict] = None,
    severity: str = "LOW",
    request: Optional[Request] = None,
) -> None:
    try:
        db.add(AuditLog(
            actor=actor,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details,
            severity=severity,
            ip_address=get_client_ip(request) if request else None,
            user_agent=get_user_agent(request) if request else None,
        ))
        db.commit()
    except Exception as ex:
        db.rollback()
        logger.warning(f"[audit] failed to record {action}: {ex}")
