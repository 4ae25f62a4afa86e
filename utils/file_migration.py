from typing import Optional

from sqlalchemy.orm import Session

from core.config import logger
from models.project_file import ProjectFile

TEMP_PENDING_PREFIX = "TEMP_PENDING:"


def temp_pending_marker(pending_order_id: str) -> str:
    return f"{TEMP_PENDING_PREFIX}{pending_order_id}|"


def strip_marker(description: Optional[str], marker: str) -> Optional[str]:
    if not description or not description.startswith(marker):
        return description
    rest = description[len(marker):].strip()
    return rest or None


def migrate_temp_files(db: Session, pending_order_id: str, user_id: str, order_id: str) -> int:
    """Attach files uploaded during a guest checkout to the order it produced.

    Returns the number of files moved.
    """
    marker = temp_pending_marker(pending_order_id)
    files = (
        db.query(ProjectFile)
        .filter(ProjectFile.order_id.is_(None), ProjectFile.description.startswith(marker, autoescape=True))
        .all()
    )
    for f in files:
        f.uploaded_by_id = user_id
        f.order_id = order_id
        f.description = strip_marker(f.description, marker)
    db.flush()
    if files:
        logger.info(f"[files] moved {len(files)} file(s) from pending order {pending_order_id} to order {order_id}")
    return len(files)
