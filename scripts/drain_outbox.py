"""
Drain pending side-effect intents (invoices, emails, notifications, file moves)
Covers intents left behind when the webhook process stopped between the order
commit and the inline drain, and retries the ones that failed.

Usage:
    python scripts/drain_outbox.py            # single pass
    python scripts/drain_outbox.py --loop 60  # every 60 seconds
"""
import sys
import os
import time

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import logger
from core.database import SessionLocal
from utils.emailing import get_mailer
from utils.side_effects import SideEffects
from utils.storage import get_storage


def drain_once(limit: int = 100) -> dict:
    db = SessionLocal()
    try:
        side_effects = SideEffects(get_storage(), get_mailer())
        summary = side_effects.drain_pending(db, limit=limit)
        logger.info(f"[outbox] drain pass: {summary}")
        return summary
    finally:
        db.close()


def main(argv: list[str]) -> int:
    interval = None
    if "--loop" in argv:
        idx = argv.index("--loop")
        interval = int(argv[idx + 1]) if len(argv) > idx + 1 else 60

    if interval is None:
        drain_once()
        return 0

    while True:
        try:
            drain_once()
        except Exception as ex:
            logger.exception(f"[outbox] drain pass failed: {ex}")
        time.sleep(interval)


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
