# chainvote/operations/health_monitor.py
# Liveness/readiness checks: relational store and ledger connectivity

import logging
from typing import Dict

from sqlalchemy import text

from chainvote import db

logger = logging.getLogger(__name__)


def _check_db() -> Dict:
    try:
        db.session.execute(text("SELECT 1"))
        return {"ok": True, "detail": "database ok"}
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        db.session.rollback()
        return {"ok": False, "error": str(e)}


def _check_ledger(ledger) -> Dict:
    if ledger is None:
        return {"ok": False, "configured": False}
    connected = ledger.is_connected()
    return {"ok": connected, "configured": True}


def check_health(ledger) -> Dict:
    """Aggregate overall system health.

    The API stays up without the ledger (listings and identity still work), so
    only the database decides ``overall_ok``.
    """
    database = _check_db()
    ledger_status = _check_ledger(ledger)
    return {"db": database, "ledger": ledger_status, "overall_ok": database["ok"]}
