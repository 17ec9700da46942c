"""Connected business accounts and the active-account token."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from spendgate.core.database import SpendgateDB, get_db
from spendgate.services.errors import NoActiveAccountError, NotFoundError

logger = logging.getLogger(__name__)

_PUBLIC_FIELDS = ("id", "business_id", "business_name", "scopes", "token_expires_at", "created_at", "updated_at")


def public_connection(row: Dict[str, Any]) -> Dict[str, Any]:
    """Connection record without its tokens."""
    return {key: row.get(key) for key in _PUBLIC_FIELDS}


def set_active_account(business_id: str, db: Optional[SpendgateDB] = None) -> Dict[str, Any]:
    db = db or get_db()
    connection = db.get_account_connection(business_id)
    if not connection:
        raise NotFoundError("account connection", business_id)
    db.set_active_account(business_id)
    logger.info("Active account set to %s", business_id)
    return public_connection(connection)


def get_active_account(db: Optional[SpendgateDB] = None) -> Optional[Dict[str, Any]]:
    db = db or get_db()
    business_id = db.get_active_account_id()
    if not business_id:
        return None
    connection = db.get_account_connection(business_id)
    return public_connection(connection) if connection else None


def get_active_account_token(db: Optional[SpendgateDB] = None) -> str:
    db = db or get_db()
    business_id = db.get_active_account_id()
    if not business_id:
        raise NoActiveAccountError()
    connection = db.get_account_connection(business_id)
    if not connection:
        raise NoActiveAccountError(f"Active account {business_id} has no stored connection")
    return connection["access_token"]
