"""
Business Account API

Stores tokens for connected business accounts, selects the active one and
proxies its people directory.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from spendgate.core.database import get_db
from spendgate.models.accounts import ActiveAccountRequest, ConnectionCreate
from spendgate.services.accounts import get_active_account, public_connection, set_active_account
from spendgate.services.auth import verify_api_key
from spendgate.services.directory import get_directory
from spendgate.services.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["accounts"], dependencies=[Depends(verify_api_key)])


@router.get("/accounts/connections")
def list_connections():
    return {"connections": [public_connection(row) for row in get_db().list_account_connections()]}


@router.post("/accounts/connections")
def save_connection(request: ConnectionCreate):
    row = get_db().save_account_connection(**request.model_dump())
    logger.info("Saved connection for business %s", request.business_id)
    return public_connection(row)


@router.delete("/accounts/connections/{business_id}")
def delete_connection(business_id: str):
    if not get_db().delete_account_connection(business_id):
        raise NotFoundError("account connection", business_id)
    logger.info("Removed connection for business %s", business_id)
    return {"success": True, "business_id": business_id}


@router.post("/accounts/active")
def choose_active_account(request: ActiveAccountRequest):
    connection = set_active_account(request.business_id, db=get_db())
    return {"success": True, "active_account": connection}


@router.get("/accounts/active")
def read_active_account():
    return {"active_account": get_active_account(db=get_db())}


@router.get("/directory/people")
async def list_people() -> List[Dict[str, Any]]:
    people = await get_directory(get_db()).list_people()
    return [person.to_dict() for person in people.values()]
