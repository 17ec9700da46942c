"""Global spend-approval rule APIs."""
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from spendgate.core.database import get_db
from spendgate.models.approvals import GlobalRuleUpdate, RulePayload
from spendgate.services.approval_policy import ApprovalRule
from spendgate.services.auth import verify_api_key
from spendgate.services.errors import NotFoundError
from spendgate.services.logging import log_rule_change
from spendgate.services.metrics import record_rule_change

router = APIRouter(
    prefix="/api/approval-rules",
    tags=["approval-rules"],
    dependencies=[Depends(verify_api_key)],
)


def _serialize(row: Dict[str, Any]) -> Dict[str, Any]:
    return ApprovalRule.from_row(row).to_dict()


@router.get("")
def list_approval_rules() -> List[Dict[str, Any]]:
    db = get_db()
    return [_serialize(row) for row in db.list_global_rules()]


@router.post("")
def upsert_approval_rule(request: RulePayload):
    """Create a global rule, or replace the approver of the rule with the same range."""
    db = get_db()
    row = db.upsert_rule(
        project_id=None,
        min_amount=request.min_amount,
        max_amount=request.max_amount,
        approver_role=request.approver_type.value,
    )
    record_rule_change("upsert", "global")
    log_rule_change("upsert", row["id"])
    return _serialize(row)


@router.put("")
def update_approval_rule(request: GlobalRuleUpdate):
    db = get_db()
    row = db.update_rule(
        request.id,
        min_amount=request.min_amount,
        max_amount=request.max_amount,
        approver_role=request.approver_type.value,
    )
    if row is None:
        raise NotFoundError("approval rule", request.id)
    record_rule_change("update", "global")
    log_rule_change("update", request.id)
    return _serialize(row)


@router.delete("/{rule_id}")
def delete_approval_rule(rule_id: str):
    db = get_db()
    rule = db.get_rule(rule_id)
    if not rule:
        raise NotFoundError("approval rule", rule_id)
    db.delete_rule(rule_id)
    record_rule_change("delete", "project" if rule["project_id"] else "global")
    log_rule_change("delete", rule_id, project_id=rule["project_id"])
    return {"message": "Rule deleted successfully", "id": rule_id}
