"""
Project approval APIs

- The project x threshold approver matrix
- Project-specific rule authoring (upsert keyed on project + range)
- Single-amount resolution and unsaved-rule previews
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from spendgate.core.database import get_db
from spendgate.models.approvals import ProjectRulePayload, RulePreviewRequest
from spendgate.services.approval_policy import ApprovalRule
from spendgate.services.auth import verify_api_key
from spendgate.services.directory import get_directory
from spendgate.services.errors import NotFoundError
from spendgate.services.logging import log_rule_change
from spendgate.services.metrics import record_rule_change
from spendgate.services.policy_report import build_policy_report, resolve_for_project

router = APIRouter(
    prefix="/api/project-approvals",
    tags=["project-approvals"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("")
async def get_project_approvals() -> List[Dict[str, Any]]:
    db = get_db()
    rows = await build_policy_report(db, get_directory(db))
    return [row.to_dict() for row in rows]


@router.post("")
def upsert_project_rule(request: ProjectRulePayload):
    db = get_db()
    if not db.get_project(request.project_id):
        raise NotFoundError("project", request.project_id)
    row = db.upsert_rule(
        project_id=request.project_id,
        min_amount=request.min_amount,
        max_amount=request.max_amount,
        approver_role=request.approver_type.value,
    )
    record_rule_change("upsert", "project")
    log_rule_change("upsert", row["id"], project_id=request.project_id)
    return ApprovalRule.from_row(row).to_dict()


@router.post("/preview")
async def preview_rule(request: RulePreviewRequest) -> List[Dict[str, Any]]:
    """Report as it would look with the candidate rule saved."""
    db = get_db()
    rows = await build_policy_report(db, get_directory(db), candidate=request.to_rule())
    return [row.to_dict() for row in rows]


@router.get("/{project_id}/rules")
def list_project_rules(project_id: str) -> List[Dict[str, Any]]:
    db = get_db()
    if not db.get_project(project_id):
        raise NotFoundError("project", project_id)
    return [ApprovalRule.from_row(row).to_dict() for row in db.list_project_rules(project_id)]


@router.delete("/rules/{rule_id}")
def delete_project_rule(rule_id: str):
    db = get_db()
    rule = db.get_rule(rule_id)
    if not rule or not rule.get("project_id"):
        raise NotFoundError("project approval rule", rule_id)
    db.delete_rule(rule_id)
    record_rule_change("delete", "project")
    log_rule_change("delete", rule_id, project_id=rule["project_id"])
    return {"message": "Rule deleted successfully", "id": rule_id}


@router.get("/{project_id}/resolve")
async def resolve_project_amount(
    project_id: str,
    amount: Decimal = Query(..., ge=0, description="Spend amount to evaluate"),
):
    db = get_db()
    resolved = await resolve_for_project(db, get_directory(db), project_id, amount)
    return {"project_id": project_id, **resolved.to_dict()}
