"""Approval rule authoring payloads."""
from decimal import Decimal
from typing import Any, Optional

from pydantic import Field, field_validator, model_validator

from spendgate.models.base import SGBaseModel
from spendgate.services.approval_policy import ApprovalRule, ApproverRole, RuleScope


class RulePayload(SGBaseModel):
    min_amount: Decimal = Field(..., ge=0, description="Inclusive lower bound")
    max_amount: Optional[Decimal] = Field(None, description="Inclusive upper bound; omit for no limit")
    approver_type: ApproverRole

    @field_validator("max_amount", mode="before")
    @classmethod
    def blank_max_is_unbounded(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_range(self):
        if self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError("max_amount must be greater than or equal to min_amount")
        return self


class GlobalRuleUpdate(RulePayload):
    id: str = Field(..., min_length=1)


class ProjectRulePayload(RulePayload):
    project_id: str = Field(..., min_length=1)


class RulePreviewRequest(RulePayload):
    """Candidate rule to evaluate before saving; no project_id means global."""
    project_id: Optional[str] = None

    def to_rule(self) -> ApprovalRule:
        return ApprovalRule(
            id="preview",
            scope=RuleScope(project_id=self.project_id or None),
            min_amount=self.min_amount,
            max_amount=self.max_amount,
            approver_role=self.approver_type,
        )
