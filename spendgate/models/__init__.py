from spendgate.models.base import SGBaseModel
from spendgate.models.approvals import GlobalRuleUpdate, ProjectRulePayload, RulePayload, RulePreviewRequest
from spendgate.models.projects import ClientCreate, ClientUpdate, ProjectCreate, ProjectUpdate
from spendgate.models.accounts import ActiveAccountRequest, ConnectionCreate

__all__ = [
    "SGBaseModel",
    "RulePayload",
    "GlobalRuleUpdate",
    "ProjectRulePayload",
    "RulePreviewRequest",
    "ClientCreate",
    "ClientUpdate",
    "ProjectCreate",
    "ProjectUpdate",
    "ConnectionCreate",
    "ActiveAccountRequest",
]
