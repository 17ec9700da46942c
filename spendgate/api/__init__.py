from spendgate.api.approval_rules import router as approval_rules_router
from spendgate.api.project_approvals import router as project_approvals_router
from spendgate.api.projects import router as projects_router
from spendgate.api.accounts import router as accounts_router

__all__ = [
    "approval_rules_router",
    "project_approvals_router",
    "projects_router",
    "accounts_router",
]
