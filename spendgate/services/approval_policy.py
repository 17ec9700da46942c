"""
Spend Approval Policy Resolution

Decides who must approve spend of a given amount on a project:

- Threshold resolution: project-specific rules are searched first, then
  global rules, each in store iteration order; the first rule whose
  inclusive range contains the amount wins.
- Approver resolution: the winning rule's role (manager, director,
  client owner) is mapped to a person through the project, its client and
  a directory snapshot.
- Policy report: every project evaluated at the same ordered breakpoints
  (the distinct rule minimums), producing an aligned project x threshold
  matrix.

Everything here is a pure computation over an immutable snapshot; loading
the snapshot lives in ``spendgate.services.policy_report``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from spendgate.services.errors import AmountError, RuleValidationError

logger = logging.getLogger(__name__)

NO_LIMIT = "No Limit"


class ApproverRole(str, Enum):
    """Kind of person a rule designates as approver."""
    MANAGER = "manager"
    DIRECTOR = "director"
    CLIENT_OWNER = "client_owner"

    @classmethod
    def parse(cls, value: Any) -> "ApproverRole":
        """Strict construction: unknown or differently-cased values are rejected."""
        if isinstance(value, cls):
            return value
        for role in cls:
            if value == role.value:
                return role
        raise RuleValidationError(
            "approver_type",
            f"Unrecognized approver type {value!r}; expected one of "
            + ", ".join(role.value for role in cls),
        )


class ApprovalStatus(str, Enum):
    """Display state of one report cell."""
    RESOLVED = "resolved"
    NO_RULE = "no_rule"
    APPROVER_UNRESOLVED = "approver_unresolved"


def to_amount(value: Any) -> Decimal:
    """Coerce a number or numeric string to Decimal (floats go through str)."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, bool):
        raise AmountError(value)
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise AmountError(value)
    if not amount.is_finite():
        raise AmountError(value)
    return amount


def amount_to_json(amount: Decimal) -> Any:
    """Integral amounts render as ints, everything else as floats."""
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


@dataclass(frozen=True)
class RuleScope:
    """Global scope when ``project_id`` is None, otherwise one project."""
    project_id: Optional[str] = None

    @property
    def is_global(self) -> bool:
        return self.project_id is None

    @classmethod
    def for_project(cls, project_id: str) -> "RuleScope":
        return cls(project_id=project_id)


GLOBAL_SCOPE = RuleScope()


@dataclass(frozen=True)
class ApprovalRule:
    """Maps an inclusive amount range to an approver role."""
    id: str
    scope: RuleScope
    min_amount: Decimal
    max_amount: Optional[Decimal]
    approver_role: ApproverRole
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def matches(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount

    @property
    def range_key(self) -> Tuple[RuleScope, Decimal, Optional[Decimal]]:
        return (self.scope, self.min_amount, self.max_amount)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ApprovalRule":
        max_amount = row.get("max_amount")
        return cls(
            id=str(row["id"]),
            scope=RuleScope(project_id=row.get("project_id")),
            min_amount=to_amount(row["min_amount"]),
            max_amount=to_amount(max_amount) if max_amount is not None else None,
            approver_role=ApproverRole.parse(row["approver_role"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.scope.project_id,
            "min_amount": amount_to_json(self.min_amount),
            "max_amount": amount_to_json(self.max_amount) if self.max_amount is not None else None,
            "approver_type": self.approver_role.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Person:
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Person":
        return cls(
            id=str(data["id"]),
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            email=data.get("email") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
        }


@dataclass(frozen=True)
class Client:
    id: str
    name: str
    owner_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Client":
        return cls(id=str(row["id"]), name=row.get("name") or "", owner_id=row.get("owner_id") or None)


@dataclass(frozen=True)
class Project:
    """A project with its client and project-specific rules attached."""
    id: str
    name: str
    client_id: str
    client: Optional[Client] = None
    manager_id: Optional[str] = None
    director_id: Optional[str] = None
    rules: Tuple[ApprovalRule, ...] = ()

    @classmethod
    def from_row(
        cls,
        row: Mapping[str, Any],
        client: Optional[Client] = None,
        rules: Iterable[ApprovalRule] = (),
    ) -> "Project":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            client_id=str(row.get("client_id") or ""),
            client=client,
            manager_id=row.get("manager_id") or None,
            director_id=row.get("director_id") or None,
            rules=tuple(rules),
        )


@dataclass(frozen=True)
class Threshold:
    min: Decimal
    max: Optional[Decimal]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "min": amount_to_json(self.min),
            "max": amount_to_json(self.max) if self.max is not None else NO_LIMIT,
        }


@dataclass(frozen=True)
class ResolvedApproval:
    """One amount evaluated against one project's effective rule set."""
    amount: Decimal
    threshold: Threshold
    rule: Optional[ApprovalRule] = None
    is_project_specific: bool = False
    approver: Optional[Person] = None

    @property
    def status(self) -> ApprovalStatus:
        if self.rule is None:
            return ApprovalStatus.NO_RULE
        if self.approver is None:
            return ApprovalStatus.APPROVER_UNRESOLVED
        return ApprovalStatus.RESOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": amount_to_json(self.amount),
            "threshold": self.threshold.to_dict(),
            "rule": self.rule.to_dict() if self.rule else None,
            "is_project_specific": self.is_project_specific,
            "approver": self.approver.to_dict() if self.approver else None,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ProjectApprovalRow:
    id: str
    name: str
    client_name: Optional[str]
    approvals: Tuple[ResolvedApproval, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "client_name": self.client_name,
            "approvals": [approval.to_dict() for approval in self.approvals],
        }


# ----------------------------------------------------------------------
# Threshold resolution
# ----------------------------------------------------------------------

def _first_match(amount: Decimal, rules: Iterable[ApprovalRule], scope_label: str) -> Optional[ApprovalRule]:
    for rule in rules:
        matched = rule.matches(amount)
        logger.debug(
            "%s rule check: min=%s max=%s role=%s matches=%s",
            scope_label,
            rule.min_amount,
            rule.max_amount if rule.max_amount is not None else NO_LIMIT,
            rule.approver_role.value,
            matched,
        )
        if matched:
            return rule
    return None


def match_rule(
    amount: Any,
    project_rules: Sequence[ApprovalRule],
    global_rules: Sequence[ApprovalRule],
) -> Tuple[Optional[ApprovalRule], bool]:
    """
    Find the rule governing ``amount``.

    Returns ``(rule, is_project_specific)``; ``(None, False)`` when nothing
    matches. Overlapping rules in one scope resolve to the first in
    iteration order, never the narrowest range.
    """
    value = to_amount(amount)
    rule = _first_match(value, project_rules, "Project")
    if rule is not None:
        return rule, True
    return _first_match(value, global_rules, "Global"), False


def breakpoints(projects: Iterable[Project], global_rules: Iterable[ApprovalRule]) -> List[Decimal]:
    """Distinct rule minimums across every project and the global tier, ascending."""
    minimums = set()
    for project in projects:
        minimums.update(rule.min_amount for rule in project.rules)
    minimums.update(rule.min_amount for rule in global_rules)
    return sorted(minimums)


# ----------------------------------------------------------------------
# Approver resolution
# ----------------------------------------------------------------------

def resolve_approver(
    role: ApproverRole,
    project: Project,
    client: Optional[Client],
    directory: Mapping[str, Person],
) -> Optional[Person]:
    """Map a role to the concrete person for this project, or None."""
    if role is ApproverRole.MANAGER:
        person_id = project.manager_id
    elif role is ApproverRole.DIRECTOR:
        person_id = project.director_id
    else:
        person_id = client.owner_id if client else None

    approver = directory.get(person_id) if person_id else None
    logger.debug(
        "Looking up %s for project %s: needed_id=%s found=%s",
        role.value,
        project.id,
        person_id,
        approver.id if approver else None,
    )
    return approver


def resolve_approval(
    amount: Any,
    project: Project,
    global_rules: Sequence[ApprovalRule],
    directory: Mapping[str, Person],
) -> ResolvedApproval:
    """Single-point lookup: which rule governs ``amount`` and who approves it."""
    value = to_amount(amount)
    rule, is_project_specific = match_rule(value, project.rules, global_rules)
    if rule is None:
        logger.debug("No matching rule for %s on project %s", value, project.id)
        return ResolvedApproval(amount=value, threshold=Threshold(min=value, max=None))

    return ResolvedApproval(
        amount=value,
        threshold=Threshold(min=rule.min_amount, max=rule.max_amount),
        rule=rule,
        is_project_specific=is_project_specific,
        approver=resolve_approver(rule.approver_role, project, project.client, directory),
    )


# ----------------------------------------------------------------------
# Policy report
# ----------------------------------------------------------------------

def build_report(
    projects: Sequence[Project],
    global_rules: Sequence[ApprovalRule],
    directory: Mapping[str, Person],
) -> List[ProjectApprovalRow]:
    """Evaluate every project at the shared breakpoints, in project order."""
    amounts = breakpoints(projects, global_rules)
    logger.debug("Using thresholds: %s", [str(amount) for amount in amounts])

    rows = []
    for project in projects:
        rows.append(ProjectApprovalRow(
            id=project.id,
            name=project.name,
            client_name=project.client.name if project.client else None,
            approvals=tuple(
                resolve_approval(amount, project, global_rules, directory) for amount in amounts
            ),
        ))
    return rows


def with_candidate_rule(
    projects: Sequence[Project],
    global_rules: Sequence[ApprovalRule],
    candidate: ApprovalRule,
) -> Tuple[List[Project], List[ApprovalRule]]:
    """
    Return copies of the rule sets as they would look after upserting
    ``candidate``: a rule with the same scope and range is replaced in place,
    otherwise global candidates are placed by minimum amount and project
    candidates are appended.
    """
    def _merge(rules: Sequence[ApprovalRule], ordered_by_min: bool) -> List[ApprovalRule]:
        merged = list(rules)
        for index, existing in enumerate(merged):
            if existing.range_key == candidate.range_key:
                merged[index] = candidate
                return merged
        merged.append(candidate)
        if ordered_by_min:
            merged.sort(key=lambda rule: rule.min_amount)
        return merged

    if candidate.scope.is_global:
        return list(projects), _merge(global_rules, ordered_by_min=True)

    updated = []
    for project in projects:
        if project.id == candidate.scope.project_id:
            project = replace(project, rules=tuple(_merge(project.rules, ordered_by_min=False)))
        updated.append(project)
    return updated, list(global_rules)
