"""
Approval policy snapshot loading and report composition.

A snapshot is fetched once per request: projects, clients, both rule tiers
and the people they reference. Store reads run concurrently in worker
threads and are joined before resolution starts. Any upstream failure fails
the whole report.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from spendgate.core.database import SpendgateDB
from spendgate.services.approval_policy import (
    ApprovalRule,
    Client,
    Person,
    Project,
    ProjectApprovalRow,
    ResolvedApproval,
    build_report,
    resolve_approval,
    with_candidate_rule,
)
from spendgate.services.errors import NotFoundError, ReportBuildError, SpendgateError
from spendgate.services.logging import log_report_build
from spendgate.services.metrics import record_report_build

logger = logging.getLogger(__name__)


class PeopleLookup(Protocol):
    async def lookup_people(self, person_ids: Iterable[str]) -> Dict[str, Person]:
        ...


@dataclass(frozen=True)
class PolicySnapshot:
    projects: Tuple[Project, ...] = ()
    global_rules: Tuple[ApprovalRule, ...] = ()
    people: Mapping[str, Person] = field(default_factory=dict)

    def get_project(self, project_id: str) -> Project:
        for project in self.projects:
            if project.id == project_id:
                return project
        raise NotFoundError("project", project_id)


def _referenced_people(projects: Iterable[Project]) -> List[str]:
    ids = set()
    for project in projects:
        ids.update(pid for pid in (project.manager_id, project.director_id) if pid)
        if project.client and project.client.owner_id:
            ids.add(project.client.owner_id)
    return sorted(ids)


def assemble_projects(
    project_rows: List[Dict[str, Any]],
    client_rows: List[Dict[str, Any]],
    project_rule_rows: Mapping[str, List[Dict[str, Any]]],
) -> List[Project]:
    clients = {row["id"]: Client.from_row(row) for row in client_rows}
    return [
        Project.from_row(
            row,
            client=clients.get(row.get("client_id")),
            rules=[ApprovalRule.from_row(rule) for rule in project_rule_rows.get(row["id"], [])],
        )
        for row in project_rows
    ]


async def load_snapshot(db: SpendgateDB, directory: PeopleLookup) -> PolicySnapshot:
    """Fetch projects, clients, rules and the referenced people."""
    stage = "store"
    try:
        project_rows, client_rows, global_rows, project_rule_rows = await asyncio.gather(
            asyncio.to_thread(db.list_projects),
            asyncio.to_thread(db.list_clients),
            asyncio.to_thread(db.list_global_rules),
            asyncio.to_thread(db.list_all_project_rules),
        )
        try:
            projects = assemble_projects(project_rows, client_rows, project_rule_rows)
            global_rules = tuple(ApprovalRule.from_row(row) for row in global_rows)
        except SpendgateError as exc:
            # A stored row that fails validation is a server-side fault.
            logger.error("Stored approval data is invalid: %s", exc.detail or exc.message)
            raise ReportBuildError(stage=stage, detail=exc.detail or exc.message) from exc

        stage = "directory"
        people = await directory.lookup_people(_referenced_people(projects))
    except SpendgateError:
        raise
    except Exception as exc:
        logger.exception("Approval snapshot load failed at %s", stage)
        raise ReportBuildError(stage=stage, detail=str(exc)) from exc

    logger.info(
        "Loaded approval snapshot: %s projects, %s global rules, %s people",
        len(projects),
        len(global_rules),
        len(people),
    )
    return PolicySnapshot(projects=tuple(projects), global_rules=global_rules, people=people)


async def build_policy_report(
    db: SpendgateDB,
    directory: PeopleLookup,
    candidate: Optional[ApprovalRule] = None,
) -> List[ProjectApprovalRow]:
    """
    Load a snapshot and build the project x threshold matrix.

    With ``candidate`` the report shows the effect of upserting that rule
    without persisting it.
    """
    started = time.time()
    try:
        snapshot = await load_snapshot(db, directory)
    except SpendgateError:
        record_report_build("failed")
        raise

    projects, global_rules = snapshot.projects, snapshot.global_rules
    if candidate is not None:
        if not candidate.scope.is_global:
            snapshot.get_project(candidate.scope.project_id)
        projects, global_rules = with_candidate_rule(projects, global_rules, candidate)

    rows = build_report(projects, global_rules, snapshot.people)
    kind = "preview" if candidate is not None else "built"
    duration_ms = (time.time() - started) * 1000
    thresholds = len(rows[0].approvals) if rows else 0
    record_report_build(kind, projects=len(rows), duration_ms=duration_ms)
    log_report_build(kind, projects=len(rows), thresholds=thresholds, duration_ms=duration_ms)
    return rows


async def resolve_for_project(
    db: SpendgateDB,
    directory: PeopleLookup,
    project_id: str,
    amount: Any,
) -> ResolvedApproval:
    """Single-point lookup against a freshly loaded snapshot."""
    snapshot = await load_snapshot(db, directory)
    project = snapshot.get_project(project_id)
    return resolve_approval(amount, project, snapshot.global_rules, snapshot.people)
