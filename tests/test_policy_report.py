from __future__ import annotations

import asyncio
from decimal import Decimal
from pathlib import Path

import pytest

from spendgate.core.database import SpendgateDB
from spendgate.services.approval_policy import (
    GLOBAL_SCOPE,
    ApprovalRule,
    ApprovalStatus,
    ApproverRole,
    Person,
    RuleScope,
)
from spendgate.services.directory import StaticDirectory
from spendgate.services.errors import DirectoryError, NotFoundError, ReportBuildError
from spendgate.services.metrics import get_metrics, reset_metrics
from spendgate.services.policy_report import build_policy_report, load_snapshot, resolve_for_project

PEOPLE = StaticDirectory(
    [
        Person(id="u1", first_name="Alex", last_name="Kim", email="alex@example.com"),
        Person(id="u2", first_name="Dana", last_name="Ortiz", email="dana@example.com"),
        Person(id="u3", first_name="Sam", last_name="Lee", email="sam@example.com"),
    ]
)


class _FailingDirectory:
    def __init__(self, exc: Exception):
        self.exc = exc

    async def lookup_people(self, person_ids):
        raise self.exc


def _rollout_id(db: SpendgateDB) -> str:
    return next(p["id"] for p in db.list_projects() if p["name"] == "Rollout")


@pytest.fixture
def seeded_db(tmp_path: Path) -> SpendgateDB:
    db = SpendgateDB(str(tmp_path / "spendgate-report.db"))
    db.initialize()
    acme = db.create_client(name="Acme", owner_id="u3")
    db.create_project(name="Audit", client_id=acme["id"], manager_id="u1", director_id="u2")
    rollout = db.create_project(name="Rollout", client_id=acme["id"], manager_id="u1")
    db.upsert_rule(None, 0, 999, "manager")
    db.upsert_rule(None, 1000, 9999, "director")
    db.upsert_rule(None, 10000, None, "client_owner")
    db.upsert_rule(rollout["id"], 500, 1500, "client_owner")
    return db


def test_load_snapshot_assembles_projects(seeded_db: SpendgateDB):
    snapshot = asyncio.run(load_snapshot(seeded_db, PEOPLE))

    assert {p.name for p in snapshot.projects} == {"Audit", "Rollout"}
    assert [r.min_amount for r in snapshot.global_rules] == [Decimal("0"), Decimal("1000"), Decimal("10000")]
    assert sorted(snapshot.people) == ["u1", "u2", "u3"]

    rollout = snapshot.get_project(_rollout_id(seeded_db))
    assert rollout.client.name == "Acme"
    assert rollout.rules[0].scope == RuleScope.for_project(_rollout_id(seeded_db))


def test_report_rows_share_breakpoints(seeded_db: SpendgateDB):
    rows = asyncio.run(build_policy_report(seeded_db, PEOPLE))

    assert len(rows) == 2
    for row in rows:
        assert [a.amount for a in row.approvals] == [
            Decimal("0"), Decimal("500"), Decimal("1000"), Decimal("10000"),
        ]

    by_name = {row.name: row for row in rows}
    rollout = by_name["Rollout"].approvals
    assert [a.is_project_specific for a in rollout] == [False, True, True, False]
    assert rollout[1].approver.id == "u3"
    assert rollout[2].rule.approver_role is ApproverRole.CLIENT_OWNER
    assert rollout[2].threshold.min == Decimal("500")
    assert rollout[2].threshold.max == Decimal("1500")

    # Rollout has no director, but the project rule shadows the director tier.
    assert all(a.status is ApprovalStatus.RESOLVED for a in rollout)

    audit = by_name["Audit"].approvals
    assert [a.approver.id for a in audit] == ["u1", "u1", "u2", "u3"]


def test_missing_director_is_unresolved(seeded_db: SpendgateDB):
    seeded_db.delete_rule(seeded_db.list_project_rules(_rollout_id(seeded_db))[0]["id"])

    rows = asyncio.run(build_policy_report(seeded_db, PEOPLE))
    rollout = next(row for row in rows if row.name == "Rollout")

    assert rollout.approvals[1].status is ApprovalStatus.APPROVER_UNRESOLVED
    assert rollout.approvals[1].approver is None


def test_directory_failure_fails_whole_report(seeded_db: SpendgateDB):
    reset_metrics()
    with pytest.raises(DirectoryError):
        asyncio.run(build_policy_report(seeded_db, _FailingDirectory(DirectoryError("boom", status_code=500))))

    with pytest.raises(ReportBuildError) as exc_info:
        asyncio.run(build_policy_report(seeded_db, _FailingDirectory(RuntimeError("socket closed"))))

    assert exc_info.value.context["stage"] == "directory"
    assert get_metrics()["reports"]["failed"] == 2


def test_preview_does_not_persist(seeded_db: SpendgateDB):
    candidate = ApprovalRule(
        id="preview",
        scope=GLOBAL_SCOPE,
        min_amount=Decimal("0"),
        max_amount=Decimal("999"),
        approver_role=ApproverRole.DIRECTOR,
    )

    rows = asyncio.run(build_policy_report(seeded_db, PEOPLE, candidate=candidate))
    audit = next(row for row in rows if row.name == "Audit")

    assert audit.approvals[0].approver.id == "u2"
    assert seeded_db.list_global_rules()[0]["approver_role"] == "manager"


def test_preview_for_unknown_project(seeded_db: SpendgateDB):
    candidate = ApprovalRule(
        id="preview",
        scope=RuleScope.for_project("PRJ-missing"),
        min_amount=Decimal("0"),
        max_amount=None,
        approver_role=ApproverRole.MANAGER,
    )

    with pytest.raises(NotFoundError):
        asyncio.run(build_policy_report(seeded_db, PEOPLE, candidate=candidate))


def test_resolve_for_project(seeded_db: SpendgateDB):
    resolved = asyncio.run(resolve_for_project(seeded_db, PEOPLE, _rollout_id(seeded_db), "750"))

    assert resolved.is_project_specific is True
    assert resolved.approver.id == "u3"
    assert resolved.threshold.max == Decimal("1500")

    uncovered = asyncio.run(resolve_for_project(seeded_db, PEOPLE, _rollout_id(seeded_db), Decimal("-1")))
    assert uncovered.status is ApprovalStatus.NO_RULE

    with pytest.raises(NotFoundError):
        asyncio.run(resolve_for_project(seeded_db, PEOPLE, "PRJ-missing", 10))


def test_corrupt_stored_rule_is_server_fault(seeded_db: SpendgateDB):
    with seeded_db.connect() as conn:
        conn.cursor().execute(
            seeded_db._prepare_sql("UPDATE approval_rules SET approver_role = ? WHERE min_amount = ?"),
            ("Boss", "1000"),
        )
        conn.commit()

    with pytest.raises(ReportBuildError) as exc_info:
        asyncio.run(build_policy_report(seeded_db, PEOPLE))

    assert exc_info.value.status_code == 500
    assert exc_info.value.context["stage"] == "store"
