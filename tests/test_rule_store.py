from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from spendgate.core.database import SpendgateDB, canonical_amount
from spendgate.services.errors import ConflictError


def _make_db(tmp_path: Path) -> SpendgateDB:
    db = SpendgateDB(str(tmp_path / "spendgate-rules.db"))
    db.initialize()
    return db


def test_canonical_amount_normalizes_representations():
    assert canonical_amount("1000.00") == "1000"
    assert canonical_amount(Decimal("1E+3")) == "1000"
    assert canonical_amount(999.5) == "999.5"
    assert canonical_amount("-0") == "0"


def test_upsert_twice_keeps_one_global_rule(tmp_path: Path):
    db = _make_db(tmp_path)
    first = db.upsert_rule(None, 0, 999, "manager")
    second = db.upsert_rule(None, 0, 999, "manager")

    rules = db.list_global_rules()
    assert len(rules) == 1
    assert first["id"] == second["id"]
    assert rules[0]["approver_role"] == "manager"


def test_upsert_same_range_replaces_role(tmp_path: Path):
    db = _make_db(tmp_path)
    db.upsert_rule(None, "1000", None, "director")
    updated = db.upsert_rule(None, Decimal("1000.00"), None, "client_owner")

    rules = db.list_global_rules()
    assert len(rules) == 1
    assert updated["approver_role"] == "client_owner"
    assert updated["max_amount"] is None


def test_unbounded_and_bounded_ranges_are_distinct_keys(tmp_path: Path):
    db = _make_db(tmp_path)
    db.upsert_rule(None, 0, None, "manager")
    db.upsert_rule(None, 0, 500, "director")

    assert len(db.list_global_rules()) == 2


def test_global_rules_iterate_in_numeric_order(tmp_path: Path):
    db = _make_db(tmp_path)
    for minimum in ("10000", "900", "5000", "0"):
        db.upsert_rule(None, minimum, None, "manager")

    assert [r["min_amount"] for r in db.list_global_rules()] == ["0", "900", "5000", "10000"]


def test_project_rules_are_scoped_per_project(tmp_path: Path):
    db = _make_db(tmp_path)
    db.upsert_rule("PRJ-a", 0, 999, "director")
    db.upsert_rule("PRJ-a", 0, 999, "manager")
    db.upsert_rule("PRJ-b", 0, 999, "director")
    db.upsert_rule(None, 0, 999, "manager")

    a_rules = db.list_project_rules("PRJ-a")
    assert len(a_rules) == 1
    assert a_rules[0]["approver_role"] == "manager"
    assert a_rules[0]["project_id"] == "PRJ-a"

    grouped = db.list_all_project_rules()
    assert sorted(grouped) == ["PRJ-a", "PRJ-b"]
    assert len(db.list_global_rules()) == 1


def test_update_rule_and_conflict(tmp_path: Path):
    db = _make_db(tmp_path)
    low = db.upsert_rule(None, 0, 999, "manager")
    db.upsert_rule(None, 1000, None, "director")

    moved = db.update_rule(low["id"], 0, 499, "director")
    assert moved["max_amount"] == "499"
    assert moved["approver_role"] == "director"

    with pytest.raises(ConflictError):
        db.update_rule(low["id"], 1000, None, "manager")

    assert db.update_rule("RULE-missing", 0, 1, "manager") is None


def test_delete_rule_from_either_scope(tmp_path: Path):
    db = _make_db(tmp_path)
    global_rule = db.upsert_rule(None, 0, 999, "manager")
    project_rule = db.upsert_rule("PRJ-a", 0, 999, "director")

    assert db.delete_rule(project_rule["id"]) is True
    assert db.delete_rule(global_rule["id"]) is True
    assert db.delete_rule(global_rule["id"]) is False
    assert db.list_global_rules() == []
    assert db.list_project_rules("PRJ-a") == []


def test_projects_carry_team_and_client(tmp_path: Path):
    db = _make_db(tmp_path)
    client = db.create_client(name="Acme", owner_id="u3")
    project = db.create_project(
        name="Audit",
        client_id=client["id"],
        manager_id="u1",
        director_id="u2",
        team=["u4", "u5", "u4"],
    )
    assert project["team"] == ["u4", "u5"]

    updated = db.update_project(project["id"], team=["u6"], director_id=None)
    assert updated["team"] == ["u6"]
    assert updated["director_id"] is None
    assert db.update_project("PRJ-missing", name="x") is None


def test_active_account_follows_connection(tmp_path: Path):
    db = _make_db(tmp_path)
    db.save_account_connection(business_id="biz-1", access_token="tok-1", business_name="Biz One")
    db.save_account_connection(business_id="biz-1", access_token="tok-2", business_name="Biz One")
    db.set_active_account("biz-1")

    assert len(db.list_account_connections()) == 1
    assert db.get_account_connection("biz-1")["access_token"] == "tok-2"
    assert db.get_active_account_id() == "biz-1"

    assert db.delete_account_connection("biz-1") is True
    assert db.get_active_account_id() is None


def test_failed_writes_leave_store_writable(tmp_path: Path):
    db = _make_db(tmp_path)
    low = db.upsert_rule(None, 0, 999, "manager")
    db.upsert_rule(None, 1000, None, "director")
    client = db.create_client(name="Acme")

    with pytest.raises(ConflictError):
        db.update_rule(low["id"], 1000, None, "manager")
    with pytest.raises(db._integrity_errors()):
        db.update_client(client["id"], name=None)

    assert db.upsert_rule(None, 0, 999, "director")["approver_role"] == "director"
    assert db.update_client(client["id"], name="Acme Co")["name"] == "Acme Co"
    assert db.delete_rule(low["id"]) is True
    assert [r["min_amount"] for r in db.list_global_rules()] == ["1000"]
