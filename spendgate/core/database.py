"""
Spendgate Database

Single source of truth for connected business accounts, clients, projects,
project team membership, and the two tiers of spend-approval rules
(global rules and project-specific rules).
"""
from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

import psycopg
from psycopg.rows import dict_row

from spendgate.services.errors import ConflictError, DatabaseError

logger = logging.getLogger(__name__)

# Stored in max_amount_key for rules without an upper bound, so that the
# unbounded range takes part in the (scope, min, max) uniqueness key.
UNBOUNDED_KEY = "unbounded"


def canonical_amount(value: Any) -> str:
    """Render an amount as a canonical decimal string ("1000", "999.5")."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise DatabaseError(f"Amount is not numeric: {value!r}") from exc
    if not amount.is_finite():
        raise DatabaseError(f"Amount is not finite: {value!r}")
    text = format(amount.normalize(), "f")
    return "0" if text in ("-0", "") else text


def _max_key(max_amount: Optional[Any]) -> str:
    if max_amount is None:
        return UNBOUNDED_KEY
    return canonical_amount(max_amount)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SpendgateDB:
    def __init__(self, db_path: str = "spendgate.db"):
        self.dsn = os.getenv("DATABASE_URL")
        self.db_path = db_path
        dsn = (self.dsn or "").strip().lower()
        self.allow_sqlite_fallback = str(
            os.getenv("SPENDGATE_DB_FALLBACK_SQLITE", "true")
        ).strip().lower() not in {"0", "false", "no", "off"}
        self.use_postgres = bool(
            dsn and (dsn.startswith("postgres://") or dsn.startswith("postgresql://"))
        )
        self._initialized = False
        self._fallback_warned = False

    def _sqlite_connection(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self):
        if self.use_postgres:
            try:
                conn = psycopg.connect(self.dsn, row_factory=dict_row)
            except psycopg.OperationalError as exc:
                if not self.allow_sqlite_fallback:
                    raise DatabaseError("Postgres unavailable", detail=str(exc)) from exc
                if not self._fallback_warned:
                    logger.warning(
                        "Postgres unavailable (%s). Falling back to SQLite at %s. "
                        "Set SPENDGATE_DB_FALLBACK_SQLITE=false to disable fallback.",
                        exc,
                        self.db_path,
                    )
                    self._fallback_warned = True
                self.use_postgres = False
                self._initialized = False
                conn = self._sqlite_connection()
        else:
            conn = self._sqlite_connection()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _prepare_sql(self, sql: str) -> str:
        if self.use_postgres:
            return sql.replace("?", "%s")
        return sql

    def _integrity_errors(self) -> tuple:
        return (sqlite3.IntegrityError, psycopg.IntegrityError)

    def initialize(self) -> None:
        if self._initialized:
            return
        with self.connect() as conn:
            cur = conn.cursor()

            cur.execute("""
                CREATE TABLE IF NOT EXISTS account_connections (
                    id TEXT PRIMARY KEY,
                    business_id TEXT NOT NULL UNIQUE,
                    business_name TEXT,
                    access_token TEXT NOT NULL,
                    refresh_token TEXT,
                    scopes TEXT,
                    token_expires_at TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS active_account (
                    id TEXT PRIMARY KEY,
                    business_id TEXT NOT NULL,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS clients (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    industry TEXT,
                    status TEXT DEFAULT 'active',
                    owner_id TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    client_id TEXT NOT NULL,
                    manager_id TEXT,
                    director_id TEXT,
                    start_date TEXT,
                    end_date TEXT,
                    status TEXT DEFAULT 'active',
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS project_team_members (
                    project_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (project_id, user_id)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS approval_rules (
                    id TEXT PRIMARY KEY,
                    min_amount TEXT NOT NULL,
                    max_amount TEXT,
                    max_amount_key TEXT NOT NULL,
                    approver_role TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE(min_amount, max_amount_key)
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS project_approval_rules (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    min_amount TEXT NOT NULL,
                    max_amount TEXT,
                    max_amount_key TEXT NOT NULL,
                    approver_role TEXT NOT NULL,
                    created_at TEXT,
                    updated_at TEXT,
                    UNIQUE(project_id, min_amount, max_amount_key)
                )
            """)

            cur.execute("CREATE INDEX IF NOT EXISTS idx_projects_client ON projects(client_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_team_project ON project_team_members(project_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_project_rules_project ON project_approval_rules(project_id)")
            conn.commit()
        self._initialized = True

    # ------------------------------------------------------------------
    # Account connections
    # ------------------------------------------------------------------

    def save_account_connection(
        self,
        business_id: str,
        access_token: str,
        business_name: Optional[str] = None,
        refresh_token: Optional[str] = None,
        scopes: Optional[str] = None,
        token_expires_at: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.initialize()
        now = _now()
        sql = self._prepare_sql("""
            INSERT INTO account_connections
            (id, business_id, business_name, access_token, refresh_token, scopes, token_expires_at,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (business_id)
            DO UPDATE SET business_name = excluded.business_name,
                          access_token = excluded.access_token,
                          refresh_token = excluded.refresh_token,
                          scopes = excluded.scopes,
                          token_expires_at = excluded.token_expires_at,
                          updated_at = excluded.updated_at
        """)
        params = (
            f"CONN-{uuid.uuid4().hex}", business_id, business_name, access_token, refresh_token,
            scopes, token_expires_at, now, now,
        )
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()
        return self.get_account_connection(business_id) or {}

    def get_account_connection(self, business_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        sql = self._prepare_sql("SELECT * FROM account_connections WHERE business_id = ?")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (business_id,))
            row = cur.fetchone()
        return dict(row) if row else None

    def list_account_connections(self) -> List[Dict[str, Any]]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM account_connections ORDER BY created_at DESC, id")
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    def delete_account_connection(self, business_id: str) -> bool:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                self._prepare_sql("DELETE FROM account_connections WHERE business_id = ?"),
                (business_id,),
            )
            deleted = cur.rowcount > 0
            cur.execute(
                self._prepare_sql("DELETE FROM active_account WHERE business_id = ?"),
                (business_id,),
            )
            conn.commit()
        return deleted

    def set_active_account(self, business_id: str) -> None:
        self.initialize()
        sql = self._prepare_sql("""
            INSERT INTO active_account (id, business_id, updated_at)
            VALUES ('active', ?, ?)
            ON CONFLICT (id)
            DO UPDATE SET business_id = excluded.business_id,
                          updated_at = excluded.updated_at
        """)
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (business_id, _now()))
            conn.commit()

    def get_active_account_id(self) -> Optional[str]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT business_id FROM active_account WHERE id = 'active'")
            row = cur.fetchone()
        return dict(row)["business_id"] if row else None

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def create_client(
        self,
        name: str,
        owner_id: Optional[str] = None,
        industry: Optional[str] = None,
        status: str = "active",
    ) -> Dict[str, Any]:
        self.initialize()
        client_id = f"CLI-{uuid.uuid4().hex}"
        now = _now()
        sql = self._prepare_sql("""
            INSERT INTO clients (id, name, industry, status, owner_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """)
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (client_id, name, industry, status, owner_id, now, now))
            conn.commit()
        return self.get_client(client_id) or {}

    def update_client(self, client_id: str, **kwargs) -> Optional[Dict[str, Any]]:
        self.initialize()
        allowed = {"name", "industry", "status", "owner_id"}
        updates = {k: v for k, v in kwargs.items() if k in allowed}
        if updates:
            updates["updated_at"] = _now()
            assignments = ", ".join(f"{column} = ?" for column in updates)
            sql = self._prepare_sql(f"UPDATE clients SET {assignments} WHERE id = ?")
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(sql, (*updates.values(), client_id))
                conn.commit()
        return self.get_client(client_id)

    def get_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        sql = self._prepare_sql("SELECT * FROM clients WHERE id = ?")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (client_id,))
            row = cur.fetchone()
        return dict(row) if row else None

    def list_clients(self) -> List[Dict[str, Any]]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM clients ORDER BY name, id")
            rows = cur.fetchall()
        return [dict(row) for row in rows]

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(
        self,
        name: str,
        client_id: str,
        manager_id: Optional[str] = None,
        director_id: Optional[str] = None,
        team: Optional[Iterable[str]] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        status: str = "active",
    ) -> Dict[str, Any]:
        self.initialize()
        project_id = f"PRJ-{uuid.uuid4().hex}"
        now = _now()
        sql = self._prepare_sql("""
            INSERT INTO projects
            (id, name, client_id, manager_id, director_id, start_date, end_date, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """)
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(
                sql,
                (project_id, name, client_id, manager_id, director_id, start_date, end_date, status, now, now),
            )
            self._replace_team(cur, project_id, team or [])
            conn.commit()
        return self.get_project(project_id) or {}

    def update_project(self, project_id: str, team: Optional[Iterable[str]] = None, **kwargs) -> Optional[Dict[str, Any]]:
        self.initialize()
        allowed = {"name", "client_id", "manager_id", "director_id", "start_date", "end_date", "status"}
        updates = {k: v for k, v in kwargs.items() if k in allowed}
        updates["updated_at"] = _now()
        assignments = ", ".join(f"{column} = ?" for column in updates)
        sql = self._prepare_sql(f"UPDATE projects SET {assignments} WHERE id = ?")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (*updates.values(), project_id))
            if cur.rowcount == 0:
                conn.rollback()
                return None
            if team is not None:
                self._replace_team(cur, project_id, team)
            conn.commit()
        return self.get_project(project_id)

    def _replace_team(self, cur, project_id: str, team: Iterable[str]) -> None:
        cur.execute(
            self._prepare_sql("DELETE FROM project_team_members WHERE project_id = ?"),
            (project_id,),
        )
        insert = self._prepare_sql(
            "INSERT INTO project_team_members (project_id, user_id) VALUES (?, ?)"
        )
        for user_id in dict.fromkeys(team):
            cur.execute(insert, (project_id, user_id))

    def _attach_teams(self, cur, projects: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not projects:
            return projects
        cur.execute("SELECT project_id, user_id FROM project_team_members ORDER BY project_id, user_id")
        teams: Dict[str, List[str]] = {}
        for row in cur.fetchall():
            member = dict(row)
            teams.setdefault(member["project_id"], []).append(member["user_id"])
        for project in projects:
            project["team"] = teams.get(project["id"], [])
        return projects

    def get_project(self, project_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        sql = self._prepare_sql("SELECT * FROM projects WHERE id = ?")
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (project_id,))
            row = cur.fetchone()
            if not row:
                return None
            return self._attach_teams(cur, [dict(row)])[0]

    def list_projects(self) -> List[Dict[str, Any]]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM projects ORDER BY created_at DESC, id")
            projects = [dict(row) for row in cur.fetchall()]
            return self._attach_teams(cur, projects)

    # ------------------------------------------------------------------
    # Approval rules
    # ------------------------------------------------------------------

    @staticmethod
    def _deserialize_rule(row: Any, project_id: Optional[str] = None) -> Dict[str, Any]:
        rule = dict(row)
        rule.pop("max_amount_key", None)
        rule["project_id"] = rule.get("project_id", project_id)
        return rule

    @staticmethod
    def _store_order(rules: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # Global rules iterate ascending by numeric minimum; sort is stable so
        # equal minimums keep creation order.
        return sorted(rules, key=lambda r: Decimal(r["min_amount"]))

    def list_global_rules(self) -> List[Dict[str, Any]]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM approval_rules ORDER BY created_at, id")
            rows = cur.fetchall()
        return self._store_order([self._deserialize_rule(row) for row in rows])

    def list_project_rules(self, project_id: str) -> List[Dict[str, Any]]:
        self.initialize()
        sql = self._prepare_sql(
            "SELECT * FROM project_approval_rules WHERE project_id = ? ORDER BY created_at, id"
        )
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, (project_id,))
            rows = cur.fetchall()
        return [self._deserialize_rule(row) for row in rows]

    def list_all_project_rules(self) -> Dict[str, List[Dict[str, Any]]]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM project_approval_rules ORDER BY created_at, id")
            rows = cur.fetchall()
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for row in rows:
            rule = self._deserialize_rule(row)
            grouped.setdefault(rule["project_id"], []).append(rule)
        return grouped

    def get_rule(self, rule_id: str) -> Optional[Dict[str, Any]]:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(self._prepare_sql("SELECT * FROM approval_rules WHERE id = ?"), (rule_id,))
            row = cur.fetchone()
            if not row:
                cur.execute(
                    self._prepare_sql("SELECT * FROM project_approval_rules WHERE id = ?"),
                    (rule_id,),
                )
                row = cur.fetchone()
        return self._deserialize_rule(row) if row else None

    def upsert_rule(
        self,
        project_id: Optional[str],
        min_amount: Any,
        max_amount: Optional[Any],
        approver_role: str,
    ) -> Dict[str, Any]:
        """
        Create or update the rule keyed on (scope, min_amount, max_amount).

        ``project_id=None`` addresses the global scope. An existing rule with
        the same key only has its approver role replaced.
        """
        self.initialize()
        now = _now()
        min_text = canonical_amount(min_amount)
        max_text = canonical_amount(max_amount) if max_amount is not None else None
        max_key = _max_key(max_amount)

        if project_id is None:
            sql = self._prepare_sql("""
                INSERT INTO approval_rules
                (id, min_amount, max_amount, max_amount_key, approver_role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (min_amount, max_amount_key)
                DO UPDATE SET approver_role = excluded.approver_role,
                              updated_at = excluded.updated_at
            """)
            params = (f"RULE-{uuid.uuid4().hex}", min_text, max_text, max_key, approver_role, now, now)
            lookup = self._prepare_sql(
                "SELECT * FROM approval_rules WHERE min_amount = ? AND max_amount_key = ?"
            )
            lookup_params = (min_text, max_key)
        else:
            sql = self._prepare_sql("""
                INSERT INTO project_approval_rules
                (id, project_id, min_amount, max_amount, max_amount_key, approver_role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (project_id, min_amount, max_amount_key)
                DO UPDATE SET approver_role = excluded.approver_role,
                              updated_at = excluded.updated_at
            """)
            params = (
                f"PRULE-{uuid.uuid4().hex}", project_id, min_text, max_text, max_key, approver_role, now, now,
            )
            lookup = self._prepare_sql(
                "SELECT * FROM project_approval_rules WHERE project_id = ? AND min_amount = ? AND max_amount_key = ?"
            )
            lookup_params = (project_id, min_text, max_key)

        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            conn.commit()
            cur.execute(lookup, lookup_params)
            row = cur.fetchone()
        logger.debug(
            "Upserted %s approval rule %s-%s -> %s",
            "global" if project_id is None else f"project {project_id}",
            min_text,
            max_text or "unbounded",
            approver_role,
        )
        return self._deserialize_rule(row, project_id)

    def update_rule(
        self,
        rule_id: str,
        min_amount: Any,
        max_amount: Optional[Any],
        approver_role: str,
    ) -> Optional[Dict[str, Any]]:
        """Edit a global rule in place. Returns None when the id is unknown."""
        self.initialize()
        min_text = canonical_amount(min_amount)
        max_text = canonical_amount(max_amount) if max_amount is not None else None
        sql = self._prepare_sql("""
            UPDATE approval_rules
            SET min_amount = ?, max_amount = ?, max_amount_key = ?, approver_role = ?, updated_at = ?
            WHERE id = ?
        """)
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute(sql, (min_text, max_text, _max_key(max_amount), approver_role, _now(), rule_id))
            except self._integrity_errors() as exc:
                raise ConflictError(
                    "approval_rule",
                    f"Another rule already covers {min_text}-{max_text or 'unbounded'}",
                ) from exc
            if cur.rowcount == 0:
                conn.rollback()
                return None
            conn.commit()
        return self.get_rule(rule_id)

    def delete_rule(self, rule_id: str) -> bool:
        self.initialize()
        with self.connect() as conn:
            cur = conn.cursor()
            cur.execute(self._prepare_sql("DELETE FROM approval_rules WHERE id = ?"), (rule_id,))
            deleted = cur.rowcount
            cur.execute(self._prepare_sql("DELETE FROM project_approval_rules WHERE id = ?"), (rule_id,))
            deleted += cur.rowcount
            conn.commit()
        return deleted > 0


_DB_INSTANCE: Optional[SpendgateDB] = None


def get_db() -> SpendgateDB:
    global _DB_INSTANCE
    if _DB_INSTANCE is None:
        _DB_INSTANCE = SpendgateDB(db_path=os.getenv("SPENDGATE_DB_PATH", "spendgate.db"))
    return _DB_INSTANCE
