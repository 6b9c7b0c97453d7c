"""SQLite implementation of the table store for the audit/CAPA chain."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Mapping, Sequence
from uuid import uuid4

from qualiq.persistence.base import QueryResult, Row, StoreError
from qualiq.utils.serialization import json_default
from qualiq.utils.timestamps import iso_timestamp

logger = logging.getLogger(__name__)

_SqlValue = str | bytes | int | float | None

JSON_COLUMNS = frozenset(
    {"pattern_details", "affected_areas", "suggested_actions", "data_points", "options"}
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS audits (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL CHECK (length(trim(title)) > 0),
    description TEXT,
    audit_date TEXT,
    auditor_id TEXT,
    status TEXT NOT NULL DEFAULT 'planned',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS capa_plans (
    id TEXT PRIMARY KEY,
    audit_id TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(audit_id) REFERENCES audits(id)
);

CREATE TABLE IF NOT EXISTS non_conformities (
    id TEXT PRIMARY KEY,
    capa_plan_id TEXT NOT NULL,
    title TEXT NOT NULL CHECK (length(trim(title)) > 0),
    description TEXT,
    severity TEXT,
    root_cause TEXT,
    status TEXT NOT NULL DEFAULT 'open',
    created_at TEXT NOT NULL,
    FOREIGN KEY(capa_plan_id) REFERENCES capa_plans(id)
);

CREATE TABLE IF NOT EXISTS actions (
    id TEXT PRIMARY KEY,
    non_conformity_id TEXT NOT NULL,
    action_type TEXT NOT NULL DEFAULT 'corrective'
        CHECK (action_type IN ('corrective', 'preventive')),
    description TEXT NOT NULL,
    responsible_id TEXT,
    due_date TEXT,
    status TEXT NOT NULL DEFAULT 'open'
        CHECK (status IN ('open', 'in_progress', 'closed', 'overdue')),
    created_at TEXT NOT NULL,
    FOREIGN KEY(non_conformity_id) REFERENCES non_conformities(id)
);

CREATE TABLE IF NOT EXISTS action_attachments (
    id TEXT PRIMARY KEY,
    action_id TEXT NOT NULL,
    bucket_id TEXT NOT NULL DEFAULT 'documents',
    object_path TEXT NOT NULL,
    file_name TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(action_id) REFERENCES actions(id)
);

CREATE TABLE IF NOT EXISTS predictive_insights (
    id TEXT PRIMARY KEY,
    company_id TEXT,
    insight_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    pattern_details TEXT,
    affected_areas TEXT,
    suggested_actions TEXT,
    confidence_score REAL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pattern_detections (
    id TEXT PRIMARY KEY,
    company_id TEXT,
    insight_id TEXT NOT NULL,
    pattern_type TEXT,
    data_points TEXT,
    correlation_strength REAL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(insight_id) REFERENCES predictive_insights(id)
);

CREATE TABLE IF NOT EXISTS audit_simulations (
    id TEXT PRIMARY KEY,
    company_id TEXT,
    created_by TEXT,
    simulation_type TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    started_at TEXT,
    completed_at TEXT,
    summary TEXT,
    risk_score REAL,
    total_findings INTEGER,
    critical_findings INTEGER,
    major_findings INTEGER,
    minor_findings INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_findings (
    id TEXT PRIMARY KEY,
    simulation_id TEXT NOT NULL,
    document_id TEXT,
    severity TEXT NOT NULL,
    category TEXT NOT NULL,
    finding_title TEXT NOT NULL,
    finding_description TEXT NOT NULL,
    regulation_reference TEXT,
    recommendation TEXT NOT NULL,
    affected_area TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(simulation_id) REFERENCES audit_simulations(id)
);

CREATE TABLE IF NOT EXISTS training_sessions (
    id TEXT PRIMARY KEY,
    company_id TEXT,
    user_id TEXT,
    document_id TEXT,
    document_title TEXT NOT NULL CHECK (length(trim(document_title)) > 0),
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'in_progress', 'completed', 'failed')),
    started_at TEXT,
    completed_at TEXT,
    score INTEGER,
    passed INTEGER,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS training_questions (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    question_number INTEGER NOT NULL,
    question_text TEXT NOT NULL,
    options TEXT NOT NULL,
    explanation TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES training_sessions(id)
);

CREATE TABLE IF NOT EXISTS training_answers (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    question_id TEXT NOT NULL,
    selected_option_id TEXT NOT NULL,
    is_correct INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(session_id) REFERENCES training_sessions(id),
    FOREIGN KEY(question_id) REFERENCES training_questions(id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_capa_plans_audit_id ON capa_plans(audit_id);
CREATE INDEX IF NOT EXISTS idx_audits_created_at ON audits(created_at);
CREATE INDEX IF NOT EXISTS idx_non_conformities_plan ON non_conformities(capa_plan_id);
CREATE INDEX IF NOT EXISTS idx_actions_non_conformity ON actions(non_conformity_id);
CREATE INDEX IF NOT EXISTS idx_action_attachments_action ON action_attachments(action_id);
CREATE INDEX IF NOT EXISTS idx_pattern_detections_insight ON pattern_detections(insight_id);
CREATE INDEX IF NOT EXISTS idx_audit_findings_simulation ON audit_findings(simulation_id);
CREATE INDEX IF NOT EXISTS idx_training_questions_session ON training_questions(session_id);
CREATE INDEX IF NOT EXISTS idx_training_answers_session ON training_answers(session_id);
"""

# Mirrors the hosted platform, which creates the plan in the same statement
# as the audit.
_CAPA_PLAN_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS trg_audits_create_capa_plan
AFTER INSERT ON audits
BEGIN
    INSERT INTO capa_plans (id, audit_id, description, created_at)
    VALUES (
        lower(
            hex(randomblob(4)) || '-' || hex(randomblob(2)) || '-4' ||
            substr(hex(randomblob(2)), 2) || '-' ||
            substr('89ab', 1 + (abs(random()) % 4), 1) ||
            substr(hex(randomblob(2)), 2) || '-' || hex(randomblob(6))
        ),
        NEW.id,
        NULL,
        NEW.created_at
    );
END;
"""


def _encode(column: str, value: Any) -> _SqlValue:
    if column in JSON_COLUMNS and value is not None:
        return json.dumps(value, ensure_ascii=False, default=json_default)
    if isinstance(value, bool):
        return int(value)
    return value


def _decode_row(row: sqlite3.Row) -> Row:
    data = dict(row)
    for column in JSON_COLUMNS.intersection(data):
        raw = data[column]
        if isinstance(raw, str):
            try:
                data[column] = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Column %s holds invalid JSON; returning raw text", column)
    return data


class SqliteTableStore:
    def __init__(self, path: str, wal: bool = True, capa_plan_trigger: bool = True) -> None:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._closed = False
        if wal:
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")
        self._init_schema(capa_plan_trigger)
        self._columns = self._load_columns()

    def _init_schema(self, capa_plan_trigger: bool) -> None:
        self._conn.executescript(_SCHEMA)
        if capa_plan_trigger:
            self._conn.executescript(_CAPA_PLAN_TRIGGER)
        else:
            self._conn.execute("DROP TRIGGER IF EXISTS trg_audits_create_capa_plan")
        self._conn.commit()

    def _load_columns(self) -> dict[str, frozenset[str]]:
        tables = [
            row["name"]
            for row in self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
            )
        ]
        return {
            table: frozenset(
                row["name"] for row in self._conn.execute(f"PRAGMA table_info({table})")
            )
            for table in tables
        }

    @property
    def tables(self) -> frozenset[str]:
        return frozenset(self._columns)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._conn.close()
            self._closed = True

    def _check(self, table: str, columns: Sequence[str]) -> StoreError | None:
        known = self._columns.get(table)
        if known is None:
            return StoreError(StoreError.INVALID_REQUEST, f"Unknown table: {table}")
        unknown = [column for column in columns if column not in known]
        if unknown:
            return StoreError(
                StoreError.INVALID_REQUEST,
                f"Unknown column(s) for {table}: {', '.join(sorted(unknown))}",
            )
        return None

    @staticmethod
    def _where(filters: Mapping[str, Any]) -> tuple[str, list[_SqlValue]]:
        clauses: list[str] = []
        params: list[_SqlValue] = []
        for column, value in filters.items():
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set, frozenset)):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({','.join('?' for _ in values)})")
                params.extend(_encode(column, item) for item in values)
            else:
                clauses.append(f"{column} = ?")
                params.append(_encode(column, value))
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _run(self, query: str, params: Sequence[_SqlValue]) -> tuple[list[Row], StoreError | None]:
        try:
            with self._lock:
                cursor = self._conn.execute(query, params)
                rows = [_decode_row(row) for row in cursor.fetchall()]
                self._conn.commit()
        except sqlite3.IntegrityError as exc:
            return [], StoreError(StoreError.CONSTRAINT, str(exc))
        except sqlite3.Error as exc:
            logger.error("SQLite error: %s", exc)
            return [], StoreError(StoreError.DATABASE, str(exc))
        return rows, None

    def select(
        self,
        table: str,
        columns: str = "*",
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> QueryResult:
        filters = dict(filters or {})
        selected = [c.strip() for c in columns.split(",") if c.strip()] if columns != "*" else []
        referenced = [*selected, *filters, *([order_by] if order_by else [])]
        error = self._check(table, referenced)
        if error is not None:
            return QueryResult(error=error)
        if limit is not None and limit < 0:
            return QueryResult.failure(StoreError.INVALID_REQUEST, "limit must be >= 0")

        projection = ", ".join(selected) if selected else "*"
        where, params = self._where(filters)
        query = f"SELECT {projection} FROM {table}{where}"
        if order_by:
            # rowid keeps insertion order for rows sharing a timestamp.
            direction = "DESC" if descending else "ASC"
            query += f" ORDER BY {order_by} {direction}, rowid {direction}"
        else:
            query += " ORDER BY rowid"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows, error = self._run(query, params)
        if error is not None:
            return QueryResult(error=error)
        return QueryResult(data=rows)

    def insert(self, table: str, row: Mapping[str, Any]) -> QueryResult:
        values = dict(row)
        error = self._check(table, list(values))
        if error is not None:
            return QueryResult(error=error)

        known = self._columns[table]
        if "id" in known and not values.get("id"):
            values["id"] = str(uuid4())
        if "created_at" in known and not values.get("created_at"):
            values["created_at"] = iso_timestamp()

        columns = list(values)
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) RETURNING *"
        )
        rows, error = self._run(query, [_encode(c, values[c]) for c in columns])
        if error is not None:
            logger.info("Insert into %s failed: %s", table, error.message)
            return QueryResult(error=error)
        return QueryResult(data=rows[0])

    def update(
        self,
        table: str,
        patch: Mapping[str, Any],
        filters: Mapping[str, Any],
    ) -> QueryResult:
        patch = dict(patch)
        filters = dict(filters)
        if not patch:
            return QueryResult.failure(StoreError.INVALID_REQUEST, "Update patch is empty")
        if not filters:
            return QueryResult.failure(
                StoreError.INVALID_REQUEST, "Refusing to update without a filter"
            )
        error = self._check(table, [*patch, *filters])
        if error is not None:
            return QueryResult(error=error)
        if "id" in patch:
            return QueryResult.failure(StoreError.INVALID_REQUEST, "Row ids are immutable")

        assignments = ", ".join(f"{column} = ?" for column in patch)
        where, where_params = self._where(filters)
        query = f"UPDATE {table} SET {assignments}{where} RETURNING *"
        params = [_encode(c, v) for c, v in patch.items()] + where_params
        rows, error = self._run(query, params)
        if error is not None:
            return QueryResult(error=error)
        return QueryResult(data=rows)
