from __future__ import annotations

import pytest

from qualiq.persistence.base import StoreError
from qualiq.persistence.sqlite import SqliteTableStore


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "qualiq.sqlite")


@pytest.fixture
def store(db_path):
    sqlite_store = SqliteTableStore(db_path)
    yield sqlite_store
    sqlite_store.close()


def test_schema_tables_exist(store):
    assert {
        "audits",
        "capa_plans",
        "non_conformities",
        "actions",
        "action_attachments",
        "predictive_insights",
        "pattern_detections",
        "audit_simulations",
        "audit_findings",
        "training_sessions",
        "training_questions",
        "training_answers",
    } <= store.tables


def test_insert_generates_id_and_timestamp(store):
    result = store.insert("audits", {"title": "Auditoría interna"})

    assert result.ok
    assert result.data["id"]
    assert result.data["created_at"]
    assert result.data["status"] == "planned"


def test_trigger_creates_capa_plan_for_audit(store):
    audit = store.insert("audits", {"title": "A1"}).data

    plans = store.select("capa_plans", filters={"audit_id": audit["id"]})

    assert plans.ok
    assert len(plans.data) == 1
    assert len(plans.data[0]["id"]) == 36


def test_trigger_can_be_disabled(db_path):
    store = SqliteTableStore(db_path, capa_plan_trigger=False)
    try:
        audit = store.insert("audits", {"title": "A1"}).data
        assert store.select("capa_plans", filters={"audit_id": audit["id"]}).data == []
    finally:
        store.close()


def test_second_plan_for_same_audit_is_rejected(store):
    audit = store.insert("audits", {"title": "A1"}).data

    result = store.insert("capa_plans", {"audit_id": audit["id"]})

    assert result.error is not None
    assert result.error.code == StoreError.CONSTRAINT


def test_foreign_keys_are_enforced(store):
    result = store.insert("non_conformities", {"capa_plan_id": "missing", "title": "NC"})
    assert result.error.code == StoreError.CONSTRAINT


def test_check_constraints_reject_bad_values(store):
    blank = store.insert("audits", {"title": "   "})
    assert blank.error.code == StoreError.CONSTRAINT

    audit = store.insert("audits", {"title": "A1"}).data
    plan = store.select("capa_plans", filters={"audit_id": audit["id"]}).data[0]
    nc = store.insert("non_conformities", {"capa_plan_id": plan["id"], "title": "NC1"}).data
    bad = store.insert(
        "actions",
        {"non_conformity_id": nc["id"], "action_type": "urgent", "description": "x"},
    )
    assert bad.error.code == StoreError.CONSTRAINT


def test_unknown_table_and_column_are_invalid_requests(store):
    assert store.select("users").error.code == StoreError.INVALID_REQUEST
    assert store.insert("audits", {"name": "x"}).error.code == StoreError.INVALID_REQUEST
    assert (
        store.select("audits", order_by="title; DROP TABLE audits").error.code
        == StoreError.INVALID_REQUEST
    )


def test_select_filters_order_and_limit(store):
    for title in ("primera", "segunda", "tercera"):
        store.insert("audits", {"title": title, "created_at": "2024-01-01T00:00:00+00:00"})

    newest_first = store.select("audits", columns="title", order_by="created_at", descending=True)
    assert [row["title"] for row in newest_first.data] == ["tercera", "segunda", "primera"]

    limited = store.select("audits", filters={"title": ["primera", "tercera"]}, limit=1)
    assert [row["title"] for row in limited.data] == ["primera"]

    none_match = store.select("audits", filters={"title": []})
    assert none_match.data == []

    null_desc = store.select("audits", filters={"description": None})
    assert len(null_desc.data) == 3


def test_update_returns_changed_rows(store):
    audit = store.insert("audits", {"title": "A1"}).data

    result = store.update("audits", {"status": "completed"}, {"id": audit["id"]})

    assert result.ok
    assert result.data[0]["status"] == "completed"
    assert store.update("audits", {"status": "x"}, {"id": "missing"}).data == []


def test_update_guards(store):
    assert store.update("audits", {}, {"id": "x"}).error.code == StoreError.INVALID_REQUEST
    assert store.update("audits", {"status": "x"}, {}).error.code == StoreError.INVALID_REQUEST
    assert store.update("audits", {"id": "y"}, {"id": "x"}).error.code == StoreError.INVALID_REQUEST


def test_json_columns_round_trip(store):
    row = store.insert(
        "predictive_insights",
        {
            "insight_type": "pattern",
            "severity": "high",
            "title": "Turno B",
            "description": "Desviaciones recurrentes",
            "pattern_details": {"type": "shift_correlation", "correlation_strength": 0.85},
            "affected_areas": ["Línea 4", "Turno B"],
        },
    ).data

    assert row["pattern_details"]["correlation_strength"] == 0.85
    fetched = store.select("predictive_insights", filters={"id": row["id"]}).data[0]
    assert fetched["affected_areas"] == ["Línea 4", "Turno B"]
    assert fetched["suggested_actions"] is None


def test_close_is_idempotent(db_path):
    store = SqliteTableStore(db_path)
    store.close()
    store.close()
