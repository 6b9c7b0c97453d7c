from __future__ import annotations

import base64
import gzip
import json
from pathlib import Path

import httpx
import pytest
from starlette.testclient import TestClient

from qualiq.app import build_app_context
from qualiq.config import (
    AssistantSettings,
    GatewaySettings,
    ServerSettings,
    Settings,
    StorageSettings,
)
from qualiq.gateway.client import AIGatewayClient
from qualiq.insights.analyzer import CapaPatternAnalyzer
from qualiq.simulation.simulator import AuditSimulator
from qualiq.transport.http_server import create_http_app
from qualiq.training.exam import TrainingExamService

PROFILE = Path(__file__).resolve().parents[1] / "assistant.yaml"


def _settings(tmp_path, **server) -> Settings:
    return Settings(
        server=ServerSettings(**server),
        storage=StorageSettings(
            sqlite_path=str(tmp_path / "qualiq.sqlite"),
            blob_path=str(tmp_path / "blobs"),
            chat_sessions_path=str(tmp_path / "chat"),
        ),
        gateway=GatewaySettings(api_key="test-key"),
        assistant=AssistantSettings(profile_path=str(PROFILE)),
    )


@pytest.fixture
def context(tmp_path):
    ctx = build_app_context(_settings(tmp_path))
    yield ctx
    ctx.store.close()


@pytest.fixture
def client(context):
    return TestClient(create_http_app(context))


def _use_gateway(ctx, handler) -> None:
    gateway = AIGatewayClient(
        ctx.settings.gateway.base_url,
        "test-key",
        ctx.profile.model,
        transport=httpx.MockTransport(handler),
        error_copy=ctx.profile.errors.as_mapping(),
    )
    ctx.gateway = gateway
    ctx.analyzer = CapaPatternAnalyzer(gateway, ctx.store, ctx.profile)
    ctx.simulator = AuditSimulator(gateway, ctx.store, ctx.profile)
    ctx.training = TrainingExamService(gateway, ctx.store, ctx.profile)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_chat_relays_upstream_event_stream(context, client):
    upstream = (
        b'data: {"choices":[{"delta":{"content":"Hola"}}]}\n\n'
        b"data: [DONE]\n\n"
    )
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=upstream, headers={"Content-Type": "text/event-stream"})

    _use_gateway(context, handler)

    response = client.post("/chat", json={"messages": [{"role": "user", "content": "hola"}]})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.content == upstream
    messages = seen["body"]["messages"]
    assert messages[0]["role"] == "system"
    assert messages[0]["content"] == context.profile.chat_system_prompt
    assert messages[1] == {"role": "user", "content": "hola"}


def test_chat_relays_decoded_body_of_compressed_upstream(context, client):
    events = (
        b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n\n'
        b'data: {"choices":[{"delta":{"content":"lo"}}]}\n\n'
        b"data: [DONE]\n\n"
    )
    compressed = gzip.compress(events)

    async def chunks():
        yield compressed[:10]
        yield compressed[10:]

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            content=chunks(),
            headers={"Content-Type": "text/event-stream", "Content-Encoding": "gzip"},
        )

    _use_gateway(context, handler)

    response = client.post("/chat", json={"messages": [{"role": "user", "content": "hola"}]})

    assert response.status_code == 200
    assert "content-encoding" not in response.headers
    assert response.content == events


@pytest.mark.parametrize(
    ("upstream_status", "status", "copy_key"),
    [(429, 429, "rate_limited"), (402, 402, "quota_exceeded"), (503, 500, "generic")],
)
def test_chat_maps_upstream_errors(context, client, upstream_status, status, copy_key):
    _use_gateway(context, lambda request: httpx.Response(upstream_status, text="nope"))

    response = client.post("/chat", json={"messages": [{"role": "user", "content": "hola"}]})

    assert response.status_code == status
    assert response.json() == {"error": getattr(context.profile.errors, copy_key)}


@pytest.mark.parametrize(
    "payload",
    [b"not json", b"[]", b'{"messages": []}', b'{"messages": [{"role": "bot", "content": "x"}]}'],
)
def test_chat_rejects_malformed_bodies(client, payload):
    response = client.post("/chat", content=payload, headers={"Content-Type": "application/json"})
    assert response.status_code == 400
    assert "error" in response.json()


def test_chat_without_api_key_returns_generic_error(context, client):
    context.gateway = AIGatewayClient(context.settings.gateway.base_url, None, "model")
    response = client.post("/chat", json={"messages": [{"role": "user", "content": "hola"}]})
    assert response.status_code == 500
    assert response.json() == {"error": context.profile.errors.generic}


def test_capa_chain_over_http(client):
    audit = client.post("/audits", json={"title": "A1", "audit_date": "2024-05-01"})
    assert audit.status_code == 201
    audit_body = audit.json()
    assert audit_body["complete"] is True
    assert audit_body["notice"]["level"] == "success"
    plan_id = audit_body["capa_plan"]["id"]

    nc = client.post("/non-conformities", json={"capa_plan_id": plan_id, "title": "NC1"})
    assert nc.status_code == 201
    nc_body = nc.json()
    assert nc_body["corrective_action"]["action_type"] == "corrective"
    assert nc_body["corrective_action"]["status"] == "open"
    nc_id = nc_body["non_conformity"]["id"]

    action = client.post(
        "/actions",
        json={
            "non_conformity_id": nc_id,
            "action_type": "preventive",
            "description": "Formación del turno B",
            "due_date": "2024-06-01",
            "attachment": {
                "filename": "evidencia.pdf",
                "content_base64": base64.b64encode(b"%PDF").decode(),
            },
        },
    )
    assert action.status_code == 201
    action_body = action.json()
    assert action_body["attachment"]["object_path"].endswith(".pdf")
    action_id = action_body["action"]["id"]

    snapshot = client.get("/capa").json()
    assert len(snapshot["audits"]) == 1
    assert len(snapshot["capa_plans"]) == 1
    assert len([a for a in snapshot["actions"] if a["non_conformity_id"] == nc_id]) == 2
    assert len(snapshot["action_attachments"]) == 1
    assert snapshot["errors"] == {}

    integrity = client.get("/capa/integrity").json()
    assert integrity["healthy"] is True

    updated = client.patch(f"/actions/{action_id}", json={"status": "closed"})
    assert updated.status_code == 200
    assert updated.json()["action"]["status"] == "closed"

    assert client.post(f"/audits/{audit_body['audit']['id']}/repair").json()["capa_plan"]["id"] == plan_id
    repaired = client.post(f"/non-conformities/{nc_id}/repair").json()
    assert repaired["corrective_action"]["id"] == nc_body["corrective_action"]["id"]


def test_workflow_validation_and_failures(client):
    assert client.post("/audits", json={"title": "  "}).status_code == 400
    assert client.post("/audits", json={}).status_code == 400

    failed = client.post("/non-conformities", json={"capa_plan_id": "missing", "title": "NC"})
    assert failed.status_code == 422
    assert failed.json()["error"]["kind"] == "EntityCreationFailed"
    assert failed.json()["notice"]["level"] == "error"

    bad_attachment = client.post(
        "/actions",
        json={
            "non_conformity_id": "x",
            "action_type": "corrective",
            "description": "d",
            "attachment": {"filename": "a.txt", "content_base64": "***"},
        },
    )
    assert bad_attachment.status_code == 400


def test_update_and_repair_errors(client):
    missing = client.patch("/actions/missing", json={"status": "closed"})
    assert missing.status_code == 404
    assert missing.json()["error"]["kind"] == "EntityNotFound"

    assert client.patch("/actions/missing", json={"status": "done"}).status_code == 400
    assert client.patch("/actions/missing", json={"id": "other"}).status_code == 400
    assert client.post("/audits/missing/repair").status_code == 404
    assert client.post("/non-conformities/missing/repair").status_code == 404


def test_integrity_reports_audit_without_plan(tmp_path):
    settings = _settings(tmp_path)
    settings.storage.capa_plan_trigger = False
    ctx = build_app_context(settings)
    try:
        ctx.store.insert("audits", {"title": "huérfana"})
        report = TestClient(create_http_app(ctx)).get("/capa/integrity").json()
        assert report["healthy"] is False
        assert len(report["audits_without_plan"]) == 1
    finally:
        ctx.store.close()


def test_insights_analyze(context, client):
    insights = {
        "insights": [
            {
                "insight_type": "risk",
                "severity": "medium",
                "title": "Riesgo de almacén",
                "description": "Registros incompletos.",
            }
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        content = json.dumps(insights)
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    _use_gateway(context, handler)

    response = client.post("/insights/analyze", json={"company_id": "acme"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["insights"][0]["title"] == "Riesgo de almacén"
    assert body["insights"][0]["company_id"] == "acme"


def test_insights_analyze_errors(context, client):
    _use_gateway(context, lambda request: httpx.Response(429))
    assert client.post("/insights/analyze", json={}).status_code == 429

    _use_gateway(
        context,
        lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]}),
    )
    assert client.post("/insights/analyze", json={}).status_code == 502
    assert client.post("/insights/analyze", json={"incidents": "x"}).status_code == 400


def _json_completion(payload: dict) -> httpx.Response:
    content = json.dumps(payload, ensure_ascii=False)
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def test_audit_simulation_over_http(context, client):
    findings = {
        "summary": "Riesgo moderado.",
        "risk_score": 55,
        "findings": [
            {
                "severity": "major",
                "category": "validation",
                "finding_title": "Validación incompleta",
                "finding_description": "Falta la PQ del autoclave.",
                "recommendation": "Completar la PQ.",
            }
        ],
    }
    _use_gateway(context, lambda request: _json_completion(findings))

    created = client.post("/audit-simulations", json={"simulation_type": "ema", "company_id": "acme"})
    assert created.status_code == 201
    simulation_id = created.json()["simulation"]["id"]

    run = client.post(f"/audit-simulations/{simulation_id}/run", json={"documents": []})
    assert run.status_code == 200
    body = run.json()
    assert body["success"] is True
    assert body["findings_count"] == 1
    assert body["risk_score"] == 55
    assert body["simulation"]["status"] == "completed"
    assert body["simulation"]["major_findings"] == 1

    report = client.get(f"/audit-simulations/{simulation_id}").json()
    assert report["findings"][0]["finding_title"] == "Validación incompleta"

    again = client.post(f"/audit-simulations/{simulation_id}/run", json={})
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "SimulationStateError"


def test_audit_simulation_errors(context, client):
    assert client.post("/audit-simulations", json={"simulation_type": "pmda"}).status_code == 400
    assert client.post("/audit-simulations", json={}).status_code == 400
    assert client.get("/audit-simulations/missing").status_code == 404
    assert client.post("/audit-simulations/missing/run", json={}).status_code == 404

    _use_gateway(context, lambda request: httpx.Response(402))
    simulation_id = client.post("/audit-simulations", json={"simulation_type": "fda"}).json()[
        "simulation"
    ]["id"]
    bad_documents = client.post(
        f"/audit-simulations/{simulation_id}/run", json={"documents": "PNT-001"}
    )
    assert bad_documents.status_code == 400
    response = client.post(f"/audit-simulations/{simulation_id}/run", json={})
    assert response.status_code == 402
    assert response.json()["error"] == context.profile.errors.quota_exceeded
    assert client.get(f"/audit-simulations/{simulation_id}").json()["simulation"]["status"] == "failed"


def test_training_exam_over_http(context, client):
    questions = {
        "questions": [
            {
                "question_number": 1,
                "question_text": "¿Quién aprueba el PNT?",
                "options": [
                    {"id": "a", "text": "Producción", "isCorrect": False},
                    {"id": "b", "text": "Garantía de calidad", "isCorrect": True},
                ],
                "explanation": "GC aprueba los PNT.",
            }
        ]
    }
    _use_gateway(context, lambda request: _json_completion(questions))

    created = client.post("/training-sessions", json={"document_title": "PNT-001", "user_id": "u1"})
    assert created.status_code == 201
    session_id = created.json()["session"]["id"]

    exam = client.post(f"/training-sessions/{session_id}/exam", json={})
    assert exam.status_code == 200
    assert exam.json()["question_count"] == 1
    question_id = exam.json()["questions"][0]["id"]

    answer = client.post(
        f"/training-sessions/{session_id}/answers",
        json={"question_id": question_id, "option_id": "b"},
    )
    assert answer.status_code == 201
    assert answer.json()["answer"]["is_correct"] is True

    finished = client.post(f"/training-sessions/{session_id}/finish")
    assert finished.status_code == 200
    assert finished.json()["score"] == 100
    assert finished.json()["passed"] is True

    detail = client.get(f"/training-sessions/{session_id}").json()
    assert detail["session"]["status"] == "completed"
    assert detail["questions"][0]["options"][1]["is_correct"] is True


def test_training_exam_errors(context, client):
    assert client.post("/training-sessions", json={"document_title": " "}).status_code == 400
    assert client.get("/training-sessions/missing").status_code == 404
    assert client.post("/training-sessions/missing/exam", json={}).status_code == 404
    assert client.post("/training-sessions/missing/finish").status_code == 404

    session_id = client.post("/training-sessions", json={"document_title": "PNT-002"}).json()[
        "session"
    ]["id"]
    assert client.post(f"/training-sessions/{session_id}/finish").status_code == 409
    assert (
        client.post(f"/training-sessions/{session_id}/answers", json={"option_id": "a"}).status_code
        == 400
    )

    _use_gateway(context, lambda request: _json_completion({"questions": "none"}))
    response = client.post(f"/training-sessions/{session_id}/exam", json={})
    assert response.status_code == 502
    assert response.json()["error"] == "Invalid questions format"


def test_cors_is_enabled_for_allowed_origins(tmp_path):
    ctx = build_app_context(_settings(tmp_path, allowed_origins=("https://app.qualiq.es",)))
    try:
        client = TestClient(create_http_app(ctx))
        response = client.options(
            "/audits",
            headers={
                "Origin": "https://app.qualiq.es",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert response.headers["access-control-allow-origin"] == "https://app.qualiq.es"
    finally:
        ctx.store.close()
