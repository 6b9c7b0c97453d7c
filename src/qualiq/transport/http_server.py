"""Starlette HTTP server assembly for the chat proxy, CAPA workflow and AI tools."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any

from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import Response, StreamingResponse
from starlette.routing import Route

from qualiq.app import AppContext, get_app_context
from qualiq.capa.errors import (
    EntityCreationFailed,
    EntityNotFound,
    EntityUpdateFailed,
    WorkflowError,
)
from qualiq.capa.models import AttachmentUpload
from qualiq.capa.read_model import CapaSnapshot
from qualiq.capa.workflow import creation_failed_notice
from qualiq.gateway.client import GatewayConfigurationError, GatewayResponseError
from qualiq.simulation.simulator import SimulationStateError
from qualiq.streaming.errors import QuotaExceeded, RateLimited, TransportError
from qualiq.training.exam import TrainingStateError
from qualiq.utils.serialization import dumps

logger = logging.getLogger(__name__)

_AUDIT_FIELDS = ("title", "description", "audit_date", "auditor_id")
_NON_CONFORMITY_FIELDS = (
    "capa_plan_id",
    "title",
    "description",
    "severity",
    "root_cause",
    "status",
)
_ACTION_FIELDS = (
    "non_conformity_id",
    "action_type",
    "description",
    "responsible_id",
    "due_date",
    "status",
)
_GATEWAY_ERRORS = (TransportError, GatewayConfigurationError, GatewayResponseError)


class BadRequest(ValueError):
    pass


def _json(payload: Any, status_code: int = 200) -> Response:
    return Response(dumps(payload), status_code=status_code, media_type="application/json")


def _error(message: str, status_code: int) -> Response:
    return _json({"error": message}, status_code=status_code)


def _failure(error: WorkflowError, status_code: int) -> Response:
    return _json(
        {"error": error.to_dict(), "notice": creation_failed_notice(error)},
        status_code=status_code,
    )


async def _read_object(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise BadRequest("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise BadRequest("Request body must be a JSON object")
    return body


def _pick(body: dict[str, Any], names: tuple[str, ...]) -> dict[str, Any]:
    return {name: body[name] for name in names if name in body}


def _status_for_transport_error(error: TransportError) -> int:
    if isinstance(error, RateLimited):
        return 429
    if isinstance(error, QuotaExceeded):
        return 402
    return 500


def _optional_list(body: dict[str, Any], name: str) -> list[Any] | None:
    value = body.get(name)
    if value is not None and not isinstance(value, list):
        raise BadRequest(f"{name} must be a list")
    return value


def _optional_text(body: dict[str, Any], name: str) -> str | None:
    value = body.get(name)
    if value is not None and not isinstance(value, str):
        raise BadRequest(f"{name} must be a string")
    return value


def _decode_attachment(raw: Any, max_bytes: int) -> AttachmentUpload | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise BadRequest("attachment must be an object")
    filename = raw.get("filename")
    encoded = raw.get("content_base64")
    if not isinstance(filename, str) or not filename.strip():
        raise BadRequest("attachment.filename is required")
    if not isinstance(encoded, str):
        raise BadRequest("attachment.content_base64 is required")
    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BadRequest("attachment.content_base64 is not valid base64") from exc
    if len(content) > max_bytes:
        raise BadRequest(f"attachment exceeds {max_bytes} bytes")
    return AttachmentUpload(filename=filename.strip(), content=content)


def create_http_app(context: AppContext | None = None) -> Starlette:
    """Create the HTTP application."""
    ctx = context or get_app_context()
    settings = ctx.settings
    workflow = ctx.workflow
    max_attachment_bytes = settings.server.max_attachment_mb * 1024 * 1024

    middleware: list[Middleware] = []
    if settings.server.allowed_origins:
        from starlette.middleware.cors import CORSMiddleware

        middleware.append(
            Middleware(
                CORSMiddleware,
                allow_origins=list(settings.server.allowed_origins),
                allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
                allow_headers=["Authorization", "Content-Type", "Accept"],
            )
        )

    async def health_handler(request: Request) -> Response:
        return _json({"status": "ok"})

    async def chat_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            messages = body.get("messages")
            if not isinstance(messages, list) or not messages:
                raise BadRequest("messages must be a non-empty list")
            upstream = await ctx.gateway.open_chat_stream(
                messages, system_prompt=ctx.profile.chat_system_prompt
            )
        except ValueError as exc:
            return _error(str(exc), 400)
        except TransportError as exc:
            return _error(exc.message, _status_for_transport_error(exc))
        except GatewayConfigurationError as exc:
            logger.error("Chat proxy misconfigured: %s", exc)
            return _error(ctx.profile.errors.generic, 500)

        return StreamingResponse(
            upstream.aiter_bytes(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
            background=BackgroundTask(upstream.aclose),
        )

    async def snapshot_handler(request: Request) -> Response:
        snapshot = await asyncio.to_thread(CapaSnapshot.load, ctx.store)
        return _json(snapshot.to_dict())

    async def integrity_handler(request: Request) -> Response:
        snapshot = await asyncio.to_thread(CapaSnapshot.load, ctx.store)
        report = snapshot.integrity_report()
        return _json({**asdict(report), "healthy": report.healthy, "errors": snapshot.errors})

    async def create_audit_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            outcome = await asyncio.to_thread(
                workflow.create_audit, **_pick(body, _AUDIT_FIELDS)
            )
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except (ValueError, TypeError) as exc:
            return _error(str(exc), 400)
        return _json(
            {
                "audit": outcome.audit,
                "capa_plan": outcome.capa_plan,
                "complete": outcome.complete,
                "issues": [issue.to_dict() for issue in outcome.issues],
                "notice": outcome.notice(),
            },
            status_code=201,
        )

    async def create_non_conformity_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            outcome = await asyncio.to_thread(
                workflow.create_non_conformity, **_pick(body, _NON_CONFORMITY_FIELDS)
            )
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except (ValueError, TypeError) as exc:
            return _error(str(exc), 400)
        return _json(
            {
                "non_conformity": outcome.non_conformity,
                "corrective_action": outcome.corrective_action,
                "complete": outcome.complete,
                "issues": [issue.to_dict() for issue in outcome.issues],
                "notice": outcome.notice(),
            },
            status_code=201,
        )

    async def create_action_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            attachment = _decode_attachment(body.get("attachment"), max_attachment_bytes)
            outcome = await asyncio.to_thread(
                workflow.create_action, attachment=attachment, **_pick(body, _ACTION_FIELDS)
            )
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except (ValueError, TypeError) as exc:
            return _error(str(exc), 400)
        return _json(
            {
                "action": outcome.action,
                "attachment": outcome.attachment,
                "complete": outcome.complete,
                "issues": [issue.to_dict() for issue in outcome.issues],
                "notice": outcome.notice(),
            },
            status_code=201,
        )

    async def update_action_handler(request: Request) -> Response:
        action_id = request.path_params["action_id"]
        try:
            body = await _read_object(request)
            action = await asyncio.to_thread(workflow.update_action, action_id, **body)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except EntityUpdateFailed as exc:
            return _failure(exc, 422)
        except (ValueError, TypeError) as exc:
            return _error(str(exc), 400)
        return _json({"action": action})

    async def repair_audit_handler(request: Request) -> Response:
        audit_id = request.path_params["audit_id"]
        try:
            plan = await asyncio.to_thread(workflow.repair_missing_capa_plan, audit_id)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except WorkflowError as exc:
            return _failure(exc, 422)
        return _json({"capa_plan": plan})

    async def repair_non_conformity_handler(request: Request) -> Response:
        nc_id = request.path_params["nc_id"]
        try:
            action = await asyncio.to_thread(workflow.repair_missing_corrective_action, nc_id)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except WorkflowError as exc:
            return _failure(exc, 422)
        return _json({"corrective_action": action})

    def _gateway_failure(exc: Exception, task: str) -> Response:
        if isinstance(exc, TransportError):
            return _error(exc.message, _status_for_transport_error(exc))
        if isinstance(exc, GatewayConfigurationError):
            logger.error("%s misconfigured: %s", task, exc)
            return _error(ctx.profile.errors.generic, 500)
        logger.error("%s failed: %s", task, exc)
        return _error(str(exc), 502)

    async def analyze_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            incidents = _optional_list(body, "incidents")
            insights = await ctx.analyzer.analyze(incidents, company_id=body.get("company_id"))
        except ValueError as exc:
            return _error(str(exc), 400)
        except _GATEWAY_ERRORS as exc:
            return _gateway_failure(exc, "Pattern analysis")
        return _json({"success": True, "insights": insights})

    async def create_simulation_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            simulation = await asyncio.to_thread(
                ctx.simulator.create_simulation,
                _optional_text(body, "simulation_type") or "",
                company_id=body.get("company_id"),
                created_by=body.get("created_by"),
            )
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except ValueError as exc:
            return _error(str(exc), 400)
        return _json({"simulation": simulation}, status_code=201)

    async def simulation_handler(request: Request) -> Response:
        simulation_id = request.path_params["simulation_id"]
        try:
            report = await asyncio.to_thread(ctx.simulator.load_report, simulation_id)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        return _json({"simulation": report.simulation, "findings": report.findings})

    async def run_simulation_handler(request: Request) -> Response:
        simulation_id = request.path_params["simulation_id"]
        try:
            body = await _read_object(request)
            documents = _optional_list(body, "documents")
            report = await ctx.simulator.run(simulation_id, documents)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except SimulationStateError as exc:
            return _failure(exc, 409)
        except ValueError as exc:
            return _error(str(exc), 400)
        except _GATEWAY_ERRORS as exc:
            return _gateway_failure(exc, "Audit simulation")
        return _json(report.to_dict())

    async def create_training_handler(request: Request) -> Response:
        try:
            body = await _read_object(request)
            session = await asyncio.to_thread(
                ctx.training.create_session,
                _optional_text(body, "document_title") or "",
                document_id=body.get("document_id"),
                user_id=body.get("user_id"),
                company_id=body.get("company_id"),
            )
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except ValueError as exc:
            return _error(str(exc), 400)
        return _json({"session": session}, status_code=201)

    async def training_handler(request: Request) -> Response:
        session_id = request.path_params["session_id"]
        try:
            session = await asyncio.to_thread(ctx.training.get_session, session_id)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        questions = await asyncio.to_thread(ctx.training.list_questions, session_id)
        return _json({"session": session, "questions": questions})

    async def generate_exam_handler(request: Request) -> Response:
        session_id = request.path_params["session_id"]
        try:
            body = await _read_object(request)
            questions = await ctx.training.generate(
                session_id, _optional_text(body, "document_content")
            )
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except TrainingStateError as exc:
            return _failure(exc, 409)
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except ValueError as exc:
            return _error(str(exc), 400)
        except _GATEWAY_ERRORS as exc:
            return _gateway_failure(exc, "Training exam generation")
        return _json(
            {"success": True, "question_count": len(questions), "questions": questions}
        )

    async def answer_handler(request: Request) -> Response:
        session_id = request.path_params["session_id"]
        try:
            body = await _read_object(request)
            question_id = _optional_text(body, "question_id")
            option_id = _optional_text(body, "option_id")
            if not question_id or not option_id:
                raise BadRequest("question_id and option_id are required")
            answer = await asyncio.to_thread(
                ctx.training.answer, session_id, question_id, option_id
            )
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except TrainingStateError as exc:
            return _failure(exc, 409)
        except EntityCreationFailed as exc:
            return _failure(exc, 422)
        except ValueError as exc:
            return _error(str(exc), 400)
        return _json({"answer": answer}, status_code=201)

    async def finish_training_handler(request: Request) -> Response:
        session_id = request.path_params["session_id"]
        try:
            result = await asyncio.to_thread(ctx.training.finish, session_id)
        except EntityNotFound as exc:
            return _failure(exc, 404)
        except TrainingStateError as exc:
            return _failure(exc, 409)
        return _json(
            {
                "session": result.session,
                "correct": result.correct,
                "total": result.total,
                "score": result.score,
                "passed": result.passed,
            }
        )

    routes = [
        Route("/health", endpoint=health_handler, methods=["GET"]),
        Route("/chat", endpoint=chat_handler, methods=["POST"]),
        Route("/capa", endpoint=snapshot_handler, methods=["GET"]),
        Route("/capa/integrity", endpoint=integrity_handler, methods=["GET"]),
        Route("/audits", endpoint=create_audit_handler, methods=["POST"]),
        Route("/audits/{audit_id}/repair", endpoint=repair_audit_handler, methods=["POST"]),
        Route(
            "/non-conformities",
            endpoint=create_non_conformity_handler,
            methods=["POST"],
        ),
        Route(
            "/non-conformities/{nc_id}/repair",
            endpoint=repair_non_conformity_handler,
            methods=["POST"],
        ),
        Route("/actions", endpoint=create_action_handler, methods=["POST"]),
        Route("/actions/{action_id}", endpoint=update_action_handler, methods=["PATCH"]),
        Route("/insights/analyze", endpoint=analyze_handler, methods=["POST"]),
        Route("/audit-simulations", endpoint=create_simulation_handler, methods=["POST"]),
        Route(
            "/audit-simulations/{simulation_id}",
            endpoint=simulation_handler,
            methods=["GET"],
        ),
        Route(
            "/audit-simulations/{simulation_id}/run",
            endpoint=run_simulation_handler,
            methods=["POST"],
        ),
        Route("/training-sessions", endpoint=create_training_handler, methods=["POST"]),
        Route("/training-sessions/{session_id}", endpoint=training_handler, methods=["GET"]),
        Route(
            "/training-sessions/{session_id}/exam",
            endpoint=generate_exam_handler,
            methods=["POST"],
        ),
        Route(
            "/training-sessions/{session_id}/answers",
            endpoint=answer_handler,
            methods=["POST"],
        ),
        Route(
            "/training-sessions/{session_id}/finish",
            endpoint=finish_training_handler,
            methods=["POST"],
        ),
    ]

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Starting QualiQ HTTP server...")
        try:
            yield
        finally:
            logger.info("Stopping QualiQ HTTP server...")
            await ctx.gateway.aclose()

    return Starlette(routes=routes, middleware=middleware, lifespan=lifespan)
