"""AI-generated comprehension exams for controlled procedures (SOPs)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from qualiq.assistant.models import AssistantProfile
from qualiq.capa.errors import EntityCreationFailed, EntityNotFound, WorkflowError
from qualiq.gateway.client import AIGatewayClient, GatewayResponseError
from qualiq.persistence.base import TableStore
from qualiq.training.models import (
    PASSING_SCORE,
    QUESTIONS_PER_EXAM,
    ExamOption,
    ExamResult,
    TrainingAnswer,
    TrainingQuestion,
    TrainingSession,
    TrainingStatus,
)
from qualiq.utils.timestamps import iso_timestamp

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_CONTENT = (
    "Procedimiento normalizado de trabajo para gestión de calidad en el sector "
    "farmacéutico. Incluye directrices sobre buenas prácticas de fabricación, control "
    "de documentación, gestión de no conformidades y trazabilidad."
)

_RESPONSE_SHAPE = """{
  "questions": [
    {
      "question_number": 1,
      "question_text": "¿Cuál es el objetivo principal del procedimiento?",
      "options": [
        {"id": "a", "text": "Opción A", "isCorrect": false},
        {"id": "b", "text": "Opción B", "isCorrect": true},
        {"id": "c", "text": "Opción C", "isCorrect": false},
        {"id": "d", "text": "Opción D", "isCorrect": false}
      ],
      "explanation": "La respuesta B es correcta porque..."
    }
  ]
}"""

_GENERATABLE = frozenset({TrainingStatus.PENDING.value, TrainingStatus.FAILED.value})


class TrainingStateError(WorkflowError):
    """The session is not in a state that allows the requested step."""

    kind = "TrainingStateError"


def build_exam_prompt(document_title: str, document_content: str | None = None) -> str:
    return (
        f"Genera un examen de {QUESTIONS_PER_EXAM} preguntas para el siguiente procedimiento:\n\n"
        f"TÍTULO: {document_title}\n\n"
        f"CONTENIDO:\n{(document_content or '').strip() or DEFAULT_DOCUMENT_CONTENT}\n\n"
        f"Responde en formato JSON con esta estructura exacta:\n{_RESPONSE_SHAPE}"
    )


def score_percent(correct: int, total: int) -> int:
    """Percentage of correct answers, halves rounded up."""
    if total <= 0:
        return 0
    return int(correct * 100 / total + 0.5)


def _parse_question(raw: Any, position: int) -> dict[str, Any] | None:
    if not isinstance(raw, dict):
        return None
    text = str(raw.get("question_text") or "").strip()
    options = raw.get("options")
    if not text or not isinstance(options, list):
        return None
    parsed = [
        ExamOption.from_json(option)
        for option in options
        if isinstance(option, dict) and option.get("id") not in (None, "")
    ]
    if len(parsed) < 2 or sum(option.is_correct for option in parsed) != 1:
        return None
    if len({option.id for option in parsed}) != len(parsed):
        return None
    number = raw.get("question_number")
    if isinstance(number, bool) or not isinstance(number, int):
        number = position
    explanation = raw.get("explanation")
    return {
        "question_number": number,
        "question_text": text,
        "options": [option.to_json() for option in parsed],
        "explanation": str(explanation) if explanation else None,
    }


class TrainingExamService:
    """Creates training sessions, generates their exam and grades the answers."""

    def __init__(
        self,
        gateway: AIGatewayClient,
        store: TableStore,
        profile: AssistantProfile,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._profile = profile

    def create_session(
        self,
        document_title: str,
        *,
        document_id: str | None = None,
        user_id: str | None = None,
        company_id: str | None = None,
    ) -> TrainingSession:
        title = (document_title or "").strip()
        if not title:
            raise ValueError("document_title is required")
        result = self._store.insert(
            "training_sessions",
            {
                "document_title": title,
                "document_id": document_id,
                "user_id": user_id,
                "company_id": company_id,
                "status": TrainingStatus.PENDING.value,
            },
        )
        if result.error is not None:
            raise EntityCreationFailed(
                "training_session", "Error creating training session", cause=result.error
            )
        return TrainingSession.from_row(result.data)

    def get_session(self, session_id: str) -> TrainingSession:
        result = self._store.select("training_sessions", filters={"id": session_id}, limit=1)
        if result.error is not None or not result.data:
            raise EntityNotFound(f"Training session {session_id} not found", cause=result.error)
        return TrainingSession.from_row(result.data[0])

    def list_questions(self, session_id: str) -> list[TrainingQuestion]:
        result = self._store.select(
            "training_questions", filters={"session_id": session_id}, order_by="question_number"
        )
        if result.error is not None:
            logger.error(
                "Error loading questions for session %s: %s", session_id, result.error.message
            )
            return []
        return [TrainingQuestion.from_row(row) for row in result.data]

    async def generate(
        self, session_id: str, document_content: str | None = None
    ) -> list[TrainingQuestion]:
        session = await asyncio.to_thread(self.get_session, session_id)
        if session.status not in _GENERATABLE:
            raise TrainingStateError(
                f"Training session {session_id} is already {session.status}"
            )
        await asyncio.to_thread(
            self._set_status, session_id, TrainingStatus.IN_PROGRESS, started_at=iso_timestamp()
        )
        logger.info("Generating training exam for session %s", session_id)

        try:
            payload = await self._gateway.complete_json(
                self._profile.training_exam_system_prompt,
                build_exam_prompt(session.document_title, document_content),
            )
            raw = payload.get("questions")
            if not isinstance(raw, list):
                raise GatewayResponseError("Invalid questions format")
            return await asyncio.to_thread(self.store_questions, session_id, raw)
        except Exception:
            await asyncio.to_thread(self._set_status, session_id, TrainingStatus.FAILED)
            raise

    def store_questions(self, session_id: str, raw: Sequence[Any]) -> list[TrainingQuestion]:
        rows = []
        for position, item in enumerate(raw, start=1):
            parsed = _parse_question(item, position)
            if parsed is None:
                logger.warning("Skipping malformed exam question #%d", position)
                continue
            rows.append(parsed)
        if not rows:
            raise GatewayResponseError("No valid questions in AI response")

        stored: list[TrainingQuestion] = []
        for row in rows:
            result = self._store.insert("training_questions", {"session_id": session_id, **row})
            if result.error is not None:
                raise EntityCreationFailed(
                    "training_question", "Error saving exam questions", cause=result.error
                )
            stored.append(TrainingQuestion.from_row(result.data))
        logger.info("Stored %d exam question(s) for session %s", len(stored), session_id)
        return stored

    def answer(self, session_id: str, question_id: str, option_id: str) -> TrainingAnswer:
        session = self.get_session(session_id)
        if session.status != TrainingStatus.IN_PROGRESS.value:
            raise TrainingStateError(f"Training session {session_id} is not in progress")
        question = next(
            (q for q in self.list_questions(session_id) if q.id == question_id), None
        )
        if question is None:
            raise EntityNotFound(f"Question {question_id} not found in session {session_id}")
        option = question.option(option_id)
        if option is None:
            raise ValueError(f"option {option_id!r} is not offered by question {question_id}")

        result = self._store.insert(
            "training_answers",
            {
                "session_id": session_id,
                "question_id": question_id,
                "selected_option_id": option_id,
                "is_correct": option.is_correct,
            },
        )
        if result.error is not None:
            raise EntityCreationFailed(
                "training_answer", "Error saving answer", cause=result.error
            )
        return TrainingAnswer.from_row(result.data)

    def finish(self, session_id: str) -> ExamResult:
        """Grade the latest answer to each question and close the session."""
        session = self.get_session(session_id)
        if session.status != TrainingStatus.IN_PROGRESS.value:
            raise TrainingStateError(f"Training session {session_id} is not in progress")
        questions = self.list_questions(session_id)
        if not questions:
            raise TrainingStateError(f"Training session {session_id} has no exam questions")

        answers = self._store.select(
            "training_answers", filters={"session_id": session_id}, order_by="created_at"
        )
        if answers.error is not None:
            raise EntityNotFound(
                f"Answers for training session {session_id} could not be read",
                cause=answers.error,
            )
        latest = {
            row["question_id"]: TrainingAnswer.from_row(row).is_correct for row in answers.data
        }
        correct = sum(1 for question in questions if latest.get(question.id))
        score = score_percent(correct, len(questions))

        result = self._set_status(
            session_id,
            TrainingStatus.COMPLETED,
            completed_at=iso_timestamp(),
            score=score,
            passed=score >= PASSING_SCORE,
        )
        if result.error is not None or not result.data:
            raise EntityNotFound(f"Training session {session_id} not found", cause=result.error)
        logger.info("Training session %s graded %d%%", session_id, score)
        return ExamResult(TrainingSession.from_row(result.data[0]), correct, len(questions))

    def _set_status(self, session_id: str, status: TrainingStatus, **fields: Any):
        result = self._store.update(
            "training_sessions", {"status": status.value, **fields}, {"id": session_id}
        )
        if result.error is not None:
            logger.error(
                "Error marking training session %s %s: %s",
                session_id,
                status.value,
                result.error.message,
            )
        return result
