"""SOP comprehension exams for training sessions."""

from qualiq.training.exam import (
    DEFAULT_DOCUMENT_CONTENT,
    TrainingExamService,
    TrainingStateError,
    build_exam_prompt,
    score_percent,
)
from qualiq.training.models import (
    PASSING_SCORE,
    ExamOption,
    ExamResult,
    TrainingAnswer,
    TrainingQuestion,
    TrainingSession,
    TrainingStatus,
)

__all__ = [
    "DEFAULT_DOCUMENT_CONTENT",
    "PASSING_SCORE",
    "ExamOption",
    "ExamResult",
    "TrainingAnswer",
    "TrainingExamService",
    "TrainingQuestion",
    "TrainingSession",
    "TrainingStateError",
    "TrainingStatus",
    "build_exam_prompt",
    "score_percent",
]
