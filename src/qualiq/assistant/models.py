"""Assistant profile models."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from qualiq.streaming.errors import (
    CONNECTIVITY_MESSAGE,
    INTERRUPTED_MESSAGE,
    QUOTA_EXCEEDED_MESSAGE,
    RATE_LIMITED_MESSAGE,
)

DEFAULT_MODEL = "google/gemini-3-flash-preview"
DEFAULT_INSPECTOR = "aemps"


class ErrorCopy(BaseModel):
    rate_limited: str = Field(default=RATE_LIMITED_MESSAGE)
    quota_exceeded: str = Field(default=QUOTA_EXCEEDED_MESSAGE)
    generic: str = Field(default=CONNECTIVITY_MESSAGE)
    interrupted: str = Field(default=INTERRUPTED_MESSAGE)

    def as_mapping(self) -> dict[str, str]:
        return self.model_dump()


class AssistantProfile(BaseModel):
    version: int = Field(default=1)
    model: str = Field(default=DEFAULT_MODEL)
    chat_system_prompt: str = Field(default="")
    pattern_analysis_system_prompt: str = Field(default="")
    training_exam_system_prompt: str = Field(default="")
    inspector_prompts: dict[str, str] = Field(default_factory=dict)
    welcome_message: str | None = Field(default=None)
    errors: ErrorCopy = Field(default_factory=ErrorCopy)

    @field_validator(
        "chat_system_prompt",
        "pattern_analysis_system_prompt",
        "training_exam_system_prompt",
        mode="before",
    )
    @classmethod
    def _none_to_empty(cls, v: object) -> object:
        if v is None:
            return ""
        return v

    @field_validator("inspector_prompts", mode="before")
    @classmethod
    def _normalize_agencies(cls, v: object) -> object:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(key).strip().lower(): value for key, value in v.items()}
        return v

    @field_validator("errors", mode="before")
    @classmethod
    def _none_to_defaults(cls, v: object) -> object:
        if v is None:
            return {}
        return v

    def inspector_prompt(self, simulation_type: str | None) -> str:
        """Prompt for the agency; unknown agencies get the AEMPS inspector."""
        key = (simulation_type or "").strip().lower()
        if key in self.inspector_prompts:
            return self.inspector_prompts[key]
        return self.inspector_prompts.get(DEFAULT_INSPECTOR, "")

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "AssistantProfile":
        return cls.model_validate(data)
