"""AI assistant profile (model, system prompts and user-facing error copy)."""

from qualiq.assistant.loader import load_profile
from qualiq.assistant.models import AssistantProfile, ErrorCopy

__all__ = ["AssistantProfile", "ErrorCopy", "load_profile"]
