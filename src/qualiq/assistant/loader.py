"""Assistant profile loader for assistant.yaml."""

from __future__ import annotations

from pathlib import Path

import yaml

from qualiq.assistant.models import AssistantProfile


def load_profile(path: str) -> AssistantProfile:
    profile_path = Path(path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Assistant profile not found: {profile_path}")
    with profile_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Assistant profile must be a mapping: {profile_path}")
    return AssistantProfile.from_yaml(data)
