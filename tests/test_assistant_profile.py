from __future__ import annotations

from pathlib import Path

import pytest

from qualiq.assistant.loader import load_profile
from qualiq.assistant.models import DEFAULT_MODEL, AssistantProfile
from qualiq.streaming.errors import RATE_LIMITED_MESSAGE

REPO_PROFILE = Path(__file__).resolve().parents[1] / "assistant.yaml"


def test_bundled_profile_loads() -> None:
    profile = load_profile(str(REPO_PROFILE))

    assert profile.model == DEFAULT_MODEL
    assert "QualiQ" in profile.chat_system_prompt
    assert profile.pattern_analysis_system_prompt
    assert profile.errors.rate_limited
    assert set(profile.errors.as_mapping()) == {
        "rate_limited",
        "quota_exceeded",
        "generic",
        "interrupted",
    }


def test_missing_sections_fall_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "assistant.yaml"
    path.write_text("version: 2\nchat_system_prompt:\nerrors:\n", encoding="utf-8")

    profile = load_profile(str(path))

    assert profile.version == 2
    assert profile.chat_system_prompt == ""
    assert profile.errors.rate_limited == RATE_LIMITED_MESSAGE


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_profile(str(tmp_path / "absent.yaml"))


def test_non_mapping_document_is_rejected(tmp_path) -> None:
    path = tmp_path / "assistant.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError, match="must be a mapping"):
        load_profile(str(path))


def test_empty_document_uses_defaults(tmp_path) -> None:
    path = tmp_path / "assistant.yaml"
    path.write_text("", encoding="utf-8")
    assert load_profile(str(path)) == AssistantProfile()


def test_bundled_profile_has_every_inspector() -> None:
    profile = load_profile(str(REPO_PROFILE))

    assert set(profile.inspector_prompts) == {"fda", "ema", "aemps", "aesan"}
    assert "FDA" in profile.inspector_prompt("fda")
    assert profile.training_exam_system_prompt


def test_inspector_keys_are_normalized_and_unknown_agencies_use_aemps(tmp_path) -> None:
    path = tmp_path / "assistant.yaml"
    path.write_text(
        "inspector_prompts:\n  FDA: inspector fda\n  AEMPS: inspector aemps\n",
        encoding="utf-8",
    )

    profile = load_profile(str(path))

    assert profile.inspector_prompt(" Fda ") == "inspector fda"
    assert profile.inspector_prompt("pmda") == "inspector aemps"
    assert profile.inspector_prompt(None) == "inspector aemps"
    assert AssistantProfile().inspector_prompt("fda") == ""
