"""Tests for prompt management."""

from __future__ import annotations

from pathlib import Path

import pytest

from pdfscribe.config import PromptsConfig
from pdfscribe.prompts import PromptManager


class TestPromptManager:
    """Tests for PromptManager."""

    @pytest.mark.parametrize("name", PromptManager.PROMPT_NAMES)
    def test_builtin_prompts_load(self, name):
        """Test every built-in prompt exists and is non-empty."""
        assert PromptManager().get_prompt(name).strip()

    def test_unknown_prompt(self):
        """Test unknown prompt names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown prompt"):
            PromptManager().get_prompt("nonexistent")

    def test_refusal_user_substitution(self):
        """Test the candidate text is substituted into the user prompt."""
        prompt = PromptManager().get_prompt("refusal_user", text="I'm sorry")
        assert 'Response: "I\'m sorry"' in prompt
        assert "{text}" not in prompt

    def test_page_scan_mentions_page(self):
        """Test the page prompt is distinct from the general image prompt."""
        manager = PromptManager()
        assert manager.get_prompt("page_scan") != manager.get_prompt("image_general")

    def test_config_path_override(self, tmp_path: Path):
        """Test a configured file path takes priority."""
        custom = tmp_path / "mine.md"
        custom.write_text("Describe {what}.\n", encoding="utf-8")
        config = PromptsConfig(dir=str(tmp_path / "unused"), image_general=str(custom))

        prompt = PromptManager(config).get_prompt("image_general", what="the chart")

        assert prompt == "Describe the chart."

    def test_custom_dir_override(self, tmp_path: Path):
        """Test prompts in the custom directory replace built-ins."""
        (tmp_path / "page_scan.md").write_text("Custom page prompt", encoding="utf-8")

        prompt = PromptManager(PromptsConfig(dir=str(tmp_path))).get_prompt("page_scan")

        assert prompt == "Custom page prompt"

    def test_templates_cached_per_manager(self, tmp_path: Path):
        """Test a manager reads each template once; a new manager rereads it."""
        path = tmp_path / "image_general.md"
        path.write_text("first", encoding="utf-8")
        config = PromptsConfig(dir=str(tmp_path))
        manager = PromptManager(config)

        assert manager.get_prompt("image_general") == "first"
        path.write_text("second", encoding="utf-8")
        assert manager.get_prompt("image_general") == "first"
        assert PromptManager(config).get_prompt("image_general") == "second"

    def test_custom_refusal_user_requires_text(self, tmp_path: Path):
        """Test a classifier prompt without the {text} slot is rejected."""
        (tmp_path / "refusal_user.md").write_text("Is this a refusal?", encoding="utf-8")
        manager = PromptManager(PromptsConfig(dir=str(tmp_path)))

        with pytest.raises(ValueError, match=r"must contain \{text\}"):
            manager.get_prompt("refusal_user", text="No.")

    def test_literal_braces_preserved(self, tmp_path: Path):
        """Test braces not matching a variable survive rendering."""
        (tmp_path / "image_general.md").write_text('Return {"a": 1} for {x}', encoding="utf-8")
        manager = PromptManager(PromptsConfig(dir=str(tmp_path)))

        assert manager.get_prompt("image_general", x="y") == 'Return {"a": 1} for y'
