"""Prompt templates for the vision and refusal-classifier calls.

Each prompt is a Markdown file named after the prompt. A template is looked
up in the file configured for it, then in the custom prompts directory, then
among the built-ins shipped next to this module.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from pdfscribe.config import PromptsConfig


BUILTIN_PROMPTS_DIR = Path(__file__).parent

# Variables a template must reference to be usable
REQUIRED_VARIABLES: dict[str, tuple[str, ...]] = {
    "refusal_user": ("text",),
}


class PromptManager:
    """Load, validate and render prompt templates."""

    PROMPT_NAMES = (
        "image_general",
        "page_scan",
        "refusal_system",
        "refusal_user",
    )

    def __init__(self, config: PromptsConfig | None = None) -> None:
        self.config = config
        self._templates: dict[str, str] = {}

    def get_prompt(self, name: str, **variables: str) -> str:
        """Render prompt ``name``, substituting ``{variable}`` tokens.

        Raises:
            ValueError: If the name is unknown or the template is missing a
                required variable
        """
        if name not in self.PROMPT_NAMES:
            raise ValueError(
                f"Unknown prompt: {name}. Valid names: {', '.join(self.PROMPT_NAMES)}"
            )
        template = self._templates.get(name)
        if template is None:
            template = self._templates[name] = self._load(name)

        # Plain token replacement so JSON braces in a template survive
        for key, value in variables.items():
            template = template.replace(f"{{{key}}}", str(value))
        return template

    def _candidates(self, name: str) -> list[Path]:
        paths = []
        if self.config:
            configured = getattr(self.config, name, None)
            if configured:
                paths.append(Path(configured).expanduser())
            paths.append(Path(self.config.dir).expanduser() / f"{name}.md")
        paths.append(BUILTIN_PROMPTS_DIR / f"{name}.md")
        return paths

    def _load(self, name: str) -> str:
        path = next((p for p in self._candidates(name) if p.exists()), None)
        if path is None:
            raise FileNotFoundError(f"Built-in prompt not found: {name}")

        template = path.read_text(encoding="utf-8").strip()
        missing = [
            var for var in REQUIRED_VARIABLES.get(name, ()) if f"{{{var}}}" not in template
        ]
        if missing:
            raise ValueError(
                f"Prompt {name} ({path}) must contain "
                + ", ".join(f"{{{var}}}" for var in missing)
            )
        if path.parent != BUILTIN_PROMPTS_DIR:
            logger.debug(f"[Prompts] Using custom {name} prompt: {path}")
        return template
