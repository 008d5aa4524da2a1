"""Configuration management for pdfscribe."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from pdfscribe.constants import (
    CONFIG_FILENAME,
    DEFAULT_IMAGE_PREFIX,
    DEFAULT_IMAGE_SUFFIX,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_RETENTION,
    DEFAULT_LOG_ROTATION,
    DEFAULT_MAX_CONCURRENT_REQUESTS,
    DEFAULT_MAX_REFUSAL_RETRIES,
    DEFAULT_MAX_TOKENS,
    DEFAULT_MODEL,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_PAGE_HEADING_FORMAT,
    DEFAULT_PAGE_SCAN_PREFIX,
    DEFAULT_PAGE_SCAN_SUFFIX,
    DEFAULT_PAGE_SEPARATOR,
    DEFAULT_PROMPTS_DIR,
    DEFAULT_REFUSAL_MAX_RETRIES,
    DEFAULT_REFUSAL_MAX_TOKENS,
    DEFAULT_REFUSAL_MODEL,
    DEFAULT_REFUSAL_TEMPERATURE,
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_MAX_DELAY,
    DEFAULT_SIMILARITY_THRESHOLD,
    DEFAULT_TEMPERATURE,
    MAX_CONCURRENT_REQUESTS_LIMIT,
    MAX_REFUSAL_RETRIES_LIMIT,
)
from pdfscribe.exceptions import ConfigError


class EnvVarNotFoundError(ValueError):
    """Raised when an environment variable referenced by env: syntax is not found."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name
        super().__init__(f"Environment variable not found: {var_name}")


def resolve_env_value(value: str, strict: bool = True) -> str | None:
    """Resolve env:VAR_NAME syntax to the environment variable value.

    Args:
        value: The value to resolve. If it starts with "env:", the rest is
               looked up in the environment.
        strict: If True, raises EnvVarNotFoundError when the variable is unset.
                If False, returns None instead.

    Returns:
        The resolved value, or None if the variable is unset and strict=False.

    Raises:
        EnvVarNotFoundError: If strict=True and the variable is unset.
    """
    if isinstance(value, str) and value.startswith("env:"):
        env_var = value[4:]
        env_value = os.environ.get(env_var)
        if env_value is None:
            if strict:
                raise EnvVarNotFoundError(env_var)
            return None
        return env_value
    return value


class ReplacementConfig(BaseModel):
    """Templates used when substituting analysis text into placeholders.

    Every template may contain ``{pageNumber}`` and literal ``\\n`` escape
    sequences, both expanded at replacement time.
    """

    include_page_headings: bool = True
    page_heading_format: str = DEFAULT_PAGE_HEADING_FORMAT
    page_scan_prefix: str = DEFAULT_PAGE_SCAN_PREFIX
    page_scan_suffix: str = DEFAULT_PAGE_SCAN_SUFFIX
    image_prefix: str = DEFAULT_IMAGE_PREFIX
    image_suffix: str = DEFAULT_IMAGE_SUFFIX
    page_separator: str = DEFAULT_PAGE_SEPARATOR


class RefusalConfig(BaseModel):
    """Refusal classifier settings."""

    enabled: bool = True
    model: str = DEFAULT_REFUSAL_MODEL
    temperature: float = Field(default=DEFAULT_REFUSAL_TEMPERATURE, ge=0, le=1)
    max_tokens: int = Field(default=DEFAULT_REFUSAL_MAX_TOKENS, ge=1)
    max_retries: int = Field(default=DEFAULT_REFUSAL_MAX_RETRIES, ge=0)


class PipelineConfig(BaseModel):
    """Settings threaded through every pipeline stage."""

    model: str = DEFAULT_MODEL
    api_key: str | None = None  # Supports env:VAR_NAME
    api_base: str | None = None
    timeout: float | None = None  # Per vision call, unset means no limit
    # 0 means a single window holding every image
    max_concurrent_requests: int = Field(
        default=DEFAULT_MAX_CONCURRENT_REQUESTS,
        ge=0,
        le=MAX_CONCURRENT_REQUESTS_LIMIT,
    )
    max_refusal_retries: int = Field(
        default=DEFAULT_MAX_REFUSAL_RETRIES, ge=0, le=MAX_REFUSAL_RETRIES_LIMIT
    )
    retry_count: int = Field(default=DEFAULT_RETRY_COUNT, ge=0)
    retry_base_delay: float = Field(default=DEFAULT_RETRY_BASE_DELAY, ge=0)
    retry_max_delay: float = Field(default=DEFAULT_RETRY_MAX_DELAY, ge=0)
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0, le=1)
    max_tokens: int = Field(default=DEFAULT_MAX_TOKENS, ge=1)
    scan_all_pages: bool = False
    analysis_type: Literal["general", "page_description"] = "general"
    similarity_threshold: float = Field(
        default=DEFAULT_SIMILARITY_THRESHOLD, gt=0, le=1
    )
    refusal: RefusalConfig = Field(default_factory=RefusalConfig)
    replacement: ReplacementConfig = Field(default_factory=ReplacementConfig)

    def get_resolved_api_key(self, strict: bool = True) -> str | None:
        """Get the API key with env: syntax resolved."""
        if self.api_key:
            return resolve_env_value(self.api_key, strict=strict)
        return None


class OutputConfig(BaseModel):
    """Output configuration."""

    dir: str = DEFAULT_OUTPUT_DIR
    json_export: bool = False


class PromptsConfig(BaseModel):
    """Prompt overrides.

    Each field is a path to a template file; when unset the prompt is looked
    up in ``dir`` and then among the built-in templates.
    """

    dir: str = DEFAULT_PROMPTS_DIR
    image_general: str | None = None
    page_scan: str | None = None
    refusal_system: str | None = None
    refusal_user: str | None = None


class LogConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = DEFAULT_LOG_LEVEL
    dir: str | None = DEFAULT_LOG_DIR
    rotation: str = DEFAULT_LOG_ROTATION
    retention: str = DEFAULT_LOG_RETENTION


class PdfscribeConfig(BaseModel):
    """Main configuration model."""

    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    prompts: PromptsConfig = Field(default_factory=PromptsConfig)
    log: LogConfig = Field(default_factory=LogConfig)


class ConfigManager:
    """Configuration manager for loading and merging configs."""

    CONFIG_FILENAME = CONFIG_FILENAME
    DEFAULT_USER_CONFIG_DIR = Path.home() / ".pdfscribe"

    def __init__(self) -> None:
        self._config: PdfscribeConfig | None = None
        self._config_path: Path | None = None

    @property
    def config(self) -> PdfscribeConfig:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            self._config = self.load()
        return self._config

    @property
    def config_path(self) -> Path | None:
        """Get the path of the loaded configuration file."""
        return self._config_path

    def load(
        self,
        config_path: Path | str | None = None,
        env_override: bool = True,
    ) -> PdfscribeConfig:
        """
        Load configuration from file with fallback chain.

        Priority (highest to lowest):
        1. Explicit config_path parameter
        2. PDFSCRIBE_CONFIG environment variable
        3. ./pdfscribe.json (current directory)
        4. ~/.pdfscribe/config.json (user directory)
        5. Default values

        Raises:
            ConfigError: If the file is not valid JSON or fails validation.
        """
        config_data: dict[str, Any] = {}

        resolved_path = self._resolve_config_path(config_path, env_override)

        if resolved_path and resolved_path.exists():
            config_data = self._load_json(resolved_path)
            self._config_path = resolved_path
        elif config_path:
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            self._config = PdfscribeConfig.model_validate(config_data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
        return self._config

    def _resolve_config_path(
        self,
        config_path: Path | str | None,
        env_override: bool,
    ) -> Path | None:
        """Resolve configuration file path based on priority."""
        # 1. Explicit path
        if config_path:
            return Path(config_path)

        # 2. Environment variable
        if env_override:
            env_path = os.environ.get("PDFSCRIBE_CONFIG")
            if env_path:
                return Path(env_path)

        # 3. Current directory
        cwd_config = Path.cwd() / self.CONFIG_FILENAME
        if cwd_config.exists():
            return cwd_config

        # 4. User directory
        user_config = self.DEFAULT_USER_CONFIG_DIR / "config.json"
        if user_config.exists():
            return user_config

        return None

    def _load_json(self, path: Path) -> dict[str, Any]:
        """Load JSON configuration file."""
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by dot-separated key path.

        Example: config_manager.get("pipeline.model")
        """
        parts = key.split(".")
        value: Any = self.config

        for part in parts:
            if isinstance(value, BaseModel):
                value = getattr(value, part, None)
            elif isinstance(value, dict):
                value = value.get(part)
            else:
                return default

            if value is None:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value by dot-separated key path.

        Example: config_manager.set("pipeline.scan_all_pages", True)
        """
        parts = key.split(".")
        parent: Any = self.config
        for part in parts[:-1]:
            if isinstance(parent, BaseModel):
                parent = getattr(parent, part)
            elif isinstance(parent, dict):
                parent = parent[part]

        final_key = parts[-1]
        if isinstance(parent, BaseModel):
            if final_key not in type(parent).model_fields:
                raise ConfigError(f"Unknown config key: {key}", key=key)
            setattr(parent, final_key, value)
        elif isinstance(parent, dict):
            parent[final_key] = value

    def merge_cli_args(self, **kwargs: Any) -> None:
        """Merge CLI arguments into configuration.

        Keys are dotted config paths; None values are ignored so unset CLI
        options keep the file or default value.
        """
        for key, value in kwargs.items():
            if value is not None:
                self.set(key, value)

        # Re-run field constraints on the merged values
        try:
            self._config = PdfscribeConfig.model_validate(
                self.config.model_dump()
            )
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e
