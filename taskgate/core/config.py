"""Configuration management using Pydantic Settings.

Two layers:

- ``Settings``: process-level knobs read from the environment / ``.env``.
- ``ProjectConfig``: per-repository commands, boundaries and cost policy,
  loaded from ``.taskgate/config.yaml``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskgate.core.errors import ConfigNotFoundError, ConfigParseError, ConfigValidationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
    )

    taskgate_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    taskgate_debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    taskgate_log_dir: str = Field(
        default="logs",
        description="Directory for rotated log files",
    )
    taskgate_config_path: str = Field(
        default=".taskgate/config.yaml",
        description="Project configuration file",
    )
    taskgate_max_parallel_tasks: int = Field(
        default=1,
        ge=1,
        le=20,
        description="Maximum wave members dispatched concurrently",
    )
    taskgate_command_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for build/typecheck commands in seconds",
    )
    taskgate_agent_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for one agent run in seconds",
    )
    taskgate_claude_path: str = Field(
        default="claude",
        description="Path to the claude CLI",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings instance loaded from environment.

    Example:
        >>> settings = get_settings()
        >>> settings.taskgate_max_parallel_tasks
        1
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()


# =============================================================================
# PROJECT CONFIG
# =============================================================================


class ProjectSection(BaseModel):
    """Project identity."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, description="Project name")
    language: str = Field(default="typescript", description="Primary language")
    runtime: str | None = Field(default=None, description="Runtime (node, bun, python...)")
    framework: str | None = Field(default=None, description="Framework if any")


class CommandsSection(BaseModel):
    """Commands run inside a task worktree."""

    model_config = ConfigDict(extra="ignore")

    build: str = Field(..., description="Build command")
    typecheck: str | None = Field(
        default=None,
        description="Type-check command; null skips the typecheck step",
    )


class BoundariesSection(BaseModel):
    """File boundary rules applied to every task's diff."""

    model_config = ConfigDict(extra="ignore")

    never_touch: list[str] = Field(
        default_factory=list,
        description="Patterns agents must never modify",
    )
    require_review: list[str] = Field(
        default_factory=list,
        description="Patterns that route the PR to human review",
    )


class CostConfig(BaseModel):
    """Cost formulas and budget caps."""

    model_config = ConfigDict(extra="ignore")

    model_preference: str = Field(default="sonnet", description="Model passed to the agent CLI")
    cost_multiplier: float = Field(default=3, gt=0)
    base_iterations: int = Field(default=5, ge=0)
    iteration_multiplier: float = Field(default=3, ge=0)
    revision_budget_percent: float = Field(default=50, ge=0, le=100)
    fallback_cost_per_minute: float = Field(default=0.5, ge=0)
    phase_budget_cap: float | None = Field(default=None, ge=0)
    phase_budget_overflow: float = Field(
        default=0.1,
        ge=0,
        description="Fraction of the phase cap allowed as overflow",
    )
    session_budget_cap: float | None = Field(default=None, ge=0)
    budget_warning_threshold: float = Field(
        default=0.75,
        gt=0,
        le=1,
        description="Fraction of a cap at which a warning is logged",
    )


class ProjectConfig(BaseModel):
    """Contents of ``.taskgate/config.yaml``.

    Example:
        >>> config = ProjectConfig(
        ...     project={"name": "shop"},
        ...     commands={"build": "bun run build", "typecheck": "bun run typecheck"},
        ...     boundaries={"never_touch": ["*.lock"]},
        ... )
        >>> config.cost.cost_multiplier
        3.0
    """

    model_config = ConfigDict(extra="ignore")

    project: ProjectSection
    commands: CommandsSection
    rules: list[str] = Field(default_factory=list)
    boundaries: BoundariesSection = Field(default_factory=BoundariesSection)
    cost: CostConfig = Field(default_factory=CostConfig)


def load_project_config(path: str | Path | None = None) -> ProjectConfig:
    """
    Load and validate the project configuration file.

    Args:
        path: Config file path (defaults to ``Settings.taskgate_config_path``).

    Returns:
        Validated ProjectConfig.

    Raises:
        ConfigNotFoundError: If the file does not exist.
        ConfigParseError: If the YAML is malformed.
        ConfigValidationError: If required fields are missing or invalid.
    """
    config_path = Path(path or get_settings().taskgate_config_path)
    if not config_path.is_file():
        raise ConfigNotFoundError(str(config_path))

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigParseError(str(config_path), str(e)) from e

    try:
        config = ProjectConfig.model_validate(raw or {})
    except ValidationError as e:
        issues = [
            (".".join(str(p) for p in err["loc"]) or "(root)", err["msg"]) for err in e.errors()
        ]
        raise ConfigValidationError(str(config_path), issues) from e

    logger.debug(f"Loaded project config for {config.project.name} from {config_path}")
    return config
