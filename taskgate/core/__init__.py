"""Core module - configuration, logging and the error taxonomy."""

from taskgate.core.config import (
    BoundariesSection,
    CommandsSection,
    CostConfig,
    ProjectConfig,
    Settings,
    clear_settings_cache,
    get_settings,
    load_project_config,
)
from taskgate.core.errors import TaskGateError
from taskgate.core.logging import configure_logging

__all__ = [
    "BoundariesSection",
    "CommandsSection",
    "CostConfig",
    "ProjectConfig",
    "Settings",
    "TaskGateError",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
    "load_project_config",
]
