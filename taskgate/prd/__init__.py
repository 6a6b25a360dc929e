"""PRD loading - task models, markdown parsing and computed-field checks."""

from taskgate.prd.computed import (
    ComputedFieldDrift,
    DriftReport,
    recalculate_all_tasks,
    recalculate_computed_fields,
    validate_all_tasks,
    validate_computed_fields,
)
from taskgate.prd.models import ParsedPRD, PRDMetadata, Task, TaskPriority
from taskgate.prd.parser import parse_prd, parse_prd_file

__all__ = [
    "ComputedFieldDrift",
    "DriftReport",
    "PRDMetadata",
    "ParsedPRD",
    "Task",
    "TaskPriority",
    "parse_prd",
    "parse_prd_file",
    "recalculate_all_tasks",
    "recalculate_computed_fields",
    "validate_all_tasks",
    "validate_computed_fields",
]
