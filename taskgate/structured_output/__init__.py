"""Structured-output recovery and validation for agent responses."""

from taskgate.structured_output.schemas import CompletionStatus, ReviewResult, Severity, TaskResult
from taskgate.structured_output.validator import (
    ValidationIssue,
    ValidationOptions,
    ValidationResult,
    assert_valid_output,
    create_validator,
    format_validation_errors,
    is_json_parse_error,
    is_schema_validation_error,
    try_validate_output,
    validate_output,
)

__all__ = [
    "CompletionStatus",
    "ReviewResult",
    "Severity",
    "TaskResult",
    "ValidationIssue",
    "ValidationOptions",
    "ValidationResult",
    "assert_valid_output",
    "create_validator",
    "format_validation_errors",
    "is_json_parse_error",
    "is_schema_validation_error",
    "try_validate_output",
    "validate_output",
]
