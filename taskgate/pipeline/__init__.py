"""Pre-PR validation pipeline and command runner."""

from taskgate.pipeline.checks import (
    FailureReason,
    PipelineState,
    PrePRCheckOptions,
    PrePRCheckResult,
    ValidationPipeline,
    format_command_result,
    run_pre_pr_checks,
)
from taskgate.pipeline.runner import CommandResult, ProcessRunner, SubprocessRunner, run_command

__all__ = [
    "CommandResult",
    "FailureReason",
    "PipelineState",
    "PrePRCheckOptions",
    "PrePRCheckResult",
    "ProcessRunner",
    "SubprocessRunner",
    "ValidationPipeline",
    "format_command_result",
    "run_command",
    "run_pre_pr_checks",
]
