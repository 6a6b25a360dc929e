"""Structured-output validation for agent responses.

Agents are asked to end their run with a JSON payload, but the payload
usually arrives wrapped in prose or a markdown fence. ``validate_output``
recovers the JSON and checks it against a pydantic schema, returning a
tagged result instead of raising so callers can fall back to the raw text.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from taskgate.core.errors import OutputValidationError

T = TypeVar("T")

PARSE_ERROR_MESSAGE = "Failed to parse JSON from output"
RECEIVED_LIMIT = 100

_FENCED_BLOCK = re.compile(r"```[\w-]*[ \t]*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


# =============================================================================
# TYPES
# =============================================================================


@dataclass(frozen=True)
class ValidationIssue:
    """One parse or schema problem."""

    path: list[str | int] = field(default_factory=list)
    message: str = ""
    expected: str | None = None
    received: str | None = None

    @property
    def location(self) -> str:
        return ".".join(str(p) for p in self.path)


@dataclass(frozen=True)
class ValidationOptions:
    """Options for :func:`validate_output`."""

    allow_fallback: bool = True
    max_parse_attempts: int = 3
    strip_markdown_blocks: bool = True


@dataclass
class ValidationResult(Generic[T]):
    """Tagged outcome of validating agent output.

    ``data`` is set only when ``success``. ``used_fallback`` is only ever
    True on failure and tells the caller to continue with ``raw``.
    """

    success: bool
    raw: str
    data: T | None = None
    errors: list[ValidationIssue] = field(default_factory=list)
    used_fallback: bool = False


# =============================================================================
# JSON RECOVERY
# =============================================================================


def _truncate(text: str, limit: int = RECEIVED_LIMIT) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def extract_fenced_block(text: str) -> str | None:
    """Interior of the first fenced code block, if any."""
    match = _FENCED_BLOCK.search(text)
    if match is None:
        return None
    return match.group(1).strip()


def extract_json_span(text: str) -> str | None:
    """
    First balanced ``{...}`` or ``[...]`` span in ``text``.

    Brackets inside JSON strings are ignored.

    Example:
        >>> extract_json_span('Result: {"ok": true} done')
        '{"ok": true}'
    """
    pairs = {"{": "}", "[": "]"}
    for start, ch in enumerate(text):
        if ch not in pairs:
            continue
        stack = [pairs[ch]]
        in_string = False
        escaped = False
        for index in range(start + 1, len(text)):
            c = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
                continue
            if c == '"':
                in_string = True
            elif c in pairs:
                stack.append(pairs[c])
            elif c in "}]":
                if c != stack[-1]:
                    break
                stack.pop()
                if not stack:
                    return text[start : index + 1]
    return None


def _parse_candidates(candidate: str) -> list[str]:
    """Parse attempts in order of preference."""
    attempts = [
        candidate,
        candidate.strip(),
        _TRAILING_COMMA.sub(r"\1", candidate),
    ]
    span = extract_json_span(candidate)
    if span is not None:
        attempts.append(span)
    return attempts


def parse_json_with_retry(candidate: str, max_attempts: int = 3) -> tuple[bool, Any]:
    """
    Try successive repairs of ``candidate`` until one parses.

    Returns:
        ``(True, value)`` on success, ``(False, None)`` otherwise. A tuple is
        used because ``null`` is a valid JSON document.
    """
    for attempt in _parse_candidates(candidate)[: max(max_attempts, 0)]:
        if not attempt:
            continue
        try:
            return True, json.loads(attempt)
        except json.JSONDecodeError:
            continue
    return False, None


# =============================================================================
# VALIDATION
# =============================================================================


def _issues_from_error(error: ValidationError) -> list[ValidationIssue]:
    issues = []
    for err in error.errors():
        received = err.get("input")
        issues.append(
            ValidationIssue(
                path=list(err["loc"]),
                message=err["msg"],
                expected=err["type"],
                received=_truncate(repr(received)) if received is not None else None,
            )
        )
    return issues


def validate_output(
    output: str,
    schema: type[T] | TypeAdapter[T],
    options: ValidationOptions | None = None,
) -> ValidationResult[T]:
    """
    Recover JSON from agent output and validate it against ``schema``.

    Args:
        output: Raw agent stdout.
        schema: Pydantic model (or any type pydantic can validate) or a
            prepared TypeAdapter.
        options: Validation options; defaults allow fallback, 3 parse
            attempts and markdown stripping.

    Returns:
        ValidationResult. ``raw`` is always the unmodified ``output``.

    Example:
        >>> result = validate_output(agent_stdout, TaskResult)
        >>> if result.success:
        ...     print(result.data.status)
        ... elif result.used_fallback:
        ...     print(result.raw)
    """
    opts = options or ValidationOptions()
    adapter = schema if isinstance(schema, TypeAdapter) else TypeAdapter(schema)

    candidate = output
    if opts.strip_markdown_blocks:
        fenced = extract_fenced_block(output)
        candidate = extract_json_span(fenced or output) or fenced or output

    parsed_ok, parsed = parse_json_with_retry(candidate, opts.max_parse_attempts)
    if not parsed_ok:
        return ValidationResult(
            success=False,
            raw=output,
            errors=[
                ValidationIssue(
                    message=PARSE_ERROR_MESSAGE,
                    expected="valid JSON",
                    received=_truncate(output),
                )
            ],
            used_fallback=opts.allow_fallback,
        )

    try:
        data = adapter.validate_python(parsed)
    except ValidationError as e:
        return ValidationResult(
            success=False,
            raw=output,
            errors=_issues_from_error(e),
            used_fallback=opts.allow_fallback,
        )

    return ValidationResult(success=True, raw=output, data=data)


def assert_valid_output(output: str, schema: type[T] | TypeAdapter[T]) -> T:
    """
    Strict variant: return validated data or raise.

    Raises:
        OutputValidationError: If the output does not parse or validate.
    """
    result = validate_output(output, schema, ValidationOptions(allow_fallback=False))
    if not result.success:
        messages = "; ".join(f"{e.location}: {e.message}" for e in result.errors)
        raise OutputValidationError(f"Output validation failed: {messages}", result.errors)
    return result.data  # type: ignore[return-value]


def try_validate_output(output: str, schema: type[T] | TypeAdapter[T]) -> T | None:
    """Best-effort variant: validated data, or None on any failure."""
    result = validate_output(output, schema, ValidationOptions(allow_fallback=False))
    return result.data if result.success else None


def create_validator(
    schema: type[T],
    default_options: ValidationOptions | None = None,
) -> Callable[..., ValidationResult[T]]:
    """
    Bind a schema (and default options) into a reusable validator.

    Example:
        >>> validate_review = create_validator(ReviewResult)
        >>> validate_review(agent_stdout).success
        True
    """
    adapter = TypeAdapter(schema)

    def _validate(output: str, options: ValidationOptions | None = None) -> ValidationResult[T]:
        return validate_output(output, adapter, options or default_options)

    return _validate


def format_validation_errors(errors: list[ValidationIssue]) -> str:
    """One line per issue: ``path: message (expected: ...) (received: ...)``."""
    lines = []
    for issue in errors:
        line = f"{issue.location}: {issue.message}" if issue.path else issue.message
        if issue.expected:
            line += f" (expected: {issue.expected})"
        if issue.received:
            line += f" (received: {issue.received})"
        lines.append(line)
    return "\n".join(lines)


def is_json_parse_error(result: ValidationResult[Any]) -> bool:
    """True if the result failed because no JSON could be parsed."""
    return not result.success and any(PARSE_ERROR_MESSAGE in e.message for e in result.errors)


def is_schema_validation_error(result: ValidationResult[Any]) -> bool:
    """True if JSON parsed but did not match the schema."""
    return not result.success and not is_json_parse_error(result)
