"""Unit tests for structured-output validation."""

import pytest
from pydantic import BaseModel

from taskgate.core.errors import OutputValidationError
from taskgate.structured_output.schemas import CompletionStatus, ReviewResult, TaskResult
from taskgate.structured_output.validator import (
    ValidationOptions,
    assert_valid_output,
    create_validator,
    extract_json_span,
    format_validation_errors,
    is_json_parse_error,
    is_schema_validation_error,
    try_validate_output,
    validate_output,
)


class Score(BaseModel):
    score: int
    notes: str


FENCED = """Here is my verdict.

```json
{"score": 8, "notes": "solid"}
```

Let me know if you need anything else.
"""


class TestValidateOutput:
    """Tests for validate_output."""

    def test_plain_json(self) -> None:
        result = validate_output('{"score": 7, "notes": "ok"}', Score)

        assert result.success
        assert result.data == Score(score=7, notes="ok")
        assert not result.used_fallback
        assert result.errors == []

    def test_fenced_json_with_prose(self) -> None:
        result = validate_output(FENCED, Score)

        assert result.success
        assert result.data.score == 8
        assert result.raw == FENCED

    def test_unfenced_json_inside_prose(self) -> None:
        result = validate_output('Here is my verdict: {"score": 8, "notes": "solid"} Let me know.', Score)

        assert result.success
        assert result.data == Score(score=8, notes="solid")

    def test_prose_inside_fence(self) -> None:
        output = "Review:\n```\nVerdict follows.\n{\"score\": 3, \"notes\": \"thin\"}\nThanks.\n```\n"

        result = validate_output(output, Score)

        assert result.success
        assert result.data.notes == "thin"

    def test_fenced_json_without_stripping_is_parse_error(self) -> None:
        result = validate_output(FENCED, Score, ValidationOptions(strip_markdown_blocks=False))

        assert not result.success
        assert is_json_parse_error(result)
        assert not is_schema_validation_error(result)
        assert result.used_fallback

    def test_extracted_span_used_when_attempts_allow(self) -> None:
        options = ValidationOptions(strip_markdown_blocks=False, max_parse_attempts=4)

        result = validate_output(FENCED, Score, options)

        assert result.success
        assert result.data.notes == "solid"

    def test_trailing_comma_repaired(self) -> None:
        result = validate_output('{"score": 5, "notes": "x",}', Score)

        assert result.success
        assert result.data.score == 5

    def test_max_attempts_limits_repairs(self) -> None:
        result = validate_output('{"score": 5, "notes": "x",}', Score, ValidationOptions(max_parse_attempts=2))

        assert is_json_parse_error(result)

    def test_parse_failure_truncates_received(self) -> None:
        output = "no json here " * 20

        result = validate_output(output, Score)

        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.message == "Failed to parse JSON from output"
        assert error.received == output[:100] + "..."
        assert result.raw == output

    def test_schema_mismatch_reports_each_field(self) -> None:
        result = validate_output('{"score": "high"}', Score)

        assert not result.success
        assert is_schema_validation_error(result)
        assert result.used_fallback
        assert result.data is None
        assert sorted(e.location for e in result.errors) == ["notes", "score"]

    def test_fallback_disabled(self) -> None:
        result = validate_output("nope", Score, ValidationOptions(allow_fallback=False))

        assert not result.success
        assert not result.used_fallback

    def test_raw_round_trips(self) -> None:
        first = validate_output(FENCED, Score)
        second = validate_output(first.raw, Score)

        assert second.success
        assert second.data == first.data

    def test_top_level_array(self) -> None:
        result = validate_output("Items:\n```\n[1, 2, 3]\n```", list[int])

        assert result.success
        assert result.data == [1, 2, 3]


class TestVariants:
    """Strict, best-effort and bound validators."""

    def test_assert_valid_output_returns_data(self) -> None:
        assert assert_valid_output(FENCED, Score).score == 8

    def test_assert_valid_output_raises(self) -> None:
        with pytest.raises(OutputValidationError) as exc_info:
            assert_valid_output('{"score": 1}', Score)

        assert "notes" in str(exc_info.value)
        assert exc_info.value.errors

    def test_try_validate_output(self) -> None:
        assert try_validate_output(FENCED, Score) == Score(score=8, notes="solid")
        assert try_validate_output("garbage", Score) is None

    def test_create_validator(self) -> None:
        validate_score = create_validator(Score, ValidationOptions(allow_fallback=False))

        assert validate_score(FENCED).success
        assert not validate_score("x").used_fallback

    def test_format_validation_errors(self) -> None:
        result = validate_output('{"score": "high", "notes": "n"}', Score)

        text = format_validation_errors(result.errors)

        assert text.startswith("score: ")
        assert "(received: 'high')" in text


class TestExtractJsonSpan:
    """Tests for balanced span extraction."""

    def test_nested(self) -> None:
        assert extract_json_span('x {"a": {"b": [1, 2]}} y {"c": 1}') == '{"a": {"b": [1, 2]}}'

    def test_brackets_inside_strings(self) -> None:
        assert extract_json_span('pre {"a": "}{"} post') == '{"a": "}{"}'

    def test_unbalanced(self) -> None:
        assert extract_json_span('{"a": 1') is None


class TestSchemas:
    """Tests for agent report schemas."""

    def test_task_result_accepts_camel_case(self) -> None:
        output = """Done!
```json
{
  "taskId": "1a",
  "status": "completed",
  "summary": "Added users table",
  "filesModified": [{"path": "db/migrations/001_users.sql", "modificationType": "created"}],
  "validationChecks": [{"name": "build", "passed": true}],
  "successCriteriaMet": true
}
```"""
        result = validate_output(output, TaskResult)

        assert result.success
        assert result.data.task_id == "1a"
        assert result.data.status is CompletionStatus.COMPLETED
        assert result.data.files_modified[0].modification_type == "created"

    def test_review_result_score_bounds(self) -> None:
        payload = '{"score": 11, "summary": "s", "ready_for_finalization": false}'

        result = validate_output(payload, ReviewResult)

        assert is_schema_validation_error(result)
        assert [e.location for e in result.errors] == ["score"]
