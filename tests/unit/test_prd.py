"""Unit tests for PRD parsing and computed-field validation."""

from pathlib import Path

import pytest

from taskgate.core.config import CostConfig
from taskgate.core.errors import (
    DuplicateTaskIdError,
    PRDExtractionError,
    PRDNotFoundError,
    PRDParseError,
    PRDValidationError,
)
from taskgate.prd.computed import (
    calculate_cost_ceiling,
    calculate_estimated_iterations,
    calculate_revision_budget,
    recalculate_all_tasks,
    recalculate_computed_fields,
    validate_all_tasks,
    validate_computed_fields,
)
from taskgate.prd.models import PRDStatus
from taskgate.prd.parser import parse_prd, parse_prd_file

FRONT_MATTER = """---
feature_name: Search
feature_slug: search
phase: phase-2
---
"""


def _prd(tasks_yaml: str, front_matter: str = FRONT_MATTER) -> str:
    return f"{front_matter}\n# Search\n\n## Agent Tasks\n\n```yaml\n{tasks_yaml}```\n"


class TestParsePRD:
    """Tests for parse_prd."""

    def test_sample_prd(self, sample_prd_text: str) -> None:
        """Test metadata and tasks are extracted from a full PRD."""
        parsed = parse_prd(sample_prd_text, "PRD_user-accounts.md")

        assert parsed.phase_id == "phase-1"
        assert parsed.metadata.feature_slug == "user-accounts"
        assert parsed.metadata.status is PRDStatus.ACTIVE
        assert parsed.metadata.created_date == "2026-01-15"
        assert [t.id for t in parsed.tasks] == ["1a", "1b", "1c"]
        assert parsed.get_task("1b").depends_on == ("1a",)
        assert parsed.get_task("1c").files_affected == ("src/api/sessions.ts", "src/routes.ts")
        assert parsed.get_task("zz") is None
        assert parsed.source_file == "PRD_user-accounts.md"

    def test_numeric_ids_become_strings(self) -> None:
        content = _prd(
            "tasks:\n"
            "  - id: 1\n    title: A\n    description: a\n    complexity: 1\n    cost_ceiling: 3\n"
            "  - id: 2\n    title: B\n    description: b\n    complexity: 1\n    cost_ceiling: 3\n"
            "    depends_on: [1]\n"
        )

        parsed = parse_prd(content)

        assert parsed.tasks[0].id == "1"
        assert parsed.tasks[1].depends_on == ("1",)

    def test_unfenced_yaml_block(self) -> None:
        """Test a raw YAML list after the heading, ending at the next heading."""
        content = (
            FRONT_MATTER
            + "\n## Agent Tasks\n\n"
            + "tasks:\n  - id: 2a\n    title: Index\n    description: Build index\n"
            + "    complexity: 2\n    cost_ceiling: 6\n"
            + "\n## Notes\n\nNot part of the tasks.\n"
        )

        parsed = parse_prd(content)

        assert [t.id for t in parsed.tasks] == ["2a"]

    def test_fenced_front_matter(self) -> None:
        content = (
            "```yaml\n---\nfeature_name: Search\nfeature_slug: search\nphase: phase-2\n---\n```\n"
            "\n## Agent Tasks\n\n```yaml\n"
            "tasks:\n  - id: 2a\n    title: Index\n    description: d\n    complexity: 2\n"
            "    cost_ceiling: 6\n```\n"
        )

        assert parse_prd(content).phase_id == "phase-2"

    def test_windows_line_endings(self, sample_prd_text: str) -> None:
        parsed = parse_prd(sample_prd_text.replace("\n", "\r\n"))

        assert len(parsed.tasks) == 3

    def test_missing_front_matter(self) -> None:
        with pytest.raises(PRDExtractionError) as exc_info:
            parse_prd("# Title\n\n## Agent Tasks\n")

        assert "---" in exc_info.value.reason

    def test_missing_tasks_heading(self) -> None:
        with pytest.raises(PRDExtractionError) as exc_info:
            parse_prd(FRONT_MATTER + "\n# Search\n\nNo tasks yet.\n", "PRD_search.md")

        assert "Agent Tasks" in exc_info.value.reason
        assert exc_info.value.source_file == "PRD_search.md"

    def test_unclosed_fence(self) -> None:
        content = FRONT_MATTER + "\n## Agent Tasks\n\n```yaml\ntasks: []\n"

        with pytest.raises(PRDExtractionError, match="Unclosed"):
            parse_prd(content)

    def test_malformed_yaml(self) -> None:
        with pytest.raises(PRDParseError):
            parse_prd(_prd("tasks: [unclosed\n"))

    def test_validation_error_paths(self) -> None:
        content = _prd("tasks:\n  - id: 2a\n    title: Index\n    description: d\n    cost_ceiling: 6\n")

        with pytest.raises(PRDValidationError) as exc_info:
            parse_prd(content)

        assert "tasks.0.complexity" in exc_info.value.get_field_paths()

    def test_empty_task_list_rejected(self) -> None:
        with pytest.raises(PRDValidationError):
            parse_prd(_prd("tasks: []\n"))

    def test_duplicate_ids(self) -> None:
        task = "  - id: 2a\n    title: T\n    description: d\n    complexity: 1\n    cost_ceiling: 3\n"

        with pytest.raises(DuplicateTaskIdError) as exc_info:
            parse_prd(_prd("tasks:\n" + task + task))

        assert exc_info.value.duplicate_id == "2a"


class TestParsePRDFile:
    """Tests for parse_prd_file."""

    def test_reads_file(self, sample_prd_file: Path) -> None:
        parsed = parse_prd_file(sample_prd_file)

        assert parsed.source_file == str(sample_prd_file)
        assert len(parsed.tasks) == 3

    def test_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(PRDNotFoundError):
            parse_prd_file(tmp_path / "missing.md")


class TestComputedFields:
    """Tests for computed-field formulas and drift detection."""

    def test_formulas_with_defaults(self) -> None:
        config = CostConfig()

        assert calculate_cost_ceiling(5, config) == 15
        assert calculate_estimated_iterations(5, config) == 20
        assert calculate_revision_budget(15, config) == 7.5

    def test_sample_prd_is_consistent(self, sample_prd_text: str) -> None:
        parsed = parse_prd(sample_prd_text)

        assert validate_all_tasks(parsed.tasks, CostConfig()).valid

    def test_single_wrong_ceiling_reports_one_drift(self, make_task) -> None:
        task = make_task("1a", complexity=3, cost_ceiling=10)

        report = validate_computed_fields(task, CostConfig())

        assert not report.valid
        assert [(d.field, d.expected, d.actual) for d in report.drifts] == [("cost_ceiling", 9, 10)]

    def test_custom_config_detects_all_fields(self, make_task) -> None:
        config = CostConfig(
            cost_multiplier=2, base_iterations=0, iteration_multiplier=1, revision_budget_percent=25
        )
        tasks = [make_task("1a", complexity=4), make_task("1b", complexity=1)]

        report = validate_all_tasks(tasks, config)

        assert {d.task_id for d in report.drifts} == {"1a", "1b"}
        assert {d.field for d in report.drifts} == {"cost_ceiling", "estimated_iterations", "revision_budget"}

    def test_recalculate(self, make_task) -> None:
        config = CostConfig(cost_multiplier=2, revision_budget_percent=25)
        task = make_task("1a", complexity=4)

        fixed = recalculate_computed_fields(task, config)

        assert fixed.cost_ceiling == 8
        assert fixed.estimated_iterations == 17
        assert fixed.revision_budget == 2
        assert task.cost_ceiling == 12
        assert validate_computed_fields(fixed, config).valid
        assert all(validate_computed_fields(t, config).valid for t in recalculate_all_tasks([task], config))
