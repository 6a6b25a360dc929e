"""Pytest configuration and shared fixtures."""

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from taskgate.core.config import CostConfig, ProjectConfig, clear_settings_cache
from taskgate.git.adapter import RebaseResult
from taskgate.pipeline.runner import CommandResult
from taskgate.prd.models import Task

# Set test environment
os.environ.setdefault("TASKGATE_DEBUG", "true")
os.environ.setdefault("TASKGATE_LOG_LEVEL", "DEBUG")


@pytest.fixture
def mock_settings() -> Generator:
    """Clear cached settings before and after a test."""
    clear_settings_cache()

    yield

    clear_settings_cache()


# =============================================================================
# TASKS
# =============================================================================


def build_task(
    task_id: str,
    files: list[str] | None = None,
    depends_on: list[str] | None = None,
    complexity: int = 3,
    cost_ceiling: float | None = None,
    **extra: Any,
) -> Task:
    """Task with sensible defaults; computed fields follow the default cost config."""
    ceiling = complexity * 3 if cost_ceiling is None else cost_ceiling
    return Task(
        id=task_id,
        title=f"Task {task_id}",
        description=f"Implement task {task_id}",
        files_affected=files or [],
        depends_on=depends_on or [],
        complexity=complexity,
        cost_ceiling=ceiling,
        estimated_iterations=5 + complexity * 3,
        revision_budget=ceiling * 0.5,
        **extra,
    )


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory fixture for tasks."""
    return build_task


@pytest.fixture
def sample_tasks() -> list[Task]:
    """A small phase: 1a feeds 1b and 1c; 1b and 1c share a file; 2a is independent."""
    return [
        build_task("1a", files=["db/migrations/001_users.sql"]),
        build_task("1b", files=["src/api/users.ts", "src/routes.ts"], depends_on=["1a"]),
        build_task("1c", files=["src/api/sessions.ts", "src/routes.ts"], depends_on=["1a"]),
        build_task("2a", files=["src/components/Button.tsx"]),
    ]


@pytest.fixture
def project_config() -> ProjectConfig:
    """Project config with never-touch and require-review boundaries."""
    return ProjectConfig(
        project={"name": "shop", "language": "typescript", "runtime": "bun"},
        commands={"build": "bun run build", "typecheck": "bun run typecheck"},
        boundaries={
            "never_touch": ["*.lock", "package-lock.json", ".env"],
            "require_review": ["src/auth/**", "**/migrations/**"],
        },
        cost=CostConfig(),
    )


SAMPLE_PRD = """---
feature_name: User Accounts
feature_slug: user-accounts
owner: dana
status: active
created_date: 2026-01-15
phase: phase-1
scope_type: new-feature
---

# User Accounts

Some prose about the feature.

## Agent Tasks

```yaml
tasks:
  - id: 1a
    title: Create users table
    description: Add the users migration
    complexity: 3
    cost_ceiling: 9
    estimated_iterations: 14
    revision_budget: 4.5
    files_affected:
      - db/migrations/001_users.sql
    success_criteria:
      - Migration applies cleanly
  - id: 1b
    title: User API
    description: CRUD endpoints for users
    complexity: 5
    cost_ceiling: 15
    estimated_iterations: 20
    revision_budget: 7.5
    depends_on: [1a]
    files_affected:
      - src/api/users.ts
      - src/routes.ts
  - id: 1c
    title: Session API
    description: Login and logout endpoints
    complexity: 4
    cost_ceiling: 12
    estimated_iterations: 17
    revision_budget: 6
    depends_on: [1a]
    files_affected:
      - src/api/sessions.ts
      - src/routes.ts
```
"""


@pytest.fixture
def sample_prd_text() -> str:
    """A complete PRD document."""
    return SAMPLE_PRD


@pytest.fixture
def sample_prd_file(tmp_path: Path) -> Path:
    """The sample PRD written to disk."""
    path = tmp_path / "PRD_user-accounts.md"
    path.write_text(SAMPLE_PRD, encoding="utf-8")
    return path


# =============================================================================
# PIPELINE FAKES
# =============================================================================


class FakeRunner:
    """ProcessRunner that returns scripted results and records calls."""

    def __init__(self, results: dict[str, CommandResult] | None = None) -> None:
        self.results = results or {}
        self.calls: list[str] = []

    async def run(self, command: str, cwd: Any, timeout: float | None = None) -> CommandResult:
        self.calls.append(command)
        return self.results.get(
            command,
            CommandResult(command=command, success=True, exit_code=0, duration_ms=5),
        )


class FakeVCS:
    """VersionControl with a scripted rebase result and changed-file list."""

    def __init__(
        self,
        rebase_result: RebaseResult | None = None,
        changed_files: list[str] | None = None,
        diff_error: Exception | None = None,
    ) -> None:
        self.rebase_result = rebase_result or RebaseResult(success=True)
        self.changed_files = changed_files or []
        self.diff_error = diff_error
        self.calls: list[str] = []

    async def rebase(self, target: str, cwd: Any) -> RebaseResult:
        self.calls.append(f"rebase {target}")
        return self.rebase_result

    async def diff(self, from_ref: str, to_ref: str, cwd: Any) -> list[str]:
        self.calls.append(f"diff {from_ref}...{to_ref}")
        if self.diff_error is not None:
            raise self.diff_error
        return list(self.changed_files)


@pytest.fixture
def make_runner() -> type[FakeRunner]:
    """Factory fixture for scripted process runners."""
    return FakeRunner


@pytest.fixture
def make_vcs() -> type[FakeVCS]:
    """Factory fixture for scripted version control."""
    return FakeVCS


@pytest.fixture
def failed_command() -> Callable[..., CommandResult]:
    """Factory fixture for failed command results."""

    def _failed(command: str, exit_code: int = 1, stderr: str = "error") -> CommandResult:
        return CommandResult(command=command, success=False, exit_code=exit_code, stderr=stderr)

    return _failed


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
