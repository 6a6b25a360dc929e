"""PRD parser - extracts metadata and the agent task block from markdown.

Expected layout::

    ---
    feature_name: Checkout
    feature_slug: checkout
    phase: phase-1
    ---

    # Checkout

    ## Agent Tasks

    ```yaml
    tasks:
      - id: 1a
        title: ...
    ```
"""

import re
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import BaseModel, ValidationError

from taskgate.core.errors import (
    DuplicateTaskIdError,
    PRDExtractionError,
    PRDNotFoundError,
    PRDParseError,
    PRDReadError,
    PRDValidationError,
)
from taskgate.prd.models import ParsedPRD, PRDMetadata, Task, TasksBlock

_TASKS_HEADING = re.compile(r"^#{1,3}\s*agent\s+tasks\s*$", re.IGNORECASE)
_FENCE_OPEN = re.compile(r"^(\s{0,4})```(?:yaml|yml)?\s*$")
_FENCE_CLOSE = re.compile(r"^(\s{0,4})```\s*$")
_ANY_HEADING = re.compile(r"^#{1,6}\s")


def _normalize_line_endings(content: str) -> str:
    return content.replace("\r\n", "\n").replace("\r", "\n")


def _extract_metadata_block(lines: list[str], source_file: str) -> str:
    """Return the YAML between the leading ``---`` delimiters."""
    start = 0
    while start < len(lines) and not lines[start].strip():
        start += 1

    if start < len(lines) and lines[start].startswith("```yaml"):
        close = next(
            (i for i in range(start + 1, len(lines)) if lines[i].strip() == "```"),
            -1,
        )
        if close == -1:
            raise PRDExtractionError(source_file, "Unclosed YAML code fence in metadata block")
        inner = lines[start + 1 : close]
        delimiters = [i for i, line in enumerate(inner) if line.strip() == "---"]
        if len(delimiters) >= 2:
            return "\n".join(inner[delimiters[0] + 1 : delimiters[-1]])
        return "\n".join(inner)

    if start >= len(lines) or lines[start].strip() != "---":
        raise PRDExtractionError(
            source_file, "PRD must start with YAML metadata block (--- delimiters)"
        )

    close = next((i for i in range(start + 1, len(lines)) if lines[i].strip() == "---"), -1)
    if close == -1:
        raise PRDExtractionError(source_file, "Unclosed metadata block (missing closing ---)")
    return "\n".join(lines[start + 1 : close])


def _extract_tasks_block(lines: list[str], source_file: str) -> str:
    """Return the YAML following the ``## Agent Tasks`` heading."""
    heading = next((i for i, line in enumerate(lines) if _TASKS_HEADING.match(line.strip())), -1)
    if heading == -1:
        raise PRDExtractionError(source_file, 'Missing "## Agent Tasks" heading')

    for i in range(heading + 1, len(lines)):
        line = lines[i]
        stripped = line.strip()
        if not stripped:
            continue

        fence = _FENCE_OPEN.match(line)
        if fence:
            indent = len(fence.group(1))
            for j in range(i + 1, len(lines)):
                close = _FENCE_CLOSE.match(lines[j])
                if close and len(close.group(1)) <= indent:
                    return "\n".join(lines[i + 1 : j])
            raise PRDExtractionError(source_file, "Unclosed code fence in Agent Tasks section")

        if stripped.startswith(("tasks:", "-")):
            end = next(
                (j for j in range(i + 1, len(lines)) if _ANY_HEADING.match(lines[j])),
                len(lines),
            )
            return "\n".join(lines[i:end])
        break

    raise PRDExtractionError(source_file, 'No YAML content found after "## Agent Tasks" heading')


def _load_yaml(text: str, source_file: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise PRDParseError(source_file, str(e)) from e


def _validate(model: type[BaseModel], data: Any, source_file: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        issues = [
            (".".join(str(p) for p in err["loc"]) or "(root)", err["msg"]) for err in e.errors()
        ]
        raise PRDValidationError(source_file, issues) from e


def _check_duplicate_ids(tasks: list[Task]) -> None:
    seen: set[str] = set()
    for task in tasks:
        if task.id in seen:
            raise DuplicateTaskIdError(task.id)
        seen.add(task.id)


def parse_prd(content: str, source_file: str = "<string>") -> ParsedPRD:
    """
    Parse PRD content and extract tasks.

    Args:
        content: Raw PRD markdown.
        source_file: Source path used in error messages.

    Returns:
        ParsedPRD with metadata and tasks.

    Raises:
        PRDExtractionError: If the metadata or task block is missing.
        PRDParseError: If either YAML block is malformed.
        PRDValidationError: If fields fail validation.
        DuplicateTaskIdError: If two tasks share an id.
    """
    lines = _normalize_line_endings(content).split("\n")

    raw_metadata = _load_yaml(_extract_metadata_block(lines, source_file), source_file)
    metadata: PRDMetadata = _validate(PRDMetadata, raw_metadata, source_file)

    raw_tasks = _load_yaml(_extract_tasks_block(lines, source_file), source_file)
    block: TasksBlock = _validate(TasksBlock, raw_tasks, source_file)

    _check_duplicate_ids(block.tasks)

    logger.info(f"Parsed {len(block.tasks)} tasks for {metadata.phase} from {source_file}")
    return ParsedPRD(metadata=metadata, tasks=block.tasks, source_file=source_file)


def parse_prd_file(path: str | Path) -> ParsedPRD:
    """
    Read and parse a PRD file from disk.

    Raises:
        PRDNotFoundError: If the file does not exist.
        PRDReadError: If the file cannot be read.
    """
    prd_path = Path(path)
    if not prd_path.is_file():
        raise PRDNotFoundError(str(prd_path))

    try:
        content = prd_path.read_text(encoding="utf-8")
    except OSError as e:
        raise PRDReadError(str(prd_path), str(e)) from e

    return parse_prd(content, str(prd_path))
