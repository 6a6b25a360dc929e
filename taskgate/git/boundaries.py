"""File boundary matching for never-touch and require-review patterns.

A pattern without glob characters is an exact path: it matches the file
itself or any path ending in ``/<pattern>``. Anything else is a glob over
the whole path. ``*``, ``?`` and ``[...]`` stay within one path segment;
only ``**`` crosses directories, and ``**/`` may also match no directory
at all, so ``src/**/*.ts`` covers ``src/index.ts``.
"""

import re
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field

GLOB_CHARS = ("*", "?", "[")


class BoundaryMatch(BaseModel):
    """A changed file and the first pattern it matched."""

    model_config = ConfigDict(frozen=True)

    file: str
    pattern: str


class CautionResult(BaseModel):
    """Files that require human review."""

    caution_files: list[str] = Field(default_factory=list)
    matches: list[BoundaryMatch] = Field(default_factory=list)


def _normalize(path: str) -> str:
    return path.replace("\\", "/")


def _translate_class(pattern: str, start: int) -> tuple[str, int] | None:
    """Regex for the ``[...]`` class opening at ``start`` and the index after it."""
    index = start + 1
    if index < len(pattern) and pattern[index] in "!^":
        index += 1
    if index < len(pattern) and pattern[index] == "]":
        index += 1
    end = pattern.find("]", index)
    if end == -1:
        return None
    body = pattern[start + 1 : end]
    if body[0] in "!^":
        body = "^" + body[1:]
    return f"(?!/)[{body}]", end + 1


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """
    Compile a path glob into a regex to be used with ``fullmatch``.

    Example:
        >>> bool(glob_to_regex("src/*.ts").fullmatch("src/deep/x.ts"))
        False
        >>> bool(glob_to_regex("a/**/b/**/c").fullmatch("a/b/c"))
        True
    """
    parts: list[str] = []
    index = 0
    while index < len(pattern):
        ch = pattern[index]
        if pattern.startswith("**", index):
            at_segment_start = index == 0 or pattern[index - 1] == "/"
            if at_segment_start and pattern.startswith("**/", index):
                parts.append("(?:.*/)?")
                index += 3
            elif at_segment_start and index + 2 == len(pattern):
                parts.append(".*")
                index += 2
            else:
                parts.append("[^/]*")
                index += 2
        elif ch == "*":
            parts.append("[^/]*")
            index += 1
        elif ch == "?":
            parts.append("[^/]")
            index += 1
        elif ch == "[":
            translated = _translate_class(pattern, index)
            if translated is None:
                parts.append(re.escape(ch))
                index += 1
            else:
                parts.append(translated[0])
                index = translated[1]
        else:
            parts.append(re.escape(ch))
            index += 1
    return re.compile("".join(parts), re.DOTALL)


def matches_pattern(file_path: str, pattern: str) -> bool:
    """
    Check whether a changed file matches a boundary pattern.

    Example:
        >>> matches_pattern("config/package.json", "package.json")
        True
        >>> matches_pattern("src/db/migrations/001.sql", "**/migrations/**")
        True
        >>> matches_pattern("migrations/001.sql", "**/migrations/**")
        True
    """
    file_path = _normalize(file_path)
    pattern = _normalize(pattern)

    if not any(ch in pattern for ch in GLOB_CHARS):
        return file_path == pattern or file_path.endswith(f"/{pattern}")

    return glob_to_regex(pattern).fullmatch(file_path) is not None


def _first_match(file_path: str, patterns: list[str]) -> str | None:
    for pattern in patterns:
        if matches_pattern(file_path, pattern):
            return pattern
    return None


def detect_never_touch_violations(changed_files: list[str], patterns: list[str]) -> list[BoundaryMatch]:
    """Every changed file matching a never-touch pattern, with its first matching pattern."""
    violations: list[BoundaryMatch] = []
    for file in changed_files:
        pattern = _first_match(file, patterns)
        if pattern is not None:
            violations.append(BoundaryMatch(file=file, pattern=pattern))
    return violations


def detect_caution_files(changed_files: list[str], patterns: list[str]) -> CautionResult:
    """Changed files matching a require-review pattern."""
    result = CautionResult()
    for file in changed_files:
        pattern = _first_match(file, patterns)
        if pattern is None:
            continue
        if file not in result.caution_files:
            result.caution_files.append(file)
        result.matches.append(BoundaryMatch(file=file, pattern=pattern))
    return result
