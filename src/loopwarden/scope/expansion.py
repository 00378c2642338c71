"""
loopwarden — scope violations and automatic scope expansion

File: src/loopwarden/scope/expansion.py

Purpose
- Compare the files an agent actually changed with a ticket's allowed and
  forbidden globs.
- Decide whether out-of-scope edits look benign enough to widen the ticket's
  allowed paths instead of rejecting the work.

Functional requirements
- Forbidden or hallucinated violations are never expandable.
- A path is expandable when it is a sibling of an allowed file, a conventional
  companion file (tests, type stubs, manifests), inside an allowed directory,
  a root config file, or within an allowed top-level module.
- More than ``max_expansions`` candidate paths rejects the expansion outright.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import Final

from loopwarden.scope.patterns import (
    detect_hallucinated_path,
    matches_any,
    matches_pattern,
    normalize_path,
)

HALLUCINATED_PREFIX: Final[str] = "hallucinated:"
DEFAULT_MAX_EXPANSIONS: Final[int] = 10

_RELATED_SUFFIXES: Final[tuple[str, ...]] = (
    # JS/TS
    ".d.ts",
    # Python
    "_test.py",
    # Go
    "_test.go",
    # Java/Kotlin
    "Test.java",
    "Test.kt",
    # C#
    ".csproj",
    ".sln",
    "Tests.cs",
    "Test.cs",
    # Ruby
    "_spec.rb",
    # Elixir
    "_test.exs",
    # Swift
    "Tests.swift",
    # Dart
    "_test.dart",
    # Scala
    "Spec.scala",
    "Test.scala",
    # Haskell
    "Spec.hs",
    ".cabal",
)

_RELATED_NAMES: Final[frozenset[str]] = frozenset(
    {
        "index.ts",
        "index.tsx",
        "index.js",
        "types.ts",
        "types.tsx",
        "__init__.py",
        "conftest.py",
        "mod.rs",
        "lib.rs",
        "build.rs",
        "go.mod",
        "go.sum",
        "Rakefile",
        "Gemfile.lock",
        "mix.lock",
        "Package.swift",
        "pubspec.yaml",
        "pubspec.lock",
        "build.sbt",
        "stack.yaml",
        "build.zig",
        "build.zig.zon",
        "CMakeLists.txt",
        "Makefile",
    }
)

_RELATED_INFIXES: Final[tuple[str, ...]] = (".test.", ".spec.")
_RELATED_PREFIXES: Final[tuple[str, ...]] = ("test_",)

_ROOT_CONFIG: Final[re.Pattern[str]] = re.compile(
    r"^(vitest|vite|jest|tsconfig|eslint|prettier|babel|rollup|webpack|next|tailwind|pyproject"
    r"|setup|Cargo|go\.mod|go\.sum|Gemfile|mix|pom|build\.gradle|CMakeLists|Makefile)\b"
)


class ViolationKind(StrEnum):
    NOT_IN_ALLOWED = "not_in_allowed"
    IN_FORBIDDEN = "in_forbidden"


@dataclass(frozen=True, slots=True)
class ScopeViolation:
    file: str
    kind: ViolationKind
    pattern: str | None = None

    @property
    def is_hallucinated(self) -> bool:
        return self.pattern is not None and self.pattern.startswith(HALLUCINATED_PREFIX)


@dataclass(frozen=True, slots=True)
class ScopeExpansionResult:
    can_expand: bool
    expanded_paths: tuple[str, ...]
    added_paths: tuple[str, ...] = ()
    reason: str | None = None


def check_scope_violations(
    changed_files: Sequence[str],
    allowed_paths: Sequence[str],
    forbidden_paths: Sequence[str],
) -> list[ScopeViolation]:
    violations: list[ScopeViolation] = []
    for file in changed_files:
        hallucination = detect_hallucinated_path(file)
        if hallucination is not None:
            violations.append(
                ScopeViolation(
                    file=file,
                    kind=ViolationKind.NOT_IN_ALLOWED,
                    pattern=f"{HALLUCINATED_PREFIX} {hallucination}",
                )
            )
            continue

        normalized = normalize_path(file)
        forbidden = matches_any(normalized, list(forbidden_paths))
        if forbidden is not None:
            violations.append(
                ScopeViolation(file=file, kind=ViolationKind.IN_FORBIDDEN, pattern=forbidden)
            )
            continue

        if not allowed_paths:
            continue
        allowed = any(matches_pattern(normalized, pattern) for pattern in allowed_paths)
        if not allowed and file.endswith("/"):
            # A directory entry is fine when some allowed glob lives beneath it.
            allowed = any(pattern.startswith(normalized + "/") for pattern in allowed_paths)
        if not allowed:
            violations.append(ScopeViolation(file=file, kind=ViolationKind.NOT_IN_ALLOWED))
    return violations


def is_related_file(file_name: str) -> bool:
    """Conventional companion files (tests, stubs, manifests) across ecosystems."""
    return (
        file_name in _RELATED_NAMES
        or file_name.endswith(_RELATED_SUFFIXES)
        or file_name.startswith(_RELATED_PREFIXES)
        or any(infix in file_name for infix in _RELATED_INFIXES)
    )


def analyze_violations_for_expansion(
    violations: Sequence[ScopeViolation],
    current_allowed_paths: Sequence[str],
    max_expansions: int = DEFAULT_MAX_EXPANSIONS,
) -> ScopeExpansionResult:
    current = tuple(current_allowed_paths)

    forbidden = [item for item in violations if item.kind is ViolationKind.IN_FORBIDDEN]
    if forbidden:
        return ScopeExpansionResult(
            can_expand=False,
            expanded_paths=current,
            reason=f"Cannot expand: {len(forbidden)} file(s) match forbidden paths",
        )

    hallucinated = [item for item in violations if item.is_hallucinated]
    if hallucinated:
        return ScopeExpansionResult(
            can_expand=False,
            expanded_paths=current,
            reason=f"Cannot expand: {len(hallucinated)} hallucinated path(s) detected",
        )

    allowed_dirs: set[str] = set()
    for path in current:
        normalized = normalize_path(path)
        slash = normalized.rfind("/")
        if slash > 0:
            allowed_dirs.add(normalized[:slash])

    outside = [item for item in violations if item.kind is ViolationKind.NOT_IN_ALLOWED]
    to_add: list[str] = []

    for violation in outside:
        normalized = normalize_path(violation.file)
        slash = normalized.rfind("/")
        file_dir = normalized[:slash] if slash > 0 else ""
        file_name = normalized[slash + 1 :] if slash > 0 else normalized

        is_sibling = file_dir in allowed_dirs
        is_subdirectory = any(file_dir.startswith(directory + "/") for directory in allowed_dirs)
        is_root_config = not file_dir and _ROOT_CONFIG.search(file_name) is not None
        if is_sibling or is_related_file(file_name) or is_subdirectory or is_root_config:
            to_add.append(normalized)

    if len(to_add) < len(outside):
        # Second pass: allow moves within the same top-level module.
        top_dirs: set[str] = set()
        for directory in allowed_dirs:
            parts = directory.split("/")
            top_dirs.add(parts[0])
            if len(parts) >= 2:
                top_dirs.add("/".join(parts[:2]))
        if any(directory.startswith("packages/") for directory in allowed_dirs):
            top_dirs.add("packages")

        for violation in outside:
            normalized = normalize_path(violation.file)
            if normalized in to_add:
                continue
            parts = normalized.split("/")
            file_top = "/".join(parts[:2]) if len(parts) >= 2 else parts[0]
            if file_top in top_dirs or parts[0] in top_dirs:
                to_add.append(normalized)

    if not to_add:
        return ScopeExpansionResult(
            can_expand=False,
            expanded_paths=current,
            reason=f"Cannot expand: {len(outside)} file(s) in unrelated directories",
        )

    if len(to_add) > max_expansions:
        return ScopeExpansionResult(
            can_expand=False,
            expanded_paths=current,
            reason=f"Cannot expand: {len(to_add)} files need expansion (max: {max_expansions})",
        )

    expanded = tuple(dict.fromkeys((*current, *to_add)))
    return ScopeExpansionResult(can_expand=True, expanded_paths=expanded, added_paths=tuple(to_add))


__all__ = [
    "DEFAULT_MAX_EXPANSIONS",
    "HALLUCINATED_PREFIX",
    "ScopeExpansionResult",
    "ScopeViolation",
    "ViolationKind",
    "analyze_violations_for_expansion",
    "check_scope_violations",
    "is_related_file",
]
