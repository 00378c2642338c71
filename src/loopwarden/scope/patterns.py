"""
loopwarden — path patterns and sensitive-content detection

File: src/loopwarden/scope/patterns.py

Purpose
- Compile the small glob dialect used for allow/deny lists into anchored regexes.
- Flag always-denied infrastructure paths, sensitive file names, credential
  material in content, and paths that look invented by the agent.

Functional requirements
- ``**/`` matches zero or more path segments, ``**`` any run of characters
  including ``/``, ``*`` any run excluding ``/``, ``?`` one non-``/`` character.
- Every other regex metacharacter in a pattern is literal.
- Deny lists are consulted before allow lists; an empty allow list allows
  everything not denied.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Final

ALWAYS_DENIED: Final[tuple[str, ...]] = (
    ".env",
    ".env.*",
    "node_modules/**",
    ".git/**",
    ".state/**",
    "dist/**",
    "build/**",
    "coverage/**",
    # Lock files are regenerated by tooling, never hand-edited.
    "package-lock.json",
)

FILE_DENY_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"\.(env|pem|key)$"),
    re.compile(r"credentials", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
)

CREDENTIAL_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"AKIA[0-9A-Z]{16}"),
    re.compile(r"-----BEGIN.*PRIVATE KEY-----"),
    re.compile(r"ghp_[a-zA-Z0-9]{36}"),
    re.compile(r"\bsk-(?:proj-)?[a-zA-Z0-9_-]{32,}"),
    re.compile(r"password\s*[:=]\s*['\"][^'\"]+", re.IGNORECASE),
    re.compile(r"xox[bporas]-[a-zA-Z0-9-]+"),
    re.compile(r"postgres(ql)?://[^\s'\"]+", re.IGNORECASE),
    re.compile(r"mongodb(\+srv)?://[^\s'\"]+", re.IGNORECASE),
    re.compile(r"mysql://[^\s'\"]+", re.IGNORECASE),
    re.compile(r"eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\."),
    re.compile(r"(?:SECRET|TOKEN|API_?KEY|PRIVATE_?KEY)\s*[:=]\s*['\"][^'\"]{8,}", re.IGNORECASE),
)

_GLOBSTAR_SLASH: Final[str] = "\x00GS\x00"
_GLOBSTAR: Final[str] = "\x00G\x00"
_STAR: Final[str] = "\x00S\x00"
_QUESTION: Final[str] = "\x00Q\x00"
_REGEX_SPECIALS: Final[re.Pattern[str]] = re.compile(r"[.+^${}()|\[\]\\]")
_PORCELAIN_LINE: Final[re.Pattern[str]] = re.compile(r"^..\s+(.+?)(?:\s+->\s+(.+))?$")


def normalize_path(file_path: str) -> str:
    """Normalize separators and strip ``./`` prefixes, duplicate and trailing slashes."""
    normalized = file_path.replace("\\", "/")
    normalized = re.sub(r"^\./", "", normalized)
    normalized = re.sub(r"/+", "/", normalized)
    return re.sub(r"/$", "", normalized)


def detect_hallucinated_path(file_path: str) -> str | None:
    """Return why ``file_path`` looks invented, or ``None`` when it looks plausible."""
    segments = [segment for segment in normalize_path(file_path).split("/") if segment]
    for current, following in zip(segments, segments[1:], strict=False):
        if current == following:
            return f"Repeated path segment: '{current}/{current}'"
    if "//" in file_path:
        return "Contains double slashes"
    return None


def detect_credential_in_content(content: str) -> str | None:
    """Describe the first credential-looking match in ``content``, if any."""
    for pattern in CREDENTIAL_PATTERNS:
        if pattern.search(content):
            return f"Content contains potential credential: {pattern.pattern}"
    return None


def is_sensitive_path(file_path: str) -> bool:
    return any(pattern.search(file_path) for pattern in FILE_DENY_PATTERNS)


@lru_cache(maxsize=512)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob into an anchored regex following the dialect above."""
    working = pattern.replace("\\", "/")
    working = (
        working.replace("**/", _GLOBSTAR_SLASH)
        .replace("**", _GLOBSTAR)
        .replace("*", _STAR)
        .replace("?", _QUESTION)
    )
    working = _REGEX_SPECIALS.sub(lambda match: "\\" + match.group(0), working)
    working = (
        working.replace(_GLOBSTAR_SLASH, "(?:.*/)?")
        .replace(_GLOBSTAR, ".*")
        .replace(_STAR, "[^/]*")
        .replace(_QUESTION, "[^/]")
    )
    return re.compile(f"^{working}$", re.DOTALL)


def matches_pattern(file_path: str, pattern: str) -> bool:
    return compile_glob(pattern).match(file_path.replace("\\", "/")) is not None


def matches_any(file_path: str, patterns: tuple[str, ...] | list[str]) -> str | None:
    """Return the first pattern that matches ``file_path``."""
    for pattern in patterns:
        if matches_pattern(file_path, pattern):
            return pattern
    return None


def is_path_allowed(file_path: str, allowed: list[str], denied: list[str]) -> bool:
    normalized = normalize_path(file_path)
    if matches_any(normalized, denied) is not None:
        return False
    if is_sensitive_path(normalized):
        return False
    if not allowed:
        return True
    return matches_any(normalized, allowed) is not None


def normalize_allowed_glob(glob: str) -> str:
    """Directory-style entries (trailing ``/``) cover everything beneath them."""
    return f"{glob}**" if glob.endswith("/") else glob


def parse_changed_files(status_output: str) -> list[str]:
    """Extract changed paths from ``git status --porcelain`` output (rename targets win)."""
    changed: list[str] = []
    for line in status_output.splitlines():
        if not line.strip():
            continue
        match = _PORCELAIN_LINE.match(line)
        if match is None:
            continue
        changed.append(match.group(2) or match.group(1))
    return changed


__all__ = [
    "ALWAYS_DENIED",
    "CREDENTIAL_PATTERNS",
    "FILE_DENY_PATTERNS",
    "compile_glob",
    "detect_credential_in_content",
    "detect_hallucinated_path",
    "is_path_allowed",
    "is_sensitive_path",
    "matches_any",
    "matches_pattern",
    "normalize_allowed_glob",
    "normalize_path",
    "parse_changed_files",
]
