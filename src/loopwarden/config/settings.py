"""Typed, frozen views over a validated configuration mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loopwarden import constants
from loopwarden.config.loader import load_config
from loopwarden.spindle.detector import SpindleConfig


@dataclass(frozen=True, slots=True)
class RunSettings:
    step_budget: int = constants.DEFAULT_STEP_BUDGET
    ticket_step_budget: int = constants.DEFAULT_TICKET_STEP_BUDGET
    max_lines_per_ticket: int = constants.DEFAULT_MAX_LINES_PER_TICKET
    max_tool_calls_per_ticket: int = constants.DEFAULT_MAX_TOOL_CALLS_PER_TICKET
    max_prs: int = constants.DEFAULT_MAX_PRS
    min_confidence: int = constants.DEFAULT_MIN_CONFIDENCE
    min_impact_score: int = constants.DEFAULT_MIN_IMPACT_SCORE
    max_proposals_per_scout: int = constants.DEFAULT_MAX_PROPOSALS_PER_SCOUT
    scope: str = constants.DEFAULT_SCOPE
    categories: tuple[str, ...] = constants.DEFAULT_CATEGORIES
    parallel: int = constants.DEFAULT_PARALLEL
    max_cycles: int = constants.DEFAULT_MAX_CYCLES
    create_prs: bool = False
    draft_prs: bool = True
    cross_verify: bool = False
    skip_review: bool = False
    time_budget_ms: int | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> RunSettings:
        values = dict(payload)
        values["categories"] = tuple(values.get("categories", constants.DEFAULT_CATEGORIES))
        values["time_budget_ms"] = values.get("time_budget_ms") or None
        return cls(**values)


@dataclass(frozen=True, slots=True)
class SpindleSettings:
    similarity_threshold: float = 0.8
    max_similar_outputs: int = 3
    max_stall_iterations: int = 5
    max_command_failures: int = 3
    max_qa_ping_pong: int = 3
    max_file_edits: int = 3

    def to_config(self) -> SpindleConfig:
        return SpindleConfig(
            similarity_threshold=self.similarity_threshold,
            max_similar_outputs=self.max_similar_outputs,
            max_stall_iterations=self.max_stall_iterations,
            max_command_failures=self.max_command_failures,
            max_qa_ping_pong=self.max_qa_ping_pong,
            max_file_edits=self.max_file_edits,
        )


@dataclass(frozen=True, slots=True)
class WaveSettings:
    item_timeout_seconds: float | None = None
    pause_seconds: float = 0.0

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> WaveSettings:
        timeout = float(payload.get("item_timeout_seconds", 0.0))
        return cls(
            item_timeout_seconds=timeout if timeout > 0 else None,
            pause_seconds=float(payload.get("pause_seconds", 0.0)),
        )


@dataclass(frozen=True, slots=True)
class LoggingSettings:
    level: str = "INFO"
    json: bool = True
    log_file: str | None = None
    redact_secrets: bool = True

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> LoggingSettings:
        return cls(
            level=str(payload.get("level", "INFO")).upper(),
            json=bool(payload.get("json", True)),
            log_file=payload.get("log_file") or None,
            redact_secrets=bool(payload.get("redact_secrets", True)),
        )


@dataclass(frozen=True, slots=True)
class PathSettings:
    repo_root: Path = Path(".")
    state_dir: str = constants.STATE_DIR_NAME

    @property
    def state_root(self) -> Path:
        return self.repo_root / self.state_dir


@dataclass(frozen=True, slots=True)
class Settings:
    run: RunSettings
    spindle: SpindleSettings
    waves: WaveSettings
    logging: LoggingSettings
    paths: PathSettings

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> Settings:
        paths = config.get("paths", {})
        return cls(
            run=RunSettings.from_mapping(config.get("run", {})),
            spindle=SpindleSettings(**config.get("spindle", {})),
            waves=WaveSettings.from_mapping(config.get("waves", {})),
            logging=LoggingSettings.from_mapping(config.get("logging", {})),
            paths=PathSettings(
                repo_root=Path(paths.get("repo_root", ".")),
                state_dir=paths.get("state_dir", constants.STATE_DIR_NAME),
            ),
        )


def load_settings(
    config_path: str | Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> Settings:
    return Settings.from_mapping(load_config(config_path, environ=environ, overrides=overrides))


__all__ = [
    "LoggingSettings",
    "PathSettings",
    "RunSettings",
    "Settings",
    "SpindleSettings",
    "WaveSettings",
    "load_settings",
]
