"""Unit tests for configuration loading, precedence and typed settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from loopwarden.config import (
    ConfigLoadError,
    default_config,
    env_name_for_path,
    load_config,
    load_settings,
    validate_config,
)
from loopwarden.control_plane.run_manager import RunOptions


def _write_config(tmp_path: Path, text: str = "") -> Path:
    path = tmp_path / "loopwarden.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_empty_file_yields_defaults(tmp_path: Path) -> None:
    config = load_config(_write_config(tmp_path), environ={})
    expected = default_config()

    assert config["run"] == expected["run"]
    assert config["spindle"] == expected["spindle"]
    assert config["paths"]["repo_root"] == tmp_path.resolve().as_posix()


def test_missing_explicit_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_precedence_overrides_env_file_defaults(tmp_path: Path) -> None:
    path = _write_config(tmp_path, "[run]\nstep_budget = 100\nmax_prs = 2\n")
    environ = {"LOOPWARDEN_RUN__STEP_BUDGET": "150", "HOME": "/ignored"}

    from_env = load_config(path, environ=environ)
    overridden = load_config(path, environ=environ, overrides={"run.step_budget": 175})

    assert from_env["run"]["step_budget"] == 150
    assert from_env["run"]["max_prs"] == 2
    assert overridden["run"]["step_budget"] == 175
    assert overridden["run"]["ticket_step_budget"] == 12


def test_env_values_are_coerced(tmp_path: Path) -> None:
    config = load_config(
        _write_config(tmp_path),
        environ={
            "LOOPWARDEN_RUN__CATEGORIES": "docs, test,",
            "LOOPWARDEN_RUN__DRAFT_PRS": "off",
            "LOOPWARDEN_SPINDLE__SIMILARITY_THRESHOLD": "0.9",
            "LOOPWARDEN_LOGGING__LEVEL": "debug",
        },
    )

    assert config["run"]["categories"] == ["docs", "test"]
    assert config["run"]["draft_prs"] is False
    assert config["spindle"]["similarity_threshold"] == 0.9
    assert config["logging"]["level"] == "debug"


@pytest.mark.parametrize(
    ("environ", "message"),
    [
        (
            {"LOOPWARDEN_RUN__STEP_BUDGET": "lots"},
            "LOOPWARDEN_RUN__STEP_BUDGET -> run.step_budget must be an integer",
        ),
        ({"LOOPWARDEN_RUN__CREATE_PRS": "maybe"}, "must be a boolean"),
        ({"LOOPWARDEN_WAVES__PAUSE_SECONDS": "soon"}, "must be a number"),
        ({"LOOPWARDEN_RUN__NOPE": "1"}, "does not name a known config key"),
        (
            {"LOOPWARDEN_RUN__PARALLEL": "9"},
            r"run.parallel: must be between 1 and 5 \(from environment\)",
        ),
    ],
)
def test_env_errors(tmp_path: Path, environ: dict[str, str], message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message):
        load_config(_write_config(tmp_path), environ=environ)


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("[run]\nnope = 1\n", "run.nope: unknown key"),
        ("[extra]\nx = 1\n", "extra: unknown section"),
        ('[run]\nstep_budget = "x"\n', "run.step_budget: expected integer, got str"),
        ("[spindle]\nsimilarity_threshold = 1.5\n", r"must be in \(0, 1\]"),
        ("[run\n", "invalid TOML"),
    ],
)
def test_file_errors(tmp_path: Path, text: str, message: str) -> None:
    with pytest.raises(ConfigLoadError, match=message):
        load_config(_write_config(tmp_path, text), environ={})


def test_section_overrides_and_invalid_override(tmp_path: Path) -> None:
    path = _write_config(tmp_path)
    config = load_config(path, environ={}, overrides={"spindle": {"max_file_edits": 4}})
    assert config["spindle"]["max_file_edits"] == 4
    assert config["spindle"]["max_stall_iterations"] == 5

    with pytest.raises(ConfigLoadError, match=r"from overrides"):
        load_config(path, environ={}, overrides={"run.max_prs": 0})


def test_repo_root_resolves_relative_to_config_dir(tmp_path: Path) -> None:
    config_dir = tmp_path / "conf"
    config_dir.mkdir()
    path = _write_config(config_dir, '[paths]\nrepo_root = "../repo"\n')

    config = load_config(path, environ={})

    assert config["paths"]["repo_root"] == (tmp_path.resolve() / "repo").as_posix()


def test_validate_config_collects_all_issues() -> None:
    issues = validate_config({"run": {"a": 1, "b": 2}, "bogus": {}})
    assert [issue.path for issue in issues] == ["run.a", "run.b", "bogus"]


def test_env_name_for_path() -> None:
    assert env_name_for_path(("run", "step_budget")) == "LOOPWARDEN_RUN__STEP_BUDGET"


def test_load_settings_builds_typed_views(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        "[run]\ntime_budget_ms = 60000\ncategories = [\"docs\"]\n"
        "[waves]\nitem_timeout_seconds = 5\n"
        "[logging]\nlevel = \"warning\"\n",
    )
    settings = load_settings(path, environ={})

    assert settings.run.time_budget_ms == 60000
    assert settings.run.categories == ("docs",)
    assert settings.waves.item_timeout_seconds == 5.0
    assert settings.logging.level == "WARNING"
    assert settings.logging.log_file is None
    assert settings.spindle.to_config().max_stall_iterations == 5
    assert settings.paths.state_root == Path(tmp_path.resolve().as_posix()) / ".state"

    options = RunOptions.from_settings(settings.run, "proj", parallel=3)
    assert options.parallel == 3
    assert options.time_budget_ms == 60000
    assert options.categories == ("docs",)


def test_zero_time_budget_disables_the_wall_clock(tmp_path: Path) -> None:
    settings = load_settings(_write_config(tmp_path), environ={})
    assert settings.run.time_budget_ms is None
    assert settings.waves.item_timeout_seconds is None
    assert RunOptions.from_settings(settings.run, "proj").time_budget_ms is None
