from __future__ import annotations

from pathlib import Path

import pytest

from postflight.config import (
    DEFAULT_WORKING_BRANCH_PREFIX,
    ConfigError,
    load_config,
    load_tracker_config,
    parse_bool,
)


def _environ(**overrides: str) -> dict[str, str]:
    environ = {
        "GITHUB_EVENT_NAME": "issue_comment",
        "GITHUB_RUN_ID": "77",
        "GITHUB_ACTOR": "alice",
        "GITHUB_REPOSITORY": "octo/widgets",
    }
    environ.update(overrides)
    return environ


def test_load_config_defaults() -> None:
    config = load_config(_environ())

    assert config.inputs.silent_mode is False
    assert config.inputs.create_new_branch_for_pr is False
    assert config.inputs.use_single_comment is False
    assert config.inputs.resolve_conflicts is False
    assert config.inputs.base_branch is None
    assert config.inputs.working_branch_prefix == DEFAULT_WORKING_BRANCH_PREFIX

    env = config.environment
    assert env.event_name == "issue_comment"
    assert env.run_id == "77"
    assert env.workflow == "postflight"
    assert env.server_url == "https://github.com"
    assert env.event_path is None
    assert env.output_path is None
    assert env.uses_default_token is True
    assert config.tracker.is_configured is False


def test_load_config_reads_inputs_and_tokens(tmp_path: Path) -> None:
    config = load_config(
        _environ(
            SILENT_MODE="TRUE",
            CREATE_NEW_BRANCH_FOR_PR="yes",
            USE_SINGLE_COMMENT="1",
            RESOLVE_CONFLICTS="no",
            BASE_BRANCH="develop",
            WORKING_BRANCH_PREFIX="bot/",
            GITHUB_SERVER_URL="https://ghe.example.com/",
            GITHUB_TOKEN="default-token",
            OVERRIDE_GITHUB_TOKEN="custom-token",
            GITHUB_OUTPUT=str(tmp_path / "out"),
            GITHUB_WORKFLOW="Agent",
        )
    )

    assert config.inputs.silent_mode is True
    assert config.inputs.create_new_branch_for_pr is True
    assert config.inputs.use_single_comment is True
    assert config.inputs.resolve_conflicts is False
    assert config.inputs.base_branch == "develop"
    assert config.inputs.working_branch_prefix == "bot/"
    assert config.environment.server_url == "https://ghe.example.com"
    assert config.environment.effective_token == "custom-token"
    assert config.environment.uses_default_token is False
    assert config.environment.output_path == tmp_path / "out"
    assert config.environment.workflow == "Agent"


def test_load_config_requires_event_name_and_run_id() -> None:
    environ = _environ()
    del environ["GITHUB_EVENT_NAME"]
    with pytest.raises(ConfigError, match="GITHUB_EVENT_NAME is required"):
        load_config(environ)

    with pytest.raises(ConfigError, match="GITHUB_RUN_ID is required"):
        load_config(_environ(GITHUB_RUN_ID="  "))


def test_load_config_rejects_bad_boolean() -> None:
    with pytest.raises(ConfigError, match="SILENT_MODE must be a boolean"):
        load_config(_environ(SILENT_MODE="sometimes"))


def test_toml_defaults_are_overridden_by_environment(tmp_path: Path) -> None:
    path = tmp_path / "postflight.toml"
    path.write_text(
        """
[inputs]
silent_mode = true
use_single_comment = "true"
base_branch = "release"
working_branch_prefix = "agent/"
""".strip(),
        encoding="utf-8",
    )

    config = load_config(_environ(SILENT_MODE="false"), path=path)

    assert config.inputs.silent_mode is False
    assert config.inputs.use_single_comment is True
    assert config.inputs.base_branch == "release"
    assert config.inputs.working_branch_prefix == "agent/"


def test_toml_defaults_reject_wrong_types(tmp_path: Path) -> None:
    path = tmp_path / "postflight.toml"
    path.write_text("[inputs]\nsilent_mode = 3\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="inputs.silent_mode must be a boolean"):
        load_config(_environ(), path=path)

    path.write_text("inputs = 5\n", encoding="utf-8")
    with pytest.raises(ConfigError, match=r"\[inputs\] must be a TOML table"):
        load_config(_environ(), path=path)

    path.write_text("[inputs]\nbase_branch = 1\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="inputs.base_branch must be a string"):
        load_config(_environ(), path=path)


def test_load_tracker_config() -> None:
    tracker = load_tracker_config(
        {
            "JIRA_BASE_URL": "https://jira.example.com",
            "JIRA_EMAIL": "bot@example.com",
            "JIRA_API_TOKEN": "secret",
            "JIRA_TRANSITION_IN_REVIEW": "41",
        }
    )
    assert tracker.is_configured is True
    assert tracker.transition_in_progress == "21"
    assert tracker.transition_in_review == "41"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("true", True), (" Yes ", True), ("1", True), ("false", False), ("NO", False), ("0", False)],
)
def test_parse_bool(raw: str, expected: bool) -> None:
    assert parse_bool(raw, key="FLAG") is expected
