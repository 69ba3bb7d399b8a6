from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
import tomllib
from typing import cast


DEFAULT_WORKFLOW_NAME = "postflight"
DEFAULT_WORKING_BRANCH_PREFIX = "postflight/"
DEFAULT_SERVER_URL = "https://github.com"
_TRUE_VALUES = frozenset({"true", "1", "yes"})
_FALSE_VALUES = frozenset({"false", "0", "no"})


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ActionInputs:
    silent_mode: bool = False
    create_new_branch_for_pr: bool = False
    use_single_comment: bool = False
    resolve_conflicts: bool = False
    base_branch: str | None = None
    working_branch_prefix: str = DEFAULT_WORKING_BRANCH_PREFIX


@dataclass(frozen=True)
class RunEnvironment:
    event_name: str
    event_path: Path | None
    actor: str
    workflow: str
    run_id: str
    repository: str | None
    server_url: str
    github_token: str | None
    override_token: str | None
    output_path: Path | None
    step_summary_path: Path | None

    @property
    def effective_token(self) -> str | None:
        return self.override_token or self.github_token

    @property
    def uses_default_token(self) -> bool:
        return not self.override_token


@dataclass(frozen=True)
class TrackerConfig:
    base_url: str | None
    email: str | None
    api_token: str | None
    transition_in_progress: str = "21"
    transition_in_review: str = "31"

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.email and self.api_token)


@dataclass(frozen=True)
class AppConfig:
    inputs: ActionInputs
    environment: RunEnvironment
    tracker: TrackerConfig


def load_config(environ: Mapping[str, str], *, path: Path | None = None) -> AppConfig:
    defaults: dict[str, object] = {}
    if path is not None:
        defaults = _load_input_defaults(path)

    inputs = ActionInputs(
        silent_mode=_bool_input(environ, defaults, "SILENT_MODE", False),
        create_new_branch_for_pr=_bool_input(
            environ, defaults, "CREATE_NEW_BRANCH_FOR_PR", False
        ),
        use_single_comment=_bool_input(environ, defaults, "USE_SINGLE_COMMENT", False),
        resolve_conflicts=_bool_input(environ, defaults, "RESOLVE_CONFLICTS", False),
        base_branch=_optional_str_input(environ, defaults, "BASE_BRANCH"),
        working_branch_prefix=_optional_str_input(environ, defaults, "WORKING_BRANCH_PREFIX")
        or DEFAULT_WORKING_BRANCH_PREFIX,
    )

    environment = RunEnvironment(
        event_name=_require_env(environ, "GITHUB_EVENT_NAME"),
        event_path=_optional_path(environ, "GITHUB_EVENT_PATH"),
        actor=_optional_env(environ, "GITHUB_ACTOR") or "",
        workflow=_optional_env(environ, "GITHUB_WORKFLOW") or DEFAULT_WORKFLOW_NAME,
        run_id=_require_env(environ, "GITHUB_RUN_ID"),
        repository=_optional_env(environ, "GITHUB_REPOSITORY"),
        server_url=(_optional_env(environ, "GITHUB_SERVER_URL") or DEFAULT_SERVER_URL).rstrip("/"),
        github_token=_optional_env(environ, "GITHUB_TOKEN"),
        override_token=_optional_env(environ, "OVERRIDE_GITHUB_TOKEN"),
        output_path=_optional_path(environ, "GITHUB_OUTPUT"),
        step_summary_path=_optional_path(environ, "GITHUB_STEP_SUMMARY"),
    )

    return AppConfig(inputs=inputs, environment=environment, tracker=load_tracker_config(environ))


def load_tracker_config(environ: Mapping[str, str]) -> TrackerConfig:
    return TrackerConfig(
        base_url=_optional_env(environ, "JIRA_BASE_URL"),
        email=_optional_env(environ, "JIRA_EMAIL"),
        api_token=_optional_env(environ, "JIRA_API_TOKEN"),
        transition_in_progress=_optional_env(environ, "JIRA_TRANSITION_IN_PROGRESS") or "21",
        transition_in_review=_optional_env(environ, "JIRA_TRANSITION_IN_REVIEW") or "31",
    )


def parse_bool(raw: str, *, key: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean (true/false), got {raw!r}")


def _load_input_defaults(path: Path) -> dict[str, object]:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    raw_inputs = data.get("inputs", {})
    if not isinstance(raw_inputs, dict):
        raise ConfigError("[inputs] must be a TOML table")
    return {str(key).upper(): value for key, value in cast(dict[str, object], raw_inputs).items()}


def _bool_input(
    environ: Mapping[str, str], defaults: Mapping[str, object], key: str, default: bool
) -> bool:
    raw = _optional_env(environ, key)
    if raw is not None:
        return parse_bool(raw, key=key)
    if key not in defaults:
        return default
    value = defaults[key]
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return parse_bool(value, key=key)
    raise ConfigError(f"inputs.{key.lower()} must be a boolean")


def _optional_str_input(
    environ: Mapping[str, str], defaults: Mapping[str, object], key: str
) -> str | None:
    raw = _optional_env(environ, key)
    if raw is not None:
        return raw
    value = defaults.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"inputs.{key.lower()} must be a string")
    return value.strip() or None


def _require_env(environ: Mapping[str, str], key: str) -> str:
    value = _optional_env(environ, key)
    if value is None:
        raise ConfigError(f"{key} is required")
    return value


def _optional_env(environ: Mapping[str, str], key: str) -> str | None:
    value = environ.get(key)
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _optional_path(environ: Mapping[str, str], key: str) -> Path | None:
    value = _optional_env(environ, key)
    if value is None:
        return None
    return Path(value)
