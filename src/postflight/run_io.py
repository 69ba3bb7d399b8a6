from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
import logging
import secrets
from typing import Literal, cast

from postflight.config import ConfigError, parse_bool
from postflight.models import (
    ACTION_KINDS,
    ActionKind,
    BranchInfo,
    FailureFeedback,
    FeedbackPayload,
    SuccessFeedback,
)
from postflight.observability import log_event


LOGGER = logging.getLogger("postflight.run_io")

OutputKey = Literal[
    "PARSED_CONTEXT",
    "BASE_BRANCH",
    "WORKING_BRANCH",
    "IS_NEW_BRANCH",
    "PR_BASE_BRANCH",
    "INIT_COMMENT_ID",
    "ACTION_TO_DO",
    "TASK_TITLE",
    "TASK_SUMMARY",
    "COMMIT_MESSAGE",
    "PR_TITLE",
    "PR_BODY",
    "PR_LINK",
    "EXCEPTION",
]
InputKey = Literal[
    OutputKey,
    "IS_JOB_FAILED",
    "ERROR",
    "COMMIT_SHA",
    "JSON_TASK_OUTPUT",
]


class RunOutputs:
    """Step outputs written in the GitHub Actions ``$GITHUB_OUTPUT`` file format."""

    def __init__(self, path: Path | None) -> None:
        self.path = path
        self.values: dict[OutputKey, str] = {}

    def set(self, key: OutputKey, value: str | int | bool) -> None:
        if isinstance(value, bool):
            text = "true" if value else "false"
        else:
            text = str(value)
        self.values[key] = text
        if self.path is None:
            log_event(LOGGER, "run_output_unrouted", key=key)
            return
        delimiter = f"ghadelimiter_{secrets.token_hex(8)}"
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(f"{key}<<{delimiter}\n{text}\n{delimiter}\n")
        log_event(LOGGER, "run_output_set", key=key, length=len(text))


class RunInputs:
    def __init__(self, environ: Mapping[str, str]) -> None:
        self._environ = environ

    def get(self, key: InputKey) -> str | None:
        value = self._environ.get(key)
        if value is None or not value.strip():
            return None
        return value

    def require(self, key: InputKey) -> str:
        value = self.get(key)
        if value is None:
            raise ConfigError(f"{key} is required by this step but was not provided")
        return value

    @property
    def is_job_failed(self) -> bool:
        raw = self.get("IS_JOB_FAILED")
        if raw is None:
            return False
        return parse_bool(raw, key="IS_JOB_FAILED")

    @property
    def init_comment_id(self) -> int | None:
        raw = self.get("INIT_COMMENT_ID")
        if raw is None:
            return None
        try:
            return int(raw.strip())
        except ValueError as exc:
            raise ConfigError(f"INIT_COMMENT_ID must be an integer, got {raw!r}") from exc

    def branch_info(self) -> BranchInfo:
        is_new_raw = self.require("IS_NEW_BRANCH")
        return BranchInfo(
            base_branch=self.require("BASE_BRANCH").strip(),
            working_branch=self.require("WORKING_BRANCH").strip(),
            is_new_branch=parse_bool(is_new_raw, key="IS_NEW_BRANCH"),
            pr_base_branch=_strip_or_none(self.get("PR_BASE_BRANCH")),
        )

    def action_kind(self) -> ActionKind:
        raw = self.require("ACTION_TO_DO").strip().upper()
        if raw not in ACTION_KINDS:
            raise ConfigError(f"ACTION_TO_DO must be one of {', '.join(ACTION_KINDS)}, got {raw!r}")
        return cast(ActionKind, raw)

    def feedback_payload(self) -> FeedbackPayload:
        if self.is_job_failed:
            return FailureFeedback(error_message=self.get("ERROR"))
        payload = SuccessFeedback(
            action_kind=self.action_kind(),
            pr_link=_strip_or_none(self.get("PR_LINK")),
            commit_sha=_strip_or_none(self.get("COMMIT_SHA")),
            title=self.get("TASK_TITLE"),
            summary=self.get("TASK_SUMMARY"),
            working_branch=_strip_or_none(self.get("WORKING_BRANCH")),
            base_branch=_strip_or_none(self.get("BASE_BRANCH")),
        )
        if payload.action_kind == "COMMIT_CHANGES" and payload.commit_sha is None:
            raise ConfigError("COMMIT_SHA is required when ACTION_TO_DO is COMMIT_CHANGES")
        if payload.action_kind == "CREATE_PR" and payload.pr_link is None:
            if payload.working_branch is None or payload.base_branch is None:
                raise ConfigError(
                    "CREATE_PR needs PR_LINK, or WORKING_BRANCH and BASE_BRANCH for a compare link"
                )
        return payload


def append_step_summary(path: Path, markdown: str) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(markdown)
    log_event(LOGGER, "step_summary_written", length=len(markdown))


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None
