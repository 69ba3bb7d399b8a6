from __future__ import annotations

import json
import logging

from postflight.config import ActionInputs
from postflight.context import is_resolve_conflicts_mode
from postflight.git_ops import RepositoryProbe
from postflight.models import ActionKind, BranchInfo, TaskResult, TriggerContext
from postflight.observability import log_event
from postflight.run_io import RunOutputs


LOGGER = logging.getLogger("postflight.results")

PR_TITLE_PREFIX = "[postflight]"
DEFAULT_TASK_TITLE = "Task finished successfully"


class TaskResultError(RuntimeError):
    """The task output is missing, malformed, or reports errors."""


def decide_action(
    *,
    changed: bool,
    unpushed: bool,
    is_new_branch: bool,
    silent_mode: bool,
    has_entity: bool,
    is_tracker_dispatch: bool,
) -> ActionKind:
    if silent_mode:
        return "NOTHING"
    if (changed or unpushed) and is_new_branch:
        return "CREATE_PR"
    # Working-tree changes win over unpushed commits on an existing branch.
    if changed:
        return "COMMIT_CHANGES"
    if unpushed:
        return "PUSH"
    if has_entity or is_tracker_dispatch:
        return "WRITE_COMMENT"
    return "NOTHING"


class ActionResolver:
    def __init__(self, probe: RepositoryProbe, outputs: RunOutputs) -> None:
        self._probe = probe
        self._outputs = outputs

    def resolve(
        self, context: TriggerContext, branch_info: BranchInfo, *, silent_mode: bool
    ) -> ActionKind:
        if silent_mode:
            action: ActionKind = "NOTHING"
            changed = False
            unpushed = False
        else:
            changed = self._probe.has_working_tree_changes()
            unpushed = self._probe.has_unpushed_commits(
                branch_info.is_new_branch, branch_info.base_branch
            )
            action = decide_action(
                changed=changed,
                unpushed=unpushed,
                is_new_branch=branch_info.is_new_branch,
                silent_mode=False,
                has_entity=context.has_entity,
                is_tracker_dispatch=context.is_tracker_dispatch,
            )
        log_event(
            LOGGER,
            "action_resolved",
            action=action,
            changed=changed,
            unpushed=unpushed,
            is_new_branch=branch_info.is_new_branch,
            silent_mode=silent_mode,
            working_branch=branch_info.working_branch,
        )
        self._outputs.set("ACTION_TO_DO", action)
        return action


def parse_task_result(raw: str | None) -> TaskResult:
    if raw is None or not raw.strip():
        raise TaskResultError(
            "❌ Failed to retrieve task execution results. This could be due to:\n"
            "• The task execution did not complete successfully\n"
            "• The task output was empty or invalid\n"
            "Please check the task execution logs for details."
        )
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise TaskResultError(f"❌ Task output is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise TaskResultError("❌ Task output must be a JSON object")

    raw_errors = data.get("errors") or []
    if not isinstance(raw_errors, list):
        raw_errors = [raw_errors]
    title = data.get("taskName")
    duration = data.get("duration_ms")
    return TaskResult(
        title=title if isinstance(title, str) and title.strip() else None,
        summary=_as_text(data.get("result")),
        errors=tuple(_as_text(item) for item in raw_errors),
        duration_ms=duration if isinstance(duration, int) and not isinstance(duration, bool) else None,
    )


def commit_message(title: str, issue_id: int | None) -> str:
    if issue_id is None:
        return title
    return f"[issue-{issue_id}]\n\n{title}"


def pull_request_title(title: str) -> str:
    return f"{PR_TITLE_PREFIX}: {title}"


def pull_request_body(summary: str, issue_id: int | None) -> str:
    lines = [
        "## 📌 This PR was opened automatically by postflight",
        "",
        "Please review the changes before merging them.",
        "",
    ]
    if issue_id is not None:
        lines.extend([f"- 🔗 **Issue:** Fixes: #{issue_id}", ""])
    lines.extend(["### 📊 Summary:", summary])
    return "\n".join(lines) + "\n"


def handle_results(
    context: TriggerContext,
    branch_info: BranchInfo,
    inputs: ActionInputs,
    *,
    resolver: ActionResolver,
    outputs: RunOutputs,
    raw_task_output: str | None,
) -> ActionKind:
    result = parse_task_result(raw_task_output)
    if result.errors:
        error_list = "\n".join(f"  • {error}" for error in result.errors)
        raise TaskResultError(
            "❌ The task encountered errors during processing.\n\n"
            f"Errors reported:\n{error_list}\n\n"
            "Review the errors above and check the task execution logs for more details."
        )

    action = resolver.resolve(context, branch_info, silent_mode=inputs.silent_mode)

    if result.title is not None:
        title = result.title
    elif is_resolve_conflicts_mode(context, inputs):
        title = f"Resolve conflicts for {context.entity_number} PR"
    else:
        title = DEFAULT_TASK_TITLE
    issue_id = context.entity_number if context.is_user_interaction else None

    outputs.set("TASK_TITLE", title)
    outputs.set("TASK_SUMMARY", result.summary)
    if action in {"CREATE_PR", "COMMIT_CHANGES", "PUSH"}:
        outputs.set("COMMIT_MESSAGE", commit_message(title, issue_id))
    if action == "CREATE_PR":
        outputs.set("PR_TITLE", pull_request_title(title))
        outputs.set("PR_BODY", pull_request_body(result.summary, issue_id))
    log_event(
        LOGGER,
        "task_results_handled",
        action=action,
        title=title,
        issue_id=issue_id,
        duration_ms=result.duration_ms,
    )
    return action


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)
