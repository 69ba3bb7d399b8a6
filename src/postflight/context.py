from __future__ import annotations

from dataclasses import asdict, replace
import json
import logging
from pathlib import Path
import re
from typing import cast

from postflight.config import ActionInputs, ConfigError, RunEnvironment
from postflight.models import (
    EVENT_KINDS,
    EventKind,
    PullRequestRef,
    RepositoryRef,
    TokenOwner,
    TrackerIssue,
    TriggerContext,
)
from postflight.observability import log_event


LOGGER = logging.getLogger("postflight.context")

RESOLVE_CONFLICTS_ACTION = "resolve-conflicts"
CODE_REVIEW_ACTION = "code-review"
TRACKER_EVENT_ACTION = "jira_event"
_RESOLVE_CONFLICTS_PHRASE = re.compile(r"resolve conflicts", re.IGNORECASE)


def load_event_payload(path: Path | None) -> dict[str, object]:
    if path is None:
        return {}
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    payload_obj = _as_object_dict(payload)
    if payload_obj is None:
        raise ConfigError(f"Event payload at {path} must be a JSON object")
    return payload_obj


def build_trigger_context(
    environment: RunEnvironment,
    payload: dict[str, object],
    token_owner: TokenOwner,
) -> TriggerContext:
    event_name = environment.event_name
    sender = _as_object_dict(payload.get("sender"))
    sender_id = _as_optional_int(sender.get("id")) if sender else None
    actor_email = (
        f"{sender_id}+{environment.actor}@users.noreply.github.com" if sender_id is not None else ""
    )
    base = TriggerContext(
        event_kind="schedule",
        actor=environment.actor,
        actor_email=actor_email,
        workflow=environment.workflow,
        run_id=environment.run_id,
        repository=repository_from_payload(payload, environment),
        token_owner=token_owner,
        event_action=_as_optional_str(payload.get("action")),
    )

    if event_name == "issues":
        issue = _require_object(payload, "issue")
        context = replace(
            base,
            event_kind="issues",
            entity_number=_require_int(issue, "number"),
        )
    elif event_name == "issue_comment":
        issue = _require_object(payload, "issue")
        comment = _require_object(payload, "comment")
        context = replace(
            base,
            event_kind="issue_comment",
            entity_number=_require_int(issue, "number"),
            is_pr=issue.get("pull_request") is not None,
            comment_id=_require_int(comment, "id"),
            trigger_text=_as_string(comment.get("body")),
        )
    elif event_name in {"pull_request", "pull_request_target"}:
        pull_request = _require_object(payload, "pull_request")
        context = replace(
            base,
            event_kind="pull_request",
            entity_number=_require_int(pull_request, "number"),
            is_pr=True,
            pull_request=_pull_request_ref(pull_request),
        )
    elif event_name == "pull_request_review":
        pull_request = _require_object(payload, "pull_request")
        review = _require_object(payload, "review")
        context = replace(
            base,
            event_kind="pull_request_review",
            entity_number=_require_int(pull_request, "number"),
            is_pr=True,
            review_id=_require_int(review, "id"),
            pull_request=_pull_request_ref(pull_request),
            trigger_text=_as_string(review.get("body")),
        )
    elif event_name == "pull_request_review_comment":
        pull_request = _require_object(payload, "pull_request")
        comment = _require_object(payload, "comment")
        context = replace(
            base,
            event_kind="pull_request_review_comment",
            entity_number=_require_int(pull_request, "number"),
            is_pr=True,
            comment_id=_require_int(comment, "id"),
            pull_request=_pull_request_ref(pull_request),
            trigger_text=_as_string(comment.get("body")),
        )
    elif event_name == "push":
        context = replace(base, event_kind="push", push_ref=_as_optional_str(payload.get("ref")))
    elif event_name == "workflow_dispatch":
        context = _workflow_dispatch_context(base, payload)
    elif event_name == "schedule":
        context = base
    else:
        raise ConfigError(f"Unsupported event type: {event_name}")

    log_event(
        LOGGER,
        "trigger_context_built",
        event_kind=context.event_kind,
        entity_number=context.entity_number,
        is_pr=context.is_pr,
        repo_full_name=context.repository.full_name,
    )
    return context


def is_resolve_conflicts_mode(context: TriggerContext, inputs: ActionInputs) -> bool:
    if inputs.resolve_conflicts:
        return True
    if context.dispatch_action == RESOLVE_CONFLICTS_ACTION:
        return True
    if context.event_kind in {
        "issue_comment",
        "pull_request_review",
        "pull_request_review_comment",
    }:
        return _RESOLVE_CONFLICTS_PHRASE.search(context.trigger_text) is not None
    return False


def context_to_json(context: TriggerContext) -> str:
    return json.dumps(asdict(context), sort_keys=True)


def context_from_json(text: str) -> TriggerContext:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Serialized trigger context is not valid JSON: {exc}") from exc
    data_obj = _as_object_dict(data)
    if data_obj is None:
        raise ConfigError("Serialized trigger context must be a JSON object")

    event_kind = data_obj.get("event_kind")
    if event_kind not in EVENT_KINDS:
        raise ConfigError(f"Serialized trigger context has unknown event kind: {event_kind!r}")

    repository = _require_object(data_obj, "repository")
    token_owner = _require_object(data_obj, "token_owner")
    owner_type = token_owner.get("type")
    if owner_type not in {"User", "Bot"}:
        raise ConfigError(f"Serialized token owner has unknown type: {owner_type!r}")
    pull_request = _as_object_dict(data_obj.get("pull_request"))
    tracker_issue = _as_object_dict(data_obj.get("tracker_issue"))

    return TriggerContext(
        event_kind=cast(EventKind, event_kind),
        actor=_as_string(data_obj.get("actor")),
        actor_email=_as_string(data_obj.get("actor_email")),
        workflow=_as_string(data_obj.get("workflow")),
        run_id=_as_string(data_obj.get("run_id")),
        repository=RepositoryRef(
            owner=_as_string(repository.get("owner")),
            name=_as_string(repository.get("name")),
            default_branch=_as_string(repository.get("default_branch")),
        ),
        token_owner=TokenOwner(
            login=_as_string(token_owner.get("login")),
            id=_require_int(token_owner, "id"),
            type="Bot" if owner_type == "Bot" else "User",
        ),
        event_action=_as_optional_str(data_obj.get("event_action")),
        entity_number=_as_optional_int(data_obj.get("entity_number")),
        is_pr=data_obj.get("is_pr") is True,
        comment_id=_as_optional_int(data_obj.get("comment_id")),
        review_id=_as_optional_int(data_obj.get("review_id")),
        push_ref=_as_optional_str(data_obj.get("push_ref")),
        pull_request=(
            PullRequestRef(
                base_ref=_as_string(pull_request.get("base_ref")),
                head_ref=_as_string(pull_request.get("head_ref")),
                state=_as_string(pull_request.get("state")),
                author_login=_as_string(pull_request.get("author_login")),
            )
            if pull_request is not None
            else None
        ),
        tracker_issue=(
            TrackerIssue(
                key=_as_string(tracker_issue.get("key")),
                summary=_as_string(tracker_issue.get("summary")),
                description=_as_string(tracker_issue.get("description")),
            )
            if tracker_issue is not None
            else None
        ),
        dispatch_action=_as_optional_str(data_obj.get("dispatch_action")),
        trigger_text=_as_string(data_obj.get("trigger_text")),
    )


def _workflow_dispatch_context(base: TriggerContext, payload: dict[str, object]) -> TriggerContext:
    inputs = _as_object_dict(payload.get("inputs")) or {}
    action = _as_optional_str(inputs.get("action"))
    dispatch = replace(base, event_kind="workflow_dispatch", dispatch_action=action)

    if action in {RESOLVE_CONFLICTS_ACTION, CODE_REVIEW_ACTION}:
        return replace(
            dispatch,
            is_pr=True,
            entity_number=_as_optional_int(inputs.get("prNumber")),
        )
    if action == TRACKER_EVENT_ACTION:
        issue_key = _as_string(inputs.get("issue_key")).strip()
        issue_summary = _as_string(inputs.get("issue_summary")).strip()
        if not issue_key or not issue_summary:
            raise ConfigError("Missing tracker issue key or summary in workflow_dispatch inputs")
        return replace(
            dispatch,
            event_kind="tracker_dispatch",
            tracker_issue=TrackerIssue(
                key=issue_key,
                summary=issue_summary,
                description=_as_string(inputs.get("issue_description")),
            ),
        )
    return dispatch


def repository_from_payload(
    payload: dict[str, object], environment: RunEnvironment
) -> RepositoryRef:
    repository = _as_object_dict(payload.get("repository"))
    if repository is not None:
        owner = _as_object_dict(repository.get("owner"))
        owner_login = _as_string(owner.get("login") if owner else None)
        name = _as_string(repository.get("name"))
        default_branch = _as_string(repository.get("default_branch")) or "main"
        if owner_login and name:
            return RepositoryRef(owner=owner_login, name=name, default_branch=default_branch)

    if environment.repository and "/" in environment.repository:
        owner_login, name = environment.repository.split("/", 1)
        return RepositoryRef(owner=owner_login, name=name, default_branch="main")
    raise ConfigError("Unable to determine repository from event payload or GITHUB_REPOSITORY")


def _pull_request_ref(pull_request: dict[str, object]) -> PullRequestRef:
    base = _require_object(pull_request, "base")
    head = _require_object(pull_request, "head")
    user = _as_object_dict(pull_request.get("user"))
    state = _as_string(pull_request.get("state"))
    if pull_request.get("merged") is True:
        state = "merged"
    return PullRequestRef(
        base_ref=_as_string(base.get("ref")),
        head_ref=_as_string(head.get("ref")),
        state=state,
        author_login=_as_string(user.get("login") if user else None),
    )


def _require_object(data: dict[str, object], key: str) -> dict[str, object]:
    value = _as_object_dict(data.get(key))
    if value is None:
        raise ConfigError(f"Event payload is missing object field {key!r}")
    return value


def _require_int(data: dict[str, object], key: str) -> int:
    value = _as_optional_int(data.get(key))
    if value is None:
        raise ConfigError(f"Event payload is missing integer field {key!r}")
    return value


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = _as_string(value).strip()
    return text or None


def _as_optional_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ConfigError(f"Expected an integer, got {value!r}") from exc
    return None
