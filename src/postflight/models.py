from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, get_args


EventKind = Literal[
    "issues",
    "issue_comment",
    "pull_request",
    "pull_request_review",
    "pull_request_review_comment",
    "push",
    "workflow_dispatch",
    "schedule",
    "tracker_dispatch",
]
ActionKind = Literal["CREATE_PR", "COMMIT_CHANGES", "PUSH", "WRITE_COMMENT", "NOTHING"]
CommentChannel = Literal["review_thread", "issue"]
TokenOwnerType = Literal["User", "Bot"]

EVENT_KINDS: tuple[EventKind, ...] = get_args(EventKind)
ACTION_KINDS: tuple[ActionKind, ...] = get_args(ActionKind)

_USER_INTERACTION_EVENTS: frozenset[EventKind] = frozenset(
    {
        "issues",
        "issue_comment",
        "pull_request",
        "pull_request_review",
        "pull_request_review_comment",
        "push",
    }
)
_PULL_REQUEST_PAYLOAD_EVENTS: frozenset[EventKind] = frozenset(
    {"pull_request", "pull_request_review", "pull_request_review_comment"}
)


@dataclass(frozen=True)
class RepositoryRef:
    owner: str
    name: str
    default_branch: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class PullRequestRef:
    base_ref: str
    head_ref: str
    state: str
    author_login: str


@dataclass(frozen=True)
class TrackerIssue:
    key: str
    summary: str
    description: str


@dataclass(frozen=True)
class TokenOwner:
    login: str
    id: int
    type: TokenOwnerType


@dataclass(frozen=True)
class TriggerContext:
    event_kind: EventKind
    actor: str
    workflow: str
    run_id: str
    repository: RepositoryRef
    token_owner: TokenOwner
    actor_email: str = ""
    event_action: str | None = None
    entity_number: int | None = None
    is_pr: bool = False
    comment_id: int | None = None
    review_id: int | None = None
    push_ref: str | None = None
    pull_request: PullRequestRef | None = None
    tracker_issue: TrackerIssue | None = None
    dispatch_action: str | None = None
    trigger_text: str = ""

    @property
    def has_entity(self) -> bool:
        return self.entity_number is not None

    @property
    def is_tracker_dispatch(self) -> bool:
        return self.event_kind == "tracker_dispatch"

    @property
    def is_user_interaction(self) -> bool:
        return self.event_kind in _USER_INTERACTION_EVENTS

    @property
    def carries_pull_request_payload(self) -> bool:
        return self.event_kind in _PULL_REQUEST_PAYLOAD_EVENTS and self.pull_request is not None

    @property
    def comment_channel(self) -> CommentChannel:
        # Review-comment triggers live in a code-level thread; everything else
        # (issues and PR conversations) shares the issue comment API.
        if self.event_kind == "pull_request_review_comment" and self.comment_id is not None:
            return "review_thread"
        return "issue"


@dataclass(frozen=True)
class BranchInfo:
    base_branch: str
    working_branch: str
    is_new_branch: bool
    pr_base_branch: str | None = None


@dataclass(frozen=True)
class SuccessFeedback:
    action_kind: ActionKind
    pr_link: str | None = None
    commit_sha: str | None = None
    title: str | None = None
    summary: str | None = None
    working_branch: str | None = None
    base_branch: str | None = None


@dataclass(frozen=True)
class FailureFeedback:
    error_message: str | None = None


FeedbackPayload = SuccessFeedback | FailureFeedback


@dataclass(frozen=True)
class TaskResult:
    title: str | None
    summary: str
    errors: tuple[str, ...]
    duration_ms: int | None


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    base_ref: str
    head_ref: str
    state: str
    merged: bool
    author_login: str

    def as_ref(self) -> PullRequestRef:
        state = "merged" if self.merged else self.state
        return PullRequestRef(
            base_ref=self.base_ref,
            head_ref=self.head_ref,
            state=state,
            author_login=self.author_login,
        )


@dataclass(frozen=True)
class IssueComment:
    comment_id: int
    body: str
    user_login: str
    created_at: str


@dataclass(frozen=True)
class ReviewComment:
    comment_id: int
    body: str
    in_reply_to_id: int | None
    user_login: str
    created_at: str


@dataclass(frozen=True)
class CheckRun:
    check_id: int
    name: str
    status: str
    conclusion: str | None
    html_url: str
