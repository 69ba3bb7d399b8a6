from __future__ import annotations

from collections.abc import Callable
import logging

from postflight.comments import (
    CommentLocator,
    add_marker,
    commit_pushed_body,
    compare_url,
    failure_body,
    job_run_link,
    manual_pr_body,
    pr_created_body,
    task_summary_body,
    working_status_body,
)
from postflight.github_gateway import GitHubGateway
from postflight.models import FailureFeedback, FeedbackPayload, SuccessFeedback, TriggerContext
from postflight.observability import log_event, log_warning_event
from postflight.retry import execute_with_retry
from postflight.run_io import RunOutputs
from postflight.tracker import JiraClient


LOGGER = logging.getLogger("postflight.feedback")

TrackerFactory = Callable[[], JiraClient]


class FeedbackCommentError(RuntimeError):
    """The tracked status comment could not be created or updated."""


def render_feedback_body(
    payload: FeedbackPayload,
    context: TriggerContext,
    *,
    server_url: str,
) -> str:
    """Render the terminal status text for ``payload``, without the workflow marker."""
    if isinstance(payload, FailureFeedback):
        link = job_run_link(server_url, context.repository, context.run_id)
        return failure_body(payload.error_message, link)

    action = payload.action_kind
    if action == "COMMIT_CHANGES":
        return commit_pushed_body(
            payload.commit_sha or "",
            payload.title or "",
            payload.summary or "",
        )
    if action == "PUSH":
        return task_summary_body(
            payload.title or "Changes pushed",
            payload.summary or "Unpushed commits have been pushed to the remote branch",
        )
    if action == "CREATE_PR":
        if payload.pr_link:
            return pr_created_body(payload.pr_link)
        return manual_pr_body(
            compare_url(
                server_url,
                context.repository,
                payload.base_branch or context.repository.default_branch,
                payload.working_branch or "",
            )
        )
    return task_summary_body(
        payload.title or "Task completed",
        payload.summary or "No additional details",
    )


class FeedbackReconciler:
    def __init__(
        self,
        github: GitHubGateway,
        *,
        locator: CommentLocator,
        outputs: RunOutputs,
        server_url: str,
        tracker_factory: TrackerFactory | None = None,
    ) -> None:
        self._github = github
        self._locator = locator
        self._outputs = outputs
        self._server_url = server_url
        self._tracker_factory = tracker_factory

    def post_working_status(
        self,
        context: TriggerContext,
        *,
        silent_mode: bool,
        use_single_comment: bool,
    ) -> int | None:
        if silent_mode:
            log_event(LOGGER, "working_comment_skipped", reason="silent_mode")
            return None
        entity_number = context.entity_number
        if entity_number is None:
            log_event(
                LOGGER,
                "working_comment_skipped",
                reason="no_entity",
                event_kind=context.event_kind,
            )
            return None

        body = working_status_body(
            job_run_link(self._server_url, context.repository, context.run_id),
            context.workflow,
        )
        self._acknowledge_trigger(context)

        try:
            existing_id = self._locator.find(context) if use_single_comment else None
            if existing_id is not None:
                self._update_comment(context, existing_id, body)
                comment_id = existing_id
            else:
                comment_id = self._create_comment(context, entity_number, body)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "working_comment_failed",
                entity_number=entity_number,
                error_type=type(exc).__name__,
            )
            raise FeedbackCommentError(
                f"❌ Failed to create/update initial feedback comment on {self._github.full_name}. "
                "This could be due to:\n"
                "• Insufficient token permissions (needs 'issues:write' or 'pull_requests:write' scope)\n"
                "• GitHub API rate limits\n"
                "• The issue or PR may be locked or deleted\n"
                "• Network connectivity issues\n"
                f"Original error: {exc}"
            ) from exc

        log_event(
            LOGGER,
            "working_comment_posted",
            entity_number=entity_number,
            comment_id=comment_id,
            reused=existing_id is not None,
        )
        self._outputs.set("INIT_COMMENT_ID", comment_id)
        return comment_id

    def start_tracker_issue(self, context: TriggerContext) -> None:
        if context.tracker_issue is None:
            return
        try:
            self._tracker().start_issue(context.tracker_issue.key)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "tracker_start_failed",
                issue_key=context.tracker_issue.key,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def post_completion(
        self,
        payload: FeedbackPayload,
        context: TriggerContext,
        init_comment_id: int | None,
    ) -> None:
        if context.is_tracker_dispatch:
            self._post_tracker_feedback(payload, context)
            return

        if init_comment_id is None:
            log_event(LOGGER, "feedback_comment_skipped", reason="no_init_comment")
            return

        body = add_marker(
            render_feedback_body(payload, context, server_url=self._server_url),
            context.workflow,
        )
        try:
            self._update_comment(context, init_comment_id, body)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "feedback_comment_failed",
                comment_id=init_comment_id,
                error_type=type(exc).__name__,
            )
            raise FeedbackCommentError(
                f"❌ Failed to update feedback comment on {self._github.full_name}. "
                "This could be due to:\n"
                "• Insufficient token permissions (needs 'issues:write' or 'pull_requests:write' scope)\n"
                "• GitHub API rate limits\n"
                "• The comment may have been deleted\n"
                "• Network connectivity issues\n"
                f"Original error: {exc}"
            ) from exc
        log_event(
            LOGGER,
            "feedback_comment_updated",
            comment_id=init_comment_id,
            failed=isinstance(payload, FailureFeedback),
        )

    def _post_tracker_feedback(self, payload: FeedbackPayload, context: TriggerContext) -> None:
        issue = context.tracker_issue
        if issue is None:
            log_warning_event(LOGGER, "tracker_feedback_skipped", reason="no_tracker_issue")
            return
        text = render_feedback_body(payload, context, server_url=self._server_url)
        try:
            client = self._tracker()
            client.add_comment(issue.key, text)
            if (
                isinstance(payload, SuccessFeedback)
                and payload.action_kind == "CREATE_PR"
                and payload.pr_link
            ):
                client.move_issue_to_review(issue.key)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "tracker_feedback_failed",
                issue_key=issue.key,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return
        log_event(LOGGER, "tracker_feedback_posted", issue_key=issue.key)

    def _acknowledge_trigger(self, context: TriggerContext) -> None:
        try:
            if context.event_kind == "pull_request_review" and context.review_id is not None:
                self._react_to_review(context, context.review_id)
            elif context.event_kind == "issue_comment" and context.comment_id is not None:
                self._github.add_issue_comment_reaction(context.comment_id, "+1")
            elif (
                context.event_kind == "pull_request_review_comment"
                and context.comment_id is not None
            ):
                self._github.add_review_comment_reaction(context.comment_id, "+1")
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "trigger_reaction_failed",
                event_kind=context.event_kind,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _react_to_review(self, context: TriggerContext, review_id: int) -> None:
        if context.entity_number is None:
            return
        comments = self._github.list_review_comments_for_review(context.entity_number, review_id)
        for comment in comments:
            try:
                self._github.add_review_comment_reaction(comment.comment_id, "+1")
            except Exception as exc:  # noqa: BLE001
                log_warning_event(
                    LOGGER,
                    "review_comment_reaction_failed",
                    comment_id=comment.comment_id,
                    error_type=type(exc).__name__,
                )

    def _create_comment(self, context: TriggerContext, entity_number: int, body: str) -> int:
        if context.comment_channel == "review_thread" and context.comment_id is not None:
            return self._github.create_review_comment_reply(entity_number, context.comment_id, body)
        return self._github.create_issue_comment(entity_number, body)

    def _update_comment(self, context: TriggerContext, comment_id: int, body: str) -> None:
        if context.comment_channel == "review_thread":
            execute_with_retry(
                lambda: self._github.update_review_comment(comment_id, body),
                "update_review_comment",
            )
            return
        execute_with_retry(
            lambda: self._github.update_issue_comment(comment_id, body),
            "update_issue_comment",
        )

    def _tracker(self) -> JiraClient:
        if self._tracker_factory is None:
            raise RuntimeError("No tracker client configured")
        return self._tracker_factory()
