from __future__ import annotations

from collections.abc import Sequence
import logging

from postflight.github_gateway import GitHubGateway
from postflight.models import RepositoryRef, TriggerContext
from postflight.observability import log_event, log_warning_event


LOGGER = logging.getLogger("postflight.comments")

COMMENT_SCAN_LIMIT = 100
WORKING_STATUS_TEXT = "Hey, it's postflight! I started working..."
SUCCESS_TEXT = "postflight successfully finished!"
DEFAULT_FAILURE_DETAILS = "Check job logs for more details"


def comment_marker(workflow: str) -> str:
    sanitized = workflow.replace("--", "-").replace(">", "")
    return f"<!-- postflight-comment:{sanitized} -->"


def add_marker(body: str, workflow: str) -> str:
    marker = comment_marker(workflow)
    if marker in body:
        return body
    return f"{marker}\n{body}"


def has_marker(body: str, workflow: str) -> bool:
    return comment_marker(workflow) in body


def job_run_url(server_url: str, repository: RepositoryRef, run_id: str) -> str:
    return f"{server_url}/{repository.owner}/{repository.name}/actions/runs/{run_id}"


def job_run_link(server_url: str, repository: RepositoryRef, run_id: str) -> str:
    return f"[View job run]({job_run_url(server_url, repository, run_id)})"


def compare_url(
    server_url: str, repository: RepositoryRef, base_branch: str, working_branch: str
) -> str:
    return f"{server_url}/{repository.full_name}/compare/{base_branch}...{working_branch}"


def working_status_body(job_link: str, workflow: str) -> str:
    return add_marker(f"{WORKING_STATUS_TEXT}\n\n{job_link}", workflow)


def failure_body(details: str | None, job_link: str) -> str:
    return f"postflight is failed!\n\nDetails: {details or DEFAULT_FAILURE_DETAILS}\n\n{job_link}\n"


def pr_created_body(pr_link: str) -> str:
    return f"{SUCCESS_TEXT}\n PR link: [{pr_link}]({pr_link})"


def manual_pr_body(create_pr_url: str) -> str:
    return f"{SUCCESS_TEXT}\n\nYou can create a PR manually: [Create Pull Request]({create_pr_url})"


def commit_pushed_body(commit_sha: str, title: str, summary: str) -> str:
    return f"{SUCCESS_TEXT}\n\n {title}\n{summary} Commit sha: {commit_sha}"


def task_summary_body(title: str, summary: str) -> str:
    return f"{SUCCESS_TEXT}\n\nResult: {title} \n {summary}"


class CommentLocator:
    """Finds the comment a previous run of the same workflow left on the entity."""

    def __init__(self, github: GitHubGateway) -> None:
        self._github = github

    def find(self, context: TriggerContext) -> int | None:
        entity_number = context.entity_number
        if entity_number is None:
            return None

        try:
            if context.comment_channel == "review_thread" and context.comment_id is not None:
                parent_id = context.comment_id
                recent = self._github.list_review_comments(entity_number)[-COMMENT_SCAN_LIMIT:]
                candidates: Sequence[tuple[int, str]] = [
                    (comment.comment_id, comment.body)
                    for comment in recent
                    if comment.comment_id == parent_id or comment.in_reply_to_id == parent_id
                ]
            else:
                recent_issue = self._github.list_issue_comments(entity_number)[-COMMENT_SCAN_LIMIT:]
                candidates = [(comment.comment_id, comment.body) for comment in recent_issue]
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "tracked_comment_lookup_failed",
                entity_number=entity_number,
                channel=context.comment_channel,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return None

        for comment_id, body in reversed(candidates):
            if body and has_marker(body, context.workflow):
                log_event(
                    LOGGER,
                    "tracked_comment_found",
                    entity_number=entity_number,
                    comment_id=comment_id,
                    candidates=len(candidates),
                )
                return comment_id

        log_event(
            LOGGER,
            "tracked_comment_missing",
            entity_number=entity_number,
            candidates=len(candidates),
        )
        return None
