from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Literal, cast
from urllib.parse import urlencode

from postflight.models import (
    CheckRun,
    IssueComment,
    PullRequest,
    PullRequestSnapshot,
    ReviewComment,
    TokenOwner,
)
from postflight.observability import log_event
from postflight.shell import run


LOGGER = logging.getLogger("postflight.github_gateway")
ReactionContent = Literal["+1", "-1", "laugh", "confused", "heart", "hooray", "rocket", "eyes"]
_PAGE_SIZE = 100
_VIEWER_QUERY = "query { viewer { login databaseId } }"


class GitHubApiError(RuntimeError):
    """GitHub request failure; ``status_code`` is None when no HTTP status was obtained."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_issue_comments(self, issue_number: int) -> list[IssueComment]:
        comments: list[IssueComment] = []
        for item in self._list_pages(f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"):
            user_obj = _as_object_dict(item.get("user"))
            comments.append(
                IssueComment(
                    comment_id=_as_int(item.get("id"), field="id"),
                    body=_as_string(item.get("body")),
                    user_login=_as_string(user_obj.get("login") if user_obj else None),
                    created_at=_as_string(item.get("created_at")),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_comments",
            issue_number=issue_number,
            count=len(comments),
        )
        return comments

    def list_review_comments(self, pr_number: int) -> list[ReviewComment]:
        comments = [
            _parse_review_comment(item)
            for item in self._list_pages(f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments")
        ]
        log_event(
            LOGGER,
            "github_read",
            endpoint="review_comments",
            pr_number=pr_number,
            count=len(comments),
        )
        return comments

    def list_review_comments_for_review(self, pr_number: int, review_id: int) -> list[ReviewComment]:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/reviews/{review_id}/comments"
        comments = [_parse_review_comment(item) for item in self._list_pages(path)]
        log_event(
            LOGGER,
            "github_read",
            endpoint="review_comments_for_review",
            pr_number=pr_number,
            review_id=review_id,
            count=len(comments),
        )
        return comments

    def create_issue_comment(self, issue_number: int, body: str) -> int:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        comment_id = self._created_id(self._api_json("POST", path, payload={"body": body}))
        log_event(
            LOGGER,
            "github_issue_comment_created",
            issue_number=issue_number,
            comment_id=comment_id,
        )
        return comment_id

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/comments/{comment_id}"
        self._api_json("PATCH", path, payload={"body": body})
        log_event(LOGGER, "github_issue_comment_updated", comment_id=comment_id)

    def create_review_comment_reply(self, pr_number: int, review_comment_id: int, body: str) -> int:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/comments/{review_comment_id}/replies"
        comment_id = self._created_id(self._api_json("POST", path, payload={"body": body}))
        log_event(
            LOGGER,
            "github_review_reply_created",
            pr_number=pr_number,
            review_comment_id=review_comment_id,
            comment_id=comment_id,
        )
        return comment_id

    def update_review_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/pulls/comments/{comment_id}"
        self._api_json("PATCH", path, payload={"body": body})
        log_event(LOGGER, "github_review_comment_updated", comment_id=comment_id)

    def add_issue_comment_reaction(self, comment_id: int, content: ReactionContent) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/comments/{comment_id}/reactions"
        self._api_json("POST", path, payload={"content": content})
        log_event(LOGGER, "github_reaction_added", target="issue_comment", comment_id=comment_id)

    def add_review_comment_reaction(self, comment_id: int, content: ReactionContent) -> None:
        path = f"/repos/{self.owner}/{self.name}/pulls/comments/{comment_id}/reactions"
        self._api_json("POST", path, payload={"content": content})
        log_event(LOGGER, "github_reaction_added", target="review_comment", comment_id=comment_id)

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for pull request")

        head = _as_object_dict(payload_obj.get("head"))
        base = _as_object_dict(payload_obj.get("base"))
        if head is None or base is None:
            raise GitHubApiError("Unexpected GitHub response: missing pull request head/base")
        user_obj = _as_object_dict(payload_obj.get("user"))

        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            base_ref=_as_string(base.get("ref")),
            head_ref=_as_string(head.get("ref")),
            state=_as_string(payload_obj.get("state")),
            merged=payload_obj.get("merged") is True,
            author_login=_as_string(user_obj.get("login") if user_obj else None),
        )
        log_event(LOGGER, "github_read", endpoint="pull_request", pr_number=snapshot.number)
        return snapshot

    def create_pull_request(self, title: str, head: str, base: str, body: str) -> PullRequest:
        path = f"/repos/{self.owner}/{self.name}/pulls"
        try:
            payload_obj = _as_object_dict(
                self._api_json(
                    "POST",
                    path,
                    payload={"title": title, "head": head, "base": base, "body": body},
                )
            )
            if payload_obj is None:
                raise GitHubApiError("Unexpected GitHub response: expected object for PR")
            number = _as_int(payload_obj.get("number"), field="number")
            html_url = _as_string(payload_obj.get("html_url"))
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_pr_create_failed",
                repo_full_name=self.full_name,
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=self.full_name,
            pr_number=number,
            pr_url=html_url,
            base=base,
            head=head,
        )
        return PullRequest(number=number, html_url=html_url)

    def list_check_runs(self, ref: str) -> tuple[CheckRun, ...]:
        query = urlencode({"per_page": _PAGE_SIZE})
        path = f"/repos/{self.owner}/{self.name}/commits/{ref}/check-runs?{query}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for check runs")
        runs_payload = payload_obj.get("check_runs")
        if not isinstance(runs_payload, list):
            raise GitHubApiError("Unexpected GitHub response: expected check_runs list")

        runs: list[CheckRun] = []
        for item in runs_payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            conclusion = item_obj.get("conclusion")
            runs.append(
                CheckRun(
                    check_id=_as_int(item_obj.get("id"), field="id"),
                    name=_as_string(item_obj.get("name")),
                    status=_as_string(item_obj.get("status")).strip().lower(),
                    conclusion=conclusion.strip().lower() if isinstance(conclusion, str) else None,
                    html_url=_as_string(item_obj.get("html_url")),
                )
            )
        log_event(LOGGER, "github_read", endpoint="check_runs", ref=ref, count=len(runs))
        return tuple(sorted(runs, key=lambda check: check.check_id))

    def get_job_logs(self, job_id: int) -> str:
        path = f"/repos/{self.owner}/{self.name}/actions/jobs/{job_id}/logs"
        _status, text = self._request("GET", path, payload=None)
        log_event(LOGGER, "github_read", endpoint="job_logs", job_id=job_id, length=len(text))
        return text

    def get_authenticated_user(self) -> TokenOwner:
        payload_obj = _as_object_dict(self._api_json("GET", "/user"))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for user")
        owner_type = "Bot" if _as_string(payload_obj.get("type")) == "Bot" else "User"
        owner = TokenOwner(
            login=_as_string(payload_obj.get("login")),
            id=_as_int(payload_obj.get("id"), field="id"),
            type=owner_type,
        )
        log_event(LOGGER, "github_read", endpoint="user", login=owner.login, type=owner.type)
        return owner

    def get_viewer(self) -> TokenOwner:
        payload_obj = _as_object_dict(self._api_json("POST", "graphql", payload={"query": _VIEWER_QUERY}))
        data = _as_object_dict(payload_obj.get("data")) if payload_obj else None
        viewer = _as_object_dict(data.get("viewer")) if data else None
        if viewer is None:
            raise GitHubApiError("Unexpected GitHub response: missing GraphQL viewer")
        owner = TokenOwner(
            login=_as_string(viewer.get("login")),
            id=_as_int(viewer.get("databaseId"), field="databaseId"),
            type="Bot",
        )
        log_event(LOGGER, "github_read", endpoint="graphql_viewer", login=owner.login)
        return owner

    def _list_pages(self, base_path: str) -> list[dict[str, object]]:
        items: list[dict[str, object]] = []
        page = 1
        while True:
            path = f"{base_path}?{urlencode({'per_page': _PAGE_SIZE, 'page': page})}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError(f"Unexpected GitHub response: expected list for {base_path}")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is not None:
                    items.append(item_obj)
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        return items

    def _created_id(self, payload: object) -> int:
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for created comment")
        return _as_int(payload_obj.get("id"), field="id")

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        _status, body = self._request(method, path, payload=payload)
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubApiError(
                f"Unexpected GitHub response: invalid JSON for {method.upper()} {path}"
            ) from exc

    def _request(
        self, method: str, path: str, *, payload: dict[str, object] | None
    ) -> tuple[int, str]:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        try:
            raw = run(cmd, input_text=stdin_payload, check=False)
        except OSError as exc:
            raise GitHubApiError(f"GitHub API transport failure for {path}: {exc}") from exc

        try:
            status_code, _headers, body = _parse_http_response(raw)
        except GitHubApiError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status=None,
                raw_preview=_preview_for_log(raw),
            )
            raise GitHubApiError(f"GitHub API transport failure for {path}: {exc}") from exc

        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status=status_code,
                raw_preview=_preview_for_log(message),
            )
            raise GitHubApiError(
                f"GitHub API request failed with status {status_code}: {message}",
                status_code=status_code,
            )
        return status_code, body


def _parse_review_comment(item: dict[str, object]) -> ReviewComment:
    user_obj = _as_object_dict(item.get("user"))
    return ReviewComment(
        comment_id=_as_int(item.get("id"), field="id"),
        body=_as_string(item.get("body")),
        in_reply_to_id=_as_optional_int(item.get("in_reply_to_id")),
        user_login=_as_string(user_obj.get("login") if user_obj else None),
        created_at=_as_string(item.get("created_at")),
    )


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    # Redirects and 100-continue produce several status blocks; the last one wins.
    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


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


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")


def _as_optional_int(value: object) -> int | None:
    if value is None:
        return None
    return _as_int(value, field="optional int field")
