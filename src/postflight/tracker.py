from __future__ import annotations

import logging

import requests

from postflight.config import ConfigError, TrackerConfig
from postflight.observability import log_event, log_warning_event


LOGGER = logging.getLogger("postflight.tracker")
_REQUEST_TIMEOUT_SECONDS = 30


class TrackerError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class JiraClient:
    """Minimal Jira REST client: issue comments and workflow transitions."""

    def __init__(self, config: TrackerConfig, *, session: requests.Session | None = None) -> None:
        if not config.is_configured:
            raise ConfigError(
                "⚠️ Jira credentials not found. Set JIRA_EMAIL, JIRA_API_TOKEN, "
                "and JIRA_BASE_URL to enable Jira integration."
            )
        self._config = config
        self._base_url = (config.base_url or "").rstrip("/")
        self._session = session or requests.Session()
        self._session.auth = (config.email or "", config.api_token or "")
        self._session.headers.update({"Accept": "application/json"})

    def add_comment(self, issue_key: str, text: str) -> None:
        self._post(f"/rest/api/2/issue/{issue_key}/comment", {"body": text})
        log_event(LOGGER, "tracker_comment_added", issue_key=issue_key, length=len(text))

    def transition_issue(self, issue_key: str, transition_id: str) -> None:
        self._post(
            f"/rest/api/2/issue/{issue_key}/transitions",
            {"transition": {"id": transition_id}},
        )
        log_event(
            LOGGER,
            "tracker_issue_transitioned",
            issue_key=issue_key,
            transition_id=transition_id,
        )

    def start_issue(self, issue_key: str) -> None:
        self.transition_issue(issue_key, self._config.transition_in_progress)

    def move_issue_to_review(self, issue_key: str) -> None:
        self.transition_issue(issue_key, self._config.transition_in_review)

    def _post(self, path: str, payload: dict[str, object]) -> None:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.post(url, json=payload, timeout=_REQUEST_TIMEOUT_SECONDS)
        except requests.RequestException as exc:
            log_warning_event(LOGGER, "tracker_request_failed", path=path, status=None)
            raise TrackerError(f"Jira request to {path} failed: {exc}") from exc
        if not response.ok:
            log_warning_event(
                LOGGER,
                "tracker_request_failed",
                path=path,
                status=response.status_code,
            )
            raise TrackerError(
                f"Jira request to {path} failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
