from __future__ import annotations

import logging

from postflight.github_gateway import GitHubGateway
from postflight.models import PullRequest
from postflight.observability import log_event
from postflight.retry import execute_with_retry
from postflight.run_io import RunInputs, RunOutputs


LOGGER = logging.getLogger("postflight.pull_request")


def create_pull_request_step(
    github: GitHubGateway,
    run_inputs: RunInputs,
    outputs: RunOutputs,
) -> PullRequest:
    branch_info = run_inputs.branch_info()
    title = run_inputs.require("PR_TITLE")
    body = run_inputs.require("PR_BODY")
    # A branch carved out of someone else's PR targets that PR's base, not its head.
    base = branch_info.pr_base_branch or branch_info.base_branch
    head = branch_info.working_branch

    log_event(LOGGER, "pull_request_requested", base=base, head=head, title=title)
    pull_request = execute_with_retry(
        lambda: github.create_pull_request(title=title, head=head, base=base, body=body),
        "create_pull_request",
    )
    outputs.set("PR_LINK", pull_request.html_url)
    return pull_request
