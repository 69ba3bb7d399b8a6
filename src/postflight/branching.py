from __future__ import annotations

import logging

from postflight.config import ActionInputs
from postflight.git_ops import GitWorkspace
from postflight.github_gateway import GitHubGateway
from postflight.models import BranchInfo, PullRequestRef, TriggerContext
from postflight.observability import log_event, log_warning_event
from postflight.retry import execute_with_retry
from postflight.run_io import RunOutputs
from postflight.shell import CommandError


LOGGER = logging.getLogger("postflight.branching")

BRANCH_NAME_MAX_LEN = 50
PR_HISTORY_DEPTH = 20


class BranchSetupError(RuntimeError):
    """Fatal failure while preparing the working branch."""


def should_use_existing_branch(
    *,
    pr_state: str,
    create_new_branch_for_pr: bool,
    silent_mode: bool,
    actor: str,
    pr_author: str,
    token_owner_login: str,
) -> bool:
    if pr_state.strip().lower() in {"closed", "merged"}:
        return False
    if create_new_branch_for_pr:
        return False
    if silent_mode:
        return True
    if actor == pr_author:
        return True
    return pr_author == token_owner_login


def build_branch_name(prefix: str, context: TriggerContext) -> str:
    if context.is_pr:
        entity_kind = "pr"
    elif context.entity_number is not None:
        entity_kind = "issue"
    else:
        entity_kind = "run"
    if context.entity_number is None:
        raw_name = f"{prefix}{entity_kind}-{context.run_id}"
    else:
        raw_name = f"{prefix}{entity_kind}-{context.entity_number}-{context.run_id}"
    return raw_name.lower()[:BRANCH_NAME_MAX_LEN]


class BranchLifecycleManager:
    def __init__(
        self,
        inputs: ActionInputs,
        *,
        github: GitHubGateway,
        workspace: GitWorkspace,
    ) -> None:
        self._inputs = inputs
        self._github = github
        self._workspace = workspace

    def resolve(self, context: TriggerContext, *, resolve_conflicts: bool = False) -> BranchInfo:
        base_branch = self._inputs.base_branch or context.repository.default_branch
        pr_base_branch: str | None = None

        if context.is_pr and context.entity_number is not None:
            pr_number = context.entity_number
            pull_request = self._pull_request_for(context, pr_number)
            base_branch = pull_request.base_ref
            reuse = should_use_existing_branch(
                pr_state=pull_request.state,
                create_new_branch_for_pr=self._inputs.create_new_branch_for_pr,
                silent_mode=self._inputs.silent_mode,
                actor=context.actor,
                pr_author=pull_request.author_login,
                token_owner_login=context.token_owner.login,
            )
            log_event(
                LOGGER,
                "branch_reuse_decided",
                pr_number=pr_number,
                pr_state=pull_request.state,
                pr_author=pull_request.author_login,
                actor=context.actor,
                reuse=reuse,
            )

            depth = None if resolve_conflicts else PR_HISTORY_DEPTH
            self._fetch_history(pull_request.base_ref, depth=depth)
            self._fetch_history(pull_request.head_ref, depth=depth)

            if reuse:
                head_ref = pull_request.head_ref
                try:
                    self._workspace.checkout_reset(head_ref)
                except (CommandError, OSError) as exc:
                    raise BranchSetupError(
                        f'❌ Failed to checkout existing PR branch "{head_ref}" for PR #{pr_number}. '
                        "This could be due to:\n"
                        f'• Branch "{head_ref}" does not exist or was deleted\n'
                        "• Insufficient permissions to fetch from the repository\n"
                        "• Network connectivity issues\n"
                        "• Git authentication problems\n"
                        f"Original error: {exc}"
                    ) from exc
                return self._resolved(
                    BranchInfo(base_branch=base_branch, working_branch=head_ref, is_new_branch=False)
                )

            pr_base_branch = base_branch
            base_branch = pull_request.head_ref

        if context.event_kind == "push" and context.push_ref:
            base_branch = context.push_ref.removeprefix("refs/heads/")

        if not self._inputs.silent_mode:
            branch_name = build_branch_name(self._inputs.working_branch_prefix, context)
            try:
                self._workspace.checkout_new_branch(branch_name, base_branch)
            except (CommandError, OSError) as exc:
                raise BranchSetupError(
                    f'❌ Failed to create working branch "{branch_name}" from base branch '
                    f'"{base_branch}". This could be due to:\n'
                    f'• Base branch "{base_branch}" does not exist in the repository\n'
                    "• Insufficient permissions to fetch from the repository\n"
                    "• Network connectivity issues\n"
                    "• Git authentication problems\n"
                    f"Original error: {exc}"
                ) from exc
            return self._resolved(
                BranchInfo(
                    base_branch=base_branch,
                    working_branch=branch_name,
                    is_new_branch=True,
                    pr_base_branch=pr_base_branch,
                )
            )

        try:
            self._workspace.checkout_reset(base_branch)
        except (CommandError, OSError) as exc:
            raise BranchSetupError(
                f'❌ Failed to checkout branch "{base_branch}". This could be due to:\n'
                f'• Branch "{base_branch}" does not exist in the repository\n'
                "• Network connectivity issues\n"
                "• Git authentication problems\n"
                f"Original error: {exc}"
            ) from exc
        return self._resolved(
            BranchInfo(
                base_branch=base_branch,
                working_branch=base_branch,
                is_new_branch=False,
                pr_base_branch=pr_base_branch,
            )
        )

    def _pull_request_for(self, context: TriggerContext, pr_number: int) -> PullRequestRef:
        if context.carries_pull_request_payload and context.pull_request is not None:
            return context.pull_request
        try:
            snapshot = execute_with_retry(
                lambda: self._github.get_pull_request(pr_number),
                "get_pull_request",
            )
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "pull_request_lookup_failed",
                pr_number=pr_number,
                error_type=type(exc).__name__,
            )
            raise BranchSetupError(
                f"❌ Failed to fetch PR #{pr_number} information from {self._github.full_name}. "
                "This could be due to:\n"
                f"• PR #{pr_number} does not exist\n"
                "• Insufficient token permissions (needs 'repo' or 'pull_requests:read' scope)\n"
                "• GitHub API rate limits\n"
                f"Original error: {exc}"
            ) from exc
        return snapshot.as_ref()

    def _fetch_history(self, branch: str, *, depth: int | None) -> None:
        try:
            self._workspace.fetch_branch(branch, depth=depth)
        except (CommandError, OSError) as exc:
            raise BranchSetupError(
                f"❌ Failed to fetch {branch} history. This could be due to:\n"
                f'• Branch "{branch}" does not exist in the repository\n'
                "• Network connectivity issues\n"
                "• Insufficient permissions to fetch from the repository\n"
                "• Git authentication problems\n"
                f"Original error: {exc}"
            ) from exc

    def _resolved(self, info: BranchInfo) -> BranchInfo:
        log_event(
            LOGGER,
            "branch_resolved",
            base_branch=info.base_branch,
            working_branch=info.working_branch,
            is_new_branch=info.is_new_branch,
            pr_base_branch=info.pr_base_branch,
        )
        return info


def setup_branch(
    manager: BranchLifecycleManager,
    context: TriggerContext,
    outputs: RunOutputs,
    *,
    resolve_conflicts: bool = False,
) -> BranchInfo:
    info = manager.resolve(context, resolve_conflicts=resolve_conflicts)
    outputs.set("BASE_BRANCH", info.base_branch)
    outputs.set("WORKING_BRANCH", info.working_branch)
    outputs.set("IS_NEW_BRANCH", info.is_new_branch)
    if info.pr_base_branch is not None:
        outputs.set("PR_BASE_BRANCH", info.pr_base_branch)
    return info
