from __future__ import annotations

import argparse
from collections.abc import Callable, Mapping
import logging
import os
from pathlib import Path

from postflight.auth import configure_git_identity, resolve_token_owner
from postflight.branching import BranchLifecycleManager, setup_branch
from postflight.comments import CommentLocator
from postflight.config import AppConfig, RunEnvironment, load_config
from postflight.context import (
    build_trigger_context,
    context_from_json,
    context_to_json,
    is_resolve_conflicts_mode,
    load_event_payload,
    repository_from_payload,
)
from postflight.feedback import FeedbackReconciler
from postflight.git_ops import GitWorkspace, RepositoryProbe
from postflight.github_gateway import GitHubGateway
from postflight.models import FailureFeedback, FeedbackPayload
from postflight.observability import configure_logging, log_event, log_warning_event
from postflight.pull_request import create_pull_request_step
from postflight.results import ActionResolver, TaskResultError, handle_results, parse_task_result
from postflight.run_io import RunInputs, RunOutputs, append_step_summary
from postflight.summary import RunReport, format_summary
from postflight.tracker import JiraClient


LOGGER = logging.getLogger("postflight.cli")

_STEP_NAMES = {
    "prepare": "Prepare step",
    "handle-results": "Handle results step",
    "create-pr": "Create PR step",
    "feedback": "Give feedback step",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="postflight")
    subparsers = parser.add_subparsers(dest="command", required=True)

    for command, help_text in (
        ("prepare", "Resolve the trigger, post the working comment and set up the branch"),
        ("handle-results", "Classify the task outcome and publish commit/PR metadata"),
        ("create-pr", "Open a pull request from the working branch"),
        ("feedback", "Update the tracked comment with the final outcome"),
    ):
        command_parser = subparsers.add_parser(command, help=help_text)
        command_parser.add_argument(
            "--config",
            type=Path,
            default=None,
            help="Optional TOML file with [inputs] defaults",
        )
        command_parser.add_argument(
            "--repo-dir",
            type=Path,
            default=Path("."),
            help="Checkout the task operates on",
        )
        command_parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable verbose runtime logging to stderr",
        )
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    environ = os.environ
    configure_logging(True if args.verbose else environ.get("POSTFLIGHT_VERBOSE"))

    output_path = environ.get("GITHUB_OUTPUT", "").strip()
    outputs = RunOutputs(Path(output_path) if output_path else None)
    run_step(
        _STEP_NAMES[args.command],
        lambda: _dispatch(args, environ, outputs),
        outputs,
    )


def run_step(step_name: str, action: Callable[[], None], outputs: RunOutputs) -> None:
    try:
        action()
    except Exception as exc:  # noqa: BLE001
        message = str(exc)
        log_warning_event(
            LOGGER,
            "step_failed",
            step=step_name,
            error_type=type(exc).__name__,
            error=message,
        )
        outputs.set("EXCEPTION", message)
        print(f"::error::{step_name} failed with error: {_escape_workflow_command(message)}")
        raise SystemExit(1) from exc


def _dispatch(args: argparse.Namespace, environ: Mapping[str, str], outputs: RunOutputs) -> None:
    config = load_config(environ, path=args.config)
    _export_gh_token(config.environment)
    repo_dir: Path = args.repo_dir
    run_inputs = RunInputs(environ)

    if args.command == "prepare":
        _cmd_prepare(config, outputs, repo_dir=repo_dir)
        return
    if args.command == "handle-results":
        _cmd_handle_results(config, run_inputs, outputs, repo_dir=repo_dir)
        return
    if args.command == "create-pr":
        context = context_from_json(run_inputs.require("PARSED_CONTEXT"))
        github = GitHubGateway(context.repository.owner, context.repository.name)
        create_pull_request_step(github, run_inputs, outputs)
        return
    if args.command == "feedback":
        _cmd_feedback(config, run_inputs, outputs)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_prepare(config: AppConfig, outputs: RunOutputs, *, repo_dir: Path) -> None:
    environment = config.environment
    payload = load_event_payload(environment.event_path)
    repository = repository_from_payload(payload, environment)
    github = GitHubGateway(repository.owner, repository.name)

    token_owner = resolve_token_owner(github, uses_default_token=environment.uses_default_token)
    context = build_trigger_context(environment, payload, token_owner)
    outputs.set("PARSED_CONTEXT", context_to_json(context))

    workspace = GitWorkspace(repo_dir)
    configure_git_identity(workspace, context, environment)

    reconciler = _build_reconciler(config, github, outputs)
    reconciler.post_working_status(
        context,
        silent_mode=config.inputs.silent_mode,
        use_single_comment=config.inputs.use_single_comment,
    )
    if context.is_tracker_dispatch:
        reconciler.start_tracker_issue(context)

    manager = BranchLifecycleManager(config.inputs, github=github, workspace=workspace)
    setup_branch(
        manager,
        context,
        outputs,
        resolve_conflicts=is_resolve_conflicts_mode(context, config.inputs),
    )


def _cmd_handle_results(
    config: AppConfig,
    run_inputs: RunInputs,
    outputs: RunOutputs,
    *,
    repo_dir: Path,
) -> None:
    context = context_from_json(run_inputs.require("PARSED_CONTEXT"))
    resolver = ActionResolver(RepositoryProbe(repo_dir), outputs)
    handle_results(
        context,
        run_inputs.branch_info(),
        config.inputs,
        resolver=resolver,
        outputs=outputs,
        raw_task_output=run_inputs.get("JSON_TASK_OUTPUT"),
    )


def _cmd_feedback(config: AppConfig, run_inputs: RunInputs, outputs: RunOutputs) -> None:
    context = context_from_json(run_inputs.require("PARSED_CONTEXT"))
    github = GitHubGateway(context.repository.owner, context.repository.name)
    payload = run_inputs.feedback_payload()

    reconciler = _build_reconciler(config, github, outputs)
    reconciler.post_completion(payload, context, run_inputs.init_comment_id)

    summary_path = config.environment.step_summary_path
    if summary_path is None:
        log_event(LOGGER, "step_summary_skipped", reason="no_summary_file")
        return
    try:
        append_step_summary(summary_path, format_summary(_run_report(payload, run_inputs)))
    except Exception as exc:  # noqa: BLE001
        log_warning_event(
            LOGGER,
            "step_summary_failed",
            error_type=type(exc).__name__,
            error=str(exc),
        )


def _run_report(payload: FeedbackPayload, run_inputs: RunInputs) -> RunReport:
    duration_ms: int | None = None
    try:
        duration_ms = parse_task_result(run_inputs.get("JSON_TASK_OUTPUT")).duration_ms
    except TaskResultError:
        pass

    if isinstance(payload, FailureFeedback):
        return RunReport(
            error=payload.error_message,
            duration_ms=duration_ms,
            action=run_inputs.get("ACTION_TO_DO"),
            working_branch=run_inputs.get("WORKING_BRANCH"),
        )
    return RunReport(
        title=payload.title,
        summary=payload.summary,
        duration_ms=duration_ms,
        action=payload.action_kind,
        commit_sha=payload.commit_sha,
        pr_link=payload.pr_link,
        working_branch=payload.working_branch,
    )


def _build_reconciler(
    config: AppConfig, github: GitHubGateway, outputs: RunOutputs
) -> FeedbackReconciler:
    return FeedbackReconciler(
        github,
        locator=CommentLocator(github),
        outputs=outputs,
        server_url=config.environment.server_url,
        tracker_factory=lambda: JiraClient(config.tracker),
    )


def _export_gh_token(environment: RunEnvironment) -> None:
    # gh reads GH_TOKEN ahead of GITHUB_TOKEN, so an override token wins for every API call.
    token = environment.effective_token
    if token:
        os.environ["GH_TOKEN"] = token


def _escape_workflow_command(message: str) -> str:
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")
