from __future__ import annotations

import json
from pathlib import Path

import pytest

from postflight import cli
from postflight.context import context_to_json
from postflight.models import RepositoryRef, TokenOwner, TriggerContext
from postflight.run_io import RunOutputs


class FakeGitHub:
    full_name = "octo/widgets"

    def __init__(self) -> None:
        self.calls: list[tuple[object, ...]] = []

    def create_issue_comment(self, issue_number: int, body: str) -> int:
        self.calls.append(("create_issue", issue_number, body))
        return 900

    def update_issue_comment(self, comment_id: int, body: str) -> None:
        self.calls.append(("update_issue", comment_id, body))


class FakeWorkspace:
    def __init__(self, repo_dir: Path) -> None:
        self.repo_dir = repo_dir
        self.calls: list[tuple[object, ...]] = []

    def configure_identity(self, name: str, email: str) -> None:
        self.calls.append(("identity", name, email))

    def checkout_new_branch(self, branch: str, base_branch: str) -> None:
        self.calls.append(("new", branch, base_branch))


class FakeProbe:
    def __init__(self, repo_dir: Path) -> None:
        self.repo_dir = repo_dir

    def has_working_tree_changes(self) -> bool:
        return True

    def has_unpushed_commits(self, is_new_branch: bool, base_branch: str) -> bool:
        return False


def _context() -> TriggerContext:
    return TriggerContext(
        event_kind="issues",
        actor="alice",
        workflow="postflight",
        run_id="77",
        repository=RepositoryRef(owner="octo", name="widgets", default_branch="main"),
        token_owner=TokenOwner(login="github-actions[bot]", id=41898282, type="Bot"),
        entity_number=42,
    )


@pytest.fixture
def step_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for key in (
        "GITHUB_TOKEN",
        "OVERRIDE_GITHUB_TOKEN",
        "GITHUB_STEP_SUMMARY",
        "SILENT_MODE",
        "USE_SINGLE_COMMENT",
        "BASE_BRANCH",
        "POSTFLIGHT_VERBOSE",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("GH_TOKEN", "unused")
    monkeypatch.setenv("GITHUB_EVENT_NAME", "issues")
    monkeypatch.setenv("GITHUB_RUN_ID", "77")
    monkeypatch.setenv("GITHUB_ACTOR", "alice")
    monkeypatch.setenv("GITHUB_WORKFLOW", "postflight")
    monkeypatch.setenv("GITHUB_REPOSITORY", "octo/widgets")
    monkeypatch.setenv("GITHUB_SERVER_URL", "https://github.com")
    output_path = tmp_path / "github_output"
    monkeypatch.setenv("GITHUB_OUTPUT", str(output_path))
    return output_path


def test_build_parser_supports_commands() -> None:
    parser = cli.build_parser()

    prepare = parser.parse_args(["prepare", "--verbose", "--repo-dir", "/work"])
    feedback = parser.parse_args(["feedback", "--config", "inputs.toml"])

    assert prepare.command == "prepare"
    assert prepare.verbose is True
    assert prepare.repo_dir == Path("/work")
    assert feedback.config == Path("inputs.toml")
    assert feedback.repo_dir == Path(".")
    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_run_step_reports_failure(capsys: pytest.CaptureFixture[str]) -> None:
    outputs = RunOutputs(None)

    def failing() -> None:
        raise RuntimeError("50% done\nthen broke")

    with pytest.raises(SystemExit) as exc_info:
        cli.run_step("Prepare step", failing, outputs)

    assert exc_info.value.code == 1
    assert outputs.values["EXCEPTION"] == "50% done\nthen broke"
    assert capsys.readouterr().out == (
        "::error::Prepare step failed with error: 50%25 done%0Athen broke\n"
    )


def test_prepare_posts_working_comment_and_creates_branch(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, step_env: Path
) -> None:
    event_path = tmp_path / "event.json"
    event_path.write_text(
        json.dumps(
            {
                "action": "opened",
                "issue": {"number": 42},
                "repository": {
                    "name": "widgets",
                    "owner": {"login": "octo"},
                    "default_branch": "main",
                },
                "sender": {"id": 1001, "login": "alice"},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("GITHUB_EVENT_PATH", str(event_path))
    github = FakeGitHub()
    workspaces: list[FakeWorkspace] = []

    def make_workspace(repo_dir: Path) -> FakeWorkspace:
        workspace = FakeWorkspace(repo_dir)
        workspaces.append(workspace)
        return workspace

    monkeypatch.setattr(cli, "GitHubGateway", lambda owner, name: github)
    monkeypatch.setattr(cli, "GitWorkspace", make_workspace)

    cli.main(["prepare", "--repo-dir", str(tmp_path)])

    assert github.calls[0][:2] == ("create_issue", 42)
    assert workspaces[0].calls == [
        (
            "identity",
            "github-actions[bot]",
            "41898282+github-actions[bot]@users.noreply.github.com",
        ),
        ("new", "postflight/issue-42-77", "main"),
    ]
    written = step_env.read_text(encoding="utf-8")
    assert "PARSED_CONTEXT<<" in written
    assert "INIT_COMMENT_ID<<" in written
    assert "\npostflight/issue-42-77\n" in written
    assert "IS_NEW_BRANCH<<" in written


def test_handle_results_writes_action(
    monkeypatch: pytest.MonkeyPatch, step_env: Path
) -> None:
    monkeypatch.setenv("PARSED_CONTEXT", context_to_json(_context()))
    monkeypatch.setenv("BASE_BRANCH", "main")
    monkeypatch.setenv("WORKING_BRANCH", "postflight/issue-42-77")
    monkeypatch.setenv("IS_NEW_BRANCH", "true")
    monkeypatch.setenv("JSON_TASK_OUTPUT", json.dumps({"taskName": "Fix", "result": "Fixed"}))
    monkeypatch.setattr(cli, "RepositoryProbe", FakeProbe)

    cli.main(["handle-results"])

    written = step_env.read_text(encoding="utf-8")
    assert "\nCREATE_PR\n" in written
    assert "\n[postflight]: Fix\n" in written


def test_feedback_updates_comment_and_writes_summary(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, step_env: Path
) -> None:
    _ = step_env
    summary_path = tmp_path / "summary.md"
    monkeypatch.setenv("GITHUB_STEP_SUMMARY", str(summary_path))
    monkeypatch.setenv("PARSED_CONTEXT", context_to_json(_context()))
    monkeypatch.setenv("IS_JOB_FAILED", "true")
    monkeypatch.setenv("ERROR", "task crashed")
    monkeypatch.setenv("INIT_COMMENT_ID", "900")
    monkeypatch.delenv("JSON_TASK_OUTPUT", raising=False)
    github = FakeGitHub()
    monkeypatch.setattr(cli, "GitHubGateway", lambda owner, name: github)

    cli.main(["feedback"])

    kind, comment_id, body = github.calls[0]
    assert (kind, comment_id) == ("update_issue", 900)
    assert "Details: task crashed" in str(body)
    summary = summary_path.read_text(encoding="utf-8")
    assert "### ❌ Error" in summary
    assert "task crashed" in summary


def test_missing_context_fails_the_step(
    monkeypatch: pytest.MonkeyPatch, step_env: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.delenv("PARSED_CONTEXT", raising=False)

    with pytest.raises(SystemExit):
        cli.main(["create-pr"])

    assert "EXCEPTION<<" in step_env.read_text(encoding="utf-8")
    assert "::error::Create PR step failed with error: PARSED_CONTEXT is required" in (
        capsys.readouterr().out
    )
